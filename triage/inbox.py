"""
Triage Inbox

Wires every component together and exposes the surfaces callers use:

- ingestion:  ingest, add_manual_item
- classification: classify_item, classify_pending
- actions:    apply_action, apply_bulk, undo, undo_bulk, wake_due, queue
- batches:    list_cards, resolve_batch, reclassify_item
- rules:      create_rule, delete_rule, list_rules
- proposals:  list_proposals, check_for_proposals, accept_proposal, dismiss_proposal
- audit:      record_activity, recent_activity
- heartbeat:  run_heartbeat
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .batching.cards import BatchGrouper, BatchResolution, ReclassifyResult
from .classifier.cheap_oracle import OllamaOracle
from .classifier.deep_oracle import LLMOracle
from .classifier.oracle import ClassificationOracle
from .classifier.pipeline import ClassificationResult, ClassifierPipeline
from .common.activity import ActivityLog
from .common.config import TriageConfig, load_config
from .common.llm_client import LLMClient
from .common.schemas import (
    ActivityLogEntry,
    Actor,
    BatchCard,
    Connector,
    EventType,
    Item,
    ItemStatus,
    Rule,
    RuleSource,
    RuleStatus,
    RuleTrigger,
    TriggerKind,
    utc_now,
)
from .common.store import TriageStore
from .connectors import BaseConnector, ManualConnector, build_registry
from .heartbeat.orchestrator import HeartbeatOrchestrator, HeartbeatResult, ProgressCallback
from .heartbeat.steps import default_steps
from .intake.gate import IngestionGate, SyncResult
from .lifecycle.actions import Action
from .lifecycle.machine import ActionResult, LabelClient, LifecycleMachine, TaskCanceller
from .rules.store import RuleStore

logger = logging.getLogger("triage.inbox")


class TriageInbox:
    """
    Facade over the triage core.

    Components not passed in are built from ``config``: a JSON-file store at
    ``config.store.path``, an Ollama cheap oracle and an LLMClient-backed
    expensive oracle.
    """

    def __init__(
        self,
        config: Optional[TriageConfig] = None,
        store: Optional[TriageStore] = None,
        connectors: Optional[Iterable[BaseConnector]] = None,
        cheap_oracle: Optional[ClassificationOracle] = None,
        expensive_oracle: Optional[ClassificationOracle] = None,
        task_canceller: Optional[TaskCanceller] = None,
        label_client: Optional[LabelClient] = None,
        extraction: Optional[Callable[[], Any]] = None,
        index: Optional[Callable[[], Any]] = None,
        embeddings: Optional[Callable[[], Any]] = None,
        seed_rules: bool = True,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.config = config or load_config()
        self._clock = clock

        self.store = store if store is not None else TriageStore(Path(self.config.store.path))
        self.activity = ActivityLog(self.store)
        self.rules = RuleStore(
            self.store,
            self.activity,
            cache_ttl_seconds=self.config.classifier.rule_cache_ttl_seconds,
            clock=clock,
        )
        self.gate = IngestionGate(self.store, self.config.ingest, clock=clock)

        if cheap_oracle is None and self.config.cheap_model.enabled:
            cheap_oracle = OllamaOracle(self.config.cheap_model)
        if expensive_oracle is None and self.config.classifier.deep_enabled:
            llm = LLMClient.from_config(self.config.llm)
            if llm.is_available:
                expensive_oracle = LLMOracle(llm, timeout_seconds=self.config.classifier.deep_timeout_seconds)
            else:
                logger.info("Expensive tier disabled: no LLM provider available")

        self.pipeline = ClassifierPipeline(
            self.rules,
            cheap_oracle=cheap_oracle,
            expensive_oracle=expensive_oracle,
            config=self.config.classifier,
            clock=clock,
        )
        self.grouper = BatchGrouper(
            self.store,
            self.rules,
            self.activity,
            clock=clock,
            action_needed_days=self.config.lifecycle.action_needed_days,
        )
        self.machine = LifecycleMachine(
            self.store,
            self.grouper,
            self.activity,
            config=self.config.lifecycle,
            task_canceller=task_canceller,
            label_client=label_client,
            clock=clock,
        )

        self.connectors: Dict[str, BaseConnector] = build_registry(connectors or [])
        self._manual = ManualConnector()
        self._extraction = extraction
        self._index = index
        self._embeddings = embeddings

        if seed_rules:
            self.rules.seed_default_rules()

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def ingest(
        self,
        connector: Union[str, BaseConnector],
        raw_events: Iterable[Dict[str, Any]],
    ) -> Tuple[SyncResult, List[Item]]:
        if isinstance(connector, str):
            resolved = self._manual if connector == self._manual.name.value else self.connectors.get(connector)
            if resolved is None:
                raise KeyError(f"Unknown connector: {connector}")
            connector = resolved
        return self.gate.ingest(connector, raw_events)

    def add_manual_item(
        self,
        subject: str,
        content: str = "",
        sender: Optional[str] = None,
        note: Optional[str] = None,
        tags: Optional[List[str]] = None,
    ) -> Optional[Item]:
        raw = {"subject": subject, "content": content, "sender": sender, "note": note, "tags": tags or []}
        result, items = self.gate.ingest(self._manual, [raw])
        if result.errors:
            raise ValueError(result.error_messages[0] if result.error_messages else "Invalid manual item")
        return items[0] if items else None

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    def _store_classification(self, item: Item, result: ClassificationResult) -> Item:
        self.pipeline.apply(item, result)
        return self.store.save_item(item)

    async def classify_item(self, item_id: str, deep: bool = False) -> Item:
        """Classify one item (again) and regroup it if it belongs on a card."""
        item = self.store.get_item(item_id)
        result = await self.pipeline.classify(item, deep=deep)
        with self.store.transaction():
            self.grouper.detach(item.id)
            self._store_classification(item, result)
            self.grouper.assign_classified([item])
        return item

    def _rematch_unbatched(self, candidates: Sequence[Item]) -> List[Item]:
        """
        Rule-only pass over classified items that landed in no batch.

        A rule created after an item was classified can still group it.
        Items the user pulled out of a batch stay where they are, and the
        item keeps the priority it was given.
        """
        rematched = []
        for item in candidates:
            result = self.pipeline.match_rules(item, batched_only=True)
            if result is None:
                continue
            result.priority = item.priority
            rematched.append(self._store_classification(item, result))
        if rematched:
            logger.info("Rules matched %d previously unbatched items", len(rematched))
        return rematched

    async def classify_pending(self, deep: bool = False) -> Dict[str, int]:
        """
        Classify every new item that has not been classified yet, then give
        rules a second look at classified items that are in no batch.
        """
        unbatched = self.store.list_items(
            status=ItemStatus.NEW,
            predicate=lambda item: (
                item.classified_at is not None
                and item.batch_type is None
                and item.enrichment.ungrouped_from is None
            ),
        )
        pending = self.store.list_items(
            status=ItemStatus.NEW,
            predicate=lambda item: item.classified_at is None,
        )
        if not pending and not unbatched:
            return {"classified": 0, "rematched": 0, "grouped": 0}

        outcomes = await self.pipeline.classify_many(pending, deep=deep) if pending else []
        with self.store.transaction():
            classified = [self._store_classification(item, result) for item, result in outcomes]
            rematched = self._rematch_unbatched(unbatched)
            grouped = self.grouper.assign_classified(classified + rematched)

        return {
            "classified": len(classified),
            "rematched": len(rematched),
            "grouped": sum(grouped.values()),
        }

    # ------------------------------------------------------------------
    # Action surface
    # ------------------------------------------------------------------

    def get_item(self, item_id: str) -> Item:
        return self.store.get_item(item_id)

    def apply_action(
        self,
        item_id: str,
        action: Union[str, Action],
        payload: Optional[Dict[str, Any]] = None,
    ) -> ActionResult:
        result = self.machine.apply_action(item_id, action, payload)
        if result.applied:
            self._check_proposals([item_id])
        return result

    def apply_bulk(
        self,
        item_ids: Sequence[str],
        action: Union[str, Action],
        payload: Optional[Dict[str, Any]] = None,
    ) -> List[ActionResult]:
        results = self.machine.apply_bulk(item_ids, action, payload)
        self._check_proposals(result.item_id for result in results if result.applied)
        return results

    def undo(self) -> List[Item]:
        return self.machine.undo()

    def undo_bulk(self) -> List[Item]:
        return self.machine.undo_bulk()

    def wake_due(self, now: Optional[datetime] = None) -> List[Item]:
        return self.machine.wake_due(now)

    def queue(self) -> List[Item]:
        return self.machine.queue()

    # ------------------------------------------------------------------
    # Batch surface
    # ------------------------------------------------------------------

    def list_cards(self) -> List[BatchCard]:
        return self.store.list_cards()

    def get_card(self, card_id: str) -> BatchCard:
        return self.store.get_card(card_id)

    def resolve_batch(
        self,
        card_id: str,
        checked_ids: Optional[Iterable[str]] = None,
        unchecked_ids: Optional[Iterable[str]] = None,
    ) -> BatchResolution:
        """Resolve a card and make the whole resolution undoable at once."""
        resolution = self.grouper.resolve_batch(card_id, checked_ids, unchecked_ids)
        self.machine.record_bulk_undo(f"resolve {resolution.batch_type}", resolution.snapshots)
        for item_id in resolution.actioned_ids:
            self.machine.leave_queue_effects(self.store.get_item(item_id))
        self._check_proposals(resolution.actioned_ids)
        return resolution

    def reclassify_item(
        self,
        item_id: str,
        from_batch_type: Optional[str],
        to_batch_type: Optional[str],
        sender_info: Optional[Dict[str, Any]] = None,
    ) -> ReclassifyResult:
        return self.grouper.reclassify_item(item_id, from_batch_type, to_batch_type, sender_info)

    # ------------------------------------------------------------------
    # Rule surface
    # ------------------------------------------------------------------

    def create_rule(
        self,
        kind: Union[TriggerKind, str],
        value: str,
        batch_type: str,
        source: RuleSource = RuleSource.USER_CHAT,
        name: Optional[str] = None,
    ) -> Rule:
        trigger = RuleTrigger(kind=TriggerKind(kind), value=value)
        return self.rules.create_rule(trigger, batch_type, source=source, name=name)

    def delete_rule(self, rule_id: str) -> bool:
        return self.rules.delete_rule(rule_id)

    def list_rules(self, batch_type: Optional[str] = None) -> List[Rule]:
        return self.rules.list_rules(batch_type)

    def list_proposals(self) -> List[Rule]:
        return self.rules.list_rules(status=RuleStatus.PROPOSED)

    def check_for_proposals(self, sender: str, sender_name: Optional[str] = None) -> Optional[Rule]:
        return self.rules.check_for_proposals(sender, sender_name)

    def accept_proposal(self, rule_id: str) -> Optional[Rule]:
        return self.rules.accept_proposal(rule_id)

    def dismiss_proposal(self, rule_id: str) -> Optional[Rule]:
        return self.rules.dismiss_proposal(rule_id)

    def _check_proposals(self, item_ids: Iterable[str]) -> List[Rule]:
        """Look for a proposal for each sender whose email was just triaged."""
        senders: Dict[str, Optional[str]] = {}
        for item_id in item_ids:
            item = self.store.find_item(item_id)
            if item is None or item.connector != Connector.EMAIL or item.enrichment.triage_path is None:
                continue
            senders.setdefault(item.sender.strip().lower(), item.sender_name)

        proposed = []
        for sender, sender_name in senders.items():
            rule = self.rules.check_for_proposals(sender, sender_name)
            if rule is not None:
                proposed.append(rule)
        return proposed

    # ------------------------------------------------------------------
    # Audit surface
    # ------------------------------------------------------------------

    def record_activity(
        self,
        event_type: Union[EventType, str],
        metadata: Optional[Dict[str, Any]] = None,
        description: str = "",
        actor: Union[Actor, str] = Actor.SYSTEM,
    ) -> ActivityLogEntry:
        return self.activity.record(event_type, description, metadata, actor=actor)

    def recent_activity(
        self,
        event_type: Optional[Union[EventType, str]] = None,
        limit: Optional[int] = 50,
    ) -> List[ActivityLogEntry]:
        return self.activity.recent(event_type, limit)

    # ------------------------------------------------------------------
    # Heartbeat
    # ------------------------------------------------------------------

    def build_heartbeat(self) -> HeartbeatOrchestrator:
        steps = default_steps(
            self.store,
            self.config,
            self.gate,
            list(self.connectors.values()),
            self.classify_pending,
            extraction=self._extraction,
            index=self._index,
            embeddings=self._embeddings,
            clock=self._clock,
        )
        return HeartbeatOrchestrator(steps, self.activity, self.config.heartbeat, clock=self._clock)

    async def run_heartbeat(self, on_progress: Optional[ProgressCallback] = None) -> HeartbeatResult:
        return await self.build_heartbeat().run(on_progress)
