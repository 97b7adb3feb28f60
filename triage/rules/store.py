"""
Rule Store

Create, delete, list and match triage rules, and learn new rules from user
reclassifications. Rules are append-only: match counts only grow and a
deleted rule does not un-classify items it already matched.

The ordered list of active rules is kept in a TTLCache owned by this store
and invalidated whenever a rule is created, deleted, accepted or dismissed.
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional, Set, Tuple

from ..common.activity import ActivityLog
from ..common.schemas import (
    Actor,
    EventType,
    Item,
    Rule,
    RuleSource,
    RuleStatus,
    RuleTrigger,
    TriggerKind,
    utc_now,
)
from ..common.store import TriageStore
from ..common.ttl_cache import TTLCache
from .defaults import seed_triggers
from .matching import RuleMatch, find_match, order_rules, trigger_problem
from .proposals import decision_counts, evaluate, proposal_threshold

logger = logging.getLogger("triage.rules.store")


class RuleStore:
    def __init__(
        self,
        store: TriageStore,
        activity: Optional[ActivityLog] = None,
        cache_ttl_seconds: float = 300.0,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._store = store
        self._activity = activity
        self._clock = clock
        self._cache: TTLCache[List[Rule]] = TTLCache(cache_ttl_seconds, loader=self._load_ordered)
        self._reported_malformed: Set[str] = set()

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    def _load_ordered(self) -> List[Rule]:
        usable = []
        for rule in self._store.list_rules():
            if rule.status != RuleStatus.ACTIVE:
                continue
            problem = trigger_problem(rule.trigger)
            if problem is None:
                usable.append(rule)
            elif rule.id not in self._reported_malformed:
                self._reported_malformed.add(rule.id)
                logger.warning("Ignoring malformed rule %s (%s): %s", rule.id, rule.name, problem)
        return order_rules(usable)

    def invalidate(self) -> None:
        self._cache.invalidate()

    def ordered_rules(self) -> List[Rule]:
        return self._cache.get()

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def create_rule(
        self,
        trigger: RuleTrigger,
        batch_type: str,
        source: RuleSource = RuleSource.USER_CHAT,
        name: Optional[str] = None,
        actor: Actor = Actor.USER,
    ) -> Rule:
        if not batch_type:
            raise ValueError("batch_type is required")

        rule = Rule(
            name=name or f"{trigger.describe()} -> {batch_type}",
            trigger=trigger,
            batch_type=batch_type,
            source=source,
            created_at=self._clock(),
        )
        self._store.add_rule(rule)
        self.invalidate()

        logger.info("Created rule %s: %s", rule.id, rule.name)
        if self._activity:
            self._activity.record(
                EventType.RULE_CHANGE,
                f"Created rule: {rule.name}",
                {"rule_id": rule.id, "change": "created", "source": source.value},
                actor=actor,
            )
        return rule

    def delete_rule(self, rule_id: str) -> bool:
        rule = self._store.find_rule(rule_id)
        if rule is None or not self._store.remove_rule(rule_id):
            return False
        self.invalidate()

        logger.info("Deleted rule %s: %s", rule_id, rule.name)
        if self._activity:
            self._activity.record(
                EventType.RULE_CHANGE,
                f"Deleted rule: {rule.name}",
                {"rule_id": rule_id, "change": "deleted"},
                actor=Actor.USER,
            )
        return True

    def get_rule(self, rule_id: str) -> Optional[Rule]:
        return self._store.find_rule(rule_id)

    def list_rules(
        self,
        batch_type: Optional[str] = None,
        status: Optional[RuleStatus] = RuleStatus.ACTIVE,
    ) -> List[Rule]:
        """Rules in creation order, filtered by target and status (None for any)."""
        rules = self._store.list_rules()
        if status is not None:
            rules = [rule for rule in rules if rule.status == status]
        if batch_type is not None:
            rules = [rule for rule in rules if rule.batch_type == batch_type]
        return rules

    def _sender_rules(self, sender_key: str) -> List[Rule]:
        return [
            rule for rule in self._store.list_rules()
            if rule.trigger.kind == TriggerKind.SENDER_EXACT
            and rule.trigger.value.strip().lower() == sender_key
        ]

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    def match(self, item: Item) -> Optional[RuleMatch]:
        result = find_match(self.ordered_rules(), item)
        if result and result.conflicts:
            logger.warning(
                "Rule conflict for item %s: %s (%s) wins over %s",
                item.id,
                result.rule.name,
                result.rule.batch_type,
                ", ".join(f"{c.rule_name} ({c.batch_type})" for c in result.conflicts),
            )
        return result

    def record_match(self, rule_id: str) -> None:
        rule = self._store.find_rule(rule_id)
        if rule is None:
            return
        rule.match_count += 1
        rule.last_matched_at = self._clock()
        self._store.save_rule(rule)

    # ------------------------------------------------------------------
    # Learning
    # ------------------------------------------------------------------

    def learn_from_reclassify(
        self,
        sender: str,
        to_batch_type: str,
        source: RuleSource = RuleSource.RECLASSIFY_UI,
        sender_name: Optional[str] = None,
    ) -> Tuple[Rule, bool]:
        """
        Turn a user correction into a sender rule.

        The sender's winning rule is strengthened when it already points at
        ``to_batch_type``. Otherwise a new rule is appended; being the newest,
        it beats every older sender rule, including an older one with the
        same target that a later correction overrode.

        Returns:
            (rule, created)
        """
        sender_key = sender.strip().lower()
        active = [rule for rule in self._sender_rules(sender_key) if rule.status == RuleStatus.ACTIVE]
        winner = order_rules(active)[0] if active else None

        if winner is not None and winner.batch_type == to_batch_type:
            winner.match_count += 1
            self._store.save_rule(winner)
            logger.info("Strengthened rule %s (%s), match_count=%d", winner.id, winner.name, winner.match_count)
            return winner, False

        label = sender_name or sender_key
        rule = self.create_rule(
            RuleTrigger(kind=TriggerKind.SENDER_EXACT, value=sender_key),
            to_batch_type,
            source=source,
            name=f"{label} -> {to_batch_type}",
        )
        return rule, True

    # ------------------------------------------------------------------
    # Proposals
    # ------------------------------------------------------------------

    def check_for_proposals(self, sender: str, sender_name: Optional[str] = None) -> Optional[Rule]:
        """
        Propose a sender rule if the user's recent decisions show a pattern.

        Nothing is proposed while the sender has an active or pending rule,
        or once the user has dismissed enough proposals for it.

        Returns:
            The new proposed rule, or None
        """
        sender_key = sender.strip().lower()
        if not sender_key:
            return None

        existing = self._sender_rules(sender_key)
        if any(rule.status in (RuleStatus.ACTIVE, RuleStatus.PROPOSED) for rule in existing):
            return None

        dismissals = sum(1 for rule in existing if rule.status == RuleStatus.DISMISSED)
        threshold = proposal_threshold(dismissals)
        if threshold is None:
            return None

        counts = decision_counts(self._store.list_items(), sender_key)
        proposal = evaluate(sender_key, counts, threshold, sender_name=sender_name)
        if proposal is None:
            return None

        rule = Rule(
            name=proposal.text,
            trigger=RuleTrigger(kind=TriggerKind.SENDER_EXACT, value=sender_key),
            batch_type=proposal.batch_type,
            source=RuleSource.LEARNED,
            status=RuleStatus.PROPOSED,
            evidence=counts.to_dict(),
            created_at=self._clock(),
        )
        self._store.add_rule(rule)

        logger.info("Proposed rule %s: %s (%s)", rule.id, rule.name, rule.evidence)
        if self._activity:
            self._activity.record(
                EventType.RULE_CHANGE,
                f"Proposed rule: {rule.name}",
                {"rule_id": rule.id, "change": "proposed", "kind": proposal.kind.value, "evidence": rule.evidence},
                actor=Actor.SYSTEM,
            )
        return rule

    def _settle_proposal(self, rule_id: str, status: RuleStatus, change: str) -> Optional[Rule]:
        rule = self._store.find_rule(rule_id)
        if rule is None or rule.status != RuleStatus.PROPOSED:
            return None

        rule.status = status
        self._store.save_rule(rule)
        self.invalidate()

        logger.info("%s proposal %s: %s", change.capitalize(), rule.id, rule.name)
        if self._activity:
            self._activity.record(
                EventType.RULE_CHANGE,
                f"{change.capitalize()} proposed rule: {rule.name}",
                {"rule_id": rule.id, "change": change},
                actor=Actor.USER,
            )
        return rule

    def accept_proposal(self, rule_id: str) -> Optional[Rule]:
        """Activate a proposed rule. Returns None if it is not pending."""
        return self._settle_proposal(rule_id, RuleStatus.ACTIVE, "accepted")

    def dismiss_proposal(self, rule_id: str) -> Optional[Rule]:
        """Decline a proposed rule; the next proposal for the sender needs more evidence."""
        return self._settle_proposal(rule_id, RuleStatus.DISMISSED, "dismissed")

    def seed_default_rules(self) -> int:
        """Create any default rule whose name is not taken yet."""
        existing_names = {rule.name for rule in self._store.list_rules()}
        created = 0
        with self._store.transaction():
            for name, trigger, batch_type in seed_triggers():
                if name in existing_names:
                    continue
                self.create_rule(trigger, batch_type, source=RuleSource.DEFAULT_SEED, name=name, actor=Actor.SYSTEM)
                created += 1

        if created:
            logger.info("Seeded %d default rules", created)
        return created
