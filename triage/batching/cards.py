"""
Batch Grouping Engine

Groups classified items into one open card per batch type, resolves a card
with the user's check/uncheck selection, and moves items between cards when
the user reclassifies them (teaching the rule store as it goes).
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from ..common.activity import ActivityLog
from ..common.errors import InvalidTransition
from ..common.schemas import (
    INDIVIDUAL,
    Actor,
    BatchCard,
    CardAction,
    EventType,
    Item,
    ItemStatus,
    Rule,
    Tier,
    TriagePath,
    utc_now,
)
from ..common.store import TriageStore
from ..lifecycle.actions import Action, Archive, Spam
from ..lifecycle.transitions import transition
from ..lifecycle.undo import ItemSnapshot, snapshot_item
from ..rules.proposals import AUTO_ARCHIVE
from ..rules.store import RuleStore

logger = logging.getLogger("triage.batching.cards")


@dataclass(frozen=True)
class BatchConfig:
    title: str
    explanation: str
    default_action: CardAction = CardAction.ARCHIVE


BATCH_CONFIGS: Dict[str, BatchConfig] = {
    "notifications": BatchConfig(
        "Notifications",
        "Tool alerts, CI/CD updates, and system notifications.",
    ),
    "finance": BatchConfig(
        "Finance",
        "Invoices, payments, billing alerts, and purchase orders.",
    ),
    "newsletters": BatchConfig(
        "Newsletters",
        "Industry digests, marketing emails, and subscriptions.",
    ),
    "calendar": BatchConfig(
        "Calendar",
        "Meeting invites, acceptances, and scheduling updates.",
        CardAction.ACCEPT_AND_ARCHIVE,
    ),
    "spam": BatchConfig(
        "Spam",
        "Cold outreach, junk mail, and unsolicited sales pitches.",
        CardAction.SPAM,
    ),
    AUTO_ARCHIVE: BatchConfig(
        "Auto-archive",
        "Senders you always archive without reading.",
    ),
}


def batch_config(batch_type: str) -> BatchConfig:
    return BATCH_CONFIGS.get(batch_type) or BatchConfig(
        title=batch_type.replace("-", " ").replace("_", " ").title(),
        explanation=f"Grouped items: {batch_type}",
    )


def card_action(card: BatchCard) -> Action:
    """Lifecycle action the card's default action maps to."""
    if card.default_action == CardAction.SPAM:
        return Spam()
    return Archive()


@dataclass
class BatchResolution:
    card_id: str
    batch_type: str
    action: CardAction
    actioned_ids: List[str] = field(default_factory=list)
    ungrouped_ids: List[str] = field(default_factory=list)
    ignored_ids: List[str] = field(default_factory=list)
    failed_ids: List[str] = field(default_factory=list)
    snapshots: List[ItemSnapshot] = field(default_factory=list)


@dataclass
class ReclassifyResult:
    item_id: str
    from_batch_type: str
    to_batch_type: str
    rule: Rule
    rule_created: bool
    target_card_id: Optional[str] = None
    pruned_card_id: Optional[str] = None


class BatchGrouper:
    """
    Owns batch card membership.

    All multi-row writes happen inside one store transaction.
    """

    def __init__(
        self,
        store: TriageStore,
        rules: RuleStore,
        activity: Optional[ActivityLog] = None,
        clock: Callable[[], datetime] = utc_now,
        action_needed_days: int = 3,
    ):
        self._store = store
        self._rules = rules
        self._activity = activity
        self._clock = clock
        self._action_needed_days = action_needed_days

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    def get_or_create_card(self, batch_type: str) -> BatchCard:
        card = self._store.find_card_by_type(batch_type)
        if card is not None:
            return card

        config = batch_config(batch_type)
        now = self._clock()
        card = BatchCard(
            batch_type=batch_type,
            title=config.title,
            explanation=config.explanation,
            default_action=config.default_action,
            created_at=now,
            updated_at=now,
        )
        self._store.save_card(card)
        logger.info("Created %s card %s", batch_type, card.id)
        return card

    def detach(self, item_id: str) -> Optional[Tuple[BatchCard, int]]:
        """
        Remove an item from whatever card holds it, deleting the card if it
        empties.

        Returns:
            (card as it was before removal, item position), or None
        """
        card = self._store.card_for_item(item_id)
        if card is None:
            return None

        before = card.model_copy(deep=True)
        position = card.item_ids.index(item_id)
        card.discard(item_id)
        if card.is_empty:
            self._store.delete_card(card.id)
            logger.debug("Pruned empty card %s", card.id)
        else:
            self._store.save_card(card)
        return before, position

    def restore_membership(
        self,
        card_snapshot: BatchCard,
        item_id: str,
        position: Optional[int] = None,
    ) -> BatchCard:
        """Put an item back on its card, recreating the card if it is gone."""
        card = self._store.find_card(card_snapshot.id) or self._store.find_card_by_type(card_snapshot.batch_type)
        if card is None:
            card = card_snapshot.model_copy(deep=True, update={"item_ids": []})

        if item_id not in card.item_ids:
            index = len(card.item_ids) if position is None else min(position, len(card.item_ids))
            card.item_ids.insert(index, item_id)
            card.updated_at = self._clock()
        self._store.save_card(card)
        return card

    def group_for_batch(self, items: Iterable[Item], batch_type: str) -> BatchCard:
        """Add items to the open card for ``batch_type``; every item starts checked."""
        with self._store.transaction():
            card = self.get_or_create_card(batch_type)
            for item in items:
                current = self._store.card_for_item(item.id)
                if current is not None and current.id != card.id:
                    self.detach(item.id)
                card.add(item.id)
                item.batch_type = batch_type
                self._store.save_item(item)
            self._store.save_card(card)
        return card

    def assign_classified(self, items: Iterable[Item]) -> Dict[str, int]:
        """
        Group freshly classified new items by batch type.

        Items the user already pulled out of a batch type stay individual.

        Returns:
            Count of items added per batch type
        """
        by_type: Dict[str, List[Item]] = {}
        with self._store.transaction():
            for item in items:
                if item.status != ItemStatus.NEW or not item.batch_type:
                    continue
                if item.enrichment.ungrouped_from == item.batch_type:
                    logger.debug("Item %s stays individual (removed from %s)", item.id, item.batch_type)
                    item.batch_type = None
                    self._store.save_item(item)
                    continue
                by_type.setdefault(item.batch_type, []).append(item)

            for batch_type, grouped in by_type.items():
                self.group_for_batch(grouped, batch_type)

        counts = {batch_type: len(grouped) for batch_type, grouped in by_type.items()}
        if counts:
            logger.info("Grouped items into cards: %s", counts)
        return counts

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve_batch(
        self,
        card_id: str,
        checked_ids: Optional[Iterable[str]] = None,
        unchecked_ids: Optional[Iterable[str]] = None,
    ) -> BatchResolution:
        """
        Apply a card's default action to its checked items.

        Members missing from both lists count as checked. Unchecked items
        leave the batch and stay new in the individual queue. Ids that are
        not on the card are ignored. The card is deleted afterwards.

        Raises:
            CardNotFound: no card with this id
        """
        card = self._store.get_card(card_id)
        members = list(card.item_ids)
        checked = set(checked_ids or [])
        unchecked = set(unchecked_ids or [])

        resolution = BatchResolution(card_id=card.id, batch_type=card.batch_type, action=card.default_action)
        resolution.ignored_ids = sorted((checked | unchecked) - set(members))
        if resolution.ignored_ids:
            logger.warning("Ignoring ids not on card %s: %s", card.id, resolution.ignored_ids)

        both = checked & unchecked
        if both:
            logger.warning("Ids both checked and unchecked on card %s, keeping them: %s", card.id, sorted(both))

        action = card_action(card)
        now = self._clock()

        with self._store.transaction():
            for item_id in members:
                item = self._store.find_item(item_id)
                if item is None:
                    continue
                resolution.snapshots.append(snapshot_item(self._store, item))

                if item_id in unchecked:
                    item.batch_type = None
                    item.enrichment.ungrouped_from = card.batch_type
                    self._store.save_item(item)
                    resolution.ungrouped_ids.append(item_id)
                    continue

                try:
                    transition(item, action, now, self._action_needed_days)
                except InvalidTransition as e:
                    logger.warning("Skipping %s during batch resolve: %s", item_id, e)
                    resolution.failed_ids.append(item_id)
                    continue
                item.enrichment.triage_path = TriagePath.BULK
                self._store.save_item(item)
                resolution.actioned_ids.append(item_id)

            self._store.delete_card(card.id)

            if self._activity:
                if card.default_action == CardAction.ACCEPT_AND_ARCHIVE and resolution.actioned_ids:
                    self._activity.record(
                        EventType.TRIAGE_ACTION,
                        f"Accepted {len(resolution.actioned_ids)} calendar invites",
                        {"action": "calendar_accept", "item_ids": list(resolution.actioned_ids)},
                        actor=Actor.USER,
                    )
                self._activity.record(
                    EventType.BATCH_ACTION,
                    f"{card.title}: {card.default_action.value} {len(resolution.actioned_ids)}, "
                    f"kept {len(resolution.ungrouped_ids)}",
                    {
                        "card_id": card.id,
                        "batch_type": card.batch_type,
                        "action": card.default_action.value,
                        "actioned_ids": list(resolution.actioned_ids),
                        "ungrouped_ids": list(resolution.ungrouped_ids),
                    },
                    actor=Actor.USER,
                )

        logger.info(
            "Resolved card %s (%s): %d actioned, %d ungrouped",
            card.id, card.batch_type, len(resolution.actioned_ids), len(resolution.ungrouped_ids),
        )
        return resolution

    # ------------------------------------------------------------------
    # Reclassification
    # ------------------------------------------------------------------

    def reclassify_item(
        self,
        item_id: str,
        from_batch_type: Optional[str],
        to_batch_type: Optional[str],
        sender_info: Optional[Dict[str, Any]] = None,
    ) -> ReclassifyResult:
        """
        Move an item to another batch type (or to the individual queue) and
        learn a sender rule from the correction.

        Raises:
            ValueError: from and to are the same
            ItemNotFound: no item with this id
        """
        source = from_batch_type or INDIVIDUAL
        target = to_batch_type or INDIVIDUAL
        if source == target:
            raise ValueError(f"Item is already in {source}")

        item = self._store.get_item(item_id)
        sender_info = sender_info or {}
        sender = sender_info.get("sender") or item.sender
        sender_name = sender_info.get("sender_name") or item.sender_name

        with self._store.transaction():
            detached = self.detach(item.id)
            pruned = None
            if detached is not None and self._store.find_card(detached[0].id) is None:
                pruned = detached[0].id

            target_card = None
            if target != INDIVIDUAL:
                target_card = self.get_or_create_card(target)
                target_card.add(item.id)
                self._store.save_card(target_card)
                item.batch_type = target
                item.enrichment.ungrouped_from = None
            else:
                item.batch_type = None
                item.enrichment.ungrouped_from = source if source != INDIVIDUAL else None

            item.tier = Tier.RULE
            item.enrichment.classification_reason = f"Reclassified from {source} to {target}"
            self._store.save_item(item)

            rule, created = self._rules.learn_from_reclassify(sender, target, sender_name=sender_name)

            if self._activity:
                self._activity.record(
                    EventType.TRIAGE_ACTION,
                    f"Reclassified {item.subject!r} from {source} to {target}",
                    {"item_id": item.id, "from": source, "to": target, "rule_id": rule.id},
                    actor=Actor.USER,
                )

        return ReclassifyResult(
            item_id=item.id,
            from_batch_type=source,
            to_batch_type=target,
            rule=rule,
            rule_created=created,
            target_card_id=target_card.id if target_card else None,
            pruned_card_id=pruned,
        )
