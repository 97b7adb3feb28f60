"""
Lifecycle Transitions

Pure status changes on an Item. No storage, no side effects: callers persist
the item and run any external effects themselves.

    new -> archived | spam | snoozed | actioned | action-needed
    archived | spam | snoozed | action-needed -> new   (restore, or wake)
    actioned is terminal
"""

from datetime import datetime, timedelta
from typing import Dict, FrozenSet, Optional

from ..common.errors import InvalidTransition
from ..common.schemas import Connector, Item, ItemStatus, TriagePath
from .actions import Action, ActionNeeded, Actioned, Archive, Classify, Restore, Snooze, Spam

ALLOWED: Dict[ItemStatus, FrozenSet[ItemStatus]] = {
    ItemStatus.NEW: frozenset({
        ItemStatus.ARCHIVED,
        ItemStatus.SPAM,
        ItemStatus.SNOOZED,
        ItemStatus.ACTIONED,
        ItemStatus.ACTION_NEEDED,
    }),
    ItemStatus.ARCHIVED: frozenset({ItemStatus.NEW}),
    ItemStatus.SPAM: frozenset({ItemStatus.NEW}),
    ItemStatus.SNOOZED: frozenset({ItemStatus.NEW}),
    ItemStatus.ACTION_NEEDED: frozenset({ItemStatus.NEW}),
    ItemStatus.ACTIONED: frozenset(),
}

ACTION_NEEDED_CONNECTORS = frozenset({Connector.EMAIL})


def target_status(action: Action) -> Optional[ItemStatus]:
    """Status an action moves to; None for actions that keep the status."""
    if isinstance(action, Archive):
        return ItemStatus.ARCHIVED
    if isinstance(action, Spam):
        return ItemStatus.SPAM
    if isinstance(action, Snooze):
        return ItemStatus.SNOOZED
    if isinstance(action, ActionNeeded):
        return ItemStatus.ACTION_NEEDED
    if isinstance(action, Actioned):
        return ItemStatus.ACTIONED
    if isinstance(action, Restore):
        return ItemStatus.NEW
    return None


def is_noop(item: Item, action: Action) -> bool:
    """Re-applying an action whose target equals the current state."""
    if isinstance(action, Classify):
        current = item.batch_type or "individual"
        return current == action.batch_type
    return target_status(action) == item.status


def check_transition(item: Item, action: Action, now: datetime) -> None:
    """
    Raises:
        InvalidTransition: the action is not allowed from the item's state
    """
    if isinstance(action, Classify):
        if item.status != ItemStatus.NEW:
            raise InvalidTransition(item.id, item.status.value, action.name, "only new items can be reclassified")
        return

    target = target_status(action)
    if target not in ALLOWED[item.status]:
        raise InvalidTransition(item.id, item.status.value, action.name)

    if isinstance(action, Snooze) and action.until <= now:
        raise InvalidTransition(item.id, item.status.value, action.name, "snooze time must be in the future")

    if isinstance(action, ActionNeeded) and item.connector not in ACTION_NEEDED_CONNECTORS:
        raise InvalidTransition(
            item.id, item.status.value, action.name, f"not supported for {item.connector.value} items"
        )


def transition(item: Item, action: Action, now: datetime, action_needed_days: int = 3) -> ItemStatus:
    """
    Validate and apply a status action to ``item`` in place.

    Classify is not a status change and is rejected here; the batch grouper
    owns it.
    """
    if isinstance(action, Classify):
        raise ValueError("classify is handled by the batch grouper")

    check_transition(item, action, now)
    previous = item.status

    if isinstance(action, (Archive, Spam, Actioned)):
        item.status = target_status(action)
        item.snooze_until = None

    elif isinstance(action, Snooze):
        item.status = ItemStatus.SNOOZED
        item.snooze_until = action.until

    elif isinstance(action, ActionNeeded):
        item.status = ItemStatus.ACTION_NEEDED
        item.snooze_until = now + timedelta(days=action_needed_days)
        item.enrichment.action_needed_at = now

    elif isinstance(action, Restore):
        item.status = ItemStatus.NEW
        item.snooze_until = None
        item.requeued_at = now
        if previous == ItemStatus.ACTION_NEEDED or action.previous_action == ActionNeeded.name:
            item.enrichment.action_needed_at = None

    return item.status


def wake(item: Item, now: datetime) -> bool:
    """Return a snoozed or action-needed item to new once its time is up."""
    if item.status not in (ItemStatus.SNOOZED, ItemStatus.ACTION_NEEDED):
        return False
    if item.snooze_until is None or item.snooze_until > now:
        return False
    item.status = ItemStatus.NEW
    item.snooze_until = None
    return True


def triage_path_for(action: Action, bulk: bool = False) -> Optional[TriagePath]:
    """Decision an action records on the item; None for actions that decide nothing."""
    if isinstance(action, (Archive, Spam)):
        return TriagePath.BULK if bulk else TriagePath.QUICK
    if isinstance(action, (Actioned, ActionNeeded)):
        return TriagePath.ENGAGED
    return None
