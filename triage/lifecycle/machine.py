"""
Lifecycle State Machine

Applies actions to items, runs their external side effects, records the
activity log and fills the undo slots.

Action results are authoritative and synchronous: the returned
ActionResult says exactly what state the item is in afterwards. Invalid
transitions come back as no-op results instead of raising. Side effects
(task cancellation, mail labels) are best effort; when one fails the
transition still stands and the failure is reported in the result.
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union, TYPE_CHECKING

from ..common.activity import ActivityLog
from ..common.config import LifecycleConfig
from ..common.errors import InvalidTransition
from ..common.schemas import (
    INDIVIDUAL,
    PRIORITY_ORDER,
    Actor,
    EventType,
    Item,
    ItemStatus,
    TriagePath,
    utc_now,
)
from ..common.store import TriageStore
from .actions import (
    ACTION_TYPES,
    Action,
    ActionNeeded,
    Actioned,
    Archive,
    Classify,
    Restore,
    Snooze,
    Spam,
    parse_action,
)
from .transitions import check_transition, is_noop, transition, triage_path_for, wake
from .undo import ItemSnapshot, UndoEntry, UndoSlots, snapshot_item

if TYPE_CHECKING:
    from ..batching.cards import BatchGrouper

logger = logging.getLogger("triage.lifecycle.machine")

# Cancels suggested tasks derived from an item; returns how many were cancelled
TaskCanceller = Callable[[Item], Any]
# Applies an external label (e.g. a Gmail label) to an item
LabelClient = Callable[[Item, str], Any]

PendingEffect = Tuple[str, Callable[[], Any]]


def _path_value(path: Optional[TriagePath]) -> Optional[str]:
    return path.value if path is not None else None


@dataclass
class SideEffect:
    name: str
    ok: bool
    detail: str = ""


@dataclass
class ActionResult:
    item_id: str
    action: str
    status: Optional[ItemStatus]
    applied: bool
    side_effects: List[SideEffect] = field(default_factory=list)
    reason: str = ""

    @property
    def side_effects_ok(self) -> bool:
        return all(effect.ok for effect in self.side_effects)


class LifecycleMachine:
    def __init__(
        self,
        store: TriageStore,
        grouper: "BatchGrouper",
        activity: Optional[ActivityLog] = None,
        config: Optional[LifecycleConfig] = None,
        task_canceller: Optional[TaskCanceller] = None,
        label_client: Optional[LabelClient] = None,
        undo_slots: Optional[UndoSlots] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._store = store
        self._grouper = grouper
        self._activity = activity
        self._config = config or LifecycleConfig()
        self._task_canceller = task_canceller
        self._label_client = label_client
        self._undo = undo_slots or UndoSlots()
        self._clock = clock

        self._handlers: Dict[type, Callable[[Item, Action, datetime], List[PendingEffect]]] = {
            Archive: self._leave_queue,
            Spam: self._leave_queue,
            Snooze: self._snooze,
            Restore: self._restore,
            Classify: self._classify,
            ActionNeeded: self._action_needed,
            Actioned: self._actioned,
        }
        missing = [action_type.__name__ for action_type in ACTION_TYPES if action_type not in self._handlers]
        if missing:
            raise TypeError(f"No lifecycle handler for: {', '.join(missing)}")

    @property
    def undo_slots(self) -> UndoSlots:
        return self._undo

    # ------------------------------------------------------------------
    # Handlers: mutate state, return side effects to run after commit
    # ------------------------------------------------------------------

    def _leave_queue(self, item: Item, action: Action, now: datetime) -> List[PendingEffect]:
        transition(item, action, now, self._config.action_needed_days)
        self._grouper.detach(item.id)
        self._store.save_item(item)
        if self._task_canceller is None:
            return []
        canceller = self._task_canceller
        return [("cancel_tasks", lambda: canceller(item))]

    def _snooze(self, item: Item, action: Action, now: datetime) -> List[PendingEffect]:
        transition(item, action, now, self._config.action_needed_days)
        self._grouper.detach(item.id)
        self._store.save_item(item)
        return []

    def _actioned(self, item: Item, action: Action, now: datetime) -> List[PendingEffect]:
        transition(item, action, now, self._config.action_needed_days)
        self._grouper.detach(item.id)
        self._store.save_item(item)
        return []

    def _action_needed(self, item: Item, action: Action, now: datetime) -> List[PendingEffect]:
        transition(item, action, now, self._config.action_needed_days)
        self._grouper.detach(item.id)
        self._store.save_item(item)
        if self._label_client is None:
            return []
        label_client, label = self._label_client, self._config.action_needed_label
        return [("apply_label", lambda: label_client(item, label))]

    def _restore(self, item: Item, action: Action, now: datetime) -> List[PendingEffect]:
        transition(item, action, now, self._config.action_needed_days)
        self._store.save_item(item)
        return []

    def _classify(self, item: Item, action: Action, now: datetime) -> List[PendingEffect]:
        self._grouper.reclassify_item(item.id, item.batch_type or INDIVIDUAL, action.batch_type)
        return []

    def leave_queue_effects(self, item: Item) -> List[SideEffect]:
        """Side effects for an item archived or spammed outside apply_action (batch resolve)."""
        if self._task_canceller is None:
            return []
        canceller = self._task_canceller
        return self._run_effects(item, [("cancel_tasks", lambda: canceller(item))])

    def _run_effects(self, item: Item, effects: List[PendingEffect]) -> List[SideEffect]:
        results = []
        for name, effect in effects:
            try:
                outcome = effect()
            except Exception as e:
                logger.warning("Side effect %s failed for item %s: %s", name, item.id, e)
                results.append(SideEffect(name=name, ok=False, detail=str(e)))
                continue
            results.append(SideEffect(name=name, ok=True, detail="" if outcome is None else str(outcome)))
        return results

    # ------------------------------------------------------------------
    # Applying actions
    # ------------------------------------------------------------------

    def _resolve(self, action: Union[str, Action], payload: Optional[Dict[str, Any]], now: datetime) -> Action:
        if isinstance(action, str):
            return parse_action(action, payload, now=now)
        return action

    def _apply_locked(
        self,
        item: Item,
        action: Action,
        now: datetime,
        bulk: bool = False,
    ) -> Tuple[ActionResult, Optional[ItemSnapshot], List[PendingEffect]]:
        if is_noop(item, action):
            current = action.batch_type if isinstance(action, Classify) else item.status.value
            return (
                ActionResult(item.id, action.name, item.status, applied=False, reason=f"already {current}"),
                None,
                [],
            )

        try:
            check_transition(item, action, now)
        except InvalidTransition as e:
            logger.info("Rejected %s on %s: %s", action.name, item.id, e)
            return ActionResult(item.id, action.name, item.status, applied=False, reason=str(e)), None, []

        snapshot = snapshot_item(self._store, item)
        path = triage_path_for(action, bulk)
        with self._store.transaction():
            if path is not None:
                item.enrichment.triage_path = path
            effects = self._handlers[type(action)](item, action, now)

        current = self._store.get_item(item.id)
        return ActionResult(current.id, action.name, current.status, applied=True), snapshot, effects

    def apply_action(
        self,
        item_id: str,
        action: Union[str, Action],
        payload: Optional[Dict[str, Any]] = None,
        actor: Actor = Actor.USER,
    ) -> ActionResult:
        """
        Apply one action to one item.

        Raises:
            UnknownAction: action name outside the lifecycle set
            ItemNotFound: no item with this id
        """
        now = self._clock()
        resolved = self._resolve(action, payload, now)

        with self._store.lock:
            item = self._store.get_item(item_id)
            result, snapshot, effects = self._apply_locked(item, resolved, now)
            if not result.applied:
                return result
            self._undo.record_single(UndoEntry(label=resolved.name, snapshots=[snapshot]))

        result.side_effects = self._run_effects(item, effects)

        if self._activity:
            self._activity.record(
                EventType.TRIAGE_ACTION,
                f"{resolved.name}: {item.subject}",
                {
                    "item_id": item_id,
                    "action": resolved.name,
                    "status": result.status.value,
                    "triage_path": _path_value(triage_path_for(resolved)),
                    "side_effects": [asdict(effect) for effect in result.side_effects],
                },
                actor=actor,
            )
        return result

    def apply_bulk(
        self,
        item_ids: Sequence[str],
        action: Union[str, Action],
        payload: Optional[Dict[str, Any]] = None,
        actor: Actor = Actor.USER,
    ) -> List[ActionResult]:
        """
        Apply one action to several items in a single transaction and fill
        the bulk undo slot with every item that changed.
        """
        now = self._clock()
        resolved = self._resolve(action, payload, now)
        results: List[ActionResult] = []
        snapshots: List[ItemSnapshot] = []
        pending: List[Tuple[Item, List[PendingEffect], ActionResult]] = []

        with self._store.lock, self._store.transaction():
            for item_id in item_ids:
                item = self._store.find_item(item_id)
                if item is None:
                    results.append(
                        ActionResult(item_id, resolved.name, None, applied=False, reason="item not found")
                    )
                    continue
                result, snapshot, effects = self._apply_locked(item, resolved, now, bulk=True)
                results.append(result)
                if result.applied:
                    snapshots.append(snapshot)
                    pending.append((item, effects, result))

        if snapshots:
            self._undo.record_bulk(UndoEntry(label=f"bulk {resolved.name}", snapshots=snapshots))

        for item, effects, result in pending:
            result.side_effects = self._run_effects(item, effects)

        applied = [r.item_id for r in results if r.applied]
        if self._activity and applied:
            self._activity.record(
                EventType.BATCH_ACTION,
                f"{resolved.name} {len(applied)} items",
                {
                    "action": resolved.name,
                    "item_ids": applied,
                    "triage_path": _path_value(triage_path_for(resolved, bulk=True)),
                },
                actor=actor,
            )
        return results

    def record_bulk_undo(self, label: str, snapshots: List[ItemSnapshot]) -> None:
        """Fill the bulk slot from an operation run elsewhere (batch resolve)."""
        if snapshots:
            self._undo.record_bulk(UndoEntry(label=label, snapshots=list(snapshots)))

    # ------------------------------------------------------------------
    # Undo
    # ------------------------------------------------------------------

    def _restore_snapshots(self, entry: UndoEntry) -> List[Item]:
        restored = []
        with self._store.lock, self._store.transaction():
            for snapshot in entry.snapshots:
                self._grouper.detach(snapshot.item_id)
                item = snapshot.item.model_copy(deep=True)
                self._store.replace_item(item)
                if snapshot.card is not None:
                    self._grouper.restore_membership(snapshot.card, item.id, snapshot.position)
                restored.append(item)

        if self._activity:
            self._activity.record(
                EventType.TRIAGE_ACTION,
                f"Undo {entry.label} ({len(restored)} items)",
                {"action": "undo", "undone": entry.label, "item_ids": [item.id for item in restored]},
                actor=Actor.USER,
            )
        return restored

    def undo(self) -> List[Item]:
        """Undo the last single-item action. A second call does nothing."""
        entry = self._undo.take_single()
        if entry is None:
            return []
        logger.info("Undoing %s", entry.label)
        return self._restore_snapshots(entry)

    def undo_bulk(self) -> List[Item]:
        """Undo the last bulk action or batch resolution in one transaction."""
        entry = self._undo.take_bulk()
        if entry is None:
            return []
        logger.info("Undoing %s (%d items)", entry.label, len(entry.snapshots))
        return self._restore_snapshots(entry)

    # ------------------------------------------------------------------
    # Scheduler hooks and queue view
    # ------------------------------------------------------------------

    def wake_due(self, now: Optional[datetime] = None) -> List[Item]:
        """Return elapsed snoozed and action-needed items to new."""
        now = now or self._clock()
        woken = []
        with self._store.lock, self._store.transaction():
            candidates = self._store.list_items(
                predicate=lambda item: item.status in (ItemStatus.SNOOZED, ItemStatus.ACTION_NEEDED)
            )
            for item in candidates:
                if wake(item, now):
                    self._store.save_item(item)
                    woken.append(item)

        if woken:
            logger.info("Woke %d snoozed items", len(woken))
        return woken

    def queue(self) -> List[Item]:
        """
        Individual queue: new items that are not on a batch card.

        Order: restored items first (most recent restore first), then by
        priority, then newest received.
        """
        carded = {item_id for card in self._store.list_cards() for item_id in card.item_ids}
        items = self._store.list_items(
            status=ItemStatus.NEW,
            predicate=lambda item: item.id not in carded,
        )

        def sort_key(item: Item):
            requeued = item.requeued_at
            return (
                0 if requeued else 1,
                -requeued.timestamp() if requeued else 0.0,
                PRIORITY_ORDER[item.priority],
                -item.received_at.timestamp(),
            )

        return sorted(items, key=sort_key)
