"""
Item lifecycle: actions, transitions, undo and the state machine that ties
them together.
"""

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
from .transitions import ALLOWED, check_transition, is_noop, target_status, transition, wake
from .undo import ItemSnapshot, UndoEntry, UndoSlots, snapshot_item
from .machine import ActionResult, LifecycleMachine, SideEffect

__all__ = [
    "ACTION_TYPES",
    "Action",
    "ActionNeeded",
    "Actioned",
    "Archive",
    "Classify",
    "Restore",
    "Snooze",
    "Spam",
    "parse_action",
    "ALLOWED",
    "check_transition",
    "is_noop",
    "target_status",
    "transition",
    "wake",
    "ItemSnapshot",
    "UndoEntry",
    "UndoSlots",
    "snapshot_item",
    "ActionResult",
    "LifecycleMachine",
    "SideEffect",
]
