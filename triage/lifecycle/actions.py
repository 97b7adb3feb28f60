"""
Lifecycle Actions

The closed set of things a user (or the system) can do to an item. Each
action is a small frozen dataclass; ``parse_action`` is the only way in from
untyped input and rejects anything outside the set.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, ClassVar, Dict, Optional, Union

from ..common.errors import UnknownAction
from ..common.schemas import utc_now
from ..connectors.base import parse_timestamp


@dataclass(frozen=True)
class Archive:
    name: ClassVar[str] = "archive"


@dataclass(frozen=True)
class Spam:
    name: ClassVar[str] = "spam"


@dataclass(frozen=True)
class Snooze:
    until: datetime
    name: ClassVar[str] = "snooze"


@dataclass(frozen=True)
class Restore:
    previous_action: Optional[str] = None
    name: ClassVar[str] = "restore"


@dataclass(frozen=True)
class Classify:
    batch_type: str  # a batch type, or "individual"
    name: ClassVar[str] = "classify"


@dataclass(frozen=True)
class ActionNeeded:
    name: ClassVar[str] = "action-needed"


@dataclass(frozen=True)
class Actioned:
    name: ClassVar[str] = "actioned"


Action = Union[Archive, Spam, Snooze, Restore, Classify, ActionNeeded, Actioned]

ACTION_TYPES = (Archive, Spam, Snooze, Restore, Classify, ActionNeeded, Actioned)

_ALIASES = {
    "action_needed": "action-needed",
    "needs-action": "action-needed",
    "done": "actioned",
}


SNOOZE_PRESETS = {
    "1h": timedelta(hours=1),
    "4h": timedelta(hours=4),
    "1d": timedelta(days=1),
    "1w": timedelta(weeks=1),
}

MORNING_HOUR = 9


def snooze_until(duration: str, now: datetime) -> datetime:
    """
    Resolve a snooze preset: 1h, 4h, 1d, 1w, tomorrow or nextweek.

    ``tomorrow`` and ``nextweek`` land at 09:00, the latter on the next
    Monday (a week out when today is Monday).

    Raises:
        ValueError: unknown preset
    """
    key = str(duration).strip().lower().replace("_", "")
    if key in SNOOZE_PRESETS:
        return now + SNOOZE_PRESETS[key]

    morning = now.replace(hour=MORNING_HOUR, minute=0, second=0, microsecond=0)
    if key == "tomorrow":
        return morning + timedelta(days=1)
    if key == "nextweek":
        return morning + timedelta(days=(7 - now.weekday()) % 7 or 7)
    raise ValueError(f"Unknown snooze duration: {duration!r}")


def parse_action(
    name: str,
    payload: Optional[Dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> Action:
    """
    Build an action from its name and payload.

    ``now`` anchors relative snooze durations.

    Raises:
        UnknownAction: name is not one of the lifecycle actions
        ValueError: the payload is missing a required field
    """
    payload = payload or {}
    key = (name or "").strip().lower()
    key = _ALIASES.get(key, key)

    if key == Archive.name:
        return Archive()
    if key == Spam.name:
        return Spam()
    if key == Actioned.name:
        return Actioned()
    if key == ActionNeeded.name:
        return ActionNeeded()
    if key == Restore.name:
        previous = payload.get("previous_action")
        return Restore(previous_action=str(previous) if previous else None)
    if key == Snooze.name:
        if payload.get("duration"):
            return Snooze(until=snooze_until(payload["duration"], now or utc_now()))
        until = parse_timestamp(payload.get("until") or payload.get("snooze_until"))
        if until is None:
            raise ValueError("snooze requires an 'until' timestamp or a 'duration'")
        return Snooze(until=until)
    if key == Classify.name:
        batch_type = (payload.get("batch_type") or payload.get("to") or "").strip()
        if not batch_type:
            raise ValueError("classify requires a 'batch_type'")
        return Classify(batch_type=batch_type)

    raise UnknownAction(name)
