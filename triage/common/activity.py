"""
Activity Log

Append-only audit trail on top of the store. Every user-visible state change
(triage actions, batch resolutions, rule changes, heartbeat runs) lands here.
"""

import logging
from typing import Any, Dict, List, Optional, Union

from .schemas import ActivityLogEntry, Actor, EventType
from .store import TriageStore

logger = logging.getLogger("triage.common.activity")


class ActivityLog:
    def __init__(self, store: TriageStore):
        self._store = store

    def record(
        self,
        event_type: Union[EventType, str],
        description: str = "",
        metadata: Optional[Dict[str, Any]] = None,
        actor: Union[Actor, str] = Actor.SYSTEM,
    ) -> ActivityLogEntry:
        entry = ActivityLogEntry(
            event_type=EventType(event_type),
            actor=Actor(actor),
            description=description,
            metadata=metadata or {},
        )
        self._store.append_activity(entry)
        logger.debug("Activity %s: %s", entry.event_type.value, description)
        return entry

    def recent(
        self,
        event_type: Optional[Union[EventType, str]] = None,
        limit: Optional[int] = 50,
    ) -> List[ActivityLogEntry]:
        return self._store.list_activity(
            event_type=EventType(event_type) if event_type else None,
            limit=limit,
        )
