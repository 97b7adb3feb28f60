"""Activity log entry schema (append-only audit record)."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, Field

from .item import utc_now


class EventType(str, Enum):
    HEARTBEAT_RUN = "heartbeat_run"
    SYNTHESIS_RUN = "synthesis_run"
    TRIAGE_ACTION = "triage_action"
    BATCH_ACTION = "batch_action"
    RULE_CHANGE = "rule_change"
    CONNECTOR_SYNC = "connector_sync"
    SYSTEM_ERROR = "system_error"


class Actor(str, Enum):
    SYSTEM = "system"
    USER = "user"


class ActivityLogEntry(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    event_type: EventType
    actor: Actor = Actor.SYSTEM
    description: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)
