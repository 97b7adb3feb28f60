"""
Triage Rule Schema

A rule maps one trigger to a batch type (or "individual"). Rules are
append-only: match_count only increments and deleted rules are gone for good.
Only active rules match; proposed and dismissed rules are kept so the
proposal step can see what the user already declined.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, Field

from .item import utc_now

INDIVIDUAL = "individual"


class TriggerKind(str, Enum):
    """Trigger kinds, most specific first"""
    SENDER_EXACT = "sender_exact"
    SENDER_DOMAIN = "sender_domain"
    SUBJECT_CONTAINS = "subject_contains"
    PATTERN = "pattern"


class RuleSource(str, Enum):
    USER_CHAT = "user_chat"
    RECLASSIFY_UI = "reclassify_ui"
    DEFAULT_SEED = "default_seed"
    LEARNED = "learned"  # proposed from triage behavior


class RuleStatus(str, Enum):
    ACTIVE = "active"
    PROPOSED = "proposed"  # waiting for the user to accept or dismiss
    DISMISSED = "dismissed"


class RuleTrigger(BaseModel):
    kind: TriggerKind
    value: str = ""

    def describe(self) -> str:
        if self.kind == TriggerKind.SENDER_EXACT:
            return f"from {self.value}"
        if self.kind == TriggerKind.SENDER_DOMAIN:
            return f"from @{self.value}"
        if self.kind == TriggerKind.SUBJECT_CONTAINS:
            return f'subject contains "{self.value}"'
        return f"matches /{self.value}/"


class Rule(BaseModel):
    id: str = Field(default_factory=lambda: f"rule_{uuid.uuid4().hex[:12]}")
    name: str
    trigger: RuleTrigger
    batch_type: str
    source: RuleSource
    status: RuleStatus = RuleStatus.ACTIVE
    evidence: Dict[str, int] = Field(default_factory=dict)
    match_count: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utc_now)
    last_matched_at: Optional[datetime] = None

    @property
    def keeps_individual(self) -> bool:
        return self.batch_type == INDIVIDUAL
