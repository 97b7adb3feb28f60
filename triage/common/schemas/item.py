"""
Inbox Item Schema

Core principle: every source event becomes one Item with a fixed set of
triage fields. Source-specific metadata lives in a discriminated union keyed
by connector; the untouched source payload is kept only in ``raw_payload``.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Set, Union

from pydantic import BaseModel, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def generate_item_id() -> str:
    return f"itm_{uuid.uuid4().hex}"


# ============================================================================
# Enums
# ============================================================================

class Connector(str, Enum):
    """Source systems that feed the inbox"""
    EMAIL = "email"
    SLACK = "slack"
    LINEAR = "linear"
    GRANOLA = "granola"
    MANUAL = "manual"


class ItemStatus(str, Enum):
    """Lifecycle state of an item"""
    NEW = "new"
    ARCHIVED = "archived"
    SPAM = "spam"
    SNOOZED = "snoozed"
    ACTIONED = "actioned"
    ACTION_NEEDED = "action-needed"


class Priority(str, Enum):
    URGENT = "urgent"
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


PRIORITY_ORDER = {
    Priority.URGENT: 0,
    Priority.HIGH: 1,
    Priority.NORMAL: 2,
    Priority.LOW: 3,
}


class Tier(str, Enum):
    """Which classification stage produced an item's metadata"""
    RULE = "rule"
    CHEAP_MODEL = "cheap-model"
    EXPENSIVE_MODEL = "expensive-model"
    NONE = "none"


class TriagePath(str, Enum):
    """How the user dealt with an item; feeds rule proposals"""
    BULK = "bulk"        # archived from a card or a bulk selection
    QUICK = "quick"      # archived one by one
    ENGAGED = "engaged"  # acted on or flagged for action


# ============================================================================
# Source metadata (discriminated by connector)
# ============================================================================

class EmailMeta(BaseModel):
    kind: Literal["email"] = "email"
    thread_id: Optional[str] = None
    labels: List[str] = Field(default_factory=list)
    to: List[str] = Field(default_factory=list)
    cc: List[str] = Field(default_factory=list)
    is_direct: bool = False


class SlackMeta(BaseModel):
    kind: Literal["slack"] = "slack"
    channel: str = ""
    channel_type: str = ""  # "im", "mpim", "channel", "group"
    thread_ts: Optional[str] = None
    permalink: Optional[str] = None
    mentions: List[str] = Field(default_factory=list)
    is_direct: bool = False


class LinearMeta(BaseModel):
    kind: Literal["linear"] = "linear"
    issue_key: str = ""
    state: Optional[str] = None
    project: Optional[str] = None
    url: Optional[str] = None
    is_direct: bool = False


class GranolaMeta(BaseModel):
    kind: Literal["granola"] = "granola"
    meeting_id: str = ""
    attendees: List[str] = Field(default_factory=list)
    action_items: List[str] = Field(default_factory=list)
    is_direct: bool = False


class ManualMeta(BaseModel):
    kind: Literal["manual"] = "manual"
    note: Optional[str] = None
    is_direct: bool = False


SourceMeta = Annotated[
    Union[EmailMeta, SlackMeta, LinearMeta, GranolaMeta, ManualMeta],
    Field(discriminator="kind"),
]


# ============================================================================
# Enrichment
# ============================================================================

class LinkedEntity(BaseModel):
    id: str
    name: str
    type: str


class Enrichment(BaseModel):
    """Structured metadata attached by classifiers and lifecycle actions"""
    summary: Optional[str] = None
    suggested_priority: Optional[Priority] = None
    suggested_tags: List[str] = Field(default_factory=list)
    linked_entities: List[LinkedEntity] = Field(default_factory=list)
    action_needed_at: Optional[datetime] = None
    classification_reason: Optional[str] = None
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    ungrouped_from: Optional[str] = None  # batch type the user pulled this item out of
    triage_path: Optional[TriagePath] = None


# ============================================================================
# Items
# ============================================================================

class ItemDraft(BaseModel):
    """Normalized connector output, before the gate assigns identity"""
    connector: Connector
    external_id: str = Field(..., min_length=1)
    sender: str
    sender_name: Optional[str] = None
    subject: str = ""
    content: str = ""
    preview: Optional[str] = None
    received_at: datetime = Field(default_factory=utc_now)
    tags: List[str] = Field(default_factory=list)
    source_meta: Optional[SourceMeta] = None
    raw_payload: Optional[Dict[str, Any]] = None


class Item(BaseModel):
    """Canonical inbox entry"""
    id: str = Field(default_factory=generate_item_id)
    connector: Connector
    external_id: str
    sender: str
    sender_name: Optional[str] = None
    subject: str = ""
    content: str = ""
    preview: Optional[str] = None

    status: ItemStatus = ItemStatus.NEW
    priority: Priority = Priority.NORMAL
    tags: Set[str] = Field(default_factory=set)
    batch_type: Optional[str] = None
    tier: Tier = Tier.NONE
    enrichment: Enrichment = Field(default_factory=Enrichment)

    source_meta: Optional[SourceMeta] = None
    raw_payload: Optional[Dict[str, Any]] = None

    received_at: datetime = Field(default_factory=utc_now)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    snooze_until: Optional[datetime] = None
    requeued_at: Optional[datetime] = None
    classified_at: Optional[datetime] = None

    @classmethod
    def from_draft(cls, draft: ItemDraft, now: Optional[datetime] = None) -> "Item":
        now = now or utc_now()
        return cls(
            connector=draft.connector,
            external_id=draft.external_id,
            sender=draft.sender,
            sender_name=draft.sender_name,
            subject=draft.subject,
            content=draft.content,
            preview=draft.preview or _make_preview(draft.content),
            tags=set(draft.tags),
            source_meta=draft.source_meta,
            raw_payload=draft.raw_payload,
            received_at=draft.received_at,
            created_at=now,
            updated_at=now,
        )

    @property
    def key(self) -> tuple:
        return (self.connector.value, self.external_id)

    @property
    def sender_domain(self) -> str:
        at = self.sender.rfind("@")
        return self.sender[at + 1:].lower() if at >= 0 else ""

    @property
    def is_direct(self) -> bool:
        return bool(self.source_meta and self.source_meta.is_direct)

    @property
    def display_sender(self) -> str:
        if self.sender_name:
            return f"{self.sender_name} <{self.sender}>"
        return self.sender

    def is_classified(self) -> bool:
        return self.classified_at is not None


def _make_preview(content: str, limit: int = 200) -> str:
    text = " ".join(content.split())
    if len(text) <= limit:
        return text
    return text[:limit - 3].rstrip() + "..."
