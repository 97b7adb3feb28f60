"""
Batch Card Schema

A card groups items sharing a batch type so they can be handled in bulk.
Item ids are weak references; the card never owns the items.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Dict, List

from pydantic import BaseModel, Field

from .item import utc_now


class CardAction(str, Enum):
    """Default action applied to the checked items of a card"""
    ARCHIVE = "archive"
    SPAM = "spam"
    ACCEPT_AND_ARCHIVE = "accept_and_archive"


class BatchCard(BaseModel):
    id: str = Field(default_factory=lambda: f"card_{uuid.uuid4().hex[:12]}")
    batch_type: str
    title: str
    explanation: str = ""
    item_ids: List[str] = Field(default_factory=list)
    default_action: CardAction = CardAction.ARCHIVE
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def is_empty(self) -> bool:
        return not self.item_ids

    def default_selection(self) -> Dict[str, bool]:
        """Every item starts checked."""
        return {item_id: True for item_id in self.item_ids}

    def add(self, item_id: str) -> bool:
        if item_id in self.item_ids:
            return False
        self.item_ids.append(item_id)
        self.updated_at = utc_now()
        return True

    def discard(self, item_id: str) -> bool:
        if item_id not in self.item_ids:
            return False
        self.item_ids.remove(item_id)
        self.updated_at = utc_now()
        return True
