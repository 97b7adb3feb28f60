"""
Undo Slots

One slot for the last single-item action and one for the last bulk operation
(bulk action or batch resolution). Each holds verbatim item snapshots plus
the card membership the item had, so undo can put everything back exactly.
Taking a slot empties it; a second undo is a no-op.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from ..common.schemas import BatchCard, Item, utc_now
from ..common.store import TriageStore


@dataclass
class ItemSnapshot:
    item: Item
    card: Optional[BatchCard] = None  # card as it was, for recreating it
    position: Optional[int] = None

    @property
    def item_id(self) -> str:
        return self.item.id


@dataclass
class UndoEntry:
    label: str
    snapshots: List[ItemSnapshot] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)


def snapshot_item(store: TriageStore, item: Item) -> ItemSnapshot:
    card = store.card_for_item(item.id)
    if card is None:
        return ItemSnapshot(item=item.model_copy(deep=True))
    return ItemSnapshot(
        item=item.model_copy(deep=True),
        card=card.model_copy(deep=True),
        position=card.item_ids.index(item.id),
    )


class UndoSlots:
    def __init__(self):
        self._lock = threading.Lock()
        self._single: Optional[UndoEntry] = None
        self._bulk: Optional[UndoEntry] = None

    def record_single(self, entry: UndoEntry) -> None:
        with self._lock:
            self._single = entry

    def record_bulk(self, entry: UndoEntry) -> None:
        with self._lock:
            self._bulk = entry

    def take_single(self) -> Optional[UndoEntry]:
        with self._lock:
            entry, self._single = self._single, None
            return entry

    def take_bulk(self) -> Optional[UndoEntry]:
        with self._lock:
            entry, self._bulk = self._bulk, None
            return entry

    def peek_single(self) -> Optional[UndoEntry]:
        return self._single

    def peek_bulk(self) -> Optional[UndoEntry]:
        return self._bulk
