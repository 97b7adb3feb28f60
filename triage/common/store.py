"""
Triage Store

In-memory tables for items, batch cards, rules and the activity log,
persisted as one JSON document. Every public method takes the store's
re-entrant lock; ``transaction()`` groups several writes so they commit
(and persist) together or roll back together.

Persisted shape::

    {
      "items": [...],
      "batch_cards": [...],
      "rules": [...],
      "activity_log": [...]
    }
"""

import copy
import json
import logging
import os
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from .errors import CardNotFound, DuplicateItem, ItemNotFound
from .schemas import (
    ActivityLogEntry,
    BatchCard,
    Connector,
    EventType,
    Item,
    ItemStatus,
    Rule,
    utc_now,
)

logger = logging.getLogger("triage.common.store")


def _connector_key(connector) -> str:
    return Connector(connector).value


class TriageStore:
    """
    Storage for the triage core.

    Pass ``path=None`` for a memory-only store (tests, dry runs).
    Objects returned by getters are the live rows; call the matching
    ``save_*`` method after mutating them so the change is persisted.
    """

    def __init__(self, path: Optional[Path] = None):
        self._path = Path(path) if path else None
        self._lock = threading.RLock()
        self._depth = 0
        self._dirty = False

        self._items: Dict[str, Item] = {}
        self._external_index: Dict[Tuple[str, str], str] = {}
        self._cards: Dict[str, BatchCard] = {}
        self._rules: Dict[str, Rule] = {}
        self._activity: List[ActivityLogEntry] = []

        self._load()

    @property
    def path(self) -> Optional[Path]:
        return self._path

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self) -> None:
        """Load tables from disk"""
        if self._path is None or not self._path.exists():
            return

        try:
            with open(self._path) as f:
                data = json.load(f)
            self._restore_tables(data)
        except (json.JSONDecodeError, IOError, KeyError, ValueError) as e:
            logger.warning("Failed to load store from %s: %s", self._path, e)
            self._restore_tables({})

    def _restore_tables(self, data: Dict[str, Any]) -> None:
        self._items = {}
        self._external_index = {}
        for raw in data.get("items", []):
            item = Item.model_validate(raw)
            self._items[item.id] = item
            self._external_index[item.key] = item.id

        self._cards = {}
        for raw in data.get("batch_cards", []):
            card = BatchCard.model_validate(raw)
            self._cards[card.id] = card

        self._rules = {}
        for raw in data.get("rules", []):
            rule = Rule.model_validate(raw)
            self._rules[rule.id] = rule

        self._activity = [ActivityLogEntry.model_validate(raw) for raw in data.get("activity_log", [])]

    def snapshot(self) -> Dict[str, Any]:
        """JSON-safe dump of every table."""
        with self._lock:
            return {
                "items": [item.model_dump(mode="json") for item in self._items.values()],
                "batch_cards": [card.model_dump(mode="json") for card in self._cards.values()],
                "rules": [rule.model_dump(mode="json") for rule in self._rules.values()],
                "activity_log": [entry.model_dump(mode="json") for entry in self._activity],
            }

    def save(self) -> None:
        """Write the store to disk (no-op for memory-only stores)"""
        if self._path is None:
            return
        with self._lock:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
            with open(tmp_path, "w") as f:
                json.dump(self.snapshot(), f, indent=2, default=str)
            os.replace(tmp_path, self._path)
            self._dirty = False

    def _commit(self) -> None:
        self._dirty = True
        if self._depth == 0:
            self.save()

    @contextmanager
    def transaction(self) -> Iterator["TriageStore"]:
        """
        Group writes into one commit.

        Nested transactions join the outermost one. If the block raises,
        every table is rolled back to its state when the outermost
        transaction began.
        """
        with self._lock:
            backup = None
            if self._depth == 0:
                backup = (
                    copy.deepcopy(self._items),
                    dict(self._external_index),
                    copy.deepcopy(self._cards),
                    copy.deepcopy(self._rules),
                    list(self._activity),
                )
            self._depth += 1
            try:
                yield self
            except BaseException:
                self._depth -= 1
                if backup is not None:
                    (
                        self._items,
                        self._external_index,
                        self._cards,
                        self._rules,
                        self._activity,
                    ) = backup
                    self._dirty = False
                raise
            self._depth -= 1
            if self._depth == 0 and self._dirty:
                self.save()

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    def has_external(self, connector: str, external_id: str) -> bool:
        with self._lock:
            return (_connector_key(connector), external_id) in self._external_index

    def find_by_external(self, connector: str, external_id: str) -> Optional[Item]:
        with self._lock:
            item_id = self._external_index.get((_connector_key(connector), external_id))
            return self._items.get(item_id) if item_id else None

    def insert_item(self, item: Item) -> Item:
        """Insert a new item; raises DuplicateItem on (connector, external_id) collision."""
        with self._lock:
            if item.key in self._external_index:
                raise DuplicateItem(item.connector.value, item.external_id)
            self._items[item.id] = item
            self._external_index[item.key] = item.id
            self._commit()
            return item

    def find_item(self, item_id: str) -> Optional[Item]:
        with self._lock:
            return self._items.get(item_id)

    def get_item(self, item_id: str) -> Item:
        with self._lock:
            item = self._items.get(item_id)
            if item is None:
                raise ItemNotFound(item_id)
            return item

    def save_item(self, item: Item, touch: bool = True) -> Item:
        """Persist a mutated item. ``touch`` bumps updated_at."""
        with self._lock:
            if item.id not in self._items:
                raise ItemNotFound(item.id)
            if touch:
                item.updated_at = utc_now()
            self._items[item.id] = item
            self._commit()
            return item

    def replace_item(self, item: Item) -> Item:
        """Overwrite a row verbatim (used by undo)."""
        with self._lock:
            self._items[item.id] = item
            self._external_index[item.key] = item.id
            self._commit()
            return item

    def list_items(
        self,
        status: Optional[ItemStatus] = None,
        predicate: Optional[Callable[[Item], bool]] = None,
    ) -> List[Item]:
        with self._lock:
            items = list(self._items.values())
        if status is not None:
            items = [item for item in items if item.status == status]
        if predicate is not None:
            items = [item for item in items if predicate(item)]
        return items

    def count_items(self) -> int:
        with self._lock:
            return len(self._items)

    # ------------------------------------------------------------------
    # Batch cards
    # ------------------------------------------------------------------

    def find_card(self, card_id: str) -> Optional[BatchCard]:
        with self._lock:
            return self._cards.get(card_id)

    def get_card(self, card_id: str) -> BatchCard:
        with self._lock:
            card = self._cards.get(card_id)
            if card is None:
                raise CardNotFound(card_id)
            return card

    def find_card_by_type(self, batch_type: str) -> Optional[BatchCard]:
        with self._lock:
            for card in self._cards.values():
                if card.batch_type == batch_type:
                    return card
            return None

    def card_for_item(self, item_id: str) -> Optional[BatchCard]:
        with self._lock:
            for card in self._cards.values():
                if item_id in card.item_ids:
                    return card
            return None

    def save_card(self, card: BatchCard) -> BatchCard:
        with self._lock:
            self._cards[card.id] = card
            self._commit()
            return card

    def delete_card(self, card_id: str) -> bool:
        with self._lock:
            if self._cards.pop(card_id, None) is None:
                return False
            self._commit()
            return True

    def list_cards(self) -> List[BatchCard]:
        with self._lock:
            return list(self._cards.values())

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def add_rule(self, rule: Rule) -> Rule:
        with self._lock:
            self._rules[rule.id] = rule
            self._commit()
            return rule

    def save_rule(self, rule: Rule) -> Rule:
        with self._lock:
            if rule.id not in self._rules:
                raise KeyError(rule.id)
            self._rules[rule.id] = rule
            self._commit()
            return rule

    def remove_rule(self, rule_id: str) -> bool:
        with self._lock:
            if self._rules.pop(rule_id, None) is None:
                return False
            self._commit()
            return True

    def find_rule(self, rule_id: str) -> Optional[Rule]:
        with self._lock:
            return self._rules.get(rule_id)

    def list_rules(self) -> List[Rule]:
        """Rules in creation order."""
        with self._lock:
            return list(self._rules.values())

    # ------------------------------------------------------------------
    # Activity log
    # ------------------------------------------------------------------

    def append_activity(self, entry: ActivityLogEntry) -> ActivityLogEntry:
        with self._lock:
            self._activity.append(entry)
            self._commit()
            return entry

    def list_activity(
        self,
        event_type: Optional[EventType] = None,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[ActivityLogEntry]:
        """Activity entries, newest first."""
        with self._lock:
            entries = list(reversed(self._activity))
        if event_type is not None:
            entries = [e for e in entries if e.event_type == event_type]
        if since is not None:
            entries = [e for e in entries if e.created_at >= since]
        if limit is not None:
            entries = entries[:limit]
        return entries
