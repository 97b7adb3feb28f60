"""
Ingestion Gate

Normalizes raw connector events, drops the ones already in the store and
inserts the rest as fresh ``new`` items. Per-item failures are counted, never
raised: one bad event does not stop the batch.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, TYPE_CHECKING
from datetime import datetime

from ..common.config import IngestConfig
from ..common.errors import DuplicateItem, MalformedItemError
from ..common.schemas import Connector, Item, ItemDraft, utc_now
from ..common.store import TriageStore

if TYPE_CHECKING:
    from ..connectors.base import BaseConnector

logger = logging.getLogger("triage.intake.gate")


@dataclass
class SyncResult:
    """Counters for one connector sync"""
    connector: str = ""
    synced: int = 0
    skipped: int = 0
    errors: int = 0
    error_messages: List[str] = field(default_factory=list)
    error: Optional[str] = None  # whole-sync failure, e.g. connector not configured

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "connector": self.connector,
            "synced": self.synced,
            "skipped": self.skipped,
            "errors": self.errors,
            "error_messages": list(self.error_messages),
            "error": self.error,
        }


class IngestionGate:
    """Dedup and insert point for every connector."""

    def __init__(
        self,
        store: TriageStore,
        config: Optional[IngestConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._store = store
        self._config = config or IngestConfig()
        self._clock = clock

    def exists(self, connector: Connector, external_id: str) -> bool:
        return self._store.has_external(connector, external_id)

    def insert(self, draft: ItemDraft) -> Item:
        """
        Create a new item from a draft.

        Raises:
            DuplicateItem: another writer inserted the same key first
        """
        item = Item.from_draft(draft, now=self._clock())
        return self._store.insert_item(item)

    def ingest(
        self,
        connector: "BaseConnector",
        raw_events: Iterable[Dict[str, Any]],
    ) -> Tuple[SyncResult, List[Item]]:
        """
        Normalize and insert a batch of raw events.

        Returns:
            (SyncResult, newly inserted items)
        """
        result = SyncResult(connector=connector.name.value)
        inserted: List[Item] = []

        with self._store.transaction():
            for raw in raw_events:
                try:
                    draft = connector.normalize(raw)
                    if draft is None:
                        result.skipped += 1
                        continue

                    if self.exists(draft.connector, draft.external_id):
                        result.skipped += 1
                        continue

                    try:
                        item = self.insert(draft)
                    except DuplicateItem:
                        logger.debug("Lost insert race for %s/%s", draft.connector.value, draft.external_id)
                        result.skipped += 1
                        continue

                    inserted.append(item)
                    result.synced += 1
                except Exception as e:
                    result.errors += 1
                    external_id = getattr(e, "external_id", None) or _raw_id(raw)
                    if len(result.error_messages) < self._config.max_logged_errors:
                        message = f"{external_id or '?'}: {e}"
                        result.error_messages.append(message)
                        if isinstance(e, MalformedItemError):
                            logger.warning("[%s] Malformed event %s", result.connector, message)
                        else:
                            logger.warning("[%s] Failed to ingest %s", result.connector, message)

        logger.info(
            "[%s] Ingested %d, skipped %d, errors %d",
            result.connector, result.synced, result.skipped, result.errors,
        )
        return result, inserted


def _raw_id(raw: Any) -> Optional[str]:
    if isinstance(raw, dict):
        for key in ("id", "threadId", "ts"):
            if raw.get(key):
                return str(raw[key])
    return None
