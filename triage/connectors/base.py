"""
Base Connector

Abstract base class for source connectors. A connector pulls raw events from
one source system (``fetch``) and turns each into an ItemDraft
(``normalize``). ``sync`` glues the two to the ingestion gate.

The source API client itself is injected as an async ``fetcher`` callable;
talking to Gmail, Slack, Linear or Granola is outside the triage core.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, TYPE_CHECKING

import httpx

from ..common.errors import TransientConnectorError
from ..common.schemas import Connector, ItemDraft

if TYPE_CHECKING:
    from ..common.config import TriageConfig
    from ..intake.gate import IngestionGate, SyncResult

logger = logging.getLogger("triage.connectors.base")

Fetcher = Callable[["TriageConfig"], Awaitable[List[Dict[str, Any]]]]


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a source timestamp into an aware UTC datetime.

    Accepts ISO-8601 strings (``Z`` suffix included), epoch seconds, epoch
    milliseconds, Slack-style ``"1700000000.000100"`` strings and datetimes.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        seconds = value / 1000 if value > 1e11 else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    text = str(value).strip()
    try:
        return parse_timestamp(float(text))
    except ValueError:
        pass
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


class BaseConnector(ABC):
    """
    Abstract base class for source connectors.

    Each connector must implement:
    - normalize: Convert one raw event into an ItemDraft (or None to ignore it)

    ``normalize`` raises MalformedItemError for events it cannot read; the
    gate counts those and moves on.
    """

    name: Connector

    def __init__(self, fetcher: Optional[Fetcher] = None):
        """
        Initialize connector.

        Args:
            fetcher: Async callable returning the raw events for one sync
        """
        self._fetcher = fetcher

    @property
    def is_configured(self) -> bool:
        return self._fetcher is not None

    async def fetch(self, config: "TriageConfig") -> List[Dict[str, Any]]:
        """Pull raw events from the source."""
        if self._fetcher is None:
            return []
        return list(await self._fetcher(config))

    @abstractmethod
    def normalize(self, raw_event: Dict[str, Any]) -> Optional[ItemDraft]:
        """
        Convert a raw source event into an ItemDraft.

        Args:
            raw_event: Event exactly as the source API returned it

        Returns:
            ItemDraft, or None if the event should be ignored
        """
        pass

    async def sync(self, config: "TriageConfig", gate: "IngestionGate") -> "SyncResult":
        """
        Fetch and ingest one batch of events.

        Network failures surface as TransientConnectorError so the heartbeat
        can report them and retry on its next run. Per-item failures never
        escape; they are counted in the returned SyncResult.
        """
        from ..intake.gate import SyncResult

        if not self.is_configured:
            return SyncResult(
                connector=self.name.value,
                error=f"{self.name.value} not configured",
            )

        try:
            raw_events = await self.fetch(config)
        except TransientConnectorError:
            raise
        except (httpx.HTTPError, asyncio.TimeoutError, ConnectionError) as e:
            raise TransientConnectorError(self.name.value, str(e) or type(e).__name__) from e

        logger.info("[%s] Fetched %d raw events", self.name.value, len(raw_events))
        result, _ = gate.ingest(self, raw_events)
        return result
