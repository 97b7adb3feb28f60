"""
Granola Connector

Normalizes Granola meeting notes into inbox items. Meeting notes are never
grouped into batch cards; the classifier keeps them individual.
"""

import re
from typing import Any, Dict, List, Optional

from ..common.errors import MalformedItemError
from ..common.schemas import Connector, GranolaMeta, ItemDraft
from .base import BaseConnector, Fetcher, parse_timestamp

ACTION_ITEM_PATTERN = re.compile(r"^\s*[-*]\s+\[\s\]\s+(.+)$", re.MULTILINE)
MAX_LISTED_ATTENDEES = 5


def extract_action_items(markdown: str) -> List[str]:
    """Unchecked markdown checkboxes, in order."""
    return [match.strip() for match in ACTION_ITEM_PATTERN.findall(markdown or "")]


class GranolaConnector(BaseConnector):
    """Connector for Granola meeting documents."""

    name = Connector.GRANOLA

    def __init__(self, fetcher: Optional[Fetcher] = None):
        super().__init__(fetcher)

    def normalize(self, raw_event: Dict[str, Any]) -> Optional[ItemDraft]:
        doc_id = raw_event.get("id")
        if not doc_id:
            raise MalformedItemError("Granola document has no id")

        calendar = raw_event.get("google_calendar_data") or {}
        organizer = calendar.get("organizer") or {}
        attendees = [
            attendee.get("displayName") or attendee.get("email")
            for attendee in calendar.get("attendees") or []
            if attendee.get("displayName") or attendee.get("email")
        ]
        title = raw_event.get("title") or "Untitled meeting"
        markdown = raw_event.get("markdown") or ""

        received = parse_timestamp((calendar.get("start") or {}).get("dateTime")) or parse_timestamp(
            raw_event.get("created_at")
        )
        if received is None:
            raise MalformedItemError("Granola document has no start or creation time", external_id=str(doc_id))

        return ItemDraft(
            connector=Connector.GRANOLA,
            external_id=str(doc_id),
            sender=organizer.get("email") or "meeting",
            sender_name=organizer.get("displayName") or title,
            subject=title,
            content=markdown,
            preview=None if markdown else "No notes available",
            received_at=received,
            tags=["Meeting"],
            source_meta=GranolaMeta(
                meeting_id=str(doc_id),
                attendees=attendees[:MAX_LISTED_ATTENDEES],
                action_items=extract_action_items(markdown),
            ),
            raw_payload=raw_event,
        )
