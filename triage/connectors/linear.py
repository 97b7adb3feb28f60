"""
Linear Connector

Normalizes Linear notifications into inbox items.
"""

from typing import Any, Dict, List, Optional

from ..common.errors import MalformedItemError
from ..common.schemas import Connector, ItemDraft, LinearMeta
from .base import BaseConnector, Fetcher, parse_timestamp

# Linear issue priority: 0 none, 1 urgent, 2 high, 3 medium, 4 low
PRIORITY_TAGS = {1: "Urgent", 2: "High"}
ASSIGNED_TYPES = {"issueAssignedToYou", "issueNewComment"}
MENTION_TYPES = {"issueMention", "issueCommentMention"}


class LinearConnector(BaseConnector):
    """Connector for Linear inbox notifications."""

    name = Connector.LINEAR

    def __init__(self, fetcher: Optional[Fetcher] = None):
        super().__init__(fetcher)

    def normalize(self, raw_event: Dict[str, Any]) -> Optional[ItemDraft]:
        notification_id = raw_event.get("id")
        if not notification_id:
            raise MalformedItemError("Linear notification has no id")

        issue = raw_event.get("issue") or {}
        actor = raw_event.get("actor") or {}
        notification_type = raw_event.get("type") or ""

        received = parse_timestamp(raw_event.get("createdAt"))
        if received is None:
            raise MalformedItemError("Linear notification has no timestamp", external_id=str(notification_id))

        identifier = issue.get("identifier") or ""
        title = issue.get("title") or ""
        subject = f"{identifier}: {title}" if identifier else (title or f"Linear {notification_type}")

        return ItemDraft(
            connector=Connector.LINEAR,
            external_id=str(notification_id),
            sender=actor.get("email") or actor.get("name") or "Linear",
            sender_name=actor.get("name") or "Linear",
            subject=subject,
            content=issue.get("description") or "",
            received_at=received,
            tags=self._tags(notification_type, issue),
            source_meta=LinearMeta(
                issue_key=identifier,
                state=(issue.get("state") or {}).get("name"),
                project=(issue.get("project") or {}).get("name"),
                url=issue.get("url"),
                is_direct=notification_type == "issueAssignedToYou",
            ),
            raw_payload=raw_event,
        )

    @staticmethod
    def _tags(notification_type: str, issue: Dict[str, Any]) -> List[str]:
        tags = []
        priority_tag = PRIORITY_TAGS.get(issue.get("priority") or 0)
        if priority_tag:
            tags.append(priority_tag)

        if notification_type in ASSIGNED_TYPES:
            tags.append("Assigned")
        elif notification_type in MENTION_TYPES:
            tags.append("Mentioned")

        project = (issue.get("project") or {}).get("name")
        if project:
            tags.append(project)

        labels = [
            (label.get("name") or "").lower()
            for label in (issue.get("labels") or {}).get("nodes", [])
        ]
        if "bug" in labels:
            tags.append("Bug")
        if "feature" in labels:
            tags.append("Feature")
        return tags
