"""
Gmail Connector

Normalizes Gmail threads into inbox items. One item per thread: the thread
id is the external id, so a reply never creates a second item.
"""

from typing import Any, Dict, List, Optional

from ..common.errors import MalformedItemError
from ..common.schemas import Connector, EmailMeta, ItemDraft
from .base import BaseConnector, Fetcher, parse_timestamp

AUTO_SENDER_PATTERNS = ("noreply", "no-reply", "notifications", "mailer", "donotreply")
GROUP_RECIPIENT_THRESHOLD = 5


def _addresses(entries: Any) -> List[str]:
    result = []
    for entry in entries or []:
        if isinstance(entry, dict):
            email = entry.get("email")
        else:
            email = entry
        if email:
            result.append(str(email).lower())
    return result


class GmailConnector(BaseConnector):
    """
    Connector for Gmail threads.

    Expected raw shape (one dict per thread, latest message only)::

        {"threadId", "from": {"email", "name"}, "to": [...], "cc": [...],
         "subject", "body" | "snippet", "receivedAt" | "internalDate",
         "labelIds": [...], "hasUnsubscribe": bool}
    """

    name = Connector.EMAIL

    def __init__(self, fetcher: Optional[Fetcher] = None, user_email: str = ""):
        super().__init__(fetcher)
        self._user_email = user_email.lower()
        self._user_domain = self._user_email.split("@")[1] if "@" in self._user_email else ""

    def normalize(self, raw_event: Dict[str, Any]) -> Optional[ItemDraft]:
        thread_id = raw_event.get("threadId") or raw_event.get("thread_id")
        sender = raw_event.get("from") or {}
        if isinstance(sender, str):
            sender = {"email": sender}
        sender_email = (sender.get("email") or "").strip().lower()

        if not thread_id:
            raise MalformedItemError("Email event has no thread id")
        if not sender_email:
            raise MalformedItemError("Email event has no sender", external_id=thread_id)

        to = _addresses(raw_event.get("to"))
        cc = _addresses(raw_event.get("cc"))
        labels = list(raw_event.get("labelIds") or [])
        is_direct = bool(self._user_email) and self._user_email in to

        received = parse_timestamp(raw_event.get("receivedAt") or raw_event.get("internalDate"))
        content = raw_event.get("body") or raw_event.get("snippet") or ""

        draft = ItemDraft(
            connector=Connector.EMAIL,
            external_id=str(thread_id),
            sender=sender_email,
            sender_name=sender.get("name") or None,
            subject=raw_event.get("subject") or "(no subject)",
            content=content,
            tags=self._sender_tags(sender_email, to, cc, bool(raw_event.get("hasUnsubscribe"))),
            source_meta=EmailMeta(
                thread_id=str(thread_id),
                labels=labels,
                to=to,
                cc=cc,
                is_direct=is_direct,
            ),
            raw_payload=raw_event,
        )
        if received:
            draft.received_at = received
        return draft

    def _sender_tags(self, sender: str, to: List[str], cc: List[str], has_unsubscribe: bool) -> List[str]:
        tags = []
        domain = sender.split("@")[1] if "@" in sender else ""

        if self._user_domain and domain == self._user_domain:
            tags.append("Internal")

        if self._user_email:
            if self._user_email in to:
                tags.append("Direct")
            elif self._user_email in cc:
                tags.append("CC")

        if any(pattern in sender for pattern in AUTO_SENDER_PATTERNS):
            tags.append("Auto")

        if has_unsubscribe:
            tags.append("Newsletter")

        if len(to) + len(cc) >= GROUP_RECIPIENT_THRESHOLD:
            tags.append("Group")

        return tags
