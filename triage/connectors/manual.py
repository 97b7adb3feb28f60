"""
Manual Connector

Items the user adds by hand (bookmarklet, quick capture). There is nothing
to fetch; drafts arrive through TriageInbox.add_manual_item.
"""

import uuid
from typing import Any, Dict, Optional

from ..common.errors import MalformedItemError
from ..common.schemas import Connector, ItemDraft, ManualMeta
from .base import BaseConnector


class ManualConnector(BaseConnector):
    name = Connector.MANUAL

    def normalize(self, raw_event: Dict[str, Any]) -> Optional[ItemDraft]:
        subject = (raw_event.get("subject") or "").strip()
        content = raw_event.get("content") or ""
        if not subject and not content.strip():
            raise MalformedItemError("Manual item needs a subject or content")

        return ItemDraft(
            connector=Connector.MANUAL,
            external_id=str(raw_event.get("id") or uuid.uuid4().hex),
            sender=raw_event.get("sender") or "me",
            sender_name=raw_event.get("sender_name"),
            subject=subject or content.strip().splitlines()[0][:80],
            content=content,
            tags=list(raw_event.get("tags") or []),
            source_meta=ManualMeta(
                note=raw_event.get("note"),
                is_direct=True,
            ),
            raw_payload=raw_event,
        )
