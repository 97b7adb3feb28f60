"""
Slack Connector

Normalizes Slack search matches (unread DMs and mentions) into inbox items.
"""

import re
from typing import Any, Dict, List, Optional

from ..common.errors import MalformedItemError
from ..common.schemas import Connector, ItemDraft, SlackMeta
from .base import BaseConnector, Fetcher, parse_timestamp

MENTION_PATTERN = re.compile(r"<@([A-Z0-9]+)(?:\|[^>]*)?>")
SUBJECT_PREVIEW_CHARS = 40


class SlackConnector(BaseConnector):
    """
    Connector for Slack messages.

    Processes:
    - direct and group-direct messages
    - channel messages that mention the user

    Ignores:
    - messages the user sent
    - bot messages
    """

    name = Connector.SLACK

    def __init__(self, fetcher: Optional[Fetcher] = None, user_id: str = ""):
        super().__init__(fetcher)
        self._user_id = user_id

    def normalize(self, raw_event: Dict[str, Any]) -> Optional[ItemDraft]:
        if raw_event.get("bot_id") or raw_event.get("subtype") == "bot_message":
            return None

        user = raw_event.get("user") or ""
        if self._user_id and user == self._user_id:
            return None

        channel = raw_event.get("channel") or {}
        if isinstance(channel, str):
            channel = {"id": channel}
        channel_id = channel.get("id")
        ts = raw_event.get("ts")
        if not channel_id or not ts:
            raise MalformedItemError("Slack message has no channel or ts")

        external_id = f"{channel_id}:{ts}"
        text = raw_event.get("text") or ""
        sender_name = raw_event.get("username") or user or "unknown"
        channel_type = self._channel_type(channel)
        mentions = MENTION_PATTERN.findall(text)
        is_dm = channel_type in ("im", "mpim")
        is_direct = is_dm or (bool(self._user_id) and self._user_id in mentions)

        received = parse_timestamp(ts)
        if received is None:
            raise MalformedItemError(f"Unreadable Slack ts {ts!r}", external_id=external_id)

        return ItemDraft(
            connector=Connector.SLACK,
            external_id=external_id,
            sender=user or "unknown",
            sender_name=sender_name,
            subject=self._subject(channel, is_dm, sender_name, text),
            content=MENTION_PATTERN.sub(lambda m: f"@{m.group(1)}", text),
            received_at=received,
            tags=self._tags(channel, is_dm),
            source_meta=SlackMeta(
                channel=channel.get("name") or channel_id,
                channel_type=channel_type,
                thread_ts=raw_event.get("thread_ts"),
                permalink=raw_event.get("permalink"),
                mentions=mentions,
                is_direct=is_direct,
            ),
            raw_payload=raw_event,
        )

    @staticmethod
    def _channel_type(channel: Dict[str, Any]) -> str:
        if channel.get("is_im"):
            return "im"
        if channel.get("is_mpim"):
            return "mpim"
        if channel.get("is_private"):
            return "group"
        return "channel"

    @staticmethod
    def _subject(channel: Dict[str, Any], is_dm: bool, sender_name: str, text: str) -> str:
        if is_dm:
            return f"DM from {sender_name}"
        preview = text[:SUBJECT_PREVIEW_CHARS]
        suffix = "..." if len(text) > SUBJECT_PREVIEW_CHARS else ""
        return f"#{channel.get('name') or channel.get('id')}: {preview}{suffix}"

    @staticmethod
    def _tags(channel: Dict[str, Any], is_dm: bool) -> List[str]:
        if is_dm:
            return ["DM"]
        tags = ["Mentioned"]
        if channel.get("name"):
            tags.append(f"#{channel['name']}")
        return tags
