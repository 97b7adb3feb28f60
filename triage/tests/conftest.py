"""Shared fixtures for triage tests."""

from datetime import datetime, timedelta, timezone

import pytest


NOW = datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock returning aware UTC datetimes."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    from triage.common.store import TriageStore
    return TriageStore()


@pytest.fixture
def make_item(store):
    """Insert an item into the memory store and return it."""
    from triage.common.schemas import Connector, EmailMeta, Item

    counter = {"n": 0}

    def _make(
        sender: str = "alerts@service.com",
        subject: str = "Subject",
        connector: Connector = Connector.EMAIL,
        external_id: str = None,
        **fields,
    ) -> Item:
        counter["n"] += 1
        if "source_meta" not in fields and connector == Connector.EMAIL:
            fields["source_meta"] = EmailMeta()
        item = Item(
            connector=connector,
            external_id=external_id or f"ext-{counter['n']}",
            sender=sender,
            subject=subject,
            **fields,
        )
        return store.insert_item(item)

    return _make
