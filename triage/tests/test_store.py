"""Tests for TriageStore persistence and transactions."""

import json
import pytest


def _item(external_id="abc123", sender="alerts@service.com", **fields):
    from triage.common.schemas import Connector, Item
    return Item(connector=Connector.EMAIL, external_id=external_id, sender=sender, **fields)


class TestItems:
    def test_insert_and_lookup(self, store):
        item = store.insert_item(_item())

        assert store.get_item(item.id) is item
        assert store.has_external("email", "abc123")
        assert store.find_by_external("email", "abc123").id == item.id
        assert not store.has_external("slack", "abc123")

    def test_connector_enum_and_string_keys_agree(self, store):
        from triage.common.schemas import Connector
        store.insert_item(_item())
        assert store.has_external(Connector.EMAIL, "abc123")

    def test_duplicate_insert_raises(self, store):
        from triage.common.errors import DuplicateItem
        store.insert_item(_item())
        with pytest.raises(DuplicateItem):
            store.insert_item(_item())
        assert store.count_items() == 1

    def test_get_missing_item_raises(self, store):
        from triage.common.errors import ItemNotFound
        with pytest.raises(ItemNotFound):
            store.get_item("itm_missing")
        assert store.find_item("itm_missing") is None

    def test_list_items_filters(self, store):
        from triage.common.schemas import ItemStatus
        a = store.insert_item(_item("a"))
        b = store.insert_item(_item("b", status=ItemStatus.ARCHIVED))

        assert [i.id for i in store.list_items(status=ItemStatus.NEW)] == [a.id]
        assert [i.id for i in store.list_items(predicate=lambda i: i.external_id == "b")] == [b.id]


class TestCards:
    def test_card_lookup_by_type_and_item(self, store):
        from triage.common.schemas import BatchCard
        card = store.save_card(BatchCard(batch_type="finance", title="Finance", item_ids=["itm_1"]))

        assert store.find_card_by_type("finance").id == card.id
        assert store.card_for_item("itm_1").id == card.id
        assert store.card_for_item("itm_2") is None
        assert store.delete_card(card.id) is True
        assert store.delete_card(card.id) is False

    def test_get_missing_card_raises(self, store):
        from triage.common.errors import CardNotFound
        with pytest.raises(CardNotFound):
            store.get_card("card_missing")


class TestActivity:
    def test_list_activity_newest_first_with_filters(self, store):
        from triage.common.schemas import ActivityLogEntry, EventType
        store.append_activity(ActivityLogEntry(event_type=EventType.TRIAGE_ACTION, description="one"))
        store.append_activity(ActivityLogEntry(event_type=EventType.RULE_CHANGE, description="two"))
        store.append_activity(ActivityLogEntry(event_type=EventType.TRIAGE_ACTION, description="three"))

        assert [e.description for e in store.list_activity()] == ["three", "two", "one"]
        assert [e.description for e in store.list_activity(EventType.TRIAGE_ACTION)] == ["three", "one"]
        assert len(store.list_activity(limit=1)) == 1


class TestTransactions:
    def test_rollback_restores_every_table(self, store):
        from triage.common.schemas import BatchCard
        existing = store.insert_item(_item("keep"))

        with pytest.raises(RuntimeError):
            with store.transaction():
                store.insert_item(_item("dropped"))
                store.save_card(BatchCard(batch_type="finance", title="Finance"))
                raise RuntimeError("boom")

        assert store.count_items() == 1
        assert store.find_item(existing.id) is not None
        assert not store.has_external("email", "dropped")
        assert store.list_cards() == []

    def test_nested_transaction_joins_outer(self, store):
        with pytest.raises(ValueError):
            with store.transaction():
                store.insert_item(_item("outer"))
                with store.transaction():
                    store.insert_item(_item("inner"))
                raise ValueError("outer fails")

        assert store.count_items() == 0


class TestPersistence:
    def test_round_trip_through_disk(self, tmp_path):
        from triage.common.schemas import EmailMeta, Rule, RuleSource, RuleTrigger, TriggerKind
        from triage.common.store import TriageStore

        path = tmp_path / "store.json"
        store = TriageStore(path)
        item = store.insert_item(_item(tags={"Direct"}, source_meta=EmailMeta(thread_id="abc123", is_direct=True)))
        store.add_rule(Rule(
            name="GitHub -> notifications",
            trigger=RuleTrigger(kind=TriggerKind.SENDER_DOMAIN, value="github.com"),
            batch_type="notifications",
            source=RuleSource.DEFAULT_SEED,
        ))

        reopened = TriageStore(path)
        loaded = reopened.get_item(item.id)
        assert loaded.tags == {"Direct"}
        assert loaded.is_direct is True
        assert loaded.source_meta.kind == "email"
        assert reopened.list_rules()[0].trigger.value == "github.com"

        data = json.loads(path.read_text())
        assert set(data) == {"items", "batch_cards", "rules", "activity_log"}

    def test_transaction_saves_once_at_the_end(self, tmp_path):
        from triage.common.store import TriageStore
        path = tmp_path / "store.json"
        store = TriageStore(path)

        with store.transaction():
            store.insert_item(_item("a"))
            assert not path.exists()
        assert path.exists()

    def test_corrupt_file_starts_empty(self, tmp_path, caplog):
        import logging
        from triage.common.store import TriageStore
        path = tmp_path / "store.json"
        path.write_text("{broken")

        with caplog.at_level(logging.WARNING, logger="triage.common.store"):
            store = TriageStore(path)

        assert store.count_items() == 0
        assert "Failed to load store" in caplog.text
