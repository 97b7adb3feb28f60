"""
Tests for the lifecycle state machine

Transitions, side effects, undo slots, wake-up and the individual queue.
"""

import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock


@pytest.fixture
def activity(store):
    from triage.common.activity import ActivityLog
    return ActivityLog(store)


@pytest.fixture
def grouper(store, activity, clock):
    from triage.batching import BatchGrouper
    from triage.rules import RuleStore
    return BatchGrouper(store, RuleStore(store, activity, clock=clock), activity, clock=clock)


@pytest.fixture
def machine(store, grouper, activity, clock):
    from triage.lifecycle import LifecycleMachine
    return LifecycleMachine(store, grouper, activity, clock=clock)


class TestParseAction:
    def test_names_and_aliases(self):
        from triage.lifecycle import ActionNeeded, Actioned, Archive, parse_action
        assert parse_action("archive") == Archive()
        assert parse_action("Action_Needed") == ActionNeeded()
        assert parse_action("done") == Actioned()

    def test_snooze_requires_until(self):
        from triage.lifecycle import Snooze, parse_action
        with pytest.raises(ValueError):
            parse_action("snooze")
        action = parse_action("snooze", {"until": "2025-03-11T09:00:00Z"})
        assert isinstance(action, Snooze)
        assert action.until.day == 11

    @pytest.mark.parametrize("duration, expected", [
        ("1h", datetime(2025, 3, 10, 10, 0, tzinfo=timezone.utc)),
        ("4h", datetime(2025, 3, 10, 13, 0, tzinfo=timezone.utc)),
        ("1d", datetime(2025, 3, 11, 9, 0, tzinfo=timezone.utc)),
        ("1w", datetime(2025, 3, 17, 9, 0, tzinfo=timezone.utc)),
        ("tomorrow", datetime(2025, 3, 11, 9, 0, tzinfo=timezone.utc)),
        ("nextweek", datetime(2025, 3, 17, 9, 0, tzinfo=timezone.utc)),
    ])
    def test_snooze_duration_presets(self, clock, duration, expected):
        from triage.lifecycle import parse_action
        assert parse_action("snooze", {"duration": duration}, now=clock()).until == expected

    def test_nextweek_lands_on_monday_morning(self, clock):
        from triage.lifecycle.actions import snooze_until
        thursday_evening = clock.advance(days=3, hours=11)
        assert snooze_until("nextweek", thursday_evening) == datetime(2025, 3, 17, 9, 0, tzinfo=timezone.utc)
        assert snooze_until("tomorrow", thursday_evening) == datetime(2025, 3, 14, 9, 0, tzinfo=timezone.utc)

    def test_unknown_snooze_duration(self, clock):
        from triage.lifecycle import parse_action
        with pytest.raises(ValueError):
            parse_action("snooze", {"duration": "fortnight"}, now=clock())

    def test_classify_requires_batch_type(self):
        from triage.lifecycle import Classify, parse_action
        with pytest.raises(ValueError):
            parse_action("classify", {})
        assert parse_action("classify", {"to": "finance"}) == Classify("finance")

    def test_unknown_action_rejected(self):
        from triage.common.errors import UnknownAction
        from triage.lifecycle import parse_action
        with pytest.raises(UnknownAction):
            parse_action("delete-forever")


class TestTransitions:
    def test_actioned_is_terminal(self, make_item, clock):
        from triage.common.errors import InvalidTransition
        from triage.common.schemas import ItemStatus
        from triage.lifecycle import Actioned, Restore, transition
        item = make_item()
        transition(item, Actioned(), clock())
        assert item.status == ItemStatus.ACTIONED
        with pytest.raises(InvalidTransition):
            transition(item, Restore(), clock())

    def test_snooze_in_past_rejected(self, make_item, clock):
        from triage.common.errors import InvalidTransition
        from triage.lifecycle import Snooze, check_transition
        with pytest.raises(InvalidTransition, match="future"):
            check_transition(make_item(), Snooze(clock() - timedelta(minutes=1)), clock())

    def test_action_needed_sets_deadline(self, make_item, clock):
        from triage.common.schemas import ItemStatus
        from triage.lifecycle import ActionNeeded, transition
        item = make_item()
        transition(item, ActionNeeded(), clock(), action_needed_days=3)
        assert item.status == ItemStatus.ACTION_NEEDED
        assert item.snooze_until == clock() + timedelta(days=3)
        assert item.enrichment.action_needed_at == clock()

    def test_wake(self, make_item, clock):
        from triage.common.schemas import ItemStatus
        from triage.lifecycle import Snooze, transition, wake
        item = make_item()
        transition(item, Snooze(clock() + timedelta(hours=1)), clock())
        assert wake(item, clock()) is False
        assert wake(item, clock() + timedelta(hours=1)) is True
        assert item.status == ItemStatus.NEW
        assert item.snooze_until is None


class TestApplyAction:
    def test_archive_returns_authoritative_result(self, machine, make_item, store):
        from triage.common.schemas import EventType, ItemStatus
        item = make_item()

        result = machine.apply_action(item.id, "archive")

        assert result.applied is True
        assert result.status == ItemStatus.ARCHIVED
        assert store.get_item(item.id).status == ItemStatus.ARCHIVED
        entry = store.list_activity(EventType.TRIAGE_ACTION)[0]
        assert entry.metadata["action"] == "archive"

    def test_reapplying_is_noop(self, machine, make_item):
        item = make_item()
        machine.apply_action(item.id, "archive")
        result = machine.apply_action(item.id, "archive")
        assert result.applied is False
        assert result.reason == "already archived"

    def test_invalid_transition_is_noop_result(self, machine, make_item):
        from triage.common.schemas import ItemStatus
        item = make_item()
        machine.apply_action(item.id, "actioned")
        result = machine.apply_action(item.id, "spam")
        assert result.applied is False
        assert result.status == ItemStatus.ACTIONED
        assert "Cannot spam" in result.reason

    def test_action_needed_on_slack_item_is_noop(self, machine, make_item):
        from triage.common.schemas import Connector, ItemStatus
        item = make_item(connector=Connector.SLACK, sender="U0BOB")
        result = machine.apply_action(item.id, "action-needed")
        assert result.applied is False
        assert result.status == ItemStatus.NEW
        assert "slack" in result.reason

    def test_unknown_action_raises(self, machine, make_item):
        from triage.common.errors import UnknownAction
        item = make_item()
        with pytest.raises(UnknownAction):
            machine.apply_action(item.id, "explode")

    def test_missing_item_raises(self, machine):
        from triage.common.errors import ItemNotFound
        with pytest.raises(ItemNotFound):
            machine.apply_action("itm_missing", "archive")

    def test_restore_clears_action_needed(self, machine, make_item, clock, store):
        from triage.common.schemas import ItemStatus
        item = make_item()
        machine.apply_action(item.id, "action-needed")
        clock.advance(hours=2)

        result = machine.apply_action(item.id, "restore", {"previous_action": "action-needed"})

        restored = store.get_item(item.id)
        assert result.status == ItemStatus.NEW
        assert restored.enrichment.action_needed_at is None
        assert restored.snooze_until is None
        assert restored.requeued_at == clock.now

    def test_archive_detaches_from_card(self, machine, grouper, make_item, store):
        item = make_item()
        other = make_item()
        card = grouper.group_for_batch([item, other], "notifications")

        machine.apply_action(item.id, "archive")

        assert store.get_card(card.id).item_ids == [other.id]

    def test_classify_action_moves_item(self, machine, make_item, store):
        from triage.common.schemas import Tier
        item = make_item()
        result = machine.apply_action(item.id, "classify", {"batch_type": "finance"})

        assert result.applied is True
        moved = store.get_item(item.id)
        assert moved.batch_type == "finance"
        assert moved.tier == Tier.RULE
        assert store.card_for_item(item.id).batch_type == "finance"


class TestSideEffects:
    def test_archive_cancels_tasks(self, store, grouper, make_item):
        from triage.lifecycle import LifecycleMachine
        canceller = Mock(return_value=2)
        machine = LifecycleMachine(store, grouper, task_canceller=canceller)
        item = make_item()

        result = machine.apply_action(item.id, "archive")

        canceller.assert_called_once()
        assert result.side_effects[0].name == "cancel_tasks"
        assert result.side_effects[0].detail == "2"
        assert result.side_effects_ok

    def test_failed_label_keeps_transition(self, store, grouper, make_item):
        from triage.common.schemas import ItemStatus
        from triage.lifecycle import LifecycleMachine
        label_client = Mock(side_effect=RuntimeError("gmail 503"))
        machine = LifecycleMachine(store, grouper, label_client=label_client)
        item = make_item()

        result = machine.apply_action(item.id, "action-needed")

        assert result.applied is True
        assert result.status == ItemStatus.ACTION_NEEDED
        assert not result.side_effects_ok
        assert "gmail 503" in result.side_effects[0].detail
        label_client.assert_called_once_with(store.get_item(item.id), "Action Needed")


class TestUndo:
    def test_undo_restores_status_and_card(self, machine, grouper, make_item, store):
        from triage.common.schemas import ItemStatus
        item = make_item()
        card = grouper.group_for_batch([item], "notifications")
        machine.apply_action(item.id, "archive")
        assert store.find_card(card.id) is None

        restored = machine.undo()

        assert [i.id for i in restored] == [item.id]
        assert store.get_item(item.id).status == ItemStatus.NEW
        assert store.get_card(card.id).item_ids == [item.id]

    def test_second_undo_is_noop(self, machine, make_item):
        item = make_item()
        machine.apply_action(item.id, "spam")
        assert len(machine.undo()) == 1
        assert machine.undo() == []

    def test_noop_action_does_not_replace_undo_slot(self, machine, make_item, store):
        from triage.common.schemas import ItemStatus
        first = make_item()
        second = make_item()
        machine.apply_action(first.id, "archive")
        machine.apply_action(second.id, "actioned")
        machine.apply_action(second.id, "archive")

        machine.undo()

        assert store.get_item(second.id).status == ItemStatus.NEW
        assert store.get_item(first.id).status == ItemStatus.ARCHIVED

    def test_bulk_and_undo_bulk(self, machine, make_item, store):
        from triage.common.schemas import ItemStatus
        items = [make_item() for _ in range(3)]
        machine.apply_action(items[0].id, "actioned")

        results = machine.apply_bulk([i.id for i in items] + ["itm_missing"], "archive")

        assert [r.applied for r in results] == [False, True, True, False]
        assert results[-1].reason == "item not found"

        restored = machine.undo_bulk()
        assert {i.id for i in restored} == {items[1].id, items[2].id}
        assert [store.get_item(i.id).status for i in items] == [
            ItemStatus.ACTIONED, ItemStatus.NEW, ItemStatus.NEW,
        ]
        assert machine.undo_bulk() == []

    def test_triage_path_recorded(self, machine, make_item, store):
        from triage.common.schemas import EventType, TriagePath
        archived, engaged, snoozed = make_item(), make_item(), make_item()

        machine.apply_action(archived.id, "archive")
        machine.apply_action(engaged.id, "actioned")
        machine.apply_action(snoozed.id, "snooze", {"duration": "4h"})

        assert store.get_item(archived.id).enrichment.triage_path == TriagePath.QUICK
        assert store.get_item(engaged.id).enrichment.triage_path == TriagePath.ENGAGED
        assert store.get_item(snoozed.id).enrichment.triage_path is None
        entry = store.list_activity(EventType.TRIAGE_ACTION)[1]
        assert entry.metadata["triage_path"] == "engaged"

    def test_bulk_archive_is_bulk_path_and_undo_clears_it(self, machine, make_item, store):
        from triage.common.schemas import TriagePath
        items = [make_item() for _ in range(2)]

        machine.apply_bulk([i.id for i in items], "archive")
        assert {store.get_item(i.id).enrichment.triage_path for i in items} == {TriagePath.BULK}

        machine.undo_bulk()
        assert {store.get_item(i.id).enrichment.triage_path for i in items} == {None}


class TestWakeAndQueue:
    def test_wake_due(self, machine, make_item, clock, store):
        from triage.common.schemas import ItemStatus
        snoozed = make_item()
        flagged = make_item()
        machine.apply_action(snoozed.id, "snooze", {"until": clock() + timedelta(hours=1)})
        machine.apply_action(flagged.id, "action-needed")

        assert machine.wake_due(clock() + timedelta(hours=2)) == [store.get_item(snoozed.id)]
        woken = machine.wake_due(clock() + timedelta(days=3))
        assert [i.id for i in woken] == [flagged.id]
        assert store.get_item(flagged.id).status == ItemStatus.NEW

    def test_queue_order(self, machine, grouper, make_item, clock):
        from triage.common.schemas import Priority
        old_normal = make_item(received_at=clock() - timedelta(hours=3))
        new_normal = make_item(received_at=clock() - timedelta(hours=1))
        urgent = make_item(priority=Priority.URGENT, received_at=clock() - timedelta(hours=5))
        carded = make_item()
        restored = make_item(priority=Priority.LOW)
        grouper.group_for_batch([carded], "notifications")
        machine.apply_action(restored.id, "archive")
        clock.advance(minutes=1)
        machine.apply_action(restored.id, "restore")

        assert [i.id for i in machine.queue()] == [restored.id, urgent.id, new_normal.id, old_normal.id]
