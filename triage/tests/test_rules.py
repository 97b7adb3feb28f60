"""Tests for rule matching, the rule store and rule learning."""

import pytest
from datetime import datetime, timedelta, timezone


def _item(sender="alerts@service.com", subject="Weekly digest", content=""):
    from triage.common.schemas import Connector, Item
    return Item(connector=Connector.EMAIL, external_id="x", sender=sender, subject=subject, content=content)


def _rule(kind, value, batch_type="notifications", created_at=None, name=None):
    from triage.common.schemas import Rule, RuleSource, RuleTrigger
    kwargs = {}
    if created_at is not None:
        kwargs["created_at"] = created_at
    return Rule(
        name=name or f"{kind}:{value}",
        trigger=RuleTrigger(kind=kind, value=value),
        batch_type=batch_type,
        source=RuleSource.USER_CHAT,
        **kwargs,
    )


class TestTriggerMatches:
    def test_sender_exact_is_case_insensitive(self):
        from triage.common.schemas import RuleTrigger, TriggerKind
        from triage.rules import trigger_matches
        trigger = RuleTrigger(kind=TriggerKind.SENDER_EXACT, value="Alerts@Service.com")
        assert trigger_matches(trigger, _item())
        assert not trigger_matches(trigger, _item(sender="billing@service.com"))

    def test_sender_domain_uses_part_after_at(self):
        from triage.common.schemas import RuleTrigger, TriggerKind
        from triage.rules import trigger_matches
        trigger = RuleTrigger(kind=TriggerKind.SENDER_DOMAIN, value="service.com")
        assert trigger_matches(trigger, _item())
        assert not trigger_matches(trigger, _item(sender="alerts@notservice.com"))
        assert not trigger_matches(trigger, _item(sender="service.com"))

    def test_subject_contains(self):
        from triage.common.schemas import RuleTrigger, TriggerKind
        from triage.rules import trigger_matches
        trigger = RuleTrigger(kind=TriggerKind.SUBJECT_CONTAINS, value="invitation:")
        assert trigger_matches(trigger, _item(subject="Invitation: Standup @ 10am"))
        assert not trigger_matches(trigger, _item(subject="Standup"))

    def test_pattern_checks_subject_and_content(self):
        from triage.common.schemas import RuleTrigger, TriggerKind
        from triage.rules import trigger_matches
        trigger = RuleTrigger(kind=TriggerKind.PATTERN, value=r"receipt #\d+")
        assert trigger_matches(trigger, _item(content="Your RECEIPT #1042 is attached"))
        assert not trigger_matches(trigger, _item(content="no receipt here"))

    @pytest.mark.parametrize("kind,value", [
        ("sender_domain", "bad@domain.com"),
        ("pattern", "(unclosed"),
        ("subject_contains", "   "),
    ])
    def test_malformed_triggers_never_match(self, kind, value):
        from triage.common.schemas import RuleTrigger, TriggerKind
        from triage.rules import trigger_matches, trigger_problem
        trigger = RuleTrigger(kind=TriggerKind(kind), value=value)
        assert trigger_problem(trigger) is not None
        assert not trigger_matches(trigger, _item(subject="(unclosed bad@domain.com"))


class TestOrdering:
    def test_sender_exact_beats_sender_domain(self):
        from triage.common.schemas import TriggerKind
        from triage.rules import find_match, order_rules
        domain_rule = _rule(TriggerKind.SENDER_DOMAIN, "service.com", "notifications")
        exact_rule = _rule(TriggerKind.SENDER_EXACT, "alerts@service.com", "individual")

        match = find_match(order_rules([domain_rule, exact_rule]), _item())

        assert match.rule.id == exact_rule.id
        assert match.batch_type is None
        assert [c.rule_id for c in match.conflicts] == [domain_rule.id]

    def test_newest_rule_wins_within_kind(self):
        from triage.common.schemas import TriggerKind
        from triage.rules import find_match, order_rules
        base = datetime(2025, 1, 1, tzinfo=timezone.utc)
        older = _rule(TriggerKind.SENDER_DOMAIN, "service.com", "notifications", created_at=base)
        newer = _rule(TriggerKind.SENDER_DOMAIN, "service.com", "finance", created_at=base + timedelta(days=1))

        assert find_match(order_rules([newer, older]), _item()).rule.id == newer.id

    def test_equal_timestamps_fall_back_to_insertion_order(self):
        from triage.common.schemas import TriggerKind
        from triage.rules import order_rules
        at = datetime(2025, 1, 1, tzinfo=timezone.utc)
        first = _rule(TriggerKind.SUBJECT_CONTAINS, "digest", created_at=at)
        second = _rule(TriggerKind.SUBJECT_CONTAINS, "digest", created_at=at)

        assert order_rules([first, second])[0].id == second.id

    def test_agreeing_matches_are_not_conflicts(self):
        from triage.common.schemas import TriggerKind
        from triage.rules import find_match, order_rules
        rules = [_rule(TriggerKind.SENDER_DOMAIN, "service.com"), _rule(TriggerKind.SUBJECT_CONTAINS, "digest")]
        assert find_match(order_rules(rules), _item()).conflicts == []

    def test_no_match(self):
        from triage.common.schemas import TriggerKind
        from triage.rules import find_match
        assert find_match([_rule(TriggerKind.SENDER_DOMAIN, "github.com")], _item()) is None


class TestRuleStore:
    @pytest.fixture
    def rules(self, store, clock):
        from triage.common.activity import ActivityLog
        from triage.rules import RuleStore
        return RuleStore(store, ActivityLog(store), clock=clock)

    def test_create_rule_records_activity(self, rules, store):
        from triage.common.schemas import EventType, RuleTrigger, TriggerKind
        rule = rules.create_rule(RuleTrigger(kind=TriggerKind.SENDER_DOMAIN, value="stripe.com"), "finance")

        assert rule.name == "from @stripe.com -> finance"
        assert rules.list_rules() == [rule]
        entry = store.list_activity(EventType.RULE_CHANGE)[0]
        assert entry.metadata["rule_id"] == rule.id
        assert entry.metadata["change"] == "created"

    def test_create_rule_requires_batch_type(self, rules):
        from triage.common.schemas import RuleTrigger, TriggerKind
        with pytest.raises(ValueError):
            rules.create_rule(RuleTrigger(kind=TriggerKind.SENDER_DOMAIN, value="stripe.com"), "")

    def test_new_rule_visible_immediately(self, rules):
        from triage.common.schemas import RuleTrigger, TriggerKind
        assert rules.match(_item()) is None
        rules.create_rule(RuleTrigger(kind=TriggerKind.SENDER_DOMAIN, value="service.com"), "notifications")
        assert rules.match(_item()).batch_type == "notifications"

    def test_delete_rule(self, rules):
        from triage.common.schemas import RuleTrigger, TriggerKind
        rule = rules.create_rule(RuleTrigger(kind=TriggerKind.SENDER_DOMAIN, value="service.com"), "notifications")
        rules.match(_item())

        assert rules.delete_rule(rule.id) is True
        assert rules.delete_rule(rule.id) is False
        assert rules.match(_item()) is None

    def test_record_match_increments(self, rules, clock):
        from triage.common.schemas import RuleTrigger, TriggerKind
        rule = rules.create_rule(RuleTrigger(kind=TriggerKind.SENDER_DOMAIN, value="service.com"), "notifications")
        clock.advance(minutes=5)
        rules.record_match(rule.id)
        rules.record_match(rule.id)

        stored = rules.get_rule(rule.id)
        assert stored.match_count == 2
        assert stored.last_matched_at == clock.now

    def test_malformed_rule_skipped_and_logged_once(self, rules, store, caplog):
        import logging
        from triage.common.schemas import RuleTrigger, TriggerKind
        store.add_rule(_rule(TriggerKind.PATTERN, "(unclosed"))
        good = rules.create_rule(RuleTrigger(kind=TriggerKind.SENDER_DOMAIN, value="service.com"), "finance")

        with caplog.at_level(logging.WARNING, logger="triage.rules.store"):
            assert [r.id for r in rules.ordered_rules()] == [good.id]
            rules.invalidate()
            rules.ordered_rules()

        assert caplog.text.count("Ignoring malformed rule") == 1

    def test_conflict_logged(self, rules, caplog):
        import logging
        from triage.common.schemas import RuleTrigger, TriggerKind
        rules.create_rule(RuleTrigger(kind=TriggerKind.SENDER_DOMAIN, value="service.com"), "notifications")
        rules.create_rule(RuleTrigger(kind=TriggerKind.SENDER_EXACT, value="alerts@service.com"), "finance")

        with caplog.at_level(logging.WARNING, logger="triage.rules.store"):
            match = rules.match(_item())

        assert match.batch_type == "finance"
        assert "Rule conflict" in caplog.text

    def test_seed_default_rules_is_idempotent(self, rules):
        from triage.rules.defaults import SEED_RULES
        assert rules.seed_default_rules() == len(SEED_RULES)
        assert rules.seed_default_rules() == 0
        assert rules.match(_item(sender="noreply@github.com")).batch_type == "notifications"


class TestLearning:
    @pytest.fixture
    def rules(self, store, clock):
        from triage.rules import RuleStore
        return RuleStore(store, clock=clock)

    def test_reclassify_creates_sender_rule(self, rules):
        from triage.common.schemas import RuleSource, TriggerKind
        rule, created = rules.learn_from_reclassify("Alerts@Service.com", "finance", sender_name="Service Alerts")

        assert created is True
        assert rule.trigger.kind == TriggerKind.SENDER_EXACT
        assert rule.trigger.value == "alerts@service.com"
        assert rule.name == "Service Alerts -> finance"
        assert rule.source == RuleSource.RECLASSIFY_UI

    def test_repeat_reclassify_strengthens(self, rules):
        first, _ = rules.learn_from_reclassify("alerts@service.com", "finance")
        second, created = rules.learn_from_reclassify("alerts@service.com", "finance")

        assert created is False
        assert second.id == first.id
        assert second.match_count == 1
        assert len(rules.list_rules()) == 1

    def test_new_target_overrides_old_rule(self, rules, clock):
        rules.learn_from_reclassify("alerts@service.com", "finance")
        clock.advance(seconds=1)
        rules.learn_from_reclassify("alerts@service.com", "notifications")

        assert rules.match(_item()).batch_type == "notifications"
        assert len(rules.list_rules()) == 2

    def test_alternating_corrections_always_follow_latest(self, rules, clock):
        targets = ["finance", "notifications", "finance", "notifications"]
        created = []
        for target in targets:
            clock.advance(seconds=1)
            _, was_created = rules.learn_from_reclassify("alerts@service.com", target)
            created.append(was_created)
            assert rules.match(_item()).batch_type == target

        assert created == [True, True, True, True]
        assert [r.batch_type for r in rules.list_rules()] == targets

    def test_pending_proposal_is_not_strengthened(self, rules, store):
        from triage.common.schemas import RuleStatus, TriggerKind
        proposed = _rule(TriggerKind.SENDER_EXACT, "alerts@service.com", "finance")
        proposed.status = RuleStatus.PROPOSED
        store.add_rule(proposed)

        rule, created = rules.learn_from_reclassify("alerts@service.com", "finance")

        assert created is True
        assert rule.id != proposed.id
        assert proposed.match_count == 0


def _decided(make_item, path, sender="promo@shop.com", ungrouped_from=None, **fields):
    from triage.common.schemas import Enrichment, ItemStatus
    fields.setdefault("status", ItemStatus.ARCHIVED)
    enrichment = Enrichment(triage_path=path, ungrouped_from=ungrouped_from)
    return make_item(sender=sender, enrichment=enrichment, **fields)


class TestProposalRules:
    def test_decision_counts_only_handled_email(self, make_item, store):
        from triage.common.schemas import Connector, ItemStatus, TriagePath
        from triage.rules import decision_counts
        _decided(make_item, TriagePath.QUICK, sender="Promo@Shop.com")
        _decided(make_item, TriagePath.BULK)
        _decided(make_item, TriagePath.ENGAGED, status=ItemStatus.ACTIONED, ungrouped_from="newsletters")
        _decided(make_item, TriagePath.QUICK, status=ItemStatus.NEW)
        _decided(make_item, TriagePath.QUICK, connector=Connector.SLACK)
        _decided(make_item, TriagePath.QUICK, sender="other@shop.com")
        _decided(make_item, None)

        counts = decision_counts(store.list_items(), "promo@shop.com")

        assert (counts.bulk, counts.quick, counts.engaged, counts.overrides) == (1, 1, 1, 1)
        assert counts.to_dict()["total"] == 3

    def test_threshold_rises_with_dismissals(self):
        from triage.rules.proposals import proposal_threshold
        assert [proposal_threshold(d) for d in range(4)] == [3, 5, 8, None]

    @pytest.mark.parametrize("counts, kind", [
        ({"bulk": 2, "quick": 1}, "archive"),
        ({"engaged": 3}, "surface"),
        ({"quick": 2, "engaged": 2, "overrides": 2}, "surface"),
        ({"quick": 2, "engaged": 1, "overrides": 1}, None),
        ({"quick": 2}, None),
    ])
    def test_evaluate(self, counts, kind):
        from triage.rules import DecisionCounts
        from triage.rules.proposals import evaluate
        proposal = evaluate("promo@shop.com", DecisionCounts(**counts), threshold=3)
        assert (proposal.kind.value if proposal else None) == kind

    def test_surface_proposal_targets_individual(self):
        from triage.common.schemas import INDIVIDUAL
        from triage.rules import DecisionCounts
        from triage.rules.proposals import evaluate
        proposal = evaluate("ceo@acme.com", DecisionCounts(engaged=3), threshold=3, sender_name="The CEO")
        assert proposal.batch_type == INDIVIDUAL
        assert proposal.text == "Always surface emails from The CEO"


class TestProposalStore:
    @pytest.fixture
    def rules(self, store, clock):
        from triage.common.activity import ActivityLog
        from triage.rules import RuleStore
        return RuleStore(store, ActivityLog(store), clock=clock)

    def _archive(self, make_item, n):
        from triage.common.schemas import TriagePath
        for _ in range(n):
            _decided(make_item, TriagePath.QUICK)

    def test_proposal_waits_for_threshold(self, rules, make_item):
        self._archive(make_item, 2)
        assert rules.check_for_proposals("promo@shop.com") is None

    def test_proposed_rule_does_not_match_until_accepted(self, rules, store, make_item):
        from triage.common.schemas import EventType, RuleStatus
        self._archive(make_item, 3)

        rule = rules.check_for_proposals("promo@shop.com")

        assert rule.status == RuleStatus.PROPOSED
        assert rule.batch_type == "auto-archive"
        assert rule.evidence == {"bulk": 0, "quick": 3, "engaged": 0, "overrides": 0, "total": 3}
        assert rules.match(_item(sender="promo@shop.com")) is None
        assert rules.check_for_proposals("promo@shop.com") is None
        assert store.list_activity(EventType.RULE_CHANGE)[0].metadata["change"] == "proposed"

        rules.accept_proposal(rule.id)

        assert rules.match(_item(sender="promo@shop.com")).rule.id == rule.id
        assert rules.list_rules() == [rule]
        assert rules.accept_proposal(rule.id) is None

    def test_no_proposal_while_a_rule_exists(self, rules, make_item):
        from triage.common.schemas import RuleTrigger, TriggerKind
        rules.create_rule(RuleTrigger(kind=TriggerKind.SENDER_EXACT, value="promo@shop.com"), "newsletters")
        self._archive(make_item, 3)
        assert rules.check_for_proposals("promo@shop.com") is None

    def test_dismissals_raise_the_bar_then_stop(self, rules, make_item):
        self._archive(make_item, 3)
        rules.dismiss_proposal(rules.check_for_proposals("promo@shop.com").id)
        assert rules.check_for_proposals("promo@shop.com") is None

        self._archive(make_item, 2)
        rules.dismiss_proposal(rules.check_for_proposals("promo@shop.com").id)

        self._archive(make_item, 2)
        assert rules.check_for_proposals("promo@shop.com") is None
        self._archive(make_item, 1)
        rules.dismiss_proposal(rules.check_for_proposals("promo@shop.com").id)

        self._archive(make_item, 10)
        assert rules.check_for_proposals("promo@shop.com") is None
