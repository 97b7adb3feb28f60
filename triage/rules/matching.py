"""
Rule Matching

Pure trigger evaluation and the deterministic order rules are tried in:
sender_exact, then sender_domain, then subject_contains, then pattern; within
one kind the most recently created rule wins.
"""

import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from ..common.schemas import Item, Rule, RuleTrigger, TriggerKind, INDIVIDUAL

TRIGGER_RANK = {
    TriggerKind.SENDER_EXACT: 0,
    TriggerKind.SENDER_DOMAIN: 1,
    TriggerKind.SUBJECT_CONTAINS: 2,
    TriggerKind.PATTERN: 3,
}


@dataclass
class RuleConflict:
    """A lower-ranked rule that also matched but points elsewhere"""
    rule_id: str
    rule_name: str
    batch_type: str


@dataclass
class RuleMatch:
    rule: Rule
    conflicts: List[RuleConflict] = field(default_factory=list)

    @property
    def batch_type(self) -> Optional[str]:
        """Target batch type; None when the rule keeps items individual."""
        if self.rule.batch_type == INDIVIDUAL:
            return None
        return self.rule.batch_type


def trigger_problem(trigger: RuleTrigger) -> Optional[str]:
    """Why a trigger can never match, or None if it is well formed."""
    value = (trigger.value or "").strip()
    if not value:
        return "empty trigger value"
    if trigger.kind == TriggerKind.SENDER_DOMAIN and ("@" in value or " " in value):
        return f"invalid domain {value!r}"
    if trigger.kind == TriggerKind.PATTERN:
        try:
            re.compile(value)
        except re.error as e:
            return f"invalid pattern: {e}"
    return None


def _domain_of(sender: str) -> str:
    at = sender.rfind("@")
    return sender[at + 1:].strip().lower() if at >= 0 else ""


def trigger_matches(trigger: RuleTrigger, item: Item) -> bool:
    """Evaluate one trigger against an item. Malformed triggers never match."""
    if trigger_problem(trigger) is not None:
        return False

    value = trigger.value.strip()

    if trigger.kind == TriggerKind.SENDER_EXACT:
        return item.sender.strip().lower() == value.lower()

    if trigger.kind == TriggerKind.SENDER_DOMAIN:
        domain = _domain_of(item.sender)
        return bool(domain) and domain == value.lower()

    if trigger.kind == TriggerKind.SUBJECT_CONTAINS:
        return value.lower() in (item.subject or "").lower()

    if trigger.kind == TriggerKind.PATTERN:
        regex = re.compile(value, re.IGNORECASE)
        return bool(regex.search(item.subject or "") or regex.search(item.content or ""))

    return False


def order_rules(rules: Iterable[Rule]) -> List[Rule]:
    """
    Sort rules into match order.

    ``rules`` is expected in creation order; on equal rank and equal
    created_at the later entry still wins.
    """
    indexed = list(enumerate(rules))
    indexed.sort(
        key=lambda pair: (
            TRIGGER_RANK[pair[1].trigger.kind],
            -pair[1].created_at.timestamp(),
            -pair[0],
        )
    )
    return [rule for _, rule in indexed]


def find_match(ordered_rules: Iterable[Rule], item: Item) -> Optional[RuleMatch]:
    """First matching rule plus every other match that disagrees with it."""
    winner: Optional[Rule] = None
    conflicts: List[RuleConflict] = []

    for rule in ordered_rules:
        if not trigger_matches(rule.trigger, item):
            continue
        if winner is None:
            winner = rule
        elif rule.batch_type != winner.batch_type:
            conflicts.append(RuleConflict(rule.id, rule.name, rule.batch_type))

    if winner is None:
        return None
    return RuleMatch(rule=winner, conflicts=conflicts)
