"""
Triage Schemas

Items, batch cards, rules and activity log entries.
"""

from .item import (
    Connector,
    ItemStatus,
    Priority,
    PRIORITY_ORDER,
    Tier,
    TriagePath,
    EmailMeta,
    SlackMeta,
    LinearMeta,
    GranolaMeta,
    ManualMeta,
    SourceMeta,
    LinkedEntity,
    Enrichment,
    ItemDraft,
    Item,
    utc_now,
    generate_item_id,
)
from .rule import INDIVIDUAL, TriggerKind, RuleSource, RuleStatus, RuleTrigger, Rule
from .card import CardAction, BatchCard
from .activity import EventType, Actor, ActivityLogEntry

__all__ = [
    "Connector",
    "ItemStatus",
    "Priority",
    "PRIORITY_ORDER",
    "Tier",
    "TriagePath",
    "EmailMeta",
    "SlackMeta",
    "LinearMeta",
    "GranolaMeta",
    "ManualMeta",
    "SourceMeta",
    "LinkedEntity",
    "Enrichment",
    "ItemDraft",
    "Item",
    "utc_now",
    "generate_item_id",
    "INDIVIDUAL",
    "TriggerKind",
    "RuleSource",
    "RuleStatus",
    "RuleTrigger",
    "Rule",
    "CardAction",
    "BatchCard",
    "EventType",
    "Actor",
    "ActivityLogEntry",
]
