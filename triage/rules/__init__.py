"""
Triage rules: deterministic sender/subject matching, learning from user
corrections, and rule proposals from triage behavior.
"""

from .matching import RuleConflict, RuleMatch, find_match, order_rules, trigger_matches, trigger_problem
from .proposals import AUTO_ARCHIVE, DecisionCounts, Proposal, ProposalKind, decision_counts
from .store import RuleStore
from .defaults import SEED_RULES

__all__ = [
    "RuleConflict",
    "RuleMatch",
    "find_match",
    "order_rules",
    "trigger_matches",
    "trigger_problem",
    "AUTO_ARCHIVE",
    "DecisionCounts",
    "Proposal",
    "ProposalKind",
    "decision_counts",
    "RuleStore",
    "SEED_RULES",
]
