"""
Rule Proposals

Watches how the user handles mail from one sender and proposes a rule once
the pattern is clear:

- every decision was an archive (bulk or quick)  -> "always archive"
- the user engaged after pulling items out of a batch at least twice,
  or engaged with every item                     -> "always surface"

The bar rises each time the user dismisses a proposal for that sender
(3, then 5, then 8 decisions); after three dismissals nothing more is
proposed.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, Optional

from ..common.schemas import INDIVIDUAL, Connector, Item, ItemStatus, TriagePath

PROPOSAL_THRESHOLDS = (3, 5, 8)
MAX_DISMISSALS = 3
MIN_OVERRIDES = 2

# Batch type an accepted "always archive" proposal routes mail to
AUTO_ARCHIVE = "auto-archive"


class ProposalKind(str, Enum):
    ARCHIVE = "archive"
    SURFACE = "surface"


@dataclass
class DecisionCounts:
    bulk: int = 0
    quick: int = 0
    engaged: int = 0
    overrides: int = 0  # engaged after the user pulled the item out of a batch

    @property
    def total(self) -> int:
        return self.bulk + self.quick + self.engaged

    def to_dict(self) -> Dict[str, int]:
        return {
            "bulk": self.bulk,
            "quick": self.quick,
            "engaged": self.engaged,
            "overrides": self.overrides,
            "total": self.total,
        }


@dataclass
class Proposal:
    kind: ProposalKind
    sender: str
    sender_name: Optional[str]
    counts: DecisionCounts

    @property
    def batch_type(self) -> str:
        return AUTO_ARCHIVE if self.kind == ProposalKind.ARCHIVE else INDIVIDUAL

    @property
    def text(self) -> str:
        verb = "archive" if self.kind == ProposalKind.ARCHIVE else "surface"
        return f"Always {verb} emails from {self.sender_name or self.sender}"


def decision_counts(items: Iterable[Item], sender: str) -> DecisionCounts:
    """
    Tally the triage paths of a sender's handled email.

    Items still in ``new`` are not decisions yet; undo puts an item back
    exactly as it was, so undone decisions drop out on their own.
    """
    sender_key = sender.strip().lower()
    counts = DecisionCounts()
    for item in items:
        path = item.enrichment.triage_path
        if (
            path is None
            or item.connector != Connector.EMAIL
            or item.status == ItemStatus.NEW
            or item.sender.strip().lower() != sender_key
        ):
            continue
        if path == TriagePath.BULK:
            counts.bulk += 1
        elif path == TriagePath.QUICK:
            counts.quick += 1
        else:
            counts.engaged += 1
            if item.enrichment.ungrouped_from:
                counts.overrides += 1
    return counts


def proposal_threshold(dismissals: int) -> Optional[int]:
    """Decisions needed before proposing; None once the user has said no enough."""
    if dismissals >= MAX_DISMISSALS:
        return None
    return PROPOSAL_THRESHOLDS[min(dismissals, len(PROPOSAL_THRESHOLDS) - 1)]


def evaluate(
    sender: str,
    counts: DecisionCounts,
    threshold: int,
    sender_name: Optional[str] = None,
) -> Optional[Proposal]:
    if counts.total < threshold:
        return None
    if counts.engaged == 0:
        return Proposal(ProposalKind.ARCHIVE, sender, sender_name, counts)
    if counts.overrides >= MIN_OVERRIDES or counts.engaged == counts.total:
        return Proposal(ProposalKind.SURFACE, sender, sender_name, counts)
    return None
