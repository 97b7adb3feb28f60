"""
Classifier Pipeline

Three tiers, cheapest first:

1. Rules   - deterministic sender/subject rules learned from the user
2. Cheap   - local model, accepted only above a confidence threshold
3. Expensive - hosted model, used when the cheap tier cannot decide

If no tier produces a usable answer the item stays unclassified (tier
``none``) with its default priority. Classification never raises.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional, Sequence, Tuple

from ..common.config import ClassifierConfig
from ..common.errors import ClassificationUnavailable
from ..common.schemas import Item, Priority, Tier, utc_now
from ..rules.store import RuleStore
from .oracle import ClassificationOracle, OracleResult, build_context, build_item_text

logger = logging.getLogger("triage.classifier.pipeline")


@dataclass
class ClassificationResult:
    """Outcome of classifying one item"""
    priority: Priority
    batch_type: Optional[str] = None
    tier: Tier = Tier.NONE
    tags: List[str] = field(default_factory=list)
    summary: Optional[str] = None
    confidence: Optional[float] = None
    reason: str = ""
    rule_id: Optional[str] = None


def default_priority(item: Item) -> Priority:
    return Priority.HIGH if item.is_direct else Priority.NORMAL


class ClassifierPipeline:
    def __init__(
        self,
        rules: RuleStore,
        cheap_oracle: Optional[ClassificationOracle] = None,
        expensive_oracle: Optional[ClassificationOracle] = None,
        config: Optional[ClassifierConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._rules = rules
        self._cheap = cheap_oracle
        self._expensive = expensive_oracle
        self._config = config or ClassifierConfig()
        self._clock = clock

    def _unclassified(self, item: Item, reason: str) -> ClassificationResult:
        return ClassificationResult(priority=default_priority(item), tier=Tier.NONE, reason=reason)

    def _from_oracle(self, item: Item, result: OracleResult, tier: Tier) -> ClassificationResult:
        return ClassificationResult(
            priority=result.priority or default_priority(item),
            batch_type=result.batch_type,
            tier=tier,
            tags=list(result.tags),
            summary=result.summary,
            confidence=result.confidence,
            reason=result.reason,
        )

    async def _ask(
        self,
        oracle: ClassificationOracle,
        text: str,
        context: dict,
    ) -> Optional[OracleResult]:
        try:
            return await oracle.classify(text, context)
        except ClassificationUnavailable as e:
            logger.warning("%s for item %s, falling through", e, context.get("item_id"))
        except Exception as e:
            logger.error("%s failed on item %s: %s", oracle.name, context.get("item_id"), e)
        return None

    def match_rules(self, item: Item, batched_only: bool = False) -> Optional[ClassificationResult]:
        """
        Rule tier on its own; no model is called.

        Args:
            batched_only: treat a winning "individual" rule as no match
        """
        if item.connector.value in self._config.individual_connectors:
            return None

        match = self._rules.match(item)
        if match is None or (batched_only and match.batch_type is None):
            return None

        self._rules.record_match(match.rule.id)
        return ClassificationResult(
            priority=default_priority(item),
            batch_type=match.batch_type,
            tier=Tier.RULE,
            confidence=1.0,
            reason=f"Matched rule: {match.rule.name}",
            rule_id=match.rule.id,
        )

    async def classify(self, item: Item, deep: bool = False) -> ClassificationResult:
        """
        Run an item down the tier ladder.

        Args:
            item: Item to classify
            deep: Ask the expensive tier first (explicit user request)
        """
        if item.connector.value in self._config.individual_connectors:
            return self._unclassified(item, f"{item.connector.value} items are always individual")

        ruled = self.match_rules(item)
        if ruled is not None:
            return ruled

        text = build_item_text(item)
        context = build_context(item)
        threshold = self._config.cheap_confidence_threshold

        expensive = self._expensive if self._config.deep_enabled else None
        ladder: List[Tuple[Optional[ClassificationOracle], Tier]] = [
            (self._cheap, Tier.CHEAP_MODEL),
            (expensive, Tier.EXPENSIVE_MODEL),
        ]
        if deep:
            ladder.reverse()

        for oracle, tier in ladder:
            if oracle is None:
                continue
            result = await self._ask(oracle, text, context)
            if result is None:
                continue
            if tier == Tier.CHEAP_MODEL and result.confidence < threshold:
                logger.info(
                    "Cheap tier confidence %.2f below %.2f for item %s",
                    result.confidence, threshold, item.id,
                )
                continue
            return self._from_oracle(item, result, tier)

        return self._unclassified(item, "No classifier produced a usable result")

    def apply(self, item: Item, result: ClassificationResult) -> Item:
        """Merge a classification into the item (caller persists it)."""
        item.priority = result.priority
        item.batch_type = result.batch_type
        item.tier = result.tier
        item.tags = set(item.tags) | set(result.tags)

        enrichment = item.enrichment
        if result.summary:
            enrichment.summary = result.summary
        if result.tier in (Tier.CHEAP_MODEL, Tier.EXPENSIVE_MODEL):
            enrichment.suggested_priority = result.priority
        if result.tags:
            enrichment.suggested_tags = list(result.tags)
        enrichment.classification_reason = result.reason or enrichment.classification_reason
        enrichment.confidence = result.confidence

        item.classified_at = self._clock()
        return item

    async def classify_many(
        self,
        items: Sequence[Item],
        batch_size: Optional[int] = None,
        delay: Optional[float] = None,
        deep: bool = False,
    ) -> List[Tuple[Item, ClassificationResult]]:
        """
        Classify items in small concurrent batches.

        A failure on one item yields an unclassified result for that item
        only. Batches are separated by ``delay`` seconds.
        """
        size = max(1, batch_size or self._config.batch_size)
        pause = self._config.batch_delay_seconds if delay is None else delay
        results: List[Tuple[Item, ClassificationResult]] = []

        for start in range(0, len(items), size):
            chunk = items[start:start + size]
            outcomes = await asyncio.gather(
                *(self.classify(item, deep=deep) for item in chunk),
                return_exceptions=True,
            )
            for item, outcome in zip(chunk, outcomes):
                if isinstance(outcome, Exception):
                    logger.error("Classification failed for item %s: %s", item.id, outcome)
                    outcome = self._unclassified(item, f"Classification error: {outcome}")
                elif isinstance(outcome, BaseException):
                    raise outcome
                results.append((item, outcome))

            if start + size < len(items) and pause > 0:
                await asyncio.sleep(pause)

        return results
