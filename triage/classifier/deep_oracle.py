"""
Expensive tier: hosted LLM through LLMClient.

Used when the cheap tier is unavailable, unsure, or when a deep
classification is requested explicitly.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from ..common.errors import ClassificationUnavailable
from ..common.llm_client import LLMClient
from .oracle import (
    ClassificationOracle,
    OracleResult,
    parse_llm_json,
    policy_prompt,
    render_prompt,
    result_from_payload,
)

logger = logging.getLogger("triage.classifier.deep_oracle")


class LLMOracle(ClassificationOracle):
    name = "expensive-model"

    def __init__(self, llm_client: LLMClient, timeout_seconds: float = 30.0, max_tokens: int = 300):
        self._llm = llm_client
        self._timeout = timeout_seconds
        self._max_tokens = max_tokens

    @property
    def is_available(self) -> bool:
        return self._llm.is_available

    async def classify(self, text: str, context: Dict[str, Any]) -> Optional[OracleResult]:
        if not self._llm.is_available:
            raise ClassificationUnavailable(self.name, "no LLM provider configured")

        try:
            raw = await self._llm.agenerate(
                render_prompt(text, context),
                system=policy_prompt(),
                max_tokens=self._max_tokens,
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as e:
            raise ClassificationUnavailable(self.name, f"timed out after {self._timeout}s") from e
        except Exception as e:
            raise ClassificationUnavailable(self.name, f"{self._llm.provider} request failed: {e}") from e

        result = result_from_payload(parse_llm_json(raw), raw=raw)
        if result is None:
            logger.warning("No usable JSON in %s response for %s", self._llm.provider, context.get("item_id", "?"))
        return result
