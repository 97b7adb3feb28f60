"""
Cheap tier: local Ollama model.

Talks to the Ollama HTTP API (``/api/tags`` for the availability check,
``/api/generate`` for classification). The check result is cached for
``availability_ttl_seconds`` so a dead Ollama is not hit once per item.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from ..common.config import CheapModelConfig
from ..common.errors import ClassificationUnavailable
from ..common.ttl_cache import TTLCache
from .oracle import (
    ClassificationOracle,
    OracleResult,
    parse_llm_json,
    policy_prompt,
    render_prompt,
    result_from_payload,
)

logger = logging.getLogger("triage.classifier.cheap_oracle")


class OllamaOracle(ClassificationOracle):
    name = "cheap-model"

    def __init__(
        self,
        config: Optional[CheapModelConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            config: Ollama endpoint, model and timeouts
            transport: httpx transport override (tests use httpx.MockTransport)
        """
        self._config = config or CheapModelConfig()
        self._transport = transport
        self._availability: TTLCache[bool] = TTLCache(self._config.availability_ttl_seconds)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._config.base_url.rstrip("/"),
            timeout=httpx.Timeout(self._config.timeout_seconds),
            transport=self._transport,
        )

    async def is_available(self) -> bool:
        if not self._config.enabled:
            return False

        hit, available = self._availability.peek()
        if hit:
            return bool(available)

        try:
            async with self._client() as client:
                response = await client.get("/api/tags")
                available = response.status_code == 200
        except httpx.HTTPError as e:
            logger.info("Ollama not reachable at %s: %s", self._config.base_url, e)
            available = False

        self._availability.put(available)
        return available

    async def classify(self, text: str, context: Dict[str, Any]) -> Optional[OracleResult]:
        if not await self.is_available():
            raise ClassificationUnavailable(self.name, "Ollama is not reachable")

        payload = {
            "model": self._config.model,
            "system": policy_prompt(),
            "prompt": render_prompt(text, context),
            "stream": False,
            "format": "json",
            "options": {"temperature": 0.1},
        }

        try:
            async with self._client() as client:
                response = await client.post("/api/generate", json=payload)
                response.raise_for_status()
                body = response.json()
        except httpx.TimeoutException as e:
            self._availability.invalidate()
            raise ClassificationUnavailable(self.name, f"timed out after {self._config.timeout_seconds}s") from e
        except httpx.HTTPStatusError as e:
            raise ClassificationUnavailable(self.name, f"HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            self._availability.invalidate()
            raise ClassificationUnavailable(self.name, str(e) or type(e).__name__) from e
        except ValueError as e:
            logger.warning("Ollama returned a non-JSON body: %s", e)
            return None

        raw = body.get("response", "") if isinstance(body, dict) else ""
        result = result_from_payload(parse_llm_json(raw), raw=raw)
        if result is None:
            logger.warning("No usable JSON in Ollama response for %s", context.get("item_id", "?"))
        return result
