"""
Provider-agnostic LLM client for the expensive classification tier.

One text-in, text-out call (``generate``) over Anthropic, OpenAI or Google
Gemini. SDKs are imported lazily; a missing key or package leaves the
client unavailable instead of failing, and the classifier skips the tier.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .config import LLMConfig

logger = logging.getLogger("triage.common.llm_client")

_PROVIDERS = ("anthropic", "openai", "google")


def resolve_provider(config: "LLMConfig") -> str:
    """Pick the first provider that has an API key when set to "auto"."""
    provider = (config.provider or "anthropic").lower()
    if provider != "auto":
        return provider
    keys = {
        "anthropic": config.anthropic_api_key,
        "openai": config.openai_api_key,
        "google": config.google_api_key,
    }
    return next((name for name in _PROVIDERS if keys[name]), "anthropic")


class LLMClient:
    """Unified text generation client across LLM providers."""

    def __init__(
        self,
        provider: str = "anthropic",
        model: str = "",
        anthropic_api_key: Optional[str] = None,
        openai_api_key: Optional[str] = None,
        google_api_key: Optional[str] = None,
    ) -> None:
        self.provider = (provider or "anthropic").lower()
        self.model = model
        self._client: Any = None

        if self.provider == "auto":
            raise ValueError('"auto" provider must be resolved first; use LLMClient.from_config()')
        if self.provider not in _PROVIDERS:
            logger.warning("Unsupported LLM provider: %s", self.provider)
            return

        api_key = {
            "anthropic": anthropic_api_key,
            "openai": openai_api_key,
            "google": google_api_key,
        }[self.provider]
        if not api_key:
            logger.info("%s API key not provided, LLM client unavailable", self.provider)
            return

        try:
            self._client = getattr(self, f"_connect_{self.provider}")(api_key)
        except ImportError as e:
            logger.warning("SDK for %s not installed: %s", self.provider, e)
        except Exception as e:
            logger.warning("Failed to initialize %s client: %s", self.provider, e)

    @classmethod
    def from_config(cls, config: "LLMConfig") -> "LLMClient":
        provider = resolve_provider(config)
        model = {
            "anthropic": config.anthropic_model,
            "openai": config.openai_model,
            "google": config.google_model,
        }.get(provider, "")
        return cls(
            provider=provider,
            model=model,
            anthropic_api_key=config.anthropic_api_key,
            openai_api_key=config.openai_api_key,
            google_api_key=config.google_api_key,
        )

    @property
    def is_available(self) -> bool:
        return self._client is not None

    # ------------------------------------------------------------------
    # SDK setup
    # ------------------------------------------------------------------

    @staticmethod
    def _connect_anthropic(api_key: str) -> Any:
        import anthropic
        return anthropic.Anthropic(api_key=api_key)

    @staticmethod
    def _connect_openai(api_key: str) -> Any:
        from openai import OpenAI
        return OpenAI(api_key=api_key)

    @staticmethod
    def _connect_google(api_key: str) -> Any:
        import google.generativeai as genai
        genai.configure(api_key=api_key)
        return genai

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def _generate_anthropic(self, prompt: str, system: Optional[str], max_tokens: int, timeout: float) -> str:
        extra = {"system": system} if system else {}
        response = self._client.messages.create(
            model=self.model,
            max_tokens=max_tokens,
            messages=[{"role": "user", "content": prompt}],
            timeout=timeout,
            **extra,
        )
        return response.content[0].text

    def _generate_openai(self, prompt: str, system: Optional[str], max_tokens: int, timeout: float) -> str:
        messages = [{"role": "system", "content": system}] if system else []
        messages.append({"role": "user", "content": prompt})
        response = self._client.chat.completions.create(
            model=self.model,
            max_tokens=max_tokens,
            messages=messages,
            timeout=timeout,
        )
        return response.choices[0].message.content or ""

    def _generate_google(self, prompt: str, system: Optional[str], max_tokens: int, timeout: float) -> str:
        model = self._client.GenerativeModel(model_name=self.model, system_instruction=system or None)
        response = model.generate_content(
            prompt,
            generation_config={"max_output_tokens": max_tokens},
            request_options={"timeout": timeout},
        )
        return response.text

    def generate(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        max_tokens: int = 512,
        timeout: float = 30.0,
    ) -> str:
        """
        Raises:
            RuntimeError: no provider is available
        """
        if not self.is_available:
            raise RuntimeError("LLM client is not available")
        generate = getattr(self, f"_generate_{self.provider}")
        return generate(prompt, system, max_tokens, timeout).strip()

    async def agenerate(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        max_tokens: int = 512,
        timeout: float = 30.0,
    ) -> str:
        """Run generate() off the event loop, bounded by ``timeout``."""
        return await asyncio.wait_for(
            asyncio.to_thread(self.generate, prompt, system=system, max_tokens=max_tokens, timeout=timeout),
            timeout=timeout,
        )
