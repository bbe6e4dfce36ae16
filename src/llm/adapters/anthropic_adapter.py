# src/llm/adapters/anthropic_adapter.py — v2
"""Anthropic Messages API adapter.

The SDK's own retries are disabled: backoff is handled once, in
``capscan.llm.retry``, so that every attempt is visible in the logs.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from capscan.llm.base_client import BaseLLMClient
from capscan.llm.models import LLMResponse, Message

logger = logging.getLogger(__name__)


class AnthropicAdapter(BaseLLMClient):
    """Classification client for Claude models."""

    def __init__(
        self,
        model: str = "claude-sonnet-4-20250514",
        api_key: str | None = None,
        timeout_s: float = 60.0,
    ) -> None:
        self._model = model
        self._api_key = api_key
        self._timeout_s = timeout_s
        self.__client = None

    @property
    def _client(self):
        """SDK client, built on first use so a missing key only fails on call."""
        if self.__client is None:
            try:
                import anthropic
            except ImportError as e:
                raise ImportError(
                    "anthropic package required: pip install anthropic"
                ) from e
            self.__client = anthropic.AsyncAnthropic(
                api_key=self._api_key or "", timeout=self._timeout_s, max_retries=0
            )
        return self.__client

    async def complete(
        self,
        messages: list[Message],
        system: str | None = None,
        max_tokens: int = 2048,
        temperature: float = 0.2,
    ) -> LLMResponse:
        request: dict[str, Any] = {
            "model": self._model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [m.model_dump() for m in messages],
        }
        if system:
            request["system"] = system

        started = time.monotonic()
        response = await self._client.messages.create(**request)
        elapsed_ms = int((time.monotonic() - started) * 1000)

        text = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
        result = LLMResponse(
            content=text,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            model=response.model,
            provider="anthropic",
            latency_ms=elapsed_ms,
            stop_reason=getattr(response, "stop_reason", None),
            raw_response=response,
        )
        if result.truncated:
            logger.warning(
                "Claude output truncated at %d tokens (model=%s)", max_tokens, self._model
            )
        return result

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key)

    @property
    def provider_name(self) -> str:
        return "anthropic"

    @property
    def model_name(self) -> str:
        return self._model
