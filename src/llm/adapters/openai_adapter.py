# src/llm/adapters/openai_adapter.py — v2
"""OpenAI chat completions adapter."""

from __future__ import annotations

import logging
import time
from typing import Any

from capscan.llm.base_client import BaseLLMClient
from capscan.llm.models import LLMResponse, Message

logger = logging.getLogger(__name__)


class OpenAIAdapter(BaseLLMClient):
    """Classification client for GPT models; system prompt sent as first message."""

    def __init__(self, model: str = "gpt-4o", api_key: str = "", timeout_s: float = 60.0):
        self._model = model
        self._api_key = api_key
        self._timeout_s = timeout_s
        self.__client = None

    @property
    def _client(self):
        if self.__client is None:
            try:
                import openai
            except ImportError as e:
                raise ImportError("openai package required: pip install openai") from e
            self.__client = openai.AsyncOpenAI(
                api_key=self._api_key, timeout=self._timeout_s, max_retries=0
            )
        return self.__client

    async def complete(
        self,
        messages: list[Message],
        system: str | None = None,
        max_tokens: int = 2048,
        temperature: float = 0.2,
    ) -> LLMResponse:
        chat: list[dict[str, Any]] = [{"role": "system", "content": system}] if system else []
        chat.extend(m.model_dump() for m in messages)

        started = time.monotonic()
        resp = await self._client.chat.completions.create(
            model=self._model,
            messages=chat,
            max_tokens=max_tokens,
            temperature=temperature,
        )
        elapsed_ms = int((time.monotonic() - started) * 1000)

        choice = resp.choices[0]
        usage = resp.usage
        result = LLMResponse(
            content=choice.message.content or "",
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
            model=self._model,
            provider="openai",
            latency_ms=elapsed_ms,
            stop_reason=getattr(choice, "finish_reason", None),
            raw_response=resp,
        )
        if result.truncated:
            logger.warning("GPT output truncated at %d tokens (model=%s)", max_tokens, self._model)
        return result

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key)

    @property
    def provider_name(self) -> str:
        return "openai"

    @property
    def model_name(self) -> str:
        return self._model
