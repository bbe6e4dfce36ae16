# src/llm/base_client.py — v1
"""Abstract client interface for the generative classification service."""

from __future__ import annotations

from abc import ABC, abstractmethod

from capscan.llm.models import LLMResponse, Message


class BaseLLMClient(ABC):
    """Unified interface for all LLM providers."""

    @abstractmethod
    async def complete(
        self,
        messages: list[Message],
        system: str | None = None,
        max_tokens: int = 2048,
        temperature: float = 0.2,
    ) -> LLMResponse:
        """Text completion."""

    @property
    @abstractmethod
    def is_configured(self) -> bool:
        """Whether credentials are present so calls can be attempted."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Provider identifier (anthropic, openai)."""

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Model identifier."""
