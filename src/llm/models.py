# src/llm/models.py — v2
"""Request and response types exchanged with classification providers."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel

# Provider stop reasons meaning the output hit the token ceiling
_TRUNCATION_REASONS = frozenset({"max_tokens", "length"})


class Message(BaseModel):
    """One conversation turn sent to the provider."""

    role: Literal["user", "assistant"]
    content: str


class LLMResponse(BaseModel):
    """Provider-neutral completion result."""

    content: str
    input_tokens: int = 0
    output_tokens: int = 0
    model: str
    provider: str
    latency_ms: int = 0
    stop_reason: str | None = None
    raw_response: Any = None

    @property
    def truncated(self) -> bool:
        """Output was cut off by the token limit; JSON in it is likely incomplete."""
        return self.stop_reason in _TRUNCATION_REASONS
