# src/llm/retry.py — v2
"""Backoff policy for classification calls.

Failures are sorted into categories by exception type and message. Only
categories with a policy are retried; authentication and unrecognised
failures surface on the first attempt so the batch records them against
the item and moves on.

Changelog:
    v2: Rule table for categories, per-policy delay cap.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

# (category, markers in the exception type name, markers in the message)
# First matching rule wins.
_ERROR_RULES: tuple[tuple[str, tuple[str, ...], tuple[str, ...]], ...] = (
    ("auth", ("authentication", "permissiondenied"), ("401", "403", "api key")),
    ("rate_limit", ("ratelimit",), ("429", "rate limit")),
    ("timeout", ("timeout",), ("timeout", "timed out")),
    ("server_error", ("internalserver", "serviceunavailable"),
     ("500", "502", "503", "504", "529", "overloaded", "server error")),
)


class LLMRetryExhausted(Exception):
    """A classification call failed for good: out of retries or not retryable."""

    def __init__(self, operation: str, error_type: str, attempts: int, last_error: Exception):
        self.operation = operation
        self.error_type = error_type
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"{operation}: gave up after {attempts} attempt(s) [{error_type}]: {last_error}"
        )


@dataclass(frozen=True)
class RetryConfig:
    """How often and how patiently one failure category is retried."""

    max_retries: int
    base_delay_s: float
    backoff_factor: float = 2.0
    jitter: bool = True
    max_delay_s: float = 60.0

    def delay(self, retry_index: int) -> float:
        """Seconds to wait before retry number ``retry_index`` (0-based)."""
        wait = min(self.base_delay_s * self.backoff_factor ** retry_index, self.max_delay_s)
        if self.jitter:
            wait *= random.uniform(0.5, 1.5)  # noqa: S311
        return wait


DEFAULT_RETRY_CONFIGS: dict[str, RetryConfig] = {
    "rate_limit": RetryConfig(max_retries=3, base_delay_s=2.0),
    "timeout": RetryConfig(max_retries=2, base_delay_s=1.0, backoff_factor=1.0),
    "server_error": RetryConfig(max_retries=3, base_delay_s=5.0),
}


def classify_error(error: Exception) -> str:
    """Failure category of an exception; ``unknown`` if no rule matches."""
    name = type(error).__name__.lower()
    msg = str(error).lower()
    for category, name_markers, msg_markers in _ERROR_RULES:
        if any(m in name for m in name_markers) or any(m in msg for m in msg_markers):
            return category
    return "unknown"


async def with_retry(
    fn: Callable[..., Awaitable[Any]],
    *args: Any,
    operation: str = "llm_call",
    retry_configs: dict[str, RetryConfig] | None = None,
    **kwargs: Any,
) -> Any:
    """Await ``fn(*args, **kwargs)``, retrying transient failures.

    An empty ``retry_configs`` disables retries entirely.

    Raises:
        LLMRetryExhausted: The failure was not retryable or retries ran out.
    """
    policies = DEFAULT_RETRY_CONFIGS if retry_configs is None else retry_configs
    attempt = 0
    while True:
        attempt += 1
        try:
            return await fn(*args, **kwargs)
        except Exception as e:
            category = classify_error(e)
            policy = policies.get(category)
            if policy is None or attempt > policy.max_retries:
                raise LLMRetryExhausted(operation, category, attempt, e) from e

            wait = policy.delay(attempt - 1)
            logger.warning(
                "%s failed (%s, try %d of %d); next try in %.1fs",
                operation, category, attempt, policy.max_retries + 1, wait,
            )
            await asyncio.sleep(wait)
