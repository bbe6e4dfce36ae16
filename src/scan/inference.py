# src/scan/inference.py — v1
"""Item inference: describe a resource, classify it, validate the answer.

``infer`` is terminal for one item only: every failure is raised as a
DescriptionUnavailable or ClassificationFailed carrying the resource name,
which the executor records and moves past.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path

from capscan.capability.models import generate_capability_id
from capscan.discovery.base_discovery import BaseResourceDiscovery, DiscoveryError
from capscan.discovery.models import ResourceDescription
from capscan.llm.base_client import BaseLLMClient
from capscan.llm.models import Message
from capscan.llm.retry import LLMRetryExhausted, RetryConfig, with_retry
from capscan.scan.errors import ClassificationFailed, DescriptionUnavailable
from capscan.scan.models import CapabilityRecord
from capscan.scan.validator import validate_capability_output

logger = logging.getLogger(__name__)

_PROMPT_PATH = Path(__file__).parent / "prompts" / "capability_inference.txt"

_SYSTEM_PROMPT = (
    "You classify Kubernetes resource types by the capabilities they offer. "
    "Answer with a single JSON object and nothing else."
)

# Definitions of large CRDs can run to hundreds of KB
_MAX_DEFINITION_CHARS = 20_000


class ItemInferenceAdapter:
    """Turns one resource name into a validated CapabilityRecord."""

    def __init__(
        self,
        discovery: BaseResourceDiscovery,
        llm: BaseLLMClient,
        max_tokens: int = 2048,
        temperature: float = 0.2,
        retry_configs: dict[str, RetryConfig] | None = None,
    ) -> None:
        self._discovery = discovery
        self._llm = llm
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._retry_configs = retry_configs
        self._prompt_template: str | None = None

    def preflight(self) -> str | None:
        """Return a reason the adapter cannot classify anything, or None."""
        if not self._llm.is_configured:
            return (
                f"Classification service ({self._llm.provider_name}) is not configured: "
                "set the provider API key"
            )
        return None

    async def infer(self, resource_name: str) -> CapabilityRecord:
        """Classify one resource.

        Raises:
            DescriptionUnavailable: The resource could not be described.
            ClassificationFailed: The LLM call failed or its output was rejected.
        """
        try:
            description = await self._discovery.describe(resource_name)
        except DiscoveryError as e:
            raise DescriptionUnavailable(
                resource_name, f"Cannot describe {resource_name}: {e}"
            ) from e

        prompt = self._format_prompt(description)
        try:
            response = await with_retry(
                self._llm.complete,
                messages=[Message(role="user", content=prompt)],
                system=_SYSTEM_PROMPT,
                max_tokens=self._max_tokens,
                temperature=self._temperature,
                operation=f"classify:{resource_name}",
                retry_configs=self._retry_configs,
            )
        except LLMRetryExhausted as e:
            raise ClassificationFailed(
                resource_name, f"Classification of {resource_name} failed: {e.last_error}"
            ) from e

        payload = validate_capability_output(response.content, item=resource_name)
        record = CapabilityRecord(
            **payload.model_dump(),
            id=generate_capability_id(resource_name),
            resource_name=resource_name,
            api_version=description.api_version,
            group=description.group,
            version=description.version,
            analyzed_at=datetime.now(timezone.utc),
        )
        logger.debug(
            "Classified %s: complexity=%s confidence=%.2f",
            resource_name, record.complexity, record.confidence,
        )
        return record

    def _load_prompt(self) -> str:
        if self._prompt_template is None:
            self._prompt_template = _PROMPT_PATH.read_text(encoding="utf-8")
        return self._prompt_template

    def _format_prompt(self, description: ResourceDescription) -> str:
        definition = description.definition.strip() or "No resource definition provided"
        if len(definition) > _MAX_DEFINITION_CHARS:
            definition = definition[:_MAX_DEFINITION_CHARS] + "\n... (truncated)"
        return self._load_prompt().format(
            resource_name=description.resource_name,
            resource_definition=definition,
        )
