# tests/unit/scan/test_unit_inference.py — v1
"""Tests for scan/inference.py — describe, classify and validate one item."""

from __future__ import annotations

import pytest

from capscan.capability.models import generate_capability_id
from capscan.llm.retry import RetryConfig
from capscan.scan.errors import (
    ClassificationFailed,
    DescriptionUnavailable,
    InvalidGenerativeOutput,
)
from capscan.scan.inference import ItemInferenceAdapter


class TestInfer:
    @pytest.mark.asyncio
    async def test_builds_record(self, inference_adapter):
        record = await inference_adapter.infer("SQL.devopstoolkit.live")
        assert record.id == generate_capability_id("SQL.devopstoolkit.live")
        assert record.resource_name == "SQL.devopstoolkit.live"
        assert record.group == "devopstoolkit.live"
        assert record.version == "v1"
        assert record.api_version == "devopstoolkit.live/v1"
        assert record.capabilities == ["postgresql", "database"]
        assert record.analyzed_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_prompt_contains_name_and_definition(self, inference_adapter, mock_llm_client):
        await inference_adapter.infer("Deployment.apps")
        kwargs = mock_llm_client.complete.call_args.kwargs
        prompt = kwargs["messages"][0].content
        assert "Deployment.apps" in prompt
        assert "KIND:     Deployment" in prompt
        assert kwargs["system"]
        assert kwargs["max_tokens"] == 2048

    @pytest.mark.asyncio
    async def test_long_definition_truncated(self, fake_discovery, mock_llm_client):
        from capscan.discovery.models import ResourceDescription

        async def describe(name):
            return ResourceDescription(resource_name=name, definition="x" * 50_000)

        fake_discovery.describe = describe
        adapter = ItemInferenceAdapter(fake_discovery, mock_llm_client, retry_configs={})
        await adapter.infer("Huge.example.com")
        prompt = mock_llm_client.complete.call_args.kwargs["messages"][0].content
        assert "(truncated)" in prompt
        assert len(prompt) < 25_000

    @pytest.mark.asyncio
    async def test_description_unavailable(self, inference_adapter, fake_discovery, mock_llm_client):
        fake_discovery.broken = {"Missing"}
        with pytest.raises(DescriptionUnavailable) as exc_info:
            await inference_adapter.infer("Missing")
        assert exc_info.value.item == "Missing"
        mock_llm_client.complete.assert_not_called()

    @pytest.mark.asyncio
    async def test_llm_failure(self, inference_adapter, mock_llm_client):
        mock_llm_client.complete.side_effect = RuntimeError("socket closed")
        with pytest.raises(ClassificationFailed, match="socket closed") as exc_info:
            await inference_adapter.infer("Service")
        assert exc_info.value.item == "Service"

    @pytest.mark.asyncio
    async def test_transient_error_retried(self, fake_discovery, mock_llm_client, mock_llm_response):
        mock_llm_client.complete.side_effect = [RuntimeError("429 rate limit"), mock_llm_response]
        adapter = ItemInferenceAdapter(
            fake_discovery, mock_llm_client,
            retry_configs={"rate_limit": RetryConfig(max_retries=1, base_delay_s=0, jitter=False)},
        )
        record = await adapter.infer("Service")
        assert record.resource_name == "Service"
        assert mock_llm_client.complete.call_count == 2

    @pytest.mark.asyncio
    async def test_invalid_output(self, inference_adapter, mock_llm_client, mock_llm_response):
        mock_llm_client.complete.return_value = mock_llm_response.model_copy(
            update={"content": '{"capabilities": "db"}'}
        )
        with pytest.raises(InvalidGenerativeOutput) as exc_info:
            await inference_adapter.infer("Service")
        assert exc_info.value.item == "Service"


class TestPreflight:
    def test_configured(self, inference_adapter):
        assert inference_adapter.preflight() is None

    def test_not_configured(self, fake_discovery, mock_llm_client):
        mock_llm_client.is_configured = False
        adapter = ItemInferenceAdapter(fake_discovery, mock_llm_client)
        assert "not configured" in adapter.preflight()
