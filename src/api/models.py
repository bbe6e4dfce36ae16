# src/api/models.py — v1
"""API-level models for capability queries (search, list, lookup)."""

from __future__ import annotations

from pydantic import Field, field_validator

from capscan.capability.models import CapabilityMatch
from capscan.scan.models import CamelModel, CapabilityRecord, Complexity


class SearchRequest(CamelModel):
    """Semantic search over stored capabilities."""

    query: str
    limit: int = Field(default=10, ge=1, le=100)
    complexity: Complexity | None = None
    provider: str | None = None

    @field_validator("query")
    @classmethod
    def _non_empty_query(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("query must not be empty")
        return v


class SearchResponse(CamelModel):
    query: str
    count: int
    results: list[CapabilityMatch] = Field(default_factory=list)


class CapabilityListResponse(CamelModel):
    count: int
    capabilities: list[CapabilityRecord] = Field(default_factory=list)
