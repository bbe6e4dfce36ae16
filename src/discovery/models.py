# src/discovery/models.py — v1
"""Types returned by resource discovery adapters."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ResourceType(BaseModel):
    """One row of the cluster's API resource listing."""

    name: str
    kind: str
    group: str = ""
    api_version: str
    namespaced: bool = True
    short_names: list[str] = Field(default_factory=list)

    @property
    def scan_name(self) -> str:
        """``Kind.group`` for grouped resources, ``Kind`` for core ones."""
        return f"{self.kind}.{self.group}" if self.group else self.kind


class ResourceDescription(BaseModel):
    """Schema explanation of one resource type."""

    resource_name: str
    definition: str
    api_version: str | None = None
    group: str | None = None
    version: str | None = None
