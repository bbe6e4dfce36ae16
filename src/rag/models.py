# src/rag/models.py — v1
"""Types shared by vector store backends."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class SearchResult(BaseModel):
    """One hit returned by a vector store query or lookup."""

    source_type: str = "capability"
    source_id: str
    content: str = ""
    score: float = 0.0
    metadata: dict[str, Any] = Field(default_factory=dict)
