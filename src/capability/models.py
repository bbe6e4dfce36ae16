# src/capability/models.py — v1
"""Capability identifiers and search result types."""

from __future__ import annotations

import hashlib

from capscan.scan.models import CamelModel, CapabilityRecord


def generate_capability_id(resource_name: str) -> str:
    """Deterministic UUID-shaped ID derived from the resource name.

    sha256 of ``"capability-" + resource_name`` laid out as 8-4-4-4-12 hex,
    so re-scanning a resource overwrites its previous record.
    """
    digest = hashlib.sha256(f"capability-{resource_name}".encode("utf-8")).hexdigest()
    return "-".join(
        (digest[0:8], digest[8:12], digest[12:16], digest[16:20], digest[20:32])
    )


class CapabilityMatch(CamelModel):
    """One semantic search hit."""

    score: float
    capability: CapabilityRecord
