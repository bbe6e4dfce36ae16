# src/discovery/base_discovery.py — v1
"""Abstract resource discovery interface."""

from __future__ import annotations

from abc import ABC, abstractmethod

from capscan.discovery.models import ResourceDescription


class DiscoveryError(Exception):
    """The inspected system could not list or describe resources."""


class BaseResourceDiscovery(ABC):
    """Lists and describes resource types of the inspected system."""

    @abstractmethod
    async def list_resource_types(self) -> list[str]:
        """Names of every resource type, in a stable order.

        Raises:
            DiscoveryError: The system is unreachable or the listing failed.
        """

    @abstractmethod
    async def describe(self, resource_name: str) -> ResourceDescription:
        """Schema explanation for one resource type.

        Raises:
            DiscoveryError: The resource could not be described.
        """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Provider identifier (kubectl)."""
