# src/discovery/discovery_factory.py — v1
"""Factory: instantiate the resource discovery adapter from configuration."""

from __future__ import annotations

from capscan.config.settings import Settings
from capscan.discovery.base_discovery import BaseResourceDiscovery
from capscan.discovery.kubectl_discovery import KubectlDiscovery


def create_discovery(settings: Settings) -> BaseResourceDiscovery:
    """kubectl-backed discovery configured from KUBECTL_* settings."""
    return KubectlDiscovery(
        kubectl_path=settings.kubectl_path,
        kubeconfig=settings.kubeconfig or None,
        context=settings.kubectl_context or None,
        timeout_s=settings.kubectl_timeout_s,
    )
