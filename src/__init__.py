# src/__init__.py — v1
"""capscan — resumable capability scan of cluster resource types."""

from capscan.version import __version__

__all__ = ["__version__"]
