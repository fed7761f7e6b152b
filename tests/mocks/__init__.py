"""
Test doubles for ffstatic components.

This package provides in-memory replacements for collaborators that
otherwise touch the disk or the network, and damaged payloads for
failure-path tests.
"""

from .archives import corrupt_zip_entry
from .cache import MemoryCache

__all__ = ["MemoryCache", "corrupt_zip_entry"]
