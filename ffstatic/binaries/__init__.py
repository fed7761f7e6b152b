"""
ffmpeg/ffprobe acquisition: source selection and installation.
"""

from .sources import BinaryKind, SourceSelection, select_source, companion_urls
from .installer import InstallState, InstallationManager, install

__all__ = [
    "BinaryKind",
    "SourceSelection",
    "select_source",
    "companion_urls",
    "InstallState",
    "InstallationManager",
    "install",
]
