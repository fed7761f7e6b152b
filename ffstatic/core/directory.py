"""
Directory layout and support matrix for ffstatic.

This module answers two static questions: which platform/architecture
combinations can carry ffmpeg/ffprobe at all, and where things live on disk.

Directory Structure:
    Global directory (~/.ffstatic/ or %USERPROFILE%\\.ffstatic\\):
        - bin/        : Installed ffmpeg/ffprobe executables and their
                        .README/.LICENSE companions

    Download cache (platform cache directory, e.g. ~/.cache/ffstatic/):
        - <sha256>.body : Cached response payload
        - <sha256>.json : Cached response metadata
        - lock/         : Write lock for cache entries
"""

import os
import sys
from pathlib import Path
from typing import Dict, Mapping, Optional

from ffstatic.core.exceptions import FilesystemError

BINARIES = ("ffmpeg", "ffprobe")

# Operating system -> architectures a static build can be installed for.
SUPPORTED_BINARIES: Dict[str, tuple] = {
    "macos": ("x64", "arm64"),
    "freebsd": ("x64",),
    "linux": ("x64", "x86", "arm64", "arm"),
    "windows": ("x64", "x86", "arm64"),
}


class DirectoryError(FilesystemError):
    """Raised when a required directory location cannot be determined."""

    pass


def is_supported(os_name: str, arch: str) -> bool:
    """
    Check whether the support matrix lists an OS/architecture combination.

    Example:
        >>> is_supported("linux", "arm64")
        True
        >>> is_supported("macos", "x86")
        False
    """
    return arch in SUPPORTED_BINARIES.get(os_name, ())


def executable_name(binary: str, os_name: str) -> str:
    """Get the executable file name for a binary on the given OS."""
    return f"{binary}.exe" if os_name == "windows" else binary


def get_install_paths(
    bin_dir: Path, os_name: str, arch: str
) -> Dict[str, Optional[Path]]:
    """
    Compute final install paths for both binaries.

    Args:
        bin_dir: Directory the executables are installed into
        os_name: Normalized operating system
        arch: Normalized architecture

    Returns:
        Mapping of binary name to its install path, or to None when the
        platform is not in the support matrix.
    """
    supported = is_supported(os_name, arch)
    return {
        binary: (Path(bin_dir) / executable_name(binary, os_name)) if supported else None
        for binary in BINARIES
    }


def get_global_dir(environ: Optional[Mapping[str, str]] = None) -> Path:
    """
    Get the platform-specific global ffstatic directory.

    Returns:
        Path: %USERPROFILE%\\.ffstatic on Windows, ~/.ffstatic elsewhere.

    Raises:
        DirectoryError: If USERPROFILE is not set on Windows.
    """
    environ = os.environ if environ is None else environ

    if os.name == "nt":
        user_profile = environ.get("USERPROFILE")
        if not user_profile:
            raise DirectoryError(
                "USERPROFILE environment variable is not set. "
                "Cannot determine global ffstatic directory."
            )
        return Path(user_profile) / ".ffstatic"
    return Path.home() / ".ffstatic"


def get_default_bin_dir(environ: Optional[Mapping[str, str]] = None) -> Path:
    """Get the default directory for installed executables."""
    return get_global_dir(environ) / "bin"


def get_default_cache_dir(environ: Optional[Mapping[str, str]] = None) -> Path:
    """
    Get the per-user download cache directory.

    Follows platform conventions:
        - Windows: %LOCALAPPDATA%\\ffstatic\\Cache
        - macOS: ~/Library/Caches/ffstatic
        - Linux/other: $XDG_CACHE_HOME/ffstatic or ~/.cache/ffstatic
    """
    environ = os.environ if environ is None else environ

    if os.name == "nt":
        local_app_data = environ.get("LOCALAPPDATA")
        if local_app_data:
            return Path(local_app_data) / "ffstatic" / "Cache"
        return get_global_dir(environ) / "cache"

    if sys.platform == "darwin":
        return Path.home() / "Library" / "Caches" / "ffstatic"

    xdg_cache = environ.get("XDG_CACHE_HOME")
    if xdg_cache:
        return Path(xdg_cache) / "ffstatic"
    return Path.home() / ".cache" / "ffstatic"


__all__ = [
    "BINARIES",
    "SUPPORTED_BINARIES",
    "DirectoryError",
    "is_supported",
    "executable_name",
    "get_install_paths",
    "get_global_dir",
    "get_default_bin_dir",
    "get_default_cache_dir",
]
