"""
Platform detection for ffstatic.

This module determines the operating system and CPU architecture the
binaries are installed for. Explicit overrides (from the environment or the
command line) always win over runtime introspection, which makes it
possible to prepare an install for another machine.

Names are normalized to a small canonical vocabulary:

- OS: 'windows', 'macos', 'linux', 'freebsd'
- Architecture: 'x64', 'x86', 'arm64', 'arm'

Unknown names are passed through lowercased. Detection never fails; deciding
whether a platform is supported is left to source selection.

Usage:
    from ffstatic.core.platform import resolve_platform

    info = resolve_platform(os_override="darwin", arch_override="aarch64")
    print(info.platform_string())  # macos-arm64
"""

import functools
import platform
from dataclasses import dataclass
from typing import Optional


_OS_ALIASES = {
    "windows": "windows",
    "win32": "windows",
    "win": "windows",
    "cygwin": "windows",
    "darwin": "macos",
    "macos": "macos",
    "mac": "macos",
    "osx": "macos",
    "linux": "linux",
    "freebsd": "freebsd",
}

_ARCH_ALIASES = {
    "x86_64": "x64",
    "amd64": "x64",
    "x64": "x64",
    "i386": "x86",
    "i686": "x86",
    "ia32": "x86",
    "x86": "x86",
    "aarch64": "arm64",
    "arm64": "arm64",
}


@dataclass(frozen=True)
class PlatformInfo:
    """
    Target platform for an installation.

    Attributes:
        os: Normalized operating system name
        arch: Normalized CPU architecture
    """

    os: str
    arch: str

    @property
    def is_windows(self) -> bool:
        return self.os == "windows"

    def platform_string(self) -> str:
        """
        Get canonical platform string (e.g., 'linux-x64', 'macos-arm64').

        Example:
            >>> PlatformInfo('linux', 'x64').platform_string()
            'linux-x64'
        """
        return f"{self.os}-{self.arch}"

    def __str__(self) -> str:
        return self.platform_string()


def normalize_os(name: str) -> str:
    """
    Normalize an operating system name.

    Args:
        name: OS name as reported by Python, Node-style tooling or a user

    Returns:
        Canonical OS name, or the lowercased input if it is not recognized
    """
    key = name.strip().lower()
    return _OS_ALIASES.get(key, key)


def normalize_arch(name: str) -> str:
    """
    Normalize a CPU architecture name.

    Args:
        name: Architecture as reported by platform.machine() or a user

    Returns:
        Canonical architecture, or the lowercased input if not recognized
    """
    key = name.strip().lower()
    if key in _ARCH_ALIASES:
        return _ARCH_ALIASES[key]
    if key.startswith("armv") or key == "arm":
        return "arm"
    return key


@functools.lru_cache(maxsize=1)
def detect_platform() -> PlatformInfo:
    """
    Detect the platform of the running interpreter.

    This function is cached - it only runs detection once per process.

    Returns:
        PlatformInfo for the current machine
    """
    return PlatformInfo(
        os=normalize_os(platform.system()),
        arch=normalize_arch(platform.machine()),
    )


def resolve_platform(
    os_override: Optional[str] = None, arch_override: Optional[str] = None
) -> PlatformInfo:
    """
    Resolve the target platform, preferring explicit overrides.

    Args:
        os_override: OS name that replaces the detected one, if non-empty
        arch_override: Architecture that replaces the detected one, if non-empty

    Returns:
        PlatformInfo with normalized names

    Example:
        >>> resolve_platform("win32", "ia32")
        PlatformInfo(os='windows', arch='x86')
    """
    detected = None
    if not os_override or not arch_override:
        detected = detect_platform()

    os_name = normalize_os(os_override) if os_override else detected.os
    arch = normalize_arch(arch_override) if arch_override else detected.arch
    return PlatformInfo(os=os_name, arch=arch)


def clear_platform_cache():
    """
    Clear the platform detection cache.

    This forces the next call to detect_platform() to re-detect.
    """
    detect_platform.cache_clear()


__all__ = [
    "PlatformInfo",
    "normalize_os",
    "normalize_arch",
    "detect_platform",
    "resolve_platform",
    "clear_platform_cache",
]
