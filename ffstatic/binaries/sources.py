"""
Distribution source selection.

Decides, for each binary and target platform, where the payload comes from
and whether it arrives as a bare executable or inside an archive.

Two sources are used:

- Primary source (ffmpeg-ffprobe-static releases): bare executables named
  '<binary>-<token>', with '<token>.README' and '<token>.LICENSE'
  companions. Always serves ffprobe; serves ffmpeg on macOS only.
- Secondary source (FFmpeg-Builds nonfree releases): ffmpeg packaged as
  'ffmpeg-master-latest-<token>-nonfree.zip' on Windows and '.tar.xz' on
  Linux, with the executable under '<archive root>/bin/'.

Everything here is pure: no I/O and no environment access.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

from ffstatic.core.config import InstallerConfig
from ffstatic.core.directory import is_supported
from ffstatic.core.exceptions import PlatformUnsupportedError
from ffstatic.core.filesystem import ArchiveFormat

PRIMARY_SOURCE = "primary"
SECONDARY_SOURCE = "secondary"

# (os, arch) -> naming token on the primary source
PRIMARY_TOKENS: Dict[Tuple[str, str], str] = {
    ("windows", "x64"): "win32-x64",
    ("windows", "arm64"): "win-arm64",
    ("macos", "x64"): "darwin-x64",
    ("macos", "arm64"): "darwin-arm64",
    ("linux", "x64"): "linux-x64",
    ("linux", "arm64"): "linux-arm64",
}

# (os, arch) -> naming token on the secondary source
SECONDARY_TOKENS: Dict[Tuple[str, str], str] = {
    ("windows", "x64"): "win64",
    ("windows", "arm64"): "winarm64",
    ("linux", "x64"): "linux64",
    ("linux", "arm64"): "linuxarm64",
}

# OS family -> archive format used by the secondary source
SECONDARY_ARCHIVE_FORMATS: Dict[str, ArchiveFormat] = {
    "windows": ArchiveFormat.ZIP,
    "linux": ArchiveFormat.TAR_XZ,
}


class BinaryKind(Enum):
    """The two binaries the installer provides."""

    PRIMARY = "ffmpeg"
    SECONDARY = "ffprobe"


@dataclass(frozen=True)
class SourceSelection:
    """
    Where and how to fetch one binary.

    Attributes:
        url: Download URL
        archive_format: Payload packaging
        requires_extraction: True when the payload is an archive
        source: PRIMARY_SOURCE or SECONDARY_SOURCE
        platform_token: Naming token used by the chosen source
        archive_root: Top-level directory inside the archive, if any
    """

    url: str
    archive_format: ArchiveFormat
    requires_extraction: bool
    source: str
    platform_token: str
    archive_root: Optional[str] = None

    @property
    def has_companions(self) -> bool:
        """Whether README/LICENSE companions are published alongside."""
        return self.source == PRIMARY_SOURCE


def primary_token(os_name: str, arch: str) -> str:
    """
    Get the primary-source naming token.

    Raises:
        PlatformUnsupportedError: If the primary source has no build
    """
    try:
        return PRIMARY_TOKENS[(os_name, arch)]
    except KeyError:
        raise PlatformUnsupportedError(
            os_name, arch, "no build on the primary source"
        ) from None


def secondary_token(os_name: str, arch: str) -> str:
    """
    Get the secondary-source naming token.

    Raises:
        PlatformUnsupportedError: If the secondary source has no build
    """
    try:
        return SECONDARY_TOKENS[(os_name, arch)]
    except KeyError:
        raise PlatformUnsupportedError(
            os_name, arch, "no build on the secondary source"
        ) from None


def _primary_base(config: InstallerConfig) -> str:
    return f"{config.base_url.rstrip('/')}/{config.release}/"


def select_source(
    kind: BinaryKind, os_name: str, arch: str, config: InstallerConfig
) -> SourceSelection:
    """
    Choose the distribution source for a binary.

    Args:
        kind: Which binary to fetch
        os_name: Normalized target OS
        arch: Normalized target architecture
        config: Installer configuration (base URLs and release tags)

    Returns:
        SourceSelection describing the download

    Raises:
        PlatformUnsupportedError: If the combination is not in the support
            matrix or no source publishes a build for it. Raised before any
            URL is constructed.

    Example:
        >>> selection = select_source(BinaryKind.PRIMARY, "linux", "x64", config)
        >>> selection.archive_format
        <ArchiveFormat.TAR_XZ: 'tar.xz'>
    """
    if not is_supported(os_name, arch):
        raise PlatformUnsupportedError(os_name, arch, "not in the support matrix")

    if kind is BinaryKind.SECONDARY or os_name == "macos":
        token = primary_token(os_name, arch)
        return SourceSelection(
            url=f"{_primary_base(config)}{kind.value}-{token}",
            archive_format=ArchiveFormat.NONE,
            requires_extraction=False,
            source=PRIMARY_SOURCE,
            platform_token=token,
        )

    archive_format = SECONDARY_ARCHIVE_FORMATS.get(os_name)
    if archive_format is None:
        raise PlatformUnsupportedError(os_name, arch, "no source serves this OS")

    token = secondary_token(os_name, arch)
    archive_root = f"ffmpeg-master-latest-{token}-nonfree"
    base = config.secondary_base_url.rstrip("/")
    return SourceSelection(
        url=f"{base}/{config.secondary_release}/{archive_root}.{archive_format.value}",
        archive_format=archive_format,
        requires_extraction=True,
        source=SECONDARY_SOURCE,
        platform_token=token,
        archive_root=archive_root,
    )


def companion_urls(os_name: str, arch: str, config: InstallerConfig) -> Dict[str, str]:
    """
    Get README/LICENSE URLs published with the primary-source binaries.

    Returns:
        Mapping of file suffix ('.README', '.LICENSE') to URL
    """
    token = primary_token(os_name, arch)
    base = _primary_base(config)
    return {
        suffix: f"{base}{token}{suffix}" for suffix in (".README", ".LICENSE")
    }


__all__ = [
    "BinaryKind",
    "SourceSelection",
    "PRIMARY_SOURCE",
    "SECONDARY_SOURCE",
    "PRIMARY_TOKENS",
    "SECONDARY_TOKENS",
    "primary_token",
    "secondary_token",
    "select_source",
    "companion_urls",
]
