"""
Centralized exception hierarchy for ffstatic.

Every failure the installer can hit maps onto one of these classes so the
installation state machine can decide between aborting the run and logging
a warning.
"""

from typing import Optional


# ============================================================================
# Base Exceptions
# ============================================================================


class FFStaticError(Exception):
    """Base exception for all ffstatic errors."""

    pass


class ConfigError(FFStaticError):
    """Configuration file could not be parsed or contains invalid values."""

    pass


# ============================================================================
# Platform Exceptions
# ============================================================================


class PlatformUnsupportedError(FFStaticError):
    """Raised when no distribution source serves the target platform."""

    def __init__(self, os_name: str, arch: str, reason: str = ""):
        self.os = os_name
        self.arch = arch
        msg = f"Unsupported platform: {os_name}-{arch}"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)


# ============================================================================
# Network Exceptions
# ============================================================================


class NetworkError(FFStaticError):
    """
    Raised when a download fails.

    Attributes:
        url: URL of the response that failed, when one was received
        status_code: HTTP status code, when a response was received
    """

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        self.url = url
        self.status_code = status_code
        super().__init__(message)

    def __str__(self) -> str:
        details = []
        if self.url:
            details.append(f"url={self.url}")
        if self.status_code is not None:
            details.append(f"status={self.status_code}")
        base = super().__str__()
        return f"{base} [{', '.join(details)}]" if details else base


# ============================================================================
# Filesystem Exceptions
# ============================================================================


class FilesystemError(FFStaticError):
    """Copy, permission or directory operation failed."""

    pass


class ExtractionError(FFStaticError):
    """
    Archive extraction failed.

    Attributes:
        process: Name of the external process that failed ('xz', 'tar'),
            or None when extraction ran in-process
        returncode: Exit code of the failing process, if it ran at all
        stderr: Captured standard error of the failing process
    """

    def __init__(
        self,
        message: str,
        process: Optional[str] = None,
        returncode: Optional[int] = None,
        stderr: str = "",
    ):
        self.process = process
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(message)


class InsecureArchiveError(ExtractionError):
    """Archive member would be written outside the output directory."""

    pass


class CleanupWarning(FFStaticError):
    """Temporary files could not be removed. Never fatal."""

    pass


__all__ = [
    "FFStaticError",
    "ConfigError",
    "PlatformUnsupportedError",
    "NetworkError",
    "FilesystemError",
    "ExtractionError",
    "InsecureArchiveError",
    "CleanupWarning",
]
