"""
Core functionality for ffstatic.

This package contains the foundational modules that the installer depends on.
"""

from .exceptions import (
    FFStaticError,
    ConfigError,
    PlatformUnsupportedError,
    NetworkError,
    FilesystemError,
    ExtractionError,
    InsecureArchiveError,
    CleanupWarning,
)

from .platform import (
    PlatformInfo,
    detect_platform,
    resolve_platform,
    clear_platform_cache,
)

from .directory import (
    SUPPORTED_BINARIES,
    is_supported,
    get_install_paths,
    get_default_bin_dir,
    get_default_cache_dir,
)

from .config import InstallerConfig, load_config

from .cache import CacheStore, CacheEntry, FileCache, normalize_url

from .download import CachingDownloader

from .filesystem import (
    ArchiveFormat,
    ZipExtractor,
    TarXzExtractor,
    get_extractor,
    safe_rmtree,
)

__all__ = [
    # Exceptions
    "FFStaticError",
    "ConfigError",
    "PlatformUnsupportedError",
    "NetworkError",
    "FilesystemError",
    "ExtractionError",
    "InsecureArchiveError",
    "CleanupWarning",
    # Platform
    "PlatformInfo",
    "detect_platform",
    "resolve_platform",
    "clear_platform_cache",
    # Directory
    "SUPPORTED_BINARIES",
    "is_supported",
    "get_install_paths",
    "get_default_bin_dir",
    "get_default_cache_dir",
    # Config
    "InstallerConfig",
    "load_config",
    # Cache
    "CacheStore",
    "CacheEntry",
    "FileCache",
    "normalize_url",
    # Download
    "CachingDownloader",
    # Filesystem
    "ArchiveFormat",
    "ZipExtractor",
    "TarXzExtractor",
    "get_extractor",
    "safe_rmtree",
]
