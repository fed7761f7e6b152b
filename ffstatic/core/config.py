"""
Installer configuration.

All settings the installer needs are captured once, at startup, into an
immutable InstallerConfig that is passed to every component. Nothing else in
the package reads environment variables.

Precedence (highest first):
    1. Explicit overrides (command-line options)
    2. Environment variables
    3. YAML configuration file
    4. Built-in defaults

Example YAML file:

    release: b4.4.0-rc.11
    base_url: https://mirror.example.com/ffmpeg-ffprobe-static/
    bin_dir: ~/tools/bin
    timeout: 60
    max_retries: 5
"""

import logging
import os
import tempfile
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml

from ffstatic.core.directory import get_default_bin_dir, get_default_cache_dir
from ffstatic.core.exceptions import ConfigError
from ffstatic.core.platform import resolve_platform

logger = logging.getLogger(__name__)

DEFAULT_RELEASE = "b4.4.0-rc.11"
DEFAULT_BASE_URL = (
    "https://github.com/descriptinc/ffmpeg-ffprobe-static/releases/download/"
)
DEFAULT_SECONDARY_BASE_URL = (
    "https://github.com/BnqDzj/FFmpeg-Builds-nonfree/releases/download/"
)
DEFAULT_SECONDARY_RELEASE = "latest"

# Checked in this order; the first non-empty value wins.
PROXY_ENV_VARS = ("HTTPS_PROXY", "https_proxy", "HTTP_PROXY", "http_proxy")

ENV_PLATFORM = "FFSTATIC_PLATFORM"
ENV_ARCH = "FFSTATIC_ARCH"
ENV_RELEASE = "FFMPEG_BINARY_RELEASE"
ENV_BASE_URL = "FFMPEG_FFPROBE_STATIC_BASE_URL"
ENV_SECONDARY_RELEASE = "FFSTATIC_SECONDARY_RELEASE"
ENV_CACHE_DIR = "FFSTATIC_CACHE_DIR"
ENV_BIN_DIR = "FFSTATIC_BIN_DIR"

_ENV_FIELDS = {
    ENV_RELEASE: "release",
    ENV_BASE_URL: "base_url",
    ENV_SECONDARY_RELEASE: "secondary_release",
    ENV_CACHE_DIR: "cache_dir",
    ENV_BIN_DIR: "bin_dir",
}

_PATH_FIELDS = ("cache_dir", "bin_dir", "temp_root")
_INT_FIELDS = ("max_redirects", "max_retries")
_FLOAT_FIELDS = ("timeout", "retry_backoff")


@dataclass(frozen=True)
class InstallerConfig:
    """
    Immutable installer settings.

    Attributes:
        os: Target operating system (normalized)
        arch: Target CPU architecture (normalized)
        release: Release tag on the primary source
        base_url: Base URL of the primary source (release tag is appended)
        secondary_base_url: Base URL of the secondary source
        secondary_release: Release tag on the secondary source
        proxy_url: Proxy applied to every request, if any
        cache_dir: Download cache directory
        bin_dir: Directory receiving the executables
        temp_root: Parent of the per-run working directory
        timeout: Per-attempt network timeout in seconds
        max_redirects: Redirect hops allowed per download
        max_retries: Total attempts per download
        retry_backoff: Initial delay between attempts, doubled each time
    """

    os: str
    arch: str
    release: str = DEFAULT_RELEASE
    base_url: str = DEFAULT_BASE_URL
    secondary_base_url: str = DEFAULT_SECONDARY_BASE_URL
    secondary_release: str = DEFAULT_SECONDARY_RELEASE
    proxy_url: Optional[str] = None
    cache_dir: Optional[Path] = None
    bin_dir: Optional[Path] = None
    temp_root: Optional[Path] = None
    timeout: float = 30.0
    max_redirects: int = 3
    max_retries: int = 3
    retry_backoff: float = 0.5

    @property
    def proxies(self) -> Dict[str, str]:
        """Proxy mapping in the form expected by requests."""
        if not self.proxy_url:
            return {}
        return {"http": self.proxy_url, "https": self.proxy_url}


def get_proxy_url(environ: Mapping[str, str]) -> Optional[str]:
    """
    Get the proxy URL from the standard proxy environment variables.

    Example:
        >>> get_proxy_url({"http_proxy": "http://proxy:3128"})
        'http://proxy:3128'
    """
    for name in PROXY_ENV_VARS:
        value = environ.get(name)
        if value:
            return value
    return None


def load_config_file(config_file: Union[str, Path]) -> Dict[str, Any]:
    """
    Load settings from a YAML file.

    Args:
        config_file: Path to the YAML file

    Returns:
        Dictionary of InstallerConfig field values

    Raises:
        ConfigError: If the file cannot be read, is not a mapping, or
            contains unknown keys or invalid values
    """
    config_file = Path(config_file)

    try:
        with open(config_file, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Configuration file not found: {config_file}") from e
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to read {config_file}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(
            f"Configuration root must be a mapping, got {type(data).__name__}"
        )

    known = {f.name for f in fields(InstallerConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"Unknown configuration keys: {', '.join(unknown)}")

    return {key: _coerce(key, value) for key, value in data.items()}


def _coerce(key: str, value: Any) -> Any:
    """Convert a raw file/environment value to the field's type."""
    if value is None:
        return None
    try:
        if key in _PATH_FIELDS:
            return Path(str(value)).expanduser()
        if key in _INT_FIELDS:
            return int(value)
        if key in _FLOAT_FIELDS:
            return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value for '{key}': {value!r}") from e
    return str(value)


def load_config(
    environ: Optional[Mapping[str, str]] = None,
    config_file: Optional[Union[str, Path]] = None,
    **overrides: Any,
) -> InstallerConfig:
    """
    Build the installer configuration.

    Args:
        environ: Environment mapping (default: os.environ)
        config_file: Optional YAML configuration file
        **overrides: Explicit field values; None values are ignored.
            'os' and 'arch' are treated as platform overrides and normalized.

    Returns:
        Fully resolved InstallerConfig

    Raises:
        ConfigError: If the configuration file is invalid

    Example:
        >>> config = load_config(environ={"FFSTATIC_PLATFORM": "darwin"})
        >>> config.os
        'macos'
    """
    environ = os.environ if environ is None else environ

    values: Dict[str, Any] = {}
    if config_file is not None:
        values.update(load_config_file(config_file))
        logger.debug(f"Loaded configuration file {config_file}")

    file_os = values.pop("os", None)
    file_arch = values.pop("arch", None)

    for env_name, field_name in _ENV_FIELDS.items():
        env_value = environ.get(env_name)
        if env_value:
            values[field_name] = _coerce(field_name, env_value)

    proxy_url = get_proxy_url(environ)
    if proxy_url:
        values["proxy_url"] = proxy_url

    overrides = {k: v for k, v in overrides.items() if v is not None}
    os_override = overrides.pop("os", None) or environ.get(ENV_PLATFORM) or file_os
    arch_override = overrides.pop("arch", None) or environ.get(ENV_ARCH) or file_arch
    values.update(overrides)

    target = resolve_platform(os_override, arch_override)

    values.setdefault("cache_dir", get_default_cache_dir(environ))
    values.setdefault("bin_dir", get_default_bin_dir(environ))
    values.setdefault("temp_root", Path(tempfile.gettempdir()))

    config = InstallerConfig(os=target.os, arch=target.arch, **values)
    logger.debug(f"Resolved configuration: {config}")
    return config


__all__ = [
    "InstallerConfig",
    "DEFAULT_RELEASE",
    "DEFAULT_BASE_URL",
    "DEFAULT_SECONDARY_BASE_URL",
    "DEFAULT_SECONDARY_RELEASE",
    "PROXY_ENV_VARS",
    "get_proxy_url",
    "load_config_file",
    "load_config",
]
