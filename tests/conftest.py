"""
Pytest configuration and shared fixtures for ffstatic tests.
"""

import shutil
from pathlib import Path

import pytest

from ffstatic.core.config import InstallerConfig
from ffstatic.core.platform import clear_platform_cache
from tests.mocks import MemoryCache

ENV_VARS = (
    "HTTPS_PROXY",
    "https_proxy",
    "HTTP_PROXY",
    "http_proxy",
    "FFSTATIC_PLATFORM",
    "FFSTATIC_ARCH",
    "FFMPEG_BINARY_RELEASE",
    "FFMPEG_FFPROBE_STATIC_BASE_URL",
    "FFSTATIC_SECONDARY_RELEASE",
    "FFSTATIC_CACHE_DIR",
    "FFSTATIC_BIN_DIR",
)


def pytest_collection_modifyitems(config, items):
    """Skip tests needing xz/tar when the tools are not installed."""
    if shutil.which("xz") and shutil.which("tar"):
        return
    skip_xz = pytest.mark.skip(reason="xz and tar command-line tools not found")
    for item in items:
        if "requires_xz" in item.keywords:
            item.add_marker(skip_xz)


# ============================================================================
# Shared Test Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Remove ffstatic and proxy environment variables for every test."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    clear_platform_cache()
    yield
    clear_platform_cache()


@pytest.fixture
def isolated_home(tmp_path: Path, monkeypatch) -> Path:
    """Create isolated home directory for tests."""
    fake_home = tmp_path / "home"
    fake_home.mkdir()

    monkeypatch.setenv("HOME", str(fake_home))
    monkeypatch.setenv("USERPROFILE", str(fake_home))
    monkeypatch.delenv("XDG_CACHE_HOME", raising=False)

    return fake_home


@pytest.fixture
def make_config(tmp_path: Path):
    """Factory for InstallerConfig values rooted in tmp_path."""

    def factory(os_name: str = "linux", arch: str = "x64", **kwargs) -> InstallerConfig:
        values = {
            "cache_dir": tmp_path / "cache",
            "bin_dir": tmp_path / "bin",
            "temp_root": tmp_path / "tmp",
            "retry_backoff": 0.0,
        }
        values.update(kwargs)
        return InstallerConfig(os=os_name, arch=arch, **values)

    return factory


@pytest.fixture
def config(make_config) -> InstallerConfig:
    """Linux x64 configuration rooted in tmp_path."""
    return make_config()


@pytest.fixture
def memory_cache() -> MemoryCache:
    """Empty in-memory cache store."""
    return MemoryCache()
