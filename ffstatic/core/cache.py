"""
Persistent download cache.

Successful downloads are stored on disk so that repeated installs (and
reinstalls after a partial failure) do not transfer the same payload twice.
Entries are keyed by a normalized URL: release assets served from S3 carry
short-lived signature parameters that change on every redirect, and those
must not defeat the cache.

The cache is shared across runs and never evicted by ffstatic.
"""

import hashlib
import json
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterator, Optional
from urllib.parse import parse_qsl, quote, urlencode, urlsplit, urlunsplit

from filelock import FileLock, Timeout

from ffstatic.core.exceptions import FFStaticError
from ffstatic.core.filesystem import atomic_copy, atomic_write

logger = logging.getLogger(__name__)

S3_HOST_SUFFIX = ".s3.amazonaws.com"
SIGNED_PARAM_PREFIX = "x-amz-"


def normalize_url(url: str) -> str:
    """
    Strip time-limited signature parameters from S3 URLs.

    Only hosts ending in '.s3.amazonaws.com' are touched; every query
    parameter whose name starts with 'X-Amz-' (any case) is removed, the
    rest keep their order. Other URLs are returned unchanged.

    Example:
        >>> normalize_url("https://example.org/foo?bar")
        'https://example.org/foo?bar'
        >>> normalize_url(
        ...     "https://b.s3.amazonaws.com/x?X-Amz-Signature=abc&actor_id=0"
        ... )
        'https://b.s3.amazonaws.com/x?actor_id=0'
    """
    parts = urlsplit(url)
    hostname = parts.hostname or ""
    if not hostname.endswith(S3_HOST_SUFFIX):
        return url

    query = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if not key.lower().startswith(SIGNED_PARAM_PREFIX)
    ]
    return urlunsplit(parts._replace(query=urlencode(query, quote_via=quote)))


@dataclass
class CacheEntry:
    """
    A cached response.

    Exactly one of payload_path (on-disk store) or payload (in-memory
    store) is set.
    """

    key: str
    headers: Dict[str, str] = field(default_factory=dict)
    payload_path: Optional[Path] = None
    payload: Optional[bytes] = None
    from_cache: bool = True

    def iter_chunks(self, chunk_size: int = 65536) -> Iterator[bytes]:
        """Yield the cached body in chunks."""
        if self.payload is not None:
            for start in range(0, len(self.payload), chunk_size):
                yield self.payload[start : start + chunk_size]
            return

        with open(self.payload_path, "rb") as f:
            while chunk := f.read(chunk_size):
                yield chunk


class CacheStore(ABC):
    """Minimal interface the downloader needs from a cache."""

    def derive_key(self, url: str) -> str:
        """Derive the cache key for a URL."""
        return normalize_url(url)

    @abstractmethod
    def get(self, key: str) -> Optional[CacheEntry]:
        """Return the entry stored under key, or None on a miss."""

    @abstractmethod
    def put(self, key: str, payload_path: Path, headers: Dict[str, str]) -> None:
        """Store the file at payload_path under key."""


class CacheWriteError(FFStaticError):
    """A cache entry could not be written."""

    pass


class FileCache(CacheStore):
    """
    On-disk cache store.

    Each entry is two files named after the SHA-256 of its key:
    '<hash>.body' with the raw payload and '<hash>.json' with the key,
    response headers and storage time. Metadata is written last, so an
    entry without readable metadata is simply a miss.

    Example:
        >>> cache = FileCache(Path("~/.cache/ffstatic").expanduser())
        >>> key = cache.derive_key(url)
        >>> entry = cache.get(key)
        >>> if entry is None:
        ...     cache.put(key, downloaded_file, {"content-type": "..."})
    """

    def __init__(self, cache_dir: Path, lock_timeout: int = 30):
        """
        Initialize file cache.

        Args:
            cache_dir: Directory holding cache entries (created on first write)
            lock_timeout: Timeout in seconds for acquiring the write lock
        """
        self.cache_dir = Path(cache_dir)
        self.lock_path = self.cache_dir / "lock" / "cache.lock"
        self.lock_timeout = lock_timeout

        logger.debug(f"Initialized download cache at {self.cache_dir}")

    def _entry_paths(self, key: str):
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return self.cache_dir / f"{digest}.body", self.cache_dir / f"{digest}.json"

    def get(self, key: str) -> Optional[CacheEntry]:
        body_path, meta_path = self._entry_paths(key)
        if not (body_path.is_file() and meta_path.is_file()):
            return None

        try:
            with open(meta_path, "r", encoding="utf-8") as f:
                meta = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Ignoring unreadable cache metadata {meta_path}: {e}")
            return None

        if meta.get("key") != key:
            logger.debug(f"Cache key collision for {key}, treating as miss")
            return None

        logger.debug(f"Cache hit: {key}")
        return CacheEntry(
            key=key, headers=meta.get("headers", {}), payload_path=body_path
        )

    def put(self, key: str, payload_path: Path, headers: Dict[str, str]) -> None:
        body_path, meta_path = self._entry_paths(key)

        with self._lock():
            try:
                self.cache_dir.mkdir(parents=True, exist_ok=True)
                atomic_copy(payload_path, body_path)

                meta = {
                    "key": key,
                    "headers": dict(headers),
                    "stored_at": datetime.now().isoformat(),
                }
                atomic_write(meta_path, json.dumps(meta, indent=2))
            except OSError as e:
                raise CacheWriteError(f"Failed to write cache entry {key}: {e}") from e

        logger.debug(f"Cached {key} -> {body_path.name}")

    @contextmanager
    def _lock(self):
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        lock = FileLock(self.lock_path, timeout=self.lock_timeout)

        try:
            with lock:
                yield
        except Timeout as e:
            raise CacheWriteError(
                f"Could not acquire cache lock within {self.lock_timeout} seconds"
            ) from e


__all__ = [
    "normalize_url",
    "CacheEntry",
    "CacheStore",
    "CacheWriteError",
    "FileCache",
]
