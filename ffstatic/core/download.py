"""
Caching HTTP downloader with proxy support, retry logic and progress reporting.

This module provides:
- HTTP/HTTPS downloads through an optional proxy
- Redirect following (bounded), consulting the cache at every hop
- A persistent cache keyed by normalized URL; hits skip the network
- Transparent gunzip of '.gz' payloads not already decoded by the transport
- Retry with exponential backoff on transient failures
- Byte-level progress callbacks

A download streams through an ordered list of stages:

    source -> [progress] -> [cache tee] -> [gunzip] -> file

The first stage to fail aborts the rest, and its error is surfaced as a
NetworkError carrying the response URL and status code.
"""

import logging
import tempfile
import time
import zlib
from pathlib import Path, PurePosixPath
from typing import Callable, Dict, Iterable, List, Optional
from urllib.parse import urljoin, urlsplit

import requests
from requests.exceptions import (
    ChunkedEncodingError,
    ConnectionError,
    ContentDecodingError,
    RequestException,
    Timeout,
)

from ffstatic.core.cache import CacheStore, CacheWriteError
from ffstatic.core.config import InstallerConfig
from ffstatic.core.exceptions import NetworkError

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, Optional[int]], None]

CHUNK_SIZE = 65536
USER_AGENT = "ffstatic"

REDIRECT_STATUS_CODES = frozenset({301, 302, 303, 307, 308})
TRANSIENT_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


class TransientDownloadError(NetworkError):
    """A download failure that may succeed when retried."""

    pass


def is_gzip_url(url: str) -> bool:
    """
    Check whether the file name in a URL's path ends in '.gz'.

    Example:
        >>> is_gzip_url("https://example.com/ffmpeg-linux-x64.gz?x=1")
        True
        >>> is_gzip_url("https://example.com/ffmpeg-linux-x64")
        False
    """
    name = PurePosixPath(urlsplit(url).path).name
    return bool(name) and name.endswith(".gz")


# ============================================================================
# Pipeline Stages
# ============================================================================


class _StageError(Exception):
    def __init__(self, stage: str, cause: Exception):
        super().__init__(str(cause))
        self.stage = stage


class _Stage:
    """A transform in the download pipeline."""

    name = "stage"

    def feed(self, data: bytes) -> bytes:
        return data

    def flush(self) -> bytes:
        return b""

    def close(self) -> None:
        pass


class _ProgressStage(_Stage):
    name = "progress"

    def __init__(self, callback: ProgressCallback, total: Optional[int]):
        self.callback = callback
        self.total = total

    def feed(self, data: bytes) -> bytes:
        self.callback(len(data), self.total)
        return data


class _CacheTeeStage(_Stage):
    """Copy the raw body aside so it can be committed to the cache."""

    name = "cache"

    def __init__(self, temp_dir: Optional[Path] = None):
        self._file = tempfile.NamedTemporaryFile(
            prefix="ffstatic-", suffix=".part", dir=temp_dir, delete=False
        )
        self.path = Path(self._file.name)

    def feed(self, data: bytes) -> bytes:
        self._file.write(data)
        return data

    def close(self) -> None:
        self._file.close()

    def discard(self) -> None:
        self.close()
        self.path.unlink(missing_ok=True)


class _GunzipStage(_Stage):
    name = "gunzip"

    def __init__(self):
        self._decompressor = zlib.decompressobj(16 + zlib.MAX_WBITS)

    def feed(self, data: bytes) -> bytes:
        return self._decompressor.decompress(data)

    def flush(self) -> bytes:
        tail = self._decompressor.flush()
        if not self._decompressor.eof:
            raise zlib.error("truncated gzip stream")
        return tail


class _FileSink(_Stage):
    name = "write"

    def __init__(self, destination: Path):
        self._file = open(destination, "wb")

    def feed(self, data: bytes) -> bytes:
        self._file.write(data)
        return b""

    def close(self) -> None:
        self._file.close()


# ============================================================================
# Downloader
# ============================================================================


class CachingDownloader:
    """
    Download files with caching, retries and progress reporting.

    Example:
        >>> from ffstatic.core.cache import FileCache
        >>> config = load_config()
        >>> downloader = CachingDownloader(config, FileCache(config.cache_dir))
        >>> downloader.fetch(
        ...     "https://example.com/ffprobe-linux-x64",
        ...     Path("bin/ffprobe"),
        ...     progress_callback=lambda delta, total: print(delta, total),
        ... )
    """

    def __init__(self, config: InstallerConfig, cache: CacheStore):
        """
        Initialize downloader.

        Args:
            config: Installer configuration (timeouts, retries, proxy)
            cache: Cache store consulted before every request
        """
        self.config = config
        self.cache = cache

    def fetch(
        self,
        url: str,
        destination: Path,
        progress_callback: Optional[ProgressCallback] = None,
        temp_dir: Optional[Path] = None,
    ) -> Path:
        """
        Download url to destination.

        Args:
            url: URL to download
            destination: File to write; its parent directory is created
            progress_callback: Called as (delta_bytes, total_bytes_or_None)
            temp_dir: Directory for the copy of the body kept for the cache
                (system temp directory if None)

        Returns:
            Path to the downloaded file

        Raises:
            NetworkError: If the download fails. Nothing is left at
                destination in that case.
        """
        destination = Path(destination)
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise NetworkError(f"Cannot create {destination.parent}: {e}", url=url) from e

        max_attempts = max(1, self.config.max_retries)

        for attempt in range(max_attempts):
            try:
                return self._fetch_once(
                    url, destination, progress_callback, temp_dir
                )
            except TransientDownloadError as e:
                self._remove_partial(destination)
                if attempt == max_attempts - 1:
                    raise NetworkError(
                        f"Download failed after {max_attempts} attempts: {e.args[0]}",
                        url=e.url,
                        status_code=e.status_code,
                    ) from e

                backoff_seconds = self.config.retry_backoff * (2**attempt)
                logger.warning(
                    f"Download attempt {attempt + 1} failed: {e}. "
                    f"Retrying in {backoff_seconds:.1f}s..."
                )
                time.sleep(backoff_seconds)
            except NetworkError:
                self._remove_partial(destination)
                raise

        raise NetworkError("Download failed for unknown reason", url=url)

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        # Proxy settings come from the captured configuration only
        session.trust_env = False
        session.proxies.update(self.config.proxies)
        session.headers["User-Agent"] = USER_AGENT
        return session

    def _fetch_once(
        self,
        url: str,
        destination: Path,
        progress_callback: Optional[ProgressCallback],
        temp_dir: Optional[Path],
    ) -> Path:
        session = self._create_session()
        current = url

        try:
            for _ in range(self.config.max_redirects + 1):
                key = self.cache.derive_key(current)
                entry = self.cache.get(key)
                if entry is not None:
                    logger.info(f"Using cached download for {current}")
                    if progress_callback:
                        progress_callback(0, None)
                    stages = self._build_stages(url, entry.headers, None, None)
                    self._run_pipeline(
                        entry.iter_chunks(CHUNK_SIZE), stages, destination, current, None
                    )
                    return destination

                response = self._request(session, current)
                try:
                    location = response.headers.get("location")
                    if response.status_code in REDIRECT_STATUS_CODES and location:
                        current = self._redirect_target(response, current, location)
                        logger.debug(f"Redirected to {current}")
                        continue

                    self._check_status(response)
                    self._stream_response(
                        response, key, url, destination, progress_callback, temp_dir
                    )
                    return destination
                finally:
                    response.close()

            raise NetworkError(
                f"Too many redirects (more than {self.config.max_redirects})",
                url=current,
            )
        finally:
            session.close()

    def _request(self, session: requests.Session, url: str) -> requests.Response:
        logger.debug(f"GET {url}")
        try:
            return session.get(
                url,
                stream=True,
                timeout=self.config.timeout,
                allow_redirects=False,
            )
        except (Timeout, ConnectionError) as e:
            raise TransientDownloadError(f"Request failed: {e}", url=url) from e
        except (RequestException, ValueError) as e:
            # ValueError: requests parses a malformed Location header eagerly
            raise NetworkError(f"Request failed: {e}", url=url) from e

    @staticmethod
    def _redirect_target(
        response: requests.Response, current: str, location: str
    ) -> str:
        try:
            return urljoin(current, location)
        except ValueError as e:
            raise NetworkError(
                f"Invalid redirect location {location!r}: {e}",
                url=current,
                status_code=response.status_code,
            ) from e

    def _check_status(self, response: requests.Response) -> None:
        if response.status_code == 200:
            return
        error_cls = (
            TransientDownloadError
            if response.status_code in TRANSIENT_STATUS_CODES
            else NetworkError
        )
        raise error_cls(
            f"Download failed with HTTP {response.status_code}",
            url=response.url,
            status_code=response.status_code,
        )

    def _stream_response(
        self,
        response: requests.Response,
        key: str,
        requested_url: str,
        destination: Path,
        progress_callback: Optional[ProgressCallback],
        temp_dir: Optional[Path],
    ) -> None:
        content_length = response.headers.get("content-length")
        total = int(content_length) if content_length and content_length.isdigit() else None

        try:
            tee = _CacheTeeStage(temp_dir)
        except OSError as e:
            raise NetworkError(
                f"Cannot create cache buffer in {temp_dir}: {e}",
                url=response.url,
                status_code=response.status_code,
            ) from e

        try:
            stages = self._build_stages(
                requested_url, response.headers, progress_callback, total, tee
            )
            self._run_pipeline(
                response.iter_content(chunk_size=CHUNK_SIZE),
                stages,
                destination,
                response.url,
                response.status_code,
            )
            tee.close()
            self._store(key, tee.path, dict(response.headers))
        finally:
            tee.discard()

        logger.info(f"Download complete: {destination}")

    def _build_stages(
        self,
        requested_url: str,
        headers: Dict[str, str],
        progress_callback: Optional[ProgressCallback],
        total: Optional[int],
        tee: Optional[_CacheTeeStage] = None,
    ) -> List[_Stage]:
        stages: List[_Stage] = []
        if progress_callback:
            stages.append(_ProgressStage(progress_callback, total))
        if tee is not None:
            stages.append(tee)

        content_encoding = ""
        for name, value in headers.items():
            if name.lower() == "content-encoding":
                content_encoding = value.lower()
        if is_gzip_url(requested_url) and "gzip" not in content_encoding:
            stages.append(_GunzipStage())
        return stages

    def _run_pipeline(
        self,
        chunks: Iterable[bytes],
        stages: List[_Stage],
        destination: Path,
        response_url: str,
        status_code: Optional[int],
    ) -> None:
        try:
            sink = _FileSink(destination)
        except OSError as e:
            raise NetworkError(
                f"Cannot open {destination} for writing: {e}",
                url=response_url,
                status_code=status_code,
            ) from e

        pipeline = stages + [sink]
        try:
            for chunk in chunks:
                self._push(pipeline, chunk)
            for index, stage in enumerate(pipeline):
                self._push(pipeline[index + 1 :], self._run_stage(stage, stage.flush))
        except (ChunkedEncodingError, ConnectionError, Timeout) as e:
            raise TransientDownloadError(
                f"Connection interrupted: {e}", url=response_url, status_code=status_code
            ) from e
        except (_StageError, ContentDecodingError, OSError) as e:
            name = e.stage if isinstance(e, _StageError) else "source"
            raise NetworkError(
                f"Download pipeline failed at {name} stage: {e}",
                url=response_url,
                status_code=status_code,
            ) from e
        finally:
            sink.close()

    @classmethod
    def _push(cls, stages: List[_Stage], data: bytes) -> None:
        for stage in stages:
            if not data:
                return
            data = cls._run_stage(stage, stage.feed, data)

    @staticmethod
    def _run_stage(stage: _Stage, method, *args) -> bytes:
        try:
            return method(*args)
        except (OSError, zlib.error) as e:
            raise _StageError(stage.name, e) from e

    def _store(self, key: str, payload_path: Path, headers: Dict[str, str]) -> None:
        try:
            self.cache.put(key, payload_path, headers)
        except (CacheWriteError, OSError) as e:
            logger.warning(f"Failed to cache download {key}: {e}")

    @staticmethod
    def _remove_partial(destination: Path) -> None:
        try:
            destination.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Failed to remove partial download {destination}: {e}")


__all__ = [
    "CachingDownloader",
    "ProgressCallback",
    "TransientDownloadError",
    "is_gzip_url",
]
