"""
Unit tests for the caching downloader.

Tests download behavior with mocked network requests.
"""

import gzip
import tempfile
from unittest.mock import patch

import pytest
import requests
import responses

from ffstatic.core.download import CachingDownloader, is_gzip_url
from ffstatic.core.exceptions import NetworkError

URL = "https://example.com/releases/ffprobe-linux-x64"


@pytest.fixture
def downloader(config, memory_cache):
    return CachingDownloader(config, memory_cache)


class TestIsGzipUrl:
    """Test is_gzip_url function."""

    def test_gz_suffix(self):
        """Test .gz file names are detected."""
        assert is_gzip_url("https://example.com/ffmpeg-linux-x64.gz")

    def test_query_ignored(self):
        """Test query strings do not affect detection."""
        assert is_gzip_url("https://example.com/ffmpeg.gz?token=abc")
        assert not is_gzip_url("https://example.com/ffmpeg?name=x.gz")

    def test_plain_file(self):
        """Test non-gzip names are not detected."""
        assert not is_gzip_url(URL)
        assert not is_gzip_url("https://example.com/archive.tar.xz")


class TestFetch:
    """Test CachingDownloader.fetch."""

    @responses.activate
    def test_simple_download(self, downloader, tmp_path):
        """Test payload is written to the destination."""
        content = b"test content"
        destination = tmp_path / "out" / "ffprobe"
        responses.add(
            responses.GET,
            URL,
            body=content,
            status=200,
            headers={"content-length": str(len(content))},
        )

        result = downloader.fetch(URL, destination)

        assert result == destination
        assert destination.read_bytes() == content

    @responses.activate
    def test_progress_reports_deltas_and_total(self, downloader, tmp_path):
        """Test progress callback receives byte deltas and the content length."""
        content = b"x" * 200000
        responses.add(
            responses.GET,
            URL,
            body=content,
            status=200,
            headers={"content-length": str(len(content))},
        )
        updates = []

        downloader.fetch(URL, tmp_path / "ffprobe", lambda d, t: updates.append((d, t)))

        assert sum(delta for delta, _ in updates) == len(content)
        assert all(total == len(content) for _, total in updates)

    @responses.activate
    def test_successful_download_is_cached(self, downloader, memory_cache, tmp_path):
        """Test successful responses are stored under the normalized key."""
        responses.add(responses.GET, URL, body=b"payload", status=200)

        downloader.fetch(URL, tmp_path / "ffprobe")

        assert memory_cache.puts == [URL]
        assert memory_cache.entries[URL].payload == b"payload"

    @responses.activate
    def test_cache_hit_skips_network(self, downloader, memory_cache, tmp_path):
        """Test a cache hit performs no request and reports unknown total."""
        memory_cache.seed(URL, b"cached payload")
        updates = []

        downloader.fetch(URL, tmp_path / "ffprobe", lambda d, t: updates.append((d, t)))

        assert len(responses.calls) == 0
        assert (tmp_path / "ffprobe").read_bytes() == b"cached payload"
        assert updates == [(0, None)]

    @responses.activate
    def test_redirect_followed(self, downloader, tmp_path):
        """Test redirects are followed to the final location."""
        target = "https://objects.example.com/asset/1"
        responses.add(
            responses.GET, URL, status=302, headers={"Location": target}
        )
        responses.add(responses.GET, target, body=b"redirected", status=200)

        downloader.fetch(URL, tmp_path / "ffprobe")

        assert (tmp_path / "ffprobe").read_bytes() == b"redirected"
        assert [call.request.url for call in responses.calls] == [URL, target]

    @responses.activate
    def test_redirect_hop_hits_cache(self, downloader, memory_cache, tmp_path):
        """Test a signed redirect target is served from cache via its normalized key."""
        signed = (
            "https://bucket.s3.amazonaws.com/asset"
            "?X-Amz-Signature=new&X-Amz-Date=2&actor_id=0"
        )
        memory_cache.seed(
            "https://bucket.s3.amazonaws.com/asset?X-Amz-Signature=old&actor_id=0",
            b"from cache",
        )
        responses.add(responses.GET, URL, status=302, headers={"Location": signed})

        downloader.fetch(URL, tmp_path / "ffprobe")

        assert len(responses.calls) == 1
        assert (tmp_path / "ffprobe").read_bytes() == b"from cache"

    @responses.activate
    def test_too_many_redirects(self, make_config, memory_cache, tmp_path):
        """Test redirect chains longer than the limit fail."""
        downloader = CachingDownloader(make_config(max_redirects=2), memory_cache)
        for i in range(4):
            responses.add(
                responses.GET,
                f"https://example.com/hop{i}",
                status=302,
                headers={"Location": f"https://example.com/hop{i + 1}"},
            )

        with pytest.raises(NetworkError, match="Too many redirects"):
            downloader.fetch("https://example.com/hop0", tmp_path / "ffprobe")

        assert len(responses.calls) == 3

    @responses.activate
    def test_invalid_redirect_location(self, downloader, tmp_path):
        """Test a malformed Location header fails as a network error."""
        destination = tmp_path / "ffprobe"
        responses.add(
            responses.GET, URL, status=302, headers={"Location": "http://[::1/readme"}
        )

        with patch("time.sleep") as sleep:
            with pytest.raises(NetworkError) as exc_info:
                downloader.fetch(URL, destination)

        assert exc_info.value.url == URL
        assert len(responses.calls) == 1
        sleep.assert_not_called()
        assert not destination.exists()

    def test_redirect_target_error_keeps_status(self):
        """Test an unparseable redirect target reports the redirect status."""
        response = requests.Response()
        response.status_code = 302

        with pytest.raises(NetworkError, match="Invalid redirect location") as exc_info:
            CachingDownloader._redirect_target(response, URL, "http://[::1/readme")

        assert exc_info.value.url == URL
        assert exc_info.value.status_code == 302

    @responses.activate
    def test_cache_buffer_in_temp_dir(self, downloader, memory_cache, tmp_path):
        """Test the cached copy of the body is buffered in the given directory."""
        work_dir = tmp_path / "work"
        work_dir.mkdir()
        responses.add(responses.GET, URL, body=b"payload", status=200)

        with patch(
            "ffstatic.core.download.tempfile.NamedTemporaryFile",
            wraps=tempfile.NamedTemporaryFile,
        ) as named_temp:
            downloader.fetch(URL, tmp_path / "ffprobe", temp_dir=work_dir)

        assert named_temp.call_args.kwargs["dir"] == work_dir
        assert memory_cache.entries[URL].payload == b"payload"
        assert list(work_dir.iterdir()) == []

    @responses.activate
    def test_missing_temp_dir_fails(self, downloader, memory_cache, tmp_path):
        """Test an unusable buffer directory fails the download cleanly."""
        destination = tmp_path / "ffprobe"
        responses.add(responses.GET, URL, body=b"payload", status=200)

        with pytest.raises(NetworkError, match="Cannot create cache buffer") as exc_info:
            downloader.fetch(URL, destination, temp_dir=tmp_path / "missing")

        assert exc_info.value.status_code == 200
        assert not destination.exists()
        assert memory_cache.puts == []

    @responses.activate
    def test_gzip_payload_decoded(self, downloader, memory_cache, tmp_path):
        """Test .gz payloads are gunzipped while the cache keeps the raw body."""
        url = "https://example.com/ffmpeg-darwin-x64.gz"
        raw = gzip.compress(b"uncompressed binary" * 100)
        responses.add(responses.GET, url, body=raw, status=200)

        downloader.fetch(url, tmp_path / "ffmpeg")

        assert (tmp_path / "ffmpeg").read_bytes() == b"uncompressed binary" * 100
        assert memory_cache.entries[url].payload == raw

    @responses.activate
    def test_gzip_already_decoded_by_transport(self, downloader, tmp_path):
        """Test .gz payloads sent with Content-Encoding are not decoded twice."""
        url = "https://example.com/ffmpeg-darwin-x64.gz"
        responses.add(
            responses.GET,
            url,
            body=gzip.compress(b"plain binary"),
            status=200,
            headers={"Content-Encoding": "gzip"},
        )

        downloader.fetch(url, tmp_path / "ffmpeg")

        assert (tmp_path / "ffmpeg").read_bytes() == b"plain binary"

    def test_gzip_payload_from_cache_decoded(self, downloader, memory_cache, tmp_path):
        """Test cached .gz payloads are gunzipped too."""
        url = "https://example.com/ffmpeg-darwin-x64.gz"
        memory_cache.seed(url, gzip.compress(b"cached binary"))

        downloader.fetch(url, tmp_path / "ffmpeg")

        assert (tmp_path / "ffmpeg").read_bytes() == b"cached binary"

    @responses.activate
    def test_corrupt_gzip_fails_and_removes_partial(self, downloader, memory_cache, tmp_path):
        """Test a broken gzip stream fails at the gunzip stage."""
        url = "https://example.com/ffmpeg-darwin-x64.gz"
        responses.add(responses.GET, url, body=b"not gzip data", status=200)
        destination = tmp_path / "ffmpeg"

        with pytest.raises(NetworkError, match="gunzip") as exc_info:
            downloader.fetch(url, destination)

        assert exc_info.value.url == url
        assert exc_info.value.status_code == 200
        assert not destination.exists()
        assert memory_cache.puts == []

    @responses.activate
    def test_not_found_is_terminal(self, downloader, tmp_path):
        """Test 404 fails immediately with url and status code."""
        responses.add(responses.GET, URL, status=404)

        with patch("time.sleep") as sleep:
            with pytest.raises(NetworkError) as exc_info:
                downloader.fetch(URL, tmp_path / "ffprobe")

        assert exc_info.value.status_code == 404
        assert exc_info.value.url == URL
        assert len(responses.calls) == 1
        sleep.assert_not_called()
        assert not (tmp_path / "ffprobe").exists()

    @responses.activate
    def test_server_error_retried_then_succeeds(self, downloader, tmp_path):
        """Test transient 5xx responses are retried."""
        responses.add(responses.GET, URL, status=503)
        responses.add(responses.GET, URL, body=b"ok", status=200)

        with patch("time.sleep") as sleep:
            downloader.fetch(URL, tmp_path / "ffprobe")

        assert (tmp_path / "ffprobe").read_bytes() == b"ok"
        assert len(responses.calls) == 2
        sleep.assert_called_once()

    @responses.activate
    def test_server_error_exhausts_retries(self, make_config, memory_cache, tmp_path):
        """Test persistent 5xx fails after max_retries attempts with status."""
        downloader = CachingDownloader(
            make_config(max_retries=4, retry_backoff=1.0), memory_cache
        )
        responses.add(responses.GET, URL, status=500)

        with patch("time.sleep") as sleep:
            with pytest.raises(NetworkError, match="after 4 attempts") as exc_info:
                downloader.fetch(URL, tmp_path / "ffprobe")

        assert len(responses.calls) == 4
        assert exc_info.value.status_code == 500
        assert [c.args[0] for c in sleep.call_args_list] == [1.0, 2.0, 4.0]

    @responses.activate
    def test_timeout_retried_exact_attempts(self, downloader, config, tmp_path):
        """Test an endpoint that never answers is tried max_retries times."""
        responses.add(
            responses.GET, URL, body=requests.exceptions.ReadTimeout("timed out")
        )

        with patch("time.sleep"):
            with pytest.raises(NetworkError) as exc_info:
                downloader.fetch(URL, tmp_path / "ffprobe")

        assert len(responses.calls) == config.max_retries
        assert exc_info.value.url == URL
        assert exc_info.value.status_code is None

    @responses.activate
    def test_timeout_passed_to_request(self, make_config, memory_cache, tmp_path):
        """Test the configured timeout is applied to each request."""
        downloader = CachingDownloader(make_config(timeout=12.5), memory_cache)
        responses.add(responses.GET, URL, body=b"ok", status=200)

        with patch("requests.Session.get", wraps=requests.Session().get) as get:
            downloader.fetch(URL, tmp_path / "ffprobe")

        assert get.call_args.kwargs["timeout"] == 12.5
        assert get.call_args.kwargs["allow_redirects"] is False

    @responses.activate
    def test_connection_error_retried(self, downloader, tmp_path):
        """Test connection errors are transient."""
        responses.add(
            responses.GET, URL, body=requests.exceptions.ConnectionError("reset")
        )
        responses.add(responses.GET, URL, body=b"ok", status=200)

        with patch("time.sleep"):
            downloader.fetch(URL, tmp_path / "ffprobe")

        assert (tmp_path / "ffprobe").read_bytes() == b"ok"

    @responses.activate
    def test_failed_retry_removes_stale_destination(self, downloader, tmp_path):
        """Test no partial file is left after a failed fetch."""
        destination = tmp_path / "ffprobe"
        destination.write_bytes(b"stale partial")
        responses.add(responses.GET, URL, status=403)

        with pytest.raises(NetworkError):
            downloader.fetch(URL, destination)

        assert not destination.exists()

    def test_cache_write_failure_only_warns(self, downloader, memory_cache, tmp_path, caplog):
        """Test cache write errors do not fail the download."""
        from ffstatic.core.cache import CacheWriteError

        with responses.RequestsMock() as mock, patch.object(
            memory_cache, "put", side_effect=CacheWriteError("disk full")
        ):
            mock.add(responses.GET, URL, body=b"ok", status=200)
            downloader.fetch(URL, tmp_path / "ffprobe")

        assert (tmp_path / "ffprobe").read_bytes() == b"ok"
        assert "Failed to cache download" in caplog.text


class TestSession:
    """Test session configuration."""

    def test_proxy_applied_and_environment_ignored(self, make_config, memory_cache):
        """Test proxies come from the configuration only."""
        downloader = CachingDownloader(
            make_config(proxy_url="http://proxy.local:3128"), memory_cache
        )

        session = downloader._create_session()

        assert session.trust_env is False
        assert session.proxies == {
            "http": "http://proxy.local:3128",
            "https": "http://proxy.local:3128",
        }

    def test_no_proxy(self, downloader):
        """Test no proxies are set without configuration."""
        session = downloader._create_session()
        assert session.proxies == {}
