"""
Terminal progress indicator for downloads.

A ProgressIndicator is passed to CachingDownloader.fetch() as its progress
callback and renders a single, continuously rewritten line:

    Downloading ffmpeg [||||||||            ] 41% 3s

When the total size is unknown (including cache hits) only the number of
bytes received so far is shown.
"""

import sys
import time
from typing import Optional, TextIO


def format_size(num_bytes: int) -> str:
    """
    Format a byte count for display.

    Example:
        >>> format_size(52428800)
        '50.0 MB'
        >>> format_size(512)
        '512 B'
    """
    if num_bytes < 1024:
        return f"{num_bytes} B"
    if num_bytes < 1024 * 1024:
        return f"{num_bytes / 1024:.1f} KB"
    return f"{num_bytes / 1024 / 1024:.1f} MB"


class ProgressIndicator:
    """
    Render download progress for one file.

    Example:
        >>> progress = ProgressIndicator("ffprobe")
        >>> downloader.fetch(url, path, progress_callback=progress)
        >>> progress.finish()
    """

    def __init__(
        self,
        label: str,
        stream: Optional[TextIO] = None,
        width: int = 20,
    ):
        self.label = label
        self.stream = stream if stream is not None else sys.stderr
        self.width = width
        self.received = 0
        self.total: Optional[int] = None
        self.start_time = time.monotonic()
        self._rendered = False

    def __call__(self, delta: int, total: Optional[int]) -> None:
        self.received += delta
        self.total = total
        self.stream.write("\r" + self.render())
        self.stream.flush()
        self._rendered = True

    def render(self) -> str:
        """Build the current progress line."""
        if not self.total:
            return f"Downloading {self.label} {format_size(self.received)}"

        ratio = min(self.received / self.total, 1.0)
        filled = int(self.width * ratio)
        bar = "|" * filled + " " * (self.width - filled)

        elapsed = time.monotonic() - self.start_time
        if 0 < ratio < 1.0:
            eta = f"{elapsed / ratio - elapsed:.0f}s"
        else:
            eta = "0s"

        return f"Downloading {self.label} [{bar}] {ratio * 100:.0f}% {eta}"

    def finish(self) -> None:
        """Terminate the progress line."""
        if self._rendered:
            self.stream.write("\n")
            self.stream.flush()
            self._rendered = False


__all__ = ["ProgressIndicator", "format_size"]
