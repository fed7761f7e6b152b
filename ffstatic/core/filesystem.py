"""
File system utilities for ffstatic.

This module provides:
- Archive extraction strategies (zip in-process, tar.xz via xz | tar)
- Installation helpers (copy into place, executable permissions)
- Safe file operations (atomic writes, recursive removal)

The two archive strategies share one contract:

    extractor.extract(archive_path, output_dir, wanted_entry=None)

Both strip the archive's top-level directory. The tar.xz strategy only
extracts wanted_entry, which keeps disk usage and time low for archives that
ship documentation, libraries and man pages next to the executable.
"""

import enum
import logging
import os
import shutil
import signal
import subprocess
import sys
import tempfile
import zipfile
import zlib
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Union

from ffstatic.core.exceptions import (
    CleanupWarning,
    ExtractionError,
    FilesystemError,
    InsecureArchiveError,
)

logger = logging.getLogger(__name__)

IS_WINDOWS = os.name == "nt"

# rwxr-xr-x
EXECUTABLE_MODE = 0o755


class ArchiveFormat(enum.Enum):
    """Packaging of a downloaded payload."""

    NONE = "none"
    ZIP = "zip"
    TAR_XZ = "tar.xz"


# ============================================================================
# Path Utilities
# ============================================================================


def is_relative_to(path: Path, parent: Path) -> bool:
    """
    Check if path is relative to parent (compatible with Python 3.8).

    Example:
        >>> is_relative_to(Path('/home/user/file'), Path('/home'))
        True
    """
    try:
        path.relative_to(parent)
        return True
    except ValueError:
        return False


def strip_components(member_name: str, count: int = 1) -> str:
    """
    Remove leading path segments from an archive member name.

    Example:
        >>> strip_components("root/bin/tool.exe")
        'bin/tool.exe'
        >>> strip_components("root/")
        ''
    """
    return "/".join(member_name.split("/")[count:])


def _validate_archive_path(path: str, destination: Path) -> None:
    """
    Validate that an archive member path is safe to extract.

    Raises:
        InsecureArchiveError: If path attempts directory traversal
    """
    member_path = (destination / path).resolve()

    if not is_relative_to(member_path, destination.resolve()):
        raise InsecureArchiveError(
            f"Archive member '{path}' attempts directory traversal. "
            "This is a security risk and extraction has been blocked."
        )


# ============================================================================
# Archive Extraction
# ============================================================================


class ArchiveExtractor(ABC):
    """Strategy for extracting an executable from a downloaded archive."""

    format: ArchiveFormat

    @abstractmethod
    def extract(
        self,
        archive_path: Union[str, Path],
        output_dir: Union[str, Path],
        wanted_entry: Optional[str] = None,
    ) -> None:
        """
        Extract archive_path into output_dir.

        Raises:
            ExtractionError: If extraction fails for any reason
        """


class ZipExtractor(ArchiveExtractor):
    """
    Extract every entry of a zip archive, dropping the top-level directory.

    Entries are processed one at a time and streamed to disk, so memory use
    does not depend on entry size. wanted_entry is accepted for interface
    compatibility and ignored: zip payloads are small enough to unpack whole.

    Example:
        An archive containing 'root/bin/tool.exe' extracted to D produces
        'D/bin/tool.exe'.
    """

    format = ArchiveFormat.ZIP

    def extract(
        self,
        archive_path: Union[str, Path],
        output_dir: Union[str, Path],
        wanted_entry: Optional[str] = None,
    ) -> None:
        archive_path = Path(archive_path)
        output_dir = Path(output_dir)
        logger.info(f"Extracting ZIP archive: {archive_path}")

        try:
            output_dir.mkdir(parents=True, exist_ok=True)
            with zipfile.ZipFile(archive_path, "r") as zf:
                for info in zf.infolist():
                    self._extract_entry(zf, info, output_dir)
        except ExtractionError:
            raise
        except (
            zipfile.BadZipFile,
            zipfile.LargeZipFile,
            zlib.error,
            EOFError,
            RuntimeError,
            NotImplementedError,
            OSError,
        ) as e:
            # RuntimeError: encrypted entry; NotImplementedError: unknown compression
            raise ExtractionError(f"Failed to extract {archive_path}: {e}") from e

    def _extract_entry(
        self, zf: zipfile.ZipFile, info: zipfile.ZipInfo, output_dir: Path
    ) -> None:
        relative = strip_components(info.filename, 1)
        if not relative.strip("/"):
            return

        _validate_archive_path(relative, output_dir)
        target = output_dir / relative

        if info.is_dir():
            target.mkdir(parents=True, exist_ok=True)
            return

        target.parent.mkdir(parents=True, exist_ok=True)
        with zf.open(info, "r") as src, open(target, "wb") as dst:
            shutil.copyfileobj(src, dst)
        logger.debug(f"Extracted {info.filename} -> {target}")


class TarXzExtractor(ArchiveExtractor):
    """
    Extract a single member of a .tar.xz archive with external tools.

    Runs the equivalent of:

        xz -dc ARCHIVE | tar -xf - -C OUTPUT --strip-components=N WANTED

    Both processes are monitored. A failure is attributed to the process
    that caused it: when tar exits early, xz is killed by SIGPIPE, and that
    is reported as a tar failure rather than an xz one.
    """

    format = ArchiveFormat.TAR_XZ

    def __init__(
        self,
        strip_components: int = 1,
        decompressor: str = "xz",
        tar: str = "tar",
    ):
        """
        Initialize extractor.

        Args:
            strip_components: Leading path segments tar removes from members
            decompressor: xz executable
            tar: tar executable
        """
        self.strip_components = strip_components
        self.decompressor = decompressor
        self.tar = tar

    def extract(
        self,
        archive_path: Union[str, Path],
        output_dir: Union[str, Path],
        wanted_entry: Optional[str] = None,
    ) -> None:
        archive_path = Path(archive_path)
        output_dir = Path(output_dir)
        logger.info(f"Extracting XZ archive: {archive_path}")

        try:
            output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ExtractionError(f"Cannot create {output_dir}: {e}") from e

        xz_cmd = [self.decompressor, "-dc", str(archive_path)]
        tar_cmd = [
            self.tar,
            "-xf",
            "-",
            "-C",
            str(output_dir),
            f"--strip-components={self.strip_components}",
        ]
        if wanted_entry:
            tar_cmd.append(wanted_entry)

        logger.debug(f"Running: {' '.join(xz_cmd)} | {' '.join(tar_cmd)}")

        with tempfile.TemporaryFile() as xz_stderr:
            try:
                xz = subprocess.Popen(
                    xz_cmd, stdout=subprocess.PIPE, stderr=xz_stderr
                )
            except OSError as e:
                raise ExtractionError(
                    f"Failed to start {self.decompressor}: {e}", process="xz"
                ) from e

            try:
                tar = subprocess.Popen(
                    tar_cmd,
                    stdin=xz.stdout,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                )
            except OSError as e:
                xz.kill()
                xz.stdout.close()
                xz.wait()
                raise ExtractionError(
                    f"Failed to start {self.tar}: {e}", process="tar"
                ) from e

            # tar holds the read end now; closing ours lets xz see SIGPIPE
            xz.stdout.close()

            tar_out, tar_err = tar.communicate()
            xz_rc = xz.wait()
            xz_stderr.seek(0)
            xz_err = xz_stderr.read()

        tar_err_text = tar_err.decode(errors="replace").strip()
        xz_err_text = xz_err.decode(errors="replace").strip()
        if tar_out:
            logger.debug(f"tar stdout: {tar_out.decode(errors='replace').strip()}")
        if tar_err_text:
            logger.debug(f"tar stderr: {tar_err_text}")
        if xz_err_text:
            logger.debug(f"xz stderr: {xz_err_text}")

        failed = _failed_process(xz_rc, tar.returncode)
        if failed == "xz":
            raise ExtractionError(
                f"xz process exited with code {xz_rc}: {xz_err_text}",
                process="xz",
                returncode=xz_rc,
                stderr=xz_err_text,
            )
        if failed == "tar":
            raise ExtractionError(
                f"tar process exited with code {tar.returncode}: {tar_err_text}",
                process="tar",
                returncode=tar.returncode,
                stderr=tar_err_text,
            )


def _failed_process(xz_rc: int, tar_rc: int) -> Optional[str]:
    """Decide which side of the xz | tar pipeline failed, if any."""
    sigpipe = getattr(signal, "SIGPIPE", None)
    killed_by_pipe = sigpipe is not None and xz_rc == -sigpipe

    if xz_rc != 0 and not (killed_by_pipe and tar_rc != 0):
        return "xz"
    if tar_rc != 0:
        return "tar"
    return None


def get_extractor(archive_format: ArchiveFormat, **kwargs) -> ArchiveExtractor:
    """
    Get the extraction strategy for an archive format.

    Args:
        archive_format: ArchiveFormat.ZIP or ArchiveFormat.TAR_XZ
        **kwargs: Passed to the strategy constructor

    Raises:
        ExtractionError: If the format has no extractor
    """
    if archive_format is ArchiveFormat.ZIP:
        return ZipExtractor()
    if archive_format is ArchiveFormat.TAR_XZ:
        return TarXzExtractor(**kwargs)
    raise ExtractionError(f"No extractor for archive format: {archive_format.value}")


# ============================================================================
# Installation Helpers
# ============================================================================


def make_executable(path: Union[str, Path]) -> None:
    """
    Allow owner, group and others to execute a file (mode 0o755).

    Raises:
        FilesystemError: If permissions cannot be changed
    """
    try:
        os.chmod(path, EXECUTABLE_MODE)
    except OSError as e:
        raise FilesystemError(f"Failed to make {path} executable: {e}") from e


def install_file(source: Union[str, Path], destination: Union[str, Path]) -> Path:
    """
    Copy a file to its final location, creating parent directories.

    Returns:
        Destination path

    Raises:
        FilesystemError: If the source is missing or the copy fails
    """
    source = Path(source)
    destination = Path(destination)

    if not source.is_file():
        raise FilesystemError(f"File to install not found: {source}")

    try:
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, destination)
    except OSError as e:
        raise FilesystemError(f"Failed to copy {source} to {destination}: {e}") from e

    return destination


def ensure_directory(path: Union[str, Path]) -> Path:
    """
    Ensure a directory exists (idempotent).

    Raises:
        FilesystemError: If the directory cannot be created
    """
    path = Path(path)
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise FilesystemError(f"Failed to create directory {path}: {e}") from e
    return path


# ============================================================================
# Safe File Operations
# ============================================================================


def atomic_write(
    file_path: Union[str, Path], content: Union[str, bytes], encoding: str = "utf-8"
) -> None:
    """
    Write file atomically using temp file + rename.

    If the write fails, the original file (if any) remains unchanged.
    """
    file_path = Path(file_path)
    file_path.parent.mkdir(parents=True, exist_ok=True)

    temp_fd, temp_path_str = tempfile.mkstemp(
        dir=file_path.parent, prefix=f".{file_path.name}.", suffix=".tmp"
    )
    temp_path = Path(temp_path_str)

    try:
        if isinstance(content, str):
            with open(temp_fd, "w", encoding=encoding) as f:
                f.write(content)
        else:
            with open(temp_fd, "wb") as f:
                f.write(content)

        temp_path.replace(file_path)

    except Exception:
        temp_path.unlink(missing_ok=True)
        raise


def atomic_copy(source: Union[str, Path], destination: Union[str, Path]) -> None:
    """Copy a file so that destination is never observed half-written."""
    destination = Path(destination)
    destination.parent.mkdir(parents=True, exist_ok=True)

    temp_fd, temp_path_str = tempfile.mkstemp(
        dir=destination.parent, prefix=f".{destination.name}.", suffix=".tmp"
    )
    temp_path = Path(temp_path_str)

    try:
        with open(temp_fd, "wb") as dst, open(source, "rb") as src:
            shutil.copyfileobj(src, dst)
        temp_path.replace(destination)
    except Exception:
        temp_path.unlink(missing_ok=True)
        raise


def safe_rmtree(path: Union[str, Path]) -> None:
    """
    Remove a directory tree.

    Read-only files are made writable first on Windows.

    Raises:
        CleanupWarning: If the tree cannot be removed
    """
    path = Path(path)

    if not path.exists():
        return

    def handle_remove_readonly(func, target, exc):
        """Error handler for Windows read-only files."""
        if IS_WINDOWS and not os.access(target, os.W_OK):
            os.chmod(target, 0o777)
            func(target)
        else:
            raise exc if isinstance(exc, BaseException) else exc[1]

    try:
        if sys.version_info >= (3, 12):
            shutil.rmtree(path, onexc=handle_remove_readonly)
        else:
            shutil.rmtree(path, onerror=handle_remove_readonly)
    except OSError as e:
        raise CleanupWarning(f"Failed to remove directory '{path}': {e}") from e


__all__ = [
    "ArchiveFormat",
    "ArchiveExtractor",
    "ZipExtractor",
    "TarXzExtractor",
    "get_extractor",
    "strip_components",
    "is_relative_to",
    "make_executable",
    "install_file",
    "ensure_directory",
    "atomic_write",
    "atomic_copy",
    "safe_rmtree",
    "IS_WINDOWS",
]
