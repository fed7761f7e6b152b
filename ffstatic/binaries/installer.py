"""
Installation orchestration for ffmpeg and ffprobe.

InstallationManager drives the whole pipeline as an explicit state machine:

    CHECK_EXISTING -> RESOLVE -> DOWNLOAD_PRIMARY -> [EXTRACT_PRIMARY]
        -> INSTALL_PRIMARY -> FETCH_PRIMARY_DOCS -> DOWNLOAD_SECONDARY
        -> INSTALL_SECONDARY -> FETCH_SECONDARY_DOCS -> CLEANUP -> DONE

Any failure in a required step ends in FAILED (after CLEANUP). Documentation
fetches are best-effort and only ever log warnings. The secondary binary is
not requested until the primary one is fully installed.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional

from ffstatic.binaries.sources import (
    BinaryKind,
    SourceSelection,
    companion_urls,
    select_source,
)
from ffstatic.core.cache import CacheStore, FileCache
from ffstatic.core.config import InstallerConfig, load_config
from ffstatic.core.directory import executable_name, get_install_paths
from ffstatic.core.download import CachingDownloader, ProgressCallback, is_gzip_url
from ffstatic.core.exceptions import (
    CleanupWarning,
    FFStaticError,
    FilesystemError,
    PlatformUnsupportedError,
)
from ffstatic.core.filesystem import (
    ArchiveFormat,
    ensure_directory,
    get_extractor,
    install_file,
    make_executable,
    safe_rmtree,
)

logger = logging.getLogger(__name__)

ProgressFactory = Callable[[str], ProgressCallback]

DOC_WORKERS = 2


class InstallState(Enum):
    """States of the installation state machine."""

    CHECK_EXISTING = "check_existing"
    RESOLVE = "resolve"
    DOWNLOAD_PRIMARY = "download_primary"
    EXTRACT_PRIMARY = "extract_primary"
    INSTALL_PRIMARY = "install_primary"
    FETCH_PRIMARY_DOCS = "fetch_primary_docs"
    DOWNLOAD_SECONDARY = "download_secondary"
    INSTALL_SECONDARY = "install_secondary"
    FETCH_SECONDARY_DOCS = "fetch_secondary_docs"
    CLEANUP = "cleanup"
    DONE = "done"
    FAILED = "failed"


# BinaryKind -> (download, extract, install, docs) states
_BINARY_STATES = {
    BinaryKind.PRIMARY: (
        InstallState.DOWNLOAD_PRIMARY,
        InstallState.EXTRACT_PRIMARY,
        InstallState.INSTALL_PRIMARY,
        InstallState.FETCH_PRIMARY_DOCS,
    ),
    BinaryKind.SECONDARY: (
        InstallState.DOWNLOAD_SECONDARY,
        None,
        InstallState.INSTALL_SECONDARY,
        InstallState.FETCH_SECONDARY_DOCS,
    ),
}


# ============================================================================
# Plan Data Model
# ============================================================================


@dataclass(frozen=True)
class InstallTarget:
    """Where a binary must end up."""

    binary_name: str
    final_path: Path
    executable_on_non_windows: bool = True


@dataclass(frozen=True)
class DownloadTarget:
    """A single fetch."""

    url: str
    destination_path: Path
    is_gzip_encoded: bool = False


@dataclass(frozen=True)
class ArchivePlan:
    """How to get the executable out of a downloaded archive."""

    archive_format: ArchiveFormat
    source_path: Path
    wanted_entry_path: Optional[str]
    output_dir: Path


@dataclass
class BinaryPlan:
    """Everything needed to acquire one binary."""

    kind: BinaryKind
    target: InstallTarget
    selection: SourceSelection
    download: DownloadTarget
    archive: Optional[ArchivePlan] = None
    extracted_path: Optional[Path] = None
    companions: Dict[Path, str] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.target.binary_name


@dataclass
class InstallationPlan:
    """Ordered plan for one installer run."""

    work_dir: Path
    extract_dir: Path
    binaries: List[BinaryPlan] = field(default_factory=list)

    @property
    def steps(self) -> List[str]:
        """Human-readable steps in execution order."""
        steps = []
        for binary in self.binaries:
            steps.append(f"download {binary.name}")
            if binary.archive is not None:
                steps.append(f"extract {binary.name}")
            steps.append(f"install {binary.name}")
            if binary.companions:
                steps.append(f"fetch {binary.name} docs")
        steps.append("cleanup")
        return steps


# ============================================================================
# Installation Manager
# ============================================================================


class InstallationManager:
    """
    Install ffmpeg and ffprobe for the configured platform.

    Example:
        >>> manager = InstallationManager(load_config())
        >>> exit_code = manager.run()
        >>> manager.state
        <InstallState.DONE: 'done'>
    """

    def __init__(
        self,
        config: InstallerConfig,
        downloader: Optional[CachingDownloader] = None,
        cache: Optional[CacheStore] = None,
        progress_factory: Optional[ProgressFactory] = None,
    ):
        """
        Initialize installation manager.

        Args:
            config: Installer configuration
            downloader: Downloader to use (created from config if None)
            cache: Download cache (FileCache in config.cache_dir if None);
                ignored when downloader is given
            progress_factory: Called with a binary name, returns the
                progress callback for its download
        """
        self.config = config
        if downloader is None:
            cache = cache if cache is not None else FileCache(config.cache_dir)
            downloader = CachingDownloader(config, cache)
        self.downloader = downloader
        self.progress_factory = progress_factory

        self.state = InstallState.CHECK_EXISTING
        self.history: List[InstallState] = []
        self.plan: Optional[InstallationPlan] = None
        self.error: Optional[FFStaticError] = None

        self.install_paths = get_install_paths(
            config.bin_dir, config.os, config.arch
        )

    def _transition(self, state: InstallState) -> None:
        logger.debug(f"Installer state: {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    def run(self) -> int:
        """
        Run the installation.

        Returns:
            0 on success (including when already installed), 1 on failure
        """
        self._transition(InstallState.CHECK_EXISTING)
        try:
            if self.is_installed():
                logger.info("ffmpeg and ffprobe are already installed")
                self._transition(InstallState.DONE)
                return 0

            self._transition(InstallState.RESOLVE)
            self.plan = self.resolve()
            ensure_directory(self.plan.extract_dir)

            for binary in self.plan.binaries:
                self._acquire(binary)
        except FFStaticError as e:
            self.error = e
            logger.error(f"Installation failed: {e}")
        finally:
            if self.state is not InstallState.DONE:
                self._cleanup()

        if self.error is not None:
            self._transition(InstallState.FAILED)
            return 1

        self._transition(InstallState.DONE)
        logger.info("Installation complete!")
        return 0

    def is_installed(self) -> bool:
        """
        Check whether both binaries exist as regular files.

        Raises:
            FilesystemError: If an install path cannot be inspected
        """
        paths = list(self.install_paths.values())
        try:
            return all(path is not None and path.is_file() for path in paths)
        except OSError as e:
            raise FilesystemError(
                f"Cannot check existing installation: {e}"
            ) from e

    def resolve(self) -> InstallationPlan:
        """
        Build the installation plan without touching the filesystem.

        Raises:
            PlatformUnsupportedError: If the platform cannot be served
        """
        config = self.config
        if any(path is None for path in self.install_paths.values()):
            raise PlatformUnsupportedError(
                config.os, config.arch, "not in the support matrix"
            )

        work_dir = Path(config.temp_root) / f"ffstatic-{int(time.time() * 1000)}"
        plan = InstallationPlan(work_dir=work_dir, extract_dir=work_dir / "extracted")

        for kind in (BinaryKind.PRIMARY, BinaryKind.SECONDARY):
            selection = select_source(kind, config.os, config.arch, config)
            plan.binaries.append(self._plan_binary(kind, selection, plan))

        for binary in plan.binaries:
            logger.info(f"{binary.name}: {binary.selection.url}")
        return plan

    def _plan_binary(
        self, kind: BinaryKind, selection: SourceSelection, plan: InstallationPlan
    ) -> BinaryPlan:
        config = self.config
        exe = executable_name(kind.value, config.os)
        target = InstallTarget(
            binary_name=kind.value, final_path=self.install_paths[kind.value]
        )

        archive = None
        extracted_path = None
        if selection.requires_extraction:
            archive_name = selection.url.rsplit("/", 1)[-1]
            destination = plan.work_dir / archive_name
            archive = ArchivePlan(
                archive_format=selection.archive_format,
                source_path=destination,
                wanted_entry_path=f"{selection.archive_root}/bin/{exe}",
                output_dir=plan.extract_dir,
            )
            extracted_path = plan.extract_dir / "bin" / exe
        else:
            destination = target.final_path

        companions = {}
        if selection.has_companions:
            for suffix, url in companion_urls(config.os, config.arch, config).items():
                companions[Path(f"{target.final_path}{suffix}")] = url

        return BinaryPlan(
            kind=kind,
            target=target,
            selection=selection,
            download=DownloadTarget(
                url=selection.url,
                destination_path=destination,
                is_gzip_encoded=is_gzip_url(selection.url),
            ),
            archive=archive,
            extracted_path=extracted_path,
            companions=companions,
        )

    def _acquire(self, binary: BinaryPlan) -> None:
        download_state, extract_state, install_state, docs_state = _BINARY_STATES[
            binary.kind
        ]

        self._transition(download_state)
        logger.info(f"Downloading {binary.name} from {binary.download.url}")
        self._fetch(binary.download.url, binary.download.destination_path, binary.name)

        if binary.archive is not None:
            if extract_state is not None:
                self._transition(extract_state)
            self._extract(binary)

        self._transition(install_state)
        self._install(binary)

        if binary.companions:
            self._transition(docs_state)
            self._fetch_docs(binary)

    def _fetch(self, url: str, destination: Path, label: Optional[str] = None) -> None:
        progress = None
        if label and self.progress_factory is not None:
            progress = self.progress_factory(label)
        try:
            temp_dir = self.plan.work_dir if self.plan is not None else None
            self.downloader.fetch(url, destination, progress, temp_dir=temp_dir)
        finally:
            finish = getattr(progress, "finish", None)
            if finish is not None:
                finish()

    def _extract(self, binary: BinaryPlan) -> None:
        archive = binary.archive
        logger.info(f"{binary.name} download complete. Extracting...")
        extractor = get_extractor(archive.archive_format)
        extractor.extract(
            archive.source_path, archive.output_dir, archive.wanted_entry_path
        )

    def _install(self, binary: BinaryPlan) -> None:
        final_path = binary.target.final_path
        if binary.extracted_path is not None:
            logger.debug(f"Copying {binary.extracted_path} -> {final_path}")
            install_file(binary.extracted_path, final_path)

        if binary.target.executable_on_non_windows and self.config.os != "windows":
            make_executable(final_path)

        logger.info(f"Successfully installed {binary.name} to {final_path}")

    def _fetch_docs(self, binary: BinaryPlan) -> None:
        """Download README/LICENSE companions; failures only warn."""
        with ThreadPoolExecutor(max_workers=DOC_WORKERS) as executor:
            futures = {
                executor.submit(self._fetch, url, destination): destination
                for destination, url in binary.companions.items()
            }

        for future, destination in futures.items():
            error = future.exception()
            if error is None:
                logger.debug(f"Downloaded {destination.name}")
            elif isinstance(error, Exception):
                logger.warning(
                    f"Failed to download the {binary.name} {destination.suffix[1:]}: {error}"
                )
            else:
                raise error

    def _cleanup(self) -> None:
        self._transition(InstallState.CLEANUP)
        if self.plan is None:
            return
        try:
            safe_rmtree(self.plan.work_dir)
            logger.debug(f"Removed working directory {self.plan.work_dir}")
        except CleanupWarning as e:
            logger.warning(f"Failed to clean up temporary files: {e}")


def install(config: Optional[InstallerConfig] = None, **kwargs) -> int:
    """
    Convenience function to install ffmpeg and ffprobe.

    Args:
        config: Installer configuration (loaded from the environment if None)
        **kwargs: Passed to InstallationManager

    Returns:
        Process exit code

    Example:
        >>> from ffstatic.binaries.installer import install
        >>> raise SystemExit(install())
    """
    if config is None:
        config = load_config()
    return InstallationManager(config, **kwargs).run()


__all__ = [
    "InstallState",
    "InstallTarget",
    "DownloadTarget",
    "ArchivePlan",
    "BinaryPlan",
    "InstallationPlan",
    "InstallationManager",
    "install",
]
