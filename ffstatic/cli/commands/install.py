"""
Install command: download and install ffmpeg and ffprobe.
"""

import logging

from ffstatic.binaries.installer import InstallationManager
from ffstatic.cli.utils import config_from_args
from ffstatic.core.progress import ProgressIndicator

logger = logging.getLogger(__name__)


def run(args) -> int:
    """
    Run the install command.

    Args:
        args: Parsed command-line arguments

    Returns:
        Exit code (0 for success or already installed, 1 on failure)
    """
    config = config_from_args(args)
    logger.info(f"Platform: {config.os}, Architecture: {config.arch}")

    progress_factory = None if args.quiet else ProgressIndicator
    manager = InstallationManager(config, progress_factory=progress_factory)
    return manager.run()
