"""
Shared utilities for CLI commands.
"""

import sys
from typing import Optional

from ffstatic.core.config import InstallerConfig, load_config


def config_from_args(args) -> InstallerConfig:
    """
    Build the installer configuration from parsed global options.

    Command-line values override environment variables and the
    configuration file; options left unset fall through.

    Raises:
        ConfigError: If the configuration file is invalid
    """
    return load_config(
        config_file=args.config,
        os=args.platform,
        arch=args.arch,
        bin_dir=args.bin_dir,
        cache_dir=args.cache_dir,
    )


def print_error(message: str, details: Optional[str] = None):
    """
    Print error message to stderr in consistent format.

    Args:
        message: Main error message
        details: Optional additional details
    """
    print(f"ERROR: {message}", file=sys.stderr)
    if details:
        print(f"  {details}", file=sys.stderr)
