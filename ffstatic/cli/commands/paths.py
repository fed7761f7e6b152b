"""
Paths command: print where the binaries are installed.
"""

from ffstatic.cli.utils import config_from_args, print_error
from ffstatic.core.directory import get_install_paths


def run(args) -> int:
    """
    Run the paths command.

    Prints one 'name: path' line per binary.

    Returns:
        Exit code (1 when the platform is not supported)
    """
    config = config_from_args(args)
    paths = get_install_paths(config.bin_dir, config.os, config.arch)

    if any(path is None for path in paths.values()):
        print_error(
            f"ffmpeg/ffprobe are not available for {config.os}-{config.arch}"
        )
        return 1

    for name, path in paths.items():
        status = "installed" if path.is_file() else "missing"
        print(f"{name}: {path} ({status})")
    return 0
