"""
Entry point for running ffstatic as a module.

Usage: python -m ffstatic [command] [options]
"""

from ffstatic.cli.parser import main

if __name__ == "__main__":
    main()
