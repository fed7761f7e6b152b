"""
Entry point for running the ffstatic CLI as a module.

Usage: python -m ffstatic.cli [command] [options]
"""

from .parser import main

if __name__ == "__main__":
    main()
