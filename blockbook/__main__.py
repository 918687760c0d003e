"""
Entry point for running Blockbook as a module.

Usage:
    python -m blockbook serve
    python -m blockbook listen --once
"""

from blockbook.cli import main

if __name__ == "__main__":
    main()
