"""
Package entry point.

Allows running: python -m maps_scraper --query "lawyers" --countries MK
"""

import sys

from .cli import main

if __name__ == "__main__":
    sys.exit(main())
