#!/usr/bin/env python3
"""Main CLI entry point for the lottery data refresh tool."""
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from lotto_refresh.cli import main

if __name__ == "__main__":
    main()
