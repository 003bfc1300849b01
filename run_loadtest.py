#!/usr/bin/env python
"""
vizpad-perf Runner
Quick script to run a vizpad load test without installing the package
"""

import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent / "src"))

from vizpad_perf.cli import run

if __name__ == "__main__":
    run()
