"""Shared pytest configuration for the live_composite test suite."""

import sys
from pathlib import Path

# Project root on the path so the package imports without installation.
PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))
