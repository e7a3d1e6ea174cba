#!/usr/bin/env python3
"""
Whale Monitor Service - CLI Entry Point
=======================================

Runs the continuous whale position monitor and its reporting API.

Usage:
    # Start monitor
    python scripts/run_monitor.py

    # Dry run (alerts logged only, no Telegram)
    python scripts/run_monitor.py --dry-run

    # Test Telegram configuration
    python scripts/run_monitor.py --test-telegram
"""

import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from whale_monitor.cli import main


if __name__ == "__main__":
    sys.exit(main())
