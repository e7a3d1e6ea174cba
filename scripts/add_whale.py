#!/usr/bin/env python3
"""
Add Whales
==========

Adds addresses to the whale registry. The registry only grows: existing
addresses are left untouched.

Usage:
    python scripts/add_whale.py 0xabc... 0xdef...
    python scripts/add_whale.py --file whales.txt --source leaderboard
"""

import argparse
import re
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from whale_monitor.config import Config
from whale_monitor.db.whale_db import WhaleDB
from whale_monitor.errors import ConfigError, StoreUnavailable

ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def read_addresses(args) -> list:
    addresses = list(args.addresses)
    if args.file:
        for line in Path(args.file).read_text().splitlines():
            line = line.split("#", 1)[0].strip()
            if line:
                addresses.append(line)
    return addresses


def main():
    parser = argparse.ArgumentParser(description="Add addresses to the whale registry")
    parser.add_argument("addresses", nargs="*", help="Addresses (0x + 40 hex chars)")
    parser.add_argument("--file", help="Text file with one address per line")
    parser.add_argument("--source", default="manual", help="Source label (default: manual)")
    args = parser.parse_args()

    addresses = read_addresses(args)
    if not addresses:
        parser.error("no addresses given")

    try:
        config = Config.from_env()
        db = WhaleDB(config.db_path)
    except (ConfigError, StoreUnavailable) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    added = skipped = invalid = 0
    for address in addresses:
        if not ADDRESS_RE.match(address):
            print(f"  invalid: {address}")
            invalid += 1
            continue
        if db.add_whale(address, source=args.source):
            print(f"  added:   {address.lower()}")
            added += 1
        else:
            skipped += 1

    print(f"\nAdded {added}, already tracked {skipped}, invalid {invalid}")
    print(f"Registry now holds {db.count()} whales")
    return 1 if invalid and not added else 0


if __name__ == "__main__":
    sys.exit(main())
