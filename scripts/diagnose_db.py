#!/usr/bin/env python3
"""
Database and cache diagnostics.

Prints connection status, table row counts, a sample of the state
generation view, and cache health.

Usage:
    python scripts/diagnose_db.py
    python scripts/diagnose_db.py --init   # create tables and apply migrations first
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv


async def run(args) -> int:
    from energy_insights.cache.monitoring import CacheMonitor
    from energy_insights.cache.redis_cache import create_cache
    from energy_insights.database.session import Database

    async with Database() as database:
        if args.init:
            await database.init_db()
        db_info = await database.get_db_info()

    cache = await create_cache()
    try:
        health = await CacheMonitor(cache).health_check()
    finally:
        await cache.close()

    print("=== Database ===")
    print(json.dumps(db_info, indent=2, default=str))
    print("\n=== Cache ===")
    print(json.dumps(health.to_dict(), indent=2, default=str))

    return 0 if db_info.get("connected") else 1


def main() -> int:
    parser = argparse.ArgumentParser(description="Diagnose database and cache")
    parser.add_argument("--init", action="store_true", help="Create tables and apply migrations")
    args = parser.parse_args()

    load_dotenv()
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stdout,
    )
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
