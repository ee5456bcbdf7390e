#!/usr/bin/env python3
"""
Refresh the state generation aggregate.

Runs REFRESH MATERIALIZED VIEW CONCURRENTLY so readers are not blocked.
Use after a failed ingestion reconciliation or a manual data fix.

Usage:
    python scripts/refresh_materialized_view.py
    python scripts/refresh_materialized_view.py --invalidate --warm
    python scripts/refresh_materialized_view.py --warm --years 2023 2022
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv


def setup_logging(verbose: bool = False):
    """Configure logging."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stdout,
    )


async def run(args) -> int:
    from energy_insights.cache.keys import GENERATION_PREFIXES
    from energy_insights.errors import AggregateRefreshError, ValidationFailedError
    from energy_insights.runtime import open_resources
    from energy_insights.schemas import ReconcileQuery, validate_params

    logger = logging.getLogger("refresh_materialized_view")

    if args.years is not None:
        try:
            validate_params(ReconcileQuery, priority_years=args.years)
        except ValidationFailedError as e:
            logger.error(str(e))
            return 1

    async with open_resources() as resources:
        if args.invalidate and args.warm:
            try:
                result = await resources.reconciler.reconcile_after_bulk_load(args.years)
            except AggregateRefreshError as e:
                logger.error(f"Refresh failed: {e}")
                return 1
            logger.info(f"Reconciled: {result.to_dict()}")
            return 0

        try:
            await resources.store.refresh_aggregates_concurrently()
        except AggregateRefreshError as e:
            logger.error(f"Refresh failed: {e}")
            return 1

        if args.invalidate:
            deleted = await resources.invalidator.delete_by_prefixes(GENERATION_PREFIXES)
            for prefix, count in deleted.items():
                logger.info(f"  - {prefix}* : {count} keys deleted")

        if args.warm:
            report = await resources.warmer.warm_hot_set(args.years)
            logger.info(f"Warming: {report.to_dict()}")

        stats = await resources.warmer.get_warming_stats()
        logger.info(
            f"Cache: {stats['total_keys']} keys, "
            f"{stats['memory_usage'] / 1024 / 1024:.2f} MB, connected={stats['is_connected']}"
        )
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Refresh state_generation_mv concurrently")
    parser.add_argument("--invalidate", action="store_true", help="Delete cached query results")
    parser.add_argument("--warm", action="store_true", help="Re-warm the hot cache set")
    parser.add_argument("--years", type=int, nargs="*", default=None,
                        help="Years to warm first")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args()

    load_dotenv()
    setup_logging(args.verbose)
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
