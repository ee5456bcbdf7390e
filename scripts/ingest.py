#!/usr/bin/env python3
"""
Ingestion Script

Load one year of plant generation data, then refresh the aggregate view,
invalidate the cache and re-warm it.

Usage:
    python scripts/ingest.py --file data/egrid2023.xlsx
    python scripts/ingest.py --file data/egrid2022.xlsx --year 2022 --sheet PLNT22
    python scripts/ingest.py --file export.json --skip-reconcile

Exit codes:
    0  success
    1  ingestion failed, nothing committed
    2  data committed but the aggregate refresh failed; run
       scripts/refresh_materialized_view.py --invalidate --warm
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

EXIT_OK = 0
EXIT_INGESTION_FAILED = 1
EXIT_REFRESH_FAILED = 2


def setup_logging(verbose: bool = False):
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stdout,
    )


async def run(args) -> int:
    from energy_insights.errors import AggregateRefreshError, IngestionError, UpstreamError
    from energy_insights.ingestion.pipeline import IngestionPipeline
    from energy_insights.runtime import open_resources

    logger = logging.getLogger("ingest")

    async with open_resources() as resources:
        pipeline = IngestionPipeline(
            resources.database,
            reconciler=resources.reconciler,
            store=resources.store,
            settings=resources.settings,
        )
        try:
            result = await pipeline.run(
                Path(args.file),
                year=args.year,
                sheet=args.sheet,
                reconcile=not args.skip_reconcile,
            )
        except AggregateRefreshError as e:
            logger.error(f"Data committed but aggregate refresh failed: {e}")
            logger.error("Run: python scripts/refresh_materialized_view.py --invalidate --warm")
            return EXIT_REFRESH_FAILED
        except (IngestionError, UpstreamError) as e:
            logger.error(f"Ingestion failed: {e}")
            return EXIT_INGESTION_FAILED

    print(json.dumps(result.to_dict(), indent=2, default=str))
    return EXIT_OK


def main() -> int:
    parser = argparse.ArgumentParser(description="Load plant generation data")
    parser.add_argument("--file", required=True, help="Path to eGRID .xlsx or JSON export")
    parser.add_argument("--year", type=int, default=None, help="Data year (default: DEFAULT_YEAR)")
    parser.add_argument("--sheet", default="PLNT23", help="Worksheet name (default: PLNT23)")
    parser.add_argument("--skip-reconcile", action="store_true",
                        help="Skip aggregate refresh, invalidation and warming")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args()

    load_dotenv()
    setup_logging(args.verbose)
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
