"""
Prefect Workflow Orchestration - Storefront ETL

Scheduled entry point for the incremental storefront pipeline:
- One task per source run, executed sequentially
- Cron scheduling through ``serve``
- Demo mode against a local SQLite database and a synthetic storefront

Usage:
    python workflows/storefront_etl.py --run-now
    python workflows/storefront_etl.py --schedule
    python workflows/storefront_etl.py --demo
"""

import argparse
import asyncio
import sys
from typing import Dict, List, Optional

from prefect import flow, task, get_run_logger

from storefront_analytics.config import get_settings
from storefront_analytics.config.logging import configure_logging
from storefront_analytics.data import SyntheticConnector
from storefront_analytics.database import CommerceRepository, Database
from storefront_analytics.errors import ConfigurationError, StorefrontAnalyticsError
from storefront_analytics.ingestion import ETLOrchestrator, build_connectors

DEMO_DATABASE_URL = "sqlite+aiosqlite:///storefront_demo.db"
DEMO_SOURCE = "shopify"


# =============================================================================
# TASKS
# =============================================================================

@task(
    name="run_source_etl",
    description="Run the incremental ETL pipeline for one storefront source",
)
async def run_source_etl(orchestrator: ETLOrchestrator, source_type: str) -> dict:
    """Run one source; failures are recorded in the returned run log"""
    logger = get_run_logger()

    run_log = await orchestrator.run_for_source(source_type)

    if run_log.success:
        logger.info(
            f"{source_type}: extracted {run_log.records_extracted}, "
            f"transformed {run_log.records_transformed}, loaded {run_log.records_loaded} "
            f"in {run_log.duration_seconds:.1f}s"
        )
    else:
        logger.error(f"{source_type} failed: {run_log.error_message}")

    return run_log.model_dump(mode="json")


# =============================================================================
# FLOWS
# =============================================================================

@flow(
    name="storefront_etl",
    description="Incremental ETL and analytics for every enabled storefront",
)
async def storefront_etl(
    sources: Optional[List[str]] = None,
    demo: bool = False,
) -> Dict[str, dict]:
    """
    Storefront ETL pipeline.

    Steps per source:
    1. Connect and determine the watermark
    2. Extract, normalize and load customers, products and orders
    3. Recompute customer and daily metrics
    """
    logger = get_run_logger()
    settings = get_settings()

    if demo:
        database = Database(DEMO_DATABASE_URL)
        await database.create_all()
        connectors = {DEMO_SOURCE: SyntheticConnector()}
        sources = sources or [DEMO_SOURCE]
    else:
        settings.validate_sources()
        database = Database.from_settings(settings)
        if not await database.ping():
            await database.dispose()
            raise StorefrontAnalyticsError("Database is not reachable")
        sources = sources or settings.enabled_sources
        connectors = build_connectors(settings, sources)

    orchestrator = ETLOrchestrator.from_settings(
        settings, connectors, CommerceRepository(database)
    )

    logger.info(f"Starting storefront ETL for {', '.join(sources)}")

    results: Dict[str, dict] = {}
    try:
        for source_type in sources:
            results[source_type] = await run_source_etl(orchestrator, source_type)
    finally:
        await database.dispose()

    failed = [name for name, result in results.items() if result["status"] != "success"]
    logger.info(f"Storefront ETL complete: {len(results) - len(failed)} succeeded, {len(failed)} failed")

    return results


# =============================================================================
# DEPLOYMENT CONFIGURATION
# =============================================================================

def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Storefront analytics ETL")
    mode = parser.add_mutually_exclusive_group(required=True)
    mode.add_argument("--run-now", action="store_true", help="Run the pipeline once and exit")
    mode.add_argument("--schedule", action="store_true", help="Serve the flow on the configured cron")
    mode.add_argument("--demo", action="store_true", help="Run once against a synthetic storefront")
    parser.add_argument("--source", action="append", dest="sources", help="Limit the run to a source")
    args = parser.parse_args(argv)

    configure_logging()
    settings = get_settings()

    if args.schedule:
        storefront_etl.serve(
            name="storefront-etl-scheduled",
            cron=settings.pipeline.schedule_cron,
            parameters={"sources": args.sources},
        )
        return 0

    try:
        results = asyncio.run(storefront_etl(sources=args.sources, demo=args.demo))
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    except StorefrontAnalyticsError as e:
        print(f"Pipeline error: {e}", file=sys.stderr)
        return 1

    return 0 if all(r["status"] == "success" for r in results.values()) else 1


if __name__ == "__main__":
    sys.exit(main())
