#!/usr/bin/env python3
"""
Run one knowledge-source processing pass without the HTTP server.

Equivalent to calling GET /api/cron/process-sources, for launchd/cron setups
that run the pipeline directly. Exits non-zero when the run aborts or any
source reports errors.

Usage:
    python scripts/process_sources.py [--status] [--json]

Options:
    --status   Just show knowledge source sync health
    --json     Print the run report as JSON
"""
# Load environment variables from .env FIRST, before any other imports
# This is critical for launchd/cron which don't have access to shell environment
from pathlib import Path
from dotenv import load_dotenv
load_dotenv(Path(__file__).parent.parent / ".env")

import argparse
import asyncio
import json
import logging
import sys

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from api.services.crm_store import get_crm_store
from api.services.pipeline import build_pipeline
from api.services.sync_health import get_all_source_health, get_sync_summary
from api.services.sync_scheduler import RunAbortedError
from config.settings import settings

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def show_status() -> int:
    health = get_all_source_health(get_crm_store())
    summary = get_sync_summary(health)

    print("\nKnowledge Source Health:")
    for h in health:
        last = h.last_sync.isoformat() if h.last_sync else "never"
        flag = " (stale)" if h.is_stale else ""
        print(f"  {h.name} [{h.source_type}]: last sync {last}, status {h.last_status.value if h.last_status else '-'}{flag}")
    print(f"\n  Stale: {summary['stale']} {summary['stale_sources']}")
    print(f"  Failed: {summary['failed']} {summary['failed_sources']}")
    print(f"  All healthy: {summary['all_healthy']}")
    return 0 if summary["all_healthy"] else 1


def run_once(as_json: bool = False) -> int:
    scheduler = build_pipeline(get_crm_store(), settings)

    try:
        report = asyncio.run(scheduler.run())
    except RunAbortedError as e:
        logger.error(f"Run {e.run_id} aborted: {e}")
        return 2

    if as_json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        for name, result in report.results.items():
            if result.skipped:
                logger.info(f"  {name}: skipped (not due)")
            else:
                logger.info(f"  {name}: {result.processed} processed, {result.errors} error(s)")

    return 1 if report.total_errors else 0


def main():
    parser = argparse.ArgumentParser(description="Process all due knowledge sources")
    parser.add_argument("--status", action="store_true", help="Just show sync status")
    parser.add_argument("--json", action="store_true", help="Print the run report as JSON")
    args = parser.parse_args()

    if args.status:
        return show_status()

    return run_once(as_json=args.json)


if __name__ == "__main__":
    sys.exit(main() or 0)
