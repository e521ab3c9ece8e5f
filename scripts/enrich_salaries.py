#!/usr/bin/env python3
"""
Fill in missing first-year salaries for stored postings.

Usage:
    python scripts/enrich_salaries.py                 # 50 postings, 30 day cooldown
    python scripts/enrich_salaries.py --limit 100
    python scripts/enrich_salaries.py --cooldown 0    # ignore cooldown
    python scripts/enrich_salaries.py --dry-run
"""

import os
import sys
import argparse
import logging
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

from core.config import MinerConfig
from pipeline.job_store import JobStore, StoreUnavailableError
from pipeline.salary_enrichment import (
    DEFAULT_COOLDOWN_DAYS,
    DEFAULT_DELAY_MS,
    DEFAULT_LIMIT,
    enrich_missing_salaries,
)


def main():
    parser = argparse.ArgumentParser(description="Enrich stored postings with first-year salaries and company benefits")
    parser.add_argument('--limit', type=int, default=DEFAULT_LIMIT, help='Max postings to process')
    parser.add_argument('--cooldown', type=int, default=DEFAULT_COOLDOWN_DAYS,
                        help='Days before a posting is checked again (0 disables)')
    parser.add_argument('--dry-run', action='store_true', help='Resolve but do not write')
    parser.add_argument('--delay', type=int, default=DEFAULT_DELAY_MS, help='Delay between postings in ms')
    args = parser.parse_args()

    config = MinerConfig()
    if not config.database_url:
        logger.error("DATABASE_URL is not set")
        sys.exit(1)

    store = JobStore(config.database_url, config.jobs_table)

    try:
        stats = enrich_missing_salaries(
            store,
            limit=args.limit,
            cooldown_days=args.cooldown,
            dry_run=args.dry_run,
            delay_ms=args.delay,
        )
    except StoreUnavailableError as e:
        logger.error(f"Job store unavailable: {e}")
        sys.exit(1)

    print("=" * 60)
    print("Salary Enrichment Results:")
    print(f"  Total:   {stats.total}")
    print(f"  Checked: {stats.checked}")
    print(f"  Updated: {stats.updated}")
    print(f"  Benefits merged: {stats.benefits_merged}")
    print(f"  Skipped: {stats.skipped}")
    print(f"  Failed:  {stats.failed}")
    if stats.errors:
        print("\nFirst 10 errors:")
        for error in stats.errors[:10]:
            print(f"  - {error}")

    sys.exit(1 if stats.failed else 0)


if __name__ == "__main__":
    main()
