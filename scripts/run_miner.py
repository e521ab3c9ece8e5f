#!/usr/bin/env python3
"""
Run the Ausbildung miner.

Verifies stale postings first (unless --skip-verify), then mines every
configured source. Exits with status 1 if any posting failed.
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
from miner import JobMiner
from pipeline.job_store import StoreUnavailableError


def main():
    parser = argparse.ArgumentParser(description="Mine Ausbildung postings into the job store")
    parser.add_argument('--dry-run', action='store_true', help='Extract but do not write to the store')
    parser.add_argument('--max-jobs', type=int, help='Max new postings to process this run')
    parser.add_argument('--skip-verify', action='store_true', help='Skip the verification sweep')
    parser.add_argument('--verify-only', action='store_true', help='Only run the verification sweep')
    parser.add_argument('--init-schema', action='store_true', help='Create the jobs table if missing')
    args = parser.parse_args()

    overrides = {}
    if args.dry_run:
        overrides['dry_run'] = True
    if args.max_jobs is not None:
        overrides['max_jobs_per_run'] = args.max_jobs

    try:
        config = MinerConfig(**overrides)
        miner = JobMiner.from_config(config)
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    config.log_summary()

    failed = 0
    try:
        if args.init_schema:
            miner.store.ensure_schema()

        if args.verify_only:
            verification = miner.verify_old_jobs()
            failed = verification.failed
            print(f"Verification: {verification.model_dump()}")
        else:
            results = miner.run(verify=not args.skip_verify)
            for name, stats in results.items():
                print(f"{name.capitalize()}: {stats.model_dump()}")
            failed = results['mining'].failed
    except StoreUnavailableError as e:
        logger.error(f"Job store unavailable: {e}")
        sys.exit(1)
    finally:
        miner.close()

    sys.exit(1 if failed else 0)


if __name__ == "__main__":
    main()
