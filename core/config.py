"""
Miner configuration.
Reads environment variables; any value can be overridden by keyword for tests.
"""

import os
import logging
from typing import List, Optional
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

DEFAULT_SOURCE_URL = "https://www.ausbildung.de/suche/?search=Fachinformatiker"
DEFAULT_MODEL = "google/gemini-2.5-flash"


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


def _env_list(name: str) -> List[str]:
    return [item.strip() for item in os.getenv(name, "").split(",") if item.strip()]


def load_api_keys() -> List[str]:
    """OPENROUTER_API_KEYS (comma-separated) plus OPENROUTER_API_KEY, deduplicated."""
    keys = _env_list("OPENROUTER_API_KEYS")
    single = os.getenv("OPENROUTER_API_KEY", "").strip()
    if single and single not in keys:
        keys.append(single)
    return keys


def mask_dsn(dsn: Optional[str]) -> str:
    if not dsn:
        return "<unset>"
    try:
        parsed = urlparse(dsn)
        return f"{parsed.scheme}://{parsed.username}:***@{parsed.hostname}:{parsed.port or 5432}{parsed.path}"
    except ValueError:
        return "<unparseable>"


class MinerConfig:
    """Settings for a mining run"""

    def __init__(self, **overrides):
        self.database_url: Optional[str] = os.getenv("DATABASE_URL")
        self.jobs_table = os.getenv("JOBS_TABLE", "jobs")

        self.api_keys = load_api_keys()
        self.model = os.getenv("OPENROUTER_MODEL", DEFAULT_MODEL)
        self.calls_per_minute = int(os.getenv("EXTRACTION_CALLS_PER_MINUTE", "14"))
        self.min_interval_seconds = float(os.getenv("EXTRACTION_MIN_INTERVAL_SECONDS", "4.0"))
        self.quota_backoff_seconds = float(os.getenv("EXTRACTION_QUOTA_BACKOFF_SECONDS", "30"))
        self.max_backoff_rounds = int(os.getenv("EXTRACTION_MAX_BACKOFF_ROUNDS", "3"))
        self.extraction_timeout = float(os.getenv("EXTRACTION_TIMEOUT_SECONDS", "60"))

        self.source_urls = _env_list("MINER_SOURCE_URLS") or [DEFAULT_SOURCE_URL]
        self.max_jobs_per_run = int(os.getenv("MINER_MAX_JOBS_PER_RUN", "100"))
        self.dry_run = _env_bool("MINER_DRY_RUN", "false")
        self.verify_after_days = int(os.getenv("MINER_VERIFY_AFTER_DAYS", "30"))
        self.verify_batch = int(os.getenv("MINER_VERIFY_BATCH", "50"))
        self.enrich_salary = _env_bool("MINER_ENRICH_SALARY", "true")

        self.scraper_min_delay_ms = int(os.getenv("SCRAPER_MIN_DELAY_MS", "2000"))
        self.scraper_max_delay_ms = int(os.getenv("SCRAPER_MAX_DELAY_MS", "5000"))
        self.scraper_timeout = float(os.getenv("SCRAPER_TIMEOUT_SECONDS", "50"))

        self.html_storage_path = os.getenv("HTML_STORAGE_PATH", "raw_data")

        for name, value in overrides.items():
            if not hasattr(self, name):
                raise ValueError(f"Unknown config option: {name}")
            setattr(self, name, value)

        if self.scraper_max_delay_ms < self.scraper_min_delay_ms:
            raise ValueError("SCRAPER_MAX_DELAY_MS must not be below SCRAPER_MIN_DELAY_MS")

    def log_summary(self):
        logger.info(
            f"[config] db={mask_dsn(self.database_url)} table={self.jobs_table} "
            f"keys={len(self.api_keys)} model={self.model} "
            f"sources={len(self.source_urls)} max_jobs={self.max_jobs_per_run} dry_run={self.dry_run}"
        )
        if not self.api_keys:
            logger.warning("[config] No extraction API keys configured, heuristic parsing only")
