"""
Salary enrichment job.

Revisits stored postings that name a collective agreement but carry no
first-year salary. The company's career page is fetched once per posting:
its benefits, tariff and relocation flags are merged into the record, and its
salary figure feeds the full resolver (company website, then tariff table).
Postings without a result are stamped so the cooldown keeps them from being
retried on every run.
"""

import time
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from core.company_benefits import CompanyBenefits, fetch_company_benefits, merge_company_benefits
from core.models import Salary, SalarySource
from core.salary_resolver import SalaryResolution, resolve_first_year_salary

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 50
DEFAULT_COOLDOWN_DAYS = 30
DEFAULT_DELAY_MS = 2000


class EnrichmentStats(BaseModel):
    total: int = 0
    checked: int = 0
    updated: int = 0
    benefits_merged: int = 0
    failed: int = 0
    skipped: int = 0
    errors: List[str] = Field(default_factory=list)


def _fetched_salary(company_data: Optional[CompanyBenefits]):
    """Company lookup answering from an already fetched career page."""
    def lookup(company_name: str, known_url: Optional[str]) -> Optional[int]:
        return company_data.first_year_salary if company_data else None
    return lookup


def enrich_missing_salaries(
    store,
    limit: int = DEFAULT_LIMIT,
    cooldown_days: int = DEFAULT_COOLDOWN_DAYS,
    dry_run: bool = False,
    delay_ms: int = DEFAULT_DELAY_MS,
    resolver: Callable[..., SalaryResolution] = resolve_first_year_salary,
    company_fetcher: Callable[..., Optional[CompanyBenefits]] = fetch_company_benefits,
    sleep: Callable[[float], None] = time.sleep,
    now: Optional[datetime] = None,
) -> EnrichmentStats:
    """
    Fill in first-year salaries and company benefits for stored postings that have a tariff.

    Args:
        store: JobStore (or anything with find_missing_salary/update_fields)
        limit: Max postings per run
        cooldown_days: Skip postings checked within this many days; 0 disables
        dry_run: Resolve but never write
        delay_ms: Pause between postings
        resolver: Full salary resolver
        company_fetcher: Career page fetcher, (company_name, known_url) -> CompanyBenefits or None
        sleep: Sleep callable
        now: Current time

    Returns:
        EnrichmentStats
    """
    now = now or datetime.utcnow()
    stats = EnrichmentStats()

    updated_before = now - timedelta(days=cooldown_days) if cooldown_days > 0 else None
    jobs = store.find_missing_salary(updated_before, limit)
    stats.total = len(jobs)
    logger.info(f"[salary] {stats.total} posting(s) without first-year salary (dry_run={dry_run})")

    for index, job in enumerate(jobs):
        stats.checked += 1
        try:
            company_data = company_fetcher(job.company_name, job.original_link)
            result = resolver(
                None,
                job.salary.third_year_salary,
                job.tariff_type,
                job.company_name,
                job.original_link,
                company_lookup=_fetched_salary(company_data),
            )

            updates: Dict[str, Any] = {}
            if company_data:
                updates.update(merge_company_benefits(job, company_data))
                stats.benefits_merged += 1

            if result.source != SalarySource.NONE and result.first_year_salary:
                logger.info(
                    f"[salary] {job.company_name}: {result.first_year_salary} EUR ({result.source.value})"
                )
                updates['salary'] = Salary(
                    first_year_salary=result.first_year_salary,
                    third_year_salary=result.third_year_salary,
                    average=result.average,
                    currency=job.salary.currency,
                )
                updates['salary_source'] = result.source
                stats.updated += 1
            else:
                logger.info(f"[salary] {job.company_name}: no salary found")
                stats.skipped += 1

            if updates or cooldown_days > 0:
                updates['benefits_last_updated'] = now
            if updates and not dry_run:
                store.update_fields(job.original_link, updates)

        except Exception as e:
            logger.warning(f"[salary] Enrichment failed for {job.company_name}: {e}")
            stats.failed += 1
            stats.errors.append(f"{job.company_name}: {e}")

        if delay_ms > 0 and index < len(jobs) - 1:
            sleep(delay_ms / 1000.0)

    logger.info(
        f"[salary] Enrichment done: checked={stats.checked} updated={stats.updated} "
        f"benefits={stats.benefits_merged} skipped={stats.skipped} failed={stats.failed}"
    )
    return stats
