"""
Ausbildung job miner.

A run has three strictly sequential phases:

1. discovery      - collect every posting currently advertised on the sources
2. reconciliation - refresh known postings, fetch/extract/insert new ones
3. staleness      - flag stored active postings that vanished from the listing

Staleness marking only happens when every source produced a listing, so a
flaky listing fetch can never deactivate the whole table.

The verification sweep is independent: it re-fetches postings that have not
been checked for a while, deactivates the ones whose page is gone and
overwrites the ones whose key fields changed.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Set

from pydantic import BaseModel

from core.config import MinerConfig
from core.html_storage import HTMLStorage
from core.models import ExtractionMethod, JobPosting, ListingItem, Salary, SalarySource, TariffType
from core.salary_resolver import SalaryResolution, resolve_first_year_salary
from crawler.html_fetch import JobScraper, clean_html
from pipeline.extraction_client import ExtractionClient
from pipeline.job_store import DuplicateJobError, JobStore, StoreUnavailableError

logger = logging.getLogger(__name__)

# Fields compared by the verification sweep.
CHANGE_FIELDS = (
    'job_title',
    'company_name',
    'application_deadline',
    'available_positions',
    'german_level_requirement',
    'english_level_requirement',
    'education_required',
)

# Fields a re-extraction never overwrites.
PRESERVED_FIELDS = {
    'original_link',
    'source_platform',
    'posted_at',
    'last_checked_at',
    'vacancy_count',
    'is_active',
    'benefits_verified',
    'benefits_last_updated',
}


class RunStats(BaseModel):
    listed: int = 0
    new: int = 0
    inserted: int = 0
    updated: int = 0
    refreshed: int = 0
    skipped: int = 0
    failed: int = 0
    deactivated: int = 0
    fallback_used: int = 0


class VerificationStats(BaseModel):
    checked: int = 0
    updated: int = 0
    unchanged: int = 0
    deactivated: int = 0
    failed: int = 0


def has_job_changes(existing: JobPosting, fresh: JobPosting) -> bool:
    """True if any field the sweep tracks differs between two versions of a posting."""
    for field in CHANGE_FIELDS:
        if getattr(existing, field) != getattr(fresh, field):
            return True

    if existing.salary.first_year_salary != fresh.salary.first_year_salary:
        return True
    if existing.salary.third_year_salary != fresh.salary.third_year_salary:
        return True

    if sorted(existing.tech_stack) != sorted(fresh.tech_stack):
        return True
    if sorted(existing.benefits_tags) != sorted(fresh.benefits_tags):
        return True

    return False


class JobMiner:
    """Runs mining and verification against one store"""

    def __init__(
        self,
        config: MinerConfig,
        store: JobStore,
        scraper: JobScraper,
        client: ExtractionClient,
        html_storage: Optional[HTMLStorage] = None,
        salary_resolver: Callable[..., SalaryResolution] = resolve_first_year_salary,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.config = config
        self.store = store
        self.scraper = scraper
        self.client = client
        self.html_storage = html_storage
        self.salary_resolver = salary_resolver
        self.clock = clock

    @classmethod
    def from_config(cls, config: MinerConfig) -> "JobMiner":
        if not config.database_url:
            raise ValueError("DATABASE_URL is not set")
        return cls(
            config=config,
            store=JobStore(config.database_url, config.jobs_table),
            scraper=JobScraper.from_config(config),
            client=ExtractionClient.from_config(config),
            html_storage=HTMLStorage(config.html_storage_path),
        )

    def close(self):
        self.scraper.close()

    def run(self, verify: bool = True) -> Dict[str, BaseModel]:
        """Verification sweep (optional) followed by a mining run."""
        results: Dict[str, BaseModel] = {}
        if verify:
            results['verification'] = self.verify_old_jobs()
        results['mining'] = self.mine()
        return results

    # ------------------------------------------------------------------
    # Mining
    # ------------------------------------------------------------------

    def mine(self) -> RunStats:
        """
        Run discovery, reconciliation and staleness marking.

        Returns:
            RunStats

        Raises:
            StoreUnavailableError: the store cannot be reached
        """
        now = self.clock()
        stats = RunStats()

        # Phase 1: discovery
        listing, complete = self._discover()
        stats.listed = len(listing)
        if not listing:
            logger.warning("[miner] Listing is empty, ending run without changes")
            return stats
        logger.info(f"[miner] Phase 1 done: {stats.listed} posting(s) listed")

        # Phase 2: reconciliation
        processed_new = 0
        for item in listing:
            try:
                existing = self.store.get_by_url(item.url)
                if existing is not None:
                    self._refresh_existing(existing, item, now, stats)
                    continue

                stats.new += 1
                if processed_new >= self.config.max_jobs_per_run:
                    stats.skipped += 1
                    continue
                processed_new += 1
                self._process_new(item, now, stats)

            except StoreUnavailableError:
                raise
            except Exception as e:
                logger.warning(f"[miner] Failed to process {item.url}: {e}", exc_info=True)
                stats.failed += 1

        if processed_new >= self.config.max_jobs_per_run:
            logger.info(f"[miner] Reached max jobs per run ({self.config.max_jobs_per_run})")
        logger.info(
            f"[miner] Phase 2 done: new={stats.new} inserted={stats.inserted} updated={stats.updated} "
            f"refreshed={stats.refreshed} skipped={stats.skipped} failed={stats.failed}"
        )

        # Phase 3: staleness
        if complete:
            stats.deactivated = self._mark_stale({item.url for item in listing}, now)
        else:
            logger.warning("[miner] At least one source returned no listing, skipping staleness marking")

        logger.info(f"[miner] Run complete: {stats.model_dump()}")
        return stats

    def _discover(self):
        """All listed postings across sources, deduplicated, plus whether every source answered."""
        listing: List[ListingItem] = []
        seen: Set[str] = set()
        complete = True

        for source_url in self.config.source_urls:
            items = self.scraper.list_current_postings(source_url)
            if not items:
                logger.warning(f"[miner] No postings listed at {source_url}")
                complete = False
                continue
            for item in items:
                if item.url not in seen:
                    seen.add(item.url)
                    listing.append(item)

        return listing, complete

    def _refresh_existing(self, existing: JobPosting, item: ListingItem, now: datetime, stats: RunStats):
        fields = {'last_checked_at': now}
        changed = False

        if item.vacancy_count is not None and item.vacancy_count != existing.vacancy_count:
            fields['vacancy_count'] = item.vacancy_count
            changed = True
        if not existing.is_active:
            logger.info(f"[miner] Posting reappeared: {item.url}")
            fields['is_active'] = True
            changed = True

        if not self.config.dry_run:
            self.store.update_fields(item.url, fields)

        if changed:
            stats.updated += 1
        else:
            stats.refreshed += 1

    def _process_new(self, item: ListingItem, now: datetime, stats: RunStats):
        html = self.scraper.fetch_full_page(item.url)
        if html is None:
            logger.warning(f"[miner] Failed to fetch {item.url}")
            stats.skipped += 1
            return

        artifact = self.html_storage.store(item.url, html) if self.html_storage else None

        job = self.client.analyze(clean_html(html), item.url)
        if job is None:
            logger.warning(f"[miner] Extraction failed for {item.url}")
            self._discard_artifact(artifact)
            stats.skipped += 1
            return

        if job.extraction_method == ExtractionMethod.HEURISTIC:
            stats.fallback_used += 1

        job = job.model_copy(update={
            'vacancy_count': item.vacancy_count,
            'posted_at': now,
            'last_checked_at': now,
            'is_active': True,
        })
        job = self._enrich_salary(job)

        if self.config.dry_run:
            logger.info(f"[miner] [dry run] Would save: {job.job_title} at {job.company_name}")
            self._discard_artifact(artifact)
            stats.inserted += 1
            return

        try:
            self.store.insert(job)
        except DuplicateJobError:
            logger.info(f"[miner] Already stored, skipping: {item.url}")
            self._discard_artifact(artifact)
            stats.skipped += 1
            return

        self._discard_artifact(artifact)
        stats.inserted += 1
        logger.info(f"[miner] Saved: {job.job_title} at {job.company_name}")

    def _enrich_salary(self, job: JobPosting) -> JobPosting:
        """Run the full resolver when extraction left the salary empty but named a tariff."""
        if not self.config.enrich_salary:
            return job
        if job.salary_source != SalarySource.NONE or job.tariff_type == TariffType.NONE:
            return job

        result = self.salary_resolver(
            None,
            job.salary.third_year_salary,
            job.tariff_type,
            job.company_name,
            job.original_link,
        )
        if result.source == SalarySource.NONE or not result.first_year_salary:
            return job

        return job.model_copy(update={
            'salary': Salary(
                first_year_salary=result.first_year_salary,
                third_year_salary=result.third_year_salary,
                average=result.average,
                currency=job.salary.currency,
            ),
            'salary_source': result.source,
        })

    def _discard_artifact(self, artifact: Optional[str]):
        if self.html_storage and artifact:
            self.html_storage.delete(artifact)

    def _mark_stale(self, listed_urls: Set[str], now: datetime) -> int:
        stale = self.store.list_active_urls() - listed_urls
        if not stale:
            logger.info("[miner] Phase 3 done: no stale postings")
            return 0

        if self.config.dry_run:
            logger.info(f"[miner] [dry run] Would mark {len(stale)} posting(s) inactive")
            return len(stale)

        count = self.store.mark_inactive(sorted(stale), now)
        logger.info(f"[miner] Phase 3 done: {count} posting(s) marked inactive")
        return count

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def verify_old_jobs(self) -> VerificationStats:
        """
        Re-check postings not verified within ``verify_after_days``.

        Page gone: inactive. Changed: overwritten. Unchanged or failed
        extraction: only the check timestamp moves.
        """
        now = self.clock()
        stats = VerificationStats()
        checked_before = now - timedelta(days=self.config.verify_after_days)

        jobs = self.store.find_due_for_verification(checked_before, self.config.verify_batch)
        logger.info(f"[miner] Verifying {len(jobs)} posting(s) not checked since {checked_before.date()}")

        for job in jobs:
            stats.checked += 1
            try:
                self._verify_one(job, now, stats)
            except StoreUnavailableError:
                raise
            except Exception as e:
                logger.warning(f"[miner] Verification failed for {job.original_link}: {e}")
                stats.failed += 1
                self._write(job.original_link, {'last_checked_at': now})

        logger.info(f"[miner] Verification done: {stats.model_dump()}")
        return stats

    def _verify_one(self, job: JobPosting, now: datetime, stats: VerificationStats):
        url = job.original_link
        html = self.scraper.fetch_full_page(url)

        if html is None:
            logger.info(f"[miner] Posting no longer available: {url}")
            self._write(url, {'is_active': False, 'last_checked_at': now})
            stats.deactivated += 1
            return

        fresh = self.client.analyze(clean_html(html), url)
        if fresh is None:
            logger.warning(f"[miner] Re-extraction failed for {url}")
            self._write(url, {'last_checked_at': now})
            stats.failed += 1
            return

        if (fresh.extraction_method == ExtractionMethod.HEURISTIC
                and job.extraction_method == ExtractionMethod.LLM):
            logger.info(f"[miner] Keeping stored extraction for {url}, fresh result is heuristic only")
            self._write(url, {'last_checked_at': now, 'is_active': True})
            stats.unchanged += 1
            return

        fresh = self._keep_company_salary(job, fresh)

        if has_job_changes(job, fresh):
            fields = {
                name: getattr(fresh, name)
                for name in JobPosting.model_fields
                if name not in PRESERVED_FIELDS
            }
            fields.update({'last_checked_at': now, 'is_active': True})
            logger.info(f"[miner] Posting changed, updating: {url}")
            self._write(url, fields)
            stats.updated += 1
        else:
            self._write(url, {'last_checked_at': now, 'is_active': True})
            stats.unchanged += 1

    def _keep_company_salary(self, job: JobPosting, fresh: JobPosting) -> JobPosting:
        """Re-extraction only resolves from the tariff table; it never replaces a company-website salary."""
        if (job.salary_source == SalarySource.COMPANY_WEBSITE
                and fresh.salary_source in (SalarySource.TARIFF_STANDARD, SalarySource.NONE)):
            return fresh.model_copy(update={'salary': job.salary, 'salary_source': job.salary_source})
        return fresh

    def _write(self, url: str, fields: Dict):
        if self.config.dry_run:
            logger.debug(f"[miner] [dry run] Would update {url}: {sorted(fields)}")
            return
        self.store.update_fields(url, fields)
