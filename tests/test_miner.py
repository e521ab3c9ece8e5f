"""
Unit tests for miner.py

The scraper, extraction client and store are in-memory fakes.
"""

import json
from datetime import datetime, timedelta
from unittest.mock import Mock

import pytest

from conftest import FakeStore, make_job
from core.config import MinerConfig
from core.models import ExtractionMethod, ListingItem, Salary, SalarySource, TariffType
from core.salary_resolver import SalaryResolution
from miner import JobMiner, has_job_changes
from pipeline.extraction_client import ExtractionClient
from pipeline.job_store import StoreUnavailableError

NOW = datetime(2026, 10, 1, 8, 0)
SOURCE = "https://www.ausbildung.de/suche/?search=Fachinformatiker"
PAGE = "<html><body><h1>Ausbildung</h1><script>track()</script></body></html>"


def url(slug):
    return f"https://www.ausbildung.de/stellen/{slug}/"


class FakeScraper:
    def __init__(self, listings=None, pages=None):
        self.listings = listings or {}
        self.pages = pages or {}
        self.fetched = []

    def list_current_postings(self, source_url):
        return list(self.listings.get(source_url, []))

    def fetch_full_page(self, page_url):
        self.fetched.append(page_url)
        return self.pages.get(page_url)

    def close(self):
        pass


class FakeClient:
    """Returns a preset posting per URL; anything unknown fails extraction."""

    def __init__(self, results=None):
        self.results = results or {}
        self.analyzed = []

    def analyze(self, cleaned_html, source_url):
        self.analyzed.append((cleaned_html, source_url))
        return self.results.get(source_url)


class FakeStorage:
    def __init__(self):
        self.stored = []
        self.deleted = []

    def store(self, page_url, html):
        path = f"raw/{len(self.stored)}.html"
        self.stored.append(path)
        return path

    def delete(self, path):
        self.deleted.append(path)
        return True


def make_config(**overrides):
    options = dict(
        source_urls=[SOURCE],
        max_jobs_per_run=10,
        dry_run=False,
        enrich_salary=False,
        verify_after_days=30,
        verify_batch=50,
    )
    options.update(overrides)
    return MinerConfig(**options)


def make_miner(store, scraper, client, storage=None, resolver=None, **config):
    return JobMiner(
        config=make_config(**config),
        store=store,
        scraper=scraper,
        client=client,
        html_storage=storage,
        salary_resolver=resolver or Mock(return_value=SalaryResolution()),
        clock=lambda: NOW,
    )


class TestDiscovery:
    def test_empty_listing_changes_nothing(self):
        """Test an empty listing never deactivates stored postings."""
        store = FakeStore([make_job(url("a")), make_job(url("b"))])
        miner = make_miner(store, FakeScraper(), FakeClient())

        stats = miner.mine()

        assert stats.listed == 0
        assert stats.deactivated == 0
        assert store.list_active_urls() == {url("a"), url("b")}

    def test_partial_listing_skips_staleness(self):
        """Test one silent source disables staleness marking."""
        other = "https://www.ausbildung.de/suche/?search=Koch"
        store = FakeStore([make_job(url("a")), make_job(url("gone"))])
        scraper = FakeScraper(listings={SOURCE: [ListingItem(url=url("a"))]})
        miner = make_miner(store, scraper, FakeClient(), source_urls=[SOURCE, other])

        stats = miner.mine()

        assert stats.listed == 1
        assert stats.deactivated == 0
        assert store.jobs[url("gone")].is_active is True

    def test_sources_deduplicated(self):
        """Test a posting listed by two sources is handled once."""
        other = "https://www.ausbildung.de/suche/?search=IT"
        item = ListingItem(url=url("a"))
        store = FakeStore([make_job(url("a"))])
        scraper = FakeScraper(listings={SOURCE: [item], other: [item]})
        miner = make_miner(store, scraper, FakeClient(), source_urls=[SOURCE, other])

        stats = miner.mine()

        assert stats.listed == 1
        assert stats.refreshed == 1


class TestStaleness:
    def test_absent_posting_deactivated(self):
        """Test a stored posting missing from a complete listing goes inactive."""
        store = FakeStore([make_job(url("a")), make_job(url("gone"))])
        scraper = FakeScraper(listings={SOURCE: [ListingItem(url=url("a"))]})
        miner = make_miner(store, scraper, FakeClient())

        stats = miner.mine()

        assert stats.deactivated == 1
        gone = store.jobs[url("gone")]
        assert gone.is_active is False
        assert gone.last_checked_at == NOW
        assert store.jobs[url("a")].is_active is True

    def test_dry_run_counts_only(self):
        """Test dry runs report stale postings without flagging them."""
        store = FakeStore([make_job(url("a")), make_job(url("gone"))])
        scraper = FakeScraper(listings={SOURCE: [ListingItem(url=url("a"))]})
        miner = make_miner(store, scraper, FakeClient(), dry_run=True)

        stats = miner.mine()

        assert stats.deactivated == 1
        assert store.jobs[url("gone")].is_active is True
        assert store.updates == []


class TestReconciliation:
    def test_refresh_existing(self):
        """Test a known posting only gets its check timestamp."""
        store = FakeStore([make_job(url("a"), vacancy_count=2)])
        scraper = FakeScraper(listings={SOURCE: [ListingItem(url=url("a"), vacancy_count=2)]})
        client = FakeClient()
        miner = make_miner(store, scraper, client)

        stats = miner.mine()

        assert stats.refreshed == 1
        assert stats.updated == 0
        assert store.updates == [(url("a"), {'last_checked_at': NOW})]
        assert scraper.fetched == []
        assert client.analyzed == []

    def test_vacancy_change(self):
        """Test a changed vacancy count updates the posting."""
        store = FakeStore([make_job(url("a"), vacancy_count=2)])
        scraper = FakeScraper(listings={SOURCE: [ListingItem(url=url("a"), vacancy_count=5)]})
        miner = make_miner(store, scraper, FakeClient())

        stats = miner.mine()

        assert stats.updated == 1
        assert store.jobs[url("a")].vacancy_count == 5

    def test_reappeared_posting_reactivated(self):
        """Test an inactive posting listed again becomes active."""
        store = FakeStore([make_job(url("a"), is_active=False)])
        scraper = FakeScraper(listings={SOURCE: [ListingItem(url=url("a"))]})
        miner = make_miner(store, scraper, FakeClient())

        stats = miner.mine()

        assert stats.updated == 1
        assert store.jobs[url("a")].is_active is True

    def test_new_posting_inserted(self):
        """Test a new posting is fetched, extracted and stored."""
        store = FakeStore()
        scraper = FakeScraper(
            listings={SOURCE: [ListingItem(url=url("new"), vacancy_count=3)]},
            pages={url("new"): PAGE},
        )
        client = FakeClient({url("new"): make_job(url("new"))})
        storage = FakeStorage()
        miner = make_miner(store, scraper, client, storage=storage)

        stats = miner.mine()

        assert stats.new == 1
        assert stats.inserted == 1
        job = store.jobs[url("new")]
        assert job.vacancy_count == 3
        assert job.posted_at == NOW
        assert job.last_checked_at == NOW
        assert job.is_active is True
        cleaned, _ = client.analyzed[0]
        assert "track()" not in cleaned
        assert storage.deleted == storage.stored == ["raw/0.html"]

    def test_jsonld_page_without_keys(self):
        """Test a page whose employer and location exist only as JSON-LD is stored by the heuristic parser."""
        jsonld = json.dumps({
            "@context": "https://schema.org",
            "@type": "JobPosting",
            "title": "Ausbildung Elektroniker für Automatisierungstechnik",
            "hiringOrganization": {"@type": "Organization", "name": "Siemens AG"},
            "jobLocation": {"@type": "Place", "address": {"addressLocality": "Erlangen", "postalCode": "91052"}},
        })
        page = (
            "<html><head>"
            f'<script type="application/ld+json">{jsonld}</script>'
            "<script>track()</script>"
            "</head><body><p>Jetzt bewerben</p></body></html>"
        )
        store = FakeStore()
        scraper = FakeScraper(listings={SOURCE: [ListingItem(url=url("siemens"))]}, pages={url("siemens"): page})
        miner = make_miner(store, scraper, ExtractionClient(api_keys=[]))

        stats = miner.mine()

        assert stats.inserted == 1
        assert stats.fallback_used == 1
        job = store.jobs[url("siemens")]
        assert job.company_name == "Siemens AG"
        assert job.locations[0].city == "Erlangen"
        assert job.extraction_method == ExtractionMethod.HEURISTIC

    def test_fetch_failure_skipped(self):
        """Test a page that cannot be fetched is skipped."""
        store = FakeStore()
        scraper = FakeScraper(listings={SOURCE: [ListingItem(url=url("new"))]})
        client = FakeClient()
        miner = make_miner(store, scraper, client)

        stats = miner.mine()

        assert stats.skipped == 1
        assert client.analyzed == []
        assert store.inserted == []

    def test_extraction_failure_skipped(self):
        """Test failed extraction skips the posting and drops its raw page."""
        store = FakeStore()
        scraper = FakeScraper(listings={SOURCE: [ListingItem(url=url("new"))]}, pages={url("new"): PAGE})
        storage = FakeStorage()
        miner = make_miner(store, scraper, FakeClient(), storage=storage)

        stats = miner.mine()

        assert stats.skipped == 1
        assert stats.inserted == 0
        assert storage.deleted == ["raw/0.html"]

    def test_heuristic_fallback_counted(self):
        """Test heuristic extractions are counted."""
        store = FakeStore()
        scraper = FakeScraper(listings={SOURCE: [ListingItem(url=url("new"))]}, pages={url("new"): PAGE})
        client = FakeClient({url("new"): make_job(url("new"), extraction_method=ExtractionMethod.HEURISTIC)})
        miner = make_miner(store, scraper, client)

        stats = miner.mine()

        assert stats.fallback_used == 1
        assert stats.inserted == 1

    def test_duplicate_skipped(self):
        """Test an insert race ending in a duplicate is skipped."""
        store = FakeStore()
        store.get_by_url = Mock(return_value=None)
        store.jobs[url("new")] = make_job(url("new"))
        scraper = FakeScraper(listings={SOURCE: [ListingItem(url=url("new"))]}, pages={url("new"): PAGE})
        client = FakeClient({url("new"): make_job(url("new"))})
        miner = make_miner(store, scraper, client)

        stats = miner.mine()

        assert stats.skipped == 1
        assert stats.inserted == 0
        assert stats.failed == 0

    def test_max_jobs_per_run(self):
        """Test only the configured number of new postings are processed."""
        items = [ListingItem(url=url(f"n{i}")) for i in range(4)]
        pages = {item.url: PAGE for item in items}
        results = {item.url: make_job(item.url) for item in items}
        store = FakeStore([make_job(url("known"))])
        scraper = FakeScraper(listings={SOURCE: [ListingItem(url=url("known"))] + items}, pages=pages)
        miner = make_miner(store, scraper, FakeClient(results), max_jobs_per_run=2)

        stats = miner.mine()

        assert stats.new == 4
        assert stats.inserted == 2
        assert stats.skipped == 2
        assert stats.refreshed == 1
        assert [job.original_link for job in store.inserted] == [url("n0"), url("n1")]

    def test_dry_run_writes_nothing(self):
        """Test dry runs count inserts without writing."""
        store = FakeStore([make_job(url("a"))])
        scraper = FakeScraper(
            listings={SOURCE: [ListingItem(url=url("a")), ListingItem(url=url("new"))]},
            pages={url("new"): PAGE},
        )
        miner = make_miner(store, scraper, FakeClient({url("new"): make_job(url("new"))}), dry_run=True)

        stats = miner.mine()

        assert stats.inserted == 1
        assert store.inserted == []
        assert store.updates == []

    def test_failure_isolated(self):
        """Test one failing posting does not stop the run."""
        store = FakeStore()
        scraper = FakeScraper(
            listings={SOURCE: [ListingItem(url=url("bad")), ListingItem(url=url("good"))]},
            pages={url("bad"): PAGE, url("good"): PAGE},
        )
        client = FakeClient({url("good"): make_job(url("good"))})
        original = client.analyze

        def analyze(cleaned_html, source_url):
            if source_url == url("bad"):
                raise RuntimeError("boom")
            return original(cleaned_html, source_url)

        client.analyze = analyze
        storage = FakeStorage()
        miner = make_miner(store, scraper, client, storage=storage)

        stats = miner.mine()

        assert stats.failed == 1
        assert stats.inserted == 1
        # the raw page of the failed posting is kept for replay
        assert storage.stored == ["raw/0.html", "raw/1.html"]
        assert storage.deleted == ["raw/1.html"]

    def test_store_unavailable_propagates(self):
        """Test a lost database aborts the run."""
        store = FakeStore()
        store.get_by_url = Mock(side_effect=StoreUnavailableError("down"))
        scraper = FakeScraper(listings={SOURCE: [ListingItem(url=url("a"))]})
        miner = make_miner(store, scraper, FakeClient())

        with pytest.raises(StoreUnavailableError):
            miner.mine()


class TestSalaryEnrichment:
    def test_tariff_posting_enriched(self):
        """Test a new posting with a tariff but no salary is resolved at insert."""
        resolver = Mock(return_value=SalaryResolution(
            first_year_salary=1250, third_year_salary=1400, average=1325,
            source=SalarySource.COMPANY_WEBSITE,
        ))
        extracted = make_job(url("new"), tariff_type=TariffType.IG_METALL, salary=Salary(third_year_salary=1400))
        store = FakeStore()
        scraper = FakeScraper(listings={SOURCE: [ListingItem(url=url("new"))]}, pages={url("new"): PAGE})
        miner = make_miner(store, scraper, FakeClient({url("new"): extracted}),
                           resolver=resolver, enrich_salary=True)

        miner.mine()

        resolver.assert_called_once_with(None, 1400, TariffType.IG_METALL, "Musterfirma GmbH", url("new"))
        job = store.jobs[url("new")]
        assert job.salary.first_year_salary == 1250
        assert job.salary_source == SalarySource.COMPANY_WEBSITE

    def test_resolved_salary_untouched(self):
        """Test postings that already have a salary are not re-resolved."""
        resolver = Mock()
        extracted = make_job(
            url("new"),
            tariff_type=TariffType.IG_METALL,
            salary=Salary(first_year_salary=1100),
            salary_source=SalarySource.SCRAPED,
        )
        store = FakeStore()
        scraper = FakeScraper(listings={SOURCE: [ListingItem(url=url("new"))]}, pages={url("new"): PAGE})
        miner = make_miner(store, scraper, FakeClient({url("new"): extracted}),
                           resolver=resolver, enrich_salary=True)

        miner.mine()

        resolver.assert_not_called()
        assert store.jobs[url("new")].salary.first_year_salary == 1100


class TestChangeDetection:
    def test_identical(self, sample_job):
        """Test an identical copy has no changes."""
        assert not has_job_changes(sample_job, sample_job.model_copy())

    def test_order_insensitive_lists(self, sample_job):
        """Test list order does not count as a change."""
        fresh = sample_job.model_copy(update={'tech_stack': ['python', 'java']})
        assert not has_job_changes(sample_job, fresh)

    @pytest.mark.parametrize("update", [
        {'job_title': "Ausbildung Kaufmann für IT-Systemmanagement"},
        {'available_positions': 4},
        {'salary': Salary(first_year_salary=1150, third_year_salary=1300, average=1225)},
        {'benefits_tags': ['VACATION_30', 'HOME_OFFICE']},
    ])
    def test_tracked_fields(self, sample_job, update):
        """Test changes to tracked fields are detected."""
        assert has_job_changes(sample_job, sample_job.model_copy(update=update))

    def test_untracked_fields(self, sample_job):
        """Test bookkeeping fields are ignored."""
        fresh = sample_job.model_copy(update={'vacancy_count': 9, 'description_snippet': "Neu"})
        assert not has_job_changes(sample_job, fresh)


class TestVerification:
    def _due(self, sample_job, **fields):
        return sample_job.model_copy(update=fields)

    def test_page_gone(self, sample_job):
        """Test a vanished page deactivates the posting."""
        store = FakeStore([sample_job])
        miner = make_miner(store, FakeScraper(), FakeClient())

        stats = miner.verify_old_jobs()

        assert stats.deactivated == 1
        job = store.jobs[sample_job.original_link]
        assert job.is_active is False
        assert job.last_checked_at == NOW

    def test_changed_posting_overwritten(self, sample_job):
        """Test changed fields overwrite the stored record, bookkeeping kept."""
        link = sample_job.original_link
        stored = self._due(sample_job, vacancy_count=2, benefits_verified=True)
        fresh = make_job(link, available_positions=5, posted_at=datetime(2026, 9, 30))
        store = FakeStore([stored])
        miner = make_miner(store, FakeScraper(pages={link: PAGE}), FakeClient({link: fresh}))

        stats = miner.verify_old_jobs()

        assert stats.updated == 1
        job = store.jobs[link]
        assert job.available_positions == 5
        assert job.tech_stack == []
        assert job.vacancy_count == 2
        assert job.benefits_verified is True
        assert job.posted_at == stored.posted_at
        assert job.last_checked_at == NOW

    def test_unchanged_posting_stamped(self, sample_job):
        """Test an unchanged posting only gets its check timestamp."""
        link = sample_job.original_link
        store = FakeStore([sample_job])
        miner = make_miner(store, FakeScraper(pages={link: PAGE}), FakeClient({link: sample_job.model_copy()}))

        stats = miner.verify_old_jobs()

        assert stats.unchanged == 1
        assert store.updates == [(link, {'last_checked_at': NOW, 'is_active': True})]

    def test_heuristic_does_not_overwrite_llm(self, sample_job):
        """Test a heuristic re-extraction never replaces an LLM record."""
        link = sample_job.original_link
        fresh = make_job(link, job_title="Ausbildung", extraction_method=ExtractionMethod.HEURISTIC)
        store = FakeStore([sample_job])
        miner = make_miner(store, FakeScraper(pages={link: PAGE}), FakeClient({link: fresh}))

        stats = miner.verify_old_jobs()

        assert stats.unchanged == 1
        assert store.jobs[link].job_title == sample_job.job_title

    def test_company_salary_kept(self, sample_job):
        """Test a company-website salary survives a re-extraction that only knows the tariff."""
        link = sample_job.original_link
        stored = self._due(
            sample_job,
            tariff_type=TariffType.IG_METALL,
            salary=Salary(first_year_salary=1234, average=1234),
            salary_source=SalarySource.COMPANY_WEBSITE,
        )
        fresh = stored.model_copy(update={
            'salary': Salary(first_year_salary=1150, average=1150),
            'salary_source': SalarySource.TARIFF_STANDARD,
        })
        store = FakeStore([stored])
        miner = make_miner(store, FakeScraper(pages={link: PAGE}), FakeClient({link: fresh}))

        stats = miner.verify_old_jobs()

        assert stats.unchanged == 1
        job = store.jobs[link]
        assert job.salary.first_year_salary == 1234
        assert job.salary_source == SalarySource.COMPANY_WEBSITE

    def test_company_salary_kept_on_update(self, sample_job):
        """Test other changes are written without downgrading a company-website salary."""
        link = sample_job.original_link
        stored = self._due(
            sample_job,
            tariff_type=TariffType.IG_METALL,
            salary=Salary(first_year_salary=1234, average=1234),
            salary_source=SalarySource.COMPANY_WEBSITE,
        )
        fresh = stored.model_copy(update={
            'available_positions': 6,
            'salary': Salary(first_year_salary=1150, average=1150),
            'salary_source': SalarySource.TARIFF_STANDARD,
        })
        store = FakeStore([stored])
        miner = make_miner(store, FakeScraper(pages={link: PAGE}), FakeClient({link: fresh}))

        stats = miner.verify_old_jobs()

        assert stats.updated == 1
        job = store.jobs[link]
        assert job.available_positions == 6
        assert job.salary.first_year_salary == 1234
        assert job.salary_source == SalarySource.COMPANY_WEBSITE

    def test_scraped_salary_replaces_company_salary(self, sample_job):
        """Test a salary scraped from the posting still wins over the company website."""
        link = sample_job.original_link
        stored = self._due(
            sample_job,
            salary=Salary(first_year_salary=1234, average=1234),
            salary_source=SalarySource.COMPANY_WEBSITE,
        )
        fresh = stored.model_copy(update={
            'salary': Salary(first_year_salary=1180, average=1180),
            'salary_source': SalarySource.SCRAPED,
        })
        store = FakeStore([stored])
        miner = make_miner(store, FakeScraper(pages={link: PAGE}), FakeClient({link: fresh}))

        miner.verify_old_jobs()

        job = store.jobs[link]
        assert job.salary.first_year_salary == 1180
        assert job.salary_source == SalarySource.SCRAPED

    def test_extraction_failure(self, sample_job):
        """Test failed re-extraction counts as failed and stamps the check."""
        link = sample_job.original_link
        store = FakeStore([sample_job])
        miner = make_miner(store, FakeScraper(pages={link: PAGE}), FakeClient())

        stats = miner.verify_old_jobs()

        assert stats.failed == 1
        assert store.jobs[link].last_checked_at == NOW
        assert store.jobs[link].is_active is True

    def test_recently_checked_excluded(self, sample_job):
        """Test postings checked inside the window are not revisited."""
        recent = self._due(sample_job, last_checked_at=NOW - timedelta(days=5))
        scraper = FakeScraper()
        miner = make_miner(FakeStore([recent]), scraper, FakeClient())

        stats = miner.verify_old_jobs()

        assert stats.checked == 0
        assert scraper.fetched == []

    def test_run_verifies_then_mines(self, sample_job):
        """Test run() returns both result sets."""
        miner = make_miner(FakeStore([sample_job]), FakeScraper(), FakeClient())
        results = miner.run()
        assert set(results) == {'verification', 'mining'}
        assert results['verification'].deactivated == 1
        assert results['mining'].listed == 0
