"""
Shared fixtures.
"""

import os
import sys
from datetime import datetime
from typing import Dict, List, Optional

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.models import JobPosting, Location, Salary, SalarySource, TariffType
from pipeline.job_store import DuplicateJobError


class FakeStore:
    """In-memory stand-in for JobStore."""

    def __init__(self, jobs: Optional[List[JobPosting]] = None):
        self.jobs: Dict[str, JobPosting] = {job.original_link: job for job in jobs or []}
        self.updates: List[tuple] = []
        self.inserted: List[JobPosting] = []

    def get_by_url(self, url):
        return self.jobs.get(url)

    def insert(self, job):
        if job.original_link in self.jobs:
            raise DuplicateJobError(job.original_link)
        self.jobs[job.original_link] = job
        self.inserted.append(job)
        return len(self.jobs)

    def update_fields(self, url, fields):
        self.updates.append((url, dict(fields)))
        if url not in self.jobs:
            return False
        self.jobs[url] = self.jobs[url].model_copy(update=fields)
        return True

    def list_active_urls(self):
        return {url for url, job in self.jobs.items() if job.is_active}

    def mark_inactive(self, urls, checked_at):
        count = 0
        for url in urls:
            job = self.jobs.get(url)
            if job and job.is_active:
                self.jobs[url] = job.model_copy(update={'is_active': False, 'last_checked_at': checked_at})
                count += 1
        return count

    def find_due_for_verification(self, checked_before, limit):
        due = [
            job for job in self.jobs.values()
            if job.is_active and (job.last_checked_at is None or job.last_checked_at < checked_before)
        ]
        return due[:limit]

    def find_missing_salary(self, updated_before, limit):
        found = [
            job for job in self.jobs.values()
            if job.is_active
            and job.salary.first_year_salary is None
            and job.tariff_type != TariffType.NONE
            and (updated_before is None
                 or job.benefits_last_updated is None
                 or job.benefits_last_updated < updated_before)
        ]
        return found[:limit]


def make_job(url: str = "https://www.ausbildung.de/stellen/fachinformatiker-abc/", **fields) -> JobPosting:
    data = {
        'original_link': url,
        'job_title': "Ausbildung Fachinformatiker für Anwendungsentwicklung",
        'company_name': "Musterfirma GmbH",
        'locations': [Location(city="München", zip_code="80331")],
    }
    data.update(fields)
    return JobPosting(**data)


@pytest.fixture
def sample_job():
    """A stored LLM-extracted posting."""
    return make_job(
        tech_stack=['java', 'python'],
        benefits=['30 Tage Urlaub'],
        benefits_tags=['VACATION_30'],
        salary=Salary(first_year_salary=1100, third_year_salary=1300, average=1200),
        salary_source=SalarySource.SCRAPED,
        last_checked_at=datetime(2026, 1, 1),
    )


@pytest.fixture
def fake_store():
    return FakeStore()
