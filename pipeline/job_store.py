"""
Job store on PostgreSQL.

One row per posting, unique on original_link. Nested structures (locations,
salary, relocation support, contact) are JSONB; string lists are TEXT[] so
tag filters can use array operators. Postings are never deleted; closing a
posting flips is_active.

Also holds the query builder used by the browsing API: language level at or
below the user's, visa, salary, start date, education, tariff, relocation,
benefit tags and full-text relevance, with pagination capped at 20.
"""

import os
import logging
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

import psycopg2
from psycopg2 import errors as pg_errors
from psycopg2.extras import Json, RealDictCursor
from pydantic import BaseModel, Field

from core.models import EducationLevel, JobPosting, LanguageLevel, TariffType

logger = logging.getLogger(__name__)

DEFAULT_JOBS_TABLE = os.getenv('JOBS_TABLE', 'jobs')
MAX_PAGE_SIZE = 20
TEXT_SEARCH_CONFIG = 'german'

JOB_COLUMNS = list(JobPosting.model_fields)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS {table} (
    id SERIAL PRIMARY KEY,
    original_link TEXT NOT NULL UNIQUE,
    source_platform TEXT NOT NULL DEFAULT 'ausbildung.de',
    job_title TEXT NOT NULL,
    company_name TEXT NOT NULL,
    locations JSONB NOT NULL DEFAULT '[]',
    start_date DATE,
    duration_months INTEGER NOT NULL DEFAULT 36,
    application_deadline DATE,
    posted_at TIMESTAMP NOT NULL DEFAULT NOW(),
    last_checked_at TIMESTAMP,
    german_level_requirement TEXT NOT NULL DEFAULT 'None',
    english_level_requirement TEXT NOT NULL DEFAULT 'None',
    education_required TEXT NOT NULL DEFAULT 'Realschulabschluss',
    tech_stack TEXT[] NOT NULL DEFAULT '{{}}',
    driving_license_required BOOLEAN NOT NULL DEFAULT FALSE,
    salary JSONB NOT NULL DEFAULT '{{}}',
    salary_source TEXT NOT NULL DEFAULT 'none',
    tariff_type TEXT NOT NULL DEFAULT 'None',
    visa_sponsorship BOOLEAN NOT NULL DEFAULT FALSE,
    relocation_support JSONB NOT NULL DEFAULT '{{}}',
    benefits TEXT[] NOT NULL DEFAULT '{{}}',
    benefits_tags TEXT[] NOT NULL DEFAULT '{{}}',
    benefits_verified BOOLEAN NOT NULL DEFAULT FALSE,
    benefits_last_updated TIMESTAMP,
    description_full TEXT,
    description_snippet TEXT,
    contact_person JSONB NOT NULL DEFAULT '{{}}',
    available_positions INTEGER,
    vacancy_count INTEGER,
    is_active BOOLEAN NOT NULL DEFAULT TRUE,
    extraction_method TEXT NOT NULL DEFAULT 'llm',
    created_at TIMESTAMP NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMP NOT NULL DEFAULT NOW(),
    search_vector TSVECTOR GENERATED ALWAYS AS (
        to_tsvector('german',
            coalesce(job_title, '') || ' ' ||
            coalesce(company_name, '') || ' ' ||
            coalesce(description_snippet, ''))
    ) STORED
);
CREATE INDEX IF NOT EXISTS {table}_active_idx ON {table} (is_active);
CREATE INDEX IF NOT EXISTS {table}_last_checked_idx ON {table} (last_checked_at);
CREATE INDEX IF NOT EXISTS {table}_posted_idx ON {table} (posted_at DESC);
CREATE INDEX IF NOT EXISTS {table}_tags_idx ON {table} USING GIN (benefits_tags);
CREATE INDEX IF NOT EXISTS {table}_search_idx ON {table} USING GIN (search_vector);
"""


class DuplicateJobError(Exception):
    """A posting with this original_link is already stored."""


class StoreUnavailableError(Exception):
    """The database cannot be reached."""


class JobFilters(BaseModel):
    """Query parameters of the browsing API."""

    german_level: Optional[LanguageLevel] = None
    visa_need: bool = False
    min_salary: Optional[int] = None
    start_date: Optional[date] = None
    education_level: Optional[EducationLevel] = None
    tariff_types: List[TariffType] = Field(default_factory=list)
    relocation_offered: bool = False
    rent_subsidy: bool = False
    free_accommodation: bool = False
    moving_cost_covered: bool = False
    benefit_tags: List[str] = Field(default_factory=list)
    search_term: Optional[str] = None
    active_only: bool = False


def build_job_filter(filters: JobFilters) -> Tuple[List[str], List[Any]]:
    """
    Translate filters into WHERE conditions and their parameters.

    Conditions come in three groups: hard constraints (language, visa),
    range constraints (salary, start date, education, tariff, relocation,
    tags) and the full-text match.
    """
    conditions: List[str] = []
    params: List[Any] = []

    if filters.active_only:
        conditions.append("is_active = TRUE")

    # Hard constraints
    if filters.german_level is not None:
        allowed = [level.value for level in LanguageLevel if filters.german_level.satisfies(level)]
        conditions.append("german_level_requirement = ANY(%s)")
        params.append(allowed)

    if filters.visa_need:
        conditions.append("visa_sponsorship = TRUE")

    # Range constraints
    if filters.min_salary and filters.min_salary > 0:
        conditions.append(
            "((salary->>'first_year_salary')::int >= %s OR (salary->>'average')::int >= %s)"
        )
        params.extend([filters.min_salary, filters.min_salary])

    if filters.start_date:
        conditions.append("start_date >= %s")
        params.append(filters.start_date)

    if filters.education_level is not None:
        conditions.append("education_required = %s")
        params.append(filters.education_level.value)

    if filters.tariff_types:
        conditions.append("tariff_type = ANY(%s)")
        params.append([tariff.value for tariff in filters.tariff_types])

    if filters.relocation_offered:
        conditions.append("(relocation_support->>'offered')::boolean IS TRUE")
    for flag in ('rent_subsidy', 'free_accommodation', 'moving_cost_covered'):
        if getattr(filters, flag):
            conditions.append(f"(relocation_support->>'{flag}')::boolean IS TRUE")

    if filters.benefit_tags:
        conditions.append("benefits_tags @> %s")
        params.append(list(filters.benefit_tags))

    # Full-text
    if filters.search_term and filters.search_term.strip():
        conditions.append(f"search_vector @@ plainto_tsquery('{TEXT_SEARCH_CONFIG}', %s)")
        params.append(filters.search_term.strip())

    return conditions, params


def get_pagination_params(page: int = 1, limit: int = MAX_PAGE_SIZE) -> Tuple[int, int]:
    """(offset, limit) with page >= 1 and 1 <= limit <= 20."""
    valid_page = max(1, int(page or 1))
    valid_limit = min(MAX_PAGE_SIZE, max(1, int(limit or MAX_PAGE_SIZE)))
    return (valid_page - 1) * valid_limit, valid_limit


def build_sort(search_term: Optional[str] = None) -> Tuple[str, List[Any]]:
    """ORDER BY clause: relevance when searching, newest first otherwise."""
    if search_term and search_term.strip():
        return (
            f"ts_rank(search_vector, plainto_tsquery('{TEXT_SEARCH_CONFIG}', %s)) DESC, posted_at DESC",
            [search_term.strip()],
        )
    return "posted_at DESC", []


def _adapt(value: Any) -> Any:
    """Python value -> psycopg2 parameter."""
    if isinstance(value, BaseModel):
        return Json(value.model_dump(mode='json'))
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, list) and any(isinstance(item, BaseModel) for item in value):
        return Json([item.model_dump(mode='json') for item in value])
    return value


def row_to_job(row: Dict[str, Any]) -> JobPosting:
    data = {key: value for key, value in row.items() if key in JobPosting.model_fields and value is not None}
    return JobPosting.model_validate(data)


class JobStore:
    """PostgreSQL-backed posting store."""

    def __init__(self, db_url: str, jobs_table: Optional[str] = None):
        """
        Args:
            db_url: PostgreSQL connection string
            jobs_table: Table name (default: JOBS_TABLE env var or 'jobs')
        """
        self.db_url = db_url
        self.jobs_table = jobs_table or DEFAULT_JOBS_TABLE
        logger.info(f"[store] JobStore initialized: table={self.jobs_table}")

    def _get_db_conn(self):
        """Get database connection."""
        try:
            return psycopg2.connect(self.db_url, connect_timeout=5)
        except psycopg2.OperationalError as e:
            logger.error(f"[store] Failed to connect to database: {e}")
            raise StoreUnavailableError(str(e)) from e

    def _fetch(self, query: str, params: Iterable[Any] = ()) -> List[Dict[str, Any]]:
        conn = self._get_db_conn()
        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cursor:
                cursor.execute(query, list(params))
                return [dict(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    def _execute(self, query: str, params: Iterable[Any] = ()) -> int:
        conn = self._get_db_conn()
        try:
            with conn.cursor() as cursor:
                cursor.execute(query, list(params))
                rowcount = cursor.rowcount
            conn.commit()
            return rowcount
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def ensure_schema(self):
        """Create the jobs table and its indexes if missing."""
        self._execute(SCHEMA_SQL.format(table=self.jobs_table))
        logger.info(f"[store] Schema ready for {self.jobs_table}")

    def check_connection(self) -> bool:
        try:
            self._fetch("SELECT 1 AS ok")
            return True
        except StoreUnavailableError:
            return False

    def get_by_url(self, url: str) -> Optional[JobPosting]:
        rows = self._fetch(f"SELECT * FROM {self.jobs_table} WHERE original_link = %s", [url])
        return row_to_job(rows[0]) if rows else None

    def insert(self, job: JobPosting) -> int:
        """
        Insert a new posting.

        Returns:
            The new row id

        Raises:
            DuplicateJobError: original_link already stored
        """
        values = [_adapt(getattr(job, column)) for column in JOB_COLUMNS]
        placeholders = ", ".join(["%s"] * len(JOB_COLUMNS))
        query = (
            f"INSERT INTO {self.jobs_table} ({', '.join(JOB_COLUMNS)}) "
            f"VALUES ({placeholders}) RETURNING id"
        )

        conn = self._get_db_conn()
        try:
            with conn.cursor() as cursor:
                cursor.execute(query, values)
                job_id = cursor.fetchone()[0]
            conn.commit()
            logger.debug(f"[store] Inserted job {job_id}: {job.original_link}")
            return job_id
        except pg_errors.UniqueViolation as e:
            conn.rollback()
            raise DuplicateJobError(job.original_link) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def update_fields(self, url: str, fields: Dict[str, Any]) -> bool:
        """
        Partial update of one posting.

        Returns:
            True if a row was updated
        """
        unknown = set(fields) - set(JOB_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown job fields: {sorted(unknown)}")
        if not fields:
            return False

        assignments = ", ".join(f"{column} = %s" for column in fields)
        params = [_adapt(value) for value in fields.values()] + [url]
        query = (
            f"UPDATE {self.jobs_table} SET {assignments}, updated_at = NOW() "
            f"WHERE original_link = %s"
        )
        return self._execute(query, params) > 0

    def list_active_urls(self) -> Set[str]:
        rows = self._fetch(f"SELECT original_link FROM {self.jobs_table} WHERE is_active = TRUE")
        return {row['original_link'] for row in rows}

    def mark_inactive(self, urls: Iterable[str], checked_at: datetime) -> int:
        """Flag postings inactive. Returns the number of rows changed."""
        urls = list(urls)
        if not urls:
            return 0
        query = (
            f"UPDATE {self.jobs_table} SET is_active = FALSE, last_checked_at = %s, updated_at = NOW() "
            f"WHERE original_link = ANY(%s) AND is_active = TRUE"
        )
        return self._execute(query, [checked_at, urls])

    def find_due_for_verification(self, checked_before: datetime, limit: int) -> List[JobPosting]:
        """Active postings never checked or last checked before ``checked_before``."""
        query = (
            f"SELECT * FROM {self.jobs_table} "
            f"WHERE is_active = TRUE AND (last_checked_at IS NULL OR last_checked_at < %s) "
            f"ORDER BY last_checked_at ASC NULLS FIRST LIMIT %s"
        )
        return [row_to_job(row) for row in self._fetch(query, [checked_before, limit])]

    def find_missing_salary(self, updated_before: Optional[datetime], limit: int) -> List[JobPosting]:
        """Active postings with a tariff but no first-year salary."""
        conditions = [
            "is_active = TRUE",
            "(salary->>'first_year_salary') IS NULL",
            "tariff_type <> %s",
        ]
        params: List[Any] = [TariffType.NONE.value]
        if updated_before is not None:
            conditions.append("(benefits_last_updated IS NULL OR benefits_last_updated < %s)")
            params.append(updated_before)

        query = f"SELECT * FROM {self.jobs_table} WHERE {' AND '.join(conditions)} LIMIT %s"
        return [row_to_job(row) for row in self._fetch(query, params + [limit])]

    def search(self, filters: JobFilters, page: int = 1, limit: int = MAX_PAGE_SIZE) -> Dict[str, Any]:
        """
        Filtered, sorted, paginated listing for the browsing API.

        Returns:
            {'items': [JobPosting], 'total', 'page', 'limit', 'pages'}
        """
        conditions, params = build_job_filter(filters)
        where_clause = " AND ".join(conditions) if conditions else "TRUE"
        order_by, order_params = build_sort(filters.search_term)
        offset, limit = get_pagination_params(page, limit)

        total = self._fetch(
            f"SELECT COUNT(*) AS total FROM {self.jobs_table} WHERE {where_clause}", params
        )[0]['total']
        rows = self._fetch(
            f"SELECT * FROM {self.jobs_table} WHERE {where_clause} "
            f"ORDER BY {order_by} LIMIT %s OFFSET %s",
            params + order_params + [limit, offset],
        )

        return {
            'items': [row_to_job(row) for row in rows],
            'total': total,
            'page': offset // limit + 1,
            'limit': limit,
            'pages': (total + limit - 1) // limit,
        }
