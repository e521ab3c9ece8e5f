"""
Salary resolution.

Priority (first hit wins):
    1. salary scraped from the posting itself
    2. salary found on the company's own website
    3. standard first-year pay of the collective agreement
    4. nothing (never guess)

``resolve_first_year_salary`` performs the company-website lookup;
``resolve_first_year_salary_fast`` skips it and is safe for batch passes.
"""

import logging
from typing import Callable, Optional

from pydantic import BaseModel

from core.company_benefits import company_first_year_salary
from core.models import SalarySource, TariffType
from core.normalize import salary_average
from core.tariffs import standard_first_year_salary

logger = logging.getLogger(__name__)

# (company_name, known_url) -> first-year salary or None
CompanySalaryLookup = Callable[[str, Optional[str]], Optional[int]]


class SalaryResolution(BaseModel):
    first_year_salary: Optional[int] = None
    third_year_salary: Optional[int] = None
    average: Optional[int] = None
    source: SalarySource = SalarySource.NONE
    tariff_used: Optional[TariffType] = None


def _from_scraped(first: int, third: Optional[int]) -> SalaryResolution:
    return SalaryResolution(
        first_year_salary=first,
        third_year_salary=third,
        average=salary_average(first, third),
        source=SalarySource.SCRAPED,
    )


def _from_tariff(tariff_type: TariffType, third: Optional[int]) -> SalaryResolution:
    standard = standard_first_year_salary(tariff_type)
    if standard is None:
        return SalaryResolution(source=SalarySource.NONE, tariff_used=tariff_type)
    return SalaryResolution(
        first_year_salary=standard,
        third_year_salary=third,
        average=salary_average(standard, third),
        source=SalarySource.TARIFF_STANDARD,
        tariff_used=tariff_type,
    )


def _has_tariff(tariff_type: Optional[TariffType]) -> bool:
    return bool(tariff_type) and tariff_type != TariffType.NONE


def resolve_first_year_salary_fast(
    scraped_first_year: Optional[int] = None,
    scraped_third_year: Optional[int] = None,
    tariff_type: Optional[TariffType] = None,
) -> SalaryResolution:
    """Resolve without network access: scraped, then tariff table, then nothing."""
    if scraped_first_year:
        return _from_scraped(scraped_first_year, scraped_third_year)
    if not _has_tariff(tariff_type):
        return SalaryResolution(source=SalarySource.NONE)
    return _from_tariff(tariff_type, scraped_third_year)


def resolve_first_year_salary(
    scraped_first_year: Optional[int] = None,
    scraped_third_year: Optional[int] = None,
    tariff_type: Optional[TariffType] = None,
    company_name: Optional[str] = None,
    source_url: Optional[str] = None,
    company_lookup: Optional[CompanySalaryLookup] = None,
) -> SalaryResolution:
    """
    Resolve the first-year salary with the full priority chain.

    Args:
        scraped_first_year: First-year pay found on the posting
        scraped_third_year: Third-year pay found on the posting
        tariff_type: Collective agreement the employer follows
        company_name: Employer, used for the website lookup
        source_url: Posting URL, used to locate the company site
        company_lookup: Website lookup; defaults to the company benefits fetcher

    Returns:
        SalaryResolution with a defined ``source``. Lookup failures are
        logged and treated as "not found".
    """
    if scraped_first_year:
        return _from_scraped(scraped_first_year, scraped_third_year)

    if not _has_tariff(tariff_type):
        return SalaryResolution(source=SalarySource.NONE)

    if company_name:
        if company_lookup is None:
            company_lookup = company_first_year_salary
        try:
            company_salary = company_lookup(company_name, source_url)
        except Exception as e:
            logger.warning(f"[salary] Company lookup failed for {company_name}: {e}")
            company_salary = None

        if company_salary:
            logger.info(f"[salary] {company_name}: {company_salary} EUR from company website")
            return SalaryResolution(
                first_year_salary=company_salary,
                third_year_salary=scraped_third_year,
                average=salary_average(company_salary, scraped_third_year),
                source=SalarySource.COMPANY_WEBSITE,
                tariff_used=tariff_type,
            )

    return _from_tariff(tariff_type, scraped_third_year)
