"""
Company website benefits fetcher.

Finds an employer's career page next to the posting's host and reads
benefits, the collective agreement, relocation support and the first-year
salary from it. Everything here is best effort: any failure yields None.
"""

import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import httpx
from bs4 import BeautifulSoup
from pydantic import BaseModel, Field

from core.field_mapper import map_tariff_type
from core.models import JobPosting, RelocationSupport, TariffType
from core.normalize import normalize_benefits
from core.tariffs import extract_salary_from_text, has_salary_keyword, is_first_year_salary

logger = logging.getLogger(__name__)

BROWSER_UA = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"
CAREER_PATH_TIMEOUT = 5.0
PAGE_TIMEOUT = 10.0
MAX_REDIRECTS = 3

CAREER_PATHS = [
    '/karriere',
    '/career',
    '/careers',
    '/jobs',
    '/ausbildung',
    '/benefits',
    '/ueber-uns/karriere',
]

BENEFIT_HEADINGS = [
    'benefits', 'vorteile', 'leistungen', 'was wir bieten',
    'deine vorteile', 'unsere benefits', 'das bieten wir',
]

BENEFIT_KEYWORDS = [
    'urlaub', 'vacation', 'gehalt', 'salary', 'bonus', 'home office',
    'laptop', 'gym', 'fitness', 'training', 'weiterbildung', 'fortbildung',
    'altersvorsorge', 'pension', 'ticket', 'kantine', 'obst', 'getränke',
    'flexibel', 'flexible', 'gleitzeit', 'parking', 'parkplatz',
]

TARIFF_KEYWORDS = [
    'ig metall', 'verdi', 'ig bce', 'ig bau', 'ngg',
    'tvöd', 'tv-l', 'tarifvertrag', 'tarifgebunden',
]

RELOCATION_KEYWORDS = {
    'general': ['relocation', 'umzug', 'umsiedlung', 'relocation support'],
    'rent_subsidy': ['rent subsidy', 'mietbeihilfe', 'mietzuschuss', 'wohnungssuche'],
    'free_accommodation': ['free accommodation', 'kostenlose unterkunft', 'housing', 'wohnung'],
    'moving_cost_covered': ['moving costs', 'umzugskosten', 'relocation package'],
}

HEADING_TAGS = ['h1', 'h2', 'h3', 'h4', 'h5', 'h6']
MAX_SIBLINGS = 10


class CompanyBenefits(BaseModel):
    """What could be read from one company career page."""

    benefits: List[str] = Field(default_factory=list)
    benefit_tags: List[str] = Field(default_factory=list)
    tariff_type: Optional[TariffType] = None
    first_year_salary: Optional[int] = None
    relocation_support: Optional[RelocationSupport] = None
    last_updated: datetime = Field(default_factory=datetime.utcnow)
    source: str


def _is_benefit_text(text: str) -> bool:
    lower = text.lower()
    return any(keyword in lower for keyword in BENEFIT_KEYWORDS)


def _usable_item(text: str) -> bool:
    return 3 < len(text) < 150


def extract_benefits(soup: BeautifulSoup) -> List[str]:
    """Collect benefit items listed under benefit-like headings."""
    benefits: List[str] = []

    def add(text: str):
        if text not in benefits:
            benefits.append(text)

    for heading in soup.find_all(HEADING_TAGS):
        heading_text = heading.get_text().lower()
        if not any(keyword in heading_text for keyword in BENEFIT_HEADINGS):
            continue

        for sibling in heading.find_next_siblings(limit=MAX_SIBLINGS):
            if sibling.name in HEADING_TAGS:
                break
            if sibling.name in ('ul', 'ol'):
                for li in sibling.find_all('li'):
                    text = li.get_text().strip()
                    if _usable_item(text):
                        add(text)
            elif sibling.name in ('p', 'div'):
                text = sibling.get_text().strip()
                if _usable_item(text) and _is_benefit_text(text):
                    add(text)

    return benefits


def extract_tariff(body_text: str) -> Optional[TariffType]:
    lower = body_text.lower()
    for keyword in TARIFF_KEYWORDS:
        if keyword in lower:
            return map_tariff_type(keyword)
    return None


def extract_relocation(body_text: str) -> Optional[RelocationSupport]:
    lower = body_text.lower()
    flags: Dict[str, Any] = {}

    for group, keywords in RELOCATION_KEYWORDS.items():
        if any(keyword in lower for keyword in keywords):
            flags['offered'] = True
            if group != 'general':
                flags[group] = True

    if not flags:
        return None
    return RelocationSupport(**flags)


def extract_first_year_salary(soup: BeautifulSoup) -> Optional[int]:
    """
    First-year pay from blocks that mention both a salary keyword and the
    first training year, then from any sentence mentioning the first year.
    """
    for element in soup.find_all(HEADING_TAGS + ['p', 'li', 'div', 'span']):
        text = element.get_text(" ")
        if has_salary_keyword(text) and is_first_year_salary(text):
            salary = extract_salary_from_text(text)
            if salary:
                logger.debug(f"[company] First-year salary {salary} EUR from block")
                return salary

    body = soup.body or soup
    # Sentence ends, except ordinals like "1. Lehrjahr".
    for sentence in re.split(r"[!?\n]|(?<!\d)\.\s", body.get_text("\n").lower()):
        if is_first_year_salary(sentence):
            salary = extract_salary_from_text(sentence)
            if salary:
                logger.debug(f"[company] First-year salary {salary} EUR from sentence")
                return salary

    return None


def parse_career_page(html: str, source: str) -> CompanyBenefits:
    soup = BeautifulSoup(html, 'html.parser')
    body_text = (soup.body or soup).get_text(" ")
    benefits = extract_benefits(soup)
    return CompanyBenefits(
        benefits=benefits,
        benefit_tags=normalize_benefits(benefits),
        tariff_type=extract_tariff(body_text),
        first_year_salary=extract_first_year_salary(soup),
        relocation_support=extract_relocation(body_text),
        source=source,
    )


def find_career_page(client: httpx.Client, known_url: Optional[str]) -> Optional[str]:
    """Try common career paths on the posting's host."""
    if not known_url:
        return None

    parsed = urlparse(known_url)
    if not parsed.scheme or not parsed.netloc:
        return None

    for path in CAREER_PATHS:
        candidate = f"{parsed.scheme}://{parsed.netloc}{path}"
        try:
            response = client.head(candidate, timeout=CAREER_PATH_TIMEOUT)
        except httpx.HTTPError:
            continue
        if response.status_code == 200:
            return candidate

    return None


def _new_client() -> httpx.Client:
    return httpx.Client(
        headers={"User-Agent": BROWSER_UA},
        follow_redirects=True,
        max_redirects=MAX_REDIRECTS,
    )


def fetch_company_benefits(
    company_name: str,
    known_url: Optional[str] = None,
    client: Optional[httpx.Client] = None,
) -> Optional[CompanyBenefits]:
    """
    Fetch and parse the company's career page.

    Args:
        company_name: Employer name (for logging)
        known_url: Any URL on the employer's site, usually the posting link
        client: Optional httpx client (tests inject a MockTransport)

    Returns:
        CompanyBenefits, or None if no page was found or anything failed
    """
    owns_client = client is None
    client = client or _new_client()
    try:
        career_url = find_career_page(client, known_url)
        if not career_url:
            logger.info(f"[company] No career page found for {company_name}")
            return None

        response = client.get(career_url, timeout=PAGE_TIMEOUT)
        response.raise_for_status()
        return parse_career_page(response.text, career_url)
    except Exception as e:
        logger.warning(f"[company] Error fetching benefits for {company_name}: {e}")
        return None
    finally:
        if owns_client:
            client.close()


def company_first_year_salary(company_name: str, known_url: Optional[str] = None) -> Optional[int]:
    """Salary lookup used by the full salary resolver."""
    data = fetch_company_benefits(company_name, known_url)
    return data.first_year_salary if data else None


def merge_company_benefits(job: JobPosting, company_data: CompanyBenefits) -> Dict[str, Any]:
    """
    Field updates that fold company data into a stored posting.

    Benefits and tags are unioned, the posting is marked verified, the
    company's agreement is adopted only when the posting has none, and
    relocation flags are overlaid on the existing ones.
    """
    benefits = list(dict.fromkeys(job.benefits + company_data.benefits))
    tags = sorted(set(job.benefits_tags) | set(company_data.benefit_tags))

    updates: Dict[str, Any] = {
        'benefits': benefits,
        'benefits_tags': tags,
        'benefits_verified': True,
        'benefits_last_updated': company_data.last_updated,
    }

    if company_data.tariff_type and job.tariff_type == TariffType.NONE:
        updates['tariff_type'] = company_data.tariff_type

    if company_data.relocation_support:
        overlay = company_data.relocation_support.model_dump(exclude_unset=True)
        updates['relocation_support'] = job.relocation_support.model_copy(update=overlay)

    return updates
