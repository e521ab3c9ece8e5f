"""
Heuristic posting parser.

Used when no extraction key is configured or the extraction service failed.
Reads Schema.org JobPosting JSON-LD first, then falls back to headings,
CSS class hints and German labels. Output is low confidence and flagged with
``extraction_method="heuristic"``; a posting is only produced when a real
title, company and city were found.
"""

import json
import re
import logging
from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup

from core.models import ExtractionMethod, JobPosting, Location
from core.normalize import normalize_date, sanitize_location

logger = logging.getLogger(__name__)

# Values a naive parser would invent; never accepted as real data.
PLACEHOLDER_VALUES = {
    'it specialist',
    'unknown company',
    'unknown position',
    'germany',
    'deutschland',
    'ausbildung.de',
}

COMPANY_LABEL_RE = re.compile(r'^\s*(unternehmen|arbeitgeber|firma|company|employer)\s*:?\s*$', re.I)
LOCATION_LABEL_RE = re.compile(r'^\s*(ort|standort|arbeitsort|stadt|location)\s*:?\s*$', re.I)
LOCATION_TEXT_RE = re.compile(r'(?:Ort|Standort|Arbeitsort|Location)\s*:\s*(?:(\d{5})\s+)?([A-ZÄÖÜ][\wäöüß.\- ]{1,40})')
ZIP_CITY_RE = re.compile(r'^(\d{5})\s+(.+)$')
TITLE_SPLIT_RE = re.compile(r'\s+[|\-–]\s+')


def _is_real(value: Optional[str]) -> bool:
    if not value:
        return False
    cleaned = value.strip().lower()
    return len(cleaned) > 1 and cleaned not in PLACEHOLDER_VALUES


def _text(element) -> Optional[str]:
    if element is None:
        return None
    text = re.sub(r'\s+', ' ', element.get_text(" ")).strip()
    return text or None


class HeuristicParser:
    """Extracts a minimal posting from raw or cleaned HTML."""

    def parse(self, html: str, url: str) -> Optional[JobPosting]:
        """
        Returns:
            JobPosting flagged as heuristic, or None if title, company or
            location could not be found
        """
        if not html:
            return None

        soup = BeautifulSoup(html, 'html.parser')
        fields = self._from_jsonld(soup)

        if not _is_real(fields.get('job_title')):
            fields['job_title'] = self._title(soup)
        if not _is_real(fields.get('company_name')):
            fields['company_name'] = self._company(soup)
        if not fields.get('locations'):
            fields['locations'] = self._locations(soup)

        title = fields.get('job_title')
        company = fields.get('company_name')
        locations = [loc for loc in fields.get('locations') or [] if _is_real(loc.city)]

        if not (_is_real(title) and _is_real(company) and locations):
            logger.warning(
                f"Heuristic parse of {url} incomplete: "
                f"title={bool(_is_real(title))} company={bool(_is_real(company))} locations={len(locations)}"
            )
            return None

        return JobPosting(
            original_link=url,
            job_title=title.strip(),
            company_name=company.strip(),
            locations=locations,
            application_deadline=fields.get('application_deadline'),
            description_snippet=fields.get('description_snippet'),
            extraction_method=ExtractionMethod.HEURISTIC,
        )

    def _from_jsonld(self, soup: BeautifulSoup) -> Dict[str, Any]:
        for script in soup.find_all('script', type='application/ld+json'):
            try:
                data = json.loads(script.string or '')
            except (json.JSONDecodeError, TypeError) as e:
                logger.debug(f"Failed to parse JSON-LD: {e}")
                continue
            for item in self._flatten_jsonld(data):
                if self._is_job_posting(item):
                    return self._extract_job_posting(item)
        return {}

    def _flatten_jsonld(self, data: Any) -> List[Dict]:
        if isinstance(data, dict):
            if '@graph' in data and isinstance(data['@graph'], list):
                return [item for item in data['@graph'] if isinstance(item, dict)]
            return [data]
        if isinstance(data, list):
            return [item for item in data if isinstance(item, dict)]
        return []

    def _is_job_posting(self, item: Dict) -> bool:
        item_type = item.get('@type', '')
        if isinstance(item_type, list):
            return any('JobPosting' in str(t) for t in item_type)
        return 'JobPosting' in str(item_type)

    def _extract_job_posting(self, job_data: Dict) -> Dict[str, Any]:
        fields: Dict[str, Any] = {}

        if job_data.get('title'):
            fields['job_title'] = str(job_data['title']).strip()

        org = job_data.get('hiringOrganization')
        if isinstance(org, dict):
            org = org.get('name') or org.get('legalName')
        if org:
            fields['company_name'] = str(org).strip()

        places = job_data.get('jobLocation') or []
        if isinstance(places, dict):
            places = [places]
        locations = []
        for place in places:
            address = place.get('address') if isinstance(place, dict) else None
            if isinstance(address, dict) and address.get('addressLocality'):
                locations.append(Location(
                    city=sanitize_location(str(address['addressLocality'])),
                    zip_code=address.get('postalCode'),
                    address=address.get('streetAddress'),
                    state=address.get('addressRegion'),
                ))
        if locations:
            fields['locations'] = locations

        if job_data.get('validThrough'):
            fields['application_deadline'] = normalize_date(str(job_data['validThrough'])[:10])

        description = job_data.get('description')
        if description:
            text = BeautifulSoup(str(description), 'html.parser').get_text(" ")
            fields['description_snippet'] = re.sub(r'\s+', ' ', text).strip()[:200] or None

        return fields

    def _title(self, soup: BeautifulSoup) -> Optional[str]:
        h1 = _text(soup.find('h1'))
        if _is_real(h1):
            return h1

        og_title = soup.find('meta', attrs={'property': 'og:title'})
        if og_title and _is_real(og_title.get('content')):
            return TITLE_SPLIT_RE.split(og_title['content'].strip())[0]

        title = _text(soup.find('title'))
        if title:
            return TITLE_SPLIT_RE.split(title)[0]
        return None

    def _company(self, soup: BeautifulSoup) -> Optional[str]:
        for element in soup.find_all(['span', 'div', 'a', 'p'], class_=re.compile(r'company|employer|arbeitgeber', re.I)):
            text = _text(element)
            if _is_real(text) and len(text) < 120:
                return text

        for label in soup.find_all(['dt', 'th', 'label', 'span', 'strong'], string=COMPANY_LABEL_RE):
            value = _text(label.find_next_sibling(['dd', 'td', 'div', 'span', 'a']))
            if _is_real(value):
                return value
        return None

    def _locations(self, soup: BeautifulSoup) -> List[Location]:
        for element in soup.find_all(['span', 'div', 'p'], class_=re.compile(r'location|standort', re.I)):
            location = self._location_from_text(_text(element))
            if location:
                return [location]

        for label in soup.find_all(['dt', 'th', 'label', 'span', 'strong'], string=LOCATION_LABEL_RE):
            location = self._location_from_text(_text(label.find_next_sibling(['dd', 'td', 'div', 'span'])))
            if location:
                return [location]

        match = LOCATION_TEXT_RE.search(soup.get_text(" "))
        if match:
            return [Location(city=match.group(2).strip(), zip_code=match.group(1))]
        return []

    def _location_from_text(self, text: Optional[str]) -> Optional[Location]:
        if not _is_real(text) or len(text) > 80:
            return None
        text = sanitize_location(text)
        match = ZIP_CITY_RE.match(text)
        if match:
            return Location(city=match.group(2).strip(), zip_code=match.group(1))
        return Location(city=text.split(',')[0].strip())
