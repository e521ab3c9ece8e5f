"""
HTML fetcher for Ausbildung listings and posting pages.

fetch_full_page returns the page HTML, or None when the page is gone for
good (404/410 and other client errors). Timeouts, connection errors and 5xx
responses are retried and, if they persist, raised as TransientFetchError so
callers never confuse a flaky network with a removed posting.
"""

import re
import json
import time
import random
import logging
from typing import Callable, List, Optional
from urllib.parse import urljoin, urlparse

import httpx
from bs4 import BeautifulSoup, Comment
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from core.models import ListingItem

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
DEFAULT_TIMEOUT = 50.0

USER_AGENTS = [
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36',
    'Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36',
    'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36',
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0',
    'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.1 Safari/605.1.15',
]

DEFAULT_HEADERS = {
    'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8',
    'Accept-Language': 'de-DE,de;q=0.9,en;q=0.8',
}

SLUG_OBJECT_RE = re.compile(r'\{[^{}]*"slug"\s*:\s*"([^"]+)"[^{}]*\}')
SLUG_RE = re.compile(r'"slug"\s*:\s*"([^"]+)"')
VACANCY_COUNT_RE = re.compile(r'"vacancyCount"\s*:\s*(\d+)')
TOTAL_COUNT_RE = re.compile(r'"vacanciesCount"\s*:\s*(\d+)')
JSONLD_TYPE = 'application/ld+json'

TOTAL_TEXT_RE = re.compile(r'(\d[\d.]*)\s*(?:Ausbildungsplätze|Stellen|Treffer)', re.I)


class TransientFetchError(Exception):
    """Fetching failed for a reason that may go away (timeout, 5xx)."""


def clean_html(html: str) -> str:
    """
    Drop scripts, styles and comments; decode entities; collapse whitespace.

    JSON-LD blocks are kept, the heuristic parser reads JobPosting data from them.
    """
    soup = BeautifulSoup(html or "", 'html.parser')
    for tag in soup(['script', 'style', 'noscript']):
        if tag.name == 'script' and tag.get('type') == JSONLD_TYPE:
            continue
        tag.decompose()
    for comment in soup.find_all(string=lambda s: isinstance(s, Comment)):
        comment.extract()
    return re.sub(r'\s+', ' ', str(soup)).strip()


def clean_to_text(html: str) -> str:
    """Visible text of a page, whitespace collapsed."""
    soup = BeautifulSoup(html or "", 'html.parser')
    for tag in soup(['script', 'style', 'noscript']):
        tag.decompose()
    return re.sub(r'\s+', ' ', soup.get_text(" ")).strip()


def _base_url(url: str) -> str:
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}"


def parse_total_count(html: str) -> Optional[int]:
    """Total number of postings the listing advertises, if stated."""
    match = TOTAL_COUNT_RE.search(html or "")
    if match:
        return int(match.group(1))
    match = TOTAL_TEXT_RE.search(clean_to_text(html))
    if match:
        return int(match.group(1).replace('.', ''))
    return None


def _json_string(fragment: str, key: str) -> Optional[str]:
    match = re.search(rf'"{key}"\s*:\s*("(?:[^"\\]|\\.)*")', fragment)
    if not match:
        return None
    try:
        return json.loads(match.group(1))
    except json.JSONDecodeError:
        return None


def parse_listing(html: str, listing_url: str) -> List[ListingItem]:
    """
    Posting links of a listing page, in page order and without duplicates.

    Anchors pointing at /stellen/ come first, then slugs found in embedded
    script data. Vacancy counts are taken from the same script object as
    the slug when present.
    """
    base = _base_url(listing_url)
    soup = BeautifulSoup(html or "", 'html.parser')
    items: List[ListingItem] = []
    seen = {}

    def add(item: ListingItem):
        if item.url in seen:
            existing = seen[item.url]
            if existing.vacancy_count is None and item.vacancy_count is not None:
                existing.vacancy_count = item.vacancy_count
            return
        seen[item.url] = item
        items.append(item)

    for link in soup.select('a[href*="/stellen/"]'):
        href = link.get('href', '')
        if '?' in href:
            continue
        title = re.sub(r'\s+', ' ', link.get_text(" ")).strip() or None
        add(ListingItem(url=urljoin(base + '/', href), title=title))

    for script in soup.find_all('script'):
        content = script.string or script.get_text()
        if '"slug"' not in content:
            continue
        covered = set()
        for match in SLUG_OBJECT_RE.finditer(content):
            fragment = match.group(0)
            slug = match.group(1)
            covered.add(slug)
            count = VACANCY_COUNT_RE.search(fragment)
            add(ListingItem(
                url=f"{base}/stellen/{slug}/",
                title=_json_string(fragment, 'title'),
                company=_json_string(fragment, 'corporationName'),
                vacancy_count=int(count.group(1)) if count else None,
            ))
        for slug in SLUG_RE.findall(content):
            if slug not in covered:
                add(ListingItem(url=f"{base}/stellen/{slug}/"))

    return items


class JobScraper:
    """Polite HTTP scraper for listing and posting pages"""

    def __init__(
        self,
        min_delay_ms: int = 2000,
        max_delay_ms: int = 5000,
        timeout: float = DEFAULT_TIMEOUT,
        client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.min_delay_ms = min_delay_ms
        self.max_delay_ms = max_delay_ms
        self.client = client or httpx.Client(
            timeout=httpx.Timeout(timeout),
            follow_redirects=True,
            headers=DEFAULT_HEADERS,
        )
        self.sleep = sleep

    @classmethod
    def from_config(cls, config, **kwargs) -> "JobScraper":
        return cls(
            min_delay_ms=config.scraper_min_delay_ms,
            max_delay_ms=config.scraper_max_delay_ms,
            timeout=config.scraper_timeout,
            **kwargs,
        )

    def _polite_delay(self):
        delay_ms = random.randint(self.min_delay_ms, self.max_delay_ms)
        if delay_ms > 0:
            self.sleep(delay_ms / 1000.0)

    @retry(
        stop=stop_after_attempt(MAX_RETRIES),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(TransientFetchError),
        reraise=True
    )
    def _get(self, url: str) -> httpx.Response:
        try:
            response = self.client.get(url, headers={'User-Agent': random.choice(USER_AGENTS)})
        except (httpx.TimeoutException, httpx.TransportError) as e:
            logger.warning(f"[scraper] Transient error fetching {url}: {e}")
            raise TransientFetchError(str(e)) from e

        if response.status_code >= 500 or response.status_code == 429:
            logger.warning(f"[scraper] HTTP {response.status_code} for {url}")
            raise TransientFetchError(f"HTTP {response.status_code} for {url}")
        return response

    def fetch_full_page(self, url: str) -> Optional[str]:
        """
        Fetch a posting page.

        Returns:
            HTML, or None if the page is permanently unavailable

        Raises:
            TransientFetchError: retries exhausted on a transient failure
        """
        self._polite_delay()
        response = self._get(url)
        if response.status_code >= 400:
            logger.info(f"[scraper] {url} unavailable (HTTP {response.status_code})")
            return None
        return response.text

    def list_current_postings(self, source_url: str) -> List[ListingItem]:
        """All postings advertised on a listing page; empty on failure."""
        try:
            html = self.fetch_full_page(source_url)
        except TransientFetchError as e:
            logger.error(f"[scraper] Failed to fetch listing {source_url}: {e}")
            return []
        if not html:
            return []

        total = parse_total_count(html)
        items = parse_listing(html, source_url)
        if total:
            logger.info(f"[scraper] {source_url}: {len(items)} postings found, {total} advertised")
        else:
            logger.info(f"[scraper] {source_url}: {len(items)} postings found")
        return items

    def close(self):
        self.client.close()
