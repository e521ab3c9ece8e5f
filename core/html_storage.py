"""
HTML Storage Module
Keeps the raw HTML of a posting on disk while it is being processed.

An artifact is written before extraction and removed once the posting has
been saved or abandoned, so whatever remains in the directory belongs to runs
that died midway and can be replayed.
"""

import os
import logging
from typing import Optional
from pathlib import Path
from datetime import datetime
import hashlib
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

AUDIT_HEADER = "<!-- source: {url} | scraped_at: {scraped_at} -->\n"


class HTMLStorage:
    """Filesystem storage for raw posting HTML"""

    def __init__(self, storage_path: Optional[str] = None):
        """
        Initialize HTML storage.

        Args:
            storage_path: Base directory for artifacts (default: HTML_STORAGE_PATH env var or raw_data)
        """
        self.base_path = Path(storage_path or os.getenv("HTML_STORAGE_PATH", "raw_data"))
        self.base_path.mkdir(parents=True, exist_ok=True)
        logger.info(f"HTML storage initialized: filesystem at {self.base_path}")

    def _generate_path(self, url: str, now: Optional[datetime] = None) -> str:
        """
        Generate a storage path for a URL: domain/YYYYMMDD/hash.html
        """
        parsed = urlparse(url)
        domain = parsed.netloc.replace('.', '_').replace(':', '_') or "unknown"
        url_hash = hashlib.md5(url.encode()).hexdigest()[:12]
        day = (now or datetime.utcnow()).strftime("%Y%m%d")
        return f"{domain}/{day}/{url_hash}.html"

    def store(self, url: str, html_content: str) -> Optional[str]:
        """
        Store HTML content with an audit header naming the source.

        Args:
            url: The URL that was fetched
            html_content: The HTML content to store

        Returns:
            Storage path if successful, None otherwise
        """
        now = datetime.utcnow()
        try:
            storage_path = self._generate_path(url, now)
            file_path = self.base_path / storage_path
            file_path.parent.mkdir(parents=True, exist_ok=True)

            with open(file_path, 'w', encoding='utf-8') as f:
                f.write(AUDIT_HEADER.format(url=url, scraped_at=now.isoformat()))
                f.write(html_content)

            logger.debug(f"Stored HTML to filesystem: {file_path}")
            return storage_path
        except OSError as e:
            logger.error(f"Error storing HTML for {url}: {e}")
            return None

    def retrieve(self, storage_path: str) -> Optional[str]:
        """
        Retrieve HTML content (audit header included).

        Returns:
            HTML content if found, None otherwise
        """
        file_path = self.base_path / storage_path
        if not file_path.exists():
            logger.warning(f"HTML file not found: {file_path}")
            return None
        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                return f.read()
        except OSError as e:
            logger.error(f"Error retrieving HTML: {e}")
            return None

    def delete(self, storage_path: Optional[str]) -> bool:
        """
        Delete an artifact.

        Returns:
            True if deleted, False otherwise
        """
        if not storage_path:
            return False
        file_path = self.base_path / storage_path
        try:
            if file_path.exists():
                file_path.unlink()
                logger.debug(f"Deleted HTML from filesystem: {file_path}")
                return True
            return False
        except OSError as e:
            logger.error(f"Error deleting HTML: {e}")
            return False
