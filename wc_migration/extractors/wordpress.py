"""WordPress REST API extractor for pages and blog posts."""

import logging
from typing import Any, Dict, List, Optional

import requests

from .base import BaseExtractor
from ..errors import FetchError
from ..models.migration import WordPressCredentials

logger = logging.getLogger(__name__)


class WordPressExtractor(BaseExtractor):
    """Reads content through the WordPress REST API (wp/v2)."""

    source_name = "WordPress"

    def __init__(
        self,
        credentials: WordPressCredentials,
        page_size: int = 100,
        timeout: float = 30.0,
        max_retries: int = 3,
        session: Optional[requests.Session] = None
    ):
        super().__init__(min(page_size, 100), timeout, max_retries)
        credentials.validate()
        self.credentials = credentials
        auth = None
        if credentials.username and credentials.application_password:
            auth = (credentials.username, credentials.application_password)
        self._session = session or self._create_session(auth=auth)

    @property
    def base_url(self) -> str:
        return f"{self.credentials.url.rstrip('/')}/wp-json/wp/v2"

    def list_page(
        self,
        resource: str,
        page: int,
        per_page: int,
        params: Optional[Dict[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        query = {"page": page, "per_page": per_page}
        query.update(params or {})
        try:
            data = self._get_json(self._session, f"{self.base_url}/{resource}", query)
        except FetchError as e:
            # WordPress answers 400 rest_post_invalid_page_number past the last page
            if e.status == 400 and page > 1:
                return []
            raise
        if not isinstance(data, list):
            raise FetchError(f"Unexpected WordPress response for {resource}: expected a list")
        return data

    def fetch_lookup(self, resource: str, max_pages: int = 20) -> Dict[int, str]:
        """Map IDs to names for tags, categories or users."""
        result = self.fetch_all(resource, max_pages=max_pages)
        return {int(item["id"]): item.get("name", "") for item in result.records}

    def validate_connection(self) -> bool:
        try:
            self._get_json(self._session, f"{self.credentials.url.rstrip('/')}/wp-json")
            return True
        except FetchError as e:
            logger.error(f"WordPress connection failed: {e}")
            return False
