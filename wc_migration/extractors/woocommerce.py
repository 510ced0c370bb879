"""WooCommerce REST API extractor."""

import logging
from typing import Any, Dict, List, Optional

import requests

from .base import BaseExtractor
from ..errors import FetchError
from ..models.migration import WooCommerceCredentials

logger = logging.getLogger(__name__)


class WooCommerceExtractor(BaseExtractor):
    """
    Reads store data through the WooCommerce REST API (v3).

    Authenticates with the consumer key/secret as HTTP basic auth, which
    WooCommerce accepts over HTTPS.
    """

    source_name = "WooCommerce"

    def __init__(
        self,
        credentials: WooCommerceCredentials,
        page_size: int = 100,
        timeout: float = 30.0,
        max_retries: int = 3,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the WooCommerce extractor.

        Args:
            credentials: Store URL and REST API keys
            page_size: Items per page (WooCommerce caps this at 100)
            timeout: Per-request timeout in seconds
            max_retries: Transport-level retries for GETs
            session: Custom requests session
        """
        super().__init__(min(page_size, 100), timeout, max_retries)
        credentials.validate()
        self.credentials = credentials
        self._session = session or self._create_session(
            auth=(credentials.consumer_key, credentials.consumer_secret)
        )

    @property
    def base_url(self) -> str:
        return f"{self.credentials.url.rstrip('/')}/wp-json/wc/v3"

    def list_page(
        self,
        resource: str,
        page: int,
        per_page: int,
        params: Optional[Dict[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        query = {"page": page, "per_page": per_page}
        query.update(params or {})
        data = self._get_json(self._session, f"{self.base_url}/{resource}", query)
        if not isinstance(data, list):
            raise FetchError(f"Unexpected WooCommerce response for {resource}: expected a list")
        return data

    def get(self, resource: str) -> Dict[str, Any]:
        """Fetch a single object, e.g. products/categories/12."""
        return self._get_json(self._session, f"{self.base_url}/{resource}")

    def validate_connection(self) -> bool:
        try:
            self.list_page("products", 1, 1)
            return True
        except FetchError as e:
            logger.error(f"WooCommerce connection failed: {e}")
            return False
