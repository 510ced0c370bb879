"""BigCommerce REST loader (v3 catalog/customers/content, v2 orders/coupons/blog)."""

import logging
from typing import Any, Dict, List, Optional, Tuple

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .base import BaseLoader
from ..errors import MigrationError, TransientError, TargetWriteError, classify_http_error
from ..models.migration import BigCommerceCredentials, EntityType
from ..models.record import TransformedRecord
from ..services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

API_ROOT = "https://api.bigcommerce.com/stores"

# entity -> (collection path, lookup query parameter)
ENTITY_ENDPOINTS: Dict[EntityType, Tuple[str, Optional[str]]] = {
    EntityType.CATEGORIES: ("v3/catalog/categories", "name"),
    EntityType.PRODUCTS: ("v3/catalog/products", "sku"),
    EntityType.CUSTOMERS: ("v3/customers", "email:in"),
    EntityType.ORDERS: ("v2/orders", "external_id"),
    EntityType.COUPONS: ("v2/coupons", "code"),
    EntityType.REVIEWS: ("v3/catalog/products/{product_id}/reviews", None),
    EntityType.PAGES: ("v3/content/pages", "url"),
    EntityType.BLOG_POSTS: ("v2/blog/posts", None),
}

# Field of the payload matched by the lookup query
LOOKUP_FIELDS = {
    EntityType.CATEGORIES: "name",
    EntityType.PRODUCTS: "sku",
    EntityType.CUSTOMERS: "email",
    EntityType.ORDERS: "external_id",
    EntityType.COUPONS: "code",
    EntityType.PAGES: "url",
}

# Endpoints that take a list of items on create
ARRAY_CREATE = {EntityType.CUSTOMERS}


def _first(body: Any) -> Optional[Dict[str, Any]]:
    """Unwrap v3 `{"data": ...}` envelopes and single-item lists."""
    if isinstance(body, dict) and "data" in body:
        body = body["data"]
    if isinstance(body, list):
        return body[0] if body else None
    if isinstance(body, dict):
        return body
    return None


def _items(body: Any) -> List[Dict[str, Any]]:
    if isinstance(body, dict):
        body = body.get("data", [])
    return body if isinstance(body, list) else []


class BigCommerceLoader(BaseLoader):
    """
    Loader for the BigCommerce management API.

    Every response feeds the shared rate limiter, and a 429 pauses it so
    concurrent runs back off together.
    """

    target_service = "BigCommerce"

    def __init__(
        self,
        credentials: BigCommerceCredentials,
        rate_limiter: Optional[RateLimiter] = None,
        timeout: float = 30.0,
        max_retries: int = 3,
        base_url: Optional[str] = None,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the BigCommerce loader.

        Args:
            credentials: Store hash and API access token
            rate_limiter: Shared limiter to report quota headers to
            timeout: Per-request timeout in seconds
            max_retries: Transport-level retries for lookups (writes are
                retried by the executor)
            base_url: Override the API root, e.g. for a sandbox
            session: Custom requests session
        """
        credentials.validate()
        self.credentials = credentials
        self.rate_limiter = rate_limiter
        self.timeout = timeout
        self.max_retries = max_retries
        self.base_url = (base_url or f"{API_ROOT}/{credentials.store_hash}").rstrip("/")
        self._session = session or self._create_session()
        self._blog_urls: Optional[Dict[str, int]] = None

    def _create_session(self) -> requests.Session:
        """Create a requests session with authentication."""
        session = requests.Session()

        retries = Retry(
            total=self.max_retries,
            backoff_factor=1.0,
            status_forcelist=[500, 502, 503, 504],
            allowed_methods=["GET"],
        )
        adapter = HTTPAdapter(max_retries=retries)
        session.mount("https://", adapter)
        session.mount("http://", adapter)

        session.headers["X-Auth-Token"] = self.credentials.access_token
        session.headers["Content-Type"] = "application/json"
        session.headers["Accept"] = "application/json"

        return session

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        payload: Any = None
    ) -> Any:
        """Send a request and decode the body, raising classified errors."""
        url = f"{self.base_url}/{path}"
        try:
            response = self._session.request(
                method, url, params=params, json=payload, timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            raise TransientError(f"Cannot reach BigCommerce: {e}", context={"url": url}) from e

        if self.rate_limiter:
            self.rate_limiter.update_from_headers(response.headers)

        # v2 list endpoints answer 204 for an empty result
        if response.status_code == 204 or not response.content:
            if response.ok:
                return None

        try:
            body = response.json()
        except ValueError:
            body = response.text

        if not response.ok:
            error = classify_http_error(
                response.status_code, body, response.headers, context={"method": method, "path": path}
            )
            retry_after = getattr(error, "retry_after", None)
            if response.status_code == 429 and self.rate_limiter:
                self.rate_limiter.pause(retry_after if retry_after is not None else 1.0)
            raise error

        return body

    def _endpoint(self, entity: EntityType) -> str:
        try:
            return ENTITY_ENDPOINTS[entity][0]
        except KeyError:
            raise TargetWriteError(f"BigCommerce loader does not handle {entity.value}")

    def _load_blog_urls(self) -> Dict[str, int]:
        if self._blog_urls is None:
            posts = _items(self._request("GET", "v2/blog/posts", {"limit": 250}))
            self._blog_urls = {}
            for post in posts:
                url = post.get("url")
                if url:
                    self._blog_urls[url.rstrip("/")] = int(post["id"])
        return self._blog_urls

    def find_existing(self, entity: EntityType, record: TransformedRecord) -> Optional[int]:
        data = record.data

        if entity == EntityType.REVIEWS:
            return None

        if entity == EntityType.BLOG_POSTS:
            url = (data.get("url") or "").rstrip("/")
            return self._load_blog_urls().get(url) if url else None

        path, param = ENTITY_ENDPOINTS[entity]
        value = data.get(LOOKUP_FIELDS[entity])
        if not value:
            return None

        params: Dict[str, Any] = {param: value}
        if entity == EntityType.CATEGORIES:
            params["parent_id"] = data.get("parent_id", 0)

        for item in _items(self._request("GET", path, params)):
            # Lookups can be fuzzy, confirm the exact key
            candidate = item.get(LOOKUP_FIELDS[entity])
            if isinstance(candidate, str) and isinstance(value, str):
                if candidate.lower() != value.lower():
                    continue
            return int(item["id"])
        return None

    def create(self, entity: EntityType, record: TransformedRecord) -> int:
        path = self._endpoint(entity)
        payload = dict(record.data)

        if entity == EntityType.REVIEWS:
            path = path.format(product_id=payload.pop("product_id"))

        body = self._request("POST", path, payload=[payload] if entity in ARRAY_CREATE else payload)
        created = _first(body)
        if not created or "id" not in created:
            raise TargetWriteError(f"BigCommerce returned no ID for new {entity.value}")

        target_id = int(created["id"])
        if entity == EntityType.BLOG_POSTS and self._blog_urls is not None and payload.get("url"):
            self._blog_urls[payload["url"].rstrip("/")] = target_id

        logger.debug(f"Created {entity.value} {record.source_id} -> {target_id}")
        return target_id

    def update(self, entity: EntityType, target_id: int, data: Dict[str, Any]) -> None:
        path = self._endpoint(entity)
        if "{" in path:
            raise TargetWriteError(f"Updating {entity.value} is not supported")
        self._request("PUT", f"{path}/{target_id}", payload=data)

    def validate_connection(self) -> bool:
        try:
            self._request("GET", "v2/store")
            return True
        except MigrationError as e:
            logger.error(f"BigCommerce connection failed: {e}")
            return False
