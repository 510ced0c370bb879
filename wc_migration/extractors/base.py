"""Base extractor interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
from datetime import datetime
import logging

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..errors import FetchError, extract_error_message

logger = logging.getLogger(__name__)


@dataclass
class ExtractionResult:
    """Result of reading a whole source collection."""
    resource: str
    records: List[Dict[str, Any]] = field(default_factory=list)
    pages_fetched: int = 0
    truncated: bool = False
    warnings: List[str] = field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def total_extracted(self) -> int:
        return len(self.records)

    @property
    def duration_seconds(self) -> Optional[float]:
        """Get duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None


class BaseExtractor(ABC):
    """
    Base class for source readers.

    Subclasses implement `list_page`; `fetch_all` walks the pages. Any
    failure to read is raised as FetchError, which aborts the run that
    asked for the collection.
    """

    source_name = "source"

    def __init__(self, page_size: int = 100, timeout: float = 30.0, max_retries: int = 3):
        """
        Initialize the extractor.

        Args:
            page_size: Items requested per page
            timeout: Per-request timeout in seconds
            max_retries: Transport-level retries for GETs
        """
        self.page_size = page_size
        self.timeout = timeout
        self.max_retries = max_retries

    def _create_session(self, auth: Optional[Tuple[str, str]] = None) -> requests.Session:
        """Create a requests session with retry logic."""
        session = requests.Session()

        retries = Retry(
            total=self.max_retries,
            backoff_factor=1.0,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET"],
            respect_retry_after_header=True,
        )

        adapter = HTTPAdapter(max_retries=retries)
        session.mount("https://", adapter)
        session.mount("http://", adapter)

        if auth:
            session.auth = auth
        session.headers["Accept"] = "application/json"

        return session

    def _get_json(self, session: requests.Session, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """GET a URL and decode the body, raising FetchError on any failure."""
        try:
            response = session.get(url, params=params, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise FetchError(f"Cannot reach {self.source_name}: {e}", context={"url": url}) from e

        if not response.ok:
            try:
                body = response.json()
            except ValueError:
                body = response.text
            message = extract_error_message(body, response.reason or "request failed")
            raise FetchError(
                f"{self.source_name} returned {response.status_code}: {message}",
                status=response.status_code,
                context={"url": url},
            )

        try:
            return response.json()
        except ValueError as e:
            raise FetchError(f"{self.source_name} returned invalid JSON from {url}") from e

    @abstractmethod
    def list_page(
        self,
        resource: str,
        page: int,
        per_page: int,
        params: Optional[Dict[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        """
        Fetch one page of a collection.

        Returns:
            Items on the page, empty when past the end

        Raises:
            FetchError: If the page could not be read
        """
        pass

    def fetch_all(
        self,
        resource: str,
        params: Optional[Dict[str, Any]] = None,
        per_page: Optional[int] = None,
        max_pages: Optional[int] = None
    ) -> ExtractionResult:
        """
        Fetch every page of a collection, in source order.

        Args:
            resource: Collection name
            params: Extra query parameters (filters)
            per_page: Page size, defaults to the extractor's
            max_pages: Safety cap on pages, None for no cap

        Raises:
            FetchError: If any page could not be read
        """
        per_page = per_page or self.page_size
        result = ExtractionResult(resource=resource, started_at=datetime.utcnow())

        page = 1
        while True:
            if max_pages is not None and page > max_pages:
                result.truncated = True
                message = (
                    f"Stopped reading {resource} after {max_pages} pages "
                    f"({len(result.records)} items); later items were not fetched"
                )
                result.warnings.append(message)
                logger.warning(message)
                break

            items = self.list_page(resource, page, per_page, params)
            result.pages_fetched += 1
            if not items:
                break

            result.records.extend(items)
            if len(items) < per_page:
                break
            page += 1

        result.completed_at = datetime.utcnow()
        logger.info(
            f"Fetched {result.total_extracted} {resource} from {self.source_name} "
            f"in {result.duration_seconds:.1f}s"
        )
        return result

    def validate_connection(self) -> bool:
        """Check the source answers. Subclasses override."""
        return True
