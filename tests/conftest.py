"""Shared pytest fixtures for wc-migration tests.

Provides in-memory fakes for the source stores and the BigCommerce target
so executor and API tests never touch the network.
"""

from itertools import count
from typing import Any, Dict, List, Optional, Tuple

import pytest

from wc_migration.config import Settings, set_settings
from wc_migration.errors import DuplicateError, FetchError
from wc_migration.extractors.base import BaseExtractor
from wc_migration.loaders.base import BaseLoader
from wc_migration.models.migration import EntityType
from wc_migration.models.record import TransformedRecord
from wc_migration.orchestrator import BatchMigrationExecutor
from wc_migration.services.rate_limiter import RateLimiter, reset_rate_limiter
from wc_migration.storage.memory_store import InMemoryWizardStore
from wc_migration.wizard.session import MigrationWizard

SOURCE_STORE = "https://store-a.example.com"
TARGET_STORE = "hash1"


# =============================================================================
# Fakes
# =============================================================================


class FakeSourceExtractor(BaseExtractor):
    """Serves collections from memory, paged like the real APIs."""

    source_name = "FakeSource"

    def __init__(self, collections: Optional[Dict[str, List[Dict[str, Any]]]] = None, page_size: int = 100):
        super().__init__(page_size=page_size)
        self.collections = collections or {}
        self.lookups: Dict[str, Dict[int, str]] = {}
        self.fail_with: Optional[Exception] = None
        self.requests: List[Tuple[str, int, Dict[str, Any]]] = []

    def list_page(self, resource, page, per_page, params=None):
        self.requests.append((resource, page, dict(params or {})))
        if self.fail_with is not None:
            raise self.fail_with
        items = self.collections.get(resource, [])
        start = (page - 1) * per_page
        return items[start:start + per_page]

    def fetch_lookup(self, resource: str, max_pages: int = 20) -> Dict[int, str]:
        if resource not in self.lookups:
            raise FetchError(f"no {resource} lookup", status=404)
        return dict(self.lookups[resource])


class FakeTargetLoader(BaseLoader):
    """
    Records writes in memory.

    `existing` maps (entity, natural key) to a target ID returned by
    find_existing; `failures` maps a source ID to the error create raises.
    `update_failures` holds errors raised, in order, by update.
    """

    target_service = "FakeTarget"

    LOOKUP_FIELDS = {
        EntityType.CATEGORIES: "name",
        EntityType.PRODUCTS: "sku",
        EntityType.CUSTOMERS: "email",
        EntityType.ORDERS: "external_id",
        EntityType.COUPONS: "code",
        EntityType.PAGES: "url",
        EntityType.BLOG_POSTS: "url",
    }

    def __init__(self, first_id: int = 1000):
        self._ids = count(first_id)
        self.existing: Dict[Tuple[EntityType, str], int] = {}
        self.duplicates: Dict[int, Optional[int]] = {}
        self.failures: Dict[int, List[Exception]] = {}
        self.created: List[Tuple[EntityType, TransformedRecord, int]] = []
        self.updates: List[Tuple[EntityType, int, Dict[str, Any]]] = []
        self.update_failures: List[Exception] = []
        self.lookups = 0

    def _key(self, entity: EntityType, record: TransformedRecord) -> Optional[str]:
        field = self.LOOKUP_FIELDS.get(entity)
        return record.data.get(field) if field else None

    def find_existing(self, entity, record):
        self.lookups += 1
        return self.existing.get((entity, self._key(entity, record)))

    def create(self, entity, record):
        pending = self.failures.get(record.source_id)
        if pending:
            raise pending.pop(0)
        if record.source_id in self.duplicates:
            raise DuplicateError("already exists", existing_id=self.duplicates[record.source_id])
        target_id = next(self._ids)
        self.created.append((entity, record, target_id))
        return target_id

    def update(self, entity, target_id, data):
        if self.update_failures:
            raise self.update_failures.pop(0)
        self.updates.append((entity, target_id, dict(data)))

    def created_ids(self, entity: EntityType) -> List[int]:
        return [record.source_id for e, record, _ in self.created if e == entity]


def make_products(n: int) -> List[Dict[str, Any]]:
    return [
        {"id": i, "name": f"Product {i}", "sku": f"SKU-{i}", "price": "10.00", "status": "publish"}
        for i in range(1, n + 1)
    ]


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def _reset_globals():
    """Process-wide settings and the shared limiter never leak between tests."""
    set_settings(None)
    reset_rate_limiter()
    yield
    set_settings(None)
    reset_rate_limiter()


@pytest.fixture
def settings() -> Settings:
    return Settings(batch_size=3, page_size=4, retry_attempts=3, retry_base_delay=0.0, retry_max_delay=0.0)


@pytest.fixture
def fast_limiter() -> RateLimiter:
    return RateLimiter(capacity=10000, window=1.0, min_interval=0.0, max_concurrent=10)


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def no_sleep(sleeps):
    async def _sleep(delay: float) -> None:
        sleeps.append(delay)

    return _sleep


@pytest.fixture
def source() -> FakeSourceExtractor:
    return FakeSourceExtractor()


@pytest.fixture
def wordpress() -> FakeSourceExtractor:
    return FakeSourceExtractor()


@pytest.fixture
def target() -> FakeTargetLoader:
    return FakeTargetLoader()


@pytest.fixture
def executor(source, target, wordpress, settings, fast_limiter, no_sleep) -> BatchMigrationExecutor:
    return BatchMigrationExecutor(
        source,
        target,
        wordpress,
        settings=settings,
        rate_limiter=fast_limiter,
        sleep=no_sleep,
    )


@pytest.fixture
def wizard_store() -> InMemoryWizardStore:
    return InMemoryWizardStore()


@pytest.fixture
def wizard(wizard_store) -> MigrationWizard:
    return MigrationWizard(SOURCE_STORE, TARGET_STORE, wizard_store)
