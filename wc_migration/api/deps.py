"""Shared dependencies for API routes."""

import logging
from typing import Callable, Optional

from ..config import get_settings
from ..extractors.woocommerce import WooCommerceExtractor
from ..extractors.wordpress import WordPressExtractor
from ..loaders.bigcommerce import BigCommerceLoader
from ..orchestrator import BatchMigrationExecutor
from ..services.rate_limiter import get_rate_limiter
from ..storage.base import WizardStore
from ..storage.memory_store import InMemoryWizardStore
from .models import MigrateRequest

logger = logging.getLogger(__name__)

ExecutorFactory = Callable[[MigrateRequest], BatchMigrationExecutor]

_wizard_store: Optional[WizardStore] = None


def get_wizard_store() -> WizardStore:
    """Process-wide wizard store; in-memory unless configured at startup."""
    global _wizard_store
    if _wizard_store is None:
        _wizard_store = InMemoryWizardStore()
    return _wizard_store


def set_wizard_store(store: Optional[WizardStore]) -> None:
    global _wizard_store
    _wizard_store = store


def build_executor(request: MigrateRequest) -> BatchMigrationExecutor:
    """
    Build an executor from the credentials in a request.

    Raises:
        ConfigurationError: If credentials are incomplete
    """
    settings = get_settings()
    limiter = get_rate_limiter(settings)

    source = WooCommerceExtractor(
        request.wc_credentials.to_credentials(),
        page_size=settings.page_size,
        timeout=settings.request_timeout,
    )
    target = BigCommerceLoader(
        request.bc_credentials.to_credentials(),
        rate_limiter=limiter,
        timeout=settings.request_timeout,
    )
    wordpress = None
    if request.wp_credentials is not None:
        wordpress = WordPressExtractor(
            request.wp_credentials.to_credentials(),
            page_size=settings.page_size,
            timeout=settings.request_timeout,
        )

    return BatchMigrationExecutor(source, target, wordpress, settings=settings, rate_limiter=limiter)


def get_executor_factory() -> ExecutorFactory:
    return build_executor
