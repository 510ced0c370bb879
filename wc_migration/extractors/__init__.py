"""Data extractors for the source stores."""

from .base import BaseExtractor, ExtractionResult
from .woocommerce import WooCommerceExtractor
from .wordpress import WordPressExtractor

__all__ = [
    "BaseExtractor",
    "ExtractionResult",
    "WooCommerceExtractor",
    "WordPressExtractor",
]
