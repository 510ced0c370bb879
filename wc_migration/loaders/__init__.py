"""Data loaders for the target store."""

from .base import BaseLoader
from .bigcommerce import BigCommerceLoader

__all__ = [
    "BaseLoader",
    "BigCommerceLoader",
]
