"""Wizard state persistence."""

from .base import NAMESPACE, WizardStore, storage_key
from .file_store import JsonFileWizardStore
from .memory_store import InMemoryWizardStore

__all__ = [
    "NAMESPACE",
    "WizardStore",
    "storage_key",
    "JsonFileWizardStore",
    "InMemoryWizardStore",
]
