"""JSON file wizard store."""

import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from ..models.wizard import WizardState
from .base import NAMESPACE, WizardStore

logger = logging.getLogger(__name__)


class JsonFileWizardStore(WizardStore):
    """
    One JSON file per store pair under a directory.

    Writes go to a temporary file in the same directory and are moved into
    place with os.replace, so a crash mid-write leaves the previous state.
    """

    def __init__(self, directory: str, namespace: str = NAMESPACE):
        super().__init__(namespace)
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def path_for(self, source_store: str, target_store: str) -> Path:
        return self.directory / f"{self.slot_for(source_store, target_store)}.json"

    def save(self, state: WizardState) -> None:
        path = self.path_for(state.source_store, state.target_store)
        fd, tmp_path = tempfile.mkstemp(dir=str(self.directory), prefix=".wizard-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                f.write(self.serialize(state))
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
        logger.debug(f"Saved wizard state to {path}")

    def load(self, source_store: str, target_store: str) -> Optional[WizardState]:
        path = self.path_for(source_store, target_store)
        if not path.exists():
            return None

        try:
            raw = path.read_text()
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Could not read wizard state from {path}: {e}")
            return None

        return self.deserialize(raw, source_store, target_store)

    def clear(self, source_store: str, target_store: str) -> None:
        path = self.path_for(source_store, target_store)
        try:
            path.unlink()
            logger.info(f"Cleared wizard state at {path}")
        except FileNotFoundError:
            pass
