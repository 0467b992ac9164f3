"""
Legacy Ledger Store

Before the ledger moved to a remote backend it was kept as one JSON file per
user on the local machine. This store reads those files so the migrator can
move them once, explicitly, at startup.

File format: a JSON array of ledger entries in their camelCase wire shape,
named `tripLedger_<user_id>.json`.
"""

import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from drivelog.config import get_settings
from drivelog.models.ledger import LedgerEntry
from drivelog.services.storage.interface import RepositoryError


class LegacyLedgerStore(ABC):
    """Read-and-clear access to pre-migration ledger data."""

    @abstractmethod
    def load_entries(self, user_id: str) -> list[LedgerEntry]:
        """
        Load a user's legacy entries in stored order.

        Returns an empty list if there is nothing to migrate.

        Raises:
            RepositoryError: If legacy data exists but can't be read
        """
        pass

    @abstractmethod
    def clear(self, user_id: str) -> None:
        """Remove a user's legacy data after a successful migration."""
        pass


class JsonFileLegacyLedgerStore(LegacyLedgerStore):
    """Legacy ledger kept as JSON files in a directory."""

    def __init__(self, directory: Optional[Path] = None):
        self._directory = Path(directory or get_settings().ledger.legacy_store_dir)

    def _path_for(self, user_id: str) -> Path:
        return self._directory / f"tripLedger_{user_id}.json"

    def load_entries(self, user_id: str) -> list[LedgerEntry]:
        path = self._path_for(user_id)
        if not path.exists():
            return []

        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise RepositoryError(f"Failed to read legacy ledger {path}: {e}")

        if not isinstance(raw, list):
            raise RepositoryError(f"Legacy ledger {path} is not a list of entries")

        try:
            return [LedgerEntry.model_validate(item) for item in raw]
        except ValidationError as e:
            raise RepositoryError(f"Legacy ledger {path} contains invalid entries: {e}")

    def save_entries(self, user_id: str, entries: list[LedgerEntry]) -> None:
        """Write a legacy file. Used to seed fixtures and by reset tooling."""
        self._directory.mkdir(parents=True, exist_ok=True)
        payload = [entry.to_wire() for entry in entries]
        self._path_for(user_id).write_text(json.dumps(payload, indent=2), encoding="utf-8")

    def clear(self, user_id: str) -> None:
        path = self._path_for(user_id)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise RepositoryError(f"Failed to remove legacy ledger {path}: {e}")
