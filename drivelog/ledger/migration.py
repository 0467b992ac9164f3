"""
Ledger Migration

One-shot move of a user's pre-remote ledger (local JSON files) into the
ledger repository.

CRITICAL: Migration never runs implicitly. The app calls it explicitly once
at startup (see `TripManager.initialize`). It refuses to overwrite a
repository that already holds entries, and only clears the legacy data after
the repository write succeeded.
"""

import structlog

from drivelog.ledger.hashing import compute_root_hash
from drivelog.models.ledger import MigrationResult
from drivelog.services.storage.interface import LedgerRepositoryInterface
from drivelog.services.storage.legacy import LegacyLedgerStore


logger = structlog.get_logger(__name__)


class LedgerMigrator:
    """Copies legacy ledger entries into the repository, unchanged."""

    def __init__(
        self,
        repository: LedgerRepositoryInterface,
        legacy_store: LegacyLedgerStore,
    ):
        self._repository = repository
        self._legacy_store = legacy_store

    async def migrate(self, user_id: str) -> MigrationResult:
        """
        Migrate one user's legacy ledger.

        Entries are copied as stored (hashes untouched), so a chain that was
        valid before migration verifies identically after it.

        Returns:
            (False, 0) if there is no legacy data,
            (False, existing count) if the repository already has entries,
            (True, migrated count) otherwise

        Raises:
            RepositoryError: If legacy data can't be read or the write fails
        """
        legacy_entries = self._legacy_store.load_entries(user_id)
        if not legacy_entries:
            return MigrationResult(migrated=False, count=0)

        existing = await self._repository.get_entries(user_id)
        if existing:
            logger.info(
                "ledger_migration_skipped",
                user_id=user_id,
                existing_entries=len(existing),
                legacy_entries=len(legacy_entries),
            )
            return MigrationResult(migrated=False, count=len(existing))

        await self._repository.replace_all_entries(user_id, legacy_entries)
        self._legacy_store.clear(user_id)

        logger.info(
            "ledger_migrated",
            user_id=user_id,
            count=len(legacy_entries),
            root_hash=compute_root_hash(legacy_entries),
        )
        return MigrationResult(migrated=True, count=len(legacy_entries))
