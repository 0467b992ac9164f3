"""Services package."""

from drivelog.services.storage import (
    AuditStorageInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerRepository,
    GoogleSheetsProjectRepository,
    InMemoryAuditStorage,
    InMemoryLedgerRepository,
    InMemoryProjectRepository,
    JsonFileLegacyLedgerStore,
    LedgerRepositoryInterface,
    LegacyLedgerStore,
    ProjectRepositoryInterface,
    RepositoryConnectionError,
    RepositoryError,
)

__all__ = [
    # Storage services
    "AuditStorageInterface",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsLedgerRepository",
    "GoogleSheetsProjectRepository",
    "InMemoryAuditStorage",
    "InMemoryLedgerRepository",
    "InMemoryProjectRepository",
    "JsonFileLegacyLedgerStore",
    "LedgerRepositoryInterface",
    "LegacyLedgerStore",
    "ProjectRepositoryInterface",
    "RepositoryConnectionError",
    "RepositoryError",
]
