"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Google Sheets is the durable backend; the in-memory backend serves tests and
local runs. Both are swappable behind the interfaces.
"""

from drivelog.services.storage.interface import (
    AuditStorageInterface,
    LedgerRepositoryInterface,
    ProjectRepositoryInterface,
    RepositoryConnectionError,
    RepositoryError,
)
from drivelog.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerRepository,
    GoogleSheetsProjectRepository,
)
from drivelog.services.storage.legacy import (
    JsonFileLegacyLedgerStore,
    LegacyLedgerStore,
)
from drivelog.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryLedgerRepository,
    InMemoryProjectRepository,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "LedgerRepositoryInterface",
    "ProjectRepositoryInterface",
    "LegacyLedgerStore",
    # Exceptions
    "RepositoryConnectionError",
    "RepositoryError",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsLedgerRepository",
    "GoogleSheetsProjectRepository",
    # Local implementations
    "InMemoryAuditStorage",
    "InMemoryLedgerRepository",
    "InMemoryProjectRepository",
    "JsonFileLegacyLedgerStore",
]
