"""
Abstract Storage Interfaces

DESIGN DECISION: We define abstract interfaces for storage operations.
This allows us to:
1. Swap Google Sheets for a real database later
2. Use in-memory storage for testing
3. Keep the ledger core decoupled from the storage transport

Every interface is keyed by user. There are no process-wide singletons:
a repository instance is created once and injected where needed.
"""

from abc import ABC, abstractmethod
from typing import Optional

from drivelog.models.audit import AuditEvent
from drivelog.models.ledger import LedgerBatch, LedgerEntry
from drivelog.models.project import ExpenseDocument, Project


class LedgerRepositoryInterface(ABC):
    """
    Durable append/read storage for ledger entries.

    Entries are append-only. Apart from `replace_all_entries` (migration
    and reset flows only) nothing here modifies or removes an entry.
    Entries must be read back in the order they were appended.
    """

    @abstractmethod
    async def get_entries(self, user_id: str) -> list[LedgerEntry]:
        """
        Get all of a user's entries in append order.

        Raises:
            RepositoryError: If the read fails
        """
        pass

    @abstractmethod
    async def append_entry(self, user_id: str, entry: LedgerEntry) -> None:
        """
        Append one entry to the end of the user's chain.

        Raises:
            RepositoryError: If the write fails
        """
        pass

    @abstractmethod
    async def append_entries(self, user_id: str, entries: list[LedgerEntry]) -> None:
        """
        Append several entries in one operation, preserving their order.

        Implementations should make this all-or-nothing where the backend
        allows it.

        Raises:
            RepositoryError: If the write fails
        """
        pass

    @abstractmethod
    async def create_batch_record(self, user_id: str, batch: LedgerBatch) -> None:
        """
        Store the summary record of an import batch.

        Raises:
            RepositoryError: If the write fails
        """
        pass

    @abstractmethod
    async def get_entries_by_batch(self, batch_id: str, user_id: str) -> list[LedgerEntry]:
        """Get the entries of one batch, in append order."""
        pass

    @abstractmethod
    async def get_batches(self, user_id: str) -> list[LedgerBatch]:
        """Get all batch records of a user."""
        pass

    @abstractmethod
    async def replace_all_entries(self, user_id: str, entries: list[LedgerEntry]) -> None:
        """
        Overwrite a user's whole chain.

        CRITICAL: Migration and reset flows only - never normal operation.
        """
        pass


class ProjectRepositoryInterface(ABC):
    """
    Storage for projects, their callsheets and expense documents.

    These entities live outside the ledger.
    """

    @abstractmethod
    async def get_project(self, project_id: str, user_id: str) -> Optional[Project]:
        """Get a project, or None if it doesn't exist."""
        pass

    @abstractmethod
    async def list_projects(self, user_id: str) -> list[Project]:
        """List all projects of a user."""
        pass

    @abstractmethod
    async def save_project(self, project: Project) -> None:
        """Insert or replace a project."""
        pass

    @abstractmethod
    async def delete_project(self, project_id: str, user_id: str) -> bool:
        """
        Delete a project with its callsheets.

        Returns:
            True if a project was deleted
        """
        pass

    @abstractmethod
    async def delete_callsheet(
        self,
        callsheet_id: str,
        user_id: str,
        project_id: Optional[str] = None,
    ) -> bool:
        """
        Delete a callsheet.

        Args:
            callsheet_id: The callsheet to delete
            user_id: Owner of the callsheet
            project_id: Owning project if known; otherwise all of the
                        user's projects are searched

        Returns:
            True if a callsheet was deleted
        """
        pass

    @abstractmethod
    async def list_expense_documents(
        self,
        user_id: str,
        project_id: Optional[str] = None,
        trip_id: Optional[str] = None,
    ) -> list[ExpenseDocument]:
        """List expense documents, optionally filtered by project or trip."""
        pass

    @abstractmethod
    async def save_expense_document(self, document: ExpenseDocument) -> None:
        """Store an expense document record."""
        pass

    @abstractmethod
    async def delete_trip_expenses(self, trip_id: str, user_id: str) -> int:
        """
        Delete all expense documents of a trip.

        Returns:
            Number of documents deleted
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        """Get all events for a specific entity, in chronological order."""
        pass

    @abstractmethod
    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        """Get the most recent audit events (newest first)."""
        pass


class RepositoryError(Exception):
    """Base exception for storage operations."""
    pass


class RepositoryConnectionError(RepositoryError):
    """Could not connect to storage backend."""
    pass
