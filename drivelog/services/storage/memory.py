"""
In-Memory Storage Implementation

Used for tests and local runs without a configured backend.

Stored models are copied on the way in and on the way out, so callers can
never reach into the store and mutate what has been "persisted".
"""

from collections import defaultdict
from typing import Optional

from drivelog.models.audit import AuditEvent
from drivelog.models.ledger import LedgerBatch, LedgerEntry
from drivelog.models.project import ExpenseDocument, Project
from drivelog.services.storage.interface import (
    AuditStorageInterface,
    LedgerRepositoryInterface,
    ProjectRepositoryInterface,
)


class InMemoryLedgerRepository(LedgerRepositoryInterface):
    """Ledger entries and batch records held in process memory, per user."""

    def __init__(self):
        self._entries: dict[str, list[LedgerEntry]] = defaultdict(list)
        self._batches: dict[str, list[LedgerBatch]] = defaultdict(list)

    async def get_entries(self, user_id: str) -> list[LedgerEntry]:
        return [entry.model_copy(deep=True) for entry in self._entries[user_id]]

    async def append_entry(self, user_id: str, entry: LedgerEntry) -> None:
        self._entries[user_id].append(entry.model_copy(deep=True))

    async def append_entries(self, user_id: str, entries: list[LedgerEntry]) -> None:
        # Single list extend: either all entries land or none do
        self._entries[user_id].extend(entry.model_copy(deep=True) for entry in entries)

    async def create_batch_record(self, user_id: str, batch: LedgerBatch) -> None:
        self._batches[user_id].append(batch.model_copy(deep=True))

    async def get_entries_by_batch(self, batch_id: str, user_id: str) -> list[LedgerEntry]:
        return [
            entry.model_copy(deep=True)
            for entry in self._entries[user_id]
            if entry.batch_id == batch_id
        ]

    async def get_batches(self, user_id: str) -> list[LedgerBatch]:
        return [batch.model_copy(deep=True) for batch in self._batches[user_id]]

    async def replace_all_entries(self, user_id: str, entries: list[LedgerEntry]) -> None:
        self._entries[user_id] = [entry.model_copy(deep=True) for entry in entries]


class InMemoryProjectRepository(ProjectRepositoryInterface):
    """Projects and expense documents held in process memory."""

    def __init__(self):
        self._projects: dict[str, Project] = {}
        self._documents: dict[str, ExpenseDocument] = {}

    async def get_project(self, project_id: str, user_id: str) -> Optional[Project]:
        project = self._projects.get(project_id)
        if project is None or project.user_id != user_id:
            return None
        return project.model_copy(deep=True)

    async def list_projects(self, user_id: str) -> list[Project]:
        return [
            project.model_copy(deep=True)
            for project in self._projects.values()
            if project.user_id == user_id
        ]

    async def save_project(self, project: Project) -> None:
        self._projects[project.id] = project.model_copy(deep=True)

    async def delete_project(self, project_id: str, user_id: str) -> bool:
        project = self._projects.get(project_id)
        if project is None or project.user_id != user_id:
            return False
        del self._projects[project_id]
        return True

    async def delete_callsheet(
        self,
        callsheet_id: str,
        user_id: str,
        project_id: Optional[str] = None,
    ) -> bool:
        for project in self._projects.values():
            if project.user_id != user_id:
                continue
            if project_id and project.id != project_id:
                continue
            remaining = [c for c in project.callsheets if c.id != callsheet_id]
            if len(remaining) != len(project.callsheets):
                project.callsheets = remaining
                return True
        return False

    async def list_expense_documents(
        self,
        user_id: str,
        project_id: Optional[str] = None,
        trip_id: Optional[str] = None,
    ) -> list[ExpenseDocument]:
        documents = []
        for document in self._documents.values():
            if document.user_id != user_id:
                continue
            if project_id is not None and document.project_id != project_id:
                continue
            if trip_id is not None and document.trip_id != trip_id:
                continue
            documents.append(document.model_copy(deep=True))
        return documents

    async def save_expense_document(self, document: ExpenseDocument) -> None:
        self._documents[document.id] = document.model_copy(deep=True)

    async def delete_trip_expenses(self, trip_id: str, user_id: str) -> int:
        doomed = [
            doc_id
            for doc_id, document in self._documents.items()
            if document.user_id == user_id and document.trip_id == trip_id
        ]
        for doc_id in doomed:
            del self._documents[doc_id]
        return len(doomed)


class InMemoryAuditStorage(AuditStorageInterface):
    """Audit events held in process memory."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        return sorted(self._events, key=lambda e: e.timestamp, reverse=True)[:limit]
