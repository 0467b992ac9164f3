"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is used as the storage backend because:
1. Users can look at their own ledger directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)
4. Easy to export/migrate later

TRADEOFFS:
- Not suitable for high-volume data (fine for a personal driving log)
- No transactions: a multi-entry append is one `append_rows` call, which is
  as close to atomic as the API gets
- No compare-and-swap: two devices appending at once produce a chain break
  that `verify_ledger` reports
- Ledger appends are not retried: an append that timed out may still have
  landed, and a retry would write the row twice. Only `connect` and audit
  appends retry (tenacity); a failed ledger append surfaces as
  `RepositoryError`
- Limited query capabilities (we filter in Python)

Ledger rows are only ever appended. The single exception is
`replace_all_entries`, used by migration.
"""

import json
from datetime import datetime
from typing import Optional

import gspread
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from drivelog.config import get_settings
from drivelog.models.audit import AuditEvent, AuditEventType, AuditSeverity
from drivelog.models.ledger import (
    LedgerBatch,
    LedgerEntry,
    LedgerOperation,
    LedgerSource,
    SourceDocumentRef,
)
from drivelog.models.project import (
    CallsheetFile,
    ExpenseDocument,
    ExpenseDocumentKind,
    Project,
)
from drivelog.models.trip import Trip
from drivelog.services.storage.interface import (
    AuditStorageInterface,
    LedgerRepositoryInterface,
    ProjectRepositoryInterface,
    RepositoryConnectionError,
    RepositoryError,
)


# Column mappings for the ledger sheet
LEDGER_COLUMNS = [
    "id",
    "user_id",
    "hash",
    "previous_hash",
    "timestamp",
    "operation",
    "source",
    "batch_id",
    "trip_id",
    "trip_snapshot_json",
    "correction_reason",
    "changed_fields_json",
    "void_reason",
    "previous_snapshot_json",
    "source_document_id",
    "source_document_name",
]

BATCH_COLUMNS = [
    "batch_id",
    "user_id",
    "timestamp",
    "source",
    "entry_count",
    "first_entry_hash",
    "last_entry_hash",
    "source_documents_json",
]

PROJECT_COLUMNS = [
    "id",
    "user_id",
    "name",
    "producer",
    "rate_per_km",
    "callsheets_json",
]

DOCUMENT_COLUMNS = [
    "id",
    "user_id",
    "project_id",
    "trip_id",
    "kind",
    "filename",
    "url",
    "created_at",
]

AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "user_id",
    "entity_type",
    "entity_id",
    "description",
    "details_json",
    "error_message",
]


def _cell(row: list, index: int, default: str = "") -> str:
    """Read a cell, tolerating short rows."""
    try:
        return row[index] if row[index] else default
    except IndexError:
        return default


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise RepositoryConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise RepositoryConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(self._settings.spreadsheet_id)
            except gspread.SpreadsheetNotFound:
                raise RepositoryConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def _get_or_create(self, title: str, columns: list[str], rows: int) -> gspread.Worksheet:
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            # Create the sheet with headers
            sheet = spreadsheet.add_worksheet(title=title, rows=rows, cols=len(columns))
            sheet.append_row(columns)
        return sheet

    def get_ledger_sheet(self) -> gspread.Worksheet:
        """Get or create the ledger worksheet."""
        return self._get_or_create(self._settings.ledger_sheet_name, LEDGER_COLUMNS, 5000)

    def get_batches_sheet(self) -> gspread.Worksheet:
        """Get or create the batch records worksheet."""
        return self._get_or_create(self._settings.batches_sheet_name, BATCH_COLUMNS, 1000)

    def get_projects_sheet(self) -> gspread.Worksheet:
        """Get or create the projects worksheet."""
        return self._get_or_create(self._settings.projects_sheet_name, PROJECT_COLUMNS, 1000)

    def get_documents_sheet(self) -> gspread.Worksheet:
        """Get or create the expense documents worksheet."""
        return self._get_or_create(self._settings.documents_sheet_name, DOCUMENT_COLUMNS, 2000)

    def get_audit_sheet(self) -> gspread.Worksheet:
        """Get or create the audit worksheet."""
        return self._get_or_create(self._settings.audit_sheet_name, AUDIT_COLUMNS, 5000)


# =============================================================================
# LEDGER
# =============================================================================

class GoogleSheetsLedgerRepository(LedgerRepositoryInterface):
    """
    Google Sheets implementation of the ledger repository.

    One row per entry; snapshots are JSON in their camelCase wire shape.
    Sheet row order is append order.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _entry_to_row(self, user_id: str, entry: LedgerEntry) -> list:
        """Convert a LedgerEntry to a spreadsheet row."""
        return [
            entry.id,
            user_id,
            entry.hash,
            entry.previous_hash,
            entry.timestamp.isoformat(),
            entry.operation.value,
            entry.source.value,
            entry.batch_id or "",
            entry.trip_id,
            json.dumps(entry.trip_snapshot.to_wire()),
            entry.correction_reason or "",
            json.dumps(entry.changed_fields),
            entry.void_reason or "",
            json.dumps(entry.previous_snapshot.to_wire()) if entry.previous_snapshot else "",
            entry.source_document_id or "",
            entry.source_document_name or "",
        ]

    def _row_to_entry(self, row: list) -> LedgerEntry:
        """Convert a spreadsheet row to a LedgerEntry."""
        previous_snapshot = _cell(row, 13)
        changed_fields = _cell(row, 11)
        return LedgerEntry(
            id=_cell(row, 0),
            user_id=_cell(row, 1),
            hash=_cell(row, 2),
            previous_hash=_cell(row, 3),
            timestamp=datetime.fromisoformat(_cell(row, 4)),
            operation=LedgerOperation(_cell(row, 5)),
            source=LedgerSource(_cell(row, 6)),
            batch_id=_cell(row, 7) or None,
            trip_id=_cell(row, 8),
            trip_snapshot=Trip.model_validate(json.loads(_cell(row, 9))),
            correction_reason=_cell(row, 10) or None,
            changed_fields=json.loads(changed_fields) if changed_fields else [],
            void_reason=_cell(row, 12) or None,
            previous_snapshot=(
                Trip.model_validate(json.loads(previous_snapshot))
                if previous_snapshot
                else None
            ),
            source_document_id=_cell(row, 14) or None,
            source_document_name=_cell(row, 15) or None,
        )

    def _user_rows(self, user_id: str) -> list[list]:
        sheet = self._client.get_ledger_sheet()
        all_rows = sheet.get_all_values()[1:]  # Skip header
        return [row for row in all_rows if row and len(row) > 1 and row[1] == user_id]

    async def get_entries(self, user_id: str) -> list[LedgerEntry]:
        """
        Get a user's entries in sheet (append) order.

        Malformed rows are NOT skipped: a dropped ledger row would hide the
        very tampering verification looks for.
        """
        try:
            return [self._row_to_entry(row) for row in self._user_rows(user_id)]
        except Exception as e:
            raise RepositoryError(f"Failed to read ledger entries: {e}")

    async def append_entry(self, user_id: str, entry: LedgerEntry) -> None:
        """Append one ledger entry. Attempted once, never retried."""
        try:
            sheet = self._client.get_ledger_sheet()
            sheet.append_row(self._entry_to_row(user_id, entry), value_input_option="RAW")
        except Exception as e:
            raise RepositoryError(f"Failed to append ledger entry: {e}")

    async def append_entries(self, user_id: str, entries: list[LedgerEntry]) -> None:
        """Append several ledger entries with a single API call, never retried."""
        if not entries:
            return
        try:
            sheet = self._client.get_ledger_sheet()
            rows = [self._entry_to_row(user_id, entry) for entry in entries]
            sheet.append_rows(rows, value_input_option="RAW")
        except Exception as e:
            raise RepositoryError(f"Failed to append ledger entries: {e}")

    async def create_batch_record(self, user_id: str, batch: LedgerBatch) -> None:
        """Store a batch summary row."""
        try:
            sheet = self._client.get_batches_sheet()
            sheet.append_row(
                [
                    batch.batch_id,
                    user_id,
                    batch.timestamp.isoformat(),
                    batch.source.value,
                    str(batch.entry_count),
                    batch.first_entry_hash,
                    batch.last_entry_hash,
                    json.dumps([doc.to_wire() for doc in batch.source_documents]),
                ],
                value_input_option="RAW",
            )
        except Exception as e:
            raise RepositoryError(f"Failed to save batch record: {e}")

    async def get_entries_by_batch(self, batch_id: str, user_id: str) -> list[LedgerEntry]:
        """Get the entries of one batch."""
        entries = await self.get_entries(user_id)
        return [entry for entry in entries if entry.batch_id == batch_id]

    async def get_batches(self, user_id: str) -> list[LedgerBatch]:
        """Get all batch records of a user."""
        try:
            sheet = self._client.get_batches_sheet()
            batches = []
            for row in sheet.get_all_values()[1:]:
                if not row or _cell(row, 1) != user_id:
                    continue
                documents = _cell(row, 7)
                batches.append(LedgerBatch(
                    batch_id=_cell(row, 0),
                    user_id=_cell(row, 1),
                    timestamp=datetime.fromisoformat(_cell(row, 2)),
                    source=LedgerSource(_cell(row, 3)),
                    entry_count=int(_cell(row, 4, "0")),
                    first_entry_hash=_cell(row, 5),
                    last_entry_hash=_cell(row, 6),
                    source_documents=[
                        SourceDocumentRef.model_validate(doc)
                        for doc in (json.loads(documents) if documents else [])
                    ],
                ))
            return batches
        except Exception as e:
            raise RepositoryError(f"Failed to read batch records: {e}")

    async def replace_all_entries(self, user_id: str, entries: list[LedgerEntry]) -> None:
        """
        Overwrite one user's chain, keeping everyone else's rows.

        Migration only. The sheet is rewritten in two calls (clear, then
        append), so a failure in between leaves it empty - the caller must
        not discard its source data until this returns.
        """
        try:
            sheet = self._client.get_ledger_sheet()
            all_rows = sheet.get_all_values()
            header, rows = (all_rows[0], all_rows[1:]) if all_rows else (LEDGER_COLUMNS, [])
            kept = [row for row in rows if row and _cell(row, 1) != user_id]
            new_rows = [self._entry_to_row(user_id, entry) for entry in entries]

            sheet.clear()
            sheet.append_rows([header] + kept + new_rows, value_input_option="RAW")
        except Exception as e:
            raise RepositoryError(f"Failed to replace ledger entries: {e}")


# =============================================================================
# PROJECTS & DOCUMENTS
# =============================================================================

class GoogleSheetsProjectRepository(ProjectRepositoryInterface):
    """
    Google Sheets implementation of project and document storage.

    Callsheets are stored as JSON inside their project's row.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _project_to_row(self, project: Project) -> list:
        return [
            project.id,
            project.user_id,
            project.name,
            project.producer,
            "" if project.rate_per_km is None else str(project.rate_per_km),
            json.dumps([c.to_wire() for c in project.callsheets]),
        ]

    def _row_to_project(self, row: list) -> Project:
        rate = _cell(row, 4)
        callsheets = _cell(row, 5)
        return Project(
            id=_cell(row, 0),
            user_id=_cell(row, 1),
            name=_cell(row, 2),
            producer=_cell(row, 3),
            rate_per_km=float(rate) if rate else None,
            callsheets=[
                CallsheetFile.model_validate(c)
                for c in (json.loads(callsheets) if callsheets else [])
            ],
        )

    def _document_to_row(self, document: ExpenseDocument) -> list:
        return [
            document.id,
            document.user_id,
            document.project_id,
            document.trip_id or "",
            document.kind.value,
            document.filename,
            document.url or "",
            document.created_at.isoformat(),
        ]

    def _row_to_document(self, row: list) -> ExpenseDocument:
        return ExpenseDocument(
            id=_cell(row, 0),
            user_id=_cell(row, 1),
            project_id=_cell(row, 2),
            trip_id=_cell(row, 3) or None,
            kind=ExpenseDocumentKind(_cell(row, 4, "other")),
            filename=_cell(row, 5),
            url=_cell(row, 6) or None,
            created_at=datetime.fromisoformat(_cell(row, 7)),
        )

    async def get_project(self, project_id: str, user_id: str) -> Optional[Project]:
        """Retrieve a project by its ID."""
        projects = await self.list_projects(user_id)
        for project in projects:
            if project.id == project_id:
                return project
        return None

    async def list_projects(self, user_id: str) -> list[Project]:
        """List a user's projects."""
        try:
            sheet = self._client.get_projects_sheet()
            return [
                self._row_to_project(row)
                for row in sheet.get_all_values()[1:]
                if row and _cell(row, 1) == user_id
            ]
        except Exception as e:
            raise RepositoryError(f"Failed to list projects: {e}")

    async def save_project(self, project: Project) -> None:
        """Insert or replace a project row."""
        try:
            sheet = self._client.get_projects_sheet()
            all_rows = sheet.get_all_values()
            new_row = self._project_to_row(project)

            for idx, row in enumerate(all_rows[1:], start=2):  # Row 1 is header
                if row and row[0] == project.id:
                    sheet.update(range_name=f"A{idx}", values=[new_row])
                    return

            sheet.append_row(new_row, value_input_option="RAW")
        except Exception as e:
            raise RepositoryError(f"Failed to save project: {e}")

    async def delete_project(self, project_id: str, user_id: str) -> bool:
        """Delete a project row."""
        try:
            sheet = self._client.get_projects_sheet()
            all_rows = sheet.get_all_values()

            for idx, row in enumerate(all_rows[1:], start=2):
                if row and row[0] == project_id and _cell(row, 1) == user_id:
                    sheet.delete_rows(idx)
                    return True

            return False
        except Exception as e:
            raise RepositoryError(f"Failed to delete project: {e}")

    async def delete_callsheet(
        self,
        callsheet_id: str,
        user_id: str,
        project_id: Optional[str] = None,
    ) -> bool:
        """Remove a callsheet from its project."""
        for project in await self.list_projects(user_id):
            if project_id and project.id != project_id:
                continue
            remaining = [c for c in project.callsheets if c.id != callsheet_id]
            if len(remaining) != len(project.callsheets):
                project.callsheets = remaining
                await self.save_project(project)
                return True
        return False

    async def list_expense_documents(
        self,
        user_id: str,
        project_id: Optional[str] = None,
        trip_id: Optional[str] = None,
    ) -> list[ExpenseDocument]:
        """List expense documents with optional filters."""
        try:
            sheet = self._client.get_documents_sheet()
            documents = []
            for row in sheet.get_all_values()[1:]:
                if not row or _cell(row, 1) != user_id:
                    continue
                if project_id is not None and _cell(row, 2) != project_id:
                    continue
                if trip_id is not None and _cell(row, 3) != trip_id:
                    continue
                documents.append(self._row_to_document(row))
            return documents
        except Exception as e:
            raise RepositoryError(f"Failed to list expense documents: {e}")

    async def save_expense_document(self, document: ExpenseDocument) -> None:
        """Append an expense document row."""
        try:
            sheet = self._client.get_documents_sheet()
            sheet.append_row(self._document_to_row(document), value_input_option="RAW")
        except Exception as e:
            raise RepositoryError(f"Failed to save expense document: {e}")

    async def delete_trip_expenses(self, trip_id: str, user_id: str) -> int:
        """Delete every expense document row of a trip."""
        try:
            sheet = self._client.get_documents_sheet()
            all_rows = sheet.get_all_values()
            doomed = [
                idx
                for idx, row in enumerate(all_rows[1:], start=2)
                if row and _cell(row, 1) == user_id and _cell(row, 3) == trip_id
            ]
            # Bottom-up so earlier indices stay valid
            for idx in reversed(doomed):
                sheet.delete_rows(idx)
            return len(doomed)
        except Exception as e:
            raise RepositoryError(f"Failed to delete trip expenses: {e}")


# =============================================================================
# AUDIT
# =============================================================================

class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        details = _cell(row, 8)
        return AuditEvent(
            event_id=_cell(row, 0),
            timestamp=datetime.fromisoformat(_cell(row, 1)),
            event_type=AuditEventType(_cell(row, 2)),
            severity=AuditSeverity(_cell(row, 3)),
            user_id=_cell(row, 4) or None,
            entity_type=_cell(row, 5) or None,
            entity_id=_cell(row, 6) or None,
            description=_cell(row, 7),
            details=json.loads(details) if details else {},
            error_message=_cell(row, 9) or None,
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            sheet = self._client.get_audit_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            raise RepositoryError(f"Failed to write audit event: {e}")

    async def _all_events(self) -> list[AuditEvent]:
        try:
            sheet = self._client.get_audit_sheet()
            events = []
            for row in sheet.get_all_values()[1:]:
                if row and row[0]:
                    try:
                        events.append(self._row_to_event(row))
                    except Exception:
                        continue  # Skip malformed rows
            return events
        except Exception as e:
            raise RepositoryError(f"Failed to get audit events: {e}")

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        """Get events by entity."""
        events = [
            e for e in await self._all_events()
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        """Get recent events, newest first."""
        events = await self._all_events()
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
