"""
Main Orchestrator for drivelog

This module ties together all the components and defines the end-to-end
flows for:
1. Recording trips (draft → validate → ledger → audit)
2. Callsheet import (text → AI extraction → validate → ledger batch)
3. Deleting trips (expenses → void → callsheet → empty project)
4. Integrity checks and reports

DESIGN DECISION: The orchestrator enforces the boundaries:
- Trips only change through the ledger service
- Projects and documents live in their own repository
- Every step is audited

Trip deletion is a LENIENT cascade, not a transaction. Only the ledger void
is mandatory: if it fails the deletion fails. Every other step is best
effort and a failure becomes a warning on the result.
"""

import datetime as dt
from enum import Enum
from typing import Optional, Union

import structlog
from pydantic import BaseModel, Field, ValidationError

from drivelog.agents import ExtractionFailedError, TripExtractionAgent
from drivelog.audit import AuditLogger
from drivelog.ledger import (
    LedgerMigrator,
    LedgerValidationError,
    TripLedgerService,
    TripNotFoundError,
)
from drivelog.models.ledger import (
    LedgerEntry,
    LedgerSource,
    LedgerVerification,
    MigrationResult,
    SourceDocumentRef,
)
from drivelog.models.project import CallsheetFile, Project
from drivelog.models.report import Report
from drivelog.models.trip import Trip, TripDraft, TripUpdate
from drivelog.reports import ReportError, ReportGenerator
from drivelog.services.storage import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerRepository,
    GoogleSheetsProjectRepository,
    InMemoryLedgerRepository,
    InMemoryProjectRepository,
    JsonFileLegacyLedgerStore,
    ProjectRepositoryInterface,
)
from drivelog.validation import TripValidator


logger = structlog.get_logger(__name__)

DEFAULT_UPDATE_REASON = "Trip updated"
DEFAULT_BATCH_UPDATE_REASON = "Batch update by user"
DEFAULT_DELETE_REASON = "Trip deleted by user"
PROJECT_DELETE_REASON = "Project deleted"
CSV_PROJECT_PRODUCER = "Imported via CSV"


# =============================================================================
# RESULTS
# =============================================================================

class InitializationResult(BaseModel):
    """Outcome of the startup migration."""

    migration: Optional[MigrationResult] = None
    error: Optional[str] = None


class TripDeletionResult(BaseModel):
    """What a trip deletion actually did."""

    trip_id: str
    void_entry: LedgerEntry
    expenses_deleted: int = 0
    callsheet_deleted: bool = False
    project_deleted: bool = False
    warnings: list[str] = Field(default_factory=list)


class CallsheetImportResult(BaseModel):
    """Trips recorded from one callsheet."""

    trips: list[Trip] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class IntegrityState(str, Enum):
    """Outcome of an integrity check."""
    VERIFIED = "verified"
    COMPROMISED = "compromised"
    UNAVAILABLE = "unavailable"  # Ledger could not be read; says nothing about integrity


class IntegrityReport(BaseModel):
    """Integrity check result shown to the user."""

    state: IntegrityState
    verification: Optional[LedgerVerification] = None
    error: Optional[str] = None


# =============================================================================
# TRIP MANAGER
# =============================================================================

class TripManager:
    """
    Orchestrates trips, projects and documents for one user.

    Usage:
        manager = create_app_components(user_id)
        await manager.initialize()
        trip = await manager.add_trip(draft)
        result = await manager.delete_trip(trip.id)
    """

    def __init__(
        self,
        ledger: TripLedgerService,
        projects: ProjectRepositoryInterface,
        validator: Optional[TripValidator] = None,
        extraction_agent: Optional[TripExtractionAgent] = None,
        audit_logger: Optional[AuditLogger] = None,
        migrator: Optional[LedgerMigrator] = None,
        report_generator: Optional[ReportGenerator] = None,
        home_address: str = "",
    ):
        self._ledger = ledger
        self._projects = projects
        self._validator = validator or TripValidator()
        self._extraction_agent = extraction_agent
        self._audit_logger = audit_logger or AuditLogger()  # Local-only logging
        self._migrator = migrator
        self._report_generator = report_generator or ReportGenerator(ledger)
        self._home_address = home_address
        self._initialization: Optional[InitializationResult] = None

    @property
    def user_id(self) -> str:
        return self._ledger.user_id

    async def initialize(self) -> InitializationResult:
        """
        Run the one-shot legacy migration.

        Safe to call repeatedly; only the first call does work. Failures
        are logged and reported, never raised: the app stays usable on the
        existing ledger.
        """
        if self._initialization is not None:
            return self._initialization

        if self._migrator is None:
            self._initialization = InitializationResult()
            return self._initialization

        try:
            migration = await self._migrator.migrate(self.user_id)
        except Exception as e:
            await self._audit_logger.log_error(
                error_type="ledger_migration_failed",
                error_message=str(e),
                user_id=self.user_id,
            )
            # Not cached: a later call may retry
            return InitializationResult(error=str(e))

        if migration.migrated:
            await self._audit_logger.log_ledger_migrated(self.user_id, migration.count)

        self._initialization = InitializationResult(migration=migration)
        return self._initialization

    # =========================================================================
    # TRIPS
    # =========================================================================

    async def list_trips(self) -> list[Trip]:
        """Current live trips."""
        return await self._ledger.get_trips()

    def _prepare(self, draft: Union[TripDraft, dict]) -> TripDraft:
        """Validate a draft; warnings are attached, errors raise."""
        result = self._validator.validate(draft)
        if not result.is_valid:
            raise LedgerValidationError(
                "; ".join(issue.message for issue in result.errors)
            )
        return result.draft

    async def add_trip(
        self,
        draft: Union[TripDraft, dict],
        source: LedgerSource = LedgerSource.MANUAL,
    ) -> Trip:
        """
        Validate and record a single trip.

        Raises:
            LedgerValidationError: If the trip has validation errors
        """
        entry = await self._ledger.create_trip(self._prepare(draft), source)
        await self._audit_logger.log_trip_created(entry)
        return entry.trip_snapshot

    async def update_trip(
        self,
        trip_id: str,
        updates: Union[TripUpdate, dict],
        justification: Optional[str] = None,
    ) -> Optional[Trip]:
        """
        Amend a trip.

        Returns:
            The amended trip, or None if nothing changed
        """
        reason = (justification or "").strip() or DEFAULT_UPDATE_REASON
        entry = await self._ledger.amend_trip(trip_id, updates, reason)
        if entry is None:
            return None

        await self._audit_logger.log_trip_amended(entry)
        return entry.trip_snapshot

    async def update_multiple_trips(
        self,
        trip_ids: list[str],
        updates: Union[TripUpdate, dict],
    ) -> list[Trip]:
        """
        Apply the same update to several trips, one AMEND each.

        Ids that aren't live (unknown or already voided) are skipped, as are
        trips the update doesn't change. Neither appears in the result.
        """
        live_ids = {trip.id for trip in await self._ledger.get_trips()}
        amended = []
        for trip_id in trip_ids:
            if trip_id not in live_ids:
                logger.warning("batch_update_skipped", user_id=self.user_id, trip_id=trip_id)
                continue
            trip = await self.update_trip(trip_id, updates, DEFAULT_BATCH_UPDATE_REASON)
            if trip is not None:
                amended.append(trip)
        return amended

    async def _import(
        self,
        drafts: list[Union[TripDraft, dict]],
        source: LedgerSource,
        source_documents: Optional[list[SourceDocumentRef]] = None,
    ) -> list[Trip]:
        # Validate everything first: one bad trip rejects the whole batch
        prepared = [self._prepare(draft) for draft in drafts]
        return await self._record_batch(prepared, source, source_documents)

    async def _record_batch(
        self,
        prepared: list[TripDraft],
        source: LedgerSource,
        source_documents: Optional[list[SourceDocumentRef]] = None,
    ) -> list[Trip]:
        result = await self._ledger.import_trips_batch(prepared, source, source_documents)

        await self._audit_logger.log_trips_imported(
            user_id=self.user_id,
            batch_id=result.batch.batch_id,
            source=source.value,
            count=result.batch.entry_count,
        )
        return [entry.trip_snapshot for entry in result.entries]

    async def _resolve_csv_projects(self, drafts: list[TripDraft]) -> list[TripDraft]:
        """
        Point CSV trips at real projects.

        A project value that isn't one of the user's project ids is read as a
        project name. One project is created per distinct name, before any
        trip is recorded, and the drafts are rewritten to its id.
        """
        known_ids = {project.id for project in await self._projects.list_projects(self.user_id)}
        new_projects: dict[str, Project] = {}
        resolved = []

        for draft in drafts:
            name = draft.project_id
            if not name or name in known_ids:
                resolved.append(draft)
                continue
            if name not in new_projects:
                try:
                    new_projects[name] = Project(
                        user_id=self.user_id,
                        name=name,
                        producer=CSV_PROJECT_PRODUCER,
                    )
                except ValidationError as e:
                    raise LedgerValidationError(f"Invalid project name '{name}': {e}")
            resolved.append(draft.model_copy(update={"project_id": new_projects[name].id}))

        for project in new_projects.values():
            await self._projects.save_project(project)
            logger.info(
                "csv_project_created",
                user_id=self.user_id,
                project_id=project.id,
                name=project.name,
            )
        return resolved

    async def add_multiple_trips(self, drafts: list[Union[TripDraft, dict]]) -> list[Trip]:
        """Record trips entered in bulk as one batch."""
        return await self._import(drafts, LedgerSource.BULK_UPLOAD)

    async def add_csv_trips(self, drafts: list[Union[TripDraft, dict]]) -> list[Trip]:
        """
        Record trips parsed from a CSV file as one batch.

        Projects named in the file that don't exist yet are created first.
        """
        prepared = [self._prepare(draft) for draft in drafts]
        prepared = await self._resolve_csv_projects(prepared)
        return await self._record_batch(prepared, LedgerSource.CSV_IMPORT)

    async def add_ai_trips(
        self,
        drafts: list[Union[TripDraft, dict]],
        source_documents: Optional[list[SourceDocumentRef]] = None,
    ) -> list[Trip]:
        """Record trips proposed by the extraction agent as one batch."""
        return await self._import(drafts, LedgerSource.AI_AGENT, source_documents)

    async def import_from_callsheet(
        self,
        callsheet_text: str,
        project_id: str,
        callsheet: CallsheetFile,
        home_address: Optional[str] = None,
    ) -> CallsheetImportResult:
        """
        Extract trips from a callsheet and record them.

        Raises:
            ExtractionFailedError: If no agent is configured or the model call fails
            LedgerValidationError: If no home address is known or a trip is invalid
        """
        if self._extraction_agent is None:
            raise ExtractionFailedError("No extraction agent configured")

        home = (home_address or self._home_address).strip()
        if not home:
            raise LedgerValidationError("A home address is required to import a callsheet")

        extraction = await self._extraction_agent.extract(callsheet_text, home, project_id)
        await self._audit_logger.log_extraction_completed(
            user_id=self.user_id,
            trip_count=len(extraction.trips),
            warnings=extraction.warnings,
        )

        if not extraction.trips:
            return CallsheetImportResult(warnings=extraction.warnings)

        document = SourceDocumentRef(id=callsheet.id, name=callsheet.name, type=callsheet.type)
        trips = await self.add_ai_trips(extraction.trips, [document])
        return CallsheetImportResult(trips=trips, warnings=extraction.warnings)

    # =========================================================================
    # DELETION
    # =========================================================================

    async def _cascade_failed(
        self,
        trip_id: str,
        warnings: list[str],
        step: str,
        error: Exception,
    ) -> None:
        warnings.append(f"Could not {step}: {error}")
        await self._audit_logger.log_cascade_step_failed(
            user_id=self.user_id,
            trip_id=trip_id,
            step=step,
            error_message=str(error),
        )

    async def _is_project_empty(self, project_id: str) -> bool:
        project = await self._projects.get_project(project_id, self.user_id)
        if project is None or project.callsheets:
            return False
        if any(trip.project_id == project_id for trip in await self._ledger.get_trips()):
            return False
        documents = await self._projects.list_expense_documents(self.user_id, project_id=project_id)
        return not documents

    async def delete_trip(
        self,
        trip_id: str,
        reason: Optional[str] = None,
    ) -> TripDeletionResult:
        """
        Delete a trip and clean up after it.

        In order:
        1. Delete the trip's expense documents (best effort)
        2. Void the trip in the ledger (mandatory)
        3. Delete the callsheet the trip was extracted from (best effort)
        4. Delete the project if it is now empty (best effort)

        Raises:
            TripNotFoundError: If the trip is not live
            RepositoryError: If the ledger void fails; the trip is NOT deleted
        """
        trip = next((t for t in await self._ledger.get_trips() if t.id == trip_id), None)
        if trip is None:
            raise TripNotFoundError(trip_id)

        warnings: list[str] = []
        expenses_deleted = 0
        try:
            expenses_deleted = await self._projects.delete_trip_expenses(trip_id, self.user_id)
        except Exception as e:
            await self._cascade_failed(trip_id, warnings, "delete expense documents", e)

        void_entry = await self._ledger.void_trip(
            trip_id,
            (reason or "").strip() or DEFAULT_DELETE_REASON,
        )
        await self._audit_logger.log_trip_voided(void_entry)

        result = TripDeletionResult(
            trip_id=trip_id,
            void_entry=void_entry,
            expenses_deleted=expenses_deleted,
            warnings=warnings,
        )

        if trip.source_document_id:
            try:
                result.callsheet_deleted = await self._projects.delete_callsheet(
                    trip.source_document_id,
                    self.user_id,
                    trip.project_id or None,
                )
                if result.callsheet_deleted:
                    await self._audit_logger.log_callsheet_deleted(
                        user_id=self.user_id,
                        project_id=trip.project_id,
                        callsheet_id=trip.source_document_id,
                    )
            except Exception as e:
                await self._cascade_failed(trip_id, result.warnings, "delete source callsheet", e)

        if trip.project_id:
            try:
                if await self._is_project_empty(trip.project_id):
                    result.project_deleted = await self._projects.delete_project(
                        trip.project_id, self.user_id
                    )
                    if result.project_deleted:
                        await self._audit_logger.log_project_deleted(
                            self.user_id, trip.project_id, "last trip deleted"
                        )
            except Exception as e:
                await self._cascade_failed(trip_id, result.warnings, "delete empty project", e)

        return result

    async def delete_trips(self, trip_ids: list[str]) -> list[TripDeletionResult]:
        """Delete several trips, one cascade each, in the given order."""
        return [await self.delete_trip(trip_id) for trip_id in trip_ids]

    async def delete_project(self, project_id: str) -> int:
        """
        Void every live trip of a project, then remove the project.

        Returns:
            Number of trips voided
        """
        voided = 0
        for trip in await self._ledger.get_trips():
            if trip.project_id != project_id:
                continue
            entry = await self._ledger.void_trip(trip.id, PROJECT_DELETE_REASON)
            await self._audit_logger.log_trip_voided(entry)
            voided += 1

        if await self._projects.delete_project(project_id, self.user_id):
            await self._audit_logger.log_project_deleted(
                self.user_id, project_id, f"{voided} trips voided"
            )
        return voided

    # =========================================================================
    # INTEGRITY & REPORTS
    # =========================================================================

    async def check_integrity(self) -> IntegrityReport:
        """
        Verify the ledger.

        A ledger that can't be loaded is reported as UNAVAILABLE, never as
        compromised.
        """
        try:
            verification = await self._ledger.verify_ledger()
        except Exception as e:
            await self._audit_logger.log_error(
                error_type="ledger_unavailable",
                error_message=str(e),
                user_id=self.user_id,
            )
            return IntegrityReport(state=IntegrityState.UNAVAILABLE, error=str(e))

        await self._audit_logger.log_ledger_verified(self.user_id, verification)
        return IntegrityReport(
            state=IntegrityState.VERIFIED if verification.is_valid else IntegrityState.COMPROMISED,
            verification=verification,
        )

    async def generate_report(
        self,
        project_id: str,
        start_date: dt.date,
        end_date: dt.date,
    ) -> Report:
        """
        Generate a signed report for a project.

        Raises:
            ReportError: If the project doesn't exist or has no trips in range
        """
        project = await self._projects.get_project(project_id, self.user_id)
        if project is None:
            raise ReportError(f"Project {project_id} not found")

        report = await self._report_generator.generate(project, start_date, end_date)
        await self._audit_logger.log_report_generated(
            user_id=self.user_id,
            report_id=report.id,
            project_id=project_id,
            signature=report.signature,
        )
        return report


def create_app_components(
    user_id: str,
    use_storage: bool = True,
    use_agent: bool = False,
    home_address: str = "",
) -> TripManager:
    """
    Factory function to create all application components.

    Args:
        user_id: The signed-in user
        use_storage: Whether to initialize Google Sheets storage.
                    Set to False for local runs; data is then kept in memory.
        use_agent: Whether to create the Gemini extraction agent
        home_address: Default origin for callsheet imports

    Returns:
        A TripManager wired to the chosen backends
    """
    ledger_repository = None
    project_repository = None
    audit_logger = None

    if use_storage:
        try:
            sheets_client = GoogleSheetsClient()
            ledger_repository = GoogleSheetsLedgerRepository(sheets_client)
            project_repository = GoogleSheetsProjectRepository(sheets_client)
            audit_logger = AuditLogger(GoogleSheetsAuditStorage(sheets_client))
        except Exception as e:
            # Storage not configured - continue without it
            logger.warning("storage_not_configured", error=str(e))
            ledger_repository = None
            project_repository = None
            audit_logger = None

    ledger_repository = ledger_repository or InMemoryLedgerRepository()
    project_repository = project_repository or InMemoryProjectRepository()
    audit_logger = audit_logger or AuditLogger()  # Local-only logging

    ledger = TripLedgerService(user_id, ledger_repository)

    return TripManager(
        ledger=ledger,
        projects=project_repository,
        extraction_agent=TripExtractionAgent() if use_agent else None,
        audit_logger=audit_logger,
        migrator=LedgerMigrator(ledger_repository, JsonFileLegacyLedgerStore()),
        home_address=home_address,
    )
