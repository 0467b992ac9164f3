"""
Audit Logger

DESIGN DECISION: Every significant action in the system is logged.
This provides:
1. Complete traceability next to the ledger itself
2. Debugging capability
3. User can see history of their interactions
4. A visible record when integrity checks fail

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)

The audit log is NOT the ledger. Losing an audit event loses a log line;
the ledger remains the source of truth for trips.
"""

from typing import Optional

import structlog

from drivelog.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from drivelog.models.ledger import LedgerEntry, LedgerVerification
from drivelog.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence and user visibility)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger(__name__)

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        # Always log locally
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        # Persist to storage if available
        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_trip_created(self, entry: LedgerEntry) -> None:
        """Log a CREATE entry."""
        await self.log(AuditEventBuilder.trip_created(
            user_id=entry.user_id,
            trip_id=entry.trip_id,
            source=entry.source.value,
            entry_hash=entry.hash,
        ))

    async def log_trip_amended(self, entry: LedgerEntry) -> None:
        """Log an AMEND entry."""
        await self.log(AuditEventBuilder.trip_amended(
            user_id=entry.user_id,
            trip_id=entry.trip_id,
            changed_fields=list(entry.changed_fields),
            reason=entry.correction_reason or "",
        ))

    async def log_trip_voided(self, entry: LedgerEntry) -> None:
        """Log a VOID entry."""
        await self.log(AuditEventBuilder.trip_voided(
            user_id=entry.user_id,
            trip_id=entry.trip_id,
            reason=entry.void_reason or "",
        ))

    async def log_trips_imported(
        self,
        user_id: str,
        batch_id: str,
        source: str,
        count: int,
    ) -> None:
        """Log an import batch."""
        await self.log(AuditEventBuilder.trips_imported(
            user_id=user_id,
            batch_id=batch_id,
            source=source,
            count=count,
        ))

    async def log_cascade_step_failed(
        self,
        user_id: str,
        trip_id: str,
        step: str,
        error_message: str,
    ) -> None:
        """Log a cleanup step that failed during trip deletion."""
        await self.log(AuditEventBuilder.cascade_step_failed(
            user_id=user_id,
            trip_id=trip_id,
            step=step,
            error_message=error_message,
        ))

    async def log_callsheet_deleted(
        self,
        user_id: str,
        project_id: str,
        callsheet_id: str,
    ) -> None:
        """Log callsheet removal."""
        await self.log(AuditEventBuilder.callsheet_deleted(
            user_id=user_id,
            project_id=project_id,
            callsheet_id=callsheet_id,
        ))

    async def log_project_deleted(self, user_id: str, project_id: str, reason: str) -> None:
        """Log project removal."""
        await self.log(AuditEventBuilder.project_deleted(
            user_id=user_id,
            project_id=project_id,
            reason=reason,
        ))

    async def log_ledger_verified(self, user_id: str, result: LedgerVerification) -> None:
        """Log the outcome of a chain verification."""
        await self.log(AuditEventBuilder.ledger_verified(
            user_id=user_id,
            is_valid=result.is_valid,
            total_entries=result.total_entries,
            root_hash=result.root_hash,
            broken_chain_at=result.broken_chain_at,
        ))

    async def log_ledger_migrated(self, user_id: str, count: int) -> None:
        """Log a legacy migration."""
        await self.log(AuditEventBuilder.ledger_migrated(user_id=user_id, count=count))

    async def log_extraction_completed(
        self,
        user_id: str,
        trip_count: int,
        warnings: list[str],
    ) -> None:
        """Log a callsheet extraction."""
        await self.log(AuditEventBuilder.extraction_completed(
            user_id=user_id,
            trip_count=trip_count,
            warnings=warnings,
        ))

    async def log_report_generated(
        self,
        user_id: str,
        report_id: str,
        project_id: str,
        signature: str,
    ) -> None:
        """Log report generation."""
        await self.log(AuditEventBuilder.report_generated(
            user_id=user_id,
            report_id=report_id,
            project_id=project_id,
            signature=signature,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        user_id: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            user_id=user_id,
            details=details,
        ))
