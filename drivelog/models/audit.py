"""
Audit Models for drivelog

Every significant action the orchestration layer takes is logged for audit
purposes, next to (not instead of) the trip ledger:
1. The ledger proves WHAT happened to trips
2. The audit trail records everything around it - cascade cleanups,
   integrity checks, migrations, extraction runs - including failures

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Trip lifecycle
    TRIP_CREATED = "trip_created"
    TRIP_AMENDED = "trip_amended"
    TRIP_VOIDED = "trip_voided"
    TRIPS_IMPORTED = "trips_imported"

    # Cascading cleanup
    CASCADE_STEP_FAILED = "cascade_step_failed"
    CALLSHEET_DELETED = "callsheet_deleted"
    PROJECT_DELETED = "project_deleted"

    # Ledger integrity
    LEDGER_VERIFIED = "ledger_verified"
    LEDGER_INTEGRITY_COMPROMISED = "ledger_integrity_compromised"
    LEDGER_MIGRATED = "ledger_migrated"

    # Extraction and reports
    EXTRACTION_COMPLETED = "extraction_completed"
    REPORT_GENERATED = "report_generated"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Context - who and what is this about?
    user_id: Optional[str] = None
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'trip', 'project', 'ledger')"
    )
    entity_id: Optional[str] = None

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(default_factory=dict)

    # Error information (if applicable)
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """Convert to a dictionary suitable for structured logging."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "user_id": self.user_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, user_id, entity_type,
         entity_id, description, details_json, error_message]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.user_id or "",
            self.entity_type or "",
            self.entity_id or "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.trip_voided(user_id, trip_id, reason)
    """

    @staticmethod
    def trip_created(user_id: str, trip_id: str, source: str, entry_hash: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRIP_CREATED,
            user_id=user_id,
            entity_type="trip",
            entity_id=trip_id,
            description=f"Trip created ({source.lower()})",
            details={"source": source, "entry_hash": entry_hash},
        )

    @staticmethod
    def trip_amended(
        user_id: str,
        trip_id: str,
        changed_fields: list[str],
        reason: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRIP_AMENDED,
            user_id=user_id,
            entity_type="trip",
            entity_id=trip_id,
            description=f"Trip amended: {', '.join(changed_fields)}",
            details={"changed_fields": changed_fields, "correction_reason": reason},
        )

    @staticmethod
    def trip_voided(user_id: str, trip_id: str, reason: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRIP_VOIDED,
            user_id=user_id,
            entity_type="trip",
            entity_id=trip_id,
            description="Trip voided",
            details={"void_reason": reason},
        )

    @staticmethod
    def trips_imported(
        user_id: str,
        batch_id: str,
        source: str,
        count: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRIPS_IMPORTED,
            user_id=user_id,
            entity_type="batch",
            entity_id=batch_id,
            description=f"Imported {count} trips ({source.lower()})",
            details={"source": source, "entry_count": count},
        )

    @staticmethod
    def cascade_step_failed(
        user_id: str,
        trip_id: str,
        step: str,
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CASCADE_STEP_FAILED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="trip",
            entity_id=trip_id,
            description=f"Cleanup step '{step}' failed while deleting trip",
            details={"step": step},
            error_message=error_message,
        )

    @staticmethod
    def callsheet_deleted(user_id: str, project_id: str, callsheet_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CALLSHEET_DELETED,
            user_id=user_id,
            entity_type="callsheet",
            entity_id=callsheet_id,
            description="Callsheet deleted with its trip",
            details={"project_id": project_id},
        )

    @staticmethod
    def project_deleted(user_id: str, project_id: str, reason: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PROJECT_DELETED,
            user_id=user_id,
            entity_type="project",
            entity_id=project_id,
            description=f"Project deleted: {reason}",
        )

    @staticmethod
    def ledger_verified(
        user_id: str,
        is_valid: bool,
        total_entries: int,
        root_hash: str,
        broken_chain_at: Optional[str] = None,
    ) -> AuditEvent:
        if is_valid:
            return AuditEvent(
                event_type=AuditEventType.LEDGER_VERIFIED,
                user_id=user_id,
                entity_type="ledger",
                description=f"Ledger verified ({total_entries} entries)",
                details={"total_entries": total_entries, "root_hash": root_hash},
            )
        return AuditEvent(
            event_type=AuditEventType.LEDGER_INTEGRITY_COMPROMISED,
            severity=AuditSeverity.CRITICAL,
            user_id=user_id,
            entity_type="ledger",
            description="Ledger integrity compromised",
            details={
                "total_entries": total_entries,
                "broken_chain_at": broken_chain_at,
            },
        )

    @staticmethod
    def ledger_migrated(user_id: str, count: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LEDGER_MIGRATED,
            user_id=user_id,
            entity_type="ledger",
            description=f"Migrated {count} legacy ledger entries",
            details={"count": count},
        )

    @staticmethod
    def extraction_completed(
        user_id: str,
        trip_count: int,
        warnings: list[str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTRACTION_COMPLETED,
            severity=AuditSeverity.WARNING if warnings else AuditSeverity.INFO,
            user_id=user_id,
            entity_type="extraction",
            description=f"Extraction proposed {trip_count} trips",
            details={"trip_count": trip_count, "warnings": warnings},
        )

    @staticmethod
    def report_generated(user_id: str, report_id: str, project_id: str, signature: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REPORT_GENERATED,
            user_id=user_id,
            entity_type="report",
            entity_id=report_id,
            description="Report generated",
            details={"project_id": project_id, "signature": signature},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        user_id: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            user_id=user_id,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
        )
