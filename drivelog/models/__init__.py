"""
Data Models Package

This package contains all Pydantic models used in drivelog.
All data flowing through the system must conform to these schemas.
"""

from drivelog.models.trip import (
    AUTHORED_TRIP_FIELDS,
    SpecialOrigin,
    Trip,
    TripDraft,
    TripUpdate,
    WireModel,
)
from drivelog.models.ledger import (
    GENESIS_HASH,
    BatchImportResult,
    LedgerBatch,
    LedgerEntry,
    LedgerExport,
    LedgerOperation,
    LedgerSource,
    LedgerVerification,
    MigrationResult,
    SourceDocumentRef,
    TripProjection,
)
from drivelog.models.project import (
    CallsheetFile,
    ExpenseDocument,
    ExpenseDocumentKind,
    Project,
)
from drivelog.models.report import Report
from drivelog.models.validation import TripValidationResult, ValidationIssue
from drivelog.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Trip models
    "AUTHORED_TRIP_FIELDS",
    "SpecialOrigin",
    "Trip",
    "TripDraft",
    "TripUpdate",
    "WireModel",
    # Ledger models
    "GENESIS_HASH",
    "BatchImportResult",
    "LedgerBatch",
    "LedgerEntry",
    "LedgerExport",
    "LedgerOperation",
    "LedgerSource",
    "LedgerVerification",
    "MigrationResult",
    "SourceDocumentRef",
    "TripProjection",
    # Project models
    "CallsheetFile",
    "ExpenseDocument",
    "ExpenseDocumentKind",
    "Project",
    # Reports
    "Report",
    # Validation
    "TripValidationResult",
    "ValidationIssue",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
