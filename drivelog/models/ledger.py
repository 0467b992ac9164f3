"""
Ledger Models for drivelog

The trip ledger is an append-only, hash-chained log of every mutation ever
made to a user's trips.

DESIGN DECISION: Ledger entries are frozen. Once built (and hashed) an entry
is never modified; corrections are new AMEND entries and deletions are new
VOID entries. The ledger is the single source of truth - the list of
current trips is always replayed from it.
"""

import datetime as dt
from enum import Enum
from typing import Optional

from pydantic import ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from drivelog.models.trip import Trip, WireModel


# Fixed previous_hash of the first entry in every user's chain
GENESIS_HASH = "0" * 64


class LedgerOperation(str, Enum):
    """What an entry did to its trip."""
    CREATE = "CREATE"
    AMEND = "AMEND"
    VOID = "VOID"
    IMPORT_BATCH = "IMPORT_BATCH"


class LedgerSource(str, Enum):
    """Where the data behind an entry came from."""
    MANUAL = "MANUAL"
    AI_AGENT = "AI_AGENT"
    CSV_IMPORT = "CSV_IMPORT"
    BULK_UPLOAD = "BULK_UPLOAD"


class SourceDocumentRef(WireModel):
    """Reference to a document (callsheet, email) trips were imported from."""

    id: str
    name: str
    type: str = Field(
        default="application/octet-stream",
        description="MIME type of the document"
    )


# =============================================================================
# LEDGER ENTRY
# =============================================================================

class LedgerEntry(WireModel):
    """
    One immutable fact about a trip's history.

    `hash` covers every other field, including the full trip snapshot,
    so recomputing it from stored fields detects tampering.
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    # Identity and chain linkage
    id: str = Field(..., min_length=1)
    hash: str = Field(
        default="",
        description="SHA-256 over the entry content (empty only while being built)"
    )
    previous_hash: str = Field(
        default=GENESIS_HASH,
        description="Hash of the prior entry in this user's chain"
    )
    timestamp: dt.datetime

    # Classification
    operation: LedgerOperation
    source: LedgerSource
    user_id: str = Field(..., min_length=1)

    # Subject
    trip_id: str = Field(..., min_length=1)
    trip_snapshot: Trip = Field(
        ...,
        description="Trip state after this operation (last known state for VOID)"
    )

    # Operation-specific metadata
    batch_id: Optional[str] = None
    correction_reason: Optional[str] = None
    changed_fields: list[str] = Field(default_factory=list)
    void_reason: Optional[str] = None
    previous_snapshot: Optional[Trip] = None
    source_document_id: Optional[str] = None
    source_document_name: Optional[str] = None

    @field_validator('previous_hash', mode='before')
    @classmethod
    def default_genesis(cls, v):
        """Pre-migration entries stored the chain start as null."""
        return GENESIS_HASH if v is None else v


class LedgerBatch(WireModel):
    """
    Grouping metadata for one multi-trip import.

    Written once per import call and never changed afterwards.
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    batch_id: str
    timestamp: dt.datetime
    source: LedgerSource
    user_id: str
    entry_count: int = Field(ge=0)
    first_entry_hash: str
    last_entry_hash: str
    source_documents: list[SourceDocumentRef] = Field(default_factory=list)


# =============================================================================
# RESULTS
# =============================================================================

class BatchImportResult(WireModel):
    """Entries created by an import, in chain order, plus the batch record."""

    entries: list[LedgerEntry]
    batch: LedgerBatch


class LedgerVerification(WireModel):
    """
    Outcome of walking a user's chain.

    A broken chain is a normal, reportable result - not an exception.
    """

    is_valid: bool
    total_entries: int = Field(ge=0)
    root_hash: str
    first_entry: Optional[LedgerEntry] = None
    last_entry: Optional[LedgerEntry] = None
    broken_chain_at: Optional[str] = Field(
        default=None,
        description="Stored hash of the first entry where divergence was detected"
    )
    failure_reason: Optional[str] = None
    verification_timestamp: dt.datetime


class TripProjection(WireModel):
    """Replayed history of a single trip."""

    trip: Trip
    is_voided: bool = False
    created_at: dt.datetime
    last_modified_at: dt.datetime
    amendment_count: int = 0
    last_operation: LedgerOperation
    source_document: Optional[SourceDocumentRef] = None


class LedgerExport(WireModel):
    """Full dump of a user's ledger for backup or analysis."""

    user_id: str
    entries: list[LedgerEntry]
    batches: list[LedgerBatch]
    export_timestamp: dt.datetime


class MigrationResult(WireModel):
    """Outcome of the one-shot legacy ledger migration."""

    migrated: bool
    count: int = Field(ge=0)
