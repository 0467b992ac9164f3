"""Append-only, hash-chained trip ledger."""

from drivelog.ledger.errors import (
    LedgerError,
    LedgerValidationError,
    TripNotFoundError,
)
from drivelog.ledger.hashing import (
    GENESIS_HASH,
    HashInputError,
    canonicalize_entry,
    canonicalize_trip,
    compute_entry_hash,
    compute_root_hash,
    compute_trip_hash,
    sha256_hex,
    verify_entry_hash,
)
from drivelog.ledger.migration import LedgerMigrator
from drivelog.ledger.service import TripLedgerService, replay_trips

__all__ = [
    "GENESIS_HASH",
    "HashInputError",
    "LedgerError",
    "LedgerMigrator",
    "LedgerValidationError",
    "TripLedgerService",
    "TripNotFoundError",
    "canonicalize_entry",
    "canonicalize_trip",
    "compute_entry_hash",
    "compute_root_hash",
    "compute_trip_hash",
    "replay_trips",
    "sha256_hex",
    "verify_entry_hash",
]
