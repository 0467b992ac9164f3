"""
Hash Utility for the Trip Ledger

Deterministic canonical serialization of trips and ledger entries, and the
SHA-256 digests computed over them.

DESIGN DECISION: The canonical form is JSON whose key order is written out
in this module, not taken from the model or from insertion order. So:
1. Identical logical content always produces identical text
2. Adding a field to a model never silently changes existing hashes
3. A reviewer can read exactly what a hash covers

Route order matters (a trip is a route), so `locations` is serialized in
the order given and never sorted. Absent optional values are always
rendered as "" - never omitted.
"""

import hashlib
import json
from typing import Any, Iterable, Optional

from drivelog.models.ledger import GENESIS_HASH, LedgerEntry
from drivelog.models.trip import Trip


# Rendering of every absent optional value
ABSENT = ""


class HashInputError(ValueError):
    """A value handed to the hash utility is missing a required field."""
    pass


def sha256_hex(content: str) -> str:
    """SHA-256 of UTF-8 content as 64 lowercase hex characters."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def _dumps(canonical: dict[str, Any]) -> str:
    return json.dumps(canonical, ensure_ascii=False, separators=(",", ":"))


def _opt(value: Optional[Any]) -> Any:
    return ABSENT if value is None else value


def _require(obj: Any, *fields: str) -> None:
    for field in fields:
        value = getattr(obj, field, None)
        if value is None or value == "" or value == []:
            raise HashInputError(
                f"Cannot hash {type(obj).__name__}: required field '{field}' is missing"
            )


def canonicalize_trip(trip: Trip) -> str:
    """
    Canonical text of a trip state.

    Covers the trip's content and its `previous_hash` anchor, but not its
    own `hash` (which is computed over this text).

    Raises:
        HashInputError: If a required field is missing
    """
    _require(trip, "id", "date", "locations", "special_origin")

    canonical = {
        "id": trip.id,
        "date": trip.date.isoformat(),
        "locations": list(trip.locations),
        "distance": float(trip.distance),
        "projectId": trip.project_id or ABSENT,
        "reason": trip.reason or ABSENT,
        "specialOrigin": trip.special_origin.value,
        "passengers": _opt(trip.passengers),
        "warnings": list(trip.warnings),
        "ratePerKm": _opt(None if trip.rate_per_km is None else float(trip.rate_per_km)),
        "sourceDocumentId": _opt(trip.source_document_id),
        "sourceDocumentName": _opt(trip.source_document_name),
        "previousHash": _opt(trip.previous_hash),
    }
    return _dumps(canonical)


def compute_trip_hash(trip: Trip) -> str:
    """Content hash of a trip state."""
    return sha256_hex(canonicalize_trip(trip))


def canonicalize_entry(entry: LedgerEntry) -> str:
    """
    Canonical text of a ledger entry, excluding its own `hash`.

    The snapshot is embedded in canonical form together with the
    snapshot's own hash, so editing either is detectable.

    Raises:
        HashInputError: If a required field is missing
    """
    _require(entry, "id", "previous_hash", "timestamp", "user_id", "trip_id", "trip_snapshot")

    previous_snapshot = (
        canonicalize_trip(entry.previous_snapshot)
        if entry.previous_snapshot is not None
        else ABSENT
    )

    canonical = {
        "id": entry.id,
        "previousHash": entry.previous_hash,
        "timestamp": entry.timestamp.isoformat(),
        "operation": entry.operation.value,
        "source": entry.source.value,
        "userId": entry.user_id,
        "tripId": entry.trip_id,
        "tripSnapshot": canonicalize_trip(entry.trip_snapshot),
        "tripHash": _opt(entry.trip_snapshot.hash),
        "batchId": _opt(entry.batch_id),
        "correctionReason": _opt(entry.correction_reason),
        "changedFields": list(entry.changed_fields),
        "voidReason": _opt(entry.void_reason),
        "previousSnapshot": previous_snapshot,
        "sourceDocumentId": _opt(entry.source_document_id),
        "sourceDocumentName": _opt(entry.source_document_name),
    }
    return _dumps(canonical)


def compute_entry_hash(entry: LedgerEntry) -> str:
    """Hash of an entry's content. The stored `hash` field is ignored."""
    return sha256_hex(canonicalize_entry(entry))


def verify_entry_hash(entry: LedgerEntry) -> bool:
    """Recompute an entry's hash and compare it with the stored one."""
    return compute_entry_hash(entry) == entry.hash


def compute_root_hash(entries: Iterable[LedgerEntry]) -> str:
    """
    Aggregate hash over a chain: SHA-256 of the ordered concatenation
    of all entry hashes. An empty ledger hashes the empty string.
    """
    return sha256_hex("".join(entry.hash for entry in entries))


__all__ = [
    "ABSENT",
    "GENESIS_HASH",
    "HashInputError",
    "canonicalize_entry",
    "canonicalize_trip",
    "compute_entry_hash",
    "compute_root_hash",
    "compute_trip_hash",
    "sha256_hex",
    "verify_entry_hash",
]
