"""
Ledger Exceptions

Storage failures are not defined here - they are `RepositoryError`s from the
storage package and pass through the ledger untouched.

A broken chain is NOT an exception either: `verify_ledger` reports it as data.
"""


class LedgerError(Exception):
    """Base exception for ledger operations."""
    pass


class LedgerValidationError(LedgerError):
    """Missing justification, empty batch or malformed trip data."""
    pass


class TripNotFoundError(LedgerError):
    """The trip is not in the live projection (never existed or already voided)."""

    def __init__(self, trip_id: str):
        self.trip_id = trip_id
        super().__init__(f"Trip {trip_id} not found or already voided")
