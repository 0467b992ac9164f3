"""
Compliance Report Model

A report freezes the trips of one project over a date range, together with
the hashes needed to prove later that those trips match the ledger.
"""

import datetime as dt
from typing import Optional
from uuid import uuid4

from pydantic import Field, model_validator

from drivelog.models.ledger import LedgerVerification
from drivelog.models.trip import Trip, WireModel


class Report(WireModel):
    """A generated driving log report."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    generation_date: dt.datetime
    start_date: dt.date
    end_date: dt.date
    project_id: str
    project_name: str
    total_distance: float = Field(ge=0.0)
    trips: list[Trip] = Field(default_factory=list)

    # Integrity data
    signature: str = Field(
        ...,
        description="SHA-256 over the report period, total and trip hashes"
    )
    first_trip_hash: Optional[str] = None
    last_trip_hash: Optional[str] = None
    ledger_verification: Optional[LedgerVerification] = None

    @model_validator(mode='after')
    def validate_period(self) -> 'Report':
        """Validate date range."""
        if self.end_date < self.start_date:
            raise ValueError("Report end date cannot be before start date")
        return self

    @property
    def ledger_verified(self) -> bool:
        """True when the ledger backing this report passed verification."""
        return bool(self.ledger_verification and self.ledger_verification.is_valid)
