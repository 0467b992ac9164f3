"""
Trip Models for drivelog

A Trip is a single driving event: a date, an ordered route, a distance and
the project it was driven for.

DESIGN DECISION: There are three shapes of trip data:
1. TripDraft   - what a user (or an import) authors. No id, no hashes.
2. Trip        - what the ledger hands back. Carries id and content hashes.
3. TripUpdate  - a partial TripDraft used for amendments. Unknown fields
                 are rejected, so an update can never smuggle in a hash.

Only the ledger service turns a TripDraft into a Trip.
"""

import datetime as dt
from enum import Enum
from typing import Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)
from pydantic.alias_generators import to_camel


class SpecialOrigin(str, Enum):
    """
    Where a trip starts.

    Most trips are round trips from home. Multi-day shoots can chain trips
    together: the first leaves home, the following ones continue from the
    previous day's end point, the last returns home.
    """
    HOME = "HOME"
    CONTINUATION = "CONTINUATION"
    END_OF_CONTINUATION = "END_OF_CONTINUATION"


class WireModel(BaseModel):
    """
    Base for models exchanged with storage and other layers.

    Fields are snake_case in Python and camelCase on the wire
    (`model_dump(mode="json", by_alias=True)`).
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )

    def to_wire(self) -> dict:
        """Serialize using the camelCase wire shape."""
        return self.model_dump(mode="json", by_alias=True)


# =============================================================================
# TRIP SHAPES
# =============================================================================

class TripDraft(WireModel):
    """
    Trip data as authored by a user or an import.

    This is the input to `create_trip` and `import_trips_batch`.
    """

    date: dt.date = Field(
        ...,
        description="Calendar date of the trip (no time component)"
    )
    locations: list[str] = Field(
        ...,
        min_length=2,
        description="Ordered route; first and last are usually the same home address"
    )
    distance: float = Field(
        ...,
        ge=0.0,
        description="Distance driven in kilometers"
    )
    project_id: str = Field(
        default="",
        description="Owning project, empty when unassigned"
    )
    reason: str = Field(
        default="",
        max_length=1000,
        description="Free-text purpose of the trip"
    )
    special_origin: SpecialOrigin = Field(
        default=SpecialOrigin.HOME,
        description="Where the trip starts"
    )
    passengers: Optional[int] = Field(
        default=None,
        ge=0,
        description="Number of passengers, if recorded"
    )
    warnings: list[str] = Field(
        default_factory=list,
        description="Validation warnings attached to the trip"
    )
    rate_per_km: Optional[float] = Field(
        default=None,
        ge=0.0,
        description="Reimbursement rate override for this trip"
    )

    # Set when the trip was extracted from a callsheet
    source_document_id: Optional[str] = None
    source_document_name: Optional[str] = None

    @field_validator('locations')
    @classmethod
    def validate_locations(cls, v: list[str]) -> list[str]:
        """Every stop on the route needs an address."""
        cleaned = [location.strip() for location in v]
        if any(not location for location in cleaned):
            raise ValueError("Locations cannot contain empty addresses")
        return cleaned

    @field_validator('warnings')
    @classmethod
    def dedupe_warnings(cls, v: list[str]) -> list[str]:
        """Warnings behave as a set; keep first occurrence order."""
        return list(dict.fromkeys(w for w in v if w))


class Trip(TripDraft):
    """
    A trip as recorded in the ledger.

    CRITICAL: `hash` and `previous_hash` are written by the ledger
    service only. Nothing else should construct a Trip with hashes.
    """

    id: str = Field(
        ...,
        min_length=1,
        description="Opaque trip identifier"
    )
    hash: Optional[str] = Field(
        default=None,
        description="Content hash of this trip state"
    )
    previous_hash: Optional[str] = Field(
        default=None,
        description="Chain tail this trip state was anchored to"
    )


class TripUpdate(WireModel):
    """
    Partial trip used for amendments.

    Only fields explicitly set are applied. Lists replace the existing
    value wholesale.
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="forbid",
    )

    date: Optional[dt.date] = None
    locations: Optional[list[str]] = Field(default=None, min_length=2)
    distance: Optional[float] = Field(default=None, ge=0.0)
    project_id: Optional[str] = None
    reason: Optional[str] = Field(default=None, max_length=1000)
    special_origin: Optional[SpecialOrigin] = None
    passengers: Optional[int] = Field(default=None, ge=0)
    warnings: Optional[list[str]] = None
    rate_per_km: Optional[float] = Field(default=None, ge=0.0)
    source_document_id: Optional[str] = None
    source_document_name: Optional[str] = None

    def changes(self) -> dict:
        """Fields the caller actually set, keyed by Python field name."""
        return self.model_dump(exclude_unset=True)


# Fields a user may author; everything else on Trip is ledger bookkeeping
AUTHORED_TRIP_FIELDS: tuple[str, ...] = tuple(TripDraft.model_fields)
