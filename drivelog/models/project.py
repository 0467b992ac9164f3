"""
Project and Document Models

Projects group trips (usually one production / client engagement).
Callsheets are the documents trips get extracted from; expense documents
(invoices, receipts) hang off individual trips.

These entities live outside the ledger. Their storage is the project
repository's concern.
"""

import datetime as dt
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import Field

from drivelog.models.trip import WireModel


class ExpenseDocumentKind(str, Enum):
    """Kind of expense document attached to a trip."""
    INVOICE = "invoice"
    RECEIPT = "receipt"
    OTHER = "other"


class CallsheetFile(WireModel):
    """A callsheet uploaded to a project."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str = Field(..., min_length=1)
    type: str = Field(default="application/pdf")
    url: Optional[str] = None


class Project(WireModel):
    """A project trips are driven for."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=200)
    producer: str = Field(default="", max_length=200)
    rate_per_km: Optional[float] = Field(default=None, ge=0.0)
    callsheets: list[CallsheetFile] = Field(default_factory=list)


class ExpenseDocument(WireModel):
    """An invoice or receipt belonging to a trip."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str = Field(..., min_length=1)
    project_id: str = ""
    trip_id: Optional[str] = None
    kind: ExpenseDocumentKind = ExpenseDocumentKind.INVOICE
    filename: str = Field(..., min_length=1)
    url: Optional[str] = None
    created_at: dt.datetime = Field(
        default_factory=lambda: dt.datetime.now(dt.timezone.utc)
    )
