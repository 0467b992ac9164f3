"""
Shared fixtures.

Everything runs against the in-memory backends: no Google Sheets, no Gemini.
"""

import datetime as dt

import pytest

from drivelog.ledger import TripLedgerService
from drivelog.models import SpecialOrigin, TripDraft
from drivelog.services.storage import (
    InMemoryAuditStorage,
    InMemoryLedgerRepository,
    InMemoryProjectRepository,
)


USER_ID = "user-1"
HOME = "Hauptstraße 1, 10115 Berlin"
STUDIO = "Studio Babelsberg, Potsdam"


class FakeClock:
    """Controllable UTC clock."""

    def __init__(self, start: dt.datetime = dt.datetime(2024, 3, 1, 9, 0, tzinfo=dt.timezone.utc)):
        self.now = start

    def __call__(self) -> dt.datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += dt.timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ledger_repo() -> InMemoryLedgerRepository:
    return InMemoryLedgerRepository()


@pytest.fixture
def project_repo() -> InMemoryProjectRepository:
    return InMemoryProjectRepository()


@pytest.fixture
def audit_storage() -> InMemoryAuditStorage:
    return InMemoryAuditStorage()


@pytest.fixture
def ledger(ledger_repo, clock) -> TripLedgerService:
    return TripLedgerService(USER_ID, ledger_repo, cache_ttl_seconds=300, clock=clock)


@pytest.fixture
def make_draft():
    """Factory for valid trip drafts; keyword overrides replace fields."""

    def _make(**overrides) -> TripDraft:
        data = {
            "date": dt.date(2024, 2, 12),
            "locations": [HOME, STUDIO, HOME],
            "distance": 64.5,
            "project_id": "project-1",
            "reason": "Shooting day 1",
            "special_origin": SpecialOrigin.HOME,
        }
        data.update(overrides)
        return TripDraft(**data)

    return _make
