"""
Report Generator

Builds the driving log report for one project over a date range.

The report signature lets anyone holding the report check later that it was
not edited: it is a SHA-256 over the generation date, the period, the total
distance and the hashes of every included trip, in report order. The trip
hashes in turn tie the report to the ledger, whose verification result is
attached.
"""

import datetime as dt
from typing import Callable, Optional

from drivelog.ledger.hashing import sha256_hex
from drivelog.ledger.service import TripLedgerService
from drivelog.models.project import Project
from drivelog.models.report import Report
from drivelog.models.trip import Trip


class ReportError(Exception):
    """A report could not be generated."""
    pass


def compute_report_signature(
    generation_date: dt.datetime,
    start_date: dt.date,
    end_date: dt.date,
    total_distance: float,
    trips: list[Trip],
) -> str:
    """SHA-256 over period, total and trip hashes."""
    content = "".join([
        generation_date.isoformat(),
        start_date.isoformat(),
        end_date.isoformat(),
        str(total_distance),
        "".join(trip.hash or "" for trip in trips),
    ])
    return sha256_hex(content)


class ReportGenerator:
    """Generates signed reports from a user's ledger."""

    def __init__(
        self,
        ledger: TripLedgerService,
        clock: Optional[Callable[[], dt.datetime]] = None,
    ):
        self._ledger = ledger
        self._clock = clock or (lambda: dt.datetime.now(dt.timezone.utc))

    async def generate(
        self,
        project: Project,
        start_date: dt.date,
        end_date: dt.date,
    ) -> Report:
        """
        Generate a report of a project's live trips between two dates (inclusive).

        Raises:
            ReportError: If the period is inverted or holds no trips
            RepositoryError: If the ledger can't be read
        """
        if end_date < start_date:
            raise ReportError("Report end date cannot be before start date")

        trips = sorted(
            (
                trip for trip in await self._ledger.get_trips()
                if trip.project_id == project.id and start_date <= trip.date <= end_date
            ),
            key=lambda trip: trip.date,
        )
        if not trips:
            raise ReportError(
                f"No trips for project '{project.name}' between {start_date} and {end_date}"
            )

        generation_date = self._clock()
        total_distance = round(sum(trip.distance for trip in trips), 2)

        return Report(
            generation_date=generation_date,
            start_date=start_date,
            end_date=end_date,
            project_id=project.id,
            project_name=project.name,
            total_distance=total_distance,
            trips=trips,
            signature=compute_report_signature(
                generation_date, start_date, end_date, total_distance, trips
            ),
            first_trip_hash=trips[0].hash,
            last_trip_hash=trips[-1].hash,
            ledger_verification=await self._ledger.verify_ledger(),
        )

    @staticmethod
    def verify_signature(report: Report) -> bool:
        """Recompute a report's signature and compare it with the stored one."""
        expected = compute_report_signature(
            report.generation_date,
            report.start_date,
            report.end_date,
            report.total_distance,
            report.trips,
        )
        return expected == report.signature
