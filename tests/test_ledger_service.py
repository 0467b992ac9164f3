"""Tests for TripLedgerService writes, reads and caching."""

import pytest
from datetime import date

from drivelog.ledger import (
    GENESIS_HASH,
    LedgerValidationError,
    TripLedgerService,
    TripNotFoundError,
    compute_trip_hash,
    verify_entry_hash,
)
from drivelog.models import (
    LedgerOperation,
    LedgerSource,
    SourceDocumentRef,
    TripUpdate,
)
from drivelog.services.storage import InMemoryLedgerRepository, RepositoryError
from tests.conftest import HOME, STUDIO, USER_ID


class CountingRepository(InMemoryLedgerRepository):
    """In-memory repository that records which write calls were made."""

    def __init__(self):
        super().__init__()
        self.calls: list[str] = []

    async def append_entry(self, user_id, entry):
        self.calls.append("append_entry")
        await super().append_entry(user_id, entry)

    async def append_entries(self, user_id, entries):
        self.calls.append("append_entries")
        await super().append_entries(user_id, entries)

    async def create_batch_record(self, user_id, batch):
        self.calls.append("create_batch_record")
        await super().create_batch_record(user_id, batch)


class FailingWriteRepository(InMemoryLedgerRepository):
    """Reads work, every write fails."""

    async def append_entry(self, user_id, entry):
        raise RepositoryError("backend down")

    async def append_entries(self, user_id, entries):
        raise RepositoryError("backend down")


class TestCreateTrip:
    """Tests for create_trip."""

    @pytest.mark.asyncio
    async def test_first_entry_starts_at_genesis(self, ledger, make_draft):
        """The first entry and its trip are anchored to genesis."""
        entry = await ledger.create_trip(make_draft())

        assert entry.operation == LedgerOperation.CREATE
        assert entry.source == LedgerSource.MANUAL
        assert entry.previous_hash == GENESIS_HASH
        assert entry.trip_snapshot.previous_hash == GENESIS_HASH
        assert len(entry.hash) == 64
        assert verify_entry_hash(entry)

    @pytest.mark.asyncio
    async def test_trip_hash_is_populated(self, ledger, make_draft):
        """The ledger computes the trip's content hash."""
        trip = (await ledger.create_trip(make_draft())).trip_snapshot
        assert trip.hash == compute_trip_hash(trip)
        assert trip.id

    @pytest.mark.asyncio
    async def test_entries_link_to_previous(self, ledger, make_draft):
        """Each new entry links to the chain tail."""
        first = await ledger.create_trip(make_draft())
        second = await ledger.create_trip(make_draft(date=date(2024, 2, 13)))

        assert second.previous_hash == first.hash
        assert second.trip_snapshot.previous_hash == first.hash

    @pytest.mark.asyncio
    async def test_source_is_recorded(self, ledger, make_draft):
        """Test that a non-manual source is kept."""
        entry = await ledger.create_trip(make_draft(), LedgerSource.AI_AGENT)
        assert entry.source == LedgerSource.AI_AGENT

    @pytest.mark.asyncio
    async def test_user_id_is_required(self, ledger_repo):
        """A ledger always belongs to a user."""
        with pytest.raises(LedgerValidationError):
            TripLedgerService("", ledger_repo)


class TestAmendTrip:
    """Tests for amend_trip."""

    @pytest.mark.asyncio
    async def test_amend_records_changed_fields(self, ledger, make_draft):
        """Test a simple correction."""
        created = await ledger.create_trip(make_draft())
        trip_id = created.trip_id

        entry = await ledger.amend_trip(trip_id, TripUpdate(distance=50.0), "Odometer misread")

        assert entry.operation == LedgerOperation.AMEND
        assert entry.changed_fields == ["distance"]
        assert entry.correction_reason == "Odometer misread"
        assert entry.previous_hash == created.hash
        assert entry.trip_snapshot.distance == 50.0
        assert entry.trip_snapshot.id == trip_id
        assert entry.trip_snapshot.previous_hash == created.hash

        trips = await ledger.get_trips()
        assert [t.distance for t in trips] == [50.0]

    @pytest.mark.asyncio
    async def test_amend_requires_reason(self, ledger, make_draft):
        """Empty and whitespace-only reasons are rejected."""
        trip_id = (await ledger.create_trip(make_draft())).trip_id

        with pytest.raises(LedgerValidationError):
            await ledger.amend_trip(trip_id, TripUpdate(distance=1.0), "")
        with pytest.raises(LedgerValidationError):
            await ledger.amend_trip(trip_id, TripUpdate(distance=1.0), "   ")

        assert len(await ledger.get_entries()) == 1

    @pytest.mark.asyncio
    async def test_amend_unknown_trip(self, ledger):
        """Test TripNotFoundError for a trip that never existed."""
        with pytest.raises(TripNotFoundError):
            await ledger.amend_trip("missing", TripUpdate(distance=1.0), "fix")

    @pytest.mark.asyncio
    async def test_amend_without_changes_appends_nothing(self, ledger, make_draft):
        """An update equal to the current state is a no-op."""
        draft = make_draft()
        trip_id = (await ledger.create_trip(draft)).trip_id

        result = await ledger.amend_trip(trip_id, TripUpdate(distance=draft.distance), "no-op")

        assert result is None
        assert len(await ledger.get_entries()) == 1

    @pytest.mark.asyncio
    async def test_lists_are_replaced(self, ledger, make_draft):
        """A list in the update replaces the whole list."""
        trip_id = (await ledger.create_trip(make_draft())).trip_id

        entry = await ledger.amend_trip(
            trip_id,
            TripUpdate(locations=[HOME, "Other set", STUDIO, HOME]),
            "Added a stop",
        )
        assert entry.trip_snapshot.locations == [HOME, "Other set", STUDIO, HOME]
        assert entry.changed_fields == ["locations"]

    @pytest.mark.asyncio
    async def test_dict_updates_are_accepted(self, ledger, make_draft):
        """Raw wire-shaped updates are validated."""
        trip_id = (await ledger.create_trip(make_draft())).trip_id

        entry = await ledger.amend_trip(trip_id, {"projectId": "project-2"}, "Wrong project")
        assert entry.trip_snapshot.project_id == "project-2"

        with pytest.raises(LedgerValidationError):
            await ledger.amend_trip(trip_id, {"hash": "0" * 64}, "sneaky")

    @pytest.mark.asyncio
    async def test_amend_reports_multiple_fields_in_field_order(self, ledger, make_draft):
        """Changed fields are listed in model field order."""
        trip_id = (await ledger.create_trip(make_draft())).trip_id
        entry = await ledger.amend_trip(
            trip_id,
            TripUpdate(reason="Reshoot", distance=70.0),
            "Two fixes",
        )
        assert entry.changed_fields == ["distance", "reason"]


class TestVoidTrip:
    """Tests for void_trip."""

    @pytest.mark.asyncio
    async def test_void_removes_trip_from_projection(self, ledger, make_draft):
        """Voided trips disappear; their entries remain."""
        keep = (await ledger.create_trip(make_draft())).trip_id
        gone = (await ledger.create_trip(make_draft(date=date(2024, 2, 13)))).trip_id

        entry = await ledger.void_trip(gone, "Duplicate")

        assert entry.operation == LedgerOperation.VOID
        assert entry.void_reason == "Duplicate"
        assert [t.id for t in await ledger.get_trips()] == [keep]
        assert len(await ledger.get_entries()) == 3

    @pytest.mark.asyncio
    async def test_void_keeps_last_state(self, ledger, make_draft):
        """Snapshot and previous snapshot are the last live state."""
        trip_id = (await ledger.create_trip(make_draft())).trip_id
        amended = await ledger.amend_trip(trip_id, TripUpdate(distance=10.0), "fix")

        entry = await ledger.void_trip(trip_id, "Cancelled shoot")

        assert entry.trip_snapshot == amended.trip_snapshot
        assert entry.previous_snapshot == amended.trip_snapshot

    @pytest.mark.asyncio
    async def test_voided_trip_is_terminal(self, ledger, make_draft):
        """No amend or second void after a void."""
        trip_id = (await ledger.create_trip(make_draft())).trip_id
        await ledger.void_trip(trip_id, "gone")

        with pytest.raises(TripNotFoundError):
            await ledger.void_trip(trip_id, "again")
        with pytest.raises(TripNotFoundError):
            await ledger.amend_trip(trip_id, TripUpdate(distance=1.0), "fix")

    @pytest.mark.asyncio
    async def test_void_requires_reason(self, ledger, make_draft):
        """Test that a void needs a reason."""
        trip_id = (await ledger.create_trip(make_draft())).trip_id
        with pytest.raises(LedgerValidationError):
            await ledger.void_trip(trip_id, " ")


class TestImportBatch:
    """Tests for import_trips_batch."""

    @pytest.mark.asyncio
    async def test_empty_batch_is_rejected(self, ledger):
        """Test LedgerValidationError for an empty import."""
        with pytest.raises(LedgerValidationError):
            await ledger.import_trips_batch([], LedgerSource.CSV_IMPORT)
        assert await ledger.get_entries() == []

    @pytest.mark.asyncio
    async def test_batch_forms_consecutive_subchain(self, ledger, make_draft):
        """Entries link to each other in input order."""
        existing = await ledger.create_trip(make_draft())
        drafts = [make_draft(date=date(2024, 2, day)) for day in (13, 14, 15)]

        result = await ledger.import_trips_batch(drafts, LedgerSource.CSV_IMPORT)

        entries = result.entries
        assert [e.trip_snapshot.date.day for e in entries] == [13, 14, 15]
        assert entries[0].previous_hash == existing.hash
        assert entries[1].previous_hash == entries[0].hash
        assert entries[2].previous_hash == entries[1].hash
        assert all(e.operation == LedgerOperation.IMPORT_BATCH for e in entries)
        assert len({e.batch_id for e in entries}) == 1
        assert len({e.timestamp for e in entries}) == 1

    @pytest.mark.asyncio
    async def test_batch_record(self, ledger, make_draft):
        """The batch record summarizes the sub-chain."""
        drafts = [make_draft(date=date(2024, 2, day)) for day in (13, 14)]
        result = await ledger.import_trips_batch(drafts, LedgerSource.BULK_UPLOAD)

        batch = result.batch
        assert batch.entry_count == 2
        assert batch.first_entry_hash == result.entries[0].hash
        assert batch.last_entry_hash == result.entries[-1].hash
        assert batch.batch_id == result.entries[0].batch_id
        assert await ledger.get_batches() == [batch]
        assert await ledger.get_batch_entries(batch.batch_id) == result.entries

    @pytest.mark.asyncio
    async def test_batch_is_written_with_one_append(self, clock, make_draft):
        """All entries go to storage in a single call."""
        repo = CountingRepository()
        ledger = TripLedgerService(USER_ID, repo, clock=clock)

        await ledger.import_trips_batch([make_draft(), make_draft()], LedgerSource.CSV_IMPORT)

        assert repo.calls == ["append_entries", "create_batch_record"]

    @pytest.mark.asyncio
    async def test_first_source_document_is_default_reference(self, ledger, make_draft):
        """Drafts without a document reference get the first document."""
        callsheet = SourceDocumentRef(id="cs-1", name="Callsheet Day 1.pdf", type="application/pdf")
        drafts = [
            make_draft(),
            make_draft(source_document_id="cs-9", source_document_name="Other.pdf"),
        ]

        result = await ledger.import_trips_batch(drafts, LedgerSource.AI_AGENT, [callsheet])

        assert result.entries[0].source_document_id == "cs-1"
        assert result.entries[0].trip_snapshot.source_document_name == "Callsheet Day 1.pdf"
        assert result.entries[1].source_document_id == "cs-9"
        assert result.batch.source_documents == [callsheet]


class TestProjectionAndCache:
    """Tests for get_trips replay and caching."""

    @pytest.mark.asyncio
    async def test_projection_replay(self, ledger, make_draft):
        """CREATE, AMEND, VOID replay to the expected live set."""
        t1 = (await ledger.create_trip(make_draft())).trip_id
        t2 = (await ledger.create_trip(make_draft(date=date(2024, 2, 13)))).trip_id
        await ledger.amend_trip(t1, TripUpdate(distance=50.0), "fix")
        await ledger.void_trip(t1, "gone")

        trips = await ledger.get_trips()
        assert [t.id for t in trips] == [t2]

    @pytest.mark.asyncio
    async def test_reads_are_cached_within_ttl(self, ledger, ledger_repo, clock, make_draft):
        """Writes from elsewhere are invisible until the cache expires."""
        await ledger.create_trip(make_draft())
        assert len(await ledger.get_trips()) == 1

        # Another device writes directly to storage
        other = TripLedgerService(USER_ID, ledger_repo, clock=clock)
        await other.create_trip(make_draft(date=date(2024, 2, 13)))

        clock.advance(seconds=299)
        assert len(await ledger.get_trips()) == 1

        clock.advance(seconds=2)
        assert len(await ledger.get_trips()) == 2

    @pytest.mark.asyncio
    async def test_clear_cache(self, ledger, ledger_repo, clock, make_draft):
        """Test explicit invalidation."""
        assert await ledger.get_trips() == []

        other = TripLedgerService(USER_ID, ledger_repo, clock=clock)
        await other.create_trip(make_draft())
        assert await ledger.get_trips() == []

        ledger.clear_cache()
        assert len(await ledger.get_trips()) == 1

    @pytest.mark.asyncio
    async def test_own_write_is_visible_immediately(self, ledger, make_draft):
        """A write invalidates the cache."""
        assert await ledger.get_trips() == []
        await ledger.create_trip(make_draft())
        assert len(await ledger.get_trips()) == 1

    @pytest.mark.asyncio
    async def test_returned_trips_do_not_alter_cache(self, ledger, make_draft):
        """Changing a returned trip leaves the cached projection untouched."""
        entry = await ledger.create_trip(make_draft())

        first = await ledger.get_trips()
        first[0].hash = "forged"
        first[0].distance = 999.0
        first[0].locations.append("Somewhere else")

        second = await ledger.get_trips()
        assert second[0].hash == entry.trip_snapshot.hash
        assert second[0].distance == 64.5
        assert second[0].locations == [HOME, STUDIO, HOME]

    @pytest.mark.asyncio
    async def test_failed_write_invalidates_cache_and_propagates(self, clock, make_draft):
        """Storage errors surface unchanged and never leave a stale cache."""
        repo = FailingWriteRepository()
        ledger = TripLedgerService(USER_ID, repo, clock=clock)
        assert await ledger.get_trips() == []

        # Seed storage behind the service's back
        entry = await _build_entry(make_draft())
        await InMemoryLedgerRepository.append_entry(repo, USER_ID, entry)

        with pytest.raises(RepositoryError):
            await ledger.create_trip(make_draft())

        assert len(await ledger.get_trips()) == 1

    @pytest.mark.asyncio
    async def test_users_are_isolated(self, ledger_repo, clock, make_draft):
        """Each user has a separate chain."""
        alice = TripLedgerService("alice", ledger_repo, clock=clock)
        bob = TripLedgerService("bob", ledger_repo, clock=clock)

        await alice.create_trip(make_draft())
        entry = await bob.create_trip(make_draft())

        assert entry.previous_hash == GENESIS_HASH
        assert len(await alice.get_trips()) == 1
        assert len(await bob.get_trips()) == 1


async def _build_entry(draft):
    """Build a valid CREATE entry without storing it."""
    scratch = TripLedgerService(USER_ID, InMemoryLedgerRepository(), cache_ttl_seconds=0)
    return await scratch.create_trip(draft)


class TestHistoryReads:
    """Tests for the supplemental read operations."""

    @pytest.mark.asyncio
    async def test_projections_track_history(self, ledger, make_draft):
        """Projections include voided trips and amendment counts."""
        t1 = (await ledger.create_trip(make_draft())).trip_id
        t2 = (await ledger.create_trip(make_draft(date=date(2024, 2, 13)))).trip_id
        await ledger.amend_trip(t1, TripUpdate(distance=1.0), "a")
        await ledger.amend_trip(t1, TripUpdate(distance=2.0), "b")
        await ledger.void_trip(t2, "gone")

        first = await ledger.get_projected_trip(t1)
        second = await ledger.get_projected_trip(t2)

        assert first.amendment_count == 2
        assert first.is_voided is False
        assert first.trip.distance == 2.0
        assert first.last_operation == LedgerOperation.AMEND
        assert second.is_voided is True
        assert second.last_operation == LedgerOperation.VOID
        assert await ledger.get_projected_trip("missing") is None

    @pytest.mark.asyncio
    async def test_trip_history(self, ledger, make_draft):
        """History lists one trip's entries in order."""
        t1 = (await ledger.create_trip(make_draft())).trip_id
        await ledger.create_trip(make_draft(date=date(2024, 2, 13)))
        await ledger.void_trip(t1, "gone")

        history = await ledger.get_trip_history(t1)
        assert [e.operation for e in history] == [LedgerOperation.CREATE, LedgerOperation.VOID]

    @pytest.mark.asyncio
    async def test_batches_rebuilt_from_entries(self, ledger_repo, clock, make_draft):
        """Without batch records, batches are derived from entry batch ids."""
        source = InMemoryLedgerRepository()
        ledger = TripLedgerService(USER_ID, source, clock=clock)
        result = await ledger.import_trips_batch([make_draft(), make_draft()], LedgerSource.CSV_IMPORT)

        # Entries only, no batch record (as after a migration)
        await ledger_repo.replace_all_entries(USER_ID, await source.get_entries(USER_ID))
        migrated = TripLedgerService(USER_ID, ledger_repo, clock=clock)

        batches = await migrated.get_batches()
        assert len(batches) == 1
        assert batches[0].batch_id == result.batch.batch_id
        assert batches[0].entry_count == 2
        assert batches[0].last_entry_hash == result.entries[-1].hash

    @pytest.mark.asyncio
    async def test_export(self, ledger, clock, make_draft):
        """Test the full export."""
        await ledger.create_trip(make_draft())
        export = await ledger.export_ledger()

        assert export.user_id == USER_ID
        assert len(export.entries) == 1
        assert export.batches == []
        assert export.export_timestamp == clock.now


class TestLedgerScenarios:
    """End-to-end histories of a trip."""

    @pytest.mark.asyncio
    async def test_create_amend_void_leaves_verified_history(self, ledger, make_draft):
        """A corrected then voided trip is gone but its three entries verify."""
        trip_id = (await ledger.create_trip(make_draft(date=date(2024, 1, 1), distance=10))).trip_id
        await ledger.amend_trip(trip_id, TripUpdate(distance=25.0), "corrected odometer")
        await ledger.void_trip(trip_id, "duplicate entry")

        assert await ledger.get_trips() == []
        result = await ledger.verify_ledger()
        assert result.is_valid is True
        assert result.total_entries == 3

    @pytest.mark.asyncio
    async def test_voiding_one_imported_trip_keeps_both_entries(self, ledger, make_draft):
        """Voiding one trip of a CSV batch leaves the other live and every entry readable."""
        result = await ledger.import_trips_batch(
            [make_draft(), make_draft(date=date(2024, 2, 13))],
            LedgerSource.CSV_IMPORT,
        )
        kept, voided = [entry.trip_id for entry in result.entries]
        assert {t.id for t in await ledger.get_trips()} == {kept, voided}

        await ledger.void_trip(voided, "Wrong day")

        assert [t.id for t in await ledger.get_trips()] == [kept]
        entries = await ledger.get_entries()
        assert [e.operation for e in entries] == [
            LedgerOperation.IMPORT_BATCH,
            LedgerOperation.IMPORT_BATCH,
            LedgerOperation.VOID,
        ]
        assert [e.trip_id for e in entries[:2]] == [kept, voided]
        assert all(e.source == LedgerSource.CSV_IMPORT for e in entries[:2])
