"""
Tests for verify_ledger.

Tampering is simulated the way an attacker with storage access would do it:
by rewriting stored entries through the repository.
"""

import pytest
from datetime import date

from drivelog.ledger import (
    GENESIS_HASH,
    TripLedgerService,
    compute_entry_hash,
    compute_root_hash,
    sha256_hex,
)
from drivelog.models import LedgerSource, TripUpdate
from tests.conftest import USER_ID


async def _build_chain(ledger: TripLedgerService, make_draft) -> None:
    """CREATE, AMEND, IMPORT_BATCH x2, VOID."""
    trip_id = (await ledger.create_trip(make_draft())).trip_id
    await ledger.amend_trip(trip_id, TripUpdate(distance=70.0), "Detour")
    await ledger.import_trips_batch(
        [make_draft(date=date(2024, 2, 13)), make_draft(date=date(2024, 2, 14))],
        LedgerSource.CSV_IMPORT,
    )
    await ledger.void_trip(trip_id, "Cancelled")


class TestValidChains:
    """Verification of untouched ledgers."""

    @pytest.mark.asyncio
    async def test_empty_ledger_is_valid(self, ledger):
        """Test verification of an empty ledger."""
        result = await ledger.verify_ledger()

        assert result.is_valid is True
        assert result.total_entries == 0
        assert result.root_hash == sha256_hex("")
        assert result.first_entry is None
        assert result.last_entry is None
        assert result.broken_chain_at is None

    @pytest.mark.asyncio
    async def test_mixed_operations_verify(self, ledger, make_draft):
        """Every operation type produces a verifiable chain."""
        await _build_chain(ledger, make_draft)
        entries = await ledger.get_entries()

        result = await ledger.verify_ledger()

        assert result.is_valid is True
        assert result.total_entries == 5
        assert result.first_entry == entries[0]
        assert result.last_entry == entries[-1]
        assert result.root_hash == compute_root_hash(entries)

    @pytest.mark.asyncio
    async def test_verification_is_read_only_and_repeatable(self, ledger, make_draft):
        """Two verifications over the same chain agree and change nothing."""
        await _build_chain(ledger, make_draft)
        before = await ledger.get_entries()

        first = await ledger.verify_ledger()
        second = await ledger.verify_ledger()

        assert first.root_hash == second.root_hash
        assert await ledger.get_entries() == before

    @pytest.mark.asyncio
    async def test_root_hash_changes_on_append(self, ledger, make_draft):
        """Appending moves the root."""
        await ledger.create_trip(make_draft())
        before = (await ledger.verify_ledger()).root_hash

        await ledger.create_trip(make_draft())
        assert (await ledger.verify_ledger()).root_hash != before


class TestTamperDetection:
    """Verification of ledgers modified outside the service."""

    @pytest.mark.asyncio
    async def test_edited_snapshot(self, ledger, ledger_repo, make_draft):
        """Changing a stored trip is detected at that entry."""
        await _build_chain(ledger, make_draft)
        entries = await ledger_repo.get_entries(USER_ID)

        snapshot = entries[1].trip_snapshot.model_copy(update={"distance": 7.0})
        entries[1] = entries[1].model_copy(update={"trip_snapshot": snapshot})
        await ledger_repo.replace_all_entries(USER_ID, entries)

        result = await ledger.verify_ledger()

        assert result.is_valid is False
        assert result.broken_chain_at == entries[1].hash
        assert result.failure_reason
        assert result.total_entries == 5

    @pytest.mark.asyncio
    async def test_edited_reason(self, ledger, ledger_repo, make_draft):
        """Changing entry metadata is detected."""
        await _build_chain(ledger, make_draft)
        entries = await ledger_repo.get_entries(USER_ID)

        entries[-1] = entries[-1].model_copy(update={"void_reason": "Never happened"})
        await ledger_repo.replace_all_entries(USER_ID, entries)

        result = await ledger.verify_ledger()
        assert result.is_valid is False
        assert result.broken_chain_at == entries[-1].hash

    @pytest.mark.asyncio
    async def test_rehashed_entry_breaks_the_next_link(self, ledger, ledger_repo, make_draft):
        """Recomputing a tampered entry's hash moves the break to its successor."""
        await _build_chain(ledger, make_draft)
        entries = await ledger_repo.get_entries(USER_ID)

        snapshot = entries[1].trip_snapshot.model_copy(update={"distance": 7.0})
        forged = entries[1].model_copy(update={"trip_snapshot": snapshot})
        entries[1] = forged.model_copy(update={"hash": compute_entry_hash(forged)})
        await ledger_repo.replace_all_entries(USER_ID, entries)

        result = await ledger.verify_ledger()
        assert result.is_valid is False
        assert result.broken_chain_at == entries[2].hash

    @pytest.mark.asyncio
    async def test_deleted_entry(self, ledger, ledger_repo, make_draft):
        """Removing an entry breaks the link after the gap."""
        await _build_chain(ledger, make_draft)
        entries = await ledger_repo.get_entries(USER_ID)

        del entries[2]
        await ledger_repo.replace_all_entries(USER_ID, entries)

        result = await ledger.verify_ledger()
        assert result.is_valid is False
        assert result.broken_chain_at == entries[2].hash

    @pytest.mark.asyncio
    async def test_reordered_entries(self, ledger, ledger_repo, make_draft):
        """Swapping two entries is detected."""
        await _build_chain(ledger, make_draft)
        entries = await ledger_repo.get_entries(USER_ID)

        entries[1], entries[2] = entries[2], entries[1]
        await ledger_repo.replace_all_entries(USER_ID, entries)

        result = await ledger.verify_ledger()
        assert result.is_valid is False
        assert result.broken_chain_at == entries[1].hash

    @pytest.mark.asyncio
    async def test_first_entry_must_start_at_genesis(self, ledger, ledger_repo, make_draft):
        """A chain whose head was removed no longer starts at genesis."""
        await _build_chain(ledger, make_draft)
        entries = await ledger_repo.get_entries(USER_ID)

        await ledger_repo.replace_all_entries(USER_ID, entries[1:])

        result = await ledger.verify_ledger()
        assert result.is_valid is False
        assert entries[1].previous_hash != GENESIS_HASH
        assert result.broken_chain_at == entries[1].hash

    @pytest.mark.asyncio
    async def test_forked_chain(self, ledger_repo, clock, make_draft):
        """Two writers linking to the same tail produce a reportable fork."""
        writer_a = TripLedgerService(USER_ID, ledger_repo, clock=clock)
        writer_b = TripLedgerService(USER_ID, ledger_repo, clock=clock)
        base = await writer_a.create_trip(make_draft())

        # writer_b read the tail before writer_a's second append landed
        stale = await writer_b.create_trip(make_draft(date=date(2024, 2, 13)))
        entries = await ledger_repo.get_entries(USER_ID)
        forked = await TripLedgerService(
            USER_ID, _RepositoryAt(entries[:1]), clock=clock
        ).create_trip(make_draft(date=date(2024, 2, 14)))
        await ledger_repo.append_entry(USER_ID, forked)

        assert stale.previous_hash == base.hash
        assert forked.previous_hash == base.hash

        result = await writer_a.verify_ledger()
        assert result.is_valid is False
        assert result.broken_chain_at == forked.hash


class _RepositoryAt:
    """Read-only view of a chain prefix; appends are discarded."""

    def __init__(self, entries):
        self._entries = list(entries)

    async def get_entries(self, user_id):
        return list(self._entries)

    async def append_entry(self, user_id, entry):
        pass
