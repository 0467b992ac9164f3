"""
Trip Ledger Service

Every change to a user's trips goes through here and becomes a new, hashed
ledger entry linked to the previous one. The current trip list is never
stored: it is replayed from the entries.

DESIGN DECISION: The service holds no chain state of its own. Each write
reads the chain tail from the repository, builds the entry, and appends it.
This means:
1. A fresh service instance is always consistent with storage
2. There is no lock: two concurrent writers can both link to the same tail,
   and `verify_ledger` reports the resulting fork
3. The only in-process state is the projected trip cache, which is dropped
   after every write attempt

Repository errors are never caught or retried here. Transport retries are the
repository's business.
"""

import datetime as dt
from collections import OrderedDict
from typing import Callable, Optional, Union
from uuid import uuid4

import structlog
from pydantic import ValidationError

from drivelog.config import get_settings
from drivelog.ledger.errors import LedgerValidationError, TripNotFoundError
from drivelog.ledger.hashing import (
    HashInputError,
    compute_entry_hash,
    compute_root_hash,
    compute_trip_hash,
    verify_entry_hash,
)
from drivelog.models.ledger import (
    GENESIS_HASH,
    BatchImportResult,
    LedgerBatch,
    LedgerEntry,
    LedgerExport,
    LedgerOperation,
    LedgerSource,
    LedgerVerification,
    SourceDocumentRef,
    TripProjection,
)
from drivelog.models.trip import AUTHORED_TRIP_FIELDS, Trip, TripDraft, TripUpdate
from drivelog.services.storage.interface import LedgerRepositoryInterface


logger = structlog.get_logger(__name__)

# Operations that bring a trip into existence
_BIRTH_OPERATIONS = (LedgerOperation.CREATE, LedgerOperation.IMPORT_BATCH)


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _new_id() -> str:
    return str(uuid4())


def replay_trips(entries: list[LedgerEntry]) -> "OrderedDict[str, Trip]":
    """
    Replay entries into the live trip set.

    CREATE and IMPORT_BATCH add the snapshot, AMEND replaces it only if the
    trip is live, VOID removes it. Insertion order is creation order.
    """
    trips: OrderedDict[str, Trip] = OrderedDict()
    for entry in entries:
        if entry.operation in _BIRTH_OPERATIONS:
            trips[entry.trip_id] = entry.trip_snapshot
        elif entry.operation == LedgerOperation.AMEND:
            if entry.trip_id in trips:
                trips[entry.trip_id] = entry.trip_snapshot
        elif entry.operation == LedgerOperation.VOID:
            trips.pop(entry.trip_id, None)
    return trips


class TripLedgerService:
    """
    Append-only ledger of one user's trips.

    Usage:
        ledger = TripLedgerService(user_id, repository)
        entry = await ledger.create_trip(draft)
        trips = await ledger.get_trips()
    """

    def __init__(
        self,
        user_id: str,
        repository: LedgerRepositoryInterface,
        cache_ttl_seconds: Optional[float] = None,
        clock: Optional[Callable[[], dt.datetime]] = None,
    ):
        """
        Args:
            user_id: Owner of the chain
            repository: Durable entry storage
            cache_ttl_seconds: Lifetime of the projected trip cache.
                               Defaults to LEDGER_CACHE_TTL_SECONDS.
            clock: Returns the current UTC time (injectable for tests)
        """
        if not user_id:
            raise LedgerValidationError("user_id is required")

        self.user_id = user_id
        self._repository = repository
        self._cache_ttl = dt.timedelta(
            seconds=(
                cache_ttl_seconds
                if cache_ttl_seconds is not None
                else get_settings().ledger.cache_ttl_seconds
            )
        )
        self._clock = clock or _utcnow
        self._cached_trips: Optional[list[Trip]] = None
        self._cached_at: Optional[dt.datetime] = None

    # =========================================================================
    # WRITES
    # =========================================================================

    async def create_trip(
        self,
        draft: TripDraft,
        source: LedgerSource = LedgerSource.MANUAL,
    ) -> LedgerEntry:
        """
        Record a new trip.

        The trip and its CREATE entry are both anchored to the current
        chain tail.

        Returns:
            The appended entry (its snapshot is the new trip)

        Raises:
            RepositoryError: If reading the tail or appending fails
        """
        try:
            tail = await self._chain_tail()
            trip = self._seal_trip(
                Trip(**draft.model_dump(), id=_new_id()),
                previous_hash=tail,
            )
            entry = self._seal_entry(LedgerEntry(
                id=_new_id(),
                previous_hash=tail,
                timestamp=self._clock(),
                operation=LedgerOperation.CREATE,
                source=source,
                user_id=self.user_id,
                trip_id=trip.id,
                trip_snapshot=trip,
                source_document_id=trip.source_document_id,
                source_document_name=trip.source_document_name,
            ))
            await self._repository.append_entry(self.user_id, entry)
        finally:
            self.clear_cache()

        logger.info(
            "ledger_trip_created",
            user_id=self.user_id,
            trip_id=trip.id,
            entry_hash=entry.hash,
            source=source.value,
        )
        return entry

    async def amend_trip(
        self,
        trip_id: str,
        updates: Union[TripUpdate, dict],
        correction_reason: str,
        source: LedgerSource = LedgerSource.MANUAL,
    ) -> Optional[LedgerEntry]:
        """
        Correct a live trip.

        Updates are merged shallowly onto the current state: a list in the
        update replaces the whole list.

        Returns:
            The AMEND entry, or None when the update changes nothing
            (no entry is appended in that case)

        Raises:
            LedgerValidationError: If the reason is empty or the result is invalid
            TripNotFoundError: If the trip is not live
            RepositoryError: If storage fails
        """
        reason = (correction_reason or "").strip()
        if not reason:
            raise LedgerValidationError("A correction reason is required to amend a trip")

        if isinstance(updates, dict):
            try:
                updates = TripUpdate.model_validate(updates)
            except ValidationError as e:
                raise LedgerValidationError(f"Invalid trip update: {e}")

        try:
            entries = await self._repository.get_entries(self.user_id)
            current = replay_trips(entries).get(trip_id)
            if current is None:
                raise TripNotFoundError(trip_id)

            try:
                merged = Trip.model_validate({
                    **current.model_dump(),
                    **updates.changes(),
                })
            except ValidationError as e:
                raise LedgerValidationError(f"Amended trip {trip_id} is invalid: {e}")

            changed_fields = [
                field for field in AUTHORED_TRIP_FIELDS
                if getattr(merged, field) != getattr(current, field)
            ]
            if not changed_fields:
                logger.debug("ledger_amend_noop", user_id=self.user_id, trip_id=trip_id)
                return None

            tail = self._tail_of(entries)
            trip = self._seal_trip(merged, previous_hash=tail)
            entry = self._seal_entry(LedgerEntry(
                id=_new_id(),
                previous_hash=tail,
                timestamp=self._clock(),
                operation=LedgerOperation.AMEND,
                source=source,
                user_id=self.user_id,
                trip_id=trip_id,
                trip_snapshot=trip,
                correction_reason=reason,
                changed_fields=changed_fields,
                source_document_id=trip.source_document_id,
                source_document_name=trip.source_document_name,
            ))
            await self._repository.append_entry(self.user_id, entry)
        finally:
            self.clear_cache()

        logger.info(
            "ledger_trip_amended",
            user_id=self.user_id,
            trip_id=trip_id,
            changed_fields=changed_fields,
            entry_hash=entry.hash,
        )
        return entry

    async def void_trip(
        self,
        trip_id: str,
        void_reason: str,
        source: LedgerSource = LedgerSource.MANUAL,
    ) -> LedgerEntry:
        """
        Retire a live trip.

        The trip disappears from the projection; its entries stay in the
        chain. The VOID entry keeps the last live state as both its
        snapshot and its previous snapshot.

        Raises:
            LedgerValidationError: If the reason is empty
            TripNotFoundError: If the trip is not live
            RepositoryError: If storage fails
        """
        reason = (void_reason or "").strip()
        if not reason:
            raise LedgerValidationError("A reason is required to void a trip")

        try:
            entries = await self._repository.get_entries(self.user_id)
            current = replay_trips(entries).get(trip_id)
            if current is None:
                raise TripNotFoundError(trip_id)

            entry = self._seal_entry(LedgerEntry(
                id=_new_id(),
                previous_hash=self._tail_of(entries),
                timestamp=self._clock(),
                operation=LedgerOperation.VOID,
                source=source,
                user_id=self.user_id,
                trip_id=trip_id,
                trip_snapshot=current,
                void_reason=reason,
                previous_snapshot=current,
                source_document_id=current.source_document_id,
                source_document_name=current.source_document_name,
            ))
            await self._repository.append_entry(self.user_id, entry)
        finally:
            self.clear_cache()

        logger.info(
            "ledger_trip_voided",
            user_id=self.user_id,
            trip_id=trip_id,
            entry_hash=entry.hash,
        )
        return entry

    async def import_trips_batch(
        self,
        drafts: list[TripDraft],
        source: LedgerSource,
        source_documents: Optional[list[SourceDocumentRef]] = None,
    ) -> BatchImportResult:
        """
        Record several new trips as one batch.

        Entries form a consecutive sub-chain in input order, share one
        batch id and timestamp, and are written with a single append.

        Args:
            drafts: Trips to import, in order
            source: Where the trips came from
            source_documents: Documents the trips were extracted from. The
                              first one becomes the document reference of
                              any draft that has none.

        Raises:
            LedgerValidationError: If `drafts` is empty
            RepositoryError: If storage fails
        """
        if not drafts:
            raise LedgerValidationError("Cannot import an empty batch")

        documents = list(source_documents or [])
        default_document = documents[0] if documents else None
        batch_id = _new_id()

        try:
            timestamp = self._clock()
            previous_hash = await self._chain_tail()
            entries: list[LedgerEntry] = []

            for draft in drafts:
                data = draft.model_dump()
                if default_document is not None and not data.get("source_document_id"):
                    data["source_document_id"] = default_document.id
                    data["source_document_name"] = default_document.name

                trip = self._seal_trip(
                    Trip(**data, id=_new_id()),
                    previous_hash=previous_hash,
                )
                entry = self._seal_entry(LedgerEntry(
                    id=_new_id(),
                    previous_hash=previous_hash,
                    timestamp=timestamp,
                    operation=LedgerOperation.IMPORT_BATCH,
                    source=source,
                    user_id=self.user_id,
                    trip_id=trip.id,
                    trip_snapshot=trip,
                    batch_id=batch_id,
                    source_document_id=trip.source_document_id,
                    source_document_name=trip.source_document_name,
                ))
                entries.append(entry)
                previous_hash = entry.hash

            batch = LedgerBatch(
                batch_id=batch_id,
                timestamp=timestamp,
                source=source,
                user_id=self.user_id,
                entry_count=len(entries),
                first_entry_hash=entries[0].hash,
                last_entry_hash=entries[-1].hash,
                source_documents=documents,
            )

            await self._repository.append_entries(self.user_id, entries)
            await self._repository.create_batch_record(self.user_id, batch)
        finally:
            self.clear_cache()

        logger.info(
            "ledger_batch_imported",
            user_id=self.user_id,
            batch_id=batch_id,
            count=len(entries),
            source=source.value,
        )
        return BatchImportResult(entries=entries, batch=batch)

    # =========================================================================
    # READS
    # =========================================================================

    async def get_trips(self) -> list[Trip]:
        """
        Current live trips, replayed from the ledger.

        Served from cache while it is younger than the configured TTL.
        Callers get copies; changing them never reaches the cache.
        """
        now = self._clock()
        if (
            self._cached_trips is not None
            and self._cached_at is not None
            and now - self._cached_at < self._cache_ttl
        ):
            return [trip.model_copy(deep=True) for trip in self._cached_trips]

        entries = await self._repository.get_entries(self.user_id)
        trips = list(replay_trips(entries).values())
        self._cached_trips = trips
        self._cached_at = now
        return [trip.model_copy(deep=True) for trip in trips]

    async def get_entries(self) -> list[LedgerEntry]:
        """All entries of the chain, in stored order."""
        return await self._repository.get_entries(self.user_id)

    async def get_all_projections(self) -> list[TripProjection]:
        """History summary of every trip ever created, voided ones included."""
        entries = await self._repository.get_entries(self.user_id)
        projections: OrderedDict[str, TripProjection] = OrderedDict()

        for entry in entries:
            existing = projections.get(entry.trip_id)

            if entry.operation in _BIRTH_OPERATIONS:
                document = None
                if entry.source_document_id:
                    document = SourceDocumentRef(
                        id=entry.source_document_id,
                        name=entry.source_document_name or "",
                    )
                projections[entry.trip_id] = TripProjection(
                    trip=entry.trip_snapshot,
                    created_at=entry.timestamp,
                    last_modified_at=entry.timestamp,
                    last_operation=entry.operation,
                    source_document=document,
                )
            elif existing is None or existing.is_voided:
                continue
            elif entry.operation == LedgerOperation.AMEND:
                projections[entry.trip_id] = existing.model_copy(update={
                    "trip": entry.trip_snapshot,
                    "last_modified_at": entry.timestamp,
                    "amendment_count": existing.amendment_count + 1,
                    "last_operation": entry.operation,
                })
            elif entry.operation == LedgerOperation.VOID:
                projections[entry.trip_id] = existing.model_copy(update={
                    "is_voided": True,
                    "last_modified_at": entry.timestamp,
                    "last_operation": entry.operation,
                })

        return list(projections.values())

    async def get_projected_trip(self, trip_id: str) -> Optional[TripProjection]:
        """History summary of one trip, or None if it never existed."""
        for projection in await self.get_all_projections():
            if projection.trip.id == trip_id:
                return projection
        return None

    async def get_trip_history(self, trip_id: str) -> list[LedgerEntry]:
        """Every entry that touched a trip, oldest first."""
        entries = await self._repository.get_entries(self.user_id)
        return [entry for entry in entries if entry.trip_id == trip_id]

    async def get_batch_entries(self, batch_id: str) -> list[LedgerEntry]:
        """The entries of one import batch."""
        return await self._repository.get_entries_by_batch(batch_id, self.user_id)

    async def get_batches(self) -> list[LedgerBatch]:
        """
        Batch records of this user.

        Falls back to rebuilding them from the entries' batch ids when the
        backend holds no batch records (e.g. after a migration).
        """
        batches = await self._repository.get_batches(self.user_id)
        if batches:
            return batches

        grouped: OrderedDict[str, list[LedgerEntry]] = OrderedDict()
        for entry in await self._repository.get_entries(self.user_id):
            if entry.batch_id:
                grouped.setdefault(entry.batch_id, []).append(entry)

        return [
            LedgerBatch(
                batch_id=batch_id,
                timestamp=members[0].timestamp,
                source=members[0].source,
                user_id=self.user_id,
                entry_count=len(members),
                first_entry_hash=members[0].hash,
                last_entry_hash=members[-1].hash,
            )
            for batch_id, members in grouped.items()
        ]

    async def export_ledger(self) -> LedgerExport:
        """Full dump of entries and batches."""
        return LedgerExport(
            user_id=self.user_id,
            entries=await self._repository.get_entries(self.user_id),
            batches=await self.get_batches(),
            export_timestamp=self._clock(),
        )

    # =========================================================================
    # INTEGRITY
    # =========================================================================

    async def verify_ledger(self) -> LedgerVerification:
        """
        Walk the chain and check it end to end.

        Checks, in stored order:
        1. The first entry starts at the genesis hash
        2. Every later entry links to the hash of the one before it
        3. Every entry's stored hash matches its recomputed content hash

        Stops at the first failure. Never writes anything.

        Raises:
            RepositoryError: If the chain can't be read
        """
        entries = await self._repository.get_entries(self.user_id)
        broken_at: Optional[str] = None
        failure: Optional[str] = None

        for index, entry in enumerate(entries):
            if index == 0 and entry.previous_hash != GENESIS_HASH:
                failure = "First entry does not start at the genesis hash"
            elif index > 0 and entry.previous_hash != entries[index - 1].hash:
                failure = f"Entry {index} does not link to the entry before it"
            elif not self._hash_matches(entry):
                failure = f"Entry {index} content does not match its hash"

            if failure:
                broken_at = entry.hash
                break

        result = LedgerVerification(
            is_valid=failure is None,
            total_entries=len(entries),
            root_hash=compute_root_hash(entries),
            first_entry=entries[0] if entries else None,
            last_entry=entries[-1] if entries else None,
            broken_chain_at=broken_at,
            failure_reason=failure,
            verification_timestamp=self._clock(),
        )

        if result.is_valid:
            logger.info(
                "ledger_verified",
                user_id=self.user_id,
                total_entries=result.total_entries,
                root_hash=result.root_hash,
            )
        else:
            logger.warning(
                "ledger_verification_failed",
                user_id=self.user_id,
                broken_chain_at=broken_at,
                reason=failure,
            )
        return result

    def clear_cache(self) -> None:
        """Drop the projected trip cache."""
        self._cached_trips = None
        self._cached_at = None

    # =========================================================================
    # HELPERS
    # =========================================================================

    @staticmethod
    def _tail_of(entries: list[LedgerEntry]) -> str:
        return entries[-1].hash if entries else GENESIS_HASH

    async def _chain_tail(self) -> str:
        return self._tail_of(await self._repository.get_entries(self.user_id))

    @staticmethod
    def _seal_trip(trip: Trip, previous_hash: str) -> Trip:
        anchored = trip.model_copy(update={"previous_hash": previous_hash, "hash": None})
        return anchored.model_copy(update={"hash": compute_trip_hash(anchored)})

    @staticmethod
    def _seal_entry(entry: LedgerEntry) -> LedgerEntry:
        return entry.model_copy(update={"hash": compute_entry_hash(entry)})

    @staticmethod
    def _hash_matches(entry: LedgerEntry) -> bool:
        try:
            return verify_entry_hash(entry)
        except HashInputError:
            return False
