"""Append-only booking ledger: interface, in-memory store and Django ORM store.

Committed entries are never modified. A correction appends a new entry that
``supersedes`` the old one and retires the old one in the same atomic step;
retirement is recorded beside the entry, not on it.

Appends must happen inside ``ledger.serialize(keys)`` for every calendar day
the booking occupies for its staff member, so that the conflict check and the
append form one critical section.
"""

import logging
import threading
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import replace
from datetime import timedelta
from typing import Callable

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, transaction

from django_careledger.exceptions import (
    ConcurrencyViolation,
    EntryAlreadyRetiredError,
    EntryNotFoundError,
    ImmutableEntryError,
)
from django_careledger.intervals import ActorKind, parse_date
from django_careledger.locks import KeyedLocks, LockKey, booking_keys
from django_careledger.models import BookingEntry, BookingRetirement, LedgerLock
from django_careledger.records import BookingRecord

logger = logging.getLogger(__name__)

Listener = Callable[[str, str], None]


class BookingLedger(ABC):
    """
    Storage interface for committed bookings.

    Subclasses implement the read side (``query``, ``entries_for_customer``,
    ``get``, ``is_retired``) and the two write primitives ``_commit`` and
    ``_retire``. Serialization, the lock guard and listener notification
    live here.

    Usage:
        ledger = InMemoryBookingLedger()
        keys = booking_keys(ActorKind.STAFF, record.staff_id, record.occupied_dates)
        with ledger.serialize(keys):
            entry_id = ledger.append(record)
    """

    def __init__(self, locks: KeyedLocks | None = None):
        self.locks = locks if locks is not None else KeyedLocks()
        self._listeners: list[Listener] = []

    def add_listener(self, callback: Listener) -> None:
        """Register ``callback(customer_id, year_month)``, called after every append or retirement."""
        self._listeners.append(callback)

    def remove_listener(self, callback: Listener) -> None:
        self._listeners.remove(callback)

    def _notify(self, record: BookingRecord) -> None:
        for callback in list(self._listeners):
            callback(record.customer_id, record.year_month)

    def _notify_after_write(self, record: BookingRecord) -> None:
        """Notify listeners once the write is visible to other readers."""
        self._notify(record)

    @property
    def reads_are_committed(self) -> bool:
        """True when reads cannot see writes that may still be rolled back."""
        return True

    @contextmanager
    def serialize(self, keys):
        """Mutual-exclusion scope for ``keys``; re-entrant within one thread."""
        with self.locks.hold(*keys):
            yield

    def _require_serialized(self, record: BookingRecord) -> None:
        for key in booking_keys(ActorKind.STAFF, record.staff_id, record.occupied_dates):
            if not self.locks.is_held(key):
                raise ConcurrencyViolation(key)

    def append(self, record: BookingRecord) -> str:
        """
        Commit a new entry.

        Returns:
            The id of the committed entry

        Raises:
            ConcurrencyViolation: If the staff/day keys are not held
        """
        self._require_serialized(record)
        committed = self._commit(record)
        logger.info(
            "Committed booking %s: staff %s, customer %s, %s %s-%s",
            committed.id, committed.staff_id, committed.customer_id,
            committed.service_date, f"{committed.start_time:%H:%M}",
            f"{committed.end_time:%H:%M}",
        )
        self._notify_after_write(committed)
        return committed.id

    def supersede(self, old_id: str, record: BookingRecord, reason: str = "") -> str:
        """
        Append ``record`` as the replacement of ``old_id`` and retire the old entry.

        Both happen atomically; the old entry is never modified.

        Raises:
            EntryNotFoundError: If ``old_id`` does not exist
            EntryAlreadyRetiredError: If ``old_id`` was already retired
            ConcurrencyViolation: If the new record's staff/day keys are not held
        """
        old = self.get(old_id)
        if self.is_retired(old_id):
            raise EntryAlreadyRetiredError(old_id)
        record = replace(record, id="", supersedes=old.id)
        self._require_serialized(record)
        committed = self._commit(record, retire_id=old.id, reason=reason or "superseded")
        logger.info("Booking %s superseded by %s", old.id, committed.id)
        self._notify_after_write(old)
        self._notify_after_write(committed)
        return committed.id

    def retire(self, entry_id: str, reason: str = "") -> None:
        """
        Logically remove an entry from conflict checks and aggregation.

        Raises:
            EntryNotFoundError: If the entry does not exist
            EntryAlreadyRetiredError: If the entry was already retired
        """
        record = self.get(entry_id)
        if self.is_retired(entry_id):
            raise EntryAlreadyRetiredError(entry_id)
        self._retire(record.id, reason)
        logger.info("Retired booking %s: %s", record.id, reason or "no reason given")
        self._notify_after_write(record)

    def query_around(self, actor_kind, actor_id: str, days) -> list[BookingRecord]:
        """Live entries of an actor starting within one day of any of ``days``."""
        wanted = set()
        for day in days:
            day = parse_date(day)
            wanted.update((day - timedelta(days=1), day, day + timedelta(days=1)))
        entries = []
        for day in sorted(wanted):
            entries.extend(self.query(actor_kind, actor_id, day))
        return entries

    @abstractmethod
    def query(self, actor_kind, actor_id: str, service_date) -> list[BookingRecord]:
        """Live entries of an actor whose service date is ``service_date``."""

    @abstractmethod
    def entries_for_customer(self, customer_id: str) -> list[BookingRecord]:
        """Live entries of a customer, ordered by date and start time."""

    @abstractmethod
    def get(self, entry_id: str) -> BookingRecord:
        """Fetch an entry, retired or not. Raises EntryNotFoundError."""

    @abstractmethod
    def is_retired(self, entry_id: str) -> bool:
        pass

    @abstractmethod
    def _commit(self, record: BookingRecord, retire_id: str | None = None, reason: str = "") -> BookingRecord:
        """Store ``record`` (and retire ``retire_id``) atomically; return the stored record."""

    @abstractmethod
    def _retire(self, entry_id: str, reason: str) -> None:
        pass


def _ordering(record: BookingRecord):
    return (record.service_date, record.start_time, record.id)


class InMemoryBookingLedger(BookingLedger):
    """
    Thread-safe dict-backed ledger.

    For hosts that keep their own storage and feed entries in, and for tests.
    """

    def __init__(self, locks: KeyedLocks | None = None):
        super().__init__(locks)
        self._store_lock = threading.RLock()
        self._entries: dict[str, BookingRecord] = {}
        self._retirements: dict[str, str] = {}

    def __len__(self) -> int:
        with self._store_lock:
            return len(self._entries)

    def _live(self):
        with self._store_lock:
            return [
                record for entry_id, record in self._entries.items()
                if entry_id not in self._retirements
            ]

    def query(self, actor_kind, actor_id, service_date):
        kind = ActorKind(actor_kind)
        service_date = parse_date(service_date)
        attribute = "staff_id" if kind is ActorKind.STAFF else "customer_id"
        matches = [
            record for record in self._live()
            if record.service_date == service_date and getattr(record, attribute) == actor_id
        ]
        return sorted(matches, key=_ordering)

    def entries_for_customer(self, customer_id):
        return sorted(
            (record for record in self._live() if record.customer_id == customer_id),
            key=_ordering,
        )

    def get(self, entry_id):
        with self._store_lock:
            try:
                return self._entries[entry_id]
            except KeyError:
                raise EntryNotFoundError(entry_id)

    def is_retired(self, entry_id):
        with self._store_lock:
            return entry_id in self._retirements

    def retirement_reason(self, entry_id: str) -> str | None:
        with self._store_lock:
            return self._retirements.get(entry_id)

    def _commit(self, record, retire_id=None, reason=""):
        with self._store_lock:
            if retire_id is not None and retire_id in self._retirements:
                raise EntryAlreadyRetiredError(retire_id)
            entry_id = record.id or uuid.uuid4().hex
            if entry_id in self._entries:
                raise ImmutableEntryError(f"Booking entry '{entry_id}' is already committed")
            committed = replace(record, id=entry_id)
            self._entries[entry_id] = committed
            if retire_id is not None:
                self._retirements[retire_id] = reason
            return committed

    def _retire(self, entry_id, reason):
        with self._store_lock:
            if entry_id in self._retirements:
                raise EntryAlreadyRetiredError(entry_id)
            self._retirements[entry_id] = reason


class OrmBookingLedger(BookingLedger):
    """
    Ledger backed by BookingEntry / BookingRetirement rows.

    ``serialize`` opens a transaction and locks the matching LedgerLock rows
    with SELECT FOR UPDATE, so check-then-append is also serialized across
    processes on databases that support row locks.
    """

    @contextmanager
    def serialize(self, keys):
        keys = list(keys)
        with self.locks.hold(*keys), transaction.atomic():
            LedgerLock.acquire(key for key in keys if isinstance(key, LockKey))
            yield

    def _notify_after_write(self, record):
        # Listeners must not observe a write that can still roll back.
        transaction.on_commit(lambda: self._notify(record))

    @property
    def reads_are_committed(self):
        return not transaction.get_connection().in_atomic_block

    def query(self, actor_kind, actor_id, service_date):
        entries = (
            BookingEntry.objects.live()
            .for_actor(actor_kind, actor_id)
            .filter(service_date=parse_date(service_date))
        )
        return [entry.to_record() for entry in entries]

    def entries_for_customer(self, customer_id):
        entries = BookingEntry.objects.live().for_customer(customer_id)
        return [entry.to_record() for entry in entries]

    def get(self, entry_id):
        try:
            return BookingEntry.objects.get(pk=entry_id).to_record()
        except (BookingEntry.DoesNotExist, DjangoValidationError, ValueError):
            raise EntryNotFoundError(entry_id)

    def is_retired(self, entry_id):
        return BookingRetirement.objects.filter(entry_id=entry_id).exists()

    @transaction.atomic
    def _commit(self, record, retire_id=None, reason=""):
        if retire_id is not None:
            self._retire(retire_id, reason)
        entry = BookingEntry.from_record(record)
        entry.save()
        return entry.to_record()

    def _retire(self, entry_id, reason):
        try:
            with transaction.atomic():
                BookingRetirement.objects.create(entry_id=entry_id, reason=reason)
        except IntegrityError:
            raise EntryAlreadyRetiredError(entry_id)
