"""Per-key mutual exclusion for check-then-append sequences.

Booking requests for the same staff member and day, and identifier
generation for the same pattern, must be serialized. Requests for different
keys never wait on each other.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Hashable, NamedTuple
from datetime import date

from django_careledger.intervals import ActorKind

logger = logging.getLogger(__name__)


class LockKey(NamedTuple):
    """Serialization key for bookings of one actor on one calendar day."""

    actor_kind: ActorKind
    actor_id: str
    service_date: date


def booking_keys(actor_kind, actor_id: str, days) -> list[LockKey]:
    """Lock keys for every calendar day a booking occupies."""
    kind = ActorKind(actor_kind)
    return sorted({LockKey(kind, actor_id, day) for day in days})


class _Slot:
    __slots__ = ("lock", "owner", "depth", "waiters")

    def __init__(self):
        self.lock = threading.Lock()
        self.owner = None
        self.depth = 0
        self.waiters = 0


class KeyedLocks:
    """
    Registry of re-entrant locks keyed by arbitrary hashable keys.

    Locks are created on first use and dropped once nobody holds or waits
    for them, so the registry does not grow with the number of keys seen.

    Usage:
        locks = KeyedLocks()
        with locks.hold(key_a, key_b):
            ...  # both keys held by this thread
        locks.is_held(key_a)  # False
    """

    def __init__(self):
        self._slots: dict[Hashable, _Slot] = {}
        self._registry_lock = threading.Lock()

    def _acquire(self, key):
        me = threading.get_ident()
        with self._registry_lock:
            slot = self._slots.get(key)
            if slot is None:
                slot = self._slots[key] = _Slot()
            if slot.owner == me:
                slot.depth += 1
                return
            slot.waiters += 1

        slot.lock.acquire()

        with self._registry_lock:
            slot.waiters -= 1
            slot.owner = me
            slot.depth = 1

    def _release(self, key):
        with self._registry_lock:
            slot = self._slots[key]
            slot.depth -= 1
            if slot.depth:
                return
            slot.owner = None
            if not slot.waiters:
                del self._slots[key]
            slot.lock.release()

    @contextmanager
    def hold(self, *keys):
        """Hold every key for the duration of the block.

        Keys are acquired in sorted order so two callers asking for
        overlapping key sets cannot deadlock.
        """
        ordered = sorted(set(keys), key=repr)
        acquired = []
        try:
            for key in ordered:
                self._acquire(key)
                acquired.append(key)
            yield
        finally:
            for key in reversed(acquired):
                self._release(key)

    def is_held(self, key) -> bool:
        """True if the calling thread currently holds ``key``."""
        with self._registry_lock:
            slot = self._slots.get(key)
            return slot is not None and slot.owner == threading.get_ident()

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._slots)


class NullLocks(KeyedLocks):
    """Lock registry that never blocks.

    For hosts that already serialize requests elsewhere (single worker,
    external queue). ``is_held`` always reports True.
    """

    @contextmanager
    def hold(self, *keys):
        yield

    def is_held(self, key) -> bool:
        return True
