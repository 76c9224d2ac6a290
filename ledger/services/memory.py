"""
In-memory implementations of the store and directory.

They keep unsaved model instances in dictionaries and hand out copies, so
callers mutate their own instance and only :meth:`save_pool` /
:meth:`save_booking` publish a change.  Row locks are per-key re-entrant
locks held until the outermost unit of work ends, which gives the same
serialisation per pool as ``select_for_update`` and lets tests exercise
the ledger from several threads without a database.
"""
from __future__ import annotations

import copy
import itertools
import threading
from collections import defaultdict
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

from django.utils import timezone

from ledger.models import Booking, ResourcePool
from .directory import Directory
from .store import LedgerStore, generate_booking_reference


class _UnitOfWork(threading.local):
    def __init__(self):
        self.depth = 0
        self.journal: list[Callable[[], None]] = []
        self.held: list = []


class MemoryLedgerStore(LedgerStore):

    def __init__(self, clock=timezone.now):
        self.clock = clock
        self._hospitals: set = set()
        self._pools: dict = {}
        self._bookings: dict = {}
        self._audit: list = []
        self._history: list = []
        self._ids = defaultdict(lambda: itertools.count(1))
        self._guard = threading.Lock()
        self._row_locks: dict = defaultdict(threading.RLock)
        self._uow = _UnitOfWork()

    # -- seeding helpers -------------------------------------------------
    def register_hospital(self, hospital_id) -> None:
        self._hospitals.add(hospital_id)

    def seed_pool(self, hospital_id, resource_type, **counters) -> ResourcePool:
        self.register_hospital(hospital_id)
        pool = ResourcePool(id=self._next_id('pool'), hospital_id=hospital_id, resource_type=resource_type, **counters)
        with self._guard:
            self._pools[(hospital_id, resource_type)] = pool
        return copy.copy(pool)

    # -- unit of work ----------------------------------------------------
    @contextmanager
    def atomic(self) -> Iterator[None]:
        uow = self._uow
        mark = len(uow.journal)
        uow.depth += 1
        try:
            yield
        except BaseException:
            self._rollback(mark)
            raise
        finally:
            uow.depth -= 1
            if uow.depth == 0:
                while uow.held:
                    uow.held.pop().release()
                uow.journal = []

    def _rollback(self, mark: int) -> None:
        journal = self._uow.journal
        while len(journal) > mark:
            undo = journal.pop()
            with self._guard:
                undo()

    def _record(self, undo: Callable[[], None]) -> None:
        if self._uow.depth:
            self._uow.journal.append(undo)

    def _lock(self, key) -> None:
        if not self._uow.depth:
            raise RuntimeError('row locks require an open unit of work')
        with self._guard:
            lock = self._row_locks[key]
        lock.acquire()
        self._uow.held.append(lock)

    def _next_id(self, kind: str) -> int:
        with self._guard:
            return next(self._ids[kind])

    # -- hospitals -------------------------------------------------------
    def hospital_exists(self, hospital_id) -> bool:
        return hospital_id in self._hospitals

    # -- pools -----------------------------------------------------------
    def get_pool(self, hospital_id, resource_type):
        with self._guard:
            pool = self._pools.get((hospital_id, resource_type))
        return copy.copy(pool) if pool is not None else None

    def lock_pool(self, hospital_id, resource_type):
        self._lock(('pool', hospital_id, resource_type))
        return self.get_pool(hospital_id, resource_type)

    def create_pool(self, hospital_id, resource_type):
        self._lock(('pool', hospital_id, resource_type))
        existing = self.get_pool(hospital_id, resource_type)
        if existing is not None:
            return existing
        pool = ResourcePool(id=self._next_id('pool'), hospital_id=hospital_id, resource_type=resource_type)
        self.save_pool(pool)
        return copy.copy(pool)

    def save_pool(self, pool):
        key = (pool.hospital_id, pool.resource_type)
        pool.updated_at = self.clock()
        with self._guard:
            previous = self._pools.get(key)
            self._pools[key] = copy.copy(pool)

        def undo():
            if previous is None:
                self._pools.pop(key, None)
            else:
                self._pools[key] = previous
        self._record(undo)

    def pools_for_hospital(self, hospital_id):
        with self._guard:
            pools = [p for (hid, _), p in self._pools.items() if hid == hospital_id]
        return [copy.copy(p) for p in sorted(pools, key=lambda p: p.resource_type)]

    def held_quantity(self, hospital_id, resource_type) -> int:
        with self._guard:
            return sum(
                b.allocated_quantity for b in self._bookings.values()
                if b.hospital_id == hospital_id and b.resource_type == resource_type
                and b.status == Booking.STATUS_APPROVED
            )

    # -- bookings --------------------------------------------------------
    def get_booking(self, booking_id):
        with self._guard:
            booking = self._bookings.get(booking_id)
        return copy.copy(booking) if booking is not None else None

    def lock_booking(self, booking_id):
        self._lock(('booking', booking_id))
        return self.get_booking(booking_id)

    def add_booking(self, booking):
        now = self.clock()
        booking.id = self._next_id('booking')
        booking.booking_reference = booking.booking_reference or generate_booking_reference(now)
        booking.created_at = booking.created_at or now
        self.save_booking(booking)
        return booking

    def save_booking(self, booking):
        booking.updated_at = self.clock()
        key = booking.id
        with self._guard:
            previous = self._bookings.get(key)
            self._bookings[key] = copy.copy(booking)

        def undo():
            if previous is None:
                self._bookings.pop(key, None)
            else:
                self._bookings[key] = previous
        self._record(undo)

    def _select(self, predicate) -> list:
        with self._guard:
            return [copy.copy(b) for b in self._bookings.values() if predicate(b)]

    def find_open_booking(self, user_id, hospital_id, resource_type):
        matches = self._select(
            lambda b: b.user_id == user_id and b.hospital_id == hospital_id
            and b.resource_type == resource_type and b.status in Booking.OPEN_STATUSES
        )
        return matches[0] if matches else None

    def pending_bookings(self, hospital_id, *, urgency=None, resource_type=None):
        matches = self._select(
            lambda b: b.hospital_id == hospital_id and b.status == Booking.STATUS_PENDING
            and (not urgency or b.urgency == urgency)
            and (not resource_type or b.resource_type == resource_type)
        )
        return sorted(matches, key=lambda b: (b.created_at, b.id))

    def expired_pending_ids(self, now, hospital_id=None):
        matches = self._select(
            lambda b: b.status == Booking.STATUS_PENDING and b.expires_at is not None
            and b.expires_at < now and (not hospital_id or b.hospital_id == hospital_id)
        )
        return [b.id for b in sorted(matches, key=lambda b: (b.expires_at, b.id))]

    def booking_ids(self, *, hospital_id=None, status=None, limit=None):
        matches = self._select(
            lambda b: (not hospital_id or b.hospital_id == hospital_id) and (not status or b.status == status)
        )
        ids = sorted(b.id for b in matches)
        return ids[:limit] if limit else ids

    def hospital_bookings(self, hospital_id, *, status=None, start=None, end=None, limit=None, offset=0):
        matches = self._select(
            lambda b: b.hospital_id == hospital_id and (not status or b.status == status)
            and (not start or b.created_at >= start) and (not end or b.created_at <= end)
        )
        matches.sort(key=lambda b: (b.updated_at, b.id), reverse=True)
        page = matches[offset:offset + limit] if limit else matches[offset:]
        return page, len(matches)

    def user_bookings(self, user_id):
        matches = self._select(lambda b: b.user_id == user_id)
        return sorted(matches, key=lambda b: (b.created_at, b.id), reverse=True)

    # -- append-only trails ----------------------------------------------
    def _append(self, rows: list, entry, kind: str):
        entry.id = self._next_id(kind)
        entry.timestamp = self.clock()
        stored = copy.copy(entry)
        with self._guard:
            rows.append(stored)

        def undo():
            rows.remove(stored)
        self._record(undo)
        return entry

    def append_audit(self, entry):
        return self._append(self._audit, entry, 'audit')

    def audit_entries(self, *, hospital_id=None, resource_type=None, change_type=None, booking_id=None,
                      start=None, end=None):
        with self._guard:
            rows = list(self._audit)
        rows = [
            e for e in rows
            if (not hospital_id or e.hospital_id == hospital_id)
            and (not resource_type or e.resource_type == resource_type)
            and (not change_type or e.change_type == change_type)
            and (not booking_id or e.booking_id == booking_id)
            and (not start or e.timestamp >= start)
            and (not end or e.timestamp <= end)
        ]
        return [copy.copy(e) for e in sorted(rows, key=lambda e: (e.timestamp, e.id), reverse=True)]

    def append_history(self, entry):
        return self._append(self._history, entry, 'history')

    def history_for(self, booking_id):
        with self._guard:
            rows = [e for e in self._history if e.booking_id == booking_id]
        return [copy.copy(e) for e in sorted(rows, key=lambda e: (e.timestamp, e.id))]


class MemoryDirectory(Directory):
    """Directory backed by dictionaries of unsaved hospitals and users."""

    def __init__(self, hospitals=(), users=()):
        self.hospitals = {h.id: h for h in hospitals}
        self.users = {u.id: u for u in users}

    def add_hospital(self, hospital):
        self.hospitals[hospital.id] = hospital
        return hospital

    def add_user(self, user):
        self.users[user.id] = user
        return user

    def find_hospital(self, hospital_id):
        return self.hospitals.get(hospital_id)

    def find_user(self, user_id) -> Optional[object]:
        return self.users.get(user_id)
