"""
KeyedLockRegistry -- in-process serialization units.

Responsibility:
    Serialize work per request id and per project id inside one process.
    Database row locks (``SELECT ... FOR UPDATE``) give the same guarantee
    across processes on PostgreSQL; this registry covers backends where
    row locks are a no-op (SQLite) and keeps threads from queueing inside
    the database.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.  Used by the
    TransactionCoordinator before it opens a transaction.

Invariants enforced:
    - Keys requested together are acquired in one sorted order, so two
      callers holding overlapping key sets can never deadlock.
    - A key's lock is discarded once nobody holds or waits for it.

Failure modes:
    - None raised here; callers block until the keys are free.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from uuid import UUID

from trip_kernel.logging_config import get_logger

logger = get_logger("services.serialization")

REQUEST_UNIT = "request"
PROJECT_UNIT = "project"

LockKey = tuple[str, str]


def request_key(request_id: UUID) -> LockKey:
    return (REQUEST_UNIT, str(request_id))


def project_key(project_id: UUID) -> LockKey:
    return (PROJECT_UNIT, str(project_id))


@dataclass
class _Entry:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


class KeyedLockRegistry:
    """Reference-counted map of key -> lock."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: dict[LockKey, _Entry] = {}

    def _checkout(self, key: LockKey) -> _Entry:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = _Entry()
                self._entries[key] = entry
            entry.users += 1
            return entry

    def _checkin(self, key: LockKey, entry: _Entry) -> None:
        with self._guard:
            entry.users -= 1
            if entry.users == 0:
                del self._entries[key]

    @contextmanager
    def hold(self, *keys: LockKey) -> Iterator[tuple[LockKey, ...]]:
        """Hold every key in *keys* for the duration of the block."""
        ordered = tuple(sorted(set(keys)))
        acquired: list[tuple[LockKey, _Entry]] = []
        try:
            for key in ordered:
                entry = self._checkout(key)
                try:
                    entry.lock.acquire()
                except BaseException:
                    self._checkin(key, entry)
                    raise
                acquired.append((key, entry))
            logger.debug("serialization_units_acquired", extra={"keys": list(ordered)})
            yield ordered
        finally:
            for key, entry in reversed(acquired):
                entry.lock.release()
                self._checkin(key, entry)

    def active_keys(self) -> frozenset[LockKey]:
        """Keys currently held or awaited."""
        with self._guard:
            return frozenset(self._entries)
