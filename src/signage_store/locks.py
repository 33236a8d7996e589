from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable, TypeVar

from .errors import LockReentryError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Keys held by the current logical operation. Tasks spawned inside a critical
# section inherit a copy, so they see their parent's keys too.
_held_keys: ContextVar[frozenset[str]] = ContextVar("signage_store_held_keys", default=frozenset())


@dataclass
class _LockEntry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class ResourceLockManager:
    """Named, FIFO mutual exclusion keyed by logical resource plus a read-timestamp ledger.

    Lock entries are created on first use and discarded once no holder or
    waiter references them, so the table only grows with in-flight keys.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._locks: dict[str, _LockEntry] = {}
        self._read_timestamps: dict[str, float] = {}

    # -- mutual exclusion ---------------------------------------------------

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        """Hold *key* for the body of the ``async with`` block.

        Raises:
            LockReentryError: If the current operation already holds *key*.
        """
        held = _held_keys.get()
        if key in held:
            raise LockReentryError(key)

        entry = self._locks.get(key)
        if entry is None:
            entry = self._locks[key] = _LockEntry()
        entry.users += 1
        try:
            if entry.lock.locked():
                logger.debug("waiting for lock %s", key)
            await entry.lock.acquire()
        except BaseException:
            self._forget(key, entry)
            raise

        token = _held_keys.set(held | {key})
        try:
            yield
        finally:
            _held_keys.reset(token)
            entry.lock.release()
            self._forget(key, entry)

    async def with_lock(self, key: str, critical_section: Callable[[], Awaitable[T]]) -> T:
        """Run ``critical_section()`` while holding *key* and return its result.

        The section runs in its own task shielded from the caller's
        cancellation; once started it always completes and releases *key*.
        """

        async def run() -> T:
            async with self.hold(key):
                return await critical_section()

        task = asyncio.ensure_future(run())
        task.add_done_callback(_log_orphaned_failure)
        return await asyncio.shield(task)

    def is_locked(self, key: str) -> bool:
        entry = self._locks.get(key)
        return entry is not None and entry.lock.locked()

    def _forget(self, key: str, entry: _LockEntry) -> None:
        entry.users -= 1
        if entry.users == 0 and self._locks.get(key) is entry:
            del self._locks[key]

    # -- read-timestamp ledger ----------------------------------------------

    def record_read_timestamp(self, path: str, observed_at: float | None = None) -> float:
        stamp = self._clock() if observed_at is None else observed_at
        self._read_timestamps[path] = stamp
        return stamp

    def last_read_timestamp(self, path: str) -> float | None:
        return self._read_timestamps.get(path)

    def clear_timestamp(self, path: str) -> None:
        self._read_timestamps.pop(path, None)

    def clear_all_timestamps(self) -> None:
        self._read_timestamps.clear()

    def check_for_conflicts(self, path: str, last_modified: float) -> bool:
        """Return True when *path* changed after this context last read it.

        Advisory only: a path that was never read reports no conflict.
        """
        last_read = self._read_timestamps.get(path)
        if last_read is None:
            return False
        conflict = last_modified > last_read
        if conflict:
            logger.debug("stale read of %s: read at %s, modified at %s", path, last_read, last_modified)
        return conflict


def _log_orphaned_failure(task: asyncio.Future) -> None:
    # A caller cancelled while shielded never retrieves the result.
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug("critical section finished with %s: %s", type(exc).__name__, exc)
