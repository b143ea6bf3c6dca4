"""Per-account serialization for balance writes."""

import threading
import weakref
from collections.abc import Iterator
from contextlib import contextmanager


class AccountLocks:
    """Registry of one lock per account id.

    Recomputation and incremental updates for the same account take the same
    lock, so a read-then-write on an account record never interleaves with
    another writer in this process. Entries only live while someone references
    the lock, so ids seen once (including ids of accounts that do not exist)
    are not retained.
    """

    def __init__(self) -> None:
        """Initialize an empty registry."""
        self._guard = threading.Lock()
        self._locks: weakref.WeakValueDictionary[str, threading.Lock] = weakref.WeakValueDictionary()

    def lock_for(self, account_id: str) -> threading.Lock:
        """Return the lock guarding an account, creating it when no one holds a reference to it."""
        with self._guard:
            lock = self._locks.get(account_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[account_id] = lock
            return lock

    @contextmanager
    def hold(self, account_id: str) -> Iterator[None]:
        """Hold the lock of an account for the duration of the block."""
        lock = self.lock_for(account_id)
        with lock:
            yield
