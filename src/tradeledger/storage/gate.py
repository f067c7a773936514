from __future__ import annotations

from contextlib import contextmanager
from threading import Lock
from typing import Iterator

from tradeledger.ledger.errors import LedgerLockError


class ReadWriteGate:
    """
    Multiple-reader / single-writer gate for one ledger.

    - readers share the exclusive lock: the first reader in acquires it on
      behalf of all readers, the last reader out releases it
    - writers acquire the exclusive lock directly
    - a reader arriving while a write is in progress queues on the
      reader-count lock until the write finishes

    `timeout_s=None` waits forever.
    """

    def __init__(self, *, timeout_s: float | None = None) -> None:
        self._timeout = -1.0 if timeout_s is None else timeout_s
        self._readers_lock = Lock()
        self._exclusive = Lock()
        self._readers = 0

    @property
    def active_readers(self) -> int:
        return self._readers

    def acquire_read(self) -> None:
        if not self._readers_lock.acquire(timeout=self._timeout):
            raise LedgerLockError("timed out waiting for reader gate")
        try:
            if self._readers == 0:
                if not self._exclusive.acquire(timeout=self._timeout):
                    raise LedgerLockError("timed out waiting for ledger lock (read)")
            self._readers += 1
        finally:
            self._readers_lock.release()

    def release_read(self) -> None:
        with self._readers_lock:
            if self._readers <= 0:
                raise RuntimeError("release_read without matching acquire_read")
            self._readers -= 1
            if self._readers == 0:
                self._exclusive.release()

    def acquire_write(self) -> None:
        if not self._exclusive.acquire(timeout=self._timeout):
            raise LedgerLockError("timed out waiting for ledger lock (write)")

    def release_write(self) -> None:
        self._exclusive.release()

    @contextmanager
    def read(self) -> Iterator[None]:
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write(self) -> Iterator[None]:
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()
