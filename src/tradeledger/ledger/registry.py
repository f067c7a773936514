from __future__ import annotations

import re
from pathlib import Path
from threading import Lock

import structlog

from tradeledger.ledger.orchestrator import LedgerBook
from tradeledger.storage.gate import ReadWriteGate
from tradeledger.storage.sqlite import SqliteLedgerStore

log = structlog.get_logger()

_USER_ID_RE = re.compile(r"^[A-Za-z0-9_\-]+$")


def validate_user_id(user_id: str) -> None:
    if not user_id or not _USER_ID_RE.match(user_id):
        raise ValueError(f"invalid user_id: {user_id!r}")


def ledger_path(data_dir: Path, user_id: str) -> Path:
    """
    One SQLite file per user, always inside `data_dir`.
    """
    validate_user_id(user_id)
    path = (data_dir / f"ledger_{user_id}.db").resolve()

    base = data_dir.resolve()
    if path.parent != base:
        raise ValueError("invalid ledger path resolution")

    return path


class LedgerRegistry:
    """
    Thread-safe map of user id -> LedgerBook.

    Ledgers share nothing: each has its own file and its own gate, so
    different users never wait on each other.
    """

    def __init__(
        self,
        *,
        data_dir: Path,
        lock_timeout_s: float | None = None,
        journal_mode: str = "WAL",
    ) -> None:
        self._data_dir = data_dir
        self._lock_timeout_s = lock_timeout_s
        self._journal_mode = journal_mode
        self._lock = Lock()
        self._books: dict[str, LedgerBook] = {}

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    def get(self, user_id: str) -> LedgerBook:
        path = ledger_path(self._data_dir, user_id)
        with self._lock:
            book = self._books.get(user_id)
            if book is None:
                book = LedgerBook(
                    store=SqliteLedgerStore(path=path, journal_mode=self._journal_mode),
                    gate=ReadWriteGate(timeout_s=self._lock_timeout_s),
                    user_id=user_id,
                )
                self._books[user_id] = book
                log.info("ledger.opened", user_id=user_id, path=str(path))
            return book

    def users(self) -> list[str]:
        with self._lock:
            return sorted(self._books)
