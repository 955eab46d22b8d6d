"""Transaction boundary with router-scoped locking."""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Callable, Generator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TypeVar

from taskrouter.storage.database import Database

T = TypeVar("T")


@dataclass
class _LockEntry:
    lock: threading.RLock = field(default_factory=threading.RLock)
    users: int = 0


class RouterLocks:
    """
    One re-entrant lock per router ref; different routers never block each other.

    An entry lives only while some thread holds or waits for it, so deleted
    routers leave nothing behind.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: dict[str, _LockEntry] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)

    @contextmanager
    def hold(self, router_ref: str) -> Generator[None, None, None]:
        with self._guard:
            entry = self._entries.setdefault(router_ref, _LockEntry())
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._entries[router_ref]


class TransactionManager:
    """
    Runs units of work atomically.

    Passing ``router_ref`` holds that router's configuration lock for the
    whole transaction. Always acquire the router lock before the SQLite write
    lock, and never open a nested transaction while one is active on the same
    thread: follow-up work such as dispatch runs after the outer commit.
    """

    def __init__(self, db: Database, locks: RouterLocks | None = None) -> None:
        self.db = db
        self.locks = locks or RouterLocks()

    @contextmanager
    def transaction(self, router_ref: str | None = None) -> Generator[sqlite3.Connection, None, None]:
        if router_ref is None:
            with self.db.transaction() as conn:
                yield conn
            return
        with self.locks.hold(router_ref), self.db.transaction() as conn:
            yield conn

    def execute(self, fn: Callable[[sqlite3.Connection], T], router_ref: str | None = None) -> T:
        with self.transaction(router_ref) as conn:
            return fn(conn)

    def execute_void(
        self, fn: Callable[[sqlite3.Connection], object], router_ref: str | None = None
    ) -> None:
        with self.transaction(router_ref) as conn:
            fn(conn)
