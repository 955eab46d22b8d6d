"""SQLite database with WAL mode for router, queue, agent, plan and task storage."""

from __future__ import annotations

import sqlite3
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import Any


class Database:
    """SQLite storage layer with WAL mode for the task router."""

    BUSY_TIMEOUT = 30.0  # seconds to wait for the SQLite write lock

    def __init__(self, data_dir: Path | None = None) -> None:
        self.data_dir = data_dir or Path.home() / ".taskrouter"
        self.db_path = self.data_dir / "data" / "taskrouter.db"

    def _ensure_dirs(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        (self.data_dir / "data").mkdir(exist_ok=True)

    def _open(self) -> sqlite3.Connection:
        self._ensure_dirs()
        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.BUSY_TIMEOUT,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def connect(self) -> Generator[sqlite3.Connection, None, None]:
        """Get an autocommit connection with WAL mode."""
        conn = self._open()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Run a block inside one write transaction.

        ``BEGIN IMMEDIATE`` takes the SQLite write lock up front, so the
        read-check-write sequences inside the block cannot interleave with
        another writer. Any exception rolls the whole block back.
        """
        conn = self._open()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    def ensure_tables(self) -> None:
        """Create all tables if they don't exist."""
        with self.connect() as conn:
            conn.executescript(_SCHEMA)

    def execute(self, sql: str, params: tuple[Any, ...] = ()) -> list[sqlite3.Row]:
        """Execute a query and return results."""
        with self.connect() as conn:
            cursor = conn.execute(sql, params)
            return cursor.fetchall()


_SCHEMA = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS routers (
    ref TEXT PRIMARY KEY,
    name TEXT,
    description TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS queues (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    router_ref TEXT NOT NULL REFERENCES routers(ref),
    ref TEXT NOT NULL,
    predicate TEXT NOT NULL,
    description TEXT,
    UNIQUE (router_ref, ref)
);

CREATE TABLE IF NOT EXISTS agents (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    router_ref TEXT NOT NULL REFERENCES routers(ref),
    ref TEXT NOT NULL,
    address TEXT,
    capabilities TEXT NOT NULL DEFAULT '{}',
    state TEXT NOT NULL DEFAULT 'offline',
    last_heartbeat REAL,
    ready_since REAL,
    UNIQUE (router_ref, ref)
);

CREATE TABLE IF NOT EXISTS agent_queue_mappings (
    agent_id INTEGER NOT NULL REFERENCES agents(id) ON DELETE CASCADE,
    queue_id INTEGER NOT NULL REFERENCES queues(id) ON DELETE CASCADE,
    PRIMARY KEY (agent_id, queue_id)
);

CREATE INDEX IF NOT EXISTS idx_mappings_queue ON agent_queue_mappings(queue_id);

CREATE TABLE IF NOT EXISTS plans (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    router_ref TEXT NOT NULL REFERENCES routers(ref),
    ref TEXT NOT NULL,
    description TEXT,
    rules TEXT NOT NULL DEFAULT '[]',
    default_route TEXT,
    UNIQUE (router_ref, ref)
);

CREATE TABLE IF NOT EXISTS tasks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    router_ref TEXT NOT NULL REFERENCES routers(ref),
    ref TEXT NOT NULL,
    requirements TEXT NOT NULL DEFAULT '{}',
    callback_url TEXT,
    queue_id INTEGER NOT NULL REFERENCES queues(id),
    state TEXT NOT NULL DEFAULT 'waiting',
    agent_id INTEGER REFERENCES agents(id),
    plan_ref TEXT,
    routes TEXT NOT NULL DEFAULT '[]',
    current_route INTEGER NOT NULL DEFAULT 0,
    route_entered_at REAL,
    user_context TEXT,
    UNIQUE (router_ref, ref)
);

CREATE INDEX IF NOT EXISTS idx_tasks_queue_state ON tasks(queue_id, state);

INSERT OR IGNORE INTO schema_version (version) VALUES (1);
"""
