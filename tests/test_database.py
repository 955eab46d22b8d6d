"""Tests for the SQLite storage layer and transaction boundary."""

import sqlite3
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from taskrouter.storage.database import Database
from taskrouter.storage.transaction import RouterLocks, TransactionManager


def test_ensure_tables(tmp_path: Path) -> None:
    db = Database(data_dir=tmp_path / "tr")
    db.ensure_tables()
    assert db.db_path.exists()
    assert (tmp_path / "tr" / "data").is_dir()


def test_wal_mode(tmp_path: Path) -> None:
    db = Database(data_dir=tmp_path / "tr")
    db.ensure_tables()
    with db.connect() as conn:
        result = conn.execute("PRAGMA journal_mode").fetchone()
        assert result[0] == "wal"


def test_foreign_keys_enforced(tmp_path: Path) -> None:
    db = Database(data_dir=tmp_path / "tr")
    db.ensure_tables()
    with pytest.raises(sqlite3.IntegrityError):
        db.execute("INSERT INTO queues (router_ref, ref, predicate) VALUES ('nope', 'q', 'true')")


def test_schema_version(tmp_path: Path) -> None:
    db = Database(data_dir=tmp_path / "tr")
    db.ensure_tables()
    db.ensure_tables()  # Should not raise
    rows = db.execute("SELECT version FROM schema_version")
    assert len(rows) == 1
    assert rows[0]["version"] == 1


def test_transaction_commits(tmp_path: Path) -> None:
    db = Database(data_dir=tmp_path / "tr")
    db.ensure_tables()
    with db.transaction() as conn:
        conn.execute("INSERT INTO routers (ref) VALUES ('r1')")
    assert len(db.execute("SELECT * FROM routers")) == 1


def test_transaction_rolls_back(tmp_path: Path) -> None:
    db = Database(data_dir=tmp_path / "tr")
    db.ensure_tables()
    with pytest.raises(RuntimeError):
        with db.transaction() as conn:
            conn.execute("INSERT INTO routers (ref) VALUES ('r1')")
            raise RuntimeError("abort")
    assert db.execute("SELECT * FROM routers") == []


def test_mappings_cascade(tmp_path: Path) -> None:
    db = Database(data_dir=tmp_path / "tr")
    db.ensure_tables()
    with db.transaction() as conn:
        conn.execute("INSERT INTO routers (ref) VALUES ('r1')")
        queue_id = conn.execute(
            "INSERT INTO queues (router_ref, ref, predicate) VALUES ('r1', 'q1', 'true')"
        ).lastrowid
        agent_id = conn.execute("INSERT INTO agents (router_ref, ref) VALUES ('r1', 'a1')").lastrowid
        conn.execute(
            "INSERT INTO agent_queue_mappings (agent_id, queue_id) VALUES (?, ?)", (agent_id, queue_id)
        )
    db.execute("DELETE FROM agents WHERE id = ?", (agent_id,))
    assert db.execute("SELECT * FROM agent_queue_mappings") == []


def test_router_locks_are_per_router() -> None:
    locks = RouterLocks()

    def hold(ref: str) -> str:
        with locks.hold(ref):
            return ref

    with ThreadPoolExecutor(max_workers=1) as pool:
        with locks.hold("r1"):
            assert pool.submit(hold, "r2").result(timeout=5) == "r2"
            blocked = pool.submit(hold, "r1")
            with pytest.raises(TimeoutError):
                blocked.result(timeout=0.2)
        assert blocked.result(timeout=5) == "r1"


def test_router_locks_are_dropped_when_released() -> None:
    locks = RouterLocks()
    with locks.hold("r1"):
        with locks.hold("r1"), locks.hold("r2"):
            assert len(locks) == 2
        assert len(locks) == 1
    assert len(locks) == 0


def test_router_lock_is_reentrant(tmp_path: Path) -> None:
    db = Database(data_dir=tmp_path / "tr")
    db.ensure_tables()
    tx = TransactionManager(db)
    with tx.locks.hold("r1"):
        tx.execute_void(lambda conn: conn.execute("INSERT INTO routers (ref) VALUES ('r1')"), "r1")
    assert tx.execute(lambda conn: conn.execute("SELECT COUNT(*) FROM routers").fetchone()[0]) == 1
