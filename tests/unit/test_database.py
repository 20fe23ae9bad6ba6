from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from hypeledger.core.database import Database, is_busy_error
from hypeledger.core.events import EventType
from hypeledger.core.exceptions import ConcurrencyConflict, DedupeConflictError


def test_append_and_query_round_trip(temp_dir: Path) -> None:
    db = Database(temp_dir / "hype.db")
    try:
        e = db.append_event(
            event_type=EventType.DROP_CLOSED_V1, payload={"drop_id": "drop-1", "entries_closed": 3}
        )
        got = db.get_events(event_type=EventType.DROP_CLOSED_V1, limit=10)
        assert got[0].id == e.id
        assert got[0].payload["entries_closed"] == 3
        assert db.get_events(event_type=EventType.REVIEW_CLEARED_V1) == []
    finally:
        db.close()


def test_dedup_is_idempotent_and_conflicts_on_payload_change(temp_dir: Path) -> None:
    db = Database(temp_dir / "hype.db")
    try:
        k = "participation:ada@example.com:drop-1"
        e1 = db.append_event(
            event_type=EventType.PARTICIPATION_ACCEPTED_V1, payload={"total": 100}, dedupe_key=k
        )
        e2 = db.append_event(
            event_type=EventType.PARTICIPATION_ACCEPTED_V1, payload={"total": 100}, dedupe_key=k
        )
        assert e1.id == e2.id

        with pytest.raises(DedupeConflictError):
            db.append_event(
                event_type=EventType.PARTICIPATION_ACCEPTED_V1,
                payload={"total": 175},
                dedupe_key=k,
            )
    finally:
        db.close()


def test_failed_transaction_rolls_back(temp_dir: Path) -> None:
    db = Database(temp_dir / "hype.db")
    try:
        with pytest.raises(RuntimeError):
            with db.transaction() as conn:
                conn.execute(
                    "INSERT INTO webhook_subscriptions (url, event_globs) VALUES (?, ?)", ("http://x", "*")
                )
                raise RuntimeError("abort")
        row = db.conn.execute("SELECT COUNT(1) FROM webhook_subscriptions").fetchone()
        assert row[0] == 0
    finally:
        db.close()


def test_write_lock_contention_is_a_concurrency_conflict(temp_dir: Path) -> None:
    path = temp_dir / "hype.db"
    db = Database(path, busy_timeout_seconds=0.05)
    other = sqlite3.connect(path, timeout=0.05)
    try:
        other.execute("BEGIN IMMEDIATE")
        with pytest.raises(ConcurrencyConflict):
            with db.transaction():
                pass
    finally:
        other.rollback()
        other.close()
        db.close()


def test_wal_mode_enabled(temp_dir: Path) -> None:
    db = Database(temp_dir / "hype.db")
    try:
        mode = db.conn.execute("PRAGMA journal_mode").fetchone()[0]
        assert str(mode).lower() == "wal"
    finally:
        db.close()


def test_audit_log(temp_dir: Path) -> None:
    db = Database(temp_dir / "hype.db")
    try:
        db.audit(action="drop_closed", actor="ops", component="ledger", details={"drop_id": "drop-1"})
        row = db.conn.execute("SELECT action, actor FROM audit_log").fetchone()
        assert (row["action"], row["actor"]) == ("drop_closed", "ops")
    finally:
        db.close()


def test_is_busy_error() -> None:
    assert is_busy_error(sqlite3.OperationalError("database is locked"))
    assert not is_busy_error(sqlite3.OperationalError("no such table: x"))
