"""hypeledger.core.database

The ledger's durable storage.

- One SQLite file, WAL mode, one connection per thread.
- Every mutation is a short ``BEGIN IMMEDIATE`` transaction.
- Idempotency keys live here, beside the counters they protect.
- The journal is append-only; projections are rebuilt from ledger rows, never from memory.
"""

from __future__ import annotations

import json
import sqlite3
import threading
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from hypeledger.core.events import EventType, canonical_json, payload_hash
from hypeledger.core.exceptions import ConcurrencyConflict, DedupeConflictError, LedgerError
from hypeledger.core.models import Event
from hypeledger.core.time import parse_dt, to_iso, utc_now

SCHEMA_VERSION = 1

SCHEMA = """
-- ============================================================
-- Schema Version Tracking
-- ============================================================
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT DEFAULT (datetime('now'))
);

-- ============================================================
-- Users (never deleted, only archived)
-- ============================================================
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    followers INTEGER CHECK(followers IS NULL OR followers >= 0),
    team TEXT,
    archived INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_users_team ON users(team);

-- ============================================================
-- Drops (read-only to the engine except status)
-- ============================================================
CREATE TABLE IF NOT EXISTS drops (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL DEFAULT '',
    status TEXT NOT NULL DEFAULT 'draft' CHECK(status IN (
        'draft', 'active', 'completed', 'archived'
    )),
    starts_at TEXT NOT NULL,
    ends_at TEXT NOT NULL,
    base_points INTEGER,
    click_tiers TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_drops_status ON drops(status);

-- ============================================================
-- Ledger entries, one per (user, drop)
-- ============================================================
CREATE TABLE IF NOT EXISTS ledger_entries (
    user_id TEXT NOT NULL REFERENCES users(id),
    drop_id TEXT NOT NULL REFERENCES drops(id),
    state TEXT NOT NULL DEFAULT 'active' CHECK(state IN ('active', 'closed')),
    participation_points INTEGER NOT NULL DEFAULT 0,
    performance_points INTEGER NOT NULL DEFAULT 0,
    bonus_points INTEGER NOT NULL DEFAULT 0,
    current_drop_points INTEGER NOT NULL DEFAULT 0,
    weekly_points INTEGER NOT NULL DEFAULT 0,
    week_key TEXT,
    total_hype INTEGER NOT NULL DEFAULT 0,
    click_count INTEGER NOT NULL DEFAULT 0,
    followers INTEGER,
    under_review INTEGER NOT NULL DEFAULT 0,
    version INTEGER NOT NULL DEFAULT 0,
    participation_seq INTEGER NOT NULL,
    participated_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (user_id, drop_id),
    CHECK (total_hype = participation_points + performance_points + bonus_points)
);

CREATE INDEX IF NOT EXISTS idx_ledger_drop ON ledger_entries(drop_id);
CREATE INDEX IF NOT EXISTS idx_ledger_review ON ledger_entries(under_review);

-- ============================================================
-- User rollup ledger
-- ============================================================
CREATE TABLE IF NOT EXISTS user_ledger (
    user_id TEXT PRIMARY KEY REFERENCES users(id),
    participation_points INTEGER NOT NULL DEFAULT 0,
    performance_points INTEGER NOT NULL DEFAULT 0,
    bonus_points INTEGER NOT NULL DEFAULT 0,
    current_drop_id TEXT,
    current_drop_points INTEGER NOT NULL DEFAULT 0,
    weekly_points INTEGER NOT NULL DEFAULT 0,
    week_key TEXT,
    total_hype INTEGER NOT NULL DEFAULT 0,
    click_count INTEGER NOT NULL DEFAULT 0,
    drops_participated INTEGER NOT NULL DEFAULT 0,
    originals_written INTEGER NOT NULL DEFAULT 0,
    stories_added INTEGER NOT NULL DEFAULT 0,
    cross_platform_shares INTEGER NOT NULL DEFAULT 0,
    first_participated_at TEXT,
    version INTEGER NOT NULL DEFAULT 0,
    updated_at TEXT NOT NULL,
    CHECK (total_hype = participation_points + performance_points + bonus_points)
);

-- ============================================================
-- Participation records (write-once)
-- ============================================================
CREATE TABLE IF NOT EXISTS participations (
    user_id TEXT NOT NULL,
    drop_id TEXT NOT NULL,
    copy_type TEXT NOT NULL CHECK(copy_type IN ('provided', 'customized', 'original')),
    has_story INTEGER NOT NULL DEFAULT 0,
    has_cta INTEGER NOT NULL DEFAULT 0,
    shared_on TEXT NOT NULL DEFAULT '[]',
    colleagues_tagged INTEGER NOT NULL DEFAULT 0,
    share_count INTEGER NOT NULL DEFAULT 0,
    followers INTEGER,
    team TEXT,
    submitted_at TEXT NOT NULL,
    breakdown TEXT NOT NULL,
    created_at TEXT NOT NULL,
    PRIMARY KEY (user_id, drop_id)
);

-- ============================================================
-- Click events (idempotency keys are durable)
-- ============================================================
CREATE TABLE IF NOT EXISTS click_events (
    idempotency_key TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    drop_id TEXT NOT NULL,
    clicks INTEGER NOT NULL CHECK(clicks >= 1),
    ts TEXT NOT NULL,
    referrer TEXT,
    user_agent TEXT,
    payload_hash TEXT NOT NULL,
    points INTEGER NOT NULL DEFAULT 0,
    flagged INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_click_events_pair_ts ON click_events(user_id, drop_id, ts);

-- ============================================================
-- Journal (append-only)
-- ============================================================
CREATE TABLE IF NOT EXISTS events (
    id TEXT PRIMARY KEY,
    type TEXT NOT NULL,
    ts TEXT NOT NULL,
    source TEXT,
    dedupe_key TEXT UNIQUE,
    payload TEXT NOT NULL,
    payload_hash TEXT NOT NULL,
    created_at TEXT DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_events_type ON events(type);
CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);

-- ============================================================
-- Audit Log
-- ============================================================
CREATE TABLE IF NOT EXISTS audit_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    ts TEXT DEFAULT (datetime('now')),
    action TEXT NOT NULL,
    actor TEXT,
    component TEXT,
    details TEXT
);

CREATE INDEX IF NOT EXISTS idx_audit_action ON audit_log(action);

-- ============================================================
-- Webhook subscriptions (transition notifications)
-- ============================================================
CREATE TABLE IF NOT EXISTS webhook_subscriptions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    url TEXT NOT NULL,
    event_globs TEXT NOT NULL,
    enabled INTEGER NOT NULL DEFAULT 1,
    created_at TEXT DEFAULT (datetime('now'))
);
"""


def is_busy_error(e: sqlite3.OperationalError) -> bool:
    msg = str(e).lower()
    return "locked" in msg or "busy" in msg


@dataclass
class Database:
    """SQLite ledger store. Safe to share across threads."""

    db_path: Path
    busy_timeout_seconds: float = 5.0

    def __post_init__(self) -> None:
        self.db_path = Path(self.db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._local = threading.local()
        self._conns: list[sqlite3.Connection] = []
        self._conns_lock = threading.Lock()
        self._init_schema()

    @property
    def conn(self) -> sqlite3.Connection:
        """The calling thread's connection."""

        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = self._connect()
            self._local.conn = conn
        return conn

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self.db_path,
            timeout=float(self.busy_timeout_seconds),
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute("PRAGMA foreign_keys=ON")
        with self._conns_lock:
            self._conns.append(conn)
        return conn

    def close(self) -> None:
        with self._conns_lock:
            for c in self._conns:
                c.close()
            self._conns.clear()
        self._local = threading.local()

    def _init_schema(self) -> None:
        conn = self.conn
        conn.execute("PRAGMA journal_mode=WAL")
        with conn:
            conn.executescript(SCHEMA)
            conn.execute(
                "INSERT OR IGNORE INTO schema_version (version) VALUES (?)",
                (SCHEMA_VERSION,),
            )

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Short write transaction holding the SQLite write lock from the start.

        Lock contention surfaces as :class:`ConcurrencyConflict` so callers can retry.
        """

        conn = self.conn
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.OperationalError as e:
            if is_busy_error(e):
                raise ConcurrencyConflict(f"write lock unavailable: {e}") from e
            raise LedgerError(str(e)) from e

        try:
            yield conn
        except BaseException:
            conn.rollback()
            raise

        try:
            conn.commit()
        except sqlite3.OperationalError as e:
            conn.rollback()
            if is_busy_error(e):
                raise ConcurrencyConflict(f"commit failed: {e}") from e
            raise LedgerError(str(e)) from e

    # -----------------
    # Journal
    # -----------------

    def insert_event(
        self,
        conn: sqlite3.Connection,
        *,
        event_type: EventType,
        payload: dict[str, Any],
        source: str | None = None,
        dedupe_key: str | None = None,
        ts: datetime | None = None,
    ) -> Event:
        """Append one journal event using a caller-owned transaction.

        Dedup semantics:
        - If dedupe_key is new: insert.
        - If dedupe_key exists with same payload hash: idempotent (return existing event).
        - If dedupe_key exists with different payload hash: conflict.
        """

        payload_canon = json.loads(canonical_json(payload))
        p_hash = payload_hash(payload_canon)

        if dedupe_key is not None:
            row = conn.execute("SELECT * FROM events WHERE dedupe_key = ?", (dedupe_key,)).fetchone()
            if row is not None:
                if str(row["payload_hash"]) != p_hash:
                    raise DedupeConflictError(f"dedupe_key conflict for {dedupe_key}: payload changed")
                return self._row_to_event(row)

        eid = str(uuid.uuid4())
        now = ts or utc_now()
        conn.execute(
            """
            INSERT INTO events (id, type, ts, source, dedupe_key, payload, payload_hash)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (eid, str(event_type), to_iso(now), source, dedupe_key, canonical_json(payload_canon), p_hash),
        )
        return Event(
            id=eid,
            type=event_type,
            ts=now,
            source=source,
            dedupe_key=dedupe_key,
            payload=payload_canon,
            payload_hash=p_hash,
        )

    def append_event(
        self,
        *,
        event_type: EventType,
        payload: dict[str, Any],
        source: str | None = None,
        dedupe_key: str | None = None,
        ts: datetime | None = None,
    ) -> Event:
        with self.transaction() as conn:
            return self.insert_event(
                conn,
                event_type=event_type,
                payload=payload,
                source=source,
                dedupe_key=dedupe_key,
                ts=ts,
            )

    def get_events(
        self,
        *,
        event_type: EventType | None = None,
        since: datetime | None = None,
        limit: int = 100,
    ) -> list[Event]:
        q = "SELECT * FROM events WHERE 1=1"
        params: list[Any] = []
        if event_type is not None:
            q += " AND type = ?"
            params.append(str(event_type))
        if since is not None:
            q += " AND ts >= ?"
            params.append(to_iso(since))
        q += " ORDER BY ts DESC, rowid DESC LIMIT ?"
        params.append(int(limit))

        rows = self.conn.execute(q, tuple(params)).fetchall()
        return [self._row_to_event(r) for r in rows]

    def audit(self, *, action: str, actor: str | None = None, component: str | None = None, details: dict[str, Any] | None = None) -> None:
        with self.transaction() as conn:
            conn.execute(
                "INSERT INTO audit_log (action, actor, component, details) VALUES (?, ?, ?, ?)",
                (action, actor, component, canonical_json(details or {})),
            )

    @staticmethod
    def _row_to_event(row: sqlite3.Row) -> Event:
        return Event(
            id=str(row["id"]),
            type=EventType(str(row["type"])),
            ts=parse_dt(str(row["ts"])),
            source=row["source"],
            dedupe_key=row["dedupe_key"],
            payload=json.loads(row["payload"]),
            payload_hash=str(row["payload_hash"]),
        )
