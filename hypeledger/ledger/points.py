"""hypeledger.ledger.points

The points ledger: the only mutable aggregate in the system.

- One entry per (user, drop), one rollup per user.
- Every counter moves by ``SET x = x + ?`` inside a single write transaction.
  Nothing reads a total, adds in Python, and writes it back.
- A ``version`` column guards compare-and-swap applies; a lost race raises
  ConcurrencyConflict and the caller recomputes from the fresh count.
- The click's idempotency key is inserted in the same transaction as the
  increment, so dedup and apply cannot be separated by a race.
- Weekly counters reset lazily: the first write stamped in a newer period replaces
  the stale value; writes stamped in an older period leave it alone.

Entry lifecycle: uninitialized (no row) -> active (first participation) -> closed.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from hypeledger.core.database import Database
from hypeledger.core.events import ClickEvent, CopyType, EntryState, ParticipationRecord, payload_hash
from hypeledger.core.exceptions import (
    ConcurrencyConflict,
    DropClosed,
    DuplicateEvent,
    DuplicateParticipation,
    EntryNotFound,
)
from hypeledger.core.time import parse_dt, period_key, to_iso, utc_now
from hypeledger.core.types import DeltaBundle, LedgerEntry, PointsBreakdown, UserTotals
from hypeledger.ledger.registry import UserRegistry

logger = logging.getLogger(__name__)

ParticipationScorer = Callable[[int], PointsBreakdown]

_WEEKLY_SET = """
    weekly_points = CASE
        WHEN {t}week_key IS NULL OR {t}week_key < :wk THEN :points
        WHEN {t}week_key = :wk THEN {t}weekly_points + :points
        ELSE {t}weekly_points
    END,
    week_key = CASE
        WHEN {t}week_key IS NULL OR {t}week_key < :wk THEN :wk
        ELSE {t}week_key
    END
"""


@dataclass(frozen=True, slots=True)
class OpenedEntry:
    entry: LedgerEntry
    breakdown: PointsBreakdown
    participation_seq: int
    drops_participated: int


def _row_to_entry(row: sqlite3.Row) -> LedgerEntry:
    return LedgerEntry(
        user_id=str(row["user_id"]),
        drop_id=str(row["drop_id"]),
        state=EntryState(str(row["state"])),
        participation_points=int(row["participation_points"]),
        performance_points=int(row["performance_points"]),
        bonus_points=int(row["bonus_points"]),
        current_drop_points=int(row["current_drop_points"]),
        weekly_points=int(row["weekly_points"]),
        week_key=row["week_key"],
        total_hype=int(row["total_hype"]),
        click_count=int(row["click_count"]),
        followers=None if row["followers"] is None else int(row["followers"]),
        under_review=bool(int(row["under_review"])),
        version=int(row["version"]),
        participated_at=parse_dt(str(row["participated_at"])),
        updated_at=parse_dt(str(row["updated_at"])),
    )


def _row_to_totals(row: sqlite3.Row) -> UserTotals:
    first = row["first_participated_at"]
    return UserTotals(
        user_id=str(row["user_id"]),
        participation_points=int(row["participation_points"]),
        performance_points=int(row["performance_points"]),
        bonus_points=int(row["bonus_points"]),
        current_drop_id=row["current_drop_id"],
        current_drop_points=int(row["current_drop_points"]),
        weekly_points=int(row["weekly_points"]),
        week_key=row["week_key"],
        total_hype=int(row["total_hype"]),
        click_count=int(row["click_count"]),
        drops_participated=int(row["drops_participated"]),
        originals_written=int(row["originals_written"]),
        stories_added=int(row["stories_added"]),
        cross_platform_shares=int(row["cross_platform_shares"]),
        first_participated_at=parse_dt(str(first)) if first else None,
        version=int(row["version"]),
        updated_at=parse_dt(str(row["updated_at"])),
    )


class PointsLedger:
    def __init__(self, db: Database, *, week_start_weekday: int = 0, cross_platform_min_platforms: int = 2):
        self._db = db
        self.week_start_weekday = int(week_start_weekday)
        self.cross_platform_min_platforms = int(cross_platform_min_platforms)

    def period_key(self, at: datetime) -> str:
        return period_key(at, weekday=self.week_start_weekday)

    # -----------------
    # Reads
    # -----------------

    def get_entry(self, user_id: str, drop_id: str) -> LedgerEntry | None:
        row = self._db.conn.execute(
            "SELECT * FROM ledger_entries WHERE user_id = ? AND drop_id = ?",
            (user_id, drop_id),
        ).fetchone()
        return None if row is None else _row_to_entry(row)

    def entry_state(self, user_id: str, drop_id: str) -> EntryState:
        entry = self.get_entry(user_id, drop_id)
        return EntryState.UNINITIALIZED if entry is None else entry.state

    def current_click_count(self, user_id: str, drop_id: str) -> int:
        row = self._db.conn.execute(
            "SELECT click_count FROM ledger_entries WHERE user_id = ? AND drop_id = ?",
            (user_id, drop_id),
        ).fetchone()
        return 0 if row is None else int(row[0])

    def get_user_totals(self, user_id: str) -> UserTotals | None:
        row = self._db.conn.execute("SELECT * FROM user_ledger WHERE user_id = ?", (user_id,)).fetchone()
        return None if row is None else _row_to_totals(row)

    def list_entries(
        self,
        *,
        drop_id: str | None = None,
        user_id: str | None = None,
        updated_since: datetime | None = None,
    ) -> list[LedgerEntry]:
        q = "SELECT * FROM ledger_entries WHERE 1=1"
        params: list[str] = []
        if updated_since is not None:
            q += " AND updated_at >= ?"
            params.append(to_iso(updated_since))
        if drop_id is not None:
            q += " AND drop_id = ?"
            params.append(drop_id)
        if user_id is not None:
            q += " AND user_id = ?"
            params.append(user_id)
        rows = self._db.conn.execute(q + " ORDER BY participated_at ASC", tuple(params)).fetchall()
        return [_row_to_entry(r) for r in rows]

    def list_user_totals(self, *, updated_since: datetime | None = None) -> list[UserTotals]:
        if updated_since is None:
            rows = self._db.conn.execute("SELECT * FROM user_ledger ORDER BY user_id ASC").fetchall()
        else:
            rows = self._db.conn.execute(
                "SELECT * FROM user_ledger WHERE updated_at >= ? ORDER BY user_id ASC", (to_iso(updated_since),)
            ).fetchall()
        return [_row_to_totals(r) for r in rows]

    def participation_breakdown(self, user_id: str, drop_id: str) -> PointsBreakdown | None:
        row = self._db.conn.execute(
            "SELECT breakdown FROM participations WHERE user_id = ? AND drop_id = ?",
            (user_id, drop_id),
        ).fetchone()
        if row is None:
            return None
        data = json.loads(str(row[0]))
        data.pop("total", None)
        return PointsBreakdown(**data)

    # -----------------
    # Writes
    # -----------------

    def open_entry(self, record: ParticipationRecord, *, score: ParticipationScorer) -> OpenedEntry:
        """Create the (user, drop) entry from a participation, atomically.

        ``score`` receives the participation ordinal for the drop (1 = first) and returns
        the itemized points. It runs inside the write transaction so the ordinal is exact.

        Raises:
            DuplicateParticipation: the pair already has an entry.
        """

        submitted = record.submitted_at
        wk = self.period_key(submitted)
        stamp = to_iso(utc_now())

        with self._db.transaction() as conn:
            if conn.execute(
                "SELECT 1 FROM ledger_entries WHERE user_id = ? AND drop_id = ?",
                (record.user_id, record.drop_id),
            ).fetchone() is not None:
                raise DuplicateParticipation(
                    f"participation already recorded for {record.user_id} in {record.drop_id}"
                )

            UserRegistry.ensure_in(
                conn,
                user_id=record.user_id,
                followers=record.followers,
                team=record.team,
                now=submitted,
            )
            followers_row = conn.execute("SELECT followers FROM users WHERE id = ?", (record.user_id,)).fetchone()
            followers = None if followers_row is None or followers_row[0] is None else int(followers_row[0])

            seq = int(
                conn.execute("SELECT COUNT(1) FROM ledger_entries WHERE drop_id = ?", (record.drop_id,)).fetchone()[0]
            ) + 1
            breakdown = score(seq)
            points = int(breakdown.total)

            try:
                conn.execute(
                    """
                    INSERT INTO ledger_entries (
                        user_id, drop_id, state, participation_points, current_drop_points,
                        weekly_points, week_key, total_hype, followers, participation_seq,
                        participated_at, updated_at
                    ) VALUES (?, ?, 'active', ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        record.user_id,
                        record.drop_id,
                        points,
                        points,
                        points,
                        wk,
                        points,
                        followers,
                        seq,
                        to_iso(submitted),
                        stamp,
                    ),
                )
                conn.execute(
                    """
                    INSERT INTO participations (
                        user_id, drop_id, copy_type, has_story, has_cta, shared_on,
                        colleagues_tagged, share_count, followers, team, submitted_at,
                        breakdown, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        record.user_id,
                        record.drop_id,
                        str(record.copy_type),
                        int(record.has_story),
                        int(record.has_cta),
                        json.dumps(sorted(str(p) for p in record.distinct_platforms)),
                        int(record.colleagues_tagged),
                        int(record.share_count),
                        record.followers,
                        record.team,
                        to_iso(submitted),
                        json.dumps(breakdown.as_dict(), sort_keys=True),
                        stamp,
                    ),
                )
            except sqlite3.IntegrityError as e:
                raise DuplicateParticipation(
                    f"participation already recorded for {record.user_id} in {record.drop_id}"
                ) from e

            cross = len(record.distinct_platforms) >= self.cross_platform_min_platforms
            conn.execute(
                f"""
                INSERT INTO user_ledger (
                    user_id, participation_points, current_drop_id, current_drop_points,
                    weekly_points, week_key, total_hype, drops_participated, originals_written,
                    stories_added, cross_platform_shares, first_participated_at, updated_at
                ) VALUES (:u, :points, :d, :points, :points, :wk, :points, 1, :orig, :story, :cross, :at, :stamp)
                ON CONFLICT(user_id) DO UPDATE SET
                    participation_points = user_ledger.participation_points + :points,
                    total_hype = user_ledger.total_hype + :points,
                    current_drop_id = :d,
                    current_drop_points = :points,
                    {_WEEKLY_SET.format(t="user_ledger.")},
                    drops_participated = user_ledger.drops_participated + 1,
                    originals_written = user_ledger.originals_written + :orig,
                    stories_added = user_ledger.stories_added + :story,
                    cross_platform_shares = user_ledger.cross_platform_shares + :cross,
                    first_participated_at = COALESCE(
                        MIN(user_ledger.first_participated_at, :at), :at
                    ),
                    version = user_ledger.version + 1,
                    updated_at = :stamp
                """,
                {
                    "u": record.user_id,
                    "d": record.drop_id,
                    "points": points,
                    "wk": wk,
                    "orig": 1 if record.copy_type == CopyType.ORIGINAL else 0,
                    "story": 1 if record.has_story else 0,
                    "cross": 1 if cross else 0,
                    "at": to_iso(submitted),
                    "stamp": stamp,
                },
            )

            entry = self._read_entry(conn, record.user_id, record.drop_id)
            drops = int(
                conn.execute(
                    "SELECT drops_participated FROM user_ledger WHERE user_id = ?", (record.user_id,)
                ).fetchone()[0]
            )

        logger.info(
            "ledger_entry_opened",
            extra={"user_id": record.user_id, "drop_id": record.drop_id, "points": points, "seq": seq},
        )
        return OpenedEntry(entry=entry, breakdown=breakdown, participation_seq=seq, drops_participated=drops)

    def apply_delta(
        self,
        user_id: str,
        drop_id: str,
        delta: DeltaBundle,
        *,
        expected_version: int | None = None,
        click: ClickEvent | None = None,
        flag_review: bool = False,
        at: datetime | None = None,
    ) -> LedgerEntry:
        """Atomically add ``delta`` to the (user, drop) entry and the user's rollup.

        Args:
            expected_version: compare-and-swap guard; the apply fails with
                ConcurrencyConflict if the entry moved since it was read.
            click: when given, its idempotency key is recorded in the same transaction.
            flag_review: mark the pair under review as part of this apply.
            at: event time, used for the weekly period (defaults to now).

        Raises:
            DuplicateEvent: the click's idempotency key was already applied.
            EntryNotFound: no participation for the pair.
            DropClosed: the entry is closed.
            ConcurrencyConflict: the CAS guard or the write lock lost a race.
        """

        ts = at or (click.timestamp if click is not None else utc_now())
        wk = self.period_key(ts)
        stamp = to_iso(utc_now())
        points = delta.points

        with self._db.transaction() as conn:
            if click is not None:
                try:
                    conn.execute(
                        """
                        INSERT INTO click_events (
                            idempotency_key, user_id, drop_id, clicks, ts, referrer, user_agent,
                            payload_hash, points, flagged, created_at
                        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            click.idempotency_key,
                            user_id,
                            drop_id,
                            int(click.clicks),
                            to_iso(click.timestamp),
                            click.referrer,
                            click.user_agent,
                            payload_hash(click),
                            points,
                            1 if flag_review else 0,
                            stamp,
                        ),
                    )
                except sqlite3.IntegrityError as e:
                    raise DuplicateEvent(f"idempotency key already applied: {click.idempotency_key}") from e

            params = {
                "u": user_id,
                "d": drop_id,
                "p": delta.participation,
                "perf": delta.performance,
                "b": delta.bonus,
                "points": points,
                "clicks": delta.clicks,
                "flag": 1 if flag_review else 0,
                "wk": wk,
                "stamp": stamp,
                "ver": expected_version,
            }
            q = f"""
                UPDATE ledger_entries SET
                    participation_points = participation_points + :p,
                    performance_points = performance_points + :perf,
                    bonus_points = bonus_points + :b,
                    total_hype = total_hype + :points,
                    current_drop_points = current_drop_points + :points,
                    {_WEEKLY_SET.format(t="")},
                    click_count = click_count + :clicks,
                    under_review = CASE WHEN :flag = 1 THEN 1 ELSE under_review END,
                    version = version + 1,
                    updated_at = :stamp
                WHERE user_id = :u AND drop_id = :d AND state = 'active'
            """
            if expected_version is not None:
                q += " AND version = :ver"

            cur = conn.execute(q, params)
            if cur.rowcount != 1:
                self._raise_apply_failure(conn, user_id, drop_id, expected_version)

            conn.execute(
                f"""
                UPDATE user_ledger SET
                    participation_points = participation_points + :p,
                    performance_points = performance_points + :perf,
                    bonus_points = bonus_points + :b,
                    total_hype = total_hype + :points,
                    current_drop_points = CASE
                        WHEN current_drop_id = :d THEN current_drop_points + :points
                        ELSE current_drop_points
                    END,
                    {_WEEKLY_SET.format(t="")},
                    click_count = click_count + :clicks,
                    version = version + 1,
                    updated_at = :stamp
                WHERE user_id = :u
                """,
                params,
            )

            entry = self._read_entry(conn, user_id, drop_id)

        return entry

    def close_drop(self, drop_id: str) -> int:
        """Close every active entry of a drop. Counters freeze; clicks stop accruing."""

        with self._db.transaction() as conn:
            cur = conn.execute(
                """
                UPDATE ledger_entries
                SET state = 'closed', version = version + 1, updated_at = ?
                WHERE drop_id = ? AND state = 'active'
                """,
                (to_iso(utc_now()), drop_id),
            )
        n = int(cur.rowcount)
        logger.info("ledger_drop_closed", extra={"drop_id": drop_id, "entries": n})
        return n

    def mark_under_review(self, user_id: str, drop_id: str) -> bool:
        """Flag the pair for admin review. Returns True if the flag was newly set."""

        return self._set_review(user_id, drop_id, 1)

    def clear_review(self, user_id: str, drop_id: str) -> bool:
        """Clear the review flag. Returns True if the pair was under review."""

        return self._set_review(user_id, drop_id, 0)

    # -----------------
    # Internals
    # -----------------

    def _set_review(self, user_id: str, drop_id: str, flag: int) -> bool:
        with self._db.transaction() as conn:
            cur = conn.execute(
                """
                UPDATE ledger_entries SET under_review = ?, version = version + 1, updated_at = ?
                WHERE user_id = ? AND drop_id = ? AND under_review != ?
                """,
                (flag, to_iso(utc_now()), user_id, drop_id, flag),
            )
            if cur.rowcount == 0:
                exists = conn.execute(
                    "SELECT 1 FROM ledger_entries WHERE user_id = ? AND drop_id = ?", (user_id, drop_id)
                ).fetchone()
                if exists is None:
                    raise EntryNotFound(f"no ledger entry for {user_id} in {drop_id}")
        return cur.rowcount > 0

    @staticmethod
    def _read_entry(conn: sqlite3.Connection, user_id: str, drop_id: str) -> LedgerEntry:
        row = conn.execute(
            "SELECT * FROM ledger_entries WHERE user_id = ? AND drop_id = ?",
            (user_id, drop_id),
        ).fetchone()
        if row is None:
            raise EntryNotFound(f"no ledger entry for {user_id} in {drop_id}")
        return _row_to_entry(row)

    @staticmethod
    def _raise_apply_failure(
        conn: sqlite3.Connection, user_id: str, drop_id: str, expected_version: int | None
    ) -> None:
        row = conn.execute(
            "SELECT state, version FROM ledger_entries WHERE user_id = ? AND drop_id = ?",
            (user_id, drop_id),
        ).fetchone()
        if row is None:
            raise EntryNotFound(f"no ledger entry for {user_id} in {drop_id}")
        if str(row["state"]) != EntryState.ACTIVE:
            raise DropClosed(f"ledger entry closed for {user_id} in {drop_id}")
        raise ConcurrencyConflict(
            f"version moved for {user_id} in {drop_id}: expected {expected_version}, found {int(row['version'])}"
        )
