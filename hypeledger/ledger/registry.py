"""hypeledger.ledger.registry

Drops and users as the engine sees them.

Campaign admin owns drop creation; the engine reads point configuration and time
windows and only ever moves status forward. Users are created on first
participation and archived, never deleted.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime

from hypeledger.core.config import ClickTier
from hypeledger.core.database import Database
from hypeledger.core.events import DropStatus
from hypeledger.core.exceptions import DropNotFound, LedgerError, ValidationError
from hypeledger.core.models import Drop, User
from hypeledger.core.time import parse_dt, to_iso, utc_now

_DROP_TRANSITIONS: dict[DropStatus, set[DropStatus]] = {
    DropStatus.DRAFT: {DropStatus.ACTIVE, DropStatus.ARCHIVED},
    DropStatus.ACTIVE: {DropStatus.COMPLETED},
    DropStatus.COMPLETED: {DropStatus.ARCHIVED},
    DropStatus.ARCHIVED: set(),
}


class DropRegistry:
    def __init__(self, db: Database):
        self._db = db

    @staticmethod
    def _row_to_drop(row: sqlite3.Row) -> Drop:
        tiers_raw = row["click_tiers"]
        tiers = [ClickTier(**t) for t in json.loads(tiers_raw)] if tiers_raw else None
        return Drop(
            id=str(row["id"]),
            name=str(row["name"] or ""),
            status=DropStatus(str(row["status"])),
            starts_at=parse_dt(str(row["starts_at"])),
            ends_at=parse_dt(str(row["ends_at"])),
            base_points=None if row["base_points"] is None else int(row["base_points"]),
            click_tiers=tiers,
            created_at=parse_dt(str(row["created_at"])),
        )

    def create(
        self,
        *,
        drop_id: str,
        starts_at: datetime,
        ends_at: datetime,
        name: str = "",
        status: DropStatus = DropStatus.DRAFT,
        base_points: int | None = None,
        click_tiers: list[ClickTier] | None = None,
    ) -> Drop:
        now = utc_now()
        try:
            drop = Drop(
                id=drop_id,
                name=name,
                status=status,
                starts_at=starts_at,
                ends_at=ends_at,
                base_points=base_points,
                click_tiers=click_tiers,
                created_at=now,
            )
        except ValueError as e:
            raise ValidationError(f"invalid drop {drop_id}: {e}", code="drop.invalid") from e
        tiers_json = json.dumps([t.model_dump() for t in click_tiers]) if click_tiers else None
        try:
            with self._db.transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO drops (id, name, status, starts_at, ends_at, base_points, click_tiers, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        drop.id,
                        drop.name,
                        str(drop.status),
                        to_iso(drop.starts_at),
                        to_iso(drop.ends_at),
                        base_points,
                        tiers_json,
                        to_iso(now),
                        to_iso(now),
                    ),
                )
        except sqlite3.IntegrityError as e:
            raise ValidationError(f"drop already exists: {drop_id}", code="drop.duplicate") from e
        return drop

    def get(self, drop_id: str) -> Drop | None:
        row = self._db.conn.execute("SELECT * FROM drops WHERE id = ?", (drop_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_drop(row)

    def require(self, drop_id: str) -> Drop:
        drop = self.get(drop_id)
        if drop is None:
            raise DropNotFound(f"unknown drop: {drop_id}")
        return drop

    def list_all(self, *, status: DropStatus | None = None) -> list[Drop]:
        if status is None:
            rows = self._db.conn.execute("SELECT * FROM drops ORDER BY starts_at ASC").fetchall()
        else:
            rows = self._db.conn.execute(
                "SELECT * FROM drops WHERE status = ? ORDER BY starts_at ASC", (str(status),)
            ).fetchall()
        return [self._row_to_drop(r) for r in rows]

    def transition(self, drop_id: str, status: DropStatus) -> Drop:
        """Move a drop forward through draft → active → completed → archived."""

        current = self.require(drop_id)
        if status == current.status:
            return current
        if status not in _DROP_TRANSITIONS[current.status]:
            raise ValidationError(
                f"illegal drop transition {current.status} -> {status}",
                code="drop.illegal_transition",
            )

        with self._db.transaction() as conn:
            cur = conn.execute(
                "UPDATE drops SET status = ?, updated_at = ? WHERE id = ? AND status = ?",
                (str(status), to_iso(utc_now()), drop_id, str(current.status)),
            )
            if cur.rowcount != 1:
                raise LedgerError(f"drop status changed concurrently: {drop_id}")
        return self.require(drop_id)


class UserRegistry:
    def __init__(self, db: Database):
        self._db = db

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        return User(
            id=str(row["id"]),
            followers=None if row["followers"] is None else int(row["followers"]),
            team=row["team"],
            archived=bool(int(row["archived"])),
            created_at=parse_dt(str(row["created_at"])),
        )

    @staticmethod
    def ensure_in(
        conn: sqlite3.Connection,
        *,
        user_id: str,
        followers: int | None = None,
        team: str | None = None,
        now: datetime | None = None,
    ) -> None:
        """Create the user if missing; refresh self-reported fields when provided.

        Runs inside a caller-owned transaction.
        """

        created = to_iso(now or utc_now())
        conn.execute(
            """
            INSERT INTO users (id, followers, team, archived, created_at, updated_at)
            VALUES (?, ?, ?, 0, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                followers = COALESCE(excluded.followers, users.followers),
                team = COALESCE(excluded.team, users.team),
                updated_at = excluded.updated_at
            """,
            (user_id, followers, team, created, to_iso(utc_now())),
        )

    def ensure(self, user_id: str, *, followers: int | None = None, team: str | None = None) -> User:
        with self._db.transaction() as conn:
            self.ensure_in(conn, user_id=user_id, followers=followers, team=team)
        user = self.get(user_id)
        if user is None:
            raise LedgerError(f"user row missing after upsert: {user_id}")
        return user

    def get(self, user_id: str) -> User | None:
        row = self._db.conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def list_all(self, *, include_archived: bool = False, updated_since: datetime | None = None) -> list[User]:
        q = "SELECT * FROM users WHERE 1=1"
        params: list[str] = []
        if not include_archived:
            q += " AND archived = 0"
        if updated_since is not None:
            q += " AND updated_at >= ?"
            params.append(to_iso(updated_since))
        rows = self._db.conn.execute(q + " ORDER BY created_at ASC", tuple(params)).fetchall()
        return [self._row_to_user(r) for r in rows]

    def archive(self, user_id: str) -> bool:
        with self._db.transaction() as conn:
            cur = conn.execute(
                "UPDATE users SET archived = 1, updated_at = ? WHERE id = ?",
                (to_iso(utc_now()), user_id),
            )
        return cur.rowcount > 0
