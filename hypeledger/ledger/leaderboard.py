"""hypeledger.ledger.leaderboard

Materialized leaderboard views.

Views are derived state. The ledger rows are the source of truth; if a view is
ever suspect, ``rebuild()`` reloads it from them.

Freshness:
- the owning engine calls ``refresh()`` after each mutation it commits;
- reads pull rows other writers (another process on the same database) changed
  since the last sync, at most ``max_staleness`` apart;
- a cached row is only replaced by one with a higher ``version``.

Ordering: score descending, then earliest participation, then id.
Archived users never appear.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from hypeledger.core.events import LeaderboardKind
from hypeledger.core.exceptions import ValidationError
from hypeledger.core.models import User
from hypeledger.core.time import utc_now
from hypeledger.core.types import LeaderboardRow, LedgerEntry, UserTotals
from hypeledger.ledger.points import PointsLedger
from hypeledger.ledger.registry import UserRegistry


@dataclass(frozen=True, slots=True)
class _Candidate:
    key: str
    score: float
    since: datetime | None
    user_id: str | None = None
    team: str | None = None


def _sort_key(c: _Candidate) -> tuple[float, float, str]:
    since = c.since.timestamp() if c.since is not None else float("inf")
    return (-c.score, since, c.key)


def _ranked(candidates: list[_Candidate], limit: int | None) -> list[LeaderboardRow]:
    ordered = sorted(candidates, key=_sort_key)
    if limit is not None:
        ordered = ordered[: max(0, int(limit))]
    return [
        LeaderboardRow(
            rank=i,
            display_score=c.score,
            user_id=c.user_id,
            team=c.team,
            participated_at=c.since,
        )
        for i, c in enumerate(ordered, start=1)
    ]


class LeaderboardAggregator:
    """Holds ledger rows in memory and ranks them on demand."""

    def __init__(
        self,
        ledger: PointsLedger,
        users: UserRegistry,
        *,
        clock: Callable[[], datetime] = utc_now,
        max_staleness: float | None = 0.5,
        sync_overlap: float = 5.0,
    ) -> None:
        self._ledger = ledger
        self._users_registry = users
        self._clock = clock
        self._max_staleness = max_staleness
        # Rows are stamped before their transaction commits; re-read that far back.
        self._sync_overlap = timedelta(seconds=float(sync_overlap))
        self._lock = threading.RLock()
        self._entries: dict[tuple[str, str], LedgerEntry] = {}
        self._totals: dict[str, UserTotals] = {}
        self._users: dict[str, User] = {}
        self._synced_at: float | None = None
        self._watermark: datetime | None = None

    # -----------------
    # Maintenance
    # -----------------

    def refresh(self, user_id: str, drop_id: str | None = None) -> None:
        """Reload the rows a mutation touched."""

        user = self._users_registry.get(user_id)
        totals = self._ledger.get_user_totals(user_id)
        entry = self._ledger.get_entry(user_id, drop_id) if drop_id is not None else None

        with self._lock:
            if user is None:
                self._users.pop(user_id, None)
            else:
                self._users[user_id] = user
            if totals is not None:
                self._merge_totals([totals])
            if entry is not None:
                self._merge_entries([entry])

    def rebuild(self) -> None:
        started = utc_now()
        entries = self._ledger.list_entries()
        totals = self._ledger.list_user_totals()
        users = self._users_registry.list_all(include_archived=True)

        with self._lock:
            self._entries = {(e.user_id, e.drop_id): e for e in entries}
            self._totals = {t.user_id: t for t in totals}
            self._users = {u.id: u for u in users}
            self._mark_synced(started)

    def sync(self) -> int:
        """Pull rows changed since the last sync. Returns how many were read."""

        with self._lock:
            watermark = self._watermark
        if watermark is None:
            self.rebuild()
            return len(self._entries)

        started = utc_now()
        since = watermark - self._sync_overlap
        entries = self._ledger.list_entries(updated_since=since)
        totals = self._ledger.list_user_totals(updated_since=since)
        users = self._users_registry.list_all(include_archived=True, updated_since=since)

        with self._lock:
            self._merge_entries(entries)
            self._merge_totals(totals)
            for u in users:
                self._users[u.id] = u
            self._mark_synced(started)
        return len(entries) + len(totals) + len(users)

    def _maybe_sync(self) -> None:
        if self._max_staleness is None:
            return
        with self._lock:
            synced_at = self._synced_at
        if synced_at is None or time.monotonic() - synced_at >= self._max_staleness:
            self.sync()

    def _mark_synced(self, started: datetime) -> None:
        if self._watermark is None or started > self._watermark:
            self._watermark = started
        self._synced_at = time.monotonic()

    def _merge_entries(self, entries: Iterable[LedgerEntry]) -> None:
        for e in entries:
            key = (e.user_id, e.drop_id)
            cached = self._entries.get(key)
            if cached is None or e.version > cached.version:
                self._entries[key] = e

    def _merge_totals(self, totals: Iterable[UserTotals]) -> None:
        for t in totals:
            cached = self._totals.get(t.user_id)
            if cached is None or t.version > cached.version:
                self._totals[t.user_id] = t

    # -----------------
    # Views
    # -----------------

    def view(
        self,
        kind: LeaderboardKind | str,
        *,
        drop_id: str | None = None,
        limit: int | None = None,
    ) -> list[LeaderboardRow]:
        """Rank one view.

        The drop view is scoped to ``drop_id`` and keeps ranking a drop after it
        closes: closed entries are frozen, and that frozen ranking is the final
        standings ``winners()`` reads from. Callers wanting live drops only pick the
        drop from ``DropRegistry.list_all(status=DropStatus.ACTIVE)``.
        """

        k = LeaderboardKind(str(kind))
        self._maybe_sync()
        with self._lock:
            if k == LeaderboardKind.GLOBAL:
                return _ranked(self._user_candidates(lambda t: t.total_hype), limit)
            if k == LeaderboardKind.QUALITY:
                return _ranked(self._user_candidates(lambda t: t.participation_points), limit)
            if k == LeaderboardKind.WEEKLY:
                return _ranked(self._weekly_candidates(), limit)
            if k == LeaderboardKind.DROP:
                if not drop_id:
                    raise ValidationError("drop leaderboard requires a drop_id", code="leaderboard.drop_required")
                return _ranked(self._drop_candidates(drop_id), limit)
            if k == LeaderboardKind.TEAM:
                return _ranked(self._team_candidates(), limit)
            return _ranked(self._engagement_candidates(), limit)

    def winners(
        self,
        kind: LeaderboardKind | str = LeaderboardKind.GLOBAL,
        *,
        drop_id: str | None = None,
        limit: int = 3,
    ) -> list[LeaderboardRow]:
        """Top of a user view, skipping anyone with a pair under review.

        For a drop view only that drop's review flag matters.
        """

        k = LeaderboardKind(str(kind))
        if k == LeaderboardKind.TEAM:
            raise ValidationError("winners are individual; team view is not eligible", code="leaderboard.invalid_kind")

        self._maybe_sync()
        with self._lock:
            flagged = {
                uid
                for (uid, did), e in self._entries.items()
                if e.under_review and (drop_id is None or k != LeaderboardKind.DROP or did == drop_id)
            }
        rows = [r for r in self.view(k, drop_id=drop_id) if r.user_id not in flagged]
        return [
            LeaderboardRow(
                rank=i,
                display_score=r.display_score,
                user_id=r.user_id,
                team=r.team,
                participated_at=r.participated_at,
            )
            for i, r in enumerate(rows[: max(0, int(limit))], start=1)
        ]

    def get_state(self) -> dict[str, Any]:
        self._maybe_sync()
        with self._lock:
            return {
                "entries": len(self._entries),
                "users": len(self._totals),
                "under_review": sum(1 for e in self._entries.values() if e.under_review),
            }

    # -----------------
    # Candidates
    # -----------------

    def _active(self, user_id: str) -> User | None:
        user = self._users.get(user_id)
        if user is None or user.archived:
            return None
        return user

    def _user_candidates(self, score: Callable[[UserTotals], int]) -> list[_Candidate]:
        out: list[_Candidate] = []
        for t in self._totals.values():
            user = self._active(t.user_id)
            if user is None:
                continue
            out.append(
                _Candidate(
                    key=t.user_id,
                    score=float(score(t)),
                    since=t.first_participated_at,
                    user_id=t.user_id,
                    team=user.team,
                )
            )
        return out

    def _weekly_candidates(self) -> list[_Candidate]:
        current = self._ledger.period_key(self._clock())
        out: list[_Candidate] = []
        for t in self._totals.values():
            user = self._active(t.user_id)
            if user is None or t.week_key != current:
                continue
            out.append(
                _Candidate(
                    key=t.user_id,
                    score=float(t.weekly_points),
                    since=t.first_participated_at,
                    user_id=t.user_id,
                    team=user.team,
                )
            )
        return out

    def _drop_candidates(self, drop_id: str) -> list[_Candidate]:
        out: list[_Candidate] = []
        for (uid, did), e in self._entries.items():
            if did != drop_id:
                continue
            user = self._active(uid)
            if user is None:
                continue
            out.append(
                _Candidate(key=uid, score=float(e.total_hype), since=e.participated_at, user_id=uid, team=user.team)
            )
        return out

    def _team_candidates(self) -> list[_Candidate]:
        scores: dict[str, int] = {}
        earliest: dict[str, datetime | None] = {}
        for t in self._totals.values():
            user = self._active(t.user_id)
            if user is None or not user.team:
                continue
            scores[user.team] = scores.get(user.team, 0) + int(t.total_hype)
            prev = earliest.get(user.team)
            since = t.first_participated_at
            if prev is None or (since is not None and since < prev):
                earliest[user.team] = since
        return [
            _Candidate(key=team, score=float(total), since=earliest.get(team), team=team)
            for team, total in scores.items()
        ]

    def _engagement_candidates(self) -> list[_Candidate]:
        out: list[_Candidate] = []
        for t in self._totals.values():
            user = self._active(t.user_id)
            if user is None or not user.followers:
                continue
            out.append(
                _Candidate(
                    key=t.user_id,
                    score=float(t.click_count) / float(user.followers),
                    since=t.first_participated_at,
                    user_id=t.user_id,
                    team=user.team,
                )
            )
        return out
