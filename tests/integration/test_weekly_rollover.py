"""Weekly counters across a period boundary, with late and out-of-order events."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from hypeledger.core.types import ResultStatus
from hypeledger.ledger.leaderboard import LeaderboardAggregator

ADA = "ada@example.com"
BOB = "bob@example.com"

# Week of Monday 2026-03-02, then the week of 2026-03-09.
WEEK1 = datetime(2026, 3, 3, 10, tzinfo=UTC)
WEEK2 = datetime(2026, 3, 10, 10, tzinfo=UTC)


def _click(engine, user: str, key: str, at: datetime, clicks: int = 1):
    r = engine.record_click(
        {"drop_id": "spring", "user_id": user, "idempotency_key": key, "clicks": clicks, "timestamp": at.isoformat()}
    )
    assert r.status == ResultStatus.APPLIED
    return r


@pytest.fixture()
def spring(engine, make_drop):
    make_drop(
        "spring",
        starts_at=datetime(2026, 3, 2, tzinfo=UTC),
        ends_at=datetime(2026, 3, 20, tzinfo=UTC),
    )
    for user in (ADA, BOB):
        engine.submit_participation({"drop_id": "spring", "user_id": user, "submitted_at": WEEK1.isoformat()})
    return engine


def _board(engine, at: datetime) -> LeaderboardAggregator:
    board = LeaderboardAggregator(engine.ledger, engine.users, clock=lambda: at)
    board.rebuild()
    return board


def test_weekly_resets_on_first_write_of_new_period(spring) -> None:
    engine = spring
    participation = engine.ledger.get_entry(ADA, "spring").participation_points

    _click(engine, ADA, "w1", WEEK1, clicks=5)
    t = engine.ledger.get_user_totals(ADA)
    assert (t.week_key, t.weekly_points) == ("2026-03-02", participation + 75)

    _click(engine, ADA, "w2", WEEK2, clicks=3)
    t = engine.ledger.get_user_totals(ADA)
    assert (t.week_key, t.weekly_points) == ("2026-03-09", 45)
    assert t.total_hype == participation + 75 + 45


def test_late_event_from_older_week_counts_only_in_totals(spring) -> None:
    engine = spring
    _click(engine, ADA, "w2", WEEK2, clicks=3)
    before = engine.ledger.get_user_totals(ADA)

    _click(engine, ADA, "late", WEEK1)
    after = engine.ledger.get_user_totals(ADA)

    assert after.week_key == "2026-03-09"
    assert after.weekly_points == before.weekly_points
    assert after.total_hype == before.total_hype + 15


def test_weekly_view_follows_the_clock(spring) -> None:
    engine = spring
    _click(engine, ADA, "a1", WEEK1, clicks=20)
    _click(engine, BOB, "b1", WEEK2, clicks=2)

    week1 = _board(engine, WEEK1).view("weekly")
    assert [r.user_id for r in week1] == [ADA]

    week2 = _board(engine, WEEK2).view("weekly")
    assert [(r.user_id, r.display_score) for r in week2] == [(BOB, 30)]

    assert _board(engine, datetime(2026, 3, 17, tzinfo=UTC)).view("weekly") == []

    # The all-time board is unaffected by periods.
    assert _board(engine, WEEK2).view("global")[0].user_id == ADA
