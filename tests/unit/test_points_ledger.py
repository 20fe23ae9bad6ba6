from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from hypeledger.core.events import ClickEvent, EntryState, ParticipationRecord
from hypeledger.core.exceptions import (
    ConcurrencyConflict,
    DropClosed,
    DuplicateEvent,
    DuplicateParticipation,
    EntryNotFound,
)
from hypeledger.core.types import DeltaBundle, PointsBreakdown

# Monday 2026-03-02 .. Sunday 2026-03-08 is one weekly period.
MONDAY = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)


def _open(engine, user: str = "ada@example.com", drop: str = "drop-1", *, at: datetime = MONDAY, points: int = 100):
    rec = ParticipationRecord(drop_id=drop, user_id=user, submitted_at=at)
    return engine.ledger.open_entry(rec, score=lambda seq: PointsBreakdown(base=points))


@pytest.fixture()
def drop(make_drop):
    return make_drop(starts_at=MONDAY - timedelta(days=1), ends_at=MONDAY + timedelta(days=30))


def test_state_machine(engine, drop) -> None:
    assert engine.ledger.entry_state("ada@example.com", "drop-1") == EntryState.UNINITIALIZED
    _open(engine)
    assert engine.ledger.entry_state("ada@example.com", "drop-1") == EntryState.ACTIVE
    engine.ledger.close_drop("drop-1")
    assert engine.ledger.entry_state("ada@example.com", "drop-1") == EntryState.CLOSED


def test_open_entry_records_participation(engine, drop) -> None:
    opened = _open(engine, points=350)
    assert opened.participation_seq == 1
    assert opened.drops_participated == 1
    assert opened.entry.participation_points == 350
    assert opened.entry.total_hype == 350
    assert opened.entry.week_key == "2026-03-02"

    totals = engine.ledger.get_user_totals("ada@example.com")
    assert totals is not None
    assert totals.total_hype == 350
    assert totals.current_drop_id == "drop-1"
    assert totals.first_participated_at == MONDAY
    assert engine.ledger.participation_breakdown("ada@example.com", "drop-1") == PointsBreakdown(base=350)


def test_participation_ordinal_counts_per_drop(engine, drop) -> None:
    assert _open(engine, "a@example.com").participation_seq == 1
    assert _open(engine, "b@example.com").participation_seq == 2


def test_open_entry_is_write_once(engine, drop) -> None:
    _open(engine)
    with pytest.raises(DuplicateParticipation):
        _open(engine)


def test_apply_delta_increments_entry_and_rollup(engine, drop) -> None:
    opened = _open(engine)
    after = engine.ledger.apply_delta(
        "ada@example.com",
        "drop-1",
        DeltaBundle(performance=15, bonus=2, clicks=1),
        expected_version=opened.entry.version,
        at=MONDAY,
    )
    assert after.performance_points == 15
    assert after.bonus_points == 2
    assert after.click_count == 1
    assert after.total_hype == 117
    assert after.version == opened.entry.version + 1

    totals = engine.ledger.get_user_totals("ada@example.com")
    assert totals.total_hype == 117
    assert totals.click_count == 1
    assert totals.current_drop_points == 117


def test_stale_version_is_a_conflict(engine, drop) -> None:
    opened = _open(engine)
    engine.ledger.apply_delta("ada@example.com", "drop-1", DeltaBundle(performance=1, clicks=1), at=MONDAY)
    with pytest.raises(ConcurrencyConflict):
        engine.ledger.apply_delta(
            "ada@example.com",
            "drop-1",
            DeltaBundle(performance=1, clicks=1),
            expected_version=opened.entry.version,
            at=MONDAY,
        )
    assert engine.ledger.current_click_count("ada@example.com", "drop-1") == 1


def test_replayed_key_changes_nothing(engine, drop) -> None:
    _open(engine)
    click = ClickEvent(drop_id="drop-1", user_id="ada@example.com", idempotency_key="k1", timestamp=MONDAY)
    engine.ledger.apply_delta("ada@example.com", "drop-1", DeltaBundle(performance=15, clicks=1), click=click)
    before = engine.ledger.get_entry("ada@example.com", "drop-1")

    with pytest.raises(DuplicateEvent):
        engine.ledger.apply_delta("ada@example.com", "drop-1", DeltaBundle(performance=15, clicks=1), click=click)

    after = engine.ledger.get_entry("ada@example.com", "drop-1")
    assert after.total_hype == before.total_hype
    assert after.click_count == before.click_count


def test_missing_entry(engine, drop) -> None:
    with pytest.raises(EntryNotFound):
        engine.ledger.apply_delta("ghost@example.com", "drop-1", DeltaBundle(clicks=1))
    assert engine.ledger.current_click_count("ghost@example.com", "drop-1") == 0


def test_closed_entry_rejects_and_freezes(engine, drop) -> None:
    _open(engine)
    engine.ledger.apply_delta("ada@example.com", "drop-1", DeltaBundle(performance=15, clicks=1), at=MONDAY)
    assert engine.ledger.close_drop("drop-1") == 1

    click = ClickEvent(drop_id="drop-1", user_id="ada@example.com", idempotency_key="late", timestamp=MONDAY)
    with pytest.raises(DropClosed):
        engine.ledger.apply_delta("ada@example.com", "drop-1", DeltaBundle(performance=10, clicks=1), click=click)

    entry = engine.ledger.get_entry("ada@example.com", "drop-1")
    assert entry.total_hype == 115
    assert entry.weekly_points == 115
    # The failed apply rolled back its idempotency key too.
    assert not engine.validator._key_applied("late")


def test_weekly_counter_resets_at_period_boundary(engine, drop) -> None:
    _open(engine, at=MONDAY)  # 100 in week of 03-02
    engine.ledger.apply_delta(
        "ada@example.com", "drop-1", DeltaBundle(performance=50, clicks=5), at=MONDAY + timedelta(days=6)
    )
    entry = engine.ledger.get_entry("ada@example.com", "drop-1")
    assert (entry.week_key, entry.weekly_points) == ("2026-03-02", 150)

    # Next Monday: the stale weekly value is replaced, not accumulated.
    engine.ledger.apply_delta(
        "ada@example.com", "drop-1", DeltaBundle(performance=20, clicks=2), at=MONDAY + timedelta(days=7)
    )
    entry = engine.ledger.get_entry("ada@example.com", "drop-1")
    assert (entry.week_key, entry.weekly_points) == ("2026-03-09", 20)
    assert entry.total_hype == 170

    totals = engine.ledger.get_user_totals("ada@example.com")
    assert (totals.week_key, totals.weekly_points) == ("2026-03-09", 20)


def test_late_event_from_older_period_leaves_weekly_alone(engine, drop) -> None:
    _open(engine, at=MONDAY + timedelta(days=7))
    engine.ledger.apply_delta(
        "ada@example.com", "drop-1", DeltaBundle(performance=30, clicks=3), at=MONDAY + timedelta(days=1)
    )
    entry = engine.ledger.get_entry("ada@example.com", "drop-1")
    assert entry.week_key == "2026-03-09"
    assert entry.weekly_points == 100
    assert entry.total_hype == 130


def test_current_drop_points_follow_latest_participation(engine, make_drop, drop) -> None:
    make_drop("drop-2", starts_at=MONDAY - timedelta(days=1), ends_at=MONDAY + timedelta(days=30))
    _open(engine, drop="drop-1", points=100)
    engine.ledger.apply_delta("ada@example.com", "drop-1", DeltaBundle(performance=15, clicks=1), at=MONDAY)
    assert engine.ledger.get_user_totals("ada@example.com").current_drop_points == 115

    _open(engine, drop="drop-2", points=200, at=MONDAY + timedelta(hours=1))
    totals = engine.ledger.get_user_totals("ada@example.com")
    assert totals.current_drop_id == "drop-2"
    assert totals.current_drop_points == 200
    assert totals.drops_participated == 2

    # Clicks on the older drop still count toward the total, not the current drop.
    engine.ledger.apply_delta("ada@example.com", "drop-1", DeltaBundle(performance=15, clicks=1), at=MONDAY)
    totals = engine.ledger.get_user_totals("ada@example.com")
    assert totals.current_drop_points == 200
    assert totals.total_hype == 330


def test_review_flag_round_trip(engine, drop) -> None:
    _open(engine)
    assert engine.ledger.mark_under_review("ada@example.com", "drop-1") is True
    assert engine.ledger.mark_under_review("ada@example.com", "drop-1") is False
    assert engine.ledger.get_entry("ada@example.com", "drop-1").under_review

    assert engine.ledger.clear_review("ada@example.com", "drop-1") is True
    assert engine.ledger.clear_review("ada@example.com", "drop-1") is False

    with pytest.raises(EntryNotFound):
        engine.ledger.clear_review("ghost@example.com", "drop-1")


def test_list_entries_filters(engine, make_drop, drop) -> None:
    make_drop("drop-2", starts_at=MONDAY - timedelta(days=1), ends_at=MONDAY + timedelta(days=30))
    _open(engine, "a@example.com", "drop-1")
    _open(engine, "a@example.com", "drop-2")
    _open(engine, "b@example.com", "drop-1")

    assert len(engine.ledger.list_entries()) == 3
    assert {e.user_id for e in engine.ledger.list_entries(drop_id="drop-1")} == {"a@example.com", "b@example.com"}
    assert {e.drop_id for e in engine.ledger.list_entries(user_id="a@example.com")} == {"drop-1", "drop-2"}
    assert [t.user_id for t in engine.ledger.list_user_totals()] == ["a@example.com", "b@example.com"]
