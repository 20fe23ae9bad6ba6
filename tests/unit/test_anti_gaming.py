from __future__ import annotations

from datetime import timedelta

from hypeledger.core.config import AntiGamingConfig
from hypeledger.core.events import ClickEvent, ParticipationRecord
from hypeledger.core.time import utc_now
from hypeledger.scoring.anti_gaming import AntiGamingValidator


def _click(key: str, *, at=None, user: str = "ada@example.com", drop: str = "drop-1") -> ClickEvent:
    return ClickEvent(drop_id=drop, user_id=user, idempotency_key=key, timestamp=at or utc_now())


def test_fresh_click_is_allowed(engine, make_drop) -> None:
    make_drop()
    engine.submit_participation({"drop_id": "drop-1", "user_id": "ada@example.com"})

    v = engine.validator.check_click(_click("k1"))
    assert v.allowed
    assert not v.flagged


def test_applied_key_is_a_duplicate(engine, make_drop) -> None:
    make_drop()
    engine.submit_participation({"drop_id": "drop-1", "user_id": "ada@example.com"})
    engine.record_click(_click("k1"))

    v = engine.validator.check_click(_click("k1"))
    assert not v.allowed
    assert v.code == "click.duplicate"


def test_burst_flags_but_allows(engine, make_drop) -> None:
    make_drop()
    engine.submit_participation({"drop_id": "drop-1", "user_id": "ada@example.com"})
    t0 = utc_now() - timedelta(seconds=30)
    for i in range(10):
        engine.record_click(_click(f"k{i}", at=t0 + timedelta(seconds=i)))

    v = engine.validator.check_click(_click("k-next", at=t0 + timedelta(seconds=11)))
    assert v.allowed
    assert v.flagged
    assert v.code == "review.burst"


def test_burst_window_is_rolling(engine, make_drop) -> None:
    make_drop()
    engine.submit_participation({"drop_id": "drop-1", "user_id": "ada@example.com"})
    t0 = utc_now() - timedelta(minutes=10)
    for i in range(10):
        engine.record_click(_click(f"k{i}", at=t0 + timedelta(seconds=i)))

    later = t0 + timedelta(seconds=120)
    assert engine.validator.recent_click_events("ada@example.com", "drop-1", at=later) == 0
    assert not engine.validator.check_click(_click("k-late", at=later)).flagged


def test_burst_is_per_tracking_key(engine, make_drop) -> None:
    make_drop()
    for user in ("ada@example.com", "grace@example.com"):
        engine.submit_participation({"drop_id": "drop-1", "user_id": user})
    t0 = utc_now() - timedelta(seconds=30)
    for i in range(10):
        engine.record_click(_click(f"a{i}", at=t0 + timedelta(seconds=i)))

    v = engine.validator.check_click(_click("g1", user="grace@example.com", at=t0 + timedelta(seconds=11)))
    assert not v.flagged


def test_second_participation_is_rejected(engine, make_drop) -> None:
    make_drop()
    rec = ParticipationRecord(drop_id="drop-1", user_id="ada@example.com")
    assert engine.validator.check_participation(rec).allowed

    engine.submit_participation(rec)
    v = engine.validator.check_participation(rec)
    assert not v.allowed
    assert v.code == "participation.duplicate"


def test_implausible_rate_clamps_multiplier(engine) -> None:
    v = AntiGamingValidator(engine.db, config=AntiGamingConfig(max_engagement_rate=1.0))
    assert v.plausible_multiplier(1.5, clicks=501, followers=500) == 1.0
    assert v.plausible_multiplier(1.5, clicks=500, followers=500) == 1.5
    assert v.plausible_multiplier(1.5, clicks=10, followers=None) == 1.0


def test_bonus_clicks_stop_at_the_rate_ceiling(engine) -> None:
    v = AntiGamingValidator(engine.db, config=AntiGamingConfig(max_engagement_rate=0.29))
    assert v.plausible_clicks(40, followers=100) == 29
    assert v.plausible_clicks(12, followers=100) == 12
    assert v.plausible_clicks(40, followers=None) == 40


def test_usage_reports_window(engine) -> None:
    usage = engine.validator.get_usage("ada@example.com", "drop-1")
    assert usage == {"events_in_window": 0, "window_seconds": 60, "threshold": 10}
