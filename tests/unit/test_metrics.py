from __future__ import annotations

import threading

import pytest

from hypeledger.core.metrics import MetricsRegistry


def test_counters_split_by_reason() -> None:
    m = MetricsRegistry()
    m.counter("clicks_applied").inc(5)
    m.counter("clicks_applied").inc()
    m.counter("clicks_rejected", "drop.closed").inc()
    m.counter("clicks_rejected", "ledger.entry_not_found").inc(2)

    assert m.total("clicks_rejected") == 3
    assert m.snapshot() == {
        "counter.clicks_applied": 6.0,
        "counter.clicks_rejected[drop.closed]": 1.0,
        "counter.clicks_rejected[ledger.entry_not_found]": 2.0,
    }


def test_counters_never_decrease() -> None:
    with pytest.raises(ValueError):
        MetricsRegistry().counter("cas_retries").inc(-1)


def test_leaderboard_state_becomes_gauges() -> None:
    m = MetricsRegistry()
    m.observe_leaderboard({"entries": 4, "users": 3, "under_review": 1})
    m.observe_leaderboard({"entries": 5, "users": 3, "under_review": 0})

    snap = m.snapshot()
    assert snap["gauge.leaderboard_entries"] == 5.0
    assert snap["gauge.leaderboard_users"] == 3.0
    assert snap["gauge.under_review"] == 0.0


def test_counter_is_thread_safe() -> None:
    m = MetricsRegistry()

    def bump() -> None:
        for _ in range(1000):
            m.counter("cas_retries").inc()

    threads = [threading.Thread(target=bump) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert m.counter("cas_retries").value == 8000
