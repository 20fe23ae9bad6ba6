"""hypeledger.core.metrics

In-process counters and gauges for the attribution engine.

Counters are monotonic integers keyed by name and an optional reason, so
``clicks_rejected`` splits into ``drop.closed``, ``ledger.entry_not_found`` and so
on without a metric per code. Gauges hold the last value copied from derived state
(leaderboard size, pairs under review). ``snapshot()`` flattens both for
``hypeledger status``.
"""

from __future__ import annotations

from collections.abc import Mapping
from threading import Lock

CLICKS_APPLIED = "clicks_applied"
CLICKS_DUPLICATE = "clicks_duplicate"
CLICKS_REJECTED = "clicks_rejected"
CLICKS_FLAGGED = "clicks_flagged"
CAS_RETRIES = "cas_retries"
PARTICIPATIONS_APPLIED = "participations_applied"
PARTICIPATIONS_REJECTED = "participations_rejected"
TRANSITIONS = "transitions"

LEADERBOARD_ENTRIES = "leaderboard_entries"
LEADERBOARD_USERS = "leaderboard_users"
UNDER_REVIEW = "under_review"


def metric_key(name: str, reason: str | None = None) -> str:
    return f"{name}[{reason}]" if reason else name


class Counter:
    __slots__ = ("name", "reason", "_value", "_lock")

    def __init__(self, name: str, reason: str | None = None) -> None:
        self.name = name
        self.reason = reason
        self._value = 0
        self._lock = Lock()

    def inc(self, amount: int = 1) -> None:
        if amount < 0:
            raise ValueError(f"counter {self.name} cannot decrease")
        with self._lock:
            self._value += int(amount)

    @property
    def value(self) -> int:
        with self._lock:
            return self._value


class Gauge:
    __slots__ = ("name", "_value", "_lock")

    def __init__(self, name: str) -> None:
        self.name = name
        self._value = 0.0
        self._lock = Lock()

    def set(self, value: float) -> None:
        with self._lock:
            self._value = float(value)

    @property
    def value(self) -> float:
        with self._lock:
            return self._value


class MetricsRegistry:
    def __init__(self) -> None:
        self._lock = Lock()
        self._counters: dict[str, Counter] = {}
        self._gauges: dict[str, Gauge] = {}

    def counter(self, name: str, reason: str | None = None) -> Counter:
        key = metric_key(name, reason)
        with self._lock:
            c = self._counters.get(key)
            if c is None:
                c = self._counters[key] = Counter(name, reason)
            return c

    def gauge(self, name: str) -> Gauge:
        with self._lock:
            g = self._gauges.get(name)
            if g is None:
                g = self._gauges[name] = Gauge(name)
            return g

    def total(self, name: str) -> int:
        """Sum of a counter over every reason, the bare one included."""

        with self._lock:
            counters = [c for c in self._counters.values() if c.name == name]
        return sum(c.value for c in counters)

    def observe_leaderboard(self, state: Mapping[str, int]) -> None:
        """Copy ``LeaderboardAggregator.get_state()`` into gauges."""

        self.gauge(LEADERBOARD_ENTRIES).set(state.get("entries", 0))
        self.gauge(LEADERBOARD_USERS).set(state.get("users", 0))
        self.gauge(UNDER_REVIEW).set(state.get("under_review", 0))

    def snapshot(self) -> dict[str, float]:
        with self._lock:
            counters = dict(self._counters)
            gauges = dict(self._gauges)
        data: dict[str, float] = {f"counter.{k}": float(c.value) for k, c in counters.items()}
        data.update({f"gauge.{k}": g.value for k, g in gauges.items()})
        return data


REGISTRY = MetricsRegistry()
