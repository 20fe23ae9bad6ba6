"""hypeledger.scoring.anti_gaming

Anti-gaming checks, run before any ledger mutation.

Four rules:
1. Exact dedup: an idempotency key counts once, ever.
2. Burst flag: more than N click events per tracking link inside a rolling window
   marks the (user, drop) pair under review. The clicks still count.
3. Participation is write-once per (user, drop).
4. Implausible engagement (rate above the ceiling) clamps the multiplier to 1.0
   instead of failing the event. Clicks past the ceiling add no bonus.

All checks are DB-backed (no in-memory state to lose on restart). Rules 1 and 3
are fast paths; the ledger enforces both again inside its write transaction.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta

from hypeledger.core.config import AntiGamingConfig
from hypeledger.core.database import Database
from hypeledger.core.events import ClickEvent, ParticipationRecord
from hypeledger.core.exceptions import DuplicateEvent, DuplicateParticipation
from hypeledger.core.time import to_iso, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Verdict:
    allowed: bool
    flagged: bool = False
    code: str = ""
    reason: str = ""


class AntiGamingValidator:
    def __init__(self, db: Database, *, config: AntiGamingConfig | None = None):
        self._db = db
        self.config = config or AntiGamingConfig()

    def check_click(self, event: ClickEvent) -> Verdict:
        """Classify a click event. Call before computing its delta."""

        if self._key_applied(event.idempotency_key):
            return Verdict(
                allowed=False,
                code=DuplicateEvent.code,
                reason=f"idempotency key already applied: {event.idempotency_key}",
            )

        recent = self.recent_click_events(event.user_id, event.drop_id, at=event.timestamp)
        if recent + 1 > self.config.burst_threshold:
            logger.warning(
                "click_burst_flagged",
                extra={
                    "user_id": event.user_id,
                    "drop_id": event.drop_id,
                    "events_in_window": recent + 1,
                    "threshold": self.config.burst_threshold,
                },
            )
            return Verdict(
                allowed=True,
                flagged=True,
                code="review.burst",
                reason=(
                    f"Burst: {recent + 1} click events within "
                    f"{self.config.burst_window_seconds}s (threshold {self.config.burst_threshold})"
                ),
            )

        return Verdict(allowed=True)

    def check_participation(self, record: ParticipationRecord) -> Verdict:
        row = self._db.conn.execute(
            "SELECT 1 FROM participations WHERE user_id = ? AND drop_id = ?",
            (record.user_id, record.drop_id),
        ).fetchone()
        if row is not None:
            return Verdict(
                allowed=False,
                code=DuplicateParticipation.code,
                reason=f"participation already recorded for {record.user_id} in {record.drop_id}",
            )
        return Verdict(allowed=True)

    def plausible_multiplier(self, multiplier: float, *, clicks: int, followers: int | None) -> float:
        """Clamp to 1.0 when clicks/followers exceeds the plausibility ceiling."""

        if not followers:
            return 1.0
        rate = float(clicks) / float(followers)
        if rate > float(self.config.max_engagement_rate):
            logger.info(
                "engagement_rate_clamped",
                extra={"clicks": clicks, "followers": followers, "rate": rate},
            )
            return 1.0
        return float(multiplier)

    def plausible_clicks(self, clicks: int, *, followers: int | None) -> int:
        """Cumulative clicks that count towards the engagement bonus.

        Clicks past ``followers * max_engagement_rate`` still earn performance points
        but never move the bonus target, so the target depends only on the count.
        """

        n = int(clicks)
        if not followers:
            return n
        ceiling = float(self.config.max_engagement_rate)
        cap = int(math.floor(ceiling * followers))
        # Agree with the rate comparison above at the float boundary.
        while (cap + 1) / followers <= ceiling:
            cap += 1
        while cap > 0 and cap / followers > ceiling:
            cap -= 1
        return min(n, cap)

    def recent_click_events(self, user_id: str, drop_id: str, *, at: datetime | None = None) -> int:
        """Click events for the tracking key inside the rolling window ending at ``at``."""

        end = at or utc_now()
        start = end - timedelta(seconds=int(self.config.burst_window_seconds))
        row = self._db.conn.execute(
            """
            SELECT COUNT(1) FROM click_events
            WHERE user_id = ? AND drop_id = ? AND ts > ? AND ts <= ?
            """,
            (user_id, drop_id, to_iso(start), to_iso(end)),
        ).fetchone()
        return int(row[0]) if row else 0

    def get_usage(self, user_id: str, drop_id: str) -> dict:
        """Current window usage for a tracking key."""

        return {
            "events_in_window": self.recent_click_events(user_id, drop_id),
            "window_seconds": self.config.burst_window_seconds,
            "threshold": self.config.burst_threshold,
        }

    def _key_applied(self, key: str) -> bool:
        row = self._db.conn.execute(
            "SELECT 1 FROM click_events WHERE idempotency_key = ?", (key,)
        ).fetchone()
        return row is not None
