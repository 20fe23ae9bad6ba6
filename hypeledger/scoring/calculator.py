"""hypeledger.scoring.calculator

Pure, deterministic point arithmetic. No state, no IO.

Clicks are scored over *cumulative* counts: the points for a click event are the
difference of the tier function before and after it. Applying k single clicks or
one batch of k yields the same total, in any order.

Tiers (defaults, overridable per drop):
  clicks 1-10   15 each
  clicks 11-50  10 each
  clicks 51+     8 each

Engagement multiplier (clicks / followers):
  >= 5%  x1.5
  >= 3%  x1.2
  else   x1.0
It scales performance points only. The surplus is booked as bonus points.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

from hypeledger.core.config import DEFAULT_CLICK_TIERS, ClickTier, EngagementTier, ScoringConfig
from hypeledger.core.events import ParticipationRecord
from hypeledger.core.models import Drop
from hypeledger.core.time import ensure_utc
from hypeledger.core.types import DeltaBundle, PointsBreakdown

DEFAULT_ENGAGEMENT_TIERS = ScoringConfig().engagement_tiers


def tier_total(clicks: int, tiers: Sequence[ClickTier] = DEFAULT_CLICK_TIERS) -> int:
    """Total performance points earned by ``clicks`` cumulative clicks."""

    n = int(clicks)
    if n <= 0:
        return 0

    total = 0
    lower = 0
    for t in tiers:
        upper = n if t.upto is None else min(n, t.upto)
        if upper > lower:
            total += (upper - lower) * int(t.points)
        if t.upto is None or n <= t.upto:
            break
        lower = t.upto
    return total


def tiered_click_points(
    total_clicks_after_event: int,
    clicks_in_event: int = 1,
    tiers: Sequence[ClickTier] = DEFAULT_CLICK_TIERS,
) -> int:
    """Marginal points earned by the last ``clicks_in_event`` clicks.

    Raises:
        ValueError: if the event claims more clicks than the cumulative count.
    """

    n = int(total_clicks_after_event)
    k = int(clicks_in_event)
    if k < 1:
        raise ValueError("clicks_in_event must be >= 1")
    if n < k:
        raise ValueError("total_clicks_after_event must include the event's clicks")
    return tier_total(n, tiers) - tier_total(n - k, tiers)


def engagement_rate(clicks: int, followers: int | None) -> float | None:
    if not followers:
        return None
    return float(clicks) / float(followers)


def engagement_multiplier(
    clicks: int,
    followers: int | None,
    tiers: Sequence[EngagementTier] = DEFAULT_ENGAGEMENT_TIERS,
) -> float:
    """Performance multiplier. Exactly 1.0 without a follower baseline."""

    rate = engagement_rate(clicks, followers)
    if rate is None:
        return 1.0
    for t in tiers:
        if rate >= t.min_rate:
            return float(t.multiplier)
    return 1.0


def engagement_bonus(performance_points: int, multiplier: float) -> int:
    """Bonus implied by scaling ``performance_points`` by ``multiplier`` (half-up rounding)."""

    if multiplier <= 1.0 or performance_points <= 0:
        return 0
    surplus = Decimal(int(performance_points)) * (Decimal(str(multiplier)) - Decimal(1))
    return int(surplus.to_integral_value(rounding=ROUND_HALF_UP))


def is_early_bird(submitted_at: datetime, starts_at: datetime, *, window_minutes: int) -> bool:
    start = ensure_utc(starts_at)
    t = ensure_utc(submitted_at)
    return start <= t < start + timedelta(minutes=int(window_minutes))


def participation_points(
    record: ParticipationRecord,
    *,
    scoring: ScoringConfig,
    base_points: int | None = None,
    first_participant: bool = False,
    early_bird: bool = False,
) -> PointsBreakdown:
    """Itemized participation points for one submission."""

    extra_shares = min(max(int(record.share_count) - 1, 0), int(scoring.max_extra_shares))
    cross_platform = len(record.distinct_platforms) >= int(scoring.cross_platform_min_platforms)

    return PointsBreakdown(
        base=scoring.base_points if base_points is None else int(base_points),
        copy_quality=int(scoring.copy_points.get(str(record.copy_type), 0)),
        story=scoring.story_bonus if record.has_story else 0,
        cta=scoring.cta_bonus if record.has_cta else 0,
        first_participant=scoring.first_participant_bonus if first_participant else 0,
        early_bird=scoring.early_bird_bonus if early_bird else 0,
        cross_platform=scoring.cross_platform_bonus if cross_platform else 0,
        colleagues=int(record.colleagues_tagged) * int(scoring.colleague_bonus),
        extra_shares=extra_shares * int(scoring.extra_share_bonus),
    )


class ScoreCalculator:
    """Binds the pure functions to a scoring config and a drop's point overrides."""

    def __init__(self, scoring: ScoringConfig | None = None):
        self.scoring = scoring or ScoringConfig()

    def tiers_for(self, drop: Drop | None) -> list[ClickTier]:
        if drop is None:
            return list(self.scoring.click_tiers)
        return drop.resolved_click_tiers(self.scoring)

    def participation(
        self,
        record: ParticipationRecord,
        *,
        drop: Drop,
        first_participant: bool,
    ) -> PointsBreakdown:
        early = is_early_bird(
            record.submitted_at,
            drop.starts_at,
            window_minutes=self.scoring.early_bird_window_minutes,
        )
        return participation_points(
            record,
            scoring=self.scoring,
            base_points=drop.resolved_base_points(self.scoring),
            first_participant=first_participant,
            early_bird=early,
        )

    def multiplier(self, clicks: int, followers: int | None) -> float:
        return engagement_multiplier(clicks, followers, self.scoring.engagement_tiers)

    def click_delta(
        self,
        *,
        clicks_before: int,
        clicks_in_event: int,
        bonus_awarded: int,
        multiplier: float,
        drop: Drop | None = None,
        bonus_clicks: int | None = None,
    ) -> DeltaBundle:
        """Compose the delta for one click event against the pair's cumulative state.

        The engagement bonus is a target over cumulative performance points; only the
        part not yet awarded is added, and it never goes negative. ``bonus_clicks`` caps
        the clicks the target is measured over (defaults to all of them), and
        ``multiplier`` must be the one earned at that count.
        """

        tiers = self.tiers_for(drop)
        after = int(clicks_before) + int(clicks_in_event)
        performance = tiered_click_points(after, clicks_in_event, tiers)
        counted = after if bonus_clicks is None else min(after, int(bonus_clicks))
        target = engagement_bonus(tier_total(counted, tiers), multiplier)
        return DeltaBundle(
            performance=performance,
            bonus=max(0, target - int(bonus_awarded)),
            clicks=int(clicks_in_event),
        )

