"""hypeledger.core.types

Lightweight dataclasses for hot-path objects.

Pydantic models own IO boundaries; dataclasses keep runtime lean.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from hypeledger.core.events import EntryState, TransitionKind


@dataclass(frozen=True, slots=True)
class DeltaBundle:
    """Named point deltas applied atomically to one (user, drop) entry and its rollup."""

    participation: int = 0
    performance: int = 0
    bonus: int = 0
    clicks: int = 0

    def __post_init__(self) -> None:
        # Counters are monotonic; a negative delta is a programming error.
        for name in ("participation", "performance", "bonus", "clicks"):
            if int(getattr(self, name)) < 0:
                raise ValueError(f"delta.{name} must be >= 0")

    @property
    def points(self) -> int:
        return self.participation + self.performance + self.bonus

    def __add__(self, other: DeltaBundle) -> DeltaBundle:
        return DeltaBundle(
            participation=self.participation + other.participation,
            performance=self.performance + other.performance,
            bonus=self.bonus + other.bonus,
            clicks=self.clicks + other.clicks,
        )


@dataclass(frozen=True, slots=True)
class LedgerEntry:
    user_id: str
    drop_id: str
    state: EntryState
    participation_points: int
    performance_points: int
    bonus_points: int
    current_drop_points: int
    weekly_points: int
    week_key: str | None
    total_hype: int
    click_count: int
    followers: int | None
    under_review: bool
    version: int
    participated_at: datetime
    updated_at: datetime


@dataclass(frozen=True, slots=True)
class UserTotals:
    user_id: str
    participation_points: int
    performance_points: int
    bonus_points: int
    current_drop_id: str | None
    current_drop_points: int
    weekly_points: int
    week_key: str | None
    total_hype: int
    click_count: int
    drops_participated: int
    originals_written: int
    stories_added: int
    cross_platform_shares: int
    first_participated_at: datetime | None
    version: int = 0
    updated_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class PointsBreakdown:
    """Participation points, itemized for display."""

    base: int = 0
    copy_quality: int = 0
    story: int = 0
    cta: int = 0
    first_participant: int = 0
    early_bird: int = 0
    cross_platform: int = 0
    colleagues: int = 0
    extra_shares: int = 0

    @property
    def total(self) -> int:
        return (
            self.base
            + self.copy_quality
            + self.story
            + self.cta
            + self.first_participant
            + self.early_bird
            + self.cross_platform
            + self.colleagues
            + self.extra_shares
        )

    def as_dict(self) -> dict[str, int]:
        return {
            "base": self.base,
            "copy_quality": self.copy_quality,
            "story": self.story,
            "cta": self.cta,
            "first_participant": self.first_participant,
            "early_bird": self.early_bird,
            "cross_platform": self.cross_platform,
            "colleagues": self.colleagues,
            "extra_shares": self.extra_shares,
            "total": self.total,
        }


class ResultStatus(StrEnum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    REJECTED = "rejected"


@dataclass(frozen=True, slots=True)
class AttributionResult:
    status: ResultStatus
    user_id: str | None = None
    drop_id: str | None = None
    delta: DeltaBundle = field(default_factory=DeltaBundle)
    click_count: int = 0
    total_hype: int = 0
    multiplier: float = 1.0
    flagged: bool = False
    reason: str | None = None
    code: str | None = None


@dataclass(frozen=True, slots=True)
class ParticipationResult:
    status: ResultStatus
    user_id: str | None = None
    drop_id: str | None = None
    breakdown: PointsBreakdown = field(default_factory=PointsBreakdown)
    total_hype: int = 0
    reason: str | None = None
    code: str | None = None


@dataclass(frozen=True, slots=True)
class LedgerTransition:
    """An observable change in a ledger entry's lifecycle (badge/notification feed)."""

    kind: TransitionKind
    user_id: str
    drop_id: str
    ts: datetime
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class LeaderboardRow:
    rank: int
    display_score: float
    user_id: str | None = None
    team: str | None = None
    participated_at: datetime | None = None
