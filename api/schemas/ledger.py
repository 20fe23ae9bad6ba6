from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from hypeledger.core.models import Drop
from hypeledger.core.types import (
    AttributionResult,
    LeaderboardRow,
    LedgerEntry,
    ParticipationResult,
    PointsBreakdown,
    UserTotals,
)


class DeltaResponse(BaseModel):
    participation: int = 0
    performance: int = 0
    bonus: int = 0
    clicks: int = 0
    points: int = 0


class AttributionResponse(BaseModel):
    status: str
    user_id: str | None = None
    drop_id: str | None = None
    points: int = 0
    delta: DeltaResponse
    click_count: int = 0
    total_hype: int = 0
    multiplier: float = 1.0
    flagged: bool = False
    code: str | None = None
    reason: str | None = None

    @classmethod
    def from_result(cls, r: AttributionResult) -> AttributionResponse:
        return cls(
            status=str(r.status),
            user_id=r.user_id,
            drop_id=r.drop_id,
            points=r.delta.points,
            delta=DeltaResponse(
                participation=r.delta.participation,
                performance=r.delta.performance,
                bonus=r.delta.bonus,
                clicks=r.delta.clicks,
                points=r.delta.points,
            ),
            click_count=r.click_count,
            total_hype=r.total_hype,
            multiplier=r.multiplier,
            flagged=r.flagged,
            code=r.code,
            reason=r.reason,
        )


class BreakdownResponse(BaseModel):
    base: int = 0
    copy_quality: int = 0
    story: int = 0
    cta: int = 0
    first_participant: int = 0
    early_bird: int = 0
    cross_platform: int = 0
    colleagues: int = 0
    extra_shares: int = 0
    total: int = 0

    @classmethod
    def from_breakdown(cls, b: PointsBreakdown) -> BreakdownResponse:
        return cls(**b.as_dict())


class ParticipationResponse(BaseModel):
    status: str
    user_id: str | None = None
    drop_id: str | None = None
    breakdown: BreakdownResponse
    total_hype: int = 0

    @classmethod
    def from_result(cls, r: ParticipationResult) -> ParticipationResponse:
        return cls(
            status=str(r.status),
            user_id=r.user_id,
            drop_id=r.drop_id,
            breakdown=BreakdownResponse.from_breakdown(r.breakdown),
            total_hype=r.total_hype,
        )


class LeaderboardRowResponse(BaseModel):
    rank: int
    display_score: float
    user_id: str | None = None
    team: str | None = None
    participated_at: datetime | None = None

    @classmethod
    def from_row(cls, r: LeaderboardRow) -> LeaderboardRowResponse:
        return cls(
            rank=r.rank,
            display_score=r.display_score,
            user_id=r.user_id,
            team=r.team,
            participated_at=r.participated_at,
        )


class LeaderboardResponse(BaseModel):
    kind: str
    drop_id: str | None = None
    winners_only: bool = False
    rows: list[LeaderboardRowResponse] = Field(default_factory=list)


class LedgerEntryResponse(BaseModel):
    user_id: str
    drop_id: str
    state: str
    participation_points: int
    performance_points: int
    bonus_points: int
    total_hype: int
    click_count: int
    current_drop_points: int
    weekly_points: int
    week_key: str | None = None
    under_review: bool
    participated_at: datetime
    updated_at: datetime
    breakdown: BreakdownResponse | None = None

    @classmethod
    def from_entry(cls, e: LedgerEntry, *, breakdown: PointsBreakdown | None = None) -> LedgerEntryResponse:
        return cls(
            user_id=e.user_id,
            drop_id=e.drop_id,
            state=str(e.state),
            participation_points=e.participation_points,
            performance_points=e.performance_points,
            bonus_points=e.bonus_points,
            total_hype=e.total_hype,
            click_count=e.click_count,
            current_drop_points=e.current_drop_points,
            weekly_points=e.weekly_points,
            week_key=e.week_key,
            under_review=e.under_review,
            participated_at=e.participated_at,
            updated_at=e.updated_at,
            breakdown=BreakdownResponse.from_breakdown(breakdown) if breakdown is not None else None,
        )


class UserLedgerResponse(BaseModel):
    user_id: str
    participation_points: int
    performance_points: int
    bonus_points: int
    total_hype: int
    click_count: int
    current_drop_id: str | None = None
    current_drop_points: int
    weekly_points: int
    week_key: str | None = None
    drops_participated: int
    originals_written: int
    stories_added: int
    cross_platform_shares: int
    first_participated_at: datetime | None = None
    entries: list[LedgerEntryResponse] = Field(default_factory=list)

    @classmethod
    def from_totals(cls, t: UserTotals, entries: list[LedgerEntry]) -> UserLedgerResponse:
        return cls(
            user_id=t.user_id,
            participation_points=t.participation_points,
            performance_points=t.performance_points,
            bonus_points=t.bonus_points,
            total_hype=t.total_hype,
            click_count=t.click_count,
            current_drop_id=t.current_drop_id,
            current_drop_points=t.current_drop_points,
            weekly_points=t.weekly_points,
            week_key=t.week_key,
            drops_participated=t.drops_participated,
            originals_written=t.originals_written,
            stories_added=t.stories_added,
            cross_platform_shares=t.cross_platform_shares,
            first_participated_at=t.first_participated_at,
            entries=[LedgerEntryResponse.from_entry(e) for e in entries],
        )


class DropResponse(BaseModel):
    id: str
    name: str
    status: str
    starts_at: datetime
    ends_at: datetime
    base_points: int | None = None

    @classmethod
    def from_drop(cls, d: Drop) -> DropResponse:
        return cls(
            id=d.id,
            name=d.name,
            status=str(d.status),
            starts_at=d.starts_at,
            ends_at=d.ends_at,
            base_points=d.base_points,
        )


class DropCreateRequest(BaseModel):
    id: str = Field(..., min_length=1)
    name: str = ""
    starts_at: datetime
    ends_at: datetime
    base_points: int | None = Field(default=None, ge=0)
    activate: bool = False


class DropCloseResponse(BaseModel):
    drop_id: str
    entries_closed: int


class ReviewClearRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    drop_id: str = Field(..., min_length=1)
    actor: str | None = None


class ReviewClearResponse(BaseModel):
    user_id: str
    drop_id: str
    cleared: bool
