"""hypeledger.core.models

Core domain models.

Pydantic owns the boundary: drops and users are read from storage and from admin
collaborators; journal events are immutable once written.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, model_validator

from hypeledger.core.config import ClickTier, ScoringConfig, validate_click_tiers
from hypeledger.core.events import DropStatus, EventType
from hypeledger.core.time import ensure_utc


class Event(BaseModel):
    """Immutable journal record."""

    id: str
    type: EventType
    ts: datetime
    source: str | None = None
    dedupe_key: str | None = None
    payload: dict[str, Any]
    payload_hash: str

    model_config = {"frozen": True}


class Drop(BaseModel):
    """A time-boxed sharing campaign. Immutable once active except for status."""

    id: str
    name: str = ""
    status: DropStatus = DropStatus.DRAFT
    starts_at: datetime
    ends_at: datetime
    base_points: int | None = None
    click_tiers: list[ClickTier] | None = None
    created_at: datetime | None = None

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def window_is_ordered(self) -> Drop:
        if ensure_utc(self.ends_at) <= ensure_utc(self.starts_at):
            raise ValueError("drop window must end after it starts")
        if self.click_tiers is not None:
            validate_click_tiers(self.click_tiers)
        return self

    def accepts_events_at(self, at: datetime) -> bool:
        if self.status != DropStatus.ACTIVE:
            return False
        t = ensure_utc(at)
        return ensure_utc(self.starts_at) <= t <= ensure_utc(self.ends_at)

    def resolved_base_points(self, scoring: ScoringConfig) -> int:
        return scoring.base_points if self.base_points is None else int(self.base_points)

    def resolved_click_tiers(self, scoring: ScoringConfig) -> list[ClickTier]:
        return list(self.click_tiers) if self.click_tiers else list(scoring.click_tiers)


class User(BaseModel):
    id: str
    followers: int | None = Field(default=None, ge=0)
    team: str | None = None
    archived: bool = False
    created_at: datetime | None = None

    model_config = {"frozen": True}
