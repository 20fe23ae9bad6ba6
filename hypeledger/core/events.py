"""hypeledger.core.events

The event contract is the primitive.

Inputs arrive loosely typed from redirects and forms. They leave this module as
closed variants: copy quality, platforms and event kinds are enumerations, so an
invalid combination is unrepresentable past the boundary.
"""

from __future__ import annotations

import hashlib
import json
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from hypeledger.core.time import ensure_utc, utc_now


class EventType(StrEnum):
    """Canonical journal event types.

    Naming: ``{category}.{action}.{version}``.
    """

    PARTICIPATION_ACCEPTED_V1 = "participation.accepted.v1"
    LEDGER_TRANSITION_V1 = "ledger.transition.v1"
    REVIEW_CLEARED_V1 = "review.cleared.v1"
    DROP_CLOSED_V1 = "drop.closed.v1"


class CopyType(StrEnum):
    PROVIDED = "provided"
    CUSTOMIZED = "customized"
    ORIGINAL = "original"


class Platform(StrEnum):
    X = "x"
    LINKEDIN = "linkedin"
    FACEBOOK = "facebook"
    INSTAGRAM = "instagram"
    THREADS = "threads"
    BLUESKY = "bluesky"
    TIKTOK = "tiktok"
    SLACK = "slack"
    EMAIL = "email"


class DropStatus(StrEnum):
    DRAFT = "draft"
    ACTIVE = "active"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class EntryState(StrEnum):
    """Ledger entry lifecycle. ``uninitialized`` is the absence of a row."""

    UNINITIALIZED = "uninitialized"
    ACTIVE = "active"
    CLOSED = "closed"


class TransitionKind(StrEnum):
    FIRST_PARTICIPATION = "first_participation"
    CLICK_THRESHOLD = "click_threshold"
    UNDER_REVIEW = "under_review"
    REVIEW_CLEARED = "review_cleared"
    DROP_CLOSED = "drop_closed"


class LeaderboardKind(StrEnum):
    GLOBAL = "global"
    DROP = "drop"
    WEEKLY = "weekly"
    QUALITY = "quality"
    TEAM = "team"
    ENGAGEMENT = "engagement"


def _normalize_user_id(v: str) -> str:
    return str(v).strip().lower()


# -----------------
# Typed inputs
# -----------------


class ClickEvent(BaseModel):
    """An attributed click (or batch of clicks) on a user's tracking link for a drop."""

    drop_id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    idempotency_key: str = Field(min_length=1)
    timestamp: datetime = Field(default_factory=utc_now)
    clicks: int = Field(default=1, ge=1)
    referrer: str | None = None
    user_agent: str | None = None

    model_config = {"frozen": True}

    @field_validator("user_id")
    @classmethod
    def user_id_is_email_key(cls, v: str) -> str:
        return _normalize_user_id(v)

    @field_validator("drop_id", "idempotency_key")
    @classmethod
    def strip_keys(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("timestamp")
    @classmethod
    def timestamp_utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class ParticipationRecord(BaseModel):
    """One participation submission. Write-once per (user, drop)."""

    drop_id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    copy_type: CopyType = CopyType.PROVIDED
    has_story: bool = False
    has_cta: bool = False
    shared_on: list[Platform] = Field(default_factory=list)
    colleagues_tagged: int = Field(default=0, ge=0)
    share_count: int = Field(default=1, ge=0)
    followers: int | None = Field(default=None, ge=0)
    team: str | None = None
    submitted_at: datetime = Field(default_factory=utc_now)

    model_config = {"frozen": True}

    @field_validator("user_id")
    @classmethod
    def user_id_is_email_key(cls, v: str) -> str:
        return _normalize_user_id(v)

    @field_validator("drop_id")
    @classmethod
    def strip_drop(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("submitted_at")
    @classmethod
    def submitted_utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @property
    def distinct_platforms(self) -> set[Platform]:
        return set(self.shared_on)


def canonical_json(data: Any) -> str:
    """Canonical JSON serialization used for hashing and dedupe."""

    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def payload_hash(payload: BaseModel | dict[str, Any]) -> str:
    """SHA-256 hash of canonical payload JSON."""

    obj = payload.model_dump(mode="json") if isinstance(payload, BaseModel) else payload
    return hashlib.sha256(canonical_json(obj).encode("utf-8")).hexdigest()
