"""hypeledger.core.config

Three config surfaces only:
1) `config/default.yaml` + `config/presets/*.yaml`
2) Environment variables (`HYPELEDGER_` prefix, `__` for nesting)
3) Per-drop point overrides stored on the drop itself

Everything else is derived.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings

from hypeledger.core.exceptions import ConfigError


def _deep_merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    result: dict[str, Any] = dict(base)
    for k, v in overlay.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


class ClickTier(BaseModel):
    """Per-click value for clicks up to and including ``upto`` (None = unbounded)."""

    upto: int | None = None
    points: int

    model_config = {"frozen": True}


def validate_click_tiers(tiers: list[ClickTier]) -> list[ClickTier]:
    if not tiers:
        raise ValueError("click_tiers must not be empty")
    prev = 0
    for t in tiers[:-1]:
        if t.upto is None:
            raise ValueError("only the last click tier may be unbounded")
        if t.upto <= prev:
            raise ValueError("click tier bounds must be strictly increasing")
        prev = t.upto
    if tiers[-1].upto is not None:
        raise ValueError("the last click tier must be unbounded")
    if any(t.points < 0 for t in tiers):
        raise ValueError("click tier points must be >= 0")
    return tiers


DEFAULT_CLICK_TIERS = [
    ClickTier(upto=10, points=15),
    ClickTier(upto=50, points=10),
    ClickTier(upto=None, points=8),
]


class EngagementTier(BaseModel):
    min_rate: float
    multiplier: float


class ScoringConfig(BaseModel):
    base_points: int = 100
    copy_points: dict[str, int] = Field(
        default_factory=lambda: {"provided": 0, "customized": 50, "original": 100}
    )
    story_bonus: int = 75
    cta_bonus: int = 25
    first_participant_bonus: int = 50
    early_bird_bonus: int = 30
    early_bird_window_minutes: int = 60
    cross_platform_bonus: int = 50
    cross_platform_min_platforms: int = 2
    colleague_bonus: int = 25
    extra_share_bonus: int = 25
    max_extra_shares: int = 2
    click_tiers: list[ClickTier] = Field(default_factory=lambda: list(DEFAULT_CLICK_TIERS))
    # Highest threshold first.
    engagement_tiers: list[EngagementTier] = Field(
        default_factory=lambda: [
            EngagementTier(min_rate=0.05, multiplier=1.5),
            EngagementTier(min_rate=0.03, multiplier=1.2),
        ]
    )

    @field_validator("click_tiers")
    @classmethod
    def click_tiers_must_be_ordered(cls, v: list[ClickTier]) -> list[ClickTier]:
        return validate_click_tiers(v)

    @field_validator("engagement_tiers")
    @classmethod
    def engagement_tiers_sorted_desc(cls, v: list[EngagementTier]) -> list[EngagementTier]:
        return sorted(v, key=lambda t: t.min_rate, reverse=True)


class AntiGamingConfig(BaseModel):
    burst_threshold: int = 10
    burst_window_seconds: int = 60
    max_engagement_rate: float = 1.0

    @field_validator("burst_threshold", "burst_window_seconds")
    @classmethod
    def must_be_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be >= 1")
        return v


class LedgerConfig(BaseModel):
    max_retries: int = 8
    retry_backoff_ms: int = 5
    busy_timeout_seconds: float = 5.0
    week_start_weekday: int = 0
    click_thresholds: list[int] = Field(default_factory=lambda: [10, 50, 100])
    leaderboard_max_staleness_ms: int = 500

    @field_validator("week_start_weekday")
    @classmethod
    def weekday_in_range(cls, v: int) -> int:
        if not 0 <= v <= 6:
            raise ValueError("week_start_weekday must be 0 (Monday) .. 6 (Sunday)")
        return v

    @field_validator("max_retries")
    @classmethod
    def retries_at_least_one(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_retries must be >= 1")
        return v

    @field_validator("leaderboard_max_staleness_ms")
    @classmethod
    def staleness_not_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("leaderboard_max_staleness_ms must be >= 0")
        return v


class NotificationsConfig(BaseModel):
    webhooks_enabled: bool = False
    timeout_seconds: float = 3.0


class LoggingConfig(BaseModel):
    level: str = "INFO"
    json_output: bool = False


class ApiConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = 5060
    auth_token: str = ""
    cors_origins: list[str] = Field(default_factory=list)


class Config(BaseSettings):
    """Root configuration. Single source of truth."""

    # Paths
    data_dir: Path = Path("data")
    config_dir: Path = Path("config")

    preset: Literal["standard", "strict", "custom"] = "standard"

    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    anti_gaming: AntiGamingConfig = Field(default_factory=AntiGamingConfig)
    ledger: LedgerConfig = Field(default_factory=LedgerConfig)
    notifications: NotificationsConfig = Field(default_factory=NotificationsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)

    model_config = {"env_prefix": "HYPELEDGER_", "env_nested_delimiter": "__"}

    @property
    def db_path(self) -> Path:
        return Path(self.data_dir) / "hype.db"

    @classmethod
    def from_yaml(cls, path: Path) -> Config:
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")

        raw = yaml.safe_load(path.read_text()) or {}

        preset_name = raw.get("preset", "standard")
        preset_path = path.parent / "presets" / f"{preset_name}.yaml"
        if preset_path.exists():
            preset_data = yaml.safe_load(preset_path.read_text()) or {}
            raw = _deep_merge(preset_data, raw)

        try:
            return cls(**raw)
        except ValueError as e:
            raise ConfigError(str(e)) from e

    @classmethod
    def from_repo_defaults(cls, repo_root: Path | None = None) -> Config:
        root = repo_root or Path.cwd()
        return cls.from_yaml(root / "config" / "default.yaml")

    @classmethod
    def load(cls, repo_root: Path | None = None) -> Config:
        """User config if present, else repo defaults."""

        root = repo_root or Path.cwd()
        user_path = root / "config" / "user.yaml"
        if user_path.exists():
            return cls.from_yaml(user_path)
        return cls.from_repo_defaults(root)
