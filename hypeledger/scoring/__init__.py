"""hypeledger.scoring

Point arithmetic and the checks that run before it.
"""

from __future__ import annotations

from hypeledger.scoring.anti_gaming import AntiGamingValidator, Verdict
from hypeledger.scoring.calculator import (
    ScoreCalculator,
    engagement_bonus,
    engagement_multiplier,
    participation_points,
    tier_total,
    tiered_click_points,
)

__all__ = [
    "AntiGamingValidator",
    "ScoreCalculator",
    "Verdict",
    "engagement_bonus",
    "engagement_multiplier",
    "participation_points",
    "tier_total",
    "tiered_click_points",
]
