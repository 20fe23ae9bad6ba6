"""hypeledger.ledger

The mutable side: drops and users, the points ledger, its leaderboard
projection and the engine that feeds them.
"""

from __future__ import annotations

from hypeledger.ledger.attribution import AttributionEngine
from hypeledger.ledger.leaderboard import LeaderboardAggregator
from hypeledger.ledger.points import OpenedEntry, PointsLedger
from hypeledger.ledger.registry import DropRegistry, UserRegistry

__all__ = [
    "AttributionEngine",
    "DropRegistry",
    "LeaderboardAggregator",
    "OpenedEntry",
    "PointsLedger",
    "UserRegistry",
]
