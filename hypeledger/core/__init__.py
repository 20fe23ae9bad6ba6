"""hypeledger.core

Core primitives.

Storage, config, the event contract and time. Everything else depends on this
package; it depends on nothing above it.
"""

from .config import Config
from .database import Database
from .events import ClickEvent, EventType, ParticipationRecord
from .exceptions import HypeLedgerError
from .models import Drop, Event, User
from .time import parse_dt, period_key, utc_now

__all__ = [
    "ClickEvent",
    "Config",
    "Database",
    "Drop",
    "Event",
    "EventType",
    "HypeLedgerError",
    "ParticipationRecord",
    "User",
    "parse_dt",
    "period_key",
    "utc_now",
]
