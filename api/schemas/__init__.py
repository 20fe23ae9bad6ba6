from api.schemas.common import ErrorBody, ErrorResponse
from api.schemas.ledger import (
    AttributionResponse,
    BreakdownResponse,
    DropCloseResponse,
    DropCreateRequest,
    DropResponse,
    LeaderboardResponse,
    LeaderboardRowResponse,
    LedgerEntryResponse,
    ParticipationResponse,
    ReviewClearRequest,
    ReviewClearResponse,
    UserLedgerResponse,
)

__all__ = [
    "AttributionResponse",
    "BreakdownResponse",
    "DropCloseResponse",
    "DropCreateRequest",
    "DropResponse",
    "ErrorBody",
    "ErrorResponse",
    "LeaderboardResponse",
    "LeaderboardRowResponse",
    "LedgerEntryResponse",
    "ParticipationResponse",
    "ReviewClearRequest",
    "ReviewClearResponse",
    "UserLedgerResponse",
]
