from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from api.auth import AuthDep
from api.deps import get_engine
from api.errors import ERROR_RESPONSES, HypeLedgerApiError
from api.schemas.ledger import LeaderboardResponse, LeaderboardRowResponse
from hypeledger.core.events import LeaderboardKind
from hypeledger.ledger.attribution import AttributionEngine

router = APIRouter(prefix="/leaderboards", dependencies=[AuthDep], responses=ERROR_RESPONSES)


@router.get("/{kind}", response_model=LeaderboardResponse)
def leaderboard(
    kind: str,
    drop_id: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    winners: bool = Query(default=False),
    engine: AttributionEngine = Depends(get_engine),
) -> LeaderboardResponse:
    try:
        k = LeaderboardKind(kind)
    except ValueError:
        raise HypeLedgerApiError(
            code="leaderboard.unknown_kind",
            message=f"unknown leaderboard: {kind}",
            status=404,
            allowed=[str(x) for x in LeaderboardKind],
        ) from None

    if winners:
        rows = engine.leaderboard.winners(k, drop_id=drop_id, limit=limit)
    else:
        rows = engine.leaderboard.view(k, drop_id=drop_id, limit=limit)

    return LeaderboardResponse(
        kind=str(k),
        drop_id=drop_id,
        winners_only=winners,
        rows=[LeaderboardRowResponse.from_row(r) for r in rows],
    )
