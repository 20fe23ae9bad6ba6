from __future__ import annotations

from fastapi import APIRouter, Depends

from api.auth import AuthDep
from api.deps import get_engine
from api.errors import ERROR_RESPONSES
from api.schemas.ledger import ReviewClearRequest, ReviewClearResponse
from hypeledger.ledger.attribution import AttributionEngine

router = APIRouter(prefix="/reviews", dependencies=[AuthDep], responses=ERROR_RESPONSES)


@router.post("/clear", response_model=ReviewClearResponse)
def clear_review(req: ReviewClearRequest, engine: AttributionEngine = Depends(get_engine)) -> ReviewClearResponse:
    cleared = engine.clear_review(req.user_id, req.drop_id, actor=req.actor or "api")
    return ReviewClearResponse(user_id=req.user_id.strip().lower(), drop_id=req.drop_id, cleared=cleared)
