from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from api.auth import AuthDep
from api.deps import get_engine
from api.errors import ERROR_RESPONSES
from api.schemas.ledger import DropCloseResponse, DropCreateRequest, DropResponse
from hypeledger.core.events import DropStatus
from hypeledger.ledger.attribution import AttributionEngine

router = APIRouter(prefix="/drops", dependencies=[AuthDep], responses=ERROR_RESPONSES)


@router.get("", response_model=list[DropResponse])
def list_drops(
    status: DropStatus | None = Query(default=None),
    engine: AttributionEngine = Depends(get_engine),
) -> list[DropResponse]:
    return [DropResponse.from_drop(d) for d in engine.drops.list_all(status=status)]


@router.post("", response_model=DropResponse, status_code=201)
def create_drop(req: DropCreateRequest, engine: AttributionEngine = Depends(get_engine)) -> DropResponse:
    drop = engine.drops.create(
        drop_id=req.id,
        name=req.name,
        starts_at=req.starts_at,
        ends_at=req.ends_at,
        base_points=req.base_points,
    )
    if req.activate:
        drop = engine.drops.transition(drop.id, DropStatus.ACTIVE)
    return DropResponse.from_drop(drop)


@router.get("/{drop_id}", response_model=DropResponse)
def get_drop(drop_id: str, engine: AttributionEngine = Depends(get_engine)) -> DropResponse:
    return DropResponse.from_drop(engine.drops.require(drop_id))


@router.post("/{drop_id}/activate", response_model=DropResponse)
def activate_drop(drop_id: str, engine: AttributionEngine = Depends(get_engine)) -> DropResponse:
    return DropResponse.from_drop(engine.drops.transition(drop_id, DropStatus.ACTIVE))


@router.post("/{drop_id}/close", response_model=DropCloseResponse)
def close_drop(drop_id: str, engine: AttributionEngine = Depends(get_engine)) -> DropCloseResponse:
    closed = engine.close_drop(drop_id, actor="api")
    return DropCloseResponse(drop_id=drop_id, entries_closed=closed)
