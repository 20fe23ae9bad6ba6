from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends

from api.auth import AuthDep
from api.deps import get_engine
from api.errors import ERROR_RESPONSES
from api.schemas.ledger import AttributionResponse
from hypeledger.ledger.attribution import AttributionEngine

router = APIRouter(dependencies=[AuthDep], responses=ERROR_RESPONSES)


@router.post("/clicks", response_model=AttributionResponse)
def record_click(
    payload: dict[str, Any] = Body(...),
    engine: AttributionEngine = Depends(get_engine),
) -> AttributionResponse:
    """Attribute a click. Always 200: the redirect must not depend on scoring."""

    return AttributionResponse.from_result(engine.record_click(payload))
