from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends

from api.auth import AuthDep
from api.deps import get_engine
from api.errors import ERROR_RESPONSES, HypeLedgerApiError, status_for_code
from api.schemas.ledger import ParticipationResponse
from hypeledger.core.types import ResultStatus
from hypeledger.ledger.attribution import AttributionEngine

router = APIRouter(dependencies=[AuthDep], responses=ERROR_RESPONSES)


@router.post("/participations", response_model=ParticipationResponse, status_code=201)
def submit_participation(
    payload: dict[str, Any] = Body(...),
    engine: AttributionEngine = Depends(get_engine),
) -> ParticipationResponse:
    result = engine.submit_participation(payload)
    if result.status != ResultStatus.APPLIED:
        raise HypeLedgerApiError(
            code=str(result.code or "participation.rejected"),
            message=str(result.reason or "participation rejected"),
            status=status_for_code(result.code),
        )
    return ParticipationResponse.from_result(result)
