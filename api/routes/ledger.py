from __future__ import annotations

from fastapi import APIRouter, Depends

from api.auth import AuthDep
from api.deps import get_engine
from api.errors import ERROR_RESPONSES, HypeLedgerApiError
from api.schemas.ledger import LedgerEntryResponse, UserLedgerResponse
from hypeledger.ledger.attribution import AttributionEngine

router = APIRouter(prefix="/ledger", dependencies=[AuthDep], responses=ERROR_RESPONSES)


def _uid(user_id: str) -> str:
    return user_id.strip().lower()


@router.get("/{user_id}", response_model=UserLedgerResponse)
def user_ledger(user_id: str, engine: AttributionEngine = Depends(get_engine)) -> UserLedgerResponse:
    uid = _uid(user_id)
    totals = engine.ledger.get_user_totals(uid)
    if totals is None:
        raise HypeLedgerApiError(code="ledger.user_not_found", message=f"no ledger for {uid}", status=404)
    return UserLedgerResponse.from_totals(totals, engine.ledger.list_entries(user_id=uid))


@router.get("/{user_id}/{drop_id}", response_model=LedgerEntryResponse)
def ledger_entry(user_id: str, drop_id: str, engine: AttributionEngine = Depends(get_engine)) -> LedgerEntryResponse:
    uid = _uid(user_id)
    entry = engine.ledger.get_entry(uid, drop_id)
    if entry is None:
        raise HypeLedgerApiError(
            code="ledger.entry_not_found",
            message=f"no ledger entry for {uid} in {drop_id}",
            status=404,
        )
    return LedgerEntryResponse.from_entry(entry, breakdown=engine.ledger.participation_breakdown(uid, drop_id))
