from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse

from api.schemas.common import ErrorResponse
from hypeledger.core.exceptions import (
    ConcurrencyConflict,
    ConfigError,
    DropClosed,
    DropNotFound,
    DuplicateEvent,
    DuplicateParticipation,
    EntryNotFound,
    HypeLedgerError,
    ValidationError,
)

# Most specific first; the first isinstance match wins.
_DOMAIN_STATUS: list[tuple[type[HypeLedgerError], int]] = [
    (DropNotFound, 404),
    (EntryNotFound, 404),
    (DuplicateParticipation, 409),
    (DuplicateEvent, 409),
    (DropClosed, 409),
    (ConcurrencyConflict, 409),
    (ValidationError, 422),
    (ConfigError, 500),
]

_CODE_STATUS: dict[str, int] = {
    DropNotFound.code: 404,
    EntryNotFound.code: 404,
    DuplicateParticipation.code: 409,
    DuplicateEvent.code: 409,
    DropClosed.code: 409,
    ValidationError.code: 422,
}

# OpenAPI docs for the shared error envelope.
ERROR_RESPONSES: dict[int | str, dict[str, object]] = {
    401: {"model": ErrorResponse, "description": "Missing or invalid bearer token"},
    404: {"model": ErrorResponse, "description": "Unknown drop, user or entry"},
    409: {"model": ErrorResponse, "description": "Duplicate or closed"},
    422: {"model": ErrorResponse, "description": "Malformed request"},
}


class HypeLedgerApiError(Exception):
    def __init__(self, code: str, message: str, status: int = 400, **extra: object) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.status = status
        self.extra = extra


def status_for_code(code: str | None, default: int = 400) -> int:
    return _CODE_STATUS.get(str(code or ""), default)


def status_for_exception(exc: HypeLedgerError) -> int:
    for cls, status in _DOMAIN_STATUS:
        if isinstance(exc, cls):
            return status
    return 500


async def api_error_handler(request: Request, exc: HypeLedgerApiError) -> JSONResponse:
    body = ErrorResponse.of(exc.code, exc.message, **exc.extra).model_dump()
    return JSONResponse(status_code=exc.status, content=body)


async def domain_error_handler(request: Request, exc: HypeLedgerError) -> JSONResponse:
    body = ErrorResponse.of(exc.code, str(exc)).model_dump()
    return JSONResponse(status_code=status_for_exception(exc), content=body)
