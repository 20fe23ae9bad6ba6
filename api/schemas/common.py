from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict


class ErrorBody(BaseModel):
    code: str
    message: str

    model_config = ConfigDict(extra="allow")


class ErrorResponse(BaseModel):
    error: ErrorBody

    @classmethod
    def of(cls, code: str, message: str, **extra: Any) -> ErrorResponse:
        return cls(error=ErrorBody(code=code, message=message, **extra))
