from __future__ import annotations

import os
import time
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.errors import HypeLedgerApiError, api_error_handler, domain_error_handler
from api.routes import get_api_router, health
from api.schemas.common import ErrorResponse
from hypeledger import __version__
from hypeledger.core.config import Config
from hypeledger.core.exceptions import HypeLedgerError, ValidationError
from hypeledger.core.log import configure_logging


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    loc = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"{loc}: {first.get('msg', 'invalid')}" if loc else str(first.get("msg", "invalid request"))
    body = ErrorResponse.of(ValidationError.code, message).model_dump()
    return JSONResponse(status_code=422, content=body)


def create_app(config: Config | None = None) -> FastAPI:
    start = time.monotonic()

    # Security check: refuse to start with empty auth_token unless explicitly overridden
    if config is None:
        config = Config.load(Path.cwd())
    auth_token = str(config.api.auth_token or "")
    insecure_ok = os.environ.get("HYPELEDGER_INSECURE_OK", "").lower() in ("1", "true", "yes")

    if not auth_token and not insecure_ok:
        msg = (
            "SECURITY ERROR: API auth_token is empty\n"
            "\n"
            "Set HYPELEDGER_API__AUTH_TOKEN environment variable or add to config:\n"
            "  api:\n"
            "    auth_token: your-secret-token\n"
            "\n"
            "To run without auth (dev/test only), set HYPELEDGER_INSECURE_OK=1"
        )
        raise RuntimeError(msg)

    configure_logging(config.logging)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.started_at = start
        yield

        db = getattr(app.state, "db", None)
        if db is not None:
            db.close()

    openapi_tags = [
        {"name": "health", "description": "Liveness and version metadata."},
        {"name": "clicks", "description": "Click attribution from the redirect service."},
        {"name": "participations", "description": "Participation submissions and their point breakdown."},
        {"name": "leaderboards", "description": "Materialized leaderboard views."},
        {"name": "ledger", "description": "Per-user and per-drop ledger reads."},
        {"name": "drops", "description": "Drop registry and the close admin hook."},
        {"name": "reviews", "description": "Anti-gaming review flags."},
    ]

    app = FastAPI(
        title="hypeledger API",
        description="Points ledger and click attribution for social-sharing drops",
        version=__version__,
        openapi_tags=openapi_tags,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.started_at = start

    app.add_exception_handler(HypeLedgerApiError, api_error_handler)
    app.add_exception_handler(HypeLedgerError, domain_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    # CORS: only enable if origins explicitly configured
    if config.api.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(config.api.cors_origins),
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    router = get_api_router()
    app.include_router(router, prefix="/api/v1")
    # Liveness also at the root for load balancers.
    app.include_router(health.router, tags=["health"])
    return app


# Module-level app for uvicorn (e.g. `uvicorn api.main:app`).
# Guarded so test imports don't crash when auth_token isn't configured.
try:
    app = create_app()
except (RuntimeError, HypeLedgerError):
    app = None
