from __future__ import annotations

import hmac

from fastapi import Depends, Header

from api.deps import get_config
from api.errors import HypeLedgerApiError
from hypeledger.core.config import Config


def _bearer(authorization: str | None) -> str:
    if not authorization:
        raise HypeLedgerApiError(code="auth.missing_token", message="Missing bearer token", status=401)

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HypeLedgerApiError(code="auth.invalid_header", message="Invalid authorization header", status=401)
    return token.strip()


def require_bearer_token(
    authorization: str | None = Header(default=None, alias="Authorization"),
    config: Config = Depends(get_config),
) -> None:
    """Require ``Authorization: Bearer <token>`` on ledger and admin routes.

    An empty ``api.auth_token`` disables the check (dev/test only; the app factory
    refuses to start that way unless told it is insecure on purpose).
    """

    expected = str(config.api.auth_token or "")
    if not expected:
        return

    if not hmac.compare_digest(_bearer(authorization), expected):
        raise HypeLedgerApiError(code="auth.invalid_token", message="Invalid bearer token", status=401)


AuthDep = Depends(require_bearer_token)
