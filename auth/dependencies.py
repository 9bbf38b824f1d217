"""
auth/dependencies.py -- FastAPI Depends() helpers for bearer-token authentication.

Only one auth method exists: Authorization: Bearer <jwt>. Tokens are stateless;
every request re-resolves the subject against the store so deactivation takes
effect immediately.

get_current_identity() -- raises UnauthorizedError (401) for a missing, malformed,
    badly signed or expired token; NotFoundError (404) if the subject no longer
    exists; UnauthorizedError if the account is deactivated.

Layer rule: no imports from api/ or notify/.
  auth/dependencies.py may import from fastapi (for Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.errors import UnauthorizedError
from auth.models import Identity
from auth.service import AuthService
from auth.tokens import decode_access_token


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_current_identity(request: Request) -> Identity:
    """Require a valid bearer token and return the caller's Identity.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(identity: Identity = Depends(get_current_identity)): ...
    """
    token = _bearer_token(request)
    if token is None:
        raise UnauthorizedError("Authentication required.")
    payload = decode_access_token(token)
    if payload is None:
        raise UnauthorizedError("Invalid or expired token.")
    auth_service: AuthService = request.app.state.auth_service
    return auth_service.resolve_identity(payload["sub"])
