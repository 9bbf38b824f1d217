"""
auth/errors.py -- Error taxonomy for authentication use cases.

The service raises these; the API layer maps each to its HTTP status via a
single exception handler (api/main.py). Anything that is not an AuthError is
treated as unexpected: logged in full server-side, surfaced as InternalError.

Messages are client-facing. Never put secrets, hashes or tokens in them.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for errors that carry their own HTTP semantics."""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class BadRequestError(AuthError):
    status_code = 400
    code = "bad_request"


class UnauthorizedError(AuthError):
    status_code = 401
    code = "unauthorized"


class NotFoundError(AuthError):
    status_code = 404
    code = "not_found"


class ConflictError(AuthError):
    status_code = 409
    code = "conflict"


class InternalError(AuthError):
    status_code = 500
    code = "internal_error"
