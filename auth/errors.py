"""
auth/errors.py -- Exception taxonomy for the authentication flows.

Every failure the flows surface to a caller is one of these classes. Each
carries a stable, client-safe message, a machine-readable code, and the HTTP
status the API layer maps it to. api/main.py registers a single handler for
AuthError that renders the standard {"error": {"code", "message"}} envelope.

Anything that is not an AuthError (store unavailable, programming errors)
propagates unchanged and is rendered by the generic 500 handler.

Layer rule: no imports from api/. This module has no FastAPI dependency so
the flows stay testable without an ASGI app.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class: a failure with a stable message and an HTTP status."""

    status_code: int = 400
    code: str = "auth_error"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class Unauthorized(AuthError):
    """Bad credentials; bad, expired, mismatched or wrong-kind token."""

    status_code = 401
    code = "unauthorized"


class Forbidden(AuthError):
    """Tenant or account status disallows the operation, or policy denies it."""

    status_code = 403
    code = "forbidden"


class NotFound(AuthError):
    status_code = 404
    code = "not_found"


class Conflict(AuthError):
    """Duplicate email on registration or invitation acceptance."""

    status_code = 409
    code = "conflict"


class BadRequest(AuthError):
    """Malformed or already-used one-time token, wrong current password."""

    status_code = 400
    code = "bad_request"


class Gone(AuthError):
    """Expired verification token.

    Kept apart from BadRequest so clients can offer "resend" rather than "retry".
    """

    status_code = 410
    code = "gone"
