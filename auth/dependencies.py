"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Requests authenticate with an access token in the Authorization: Bearer
header. The token is resolved through SessionManager.authenticate_access_token,
which re-reads the account and applies the status gate with both PENDING
checks, so a suspended tenant locks its users out on their next request
rather than at token expiry.

get_current_account() raises Unauthorized when no bearer token is present.
require_admin() wraps get_current_account() and raises Forbidden unless the
account is an owner or admin.

Layer rule: auth/dependencies.py may import from fastapi (for Request)
because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.errors import Forbidden, Unauthorized
from auth.models import Account
from auth.policy import can_manage_accounts


def bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None


def get_current_account(request: Request) -> Account:
    """Require authentication.

    Gate denials keep their specific message (suspended tenant, pending
    approval) and 403 status; everything else is a plain 401.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(account: Account = Depends(get_current_account)): ...
    """
    token = bearer_token(request)
    if not token:
        raise Unauthorized("Authentication required.")
    return request.app.state.sessions.authenticate_access_token(token)


def require_admin(request: Request) -> Account:
    """Require an owner or admin account."""
    account = get_current_account(request)
    if not can_manage_accounts(account.role):
        raise Forbidden("Admin access required.")
    return account
