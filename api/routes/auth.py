"""
api/routes/auth.py -- Authentication, session and invitation REST endpoints.

Routes:
  POST   /auth/register              -- self-registration; 201 pending message or auth response
  POST   /auth/login                 -- password login; auth response
  POST   /auth/refresh               -- rotate refresh token; auth response
  POST   /auth/logout                -- clear stored refresh token and cookie
  GET    /auth/me                    -- current session, sliding refresh (requires auth)
  POST   /auth/verify-email          -- consume verification token
  POST   /auth/resend-verification   -- new verification mail (generic answer)
  GET    /auth/invitation/{token}    -- invitation summary for the accept page
  POST   /auth/accept-invitation     -- create invited account; 201 auth response + cookie
  POST   /auth/change-password       -- change own (or, as admin, a tenant member's) password
  POST   /auth/invitations           -- invite into the caller's tenant (admin only)
  GET    /auth/invitations           -- list the tenant's invitations (admin only)
  DELETE /auth/invitations/{id}      -- cancel an invitation (admin only)
  PATCH  /auth/accounts/{id}         -- change role/status (admin only, policy checked)
  GET    /auth/providers             -- list enabled OAuth providers (public)
  GET    /auth/{provider}            -- redirect to the provider consent screen
  GET    /auth/{provider}/callback   -- finish OAuth login, redirect to the frontend

Security:
  Rate limits on login, register, refresh, resend-verification and
  accept-invitation come from Settings (api/limiter.py). @limiter.limit sits
  below the route decorator so the router registers the limited wrapper.
  [M5] Cache-Control: no-store on every response that carries tokens.
  Domain failures are raised as auth.errors.AuthError subclasses and rendered
  by the handler in api/main.py; routes never build error bodies themselves.

Route registration order: the /auth/{provider} routes are registered last so
"me", "providers" and "invitations" are never captured as a provider name.
"""


import logging
from urllib.parse import urlencode

from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse
from httpx import HTTPError

from api.limiter import accept_invitation_limit, limiter, login_limit, refresh_limit, register_limit, resend_limit
from api.models import (
    AcceptInvitationRequest,
    AccountOut,
    AccountPatch,
    AuthResponse,
    ChangePasswordRequest,
    InvitationCreate,
    InvitationResponse,
    InvitationSummary,
    LoginRequest,
    LogoutRequest,
    MessageResponse,
    OAuthProviderInfo,
    RefreshRequest,
    RegisterRequest,
    RegisterResponse,
    ResendVerificationRequest,
    VerifyEmailRequest,
)
from auth.dependencies import bearer_token, get_current_account, require_admin
from auth.errors import AuthError, Unauthorized
from auth.identity import SUCCESS, IdentityLinker
from auth.invitations import InvitationFlow
from auth.models import Account, AuthResult
from auth.oauth import PROVIDER_LABELS, get_enabled_providers, get_external_profile
from auth.sessions import INVALID_REFRESH_TOKEN, SessionManager
from auth.tokens import REFRESH_COOKIE_NAME, clear_refresh_cookie, set_refresh_cookie
from auth.verification import VerificationFlow
from core.config import get_settings

logger = logging.getLogger("tenantauth.api")

# Auth policy:
# - register, login, refresh, logout, verify-email, resend-verification,
#   invitation/{token}, accept-invitation, providers, OAuth: public
# - me, change-password: requires auth (get_current_account)
# - invitations, accounts/{id}: requires owner/admin (require_admin)
router = APIRouter()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _sessions(request: Request) -> SessionManager:
    return request.app.state.sessions


def _credential_response(result: AuthResult, status_code: int = 200) -> JSONResponse:
    """Serialize an AuthResult, mirror the refresh token into its cookie, forbid caching."""
    resp = JSONResponse(
        status_code=status_code,
        content=AuthResponse.from_result(result).model_dump(by_alias=True),
    )
    set_refresh_cookie(resp, result.refresh_token)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def _frontend_redirect(**params: str) -> RedirectResponse:
    url = f"{get_settings().frontend_url}/oauth/callback?{urlencode(params)}"
    resp = RedirectResponse(url, status_code=302)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Registration and password sessions
# ---------------------------------------------------------------------------


@router.post("/auth/register", status_code=201)
@limiter.limit(register_limit)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create an account (and, with tenantName, its tenant).

    REGISTRATION_MODE=approval answers with a pending message and no tokens;
    auto_login answers with a full auth response.
    """
    result = _sessions(request).register(
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        tenant_name=body.tenant_name,
        tenant_id=body.tenant_id,
    )
    if isinstance(result, AuthResult):
        return _credential_response(result, status_code=201)
    return JSONResponse(status_code=201, content=RegisterResponse.from_result(result).model_dump(by_alias=True))


@router.post("/auth/login", response_model=AuthResponse)
@limiter.limit(login_limit)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password.

    The same 401 message is returned for an unknown email and a wrong
    password [C1]; see SessionManager.login.
    """
    return _credential_response(_sessions(request).login(body.email, body.password))


@router.post("/auth/refresh", response_model=AuthResponse)
@limiter.limit(refresh_limit)
def refresh(request: Request, body: RefreshRequest | None = None) -> JSONResponse:
    """Rotate the refresh token. The body token wins over the cookie."""
    token = (body.refresh_token if body else None) or request.cookies.get(REFRESH_COOKIE_NAME)
    if not token:
        raise Unauthorized(INVALID_REFRESH_TOKEN)
    return _credential_response(_sessions(request).refresh(token))


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, body: LogoutRequest | None = None) -> JSONResponse:
    """End the session of the bearer's account, or of the refresh token's owner.

    The bearer path only checks the signature: a suspended or pending account
    can still log itself out.
    """
    sessions = _sessions(request)
    access = bearer_token(request)
    claims = sessions.codec.verify_access(access) if access else None
    if claims is not None:
        message = sessions.logout(claims.sub)
    else:
        token = (body.refresh_token if body else None) or request.cookies.get(REFRESH_COOKIE_NAME)
        if not token:
            raise Unauthorized("Authentication required.")
        message = sessions.logout_with_refresh_token(token)
    resp = JSONResponse(content=MessageResponse(message=message).model_dump(by_alias=True))
    clear_refresh_cookie(resp)
    return resp


@router.get("/auth/me", response_model=AuthResponse)
def me(request: Request, account: Account = Depends(get_current_account)) -> JSONResponse:
    """Return the current session and a fresh token pair (sliding session)."""
    return _credential_response(_sessions(request).get_current_session(account.id))


# ---------------------------------------------------------------------------
# Email verification
# ---------------------------------------------------------------------------


@router.post("/auth/verify-email", response_model=MessageResponse)
def verify_email(request: Request, body: VerifyEmailRequest) -> MessageResponse:
    verification: VerificationFlow = request.app.state.verification
    return MessageResponse(message=verification.verify_email(body.token))


@router.post("/auth/resend-verification", response_model=MessageResponse)
@limiter.limit(resend_limit)
def resend_verification(request: Request, body: ResendVerificationRequest) -> MessageResponse:
    """Always answers with the same message, whether or not the account exists."""
    verification: VerificationFlow = request.app.state.verification
    return MessageResponse(message=verification.resend_verification(body.email))


# ---------------------------------------------------------------------------
# Invitations
# ---------------------------------------------------------------------------


@router.get("/auth/invitation/{token}", response_model=InvitationSummary)
def get_invitation(request: Request, token: str) -> InvitationSummary:
    invitations: InvitationFlow = request.app.state.invitations
    return InvitationSummary.from_details(invitations.get_invitation_details(token))


@router.post("/auth/accept-invitation", status_code=201, response_model=AuthResponse)
@limiter.limit(accept_invitation_limit)
def accept_invitation(request: Request, body: AcceptInvitationRequest) -> JSONResponse:
    """Create the invited account and log it in. The refresh token is also set as a cookie."""
    invitations: InvitationFlow = request.app.state.invitations
    result = invitations.accept_invitation(body.token, body.first_name, body.last_name, body.password)
    return _credential_response(result, status_code=201)


@router.post("/auth/invitations", status_code=201, response_model=InvitationResponse)
def create_invitation(
    request: Request,
    body: InvitationCreate,
    current: Account = Depends(require_admin),
) -> InvitationResponse:
    invitations: InvitationFlow = request.app.state.invitations
    return InvitationResponse.from_invitation(invitations.create_invitation(current, body.email, body.role))


@router.get("/auth/invitations", response_model=list[InvitationResponse])
def list_invitations(request: Request, current: Account = Depends(require_admin)) -> list[InvitationResponse]:
    invitations: InvitationFlow = request.app.state.invitations
    return [InvitationResponse.from_invitation(i) for i in invitations.list_invitations(current)]


@router.delete("/auth/invitations/{invitation_id}", status_code=204)
def cancel_invitation(request: Request, invitation_id: str, current: Account = Depends(require_admin)) -> Response:
    invitations: InvitationFlow = request.app.state.invitations
    invitations.cancel_invitation(current, invitation_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Account management
# ---------------------------------------------------------------------------


@router.post("/auth/change-password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    current: Account = Depends(get_current_account),
) -> MessageResponse:
    """Change a password. The affected account's refresh token is revoked."""
    message = _sessions(request).change_password(
        current, body.account_id or current.id, body.current_password, body.new_password
    )
    return MessageResponse(message=message)


@router.patch("/auth/accounts/{account_id}", response_model=AccountOut)
def update_account(
    request: Request,
    account_id: str,
    body: AccountPatch,
    current: Account = Depends(require_admin),
) -> AccountOut:
    """Change role and/or status. Self-elevation and self-suspension are refused."""
    summary = _sessions(request).update_account(current, account_id, role=body.role, status=body.status)
    return AccountOut(**vars(summary))


# ---------------------------------------------------------------------------
# OAuth
# ---------------------------------------------------------------------------


@router.get("/auth/providers", response_model=list[OAuthProviderInfo])
async def list_providers() -> list[OAuthProviderInfo]:
    """Return the configured OAuth providers. Empty when no credentials are set."""
    return [OAuthProviderInfo(**p) for p in get_enabled_providers()]


@router.get("/auth/{provider}")
async def oauth_redirect(request: Request, provider: str) -> RedirectResponse:
    """Redirect the browser to the provider's consent screen.

    The provider name is checked against the enabled list before anything
    else, so a crafted name can never select an unregistered client.
    """
    enabled = {p["name"] for p in get_enabled_providers()}
    if provider not in enabled:
        return _frontend_redirect(error=f"Unsupported login provider: {provider}")

    client = request.app.state.oauth.create_client(provider)
    redirect_uri = str(request.url_for("oauth_callback", provider=provider))
    return await client.authorize_redirect(request, redirect_uri)


@router.get("/auth/{provider}/callback", name="oauth_callback")
async def oauth_callback(request: Request, provider: str) -> RedirectResponse:
    """Finish the provider login and hand the outcome to the frontend.

    Flow:
      1. Exchange the authorization code (authlib checks the session state).
      2. Normalize the provider profile (auth.oauth.get_external_profile).
      3. IdentityLinker decides success / pending / error.
      4. Redirect to FRONTEND_URL/oauth/callback with ?token=&refresh=,
         ?pending=true or ?error=.
    """
    enabled = {p["name"] for p in get_enabled_providers()}
    if provider not in enabled:
        return _frontend_redirect(error=f"Unsupported login provider: {provider}")

    label = PROVIDER_LABELS[provider]
    client = request.app.state.oauth.create_client(provider)
    try:
        token = await client.authorize_access_token(request)
        profile = await get_external_profile(client, provider, token)
    except (OAuthError, HTTPError, ValueError):
        logger.exception("OAuth login failed for provider %r", provider)
        return _frontend_redirect(error=f"{label} login failed. Please try again.")

    linker: IdentityLinker = request.app.state.identity
    try:
        result = linker.handle_external_login(profile)
    except AuthError as exc:
        logger.warning("OAuth login via %s rejected: %s", provider, exc.message)
        return _frontend_redirect(error=exc.message)
    if result.status == SUCCESS and result.tokens is not None:
        return _frontend_redirect(token=result.tokens.access_token, refresh=result.tokens.refresh_token)
    if result.error:
        return _frontend_redirect(error=result.error)
    return _frontend_redirect(pending="true")
