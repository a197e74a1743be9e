"""
API request and response models for TenantAuth REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Wire names are camelCase (accessToken, tenantId) via the alias generator;
Python attributes stay snake_case. populate_by_name lets tests and internal
callers construct models with either spelling.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from typing import Annotated, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from auth.models import AccountStatus, AuthResult, Invitation, InvitationDetails, RegistrationResult, Role
from auth.passwords import MAX_PASSWORD_BYTES, PASSWORD_TOO_LONG

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


def _within_bcrypt_limit(value: str) -> str:
    if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValueError(PASSWORD_TOO_LONG)
    return value


# bcrypt reads at most 72 bytes; a multi-byte password can pass the character
# cap and still be too long, hence the byte check.
_Password = Annotated[str, Field(min_length=8, max_length=MAX_PASSWORD_BYTES), AfterValidator(_within_bcrypt_limit)]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _CamelResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(_CamelModel):
    """Request body for POST /auth/register. Exactly one of tenantName / tenantId."""

    email: str = Field(max_length=254, pattern=EMAIL_PATTERN)
    password: _Password
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    tenant_name: Optional[str] = Field(default=None, max_length=255)
    tenant_id: Optional[str] = Field(default=None, max_length=36)


class LoginRequest(_CamelModel):
    email: str = Field(min_length=1, max_length=254)
    password: str = Field(min_length=1, max_length=128)


class RefreshRequest(_CamelModel):
    """Body for POST /auth/refresh. Falls back to the refreshToken cookie when omitted."""

    refresh_token: Optional[str] = Field(default=None, max_length=4096)


class LogoutRequest(_CamelModel):
    refresh_token: Optional[str] = Field(default=None, max_length=4096)


class VerifyEmailRequest(_CamelModel):
    token: str = Field(min_length=1, max_length=128)


class ResendVerificationRequest(_CamelModel):
    email: str = Field(max_length=254, pattern=EMAIL_PATTERN)


class AcceptInvitationRequest(_CamelModel):
    token: str = Field(min_length=1, max_length=128)
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    password: _Password


class ChangePasswordRequest(_CamelModel):
    """accountId defaults to the caller. Admins may name another account in their tenant."""

    current_password: str = Field(min_length=1, max_length=128)
    new_password: _Password
    account_id: Optional[str] = None


class InvitationCreate(_CamelModel):
    email: str = Field(max_length=254, pattern=EMAIL_PATTERN)
    role: Role = Role.employee


class AccountPatch(_CamelModel):
    role: Optional[Role] = None
    status: Optional[AccountStatus] = None


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class AccountOut(_CamelResponse):
    id: str
    email: str
    first_name: str
    last_name: str
    role: str
    status: str
    tenant_id: str
    email_verified: bool


class TenantOut(_CamelResponse):
    id: str
    name: str
    slug: str
    plan: str
    status: str


class AuthResponse(_CamelResponse):
    """The single login-shaped response: login, refresh, me, accept-invitation."""

    account: AccountOut
    tenant: TenantOut
    access_token: str
    refresh_token: str
    message: Optional[str] = None

    @classmethod
    def from_result(cls, result: AuthResult) -> "AuthResponse":
        return cls(
            account=AccountOut(**vars(result.account)),
            tenant=TenantOut(**vars(result.tenant)),
            access_token=result.access_token,
            refresh_token=result.refresh_token,
            message=result.message,
        )


class RegisterResponse(_CamelResponse):
    message: str
    email: str
    first_name: str
    last_name: str
    tenant_name: str

    @classmethod
    def from_result(cls, result: RegistrationResult) -> "RegisterResponse":
        return cls(**vars(result))


class MessageResponse(_CamelResponse):
    message: str


class InvitationSummary(_CamelResponse):
    """Public view of an invitation for the accept page. No token, no ids."""

    email: str
    tenant_name: str
    invited_by_name: str
    role: str
    expires_at: str

    @classmethod
    def from_details(cls, details: InvitationDetails) -> "InvitationSummary":
        return cls(**vars(details))


class InvitationResponse(_CamelResponse):
    id: str
    email: str
    role: str
    tenant_id: str
    invited_by: Optional[str] = None
    expires_at: str
    consumed_at: Optional[str] = None
    cancelled_at: Optional[str] = None
    created_at: str

    @classmethod
    def from_invitation(cls, invitation: Invitation) -> "InvitationResponse":
        return cls(
            id=invitation.id or "",
            email=invitation.email,
            role=Role(invitation.role).value,
            tenant_id=invitation.tenant_id,
            invited_by=invitation.invited_by,
            expires_at=invitation.expires_at,
            consumed_at=invitation.consumed_at,
            cancelled_at=invitation.cancelled_at,
            created_at=invitation.created_at or "",
        )


class OAuthProviderInfo(BaseModel):
    """One entry of GET /auth/providers."""

    model_config = ConfigDict(frozen=True)

    name: str
    label: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
