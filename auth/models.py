"""
auth/models.py -- Domain dataclasses and enums for authentication entities.

Pattern: Data class (pure data container, zero logic beyond trivial
properties). Stores and flows do the work.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    """Account roles, most privileged first."""

    owner = "owner"
    admin = "admin"
    manager = "manager"
    employee = "employee"

    @property
    def rank(self) -> int:
        """Lower rank means more privilege. Used by the authorization policy."""
        return _ROLE_ORDER.index(self)


_ROLE_ORDER = [Role.owner, Role.admin, Role.manager, Role.employee]


class AccountStatus(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    INACTIVE = "INACTIVE"


class TenantStatus(str, Enum):
    ACTIVE = "ACTIVE"
    TRIAL = "TRIAL"
    SUSPENDED = "SUSPENDED"
    INACTIVE = "INACTIVE"


class TokenKind(str, Enum):
    access = "access"
    refresh = "refresh"


@dataclass
class Tenant:
    """A customer organization. Its status gates every session under it."""

    name: str
    slug: str
    status: TenantStatus = TenantStatus.TRIAL
    plan: str = "free"
    id: str | None = None
    created_at: str | None = None


@dataclass
class Account:
    """A login identity bound to exactly one tenant.

    email is always stored lowercase and is unique across all tenants.
    hashed_password is None for accounts created through an OAuth provider.

    refresh_token holds the single active refresh token. Issuing a new pair
    overwrites it, which is what makes a rotated-out token unusable.
    """

    tenant_id: str
    email: str
    role: Role
    status: AccountStatus = AccountStatus.PENDING
    first_name: str = ""
    last_name: str = ""
    id: str | None = None
    hashed_password: str | None = None
    email_verified: bool = False
    refresh_token: str | None = None
    verification_token: str | None = None
    verification_token_expiry: str | None = None  # ISO 8601, UTC
    last_login_at: str | None = None
    created_at: str | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass
class Invitation:
    """A one-time offer to join a tenant with a preassigned role.

    An invitation is live while consumed_at and cancelled_at are both None
    and expires_at lies in the future.
    """

    email: str
    tenant_id: str
    role: Role
    token: str
    expires_at: str  # ISO 8601, UTC
    id: str | None = None
    invited_by: str | None = None  # account id
    consumed_at: str | None = None
    cancelled_at: str | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class Claims:
    """The claim set embedded in every signed token.

    Serialized on the wire as {sub, email, role, tenantId, type}.
    """

    sub: str
    email: str
    role: str
    tenant_id: str
    kind: TokenKind


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class ExternalProfile:
    """Provider-agnostic profile produced by the OAuth adapters.

    email is None when the provider did not expose any address. The linker
    turns that into an error outcome rather than creating an account.
    """

    provider: str
    subject: str
    email: str | None
    first_name: str
    last_name: str
    avatar_url: str | None = None


@dataclass
class AccountSummary:
    """Safe account fields returned to clients. Never carries secrets."""

    id: str
    email: str
    first_name: str
    last_name: str
    role: str
    status: str
    tenant_id: str
    email_verified: bool

    @classmethod
    def from_account(cls, account: Account) -> AccountSummary:
        return cls(
            id=account.id or "",
            email=account.email,
            first_name=account.first_name,
            last_name=account.last_name,
            role=Role(account.role).value,
            status=AccountStatus(account.status).value,
            tenant_id=account.tenant_id,
            email_verified=account.email_verified,
        )


@dataclass
class TenantSummary:
    id: str
    name: str
    slug: str
    plan: str
    status: str

    @classmethod
    def from_tenant(cls, tenant: Tenant) -> TenantSummary:
        return cls(
            id=tenant.id or "",
            name=tenant.name,
            slug=tenant.slug,
            plan=tenant.plan,
            status=TenantStatus(tenant.status).value,
        )


@dataclass
class AuthResult:
    """The canonical login response: account, tenant, and a fresh token pair."""

    account: AccountSummary
    tenant: TenantSummary
    access_token: str
    refresh_token: str
    message: str | None = None


@dataclass
class RegistrationResult:
    """Returned by register() in approval mode -- no tokens are issued."""

    message: str
    email: str
    first_name: str
    last_name: str
    tenant_name: str


@dataclass
class InvitationDetails:
    email: str
    tenant_name: str
    invited_by_name: str
    role: str
    expires_at: str


@dataclass
class ExternalLoginResult:
    """Outcome of an OAuth login. status is exactly one of success/pending/error."""

    status: str
    tokens: TokenPair | None = None
    error: str | None = None
    account_id: str | None = None
