"""
auth/sessions.py -- Login, refresh rotation, logout, current session, registration.

SessionManager is the only place that issues token pairs for password-based
sessions. A new pair is always persisted before it is returned: issue() writes
the refresh token (and last-login) in one UPDATE, refresh() swaps it
conditionally. If that write does not land, nothing is returned to the caller.

Security design decisions:
  [C1] Timing equalization: an unknown email still pays a full bcrypt
       comparison (PasswordHasher.verify_dummy), and the failure message is
       identical for "no such account" and "wrong password".

  [R1] Rotation: refresh() compares the presented token against the stored
       value, then swaps it with a conditional UPDATE scoped by (id, expected
       token). A rotated-out token fails even before its expiry, and of two
       concurrent refreshes with the same token exactly one wins.

  [R2] The database value is authoritative. The account is looked up by the
       subject claim, never by the token value.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import IntegrityError

from auth import status_gate
from auth.errors import BadRequest, Conflict, Forbidden, NotFound, Unauthorized
from auth.events import EventSink, LoggingEventSink, LoggingMailSink, MailSink
from auth.models import (
    Account,
    AccountStatus,
    AccountSummary,
    AuthResult,
    Claims,
    RegistrationResult,
    Role,
    Tenant,
    TenantStatus,
    TenantSummary,
    TokenKind,
)
from auth.passwords import PasswordHasher
from auth.policy import authorize_account_change, can_manage_accounts
from auth.slugs import slugify
from auth.store import AccountStore
from auth.tokens import TokenCodec, generate_opaque_token
from core.config import Settings, get_settings

logger = logging.getLogger("tenantauth.auth")

INVALID_CREDENTIALS = "Invalid email or password"
INVALID_REFRESH_TOKEN = "Invalid refresh token"
INVALID_ACCESS_TOKEN = "Invalid or expired access token"
ACCOUNT_NOT_FOUND = "Account not found"
EMAIL_TAKEN = "An account with this email already exists"
LOGGED_OUT = "Logged out successfully"
PASSWORD_CHANGED = "Password changed successfully"
REGISTRATION_PENDING = (
    "Registration successful. Please check your email to verify your address. "
    "After verification, your account will be reviewed by an administrator."
)


def claims_for(account: Account) -> Claims:
    return Claims(
        sub=account.id or "",
        email=account.email,
        role=Role(account.role).value,
        tenant_id=account.tenant_id,
        kind=TokenKind.access,
    )


def verification_expiry(settings: Settings) -> str:
    return (datetime.now(timezone.utc) + timedelta(hours=settings.verification_token_ttl_hours)).isoformat()


class SessionManager:
    """Password sessions for accounts, gated by tenant and account status.

    Usage:
        sessions = SessionManager(store)
        result = sessions.login("a@example.com", "secret")
        rotated = sessions.refresh(result.refresh_token)
    """

    def __init__(
        self,
        store: AccountStore,
        hasher: PasswordHasher | None = None,
        codec: TokenCodec | None = None,
        events: EventSink | None = None,
        mail: MailSink | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.store = store
        self.hasher = hasher or PasswordHasher(self.settings.bcrypt_rounds)
        self.codec = codec or TokenCodec(self.settings)
        self.events = events or LoggingEventSink()
        self.mail = mail or LoggingMailSink()

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    def load_tenant(self, account: Account) -> Tenant:
        tenant = self.store.get_tenant(account.tenant_id)
        if tenant is None:
            # An account without a tenant is a broken invariant, not a user error.
            raise NotFound("Tenant not found")
        return tenant

    def gate(self, account: Account, tenant: Tenant, event: str, **flags) -> None:
        """Apply the status gate; raise Forbidden with the gate's reason on deny."""
        decision = status_gate.evaluate(account, tenant, **flags)
        if not decision.allowed:
            self.events.emit(f"{event}.denied", account_id=account.id, tenant_id=tenant.id, reason=decision.reason)
            raise Forbidden(decision.reason or "Access denied")

    def build_result(self, account: Account, tenant: Tenant, access: str, refresh: str, message: str | None = None):
        return AuthResult(
            account=AccountSummary.from_account(account),
            tenant=TenantSummary.from_tenant(tenant),
            access_token=access,
            refresh_token=refresh,
            message=message,
        )

    def issue(self, account: Account, tenant: Tenant, touch_login: bool = False, message: str | None = None):
        """Issue a pair and persist its refresh token. Nothing is returned if the write fails."""
        pair = self.codec.issue_pair(claims_for(account))
        if not self.store.set_refresh_token(account.id, pair.refresh_token, touch_login=touch_login):
            raise NotFound(ACCOUNT_NOT_FOUND)
        account.refresh_token = pair.refresh_token
        return self.build_result(account, tenant, pair.access_token, pair.refresh_token, message)

    def _load_refresh_account(self, refresh_token: str) -> Account:
        """Verify a refresh token and return its account if the stored value still matches."""
        claims = self.codec.verify_refresh(refresh_token)
        if claims is None or claims.kind is not TokenKind.refresh:
            raise Unauthorized(INVALID_REFRESH_TOKEN)
        account = self.store.get_account_by_id(claims.sub)
        if account is None:
            raise Unauthorized(INVALID_REFRESH_TOKEN)
        if account.refresh_token is None or not secrets.compare_digest(account.refresh_token, refresh_token):
            self.events.emit("refresh.reuse_detected", account_id=account.id)
            raise Unauthorized(INVALID_REFRESH_TOKEN)
        return account

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def login(self, email: str, password: str) -> AuthResult:
        """Verify credentials, gate, and start a session. PENDING accounts may log in."""
        account = self.store.get_account_by_email(email)
        if account is None or account.hashed_password is None:
            self.hasher.verify_dummy(password)
            self.events.emit("login.failed", email=email.strip().lower())
            raise Unauthorized(INVALID_CREDENTIALS)
        if not self.hasher.verify(password, account.hashed_password):
            self.events.emit("login.failed", email=account.email)
            raise Unauthorized(INVALID_CREDENTIALS)

        tenant = self.load_tenant(account)
        self.gate(account, tenant, "login")
        result = self.issue(account, tenant, touch_login=True)
        self.events.emit("login.succeeded", account_id=account.id, tenant_id=tenant.id)
        return result

    def refresh(self, refresh_token: str) -> AuthResult:
        """Exchange a refresh token for a new pair. The presented token stops working."""
        account = self._load_refresh_account(refresh_token)
        tenant = self.load_tenant(account)
        self.gate(account, tenant, "refresh", require_verified_email=True)

        pair = self.codec.issue_pair(claims_for(account))
        if not self.store.swap_refresh_token(account.id, refresh_token, pair.refresh_token):
            # Another request rotated (or logout cleared) the token between read and write.
            self.events.emit("refresh.reuse_detected", account_id=account.id)
            raise Unauthorized(INVALID_REFRESH_TOKEN)
        account.refresh_token = pair.refresh_token
        self.events.emit("refresh.succeeded", account_id=account.id)
        return self.build_result(account, tenant, pair.access_token, pair.refresh_token)

    def logout(self, account_id: str) -> str:
        """Clear the stored refresh token. Repeating the call is harmless."""
        if not self.store.clear_refresh_token(account_id):
            raise NotFound(ACCOUNT_NOT_FOUND)
        self.events.emit("logout", account_id=account_id)
        return LOGGED_OUT

    def logout_with_refresh_token(self, refresh_token: str) -> str:
        """Logout for clients that only hold a refresh token. No new pair is issued."""
        account = self._load_refresh_account(refresh_token)
        return self.logout(account.id)

    def get_current_session(self, account_id: str) -> AuthResult:
        """Re-gate the account and reissue a pair (sliding session)."""
        account = self.store.get_account_by_id(account_id)
        if account is None:
            raise NotFound(ACCOUNT_NOT_FOUND)
        tenant = self.load_tenant(account)
        self.gate(account, tenant, "session", require_verified_email=True, require_approval=True)
        return self.issue(account, tenant)

    def authenticate_access_token(self, token: str) -> Account:
        """Resolve a bearer access token to a live, fully approved account."""
        claims = self.codec.verify_access(token)
        if claims is None:
            raise Unauthorized(INVALID_ACCESS_TOKEN)
        account = self.store.get_account_by_id(claims.sub)
        if account is None:
            raise Unauthorized(INVALID_ACCESS_TOKEN)
        tenant = self.load_tenant(account)
        self.gate(account, tenant, "access", require_verified_email=True, require_approval=True)
        return account

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(
        self,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        tenant_name: str | None = None,
        tenant_id: str | None = None,
    ) -> RegistrationResult | AuthResult:
        """Create a PENDING, unverified account and send the verification mail.

        With tenant_name a new TRIAL tenant is created and the account owns it.
        With tenant_id the account joins that tenant as an employee.
        """
        email = email.strip().lower()
        tenant_name = tenant_name.strip() if tenant_name else None
        if bool(tenant_name) == bool(tenant_id):
            raise BadRequest("Provide either tenantName or tenantId")
        if self.store.get_account_by_email(email) is not None:
            raise Conflict(EMAIL_TAKEN)

        token = generate_opaque_token()
        account = Account(
            tenant_id=tenant_id or "",
            email=email,
            role=Role.owner if tenant_name else Role.employee,
            status=AccountStatus.PENDING,
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            hashed_password=self.hasher.hash(password),
            email_verified=False,
            verification_token=token,
            verification_token_expiry=verification_expiry(self.settings),
        )

        try:
            if tenant_name:
                slug = self.store.unique_slug(slugify(tenant_name))
                tenant = Tenant(name=tenant_name, slug=slug, status=TenantStatus.TRIAL)
                tenant, account = self.store.create_tenant_with_account(tenant, account)
            else:
                tenant = self.store.get_tenant(tenant_id)
                if tenant is None:
                    raise NotFound("Tenant not found")
                account = self.store.create_account(account)
        except IntegrityError:
            # Lost a race on the email; anything else is not ours to translate.
            if self.store.get_account_by_email(email) is not None:
                raise Conflict(EMAIL_TAKEN) from None
            raise

        self.mail.send_verification(account, f"{self.settings.frontend_url}/verify-email?token={token}")
        self.events.emit("register.succeeded", account_id=account.id, tenant_id=tenant.id, tenant_slug=tenant.slug)

        if self.settings.registration_mode == "auto_login":
            return self.issue(account, tenant, touch_login=True, message="Registration successful")
        return RegistrationResult(
            message=REGISTRATION_PENDING,
            email=account.email,
            first_name=account.first_name,
            last_name=account.last_name,
            tenant_name=tenant.name,
        )

    # ------------------------------------------------------------------
    # Account self-service and administration
    # ------------------------------------------------------------------

    def _load_in_tenant(self, actor: Account, account_id: str) -> Account:
        target = self.store.get_account_by_id(account_id)
        if target is None or target.tenant_id != actor.tenant_id:
            raise NotFound(ACCOUNT_NOT_FOUND)
        return target

    def change_password(self, actor: Account, account_id: str, current_password: str, new_password: str) -> str:
        """Replace a password after checking the current one. Ends the account's session."""
        if actor.id != account_id and not can_manage_accounts(actor.role):
            raise Forbidden("You can only change your own password")
        target = self._load_in_tenant(actor, account_id)
        if not self.hasher.verify(current_password, target.hashed_password):
            raise BadRequest("Current password is incorrect")
        if self.hasher.verify(new_password, target.hashed_password):
            raise BadRequest("New password must be different from current password")

        self.store.update_account(target.id, hashed_password=self.hasher.hash(new_password), refresh_token=None)
        self.events.emit("password.changed", account_id=target.id, actor_id=actor.id)
        return PASSWORD_CHANGED

    def update_account(
        self,
        actor: Account,
        account_id: str,
        role: Role | None = None,
        status: AccountStatus | None = None,
    ) -> AccountSummary:
        """Change another account's role or status under the authorization policy.

        Suspending or deactivating an account also clears its refresh token,
        so the next refresh fails instead of waiting for expiry.
        """
        target = self._load_in_tenant(actor, account_id)
        decision = authorize_account_change(
            actor.role, target.role, actor.id == target.id, new_role=role, new_status=status
        )
        if not decision.allowed:
            self.events.emit("account.update.denied", account_id=target.id, actor_id=actor.id, reason=decision.reason)
            raise Forbidden(decision.reason or "Access denied")

        fields: dict = {}
        if role is not None:
            fields["role"] = Role(role)
        if status is not None:
            fields["status"] = AccountStatus(status)
            if fields["status"] in (AccountStatus.SUSPENDED, AccountStatus.INACTIVE):
                fields["refresh_token"] = None
        if fields:
            self.store.update_account(target.id, **fields)
        self.events.emit(
            "account.updated",
            account_id=target.id,
            actor_id=actor.id,
            role=Role(role).value if role is not None else None,
            status=AccountStatus(status).value if status is not None else None,
        )
        updated = self.store.get_account_by_id(target.id)
        return AccountSummary.from_account(updated)
