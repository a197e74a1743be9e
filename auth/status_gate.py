"""
auth/status_gate.py -- Tenant and account status checks shared by every flow.

One pure function, evaluate(), decides whether a session may be created or
continued. Tenant status is checked before account status, so a user of a
suspended organization always sees the organization message.

Callers choose how strictly PENDING accounts are treated:
  login                       -- no flags: PENDING passes the gate and the
                                 caller decides what to do with it
  refresh                     -- require_verified_email
  current session / API calls -- require_verified_email + require_approval

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass

from auth.models import Account, AccountStatus, Tenant, TenantStatus

TENANT_SUSPENDED = "Your organization has been suspended. Please contact support."
TENANT_INACTIVE = "Your organization account is inactive. Please contact support."
ACCOUNT_SUSPENDED = "Your account has been suspended. Please contact your administrator."
ACCOUNT_INACTIVE = "Your account is inactive. Please contact your administrator."
EMAIL_NOT_VERIFIED = "Please verify your email address before continuing."
PENDING_APPROVAL = "Your account is pending approval by an administrator."


@dataclass(frozen=True)
class GateDecision:
    allowed: bool
    reason: str | None = None


ALLOW = GateDecision(allowed=True)


def deny(reason: str) -> GateDecision:
    return GateDecision(allowed=False, reason=reason)


def evaluate(
    account: Account,
    tenant: Tenant,
    *,
    require_verified_email: bool = False,
    require_approval: bool = False,
) -> GateDecision:
    """Return ALLOW or a denial carrying the user-facing reason."""
    tenant_status = TenantStatus(tenant.status)
    if tenant_status is TenantStatus.SUSPENDED:
        return deny(TENANT_SUSPENDED)
    if tenant_status is TenantStatus.INACTIVE:
        return deny(TENANT_INACTIVE)

    account_status = AccountStatus(account.status)
    if account_status is AccountStatus.SUSPENDED:
        return deny(ACCOUNT_SUSPENDED)
    if account_status is AccountStatus.INACTIVE:
        return deny(ACCOUNT_INACTIVE)
    if account_status is AccountStatus.PENDING:
        if require_verified_email and not account.email_verified:
            return deny(EMAIL_NOT_VERIFIED)
        if require_approval:
            return deny(PENDING_APPROVAL)
    return ALLOW
