"""
auth/identity.py -- Map an external provider login onto a local account.

IdentityLinker receives a normalized ExternalProfile (see auth/oauth.py) and
returns exactly one of three outcomes, which the callback route turns into a
redirect:

  success -- tokens issued and persisted
  pending -- account exists but awaits administrator approval, no tokens
  error   -- no usable email, or the status gate denied the login

A new account created here is PENDING with email_verified=True: the provider
already vouched for the address, but an administrator still approves the
account unless OAUTH_AUTO_APPROVE is set.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from auth import status_gate
from auth.models import (
    Account,
    AccountStatus,
    ExternalLoginResult,
    ExternalProfile,
    Role,
    Tenant,
    TenantStatus,
    TokenPair,
)
from auth.oauth import PROVIDER_LABELS
from auth.sessions import SessionManager
from auth.slugs import organization_name, slugify

logger = logging.getLogger("tenantauth.auth.oauth")

SUCCESS = "success"
PENDING = "pending"
ERROR = "error"


def missing_email_message(provider: str) -> str:
    label = PROVIDER_LABELS.get(provider, provider.title())
    return (
        f"No email found in your {label} profile. Please make your email public "
        "or verified with the provider, or use a different login method."
    )


class IdentityLinker:
    """Provider-agnostic login: find or create the account, then gate it.

    Usage:
        linker = IdentityLinker(sessions)
        result = linker.handle_external_login(profile)
        if result.status == "success": ...
    """

    def __init__(self, sessions: SessionManager) -> None:
        self.sessions = sessions
        self.store = sessions.store
        self.events = sessions.events
        self.settings = sessions.settings

    def handle_external_login(self, profile: ExternalProfile) -> ExternalLoginResult:
        if not profile.email:
            self.events.emit("oauth.failed", provider=profile.provider, reason="missing_email")
            return ExternalLoginResult(status=ERROR, error=missing_email_message(profile.provider))

        account = self.store.get_account_by_identity(profile.provider, profile.subject)
        if account is None:
            account = self.store.get_account_by_email(profile.email)
        if account is not None:
            return self._login_existing(account, profile)

        try:
            return self._create(profile)
        except IntegrityError:
            # A concurrent callback for the same person created the account first.
            account = self.store.get_account_by_email(profile.email)
            if account is None:
                raise
            return self._login_existing(account, profile)

    def _login_existing(self, account: Account, profile: ExternalProfile) -> ExternalLoginResult:
        if self.store.link_identity(account.id, profile.provider, profile.subject):
            self.events.emit("oauth.linked", account_id=account.id, provider=profile.provider)

        tenant = self.sessions.load_tenant(account)
        decision = status_gate.evaluate(account, tenant)
        if not decision.allowed:
            self.events.emit("oauth.denied", account_id=account.id, provider=profile.provider, reason=decision.reason)
            return ExternalLoginResult(status=ERROR, error=decision.reason, account_id=account.id)

        if AccountStatus(account.status) is AccountStatus.PENDING:
            self.events.emit("oauth.pending", account_id=account.id, provider=profile.provider)
            return ExternalLoginResult(status=PENDING, account_id=account.id)

        return self._success(account, tenant, profile)

    def _create(self, profile: ExternalProfile) -> ExternalLoginResult:
        name = organization_name(profile.first_name)
        tenant = Tenant(name=name, slug=self.store.unique_slug(slugify(name)), status=TenantStatus.TRIAL)
        auto_approve = self.settings.oauth_auto_approve
        account = Account(
            tenant_id="",
            email=profile.email,
            role=Role.owner,
            status=AccountStatus.ACTIVE if auto_approve else AccountStatus.PENDING,
            first_name=profile.first_name,
            last_name=profile.last_name,
            hashed_password=None,
            email_verified=True,
        )
        tenant, account = self.store.create_tenant_with_account(
            tenant, account, identity=(profile.provider, profile.subject)
        )
        logger.info("Created account %s via %s OAuth in tenant %s", account.id, profile.provider, tenant.slug)
        self.events.emit("oauth.linked", account_id=account.id, provider=profile.provider, created=True)

        if not auto_approve:
            self.events.emit("oauth.pending", account_id=account.id, provider=profile.provider)
            return ExternalLoginResult(status=PENDING, account_id=account.id)
        return self._success(account, tenant, profile)

    def _success(self, account: Account, tenant: Tenant, profile: ExternalProfile) -> ExternalLoginResult:
        result = self.sessions.issue(account, tenant, touch_login=True)
        self.events.emit("oauth.succeeded", account_id=account.id, provider=profile.provider)
        return ExternalLoginResult(
            status=SUCCESS,
            tokens=TokenPair(access_token=result.access_token, refresh_token=result.refresh_token),
            account_id=account.id,
        )
