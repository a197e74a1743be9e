"""
auth/invitations.py -- Invite a person into a tenant with a preassigned role.

Lifecycle: created (live) -> consumed | cancelled | expired.
Only a live invitation can be shown or accepted. Acceptance creates an
ACTIVE, verified account and consumes the invitation in the same
transaction (AccountStore.accept_invitation), so one invitation yields at
most one account even under concurrent accepts.

The owner role is never handed out by invitation.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import IntegrityError

from auth.errors import BadRequest, Conflict, Forbidden, NotFound
from auth.models import Account, AccountStatus, AuthResult, Invitation, InvitationDetails, Role
from auth.policy import authorize_account_change, can_manage_accounts
from auth.sessions import EMAIL_TAKEN, SessionManager
from auth.tokens import generate_opaque_token
from auth.verification import is_expired

INVITATION_NOT_FOUND = "Invitation not found"
INVITATION_USED = "This invitation has already been used"
INVITATION_CANCELLED = "This invitation has been cancelled"
INVITATION_EXPIRED = "This invitation has expired"
ACCOUNT_CREATED = "Account created successfully"


def is_live(invitation: Invitation) -> bool:
    return invitation.consumed_at is None and invitation.cancelled_at is None and not is_expired(invitation.expires_at)


def ensure_usable(invitation: Invitation) -> None:
    """Raise BadRequest unless the invitation is live."""
    if invitation.consumed_at is not None:
        raise BadRequest(INVITATION_USED)
    if invitation.cancelled_at is not None:
        raise BadRequest(INVITATION_CANCELLED)
    if is_expired(invitation.expires_at):
        raise BadRequest(INVITATION_EXPIRED)


class InvitationFlow:
    def __init__(self, sessions: SessionManager) -> None:
        self.sessions = sessions
        self.store = sessions.store
        self.hasher = sessions.hasher
        self.events = sessions.events
        self.mail = sessions.mail
        self.settings = sessions.settings

    def _require_manager(self, actor: Account) -> None:
        if not can_manage_accounts(actor.role):
            raise Forbidden("Only owners and administrators can manage invitations")

    def create_invitation(self, inviter: Account, email: str, role: Role | str) -> Invitation:
        """Invite email into the inviter's tenant. A stale invitation for the same email is replaced."""
        self._require_manager(inviter)
        role = Role(role)
        if role is Role.owner:
            raise BadRequest("Cannot invite a user with the owner role")
        decision = authorize_account_change(inviter.role, role, False, new_role=role)
        if not decision.allowed:
            raise Forbidden(decision.reason or "Access denied")

        email = email.strip().lower()
        if self.store.get_account_by_email(email) is not None:
            raise Conflict(EMAIL_TAKEN)
        for existing in self.store.list_invitations(inviter.tenant_id, email=email):
            if is_live(existing):
                raise Conflict("An active invitation for this email already exists")
            if existing.consumed_at is None:
                self.store.delete_invitation(existing.id)

        expires_at = datetime.now(timezone.utc) + timedelta(days=self.settings.invitation_ttl_days)
        invitation = self.store.create_invitation(
            Invitation(
                email=email,
                tenant_id=inviter.tenant_id,
                role=role,
                token=generate_opaque_token(),
                expires_at=expires_at.isoformat(),
                invited_by=inviter.id,
            )
        )
        tenant = self.sessions.load_tenant(inviter)
        self.mail.send_invitation(
            invitation, tenant, f"{self.settings.frontend_url}/accept-invitation?token={invitation.token}"
        )
        self.events.emit(
            "invitation.created", invitation_id=invitation.id, tenant_id=tenant.id, role=role.value, actor_id=inviter.id
        )
        return invitation

    def list_invitations(self, actor: Account) -> list[Invitation]:
        self._require_manager(actor)
        return self.store.list_invitations(actor.tenant_id)

    def cancel_invitation(self, actor: Account, invitation_id: str) -> None:
        self._require_manager(actor)
        invitation = self.store.get_invitation_by_id(invitation_id)
        if invitation is None or invitation.tenant_id != actor.tenant_id:
            raise NotFound(INVITATION_NOT_FOUND)
        if not self.store.cancel_invitation(invitation.id):
            raise BadRequest("Invitation is no longer active")
        self.events.emit("invitation.cancelled", invitation_id=invitation.id, actor_id=actor.id)

    def _load_usable(self, token: str) -> Invitation:
        invitation = self.store.get_invitation_by_token(token) if token else None
        if invitation is None:
            raise NotFound(INVITATION_NOT_FOUND)
        ensure_usable(invitation)
        return invitation

    def get_invitation_details(self, token: str) -> InvitationDetails:
        invitation = self._load_usable(token)
        tenant = self.store.get_tenant(invitation.tenant_id)
        inviter = self.store.get_account_by_id(invitation.invited_by) if invitation.invited_by else None
        return InvitationDetails(
            email=invitation.email,
            tenant_name=tenant.name if tenant else "",
            invited_by_name=inviter.full_name if inviter else "",
            role=Role(invitation.role).value,
            expires_at=invitation.expires_at,
        )

    def accept_invitation(self, token: str, first_name: str, last_name: str, password: str) -> AuthResult:
        """Create the invited account, consume the invitation, and log the new account in."""
        invitation = self._load_usable(token)
        if self.store.get_account_by_email(invitation.email) is not None:
            raise Conflict(EMAIL_TAKEN)

        account = Account(
            tenant_id=invitation.tenant_id,
            email=invitation.email,
            role=Role(invitation.role),
            status=AccountStatus.ACTIVE,
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            hashed_password=self.hasher.hash(password),
            email_verified=True,
        )
        tenant = self.sessions.load_tenant(account)
        self.sessions.gate(account, tenant, "invitation.accept")

        try:
            created = self.store.accept_invitation(invitation.id, account)
        except IntegrityError:
            raise Conflict(EMAIL_TAKEN) from None
        if created is None:
            # Consumed or cancelled by a concurrent request after our check.
            raise BadRequest(INVITATION_USED)

        self.events.emit("invitation.accepted", invitation_id=invitation.id, account_id=created.id)
        return self.sessions.issue(created, tenant, touch_login=True, message=ACCOUNT_CREATED)
