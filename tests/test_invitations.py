"""Flow tests for auth/invitations.py.

Covers:
- Only owners/admins invite; the owner role is never offered
- Duplicate live invitations and existing accounts conflict
- Details: NotFound for unknown tokens, BadRequest for used/cancelled/expired
- Acceptance creates an ACTIVE verified account and logs it in
- An already-consumed token fails BadRequest and creates no account
"""

from datetime import datetime, timedelta, timezone

import pytest

from auth.errors import BadRequest, Conflict, Forbidden, NotFound
from auth.invitations import ACCOUNT_CREATED, INVITATION_CANCELLED, INVITATION_EXPIRED, INVITATION_USED, InvitationFlow
from auth.models import AccountStatus, Role
from auth.store import AccountStore
from conftest import RecordingMailSink, count_accounts, token_from_url


@pytest.fixture
def flow(sessions) -> InvitationFlow:
    return InvitationFlow(sessions)


@pytest.fixture
def owner(make_account):
    return make_account(email="owner@acme.test", role=Role.owner)


class TestCreateInvitation:
    def test_create_sends_mail_with_token(self, flow, owner, mail: RecordingMailSink) -> None:
        tenant, inviter = owner
        invitation = flow.create_invitation(inviter, "New@Acme.test", Role.manager)

        assert invitation.email == "new@acme.test"
        assert invitation.tenant_id == tenant.id
        assert invitation.invited_by == inviter.id
        assert len(invitation.token) == 64
        [(sent_to, url)] = mail.invitations
        assert sent_to == "new@acme.test"
        assert url.endswith(f"/accept-invitation?token={invitation.token}")
        assert token_from_url(url) == invitation.token

    def test_expiry_is_seven_days(self, flow, owner) -> None:
        invitation = flow.create_invitation(owner[1], "new@acme.test", Role.employee)
        expires = datetime.fromisoformat(invitation.expires_at)
        delta = expires - datetime.now(timezone.utc)
        assert timedelta(days=6, hours=23) < delta <= timedelta(days=7)

    def test_owner_role_cannot_be_invited(self, flow, owner) -> None:
        with pytest.raises(BadRequest, match="owner role"):
            flow.create_invitation(owner[1], "new@acme.test", Role.owner)

    def test_employee_cannot_invite(self, flow, owner, make_account) -> None:
        _, employee = make_account(email="emp@acme.test", role=Role.employee, tenant=owner[0])
        with pytest.raises(Forbidden):
            flow.create_invitation(employee, "new@acme.test", Role.employee)

    def test_existing_account_conflicts(self, flow, owner) -> None:
        with pytest.raises(Conflict):
            flow.create_invitation(owner[1], "owner@acme.test", Role.employee)

    def test_live_invitation_conflicts(self, flow, owner) -> None:
        flow.create_invitation(owner[1], "new@acme.test", Role.employee)
        with pytest.raises(Conflict):
            flow.create_invitation(owner[1], "new@acme.test", Role.manager)

    def test_expired_invitation_is_replaced(self, flow, owner, store: AccountStore) -> None:
        tenant, inviter = owner
        stale = flow.create_invitation(inviter, "new@acme.test", Role.employee)
        _expire(store, stale.id)

        fresh = flow.create_invitation(inviter, "new@acme.test", Role.manager)

        assert fresh.id != stale.id
        assert [i.id for i in store.list_invitations(tenant.id)] == [fresh.id]

    def test_list_and_cancel(self, flow, owner, make_account) -> None:
        invitation = flow.create_invitation(owner[1], "new@acme.test", Role.employee)
        assert [i.id for i in flow.list_invitations(owner[1])] == [invitation.id]

        flow.cancel_invitation(owner[1], invitation.id)
        with pytest.raises(BadRequest):
            flow.cancel_invitation(owner[1], invitation.id)

        _, outsider = make_account(email="admin@other.test", role=Role.admin)
        with pytest.raises(NotFound):
            flow.cancel_invitation(outsider, invitation.id)


def _expire(store: AccountStore, invitation_id: str) -> None:
    past = (datetime.now(timezone.utc) - timedelta(minutes=1)).isoformat()
    with store.engine.begin() as conn:
        conn.exec_driver_sql("UPDATE invitations SET expires_at = ? WHERE id = ?", (past, invitation_id))


class TestInvitationDetails:
    def test_details(self, flow, owner) -> None:
        tenant, inviter = owner
        invitation = flow.create_invitation(inviter, "new@acme.test", Role.manager)

        details = flow.get_invitation_details(invitation.token)

        assert details.email == "new@acme.test"
        assert details.tenant_name == tenant.name
        assert details.invited_by_name == "Ada Lovelace"
        assert details.role == "manager"

    def test_unknown_token_not_found(self, flow) -> None:
        with pytest.raises(NotFound):
            flow.get_invitation_details("0" * 64)

    def test_cancelled_expired_and_used(self, flow, owner, store: AccountStore) -> None:
        inviter = owner[1]
        cancelled = flow.create_invitation(inviter, "c@acme.test", Role.employee)
        flow.cancel_invitation(inviter, cancelled.id)
        expired = flow.create_invitation(inviter, "e@acme.test", Role.employee)
        _expire(store, expired.id)
        used = flow.create_invitation(inviter, "u@acme.test", Role.employee)
        flow.accept_invitation(used.token, "Una", "Used", "long-enough-pw")

        with pytest.raises(BadRequest, match=INVITATION_CANCELLED):
            flow.get_invitation_details(cancelled.token)
        with pytest.raises(BadRequest, match=INVITATION_EXPIRED):
            flow.get_invitation_details(expired.token)
        with pytest.raises(BadRequest, match=INVITATION_USED):
            flow.get_invitation_details(used.token)


class TestAcceptInvitation:
    def test_accept_creates_active_verified_account(self, flow, sessions, owner, store: AccountStore) -> None:
        tenant, inviter = owner
        invitation = flow.create_invitation(inviter, "new@acme.test", Role.manager)

        result = flow.accept_invitation(invitation.token, "Nia", "New", "long-enough-pw")

        assert result.message == ACCOUNT_CREATED
        assert result.tenant.id == tenant.id
        account = store.get_account_by_email("new@acme.test")
        assert account.status is AccountStatus.ACTIVE
        assert account.email_verified is True
        assert account.role is Role.manager
        assert account.refresh_token == result.refresh_token
        assert sessions.codec.verify_access(result.access_token).sub == account.id

    def test_consumed_token_fails_and_creates_nothing(self, flow, owner, store: AccountStore) -> None:
        invitation = flow.create_invitation(owner[1], "new@acme.test", Role.employee)
        flow.accept_invitation(invitation.token, "Nia", "New", "long-enough-pw")
        count = count_accounts(store)

        with pytest.raises(BadRequest, match=INVITATION_USED):
            flow.accept_invitation(invitation.token, "Eve", "Again", "long-enough-pw")

        assert count_accounts(store) == count

    def test_existing_account_conflicts(self, flow, owner, make_account) -> None:
        invitation = flow.create_invitation(owner[1], "new@acme.test", Role.employee)
        make_account(email="new@acme.test")
        with pytest.raises(Conflict):
            flow.accept_invitation(invitation.token, "Nia", "New", "long-enough-pw")

    def test_unknown_token(self, flow) -> None:
        with pytest.raises(NotFound):
            flow.accept_invitation("0" * 64, "Nia", "New", "long-enough-pw")
