"""Flow tests for auth/verification.py -- verify-email and resend.

Covers:
- Verifying twice with the same token answers "already verified"
- An expired token raises Gone and leaves email_verified untouched
- resend_verification() answers identically for unknown, verified and
  unverified addresses, and only the last one is written
"""

from datetime import datetime, timedelta, timezone

import pytest

from auth.errors import BadRequest, Gone
from auth.models import AccountStatus
from auth.store import AccountStore
from auth.verification import (
    ALREADY_VERIFIED,
    RESEND_GENERIC,
    VERIFIED,
    VerificationFlow,
    is_expired,
)
from conftest import RecordingMailSink, token_from_url


@pytest.fixture
def flow(sessions) -> VerificationFlow:
    return VerificationFlow(sessions)


def _registered(sessions, mail: RecordingMailSink, email: str = "new@acme.test") -> str:
    """Register a fresh account and return the mailed verification token."""
    sessions.register(email, "long-enough-pw", "Grace", "Hopper", tenant_name="Acme Co")
    return token_from_url(mail.verifications[-1][1])


class TestIsExpired:
    def test_past_and_future(self) -> None:
        now = datetime.now(timezone.utc)
        assert is_expired((now - timedelta(seconds=1)).isoformat())
        assert not is_expired((now + timedelta(hours=1)).isoformat())

    def test_missing_expiry_never_expires(self) -> None:
        assert not is_expired(None)

    def test_naive_timestamp_treated_as_utc(self) -> None:
        assert is_expired((datetime.now(timezone.utc) - timedelta(hours=1)).replace(tzinfo=None).isoformat())


class TestVerifyEmail:
    def test_verify_sets_flag_and_clears_token(self, flow, sessions, store: AccountStore, mail) -> None:
        token = _registered(sessions, mail)

        assert flow.verify_email(token) == VERIFIED

        account = store.get_account_by_email("new@acme.test")
        assert account.email_verified is True
        assert account.verification_token is None
        assert account.verification_token_expiry is None
        assert account.status is AccountStatus.PENDING

    def test_verify_is_idempotent(self, flow, sessions, mail) -> None:
        token = _registered(sessions, mail)
        assert flow.verify_email(token) == VERIFIED
        assert flow.verify_email(token) == ALREADY_VERIFIED

    def test_unknown_token(self, flow) -> None:
        with pytest.raises(BadRequest):
            flow.verify_email("f" * 64)
        with pytest.raises(BadRequest):
            flow.verify_email("")

    def test_expired_token_is_gone_and_not_applied(self, flow, sessions, store: AccountStore, mail) -> None:
        token = _registered(sessions, mail)
        account = store.get_account_by_email("new@acme.test")
        past = (datetime.now(timezone.utc) - timedelta(minutes=1)).isoformat()
        store.update_account(account.id, verification_token_expiry=past)

        with pytest.raises(Gone):
            flow.verify_email(token)

        assert store.get_account_by_email("new@acme.test").email_verified is False

    def test_verification_lets_pending_account_refresh(self, flow, sessions, mail) -> None:
        token = _registered(sessions, mail)
        login = sessions.login("new@acme.test", "long-enough-pw")
        flow.verify_email(token)
        assert sessions.refresh(login.refresh_token).account.email_verified is True


class TestResendVerification:
    def test_identical_answers_and_no_writes(self, flow, sessions, store: AccountStore, mail, make_account) -> None:
        _, verified = make_account(email="verified@acme.test", email_verified=True)
        before = store.get_account_by_id(verified.id)
        sent_before = len(mail.verifications)

        unknown = flow.resend_verification("nonexistent@x.com")
        already = flow.resend_verification("verified@acme.test")

        assert unknown == already == RESEND_GENERIC
        assert store.get_account_by_id(verified.id) == before
        assert len(mail.verifications) == sent_before

    def test_unverified_account_gets_new_token(self, flow, sessions, store: AccountStore, mail) -> None:
        old_token = _registered(sessions, mail)

        assert flow.resend_verification("NEW@acme.test") == RESEND_GENERIC

        new_token = token_from_url(mail.verifications[-1][1])
        assert new_token != old_token
        account = store.get_account_by_email("new@acme.test")
        assert account.verification_token == new_token
        with pytest.raises(BadRequest):
            flow.verify_email(old_token)
        assert flow.verify_email(new_token) == VERIFIED
