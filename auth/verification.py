"""
auth/verification.py -- Email verification and resend.

Anti-enumeration: resend_verification() answers with the same message for
unknown, already verified and unverified addresses. Only the last case
writes anything.

An expired token raises Gone rather than BadRequest so the client can offer
"send a new link" instead of "try again".
"""

from __future__ import annotations

from datetime import datetime, timezone

from auth.errors import BadRequest, Gone
from auth.sessions import SessionManager, verification_expiry
from auth.tokens import generate_opaque_token, token_preview

INVALID_TOKEN = "Invalid verification token. Please request a new verification email."
EXPIRED_TOKEN = "Verification token has expired. Please request a new verification email."
ALREADY_VERIFIED = "Your email has already been verified."
VERIFIED = "Email verified successfully. Your account is now pending approval by an administrator."
RESEND_GENERIC = (
    "If an account exists with this email and has not been verified, a new verification email has been sent."
)


def is_expired(expiry_iso: str | None) -> bool:
    """True if the ISO timestamp lies in the past. No expiry never expires."""
    if not expiry_iso:
        return False
    expiry = datetime.fromisoformat(expiry_iso)
    if expiry.tzinfo is None:
        expiry = expiry.replace(tzinfo=timezone.utc)
    return expiry <= datetime.now(timezone.utc)


class VerificationFlow:
    def __init__(self, sessions: SessionManager) -> None:
        self.store = sessions.store
        self.events = sessions.events
        self.mail = sessions.mail
        self.settings = sessions.settings

    def verify_email(self, token: str) -> str:
        account = self.store.get_account_by_verification_token(token) if token else None
        if account is None:
            raise BadRequest(INVALID_TOKEN)
        if is_expired(account.verification_token_expiry):
            self.events.emit("email.verify.failed", account_id=account.id, token=token_preview(token))
            raise Gone(EXPIRED_TOKEN)
        if account.email_verified:
            return ALREADY_VERIFIED

        self.store.mark_email_verified(account.id, token)
        self.events.emit("email.verified", account_id=account.id)
        return VERIFIED

    def resend_verification(self, email: str) -> str:
        account = self.store.get_account_by_email(email)
        if account is None or account.email_verified:
            return RESEND_GENERIC

        token = generate_opaque_token()
        self.store.update_account(
            account.id,
            verification_token=token,
            verification_token_expiry=verification_expiry(self.settings),
        )
        account.verification_token = token
        self.mail.send_verification(account, f"{self.settings.frontend_url}/verify-email?token={token}")
        self.events.emit("verification.resent", account_id=account.id)
        return RESEND_GENERIC
