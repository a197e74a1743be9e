"""
auth/passwords.py -- bcrypt password hashing with timing equalization.

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error. Direct bcrypt usage is simpler and has no
compatibility shim.

The work factor defaults to 12 rounds (Settings.bcrypt_rounds). Tests lower
it through BCRYPT_ROUNDS so the suite stays fast; production never should.

[C1] verify_dummy() exists so a login for an unknown email still pays the
full bcrypt cost. Response time therefore does not reveal whether an account
exists.
"""

from __future__ import annotations

import bcrypt

from auth.errors import BadRequest
from core.config import get_settings

# bcrypt only looks at the first 72 bytes. Longer input is refused rather
# than truncated, so two passwords sharing a 72-byte prefix never collide.
MAX_PASSWORD_BYTES = 72
PASSWORD_TOO_LONG = f"Password must be at most {MAX_PASSWORD_BYTES} bytes when UTF-8 encoded"


def _encode(plain: str) -> bytes:
    return plain.encode("utf-8")


class PasswordHasher:
    """One-way adaptive hashing and verification of passwords."""

    def __init__(self, rounds: int | None = None) -> None:
        self.rounds = rounds if rounds is not None else get_settings().bcrypt_rounds
        # Computed once per hasher so the first unknown-email login is not
        # measurably slower than later ones.
        self._dummy_hash = self.hash("tenantauth_timing_dummy")

    def hash(self, plain: str) -> str:
        """Return a bcrypt hash of the given plaintext password.

        Raises:
            BadRequest: the password exceeds MAX_PASSWORD_BYTES.
        """
        encoded = _encode(plain)
        if len(encoded) > MAX_PASSWORD_BYTES:
            raise BadRequest(PASSWORD_TOO_LONG)
        return bcrypt.hashpw(encoded, bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plain: str, hashed: str | None) -> bool:
        """Return True if the plaintext matches the hash. Never raises."""
        encoded = _encode(plain)
        # No stored hash can come from an over-long password.
        if not hashed or len(encoded) > MAX_PASSWORD_BYTES:
            return False
        try:
            return bcrypt.checkpw(encoded, hashed.encode("utf-8"))
        except (ValueError, TypeError):
            return False

    def verify_dummy(self, plain: str) -> None:
        """Burn one bcrypt comparison against a throwaway hash [C1]."""
        self.verify(plain, self._dummy_hash)
