"""
auth/tokens.py -- JWT codec, opaque one-time tokens, and the refresh cookie.

Security design decisions:
  JWT: python-jose with HS256. Tokens carry {sub, email, role, tenantId, type}
       plus iat/exp/jti. Verification returns None on any failure -- the flows
       turn that into Unauthorized without saying why (no oracle).

  [T1] Access and refresh tokens are signed with different secrets
       (JWT_SECRET / JWT_REFRESH_SECRET). An access token presented to the
       refresh endpoint fails signature verification before its type claim is
       even read. The type claim is still checked as a second line.

  jti: a random id per token. Two pairs issued for the same account within the
       same second would otherwise be byte-identical, and the rotation check
       compares stored vs presented values.

  One-time tokens (email verification, invitations): secrets.token_hex(32)
       gives 256 bits of entropy -- unguessable, so they are stored as-is and
       looked up by equality.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from auth.models import Claims, TokenKind, TokenPair
from core.config import Settings, get_settings

logger = logging.getLogger("tenantauth.auth")

_ALGORITHM = "HS256"

REFRESH_COOKIE_NAME = "refreshToken"


class TokenCodec:
    """Creates and verifies signed, expiring access and refresh tokens.

    Usage:
        codec = TokenCodec()
        pair = codec.issue_pair(claims)
        claims = codec.verify(pair.refresh_token, codec.refresh_secret)
    """

    def __init__(self, settings: Settings | None = None) -> None:
        cfg = settings or get_settings()
        self.access_secret = cfg.jwt_secret
        self.refresh_secret = cfg.jwt_refresh_secret
        self.access_ttl = cfg.access_ttl_seconds
        self.refresh_ttl = cfg.refresh_ttl_seconds

    def issue(self, claims: Claims, kind: TokenKind, secret: str, ttl: int) -> str:
        """Encode a signed JWT for the given claims, kind and lifetime (seconds)."""
        now = datetime.now(timezone.utc)
        payload = {
            "sub": claims.sub,
            "email": claims.email,
            "role": claims.role,
            "tenantId": claims.tenant_id,
            "type": TokenKind(kind).value,
            "iat": now,
            "exp": now + timedelta(seconds=ttl),
            "jti": secrets.token_hex(8),
        }
        return jwt.encode(payload, secret, algorithm=_ALGORITHM)

    def verify(self, token: str, secret: str) -> Claims | None:
        """Decode and verify a JWT. Returns Claims or None on any failure.

        Bad signature, malformed payload, missing claims, unknown type and
        expiry all collapse into None. Callers must not try to tell them apart.
        """
        if not token or not isinstance(token, str):
            return None
        try:
            payload = jwt.decode(token, secret, algorithms=[_ALGORITHM], options={"require_exp": True})
        except JWTError:
            return None
        try:
            return Claims(
                sub=str(payload["sub"]),
                email=str(payload["email"]),
                role=str(payload["role"]),
                tenant_id=str(payload["tenantId"]),
                kind=TokenKind(payload["type"]),
            )
        except (KeyError, ValueError):
            return None

    def issue_pair(self, claims: Claims) -> TokenPair:
        """Issue an independently signed, independently expiring access/refresh pair."""
        return TokenPair(
            access_token=self.issue(claims, TokenKind.access, self.access_secret, self.access_ttl),
            refresh_token=self.issue(claims, TokenKind.refresh, self.refresh_secret, self.refresh_ttl),
        )

    def verify_access(self, token: str) -> Claims | None:
        claims = self.verify(token, self.access_secret)
        if claims is None or claims.kind is not TokenKind.access:
            return None
        return claims

    def verify_refresh(self, token: str) -> Claims | None:
        """Verify against the refresh secret only. The kind is checked by the caller."""
        return self.verify(token, self.refresh_secret)


# ---------------------------------------------------------------------------
# One-time tokens
# ---------------------------------------------------------------------------


def generate_opaque_token() -> str:
    """Return 32 random bytes as 64 hex characters (verification, invitations)."""
    return secrets.token_hex(32)


def token_preview(token: str) -> str:
    """First 8 characters, for log lines. Full tokens are never logged."""
    return f"{token[:8]}..." if token else "<empty>"


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_refresh_cookie(response, token: str, settings: Settings | None = None) -> None:
    """Write the refresh token as an httpOnly, same-site strict cookie.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="strict": never sent on cross-site requests.
    secure: only sent over HTTPS when SECURE_COOKIES=true (set in production).
    max_age: matches the refresh token lifetime (7 days by default).
    """
    cfg = settings or get_settings()
    response.set_cookie(
        REFRESH_COOKIE_NAME,
        value=token,
        httponly=True,
        samesite="strict",
        secure=cfg.secure_cookies,
        max_age=cfg.refresh_ttl_seconds,
    )


def clear_refresh_cookie(response) -> None:
    response.delete_cookie(REFRESH_COOKIE_NAME)
