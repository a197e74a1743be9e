"""
auth/oauth.py -- Authlib provider registry and profile normalization.

build_oauth_registry() registers only the providers whose client ID and
secret are both configured; get_enabled_providers() reports the same set to
the login page. The API lifespan builds one registry per app.

Every provider response is normalized here into an ExternalProfile before it
reaches IdentityLinker, which therefore never sees provider-specific shapes.

Security notes:
  [H1] Only provider-verified addresses are used. Google: the id_token must
       say email_verified. GitHub: /user/emails entries must carry
       verified=true. An unverified address is treated as no address at all,
       so it can never be linked to an existing account.

  GitHub hides the email unless the user made it public, so the scope
  includes user:email and /user/emails is queried. Preference: the primary
  verified address, then any other verified one.

  OAuth state parameter (CSRF protection) is handled by authlib automatically
  via Starlette SessionMiddleware. The session stores the state between the
  authorization redirect and the callback.

Supported providers:
  github -- Authorization code flow; static endpoints.
  google -- Authorization code flow; OIDC discovery.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging

from authlib.integrations.starlette_client import OAuth

from auth.models import ExternalProfile
from core.config import Settings, get_settings

logger = logging.getLogger("tenantauth.auth.oauth")

PROVIDER_LABELS = {"google": "Google", "github": "GitHub"}


# ---------------------------------------------------------------------------
# Authlib OAuth registry
# ---------------------------------------------------------------------------


def build_oauth_registry(settings: Settings | None = None) -> OAuth:
    cfg = settings or get_settings()
    oauth = OAuth()

    # GitHub -- static endpoints (no OIDC discovery document)
    if cfg.github_client_id and cfg.github_client_secret:
        oauth.register(
            name="github",
            client_id=cfg.github_client_id,
            client_secret=cfg.github_client_secret,
            access_token_url="https://github.com/login/oauth/access_token",  # noqa: S106 -- URL, not a password
            authorize_url="https://github.com/login/oauth/authorize",
            api_base_url="https://api.github.com/",
            client_kwargs={"scope": "read:user user:email"},
        )
        logger.info("GitHub OAuth provider registered")

    # Google -- OIDC discovery
    if cfg.google_client_id and cfg.google_client_secret:
        oauth.register(
            name="google",
            client_id=cfg.google_client_id,
            client_secret=cfg.google_client_secret,
            server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
            client_kwargs={"scope": "openid email profile"},
        )
        logger.info("Google OAuth provider registered")

    return oauth


def get_enabled_providers(settings: Settings | None = None) -> list[dict]:
    """Return {"name", "label"} for every provider with credentials configured."""
    cfg = settings or get_settings()
    providers: list[dict] = []
    if cfg.google_client_id and cfg.google_client_secret:
        providers.append({"name": "google", "label": PROVIDER_LABELS["google"]})
    if cfg.github_client_id and cfg.github_client_secret:
        providers.append({"name": "github", "label": PROVIDER_LABELS["github"]})
    return providers


# ---------------------------------------------------------------------------
# Name handling
# ---------------------------------------------------------------------------


def split_display_name(display_name: str | None, username: str | None, fallback_first: str) -> tuple[str, str]:
    """Split a single display name into (first, last).

    "John Paul  Doe" -> ("John", "Paul Doe"); "John" -> ("John", "").
    No display name: (username, "User"). Nothing at all: (fallback_first, "User").
    """
    parts = (display_name or "").split()
    if parts:
        return parts[0], " ".join(parts[1:])
    if username and username.strip():
        return username.strip(), "User"
    return fallback_first, "User"


def pick_github_email(emails: list[dict]) -> str | None:
    """Return the primary verified address, else any verified one.

    [H1] Unverified entries are never returned, primary or not. A list with
    no verified address yields None, which the linker treats as "no email".
    """
    verified = [e for e in emails or [] if e.get("email") and e.get("verified") is True]
    for entry in verified:
        if entry.get("primary"):
            return entry["email"]
    return verified[0]["email"] if verified else None


# ---------------------------------------------------------------------------
# Profile extraction -- provider-specific normalization
# ---------------------------------------------------------------------------


async def get_external_profile(client, provider: str, token: dict) -> ExternalProfile:
    """Fetch and normalize the signed-in user's profile after code exchange.

    Args:
        client:   The authlib OAuth client for this provider.
        provider: "github" or "google".
        token:    The token dict returned by authlib after code exchange.

    Raises:
        ValueError: unknown provider, or the response lacks a subject id.
        httpx.HTTPStatusError: a provider API call failed.
    """
    if provider == "github":
        return await _get_github_profile(client, token)
    elif provider == "google":
        return await _get_google_profile(client, token)
    else:
        raise ValueError(f"Unknown OAuth provider: {provider!r}")


async def _get_github_profile(client, token: dict) -> ExternalProfile:
    """GitHub needs two API calls: /user for the numeric id and name, /user/emails for the address."""
    resp = await client.get("user", token=token)
    resp.raise_for_status()
    profile = resp.json()
    if profile.get("id") is None:
        raise ValueError("GitHub OAuth: missing user id in profile")

    # GitHub only lets a verified address be the public profile email.
    email = profile.get("email")
    if not email:
        emails_resp = await client.get("user/emails", token=token)
        emails_resp.raise_for_status()
        listed = emails_resp.json()
        email = pick_github_email(listed)
        if email is None and listed:
            logger.warning("GitHub OAuth: no verified email for user id %s", profile["id"])

    first, last = split_display_name(profile.get("name"), profile.get("login"), PROVIDER_LABELS["github"])
    return ExternalProfile(
        provider="github",
        subject=str(profile["id"]),
        email=email.strip().lower() if email else None,
        first_name=first,
        last_name=last,
        avatar_url=profile.get("avatar_url"),
    )


async def _get_google_profile(client, token: dict) -> ExternalProfile:
    """Google returns OIDC userinfo claims; authlib parses them from the id_token."""
    userinfo = token.get("userinfo")
    if not userinfo:
        userinfo = await client.userinfo(token=token)
    subject = userinfo.get("sub")
    if not subject:
        raise ValueError("Google OAuth: missing sub claim in userinfo")

    email = userinfo.get("email") if userinfo.get("email_verified", False) else None
    if userinfo.get("email") and email is None:
        logger.warning("Google OAuth: ignoring unverified email for subject %s", subject)

    return ExternalProfile(
        provider="google",
        subject=str(subject),
        email=email.strip().lower() if email else None,
        first_name=userinfo.get("given_name") or userinfo.get("name") or "",
        last_name=userinfo.get("family_name") or "",
        avatar_url=userinfo.get("picture"),
    )
