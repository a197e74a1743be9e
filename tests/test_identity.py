"""Flow tests for auth/identity.py -- external provider logins.

Covers:
- A profile without an email is an error and creates nothing
- An unverified GitHub address never matches an existing account
- New people get a TRIAL tenant and a PENDING, verified owner account
- OAUTH_AUTO_APPROVE creates the account ACTIVE and logs it in
- Existing accounts are linked once and pass through the status gate
"""

import asyncio

import httpx
import pytest

from auth import status_gate
from auth.identity import ERROR, PENDING, SUCCESS, IdentityLinker
from auth.models import AccountStatus, ExternalProfile, Role, TenantStatus
from auth.oauth import get_external_profile
from auth.sessions import SessionManager
from auth.store import AccountStore
from conftest import count_accounts, linked_identities
from core.config import get_settings


def _profile(email: str | None = "ada@example.com", subject: str = "gh-1", provider: str = "github") -> ExternalProfile:
    return ExternalProfile(provider=provider, subject=subject, email=email, first_name="Ada", last_name="Lovelace")


@pytest.fixture
def linker(sessions) -> IdentityLinker:
    return IdentityLinker(sessions)


class TestMissingEmail:
    def test_error_and_no_account_created(self, linker, store: AccountStore) -> None:
        result = linker.handle_external_login(_profile(email=None))

        assert result.status == ERROR
        assert result.tokens is None
        assert "make your email public" in result.error
        assert "different login method" in result.error
        assert "GitHub" in result.error
        assert count_accounts(store) == 0


class _GitHubEmailsOnly:
    """Minimal GitHub client: no public email, only the /user/emails list."""

    def __init__(self, emails: list[dict]) -> None:
        self.responses = {"user": {"id": 66, "login": "mallory", "email": None}, "user/emails": emails}

    async def get(self, path: str, token=None) -> httpx.Response:
        request = httpx.Request("GET", f"https://api.github.com/{path}")
        return httpx.Response(200, json=self.responses[path], request=request)


class TestUnverifiedProviderEmail:
    def test_unverified_github_email_does_not_link_existing_account(
        self, linker, store: AccountStore, events, make_account
    ) -> None:
        _, victim = make_account(email="victim@example.com")
        client = _GitHubEmailsOnly([{"email": "victim@example.com", "primary": False, "verified": False}])

        profile = asyncio.run(get_external_profile(client, "github", {"access_token": "t"}))
        result = linker.handle_external_login(profile)

        assert result.status == ERROR
        assert result.tokens is None
        assert result.account_id is None
        assert linked_identities(store, victim.id) == []
        assert store.get_account_by_id(victim.id).refresh_token is None
        assert "oauth.linked" not in events.names()

    def test_verified_github_email_links(self, linker, store: AccountStore, make_account) -> None:
        _, account = make_account(email="ada@example.com")
        client = _GitHubEmailsOnly([{"email": "ada@example.com", "primary": True, "verified": True}])

        profile = asyncio.run(get_external_profile(client, "github", {}))

        assert linker.handle_external_login(profile).status == SUCCESS
        assert linked_identities(store, account.id) == [("github", "66")]


class TestNewAccount:
    def test_creates_pending_verified_owner(self, linker, store: AccountStore) -> None:
        result = linker.handle_external_login(_profile())

        assert result.status == PENDING
        assert result.tokens is None
        account = store.get_account_by_email("ada@example.com")
        assert account.status is AccountStatus.PENDING
        assert account.email_verified is True
        assert account.role is Role.owner
        assert account.hashed_password is None
        tenant = store.get_tenant(account.tenant_id)
        assert tenant.name == "Ada's organization"
        assert tenant.slug == "adas-organization"
        assert tenant.status is TenantStatus.TRIAL
        assert store.get_account_by_identity("github", "gh-1").id == account.id

    def test_second_person_with_same_first_name_gets_suffixed_slug(self, linker, store: AccountStore) -> None:
        linker.handle_external_login(_profile())
        linker.handle_external_login(_profile(email="ada2@example.com", subject="gh-2"))
        account = store.get_account_by_email("ada2@example.com")
        assert store.get_tenant(account.tenant_id).slug == "adas-organization-1"

    def test_auto_approve_logs_in(self, store: AccountStore, hasher, events, mail) -> None:
        settings = get_settings().model_copy(update={"oauth_auto_approve": True})
        sessions = SessionManager(store, hasher=hasher, events=events, mail=mail, settings=settings)

        result = IdentityLinker(sessions).handle_external_login(_profile())

        assert result.status == SUCCESS
        account = store.get_account_by_email("ada@example.com")
        assert account.status is AccountStatus.ACTIVE
        assert account.refresh_token == result.tokens.refresh_token
        assert sessions.codec.verify_access(result.tokens.access_token).sub == account.id


class TestExistingAccount:
    def test_links_by_email_and_succeeds(self, linker, store: AccountStore, events, make_account) -> None:
        _, account = make_account(email="ada@example.com")

        result = linker.handle_external_login(_profile(email="ADA@example.com"))

        assert result.status == SUCCESS
        assert result.account_id == account.id
        assert [provider for provider, _ in linked_identities(store, account.id)] == ["github"]
        assert "oauth.linked" in events.names()

    def test_second_login_does_not_relink(self, linker, store: AccountStore, events, make_account) -> None:
        _, account = make_account(email="ada@example.com")
        linker.handle_external_login(_profile())
        linker.handle_external_login(_profile())
        assert len(linked_identities(store, account.id)) == 1
        assert events.names().count("oauth.linked") == 1

    def test_found_by_identity_after_email_change(self, linker, store: AccountStore, make_account) -> None:
        _, account = make_account(email="ada@example.com")
        store.link_identity(account.id, "google", "g-1")
        result = linker.handle_external_login(_profile(email="ada@new-domain.example", subject="g-1", provider="google"))
        assert result.status == SUCCESS
        assert result.account_id == account.id

    def test_pending_account_is_pending(self, linker, make_account) -> None:
        make_account(email="ada@example.com", status=AccountStatus.PENDING)
        assert linker.handle_external_login(_profile()).status == PENDING

    def test_suspended_tenant_is_error(self, linker, make_account) -> None:
        make_account(email="ada@example.com", tenant_status=TenantStatus.SUSPENDED)
        result = linker.handle_external_login(_profile())
        assert result.status == ERROR
        assert result.error == status_gate.TENANT_SUSPENDED
        assert result.tokens is None
