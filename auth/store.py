"""
auth/store.py -- SQLAlchemy Core persistence layer for tenants and accounts.

Pattern: Repository + Data Mapper.
AccountStore is the repository; the _row_to_* functions are the mappers.
Flow and route code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Refresh rotation is a compare-and-swap: swap_refresh_token() issues
  UPDATE accounts SET refresh_token = :new
   WHERE id = :id AND refresh_token = :expected
  and reports whether a row changed. Two concurrent refreshes presenting the
  same token cannot both win, because the second UPDATE no longer matches.

  Invitation consumption uses the same shape (WHERE consumed_at IS NULL)
  inside the transaction that inserts the new account, so an invitation can
  never produce two accounts.

  UNIQUE(provider, subject) on account_identities is a real SQL constraint
  here: both columns are NOT NULL, so SQLite's NULL-distinct rule does not
  apply.

Multi-row writes (tenant + owner account, invitation + account) run inside
engine.begin() so a failure leaves nothing behind.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import (
    Account,
    AccountStatus,
    Invitation,
    Role,
    Tenant,
    TenantStatus,
)
from core.config import get_settings

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_tenants = Table(
    "tenants",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String(255), nullable=False),
    Column("slug", String(255), nullable=False, unique=True),
    Column("status", String(20), nullable=False, server_default="TRIAL"),
    Column("plan", String(50), nullable=False, server_default="free"),
    Column("created_at", String(32), nullable=False),
)

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("tenant_id", String(36), ForeignKey("tenants.id"), nullable=False),
    Column("email", String(255), nullable=False, unique=True),  # always lowercase
    Column("hashed_password", Text),  # NULL for provider-only accounts
    Column("first_name", String(100), nullable=False, server_default=""),
    Column("last_name", String(100), nullable=False, server_default=""),
    Column("role", String(20), nullable=False, server_default="employee"),
    Column("status", String(20), nullable=False, server_default="PENDING"),
    Column("email_verified", Integer, nullable=False, server_default="0"),
    Column("refresh_token", Text),
    Column("verification_token", String(64), unique=True),
    Column("verification_token_expiry", String(32)),
    Column("verified_token", String(64)),  # the token that completed verification
    Column("last_login_at", String(32)),
    Column("created_at", String(32), nullable=False),
)

_invitations = Table(
    "invitations",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("token", String(64), nullable=False, unique=True),
    Column("email", String(255), nullable=False),
    Column("tenant_id", String(36), ForeignKey("tenants.id"), nullable=False),
    Column("role", String(20), nullable=False),
    Column("invited_by", String(36)),
    Column("expires_at", String(32), nullable=False),
    Column("consumed_at", String(32)),
    Column("cancelled_at", String(32)),
    Column("created_at", String(32), nullable=False),
)

_identities = Table(
    "account_identities",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("account_id", String(36), ForeignKey("accounts.id"), nullable=False),
    Column("provider", String(30), nullable=False),  # "google", "github"
    Column("subject", Text, nullable=False),  # provider's stable user ID
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("provider", "subject", name="uq_identity_provider_subject"),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block behind the rotation write.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_id() -> str:
    return str(uuid.uuid4())


def _db_value(value):
    """Convert enums and bools into their column representation."""
    if isinstance(value, (Role, AccountStatus, TenantStatus)):
        return value.value
    if isinstance(value, bool):
        return 1 if value else 0
    return value


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for tenants, accounts, invitations and provider identity links.

    Usage:
        store = AccountStore("sqlite:///tenantauth.db")
        tenant, owner = store.create_tenant_with_account(Tenant(...), Account(...))
        account = store.get_account_by_email("a@example.com")
        store.close()
    """

    # Columns update_account() may touch. Anything else is a programming error.
    _ACCOUNT_FIELDS: set = {
        "hashed_password",
        "first_name",
        "last_name",
        "role",
        "status",
        "email_verified",
        "refresh_token",
        "verification_token",
        "verification_token_expiry",
        "last_login_at",
    }

    def __init__(self, db_url: str | None = None) -> None:
        db_url = db_url or get_settings().database_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Tenants
    # ------------------------------------------------------------------

    def get_tenant(self, tenant_id: str) -> Tenant | None:
        with self.engine.connect() as conn:
            row = conn.execute(_tenants.select().where(_tenants.c.id == tenant_id)).fetchone()
        return _row_to_tenant(row) if row is not None else None

    def get_tenant_by_slug(self, slug: str) -> Tenant | None:
        with self.engine.connect() as conn:
            row = conn.execute(_tenants.select().where(_tenants.c.slug == slug)).fetchone()
        return _row_to_tenant(row) if row is not None else None

    def unique_slug(self, base: str) -> str:
        """Return base, or base-1, base-2, ... -- the first one not yet taken.

        One query fetches every slug sharing the prefix; the suffix is picked
        in Python. A concurrent insert of the same slug still fails on the
        UNIQUE constraint.
        """
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(_tenants.c.slug).where((_tenants.c.slug == base) | (_tenants.c.slug.like(f"{base}-%")))
            ).fetchall()
        taken = {r.slug for r in rows}
        if base not in taken:
            return base
        counter = 1
        while f"{base}-{counter}" in taken:
            counter += 1
        return f"{base}-{counter}"

    def set_tenant_status(self, tenant_id: str, status: TenantStatus) -> bool:
        """Returns True if a row was updated, False if tenant_id was not found."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _tenants.update().where(_tenants.c.id == tenant_id).values(status=TenantStatus(status).value)
            )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def create_account(self, account: Account) -> Account:
        """Insert an account and return it with id and created_at assigned.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        Flows check for the email first and treat IntegrityError as the
        signal that a concurrent request won the race.
        """
        _prepare_account(account)
        with self.engine.connect() as conn:
            conn.execute(_accounts.insert().values(**_account_values(account)))
            conn.commit()
        return account

    def create_tenant_with_account(
        self,
        tenant: Tenant,
        account: Account,
        identity: tuple[str, str] | None = None,
    ) -> tuple[Tenant, Account]:
        """Insert a tenant, its first account and (optionally) a provider link atomically.

        identity is a (provider, subject) pair for accounts created by an
        OAuth login. Either all rows are written or none are.
        """
        tenant.id = tenant.id or _new_id()
        tenant.created_at = _now_iso()
        account.tenant_id = tenant.id
        _prepare_account(account)
        with self.engine.begin() as conn:
            conn.execute(_tenants.insert().values(**_tenant_values(tenant)))
            conn.execute(_accounts.insert().values(**_account_values(account)))
            if identity is not None:
                provider, subject = identity
                conn.execute(
                    _identities.insert().values(
                        account_id=account.id, provider=provider, subject=subject, created_at=_now_iso()
                    )
                )
        return tenant, account

    def get_account_by_id(self, account_id: str) -> Account | None:
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.id == account_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_account_by_email(self, email: str) -> Account | None:
        """Look up an account by email. The comparison is case-insensitive."""
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.email == email.strip().lower())).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_account_by_verification_token(self, token: str) -> Account | None:
        """Find the account holding this token, live or already used for verification.

        Matching the used token lets a repeated verify call answer "already
        verified" although the live token was cleared.
        """
        with self.engine.connect() as conn:
            row = conn.execute(
                _accounts.select().where(
                    (_accounts.c.verification_token == token) | (_accounts.c.verified_token == token)
                )
            ).fetchone()
        return _row_to_account(row) if row is not None else None

    def mark_email_verified(self, account_id: str, token: str) -> bool:
        """Set email_verified and clear the live token and expiry in one UPDATE."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _accounts.update()
                .where(_accounts.c.id == account_id)
                .values(
                    email_verified=1,
                    verification_token=None,
                    verification_token_expiry=None,
                    verified_token=token,
                )
            )
            conn.commit()
        return result.rowcount > 0

    def update_account(self, account_id: str, **fields) -> bool:
        """Update mutable fields on an existing account in a single statement.

        Accepted fields: see _ACCOUNT_FIELDS. Enums and bools are converted
        to their column values. Unknown keys raise ValueError.

        Returns True if a row was updated, False if account_id was not found.
        """
        unknown = set(fields) - self._ACCOUNT_FIELDS
        if unknown:
            raise ValueError(f"Unknown account fields: {unknown!r}")
        if not fields:
            return False
        values = {k: _db_value(v) for k, v in fields.items()}
        with self.engine.connect() as conn:
            result = conn.execute(_accounts.update().where(_accounts.c.id == account_id).values(**values))
            conn.commit()
        return result.rowcount > 0

    def set_refresh_token(self, account_id: str, token: str, touch_login: bool = False) -> bool:
        """Unconditionally store a new refresh token (login, OAuth, session reissue).

        touch_login stamps last_login_at in the same UPDATE, so a login never
        persists one without the other.
        """
        values: dict = {"refresh_token": token}
        if touch_login:
            values["last_login_at"] = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_accounts.update().where(_accounts.c.id == account_id).values(**values))
            conn.commit()
        return result.rowcount > 0

    def swap_refresh_token(self, account_id: str, expected: str, new: str) -> bool:
        """Replace the stored refresh token only if it still equals expected.

        Returns False when another request already rotated it (or logout
        cleared it). Callers treat False as an invalid refresh token.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _accounts.update()
                .where((_accounts.c.id == account_id) & (_accounts.c.refresh_token == expected))
                .values(refresh_token=new)
            )
            conn.commit()
        return result.rowcount == 1

    def clear_refresh_token(self, account_id: str) -> bool:
        """Null the stored refresh token. Returns False if the account does not exist."""
        with self.engine.connect() as conn:
            result = conn.execute(_accounts.update().where(_accounts.c.id == account_id).values(refresh_token=None))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Invitations
    # ------------------------------------------------------------------

    def create_invitation(self, invitation: Invitation) -> Invitation:
        invitation.id = invitation.id or _new_id()
        invitation.email = invitation.email.strip().lower()
        invitation.created_at = _now_iso()
        with self.engine.connect() as conn:
            conn.execute(
                _invitations.insert().values(
                    id=invitation.id,
                    token=invitation.token,
                    email=invitation.email,
                    tenant_id=invitation.tenant_id,
                    role=Role(invitation.role).value,
                    invited_by=invitation.invited_by,
                    expires_at=invitation.expires_at,
                    consumed_at=None,
                    cancelled_at=None,
                    created_at=invitation.created_at,
                )
            )
            conn.commit()
        return invitation

    def get_invitation_by_token(self, token: str) -> Invitation | None:
        with self.engine.connect() as conn:
            row = conn.execute(_invitations.select().where(_invitations.c.token == token)).fetchone()
        return _row_to_invitation(row) if row is not None else None

    def get_invitation_by_id(self, invitation_id: str) -> Invitation | None:
        with self.engine.connect() as conn:
            row = conn.execute(_invitations.select().where(_invitations.c.id == invitation_id)).fetchone()
        return _row_to_invitation(row) if row is not None else None

    def list_invitations(self, tenant_id: str, email: str | None = None) -> list[Invitation]:
        """Return a tenant's invitations (newest first), optionally for one email."""
        query = _invitations.select().where(_invitations.c.tenant_id == tenant_id)
        if email is not None:
            query = query.where(_invitations.c.email == email.strip().lower())
        with self.engine.connect() as conn:
            rows = conn.execute(query.order_by(_invitations.c.created_at.desc())).fetchall()
        return [_row_to_invitation(r) for r in rows]

    def delete_invitation(self, invitation_id: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_invitations.delete().where(_invitations.c.id == invitation_id))
            conn.commit()
        return result.rowcount > 0

    def cancel_invitation(self, invitation_id: str) -> bool:
        """Mark an unconsumed, uncancelled invitation as cancelled.

        Returns False if it was already consumed or cancelled in the meantime.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _invitations.update()
                .where(
                    (_invitations.c.id == invitation_id)
                    & _invitations.c.consumed_at.is_(None)
                    & _invitations.c.cancelled_at.is_(None)
                )
                .values(cancelled_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def accept_invitation(self, invitation_id: str, account: Account) -> Account | None:
        """Consume an invitation and insert the invited account in one transaction.

        Returns None (and writes nothing) if the invitation was consumed or
        cancelled concurrently. Raises IntegrityError if the email is taken;
        the transaction is rolled back and the invitation stays live.
        """
        _prepare_account(account)
        with self.engine.begin() as conn:
            result = conn.execute(
                _invitations.update()
                .where(
                    (_invitations.c.id == invitation_id)
                    & _invitations.c.consumed_at.is_(None)
                    & _invitations.c.cancelled_at.is_(None)
                )
                .values(consumed_at=_now_iso())
            )
            if result.rowcount != 1:
                return None
            conn.execute(_accounts.insert().values(**_account_values(account)))
        return account

    # ------------------------------------------------------------------
    # Provider identities
    # ------------------------------------------------------------------

    def link_identity(self, account_id: str, provider: str, subject: str) -> bool:
        """Associate a provider identity with an account.

        Returns False if this (provider, subject) is already linked, to this
        or any other account. The first link wins: a concurrent insert of the
        same pair loses on the UNIQUE constraint and also returns False.
        """
        with self.engine.connect() as conn:
            existing = conn.execute(
                select(_identities.c.id).where(
                    (_identities.c.provider == provider) & (_identities.c.subject == subject)
                )
            ).fetchone()
            if existing is not None:
                return False
            try:
                conn.execute(
                    _identities.insert().values(
                        account_id=account_id, provider=provider, subject=subject, created_at=_now_iso()
                    )
                )
                conn.commit()
            except IntegrityError:
                conn.rollback()
                return False
        return True

    def get_account_by_identity(self, provider: str, subject: str) -> Account | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _accounts.select()
                .join(_identities, _identities.c.account_id == _accounts.c.id)
                .where((_identities.c.provider == provider) & (_identities.c.subject == subject))
            ).fetchone()
        return _row_to_account(row) if row is not None else None

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Value builders
# ---------------------------------------------------------------------------


def _prepare_account(account: Account) -> None:
    account.id = account.id or _new_id()
    account.email = account.email.strip().lower()
    account.created_at = _now_iso()


def _tenant_values(tenant: Tenant) -> dict:
    return {
        "id": tenant.id,
        "name": tenant.name,
        "slug": tenant.slug,
        "status": TenantStatus(tenant.status).value,
        "plan": tenant.plan,
        "created_at": tenant.created_at,
    }


def _account_values(account: Account) -> dict:
    return {
        "id": account.id,
        "tenant_id": account.tenant_id,
        "email": account.email,
        "hashed_password": account.hashed_password,
        "first_name": account.first_name,
        "last_name": account.last_name,
        "role": Role(account.role).value,
        "status": AccountStatus(account.status).value,
        "email_verified": 1 if account.email_verified else 0,
        "refresh_token": account.refresh_token,
        "verification_token": account.verification_token,
        "verification_token_expiry": account.verification_token_expiry,
        "last_login_at": account.last_login_at,
        "created_at": account.created_at,
    }


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_tenant(row) -> Tenant:
    return Tenant(
        id=row.id,
        name=row.name,
        slug=row.slug,
        status=TenantStatus(row.status),
        plan=row.plan,
        created_at=row.created_at,
    )


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        tenant_id=row.tenant_id,
        email=row.email,
        hashed_password=row.hashed_password,
        first_name=row.first_name,
        last_name=row.last_name,
        role=Role(row.role),
        status=AccountStatus(row.status),
        email_verified=bool(row.email_verified),
        refresh_token=row.refresh_token,
        verification_token=row.verification_token,
        verification_token_expiry=row.verification_token_expiry,
        last_login_at=row.last_login_at,
        created_at=row.created_at,
    )


def _row_to_invitation(row) -> Invitation:
    return Invitation(
        id=row.id,
        token=row.token,
        email=row.email,
        tenant_id=row.tenant_id,
        role=Role(row.role),
        invited_by=row.invited_by,
        expires_at=row.expires_at,
        consumed_at=row.consumed_at,
        cancelled_at=row.cancelled_at,
        created_at=row.created_at,
    )

