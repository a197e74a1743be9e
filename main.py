#!/usr/bin/env python3
"""
TenantAuth -- administrative command line.

Operates directly on the account store configured by DATABASE_URL, for the
jobs an operator does before any admin account can log in.

Usage:
  python main.py approve alice@example.com
  python main.py tenant-status acme-co SUSPENDED
  python main.py invite --tenant acme-co --email bob@example.com --role admin

Environment variables:
  DATABASE_URL   SQLAlchemy URL of the store (default: sqlite file next to this script)
  DEBUG          Set to true to run without JWT_SECRET / JWT_REFRESH_SECRET configured
"""

import argparse
import sys
from datetime import datetime, timedelta, timezone
from typing import Optional

from auth.models import AccountStatus, Invitation, Role, TenantStatus
from auth.store import AccountStore
from auth.tokens import generate_opaque_token
from core.config import get_settings


def _approve(store: AccountStore, args: argparse.Namespace) -> int:
    account = store.get_account_by_email(args.email)
    if account is None:
        print(f"  [!] No account with email '{args.email}'.")
        return 1
    if AccountStatus(account.status) is not AccountStatus.PENDING:
        print(f"  [!] Account is not pending (status: {AccountStatus(account.status).value}).")
        return 1
    store.update_account(account.id, status=AccountStatus.ACTIVE)
    print(f"Approved {account.email}.")
    return 0


def _tenant_status(store: AccountStore, args: argparse.Namespace) -> int:
    tenant = store.get_tenant_by_slug(args.slug)
    if tenant is None:
        print(f"  [!] No tenant with slug '{args.slug}'.")
        return 1
    store.set_tenant_status(tenant.id, TenantStatus(args.status))
    print(f"Tenant {tenant.slug}: {TenantStatus(tenant.status).value} -> {args.status}")
    return 0


def _invite(store: AccountStore, args: argparse.Namespace) -> int:
    tenant = store.get_tenant_by_slug(args.tenant)
    if tenant is None:
        print(f"  [!] No tenant with slug '{args.tenant}'.")
        return 1
    if store.get_account_by_email(args.email) is not None:
        print(f"  [!] An account with email '{args.email}' already exists.")
        return 1

    expires_at = datetime.now(timezone.utc) + timedelta(days=get_settings().invitation_ttl_days)
    invitation = store.create_invitation(
        Invitation(
            email=args.email,
            tenant_id=tenant.id,
            role=Role(args.role),
            token=generate_opaque_token(),
            expires_at=expires_at.isoformat(),
        )
    )
    print(f"Invited {invitation.email} to {tenant.slug} as {args.role}.")
    print(f"Token: {invitation.token}")
    print(f"Link:  {get_settings().frontend_url}/accept-invitation?token={invitation.token}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tenantauth",
        description="Administrative tasks for the TenantAuth account store.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py approve alice@example.com
  python main.py tenant-status acme-co ACTIVE
  python main.py invite --tenant acme-co --email bob@example.com --role manager
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    approve = sub.add_parser("approve", help="Move a PENDING account to ACTIVE")
    approve.add_argument("email", metavar="EMAIL")
    approve.set_defaults(handler=_approve)

    status = sub.add_parser("tenant-status", help="Set a tenant's status")
    status.add_argument("slug", metavar="SLUG")
    status.add_argument("status", choices=[s.value for s in TenantStatus], metavar="STATUS")
    status.set_defaults(handler=_tenant_status)

    invite = sub.add_parser("invite", help="Create an invitation and print its token")
    invite.add_argument("--tenant", required=True, metavar="SLUG")
    invite.add_argument("--email", required=True, metavar="EMAIL")
    invite.add_argument(
        "--role",
        choices=[r.value for r in Role if r is not Role.owner],
        default=Role.employee.value,
        metavar="ROLE",
        help="admin, manager or employee (default: employee)",
    )
    invite.set_defaults(handler=_invite)
    return parser


def main(argv: Optional[list[str]] = None, store: Optional[AccountStore] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "handler", None):
        parser.print_help()
        return 1

    owned = store is None
    store = store or AccountStore()
    try:
        return args.handler(store, args)
    finally:
        if owned:
            store.close()


if __name__ == "__main__":
    sys.exit(main())
