"""
auth/policy.py -- Who may change whose role or status.

A single function so the admin route and invitation creation apply the same
rules. Returns a GateDecision rather than raising; the caller maps a denial
to Forbidden.

Rules:
  - Changing role or status requires an owner or admin actor.
  - Nobody raises their own role.
  - Only an owner grants the owner role or touches another owner.
  - Nobody changes their own status (no self-suspension, no self-approval).
"""

from __future__ import annotations

from auth.models import AccountStatus, Role
from auth.status_gate import ALLOW, GateDecision, deny

_MANAGERS = {Role.owner, Role.admin}


def can_manage_accounts(role: Role | str) -> bool:
    return Role(role) in _MANAGERS


def authorize_account_change(
    actor_role: Role | str,
    target_role: Role | str,
    actor_is_target: bool,
    new_role: Role | str | None = None,
    new_status: AccountStatus | str | None = None,
) -> GateDecision:
    actor = Role(actor_role)
    target = Role(target_role)

    if new_role is None and new_status is None:
        return ALLOW
    if not can_manage_accounts(actor):
        return deny("Only owners and administrators can change account roles or status.")

    if new_role is not None:
        role = Role(new_role)
        if actor_is_target and role.rank < actor.rank:
            return deny("You cannot raise your own role.")
        if role is Role.owner and actor is not Role.owner:
            return deny("Only an owner can grant the owner role.")

    if target is Role.owner and actor is not Role.owner:
        return deny("Only an owner can change another owner's account.")

    if new_status is not None and actor_is_target:
        return deny("You cannot change your own account status.")

    return ALLOW
