"""
auth/events.py -- Structured auth events and outbound mail, behind narrow interfaces.

Flows never talk to a logger or an SMTP server directly for these concerns.
They call an EventSink (audit trail of logins, refreshes, approvals) and a
MailSink (verification and invitation mail). The defaults write to the
standard logging tree; deployments swap in real transports without touching
the flows.

Security: event fields must never contain passwords or full tokens. Use
auth.tokens.token_preview() when a token needs to be identifiable in logs.
"""

from __future__ import annotations

import logging
from typing import Protocol

from auth.models import Account, Invitation, Tenant

_event_logger = logging.getLogger("tenantauth.events")
_mail_logger = logging.getLogger("tenantauth.mail")


class EventSink(Protocol):
    def emit(self, event: str, **fields) -> None: ...


class MailSink(Protocol):
    def send_verification(self, account: Account, url: str) -> None: ...

    def send_invitation(self, invitation: Invitation, tenant: Tenant, url: str) -> None: ...


class LoggingEventSink:
    """Writes one log line per event. Denials and failures are warnings."""

    def emit(self, event: str, **fields) -> None:
        level = logging.WARNING if event.endswith((".denied", ".failed", ".reuse_detected")) else logging.INFO
        _event_logger.log(level, "%s %s", event, fields)


class LoggingMailSink:
    """Development mail transport: logs the recipient and link at DEBUG instead of sending."""

    def send_verification(self, account: Account, url: str) -> None:
        _mail_logger.debug("verification mail to=%s url=%s", account.email, url)

    def send_invitation(self, invitation: Invitation, tenant: Tenant, url: str) -> None:
        _mail_logger.debug("invitation mail to=%s tenant=%s url=%s", invitation.email, tenant.slug, url)
