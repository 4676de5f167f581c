"""Invitation batches: address checks, invite codes and the invite email."""

from __future__ import annotations

import asyncio
import html
import logging
import re
import uuid
from dataclasses import dataclass
from typing import Any, Iterable
from urllib.parse import quote

from .errors import NotFound, ValidationError
from .events import require_owner
from .gateway import StoreGateway
from .mailer import Mailer, OutgoingEmail, SendResult, send_all
from .utils import format_event_schedule

logger = logging.getLogger("uvicorn.error")

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def parse_email_list(raw: str | Iterable[str]) -> list[str]:
    """Split comma separated input into trimmed, de-duplicated addresses."""
    items = raw.split(",") if isinstance(raw, str) else list(raw)
    emails: list[str] = []
    seen: set[str] = set()
    for item in items:
        email = (item or "").strip()
        if not email or email.lower() in seen:
            continue
        seen.add(email.lower())
        emails.append(email)
    return emails


def validate_emails(raw: str | Iterable[str], *, limit: int | None = None) -> list[str]:
    emails = parse_email_list(raw)
    if not emails:
        raise ValidationError(
            "Please enter at least one email address",
            errors=[{"field": "emails", "message": "Required"}],
        )
    invalid = [email for email in emails if not EMAIL_PATTERN.match(email)]
    if invalid:
        raise ValidationError(
            f"Invalid email format: {', '.join(invalid)}",
            errors=[{"field": "emails", "message": f"Invalid email: {email}"} for email in invalid],
        )
    if limit is not None and len(emails) > limit:
        raise ValidationError(
            f"Too many invitations at once (limit {limit})",
            errors=[{"field": "emails", "message": "Too many addresses"}],
        )
    return emails


def create_invitations(
    gateway: StoreGateway,
    event_id: str,
    raw_emails: str | Iterable[str],
    *,
    limit: int | None = None,
) -> list[dict[str, Any]]:
    """Persist one invitation per address as a single batch.

    Every address is checked first; one bad address rejects the whole batch.
    """
    emails = validate_emails(raw_emails, limit=limit)
    require_owner(gateway, event_id, action="invite guests to this event")
    rows = gateway.insert(
        "invitations",
        [
            {"event_id": event_id, "email": email, "invite_code": str(uuid.uuid4())}
            for email in emails
        ],
    )
    logger.info("Created %d invitations for event %s", len(rows), event_id)
    return rows


def invite_url(public_url: str, event_id: str, invite_code: str) -> str:
    return f"{public_url.rstrip('/')}/e/{quote(event_id)}?code={quote(invite_code)}"


def render_invite_email(event: dict[str, Any], url: str) -> tuple[str, str]:
    title = event["title"]
    schedule = format_event_schedule(event["date"], event["start_time"], event.get("end_time"))
    body = (
        f"<h1>You're invited to {html.escape(title)}!</h1>"
        f"<p>{html.escape(event.get('description') or '')}</p>"
        f"<p><strong>When:</strong> {html.escape(schedule)}</p>"
        f"<p><strong>Where:</strong> {html.escape(event.get('location') or '')}</p>"
        f'<p><a href="{html.escape(url, quote=True)}">View event &amp; RSVP</a></p>'
    )
    return f"You're invited to {title}", body


async def send_invitations(
    mailer: Mailer,
    event: dict[str, Any],
    invitations: list[dict[str, Any]],
    *,
    public_url: str,
) -> list[SendResult]:
    messages = []
    for invitation in invitations:
        url = invite_url(public_url, event["id"], invitation["invite_code"])
        subject, body = render_invite_email(event, url)
        messages.append(OutgoingEmail(to=invitation["email"], subject=subject, html=body))
    return await send_all(mailer, messages)


@dataclass(frozen=True)
class InviteOutcome:
    invitations: list[dict[str, Any]]
    results: list[SendResult]

    @property
    def sent(self) -> int:
        return sum(1 for result in self.results if result.ok)

    @property
    def failed(self) -> list[str]:
        return [result.to for result in self.results if not result.ok]


async def invite_guests(
    gateway: StoreGateway,
    mailer: Mailer,
    event_id: str,
    raw_emails: str | Iterable[str],
    *,
    public_url: str,
    limit: int | None = None,
) -> InviteOutcome:
    invitations = await asyncio.to_thread(
        create_invitations, gateway, event_id, raw_emails, limit=limit
    )
    event = await asyncio.to_thread(gateway.select_one, "events", id=event_id)
    if event is None:
        raise NotFound("Event not found")
    results = await send_invitations(mailer, event, invitations, public_url=public_url)
    return InviteOutcome(invitations=invitations, results=results)
