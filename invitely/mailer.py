"""Outgoing email for invitations."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Iterable

import httpx

from .config import Settings

logger = logging.getLogger("uvicorn.error")

RESEND_API_URL = "https://api.resend.com/emails"


@dataclass(frozen=True)
class OutgoingEmail:
    to: str
    subject: str
    html: str


@dataclass(frozen=True)
class SendResult:
    to: str
    ok: bool
    message_id: str | None = None
    error: str | None = None

    def as_dict(self) -> dict[str, object]:
        return {"to": self.to, "ok": self.ok, "message_id": self.message_id, "error": self.error}


class Mailer(ABC):
    @abstractmethod
    async def send(self, to: str, subject: str, html: str) -> str:
        """Send one message and return the provider's message id."""


class ResendMailer(Mailer):
    def __init__(
        self,
        api_key: str,
        sender: str,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._api_key = api_key
        self.sender = sender
        self._transport = transport
        self._timeout = timeout

    async def send(self, to: str, subject: str, html: str) -> str:
        async with httpx.AsyncClient(transport=self._transport, timeout=self._timeout) as client:
            response = await client.post(
                RESEND_API_URL,
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Content-Type": "application/json",
                },
                json={"from": self.sender, "to": [to], "subject": subject, "html": html},
            )
            response.raise_for_status()
            return response.json().get("id", "")


@dataclass
class LoggingMailer(Mailer):
    """Keeps messages in ``outbox`` instead of sending them."""

    outbox: list[OutgoingEmail] = field(default_factory=list)

    async def send(self, to: str, subject: str, html: str) -> str:
        self.outbox.append(OutgoingEmail(to=to, subject=subject, html=html))
        logger.info("Email to %s not sent (no provider configured): %s", to, subject)
        return f"local-{len(self.outbox)}"


def get_mailer(settings: Settings) -> Mailer:
    if settings.email_enabled:
        return ResendMailer(settings.resend_api_key, settings.email_from)
    return LoggingMailer()


async def send_all(mailer: Mailer, messages: Iterable[OutgoingEmail]) -> list[SendResult]:
    """Send every message concurrently and report each outcome.

    One failed recipient never prevents the others from being attempted.
    """
    messages = list(messages)
    outcomes = await asyncio.gather(
        *(mailer.send(message.to, message.subject, message.html) for message in messages),
        return_exceptions=True,
    )
    results = []
    for message, outcome in zip(messages, outcomes):
        if isinstance(outcome, BaseException):
            logger.warning("Failed to send email to %s: %s", message.to, outcome)
            results.append(SendResult(to=message.to, ok=False, error=str(outcome) or type(outcome).__name__))
        else:
            results.append(SendResult(to=message.to, ok=True, message_id=outcome))
    return results
