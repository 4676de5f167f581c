from __future__ import annotations

import json

import httpx
import pytest

from invitely.errors import AuthorizationError, NotAuthenticated, ValidationError
from invitely.gateway import Actor
from invitely.invitations import (
    create_invitations,
    invite_guests,
    invite_url,
    parse_email_list,
    render_invite_email,
    validate_emails,
)
from invitely.mailer import RESEND_API_URL, LoggingMailer, Mailer, ResendMailer, send_all, OutgoingEmail


class FlakyMailer(Mailer):
    """Fails for any address listed in ``failing``."""

    def __init__(self, failing: set[str]) -> None:
        self.failing = failing
        self.sent: list[str] = []

    async def send(self, to: str, subject: str, html: str) -> str:
        if to in self.failing:
            raise RuntimeError(f"mailbox unavailable: {to}")
        self.sent.append(to)
        return f"id-{to}"


def test_parse_email_list_trims_and_dedupes():
    raw = " a@example.com, ,B@example.com,b@EXAMPLE.com , a@example.com"
    assert parse_email_list(raw) == ["a@example.com", "B@example.com"]
    assert parse_email_list(["x@example.com", " x@example.com "]) == ["x@example.com"]


def test_validate_emails_messages():
    with pytest.raises(ValidationError, match="Please enter at least one email address"):
        validate_emails(" , ")
    with pytest.raises(ValidationError, match="Invalid email format: bad, also@bad"):
        validate_emails("ok@example.com, bad, also@bad")
    with pytest.raises(ValidationError, match="limit 2"):
        validate_emails("a@x.io, b@x.io, c@x.io", limit=2)


def test_one_bad_address_writes_nothing(owner, event):
    with pytest.raises(ValidationError):
        create_invitations(owner, event["id"], "good@example.com, nope")
    assert owner.select("invitations") == []


def test_create_invitations_batch(owner, event):
    rows = create_invitations(owner, event["id"], "a@example.com, b@example.com")
    assert [row["email"] for row in rows] == ["a@example.com", "b@example.com"]
    codes = {row["invite_code"] for row in rows}
    assert len(codes) == 2
    assert len(owner.select("invitations", event_id=event["id"])) == 2


def test_only_the_owner_can_invite(gateway, event):
    with pytest.raises(NotAuthenticated):
        create_invitations(gateway, event["id"], "a@example.com")
    with pytest.raises(AuthorizationError):
        create_invitations(gateway.for_actor(Actor(id="owner-2")), event["id"], "a@example.com")
    assert gateway.select("invitations") == []


def test_invite_url_and_email_body(event):
    url = invite_url("https://invitely.example/", event["id"], "code 1")
    assert url == f"https://invitely.example/e/{event['id']}?code=code%201"

    subject, body = render_invite_email({**event, "title": "Tea & <Cake>"}, url)
    assert subject == "You're invited to Tea & <Cake>"
    assert "Tea &amp; &lt;Cake&gt;" in body
    assert "7 PM - 9:30 PM" in body
    assert "code%201" in body


@pytest.mark.asyncio
async def test_invite_guests_reports_partial_failures(owner, event):
    mailer = FlakyMailer({"b@example.com"})

    outcome = await invite_guests(
        owner,
        mailer,
        event["id"],
        ["a@example.com", "b@example.com", "c@example.com"],
        public_url="https://invitely.example",
    )

    assert len(outcome.invitations) == 3
    assert outcome.sent == 2
    assert outcome.failed == ["b@example.com"]
    assert sorted(mailer.sent) == ["a@example.com", "c@example.com"]
    assert len(owner.select("invitations")) == 3


@pytest.mark.asyncio
async def test_logging_mailer_keeps_outbox(owner, event):
    mailer = LoggingMailer()
    outcome = await invite_guests(owner, mailer, event["id"], "a@example.com", public_url="http://localhost:8000")
    assert outcome.sent == 1
    assert mailer.outbox[0].to == "a@example.com"
    assert outcome.invitations[0]["invite_code"] in mailer.outbox[0].html


@pytest.mark.asyncio
async def test_resend_mailer_posts_to_api():
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if json.loads(request.content)["to"] == ["down@example.com"]:
            return httpx.Response(500, json={"message": "unavailable"})
        return httpx.Response(200, json={"id": "msg-123"})

    mailer = ResendMailer("re_test", "Invitely <noreply@example.com>", transport=httpx.MockTransport(handler))
    results = await send_all(
        mailer,
        [
            OutgoingEmail(to="a@example.com", subject="Hi", html="<p>Hi</p>"),
            OutgoingEmail(to="down@example.com", subject="Hi", html="<p>Hi</p>"),
        ],
    )

    assert [result.ok for result in results] == [True, False]
    assert results[0].message_id == "msg-123"
    request = requests[0]
    assert str(request.url) == RESEND_API_URL
    assert request.headers["Authorization"] == "Bearer re_test"
    assert json.loads(request.content)["from"] == "Invitely <noreply@example.com>"
