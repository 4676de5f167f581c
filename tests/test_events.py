from __future__ import annotations

from datetime import timedelta

import pytest

from invitely.errors import AuthorizationError, NotAuthenticated, NotFound
from invitely.events import (
    cancel_event,
    list_owner_events,
    public_event_view,
    verify_invite_code,
)
from invitely.gateway import Actor


def _rsvp(event_id: str, status: str) -> dict:
    return {"event_id": event_id, "first_name": "Ana", "last_name": "Lee", "status": status}


def test_list_owner_events_orders_by_date_with_going_count(owner, make_event, future_day):
    later = make_event(title="Later", date=future_day + timedelta(days=365))
    sooner = make_event(title="Sooner")
    make_event(title="Not mine", owner_id="owner-2")
    owner.insert("rsvps", [_rsvp(sooner["id"], "going"), _rsvp(sooner["id"], "going"), _rsvp(sooner["id"], "interested")])

    events = list_owner_events(owner)

    assert [item["title"] for item in events] == ["Sooner", "Later"]
    assert [item["going_count"] for item in events] == [2, 0]
    assert events[1]["id"] == later["id"]


def test_list_owner_events_requires_actor(gateway):
    with pytest.raises(NotAuthenticated):
        list_owner_events(gateway)


def test_cancel_event_removes_everything(owner, event):
    owner.insert("rsvps", [_rsvp(event["id"], "going"), _rsvp(event["id"], "not_going")])
    owner.insert("invitations", {"event_id": event["id"], "email": "a@example.com", "invite_code": "code-1"})

    removed = cancel_event(owner, event["id"])

    assert removed == {"rsvps": 2, "invitations": 1}
    assert owner.select("events") == []
    assert owner.select("rsvps") == []
    assert owner.select("invitations") == []


def test_cancel_event_requires_owner(gateway, event):
    stranger = gateway.for_actor(Actor(id="owner-2"))
    with pytest.raises(AuthorizationError):
        cancel_event(stranger, event["id"])
    with pytest.raises(NotFound):
        cancel_event(stranger, "missing")
    assert gateway.select_one("events", id=event["id"]) is not None


def test_invite_code_must_belong_to_event(owner, make_event):
    first = make_event()
    second = make_event(title="Other")
    owner.insert("invitations", {"event_id": first["id"], "email": "a@example.com", "invite_code": "code-1"})

    assert verify_invite_code(owner, first["id"], "code-1")["email"] == "a@example.com"
    with pytest.raises(NotFound, match="Invalid invitation code"):
        verify_invite_code(owner, second["id"], "code-1")


def test_public_event_view(gateway, owner, assets, event):
    guest_view = public_event_view(gateway, event["id"], assets=assets, bucket="event-covers")
    assert guest_view["is_owner"] is False
    assert guest_view["cover_image_url"] == f"http://testserver/assets/event-covers/{event['cover_image']}"
    assert guest_view["start_time"] == "19:00:00"
    assert guest_view["schedule"].endswith("7 PM - 9:30 PM")
    assert guest_view["coordinates"] is None

    owner_view = public_event_view(owner, event["id"], assets=assets, bucket="event-covers")
    assert owner_view["is_owner"] is True

    with pytest.raises(NotFound):
        public_event_view(gateway, event["id"], assets=assets, bucket="event-covers", invite_code="bogus")
    with pytest.raises(NotFound):
        public_event_view(gateway, "missing", assets=assets, bucket="event-covers")
