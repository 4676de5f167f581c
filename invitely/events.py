"""Event lookups, the owner's dashboard list and cancellation."""

from __future__ import annotations

import logging
from typing import Any

from .assets import AssetStore, cover_image_url
from .errors import AuthorizationError, NotAuthenticated, NotFound
from .gateway import StoreGateway
from .models import AttendanceStatus
from .utils import format_event_schedule, isoformat_or_none

logger = logging.getLogger("uvicorn.error")


def get_event(gateway: StoreGateway, event_id: str) -> dict[str, Any]:
    event = gateway.select_one("events", id=event_id)
    if event is None:
        raise NotFound("Event not found")
    return event


def require_owner(
    gateway: StoreGateway, event_id: str, *, action: str = "manage this event"
) -> dict[str, Any]:
    actor = gateway.current_actor()
    if actor is None:
        raise NotAuthenticated("User not authenticated")
    event = get_event(gateway, event_id)
    if event["owner_id"] != actor.id:
        raise AuthorizationError(f"You don't have permission to {action}")
    return event


def going_count(gateway: StoreGateway, event_id: str) -> int:
    return len(gateway.select("rsvps", event_id=event_id, status=AttendanceStatus.GOING.value))


def list_owner_events(gateway: StoreGateway) -> list[dict[str, Any]]:
    """The acting user's events, soonest first, each with its going count."""
    actor = gateway.current_actor()
    if actor is None:
        raise NotAuthenticated("User not authenticated")
    events = gateway.select("events", order_by="date", owner_id=actor.id)
    return [{**event, "going_count": going_count(gateway, event["id"])} for event in events]


def cancel_event(gateway: StoreGateway, event_id: str) -> dict[str, int]:
    """Delete an event along with all of its RSVPs and invitations."""
    require_owner(gateway, event_id, action="cancel this event")
    removed_rsvps = gateway.delete("rsvps", event_id=event_id)
    removed_invitations = gateway.delete("invitations", event_id=event_id)
    gateway.delete("events", id=event_id)
    logger.info(
        "Cancelled event %s (%d RSVPs, %d invitations removed)",
        event_id,
        len(removed_rsvps),
        len(removed_invitations),
    )
    return {"rsvps": len(removed_rsvps), "invitations": len(removed_invitations)}


def serialize_event(event: dict[str, Any], *, assets: AssetStore, bucket: str) -> dict[str, Any]:
    coordinates = None
    if event.get("latitude") is not None and event.get("longitude") is not None:
        coordinates = {"lat": event["latitude"], "lng": event["longitude"]}
    data = {
        "id": event["id"],
        "title": event["title"],
        "description": event["description"],
        "cover_image": event["cover_image"],
        "cover_image_url": cover_image_url(assets, bucket, event["cover_image"]),
        "date": isoformat_or_none(event["date"]),
        "start_time": isoformat_or_none(event["start_time"]),
        "end_time": isoformat_or_none(event["end_time"]),
        "schedule": format_event_schedule(event["date"], event["start_time"], event["end_time"]),
        "location": event["location"],
        "coordinates": coordinates,
        "owner_id": event["owner_id"],
        "created_at": isoformat_or_none(event.get("created_at")),
        "updated_at": isoformat_or_none(event.get("updated_at")),
    }
    if "going_count" in event:
        data["going_count"] = event["going_count"]
    return data


def verify_invite_code(gateway: StoreGateway, event_id: str, invite_code: str) -> dict[str, Any]:
    invitation = gateway.select_one("invitations", event_id=event_id, invite_code=invite_code)
    if invitation is None:
        raise NotFound("Invalid invitation code")
    return invitation


def public_event_view(
    gateway: StoreGateway,
    event_id: str,
    *,
    assets: AssetStore,
    bucket: str,
    invite_code: str | None = None,
) -> dict[str, Any]:
    """What a guest sees on the event page.

    A supplied invite code must belong to this event; a link without a code
    still shows the event.
    """
    event = get_event(gateway, event_id)
    if invite_code:
        verify_invite_code(gateway, event_id, invite_code)
    actor = gateway.current_actor()
    data = serialize_event(event, assets=assets, bucket=bucket)
    data["is_owner"] = actor is not None and actor.id == event["owner_id"]
    return data
