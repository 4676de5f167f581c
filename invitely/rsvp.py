"""Guest RSVP dialog: create a new RSVP or edit the remembered one."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import pydantic
from pydantic import BaseModel, ConfigDict, Field

from .errors import NotFound, ValidationError
from .gateway import StoreGateway
from .identity import GuestIdentity, GuestIdentityStore
from .models import AttendanceStatus
from .reconciler import AttendanceReconciler

logger = logging.getLogger("uvicorn.error")

STATUS_LABELS: dict[AttendanceStatus, str] = {
    AttendanceStatus.GOING: "Going",
    AttendanceStatus.INTERESTED: "Interested",
    AttendanceStatus.NOT_GOING: "Can't Go",
}


class GuestName(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    first_name: str = Field(..., min_length=1, max_length=120)
    last_name: str = Field(..., min_length=1, max_length=120)


@dataclass(frozen=True)
class RsvpDialog:
    event_id: str
    status: AttendanceStatus
    mode: str = "create"
    first_name: str = ""
    last_name: str = ""
    hide_from_guest_list: bool = False
    rsvp_record_id: str | None = None

    @property
    def names_read_only(self) -> bool:
        return self.mode == "edit"

    @property
    def title(self) -> str:
        label = STATUS_LABELS[self.status]
        if self.mode == "edit":
            return f"Change RSVP to {label}"
        return f"RSVP as {label}"

    def as_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "status": self.status.value,
            "mode": self.mode,
            "title": self.title,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "names_read_only": self.names_read_only,
            "hide_from_guest_list": self.hide_from_guest_list,
            "rsvp_record_id": self.rsvp_record_id,
        }


def parse_status(value: str | AttendanceStatus) -> AttendanceStatus:
    try:
        return AttendanceStatus(value)
    except ValueError:
        raise ValidationError(
            f"Unknown attendance status: {value}",
            errors=[{"field": "status", "message": "Must be going, interested or not_going"}],
        ) from None


def open_rsvp_dialog(
    store: GuestIdentityStore, event_id: str, status: str | AttendanceStatus
) -> RsvpDialog:
    status = parse_status(status)
    identity = store.load(event_id)
    if identity is None:
        return RsvpDialog(event_id=event_id, status=status)
    return RsvpDialog(
        event_id=event_id,
        status=status,
        mode="edit",
        first_name=identity.first_name,
        last_name=identity.last_name,
        hide_from_guest_list=identity.hide_from_guest_list,
        rsvp_record_id=identity.rsvp_record_id,
    )


def _validated_name(first_name: str | None, last_name: str | None) -> GuestName:
    try:
        return GuestName(first_name=first_name or "", last_name=last_name or "")
    except pydantic.ValidationError as exc:
        errors = [
            {"field": ".".join(str(part) for part in error["loc"]), "message": error["msg"]}
            for error in exc.errors()
        ]
        raise ValidationError("First and last name are required", errors=errors) from exc


def submit_rsvp(
    gateway: StoreGateway,
    store: GuestIdentityStore,
    dialog: RsvpDialog,
    *,
    first_name: str | None = None,
    last_name: str | None = None,
    hide_from_guest_list: bool | None = None,
    reconciler: AttendanceReconciler | None = None,
) -> GuestIdentity:
    """Write the dialog's RSVP and remember it for this event.

    Guests are not authenticated; the remembered identity alone decides
    whether this updates an existing RSVP or inserts a new one.
    """
    if dialog.mode == "edit" and dialog.rsvp_record_id:
        values: dict[str, Any] = {"status": dialog.status.value}
        # Without an explicit choice the stored visibility stays as it is.
        if hide_from_guest_list is not None:
            values["hide_from_guest_list"] = hide_from_guest_list
        rows = gateway.update(
            "rsvps",
            values,
            id=dialog.rsvp_record_id,
            event_id=dialog.event_id,
        )
        if not rows:
            raise NotFound("Your RSVP could not be found")
        row = rows[0]
        if reconciler is not None:
            reconciler.update_local(row)
        logger.info("Updated RSVP %s to %s", row["id"], dialog.status.value)
    else:
        name = _validated_name(first_name, last_name)
        if gateway.select_one("events", id=dialog.event_id) is None:
            raise NotFound("Event not found")
        hide = dialog.hide_from_guest_list if hide_from_guest_list is None else hide_from_guest_list
        row = gateway.insert(
            "rsvps",
            {
                "event_id": dialog.event_id,
                "first_name": name.first_name,
                "last_name": name.last_name,
                "status": dialog.status.value,
                "hide_from_guest_list": hide,
            },
        )[0]
        if reconciler is not None:
            reconciler.add_local(row)
        logger.info("Recorded RSVP %s for event %s", row["id"], dialog.event_id)

    identity = GuestIdentity(
        first_name=row["first_name"],
        last_name=row["last_name"],
        status=AttendanceStatus(row["status"]),
        hide_from_guest_list=row["hide_from_guest_list"],
        rsvp_record_id=row["id"],
    )
    store.save(dialog.event_id, identity)
    return identity
