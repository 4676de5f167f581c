"""Draft accumulation and the terminal publish step."""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import asdict, dataclass, fields
from typing import Any

from .assets import AssetStore, BlobRegistry, generate_asset_key, is_blob_ref
from .errors import AuthorizationError, NotAuthenticated, NotFound, ValidationError
from .gateway import StoreGateway
from .sections import Section
from .utils import utcnow

logger = logging.getLogger("uvicorn.error")

REQUIRED_FIELDS = (
    "title",
    "description",
    "cover_image",
    "date",
    "start_time",
    "end_time",
    "location",
)


@dataclass
class Draft:
    title: str | None = None
    description: str | None = None
    cover_image: str | None = None
    date: dt.date | None = None
    start_time: dt.time | None = None
    end_time: dt.time | None = None
    location: str | None = None
    coordinates: dict[str, float] | None = None

    def merge(self, values: dict[str, Any]) -> None:
        known = {item.name for item in fields(self)}
        for key, value in values.items():
            if key in known:
                setattr(self, key, value)

    def missing_fields(self) -> list[str]:
        return [name for name in REQUIRED_FIELDS if getattr(self, name) in (None, "")]

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)

    def as_event_values(self) -> dict[str, Any]:
        coordinates = self.coordinates or {}
        return {
            "title": self.title,
            "description": self.description,
            "cover_image": self.cover_image,
            "date": self.date,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "location": self.location,
            "latitude": coordinates.get("lat"),
            "longitude": coordinates.get("lng"),
        }

    @classmethod
    def from_event_row(cls, row: dict[str, Any]) -> Draft:
        coordinates = None
        if row.get("latitude") is not None and row.get("longitude") is not None:
            coordinates = {"lat": row["latitude"], "lng": row["longitude"]}
        return cls(
            title=row.get("title"),
            description=row.get("description"),
            cover_image=row.get("cover_image"),
            date=row.get("date"),
            start_time=row.get("start_time"),
            end_time=row.get("end_time"),
            location=row.get("location"),
            coordinates=coordinates,
        )


class DraftAggregator:
    """Owns one Draft for the lifetime of an authoring session.

    ``event_id`` is ``None`` until the draft has been persisted; afterwards
    every publish updates that event in place, so publishing the same draft
    twice never creates a second event.
    """

    def __init__(
        self,
        gateway: StoreGateway,
        assets: AssetStore,
        blobs: BlobRegistry,
        *,
        bucket: str,
        draft: Draft | None = None,
        event_id: str | None = None,
        owner_id: str | None = None,
    ) -> None:
        self.gateway = gateway
        self.assets = assets
        self.blobs = blobs
        self.bucket = bucket
        self.draft = draft or Draft()
        self.event_id = event_id
        self.owner_id = owner_id

    @property
    def mode(self) -> str:
        return "create" if self.event_id is None else "edit"

    def _materialize_cover(self, ref: str) -> str:
        blob = self.blobs.read(ref)
        key = generate_asset_key(blob.content_type)
        stored = self.assets.upload_asset(self.bucket, key, blob.data)
        self.blobs.revoke(ref)
        logger.info("Uploaded cover image %s for draft", stored)
        return stored

    def merge_section(self, section: Section, payload: dict[str, Any]) -> dict[str, Any]:
        values = dict(payload)
        if section is Section.COVER and is_blob_ref(values.get("cover_image")):
            values["cover_image"] = self._materialize_cover(values["cover_image"])
        self.draft.merge(values)
        return values

    def publish(self) -> str:
        actor = self.gateway.current_actor()
        if actor is None:
            raise NotAuthenticated("User not authenticated")
        missing = self.draft.missing_fields()
        if missing:
            raise ValidationError(
                f"Draft is missing: {', '.join(missing)}",
                errors=[{"field": name, "message": "Required"} for name in missing],
            )
        if is_blob_ref(self.draft.cover_image):
            self.draft.cover_image = self._materialize_cover(self.draft.cover_image)

        values = self.draft.as_event_values()
        if self.event_id is None:
            row = self.gateway.insert("events", {**values, "owner_id": actor.id})[0]
            self.event_id = row["id"]
            self.owner_id = actor.id
            logger.info("Published event %s for %s", self.event_id, actor.id)
            return self.event_id

        if self.owner_id is not None and self.owner_id != actor.id:
            raise AuthorizationError("You do not have permission to edit this event")
        values["updated_at"] = utcnow()
        rows = self.gateway.update("events", values, id=self.event_id)
        if not rows:
            raise NotFound("Event not found")
        logger.info("Updated event %s", self.event_id)
        return self.event_id
