"""Per-event memory of who this guest said they were.

A :class:`GuestIdentity` is remembered, never verified: anyone holding the
local store can edit the RSVP it points at, and clearing the store lets the
same person RSVP again as a new guest. It must not be used as a credential.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from .models import AttendanceStatus

logger = logging.getLogger("uvicorn.error")


class GuestIdentity(BaseModel):
    """Unverified local identity for one event."""

    model_config = ConfigDict(frozen=True)

    first_name: str
    last_name: str
    status: AttendanceStatus
    hide_from_guest_list: bool = False
    rsvp_record_id: str

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


def storage_key(event_id: str) -> str:
    return f"rsvp_{event_id}"


class GuestIdentityStore(ABC):
    """Load/save a :class:`GuestIdentity` keyed by event id (full replace)."""

    @abstractmethod
    def load(self, event_id: str) -> GuestIdentity | None: ...

    @abstractmethod
    def save(self, event_id: str, identity: GuestIdentity) -> None: ...


class MemoryIdentityStore(GuestIdentityStore):
    def __init__(self) -> None:
        self._entries: dict[str, GuestIdentity] = {}

    def load(self, event_id: str) -> GuestIdentity | None:
        return self._entries.get(storage_key(event_id))

    def save(self, event_id: str, identity: GuestIdentity) -> None:
        self._entries[storage_key(event_id)] = identity


class JsonFileIdentityStore(GuestIdentityStore):
    """Identities kept in one JSON document, one entry per event."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read_all(self) -> dict[str, object]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable identity file %s: %s", self.path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def load(self, event_id: str) -> GuestIdentity | None:
        with self._lock:
            raw = self._read_all().get(storage_key(event_id))
        if raw is None:
            return None
        try:
            return GuestIdentity.model_validate(raw)
        except ValueError as exc:
            # A damaged entry means the guest starts over in create mode.
            logger.warning("Discarding stored identity for %s: %s", event_id, exc)
            return None

    def save(self, event_id: str, identity: GuestIdentity) -> None:
        with self._lock:
            entries = self._read_all()
            entries[storage_key(event_id)] = identity.model_dump(mode="json")
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp_path.write_text(json.dumps(entries, indent=2, sort_keys=True), encoding="utf-8")
            os.replace(tmp_path, self.path)
