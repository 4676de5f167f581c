"""Live attendee list for one event.

The reconciler owns an ordered, de-duplicated list of RSVP records. It is
seeded from a snapshot and then fed by change events. Change events may be
published from any thread; they are pushed onto an ``asyncio.Queue`` and a
single consumer task applies them in arrival order, so the list is only ever
mutated by one writer.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable

from .gateway import ChangeEvent, StoreGateway, Subscription
from .models import AttendanceStatus

logger = logging.getLogger("uvicorn.error")

Listener = Callable[[ChangeEvent, "AttendanceReconciler"], Awaitable[None] | None]


@dataclass(frozen=True)
class AttendeeRecord:
    id: str
    first_name: str
    last_name: str
    status: str
    hide_from_guest_list: bool
    created_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> AttendeeRecord:
        status = AttendanceStatus(row["status"]).value
        return cls(
            id=row["id"],
            first_name=row.get("first_name") or "",
            last_name=row.get("last_name") or "",
            status=status,
            hide_from_guest_list=bool(row.get("hide_from_guest_list")),
            created_at=row.get("created_at"),
        )

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "status": self.status,
            "hide_from_guest_list": self.hide_from_guest_list,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass(frozen=True)
class AttendeeView:
    record: AttendeeRecord
    hidden_from_public: bool = False

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.record.id,
            "name": self.record.display_name,
            "hidden_from_public": self.hidden_from_public,
        }


@dataclass(frozen=True)
class AttendanceCounts:
    going: int
    interested: int
    not_going: int
    anonymous_going: int

    def as_dict(self) -> dict[str, int]:
        return {
            "going": self.going,
            "interested": self.interested,
            "not_going": self.not_going,
            "anonymous_going": self.anonymous_going,
        }


class AttendanceReconciler:
    def __init__(
        self,
        gateway: StoreGateway,
        event_id: str,
        *,
        owner_id: str | None = None,
    ) -> None:
        self.gateway = gateway
        self.event_id = event_id
        self.owner_id = owner_id
        self._records: list[AttendeeRecord] = []
        self._listeners: list[Listener] = []
        self._subscription: Subscription | None = None
        self._queue: asyncio.Queue[ChangeEvent] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._task: asyncio.Task | None = None

    @property
    def records(self) -> tuple[AttendeeRecord, ...]:
        return tuple(self._records)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _position(self, record_id: str) -> int | None:
        for index, record in enumerate(self._records):
            if record.id == record_id:
                return index
        return None

    def load_rows(self, rows: list[dict[str, Any]]) -> None:
        """Replace the list wholesale with ``rows``, oldest first."""
        records = [AttendeeRecord.from_row(row) for row in rows]
        records.sort(key=lambda record: record.created_at or datetime.min)
        seen: set[str] = set()
        self._records = []
        for record in records:
            if record.id not in seen:
                seen.add(record.id)
                self._records.append(record)

    def load_snapshot(self) -> None:
        rows = self.gateway.select("rsvps", order_by="created_at", event_id=self.event_id)
        self.load_rows(rows)
        logger.debug("Loaded %d RSVPs for event %s", len(rows), self.event_id)

    def apply(self, change: ChangeEvent) -> bool:
        """Apply one change event; return ``True`` when the list changed."""
        if change.table != "rsvps":
            return False
        row = change.record
        if row.get("event_id") not in (None, self.event_id):
            return False
        record_id = row.get("id")
        if record_id is None:
            logger.warning("Ignoring %s change without an id", change.type)
            return False
        position = self._position(record_id)

        if change.type == "insert":
            if position is not None:
                return False
            self._records.append(AttendeeRecord.from_row(change.new or {}))
            return True
        if change.type == "update":
            record = AttendeeRecord.from_row(change.new or {})
            if position is None:
                # Update for a row the snapshot never saw.
                self._records.append(record)
            elif self._records[position] == record:
                return False
            else:
                self._records[position] = record
            return True
        if change.type == "delete":
            if position is None:
                return False
            del self._records[position]
            return True

        logger.warning("Ignoring unknown change type %r", change.type)
        return False

    def _apply_local(self, change: ChangeEvent) -> None:
        if self.running:
            self._enqueue(change)
        else:
            self.apply(change)

    def add_local(self, row: dict[str, Any]) -> None:
        """Record the viewer's own submission before the feed echoes it back."""
        self._apply_local(ChangeEvent("insert", "rsvps", new=row))

    def update_local(self, row: dict[str, Any]) -> None:
        self._apply_local(ChangeEvent("update", "rsvps", new=row))

    def _count(self, status: AttendanceStatus) -> int:
        return sum(1 for record in self._records if record.status == status.value)

    @property
    def going_count(self) -> int:
        return self._count(AttendanceStatus.GOING)

    @property
    def interested_count(self) -> int:
        return self._count(AttendanceStatus.INTERESTED)

    @property
    def not_going_count(self) -> int:
        return self._count(AttendanceStatus.NOT_GOING)

    @property
    def anonymous_going_count(self) -> int:
        return sum(
            1
            for record in self._records
            if record.status == AttendanceStatus.GOING.value and record.hide_from_guest_list
        )

    def counts(self) -> AttendanceCounts:
        return AttendanceCounts(
            going=self.going_count,
            interested=self.interested_count,
            not_going=self.not_going_count,
            anonymous_going=self.anonymous_going_count,
        )

    def visible_attendees(self, viewer_id: str | None = None) -> list[AttendeeView]:
        """Going guests as ``viewer_id`` may see them.

        The owner sees every guest, with opted-out guests flagged as hidden
        from the public list; everyone else only sees guests who did not opt
        out.
        """
        is_owner = viewer_id is not None and viewer_id == self.owner_id
        views = []
        for record in self._records:
            if record.status != AttendanceStatus.GOING.value:
                continue
            if record.hide_from_guest_list and not is_owner:
                continue
            views.append(AttendeeView(record, hidden_from_public=record.hide_from_guest_list))
        return views

    def snapshot(self, viewer_id: str | None = None) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "counts": self.counts().as_dict(),
            "attendees": [view.as_dict() for view in self.visible_attendees(viewer_id)],
        }

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def _enqueue(self, change: ChangeEvent) -> None:
        if self._loop is None or self._queue is None:
            return
        self._loop.call_soon_threadsafe(self._queue.put_nowait, change)

    async def _notify(self, change: ChangeEvent) -> None:
        for listener in list(self._listeners):
            result = listener(change, self)
            if inspect.isawaitable(result):
                await result

    async def _drain(self) -> None:
        assert self._queue is not None
        while True:
            change = await self._queue.get()
            try:
                if self.apply(change):
                    await self._notify(change)
            except Exception:
                logger.exception(
                    "Failed to apply %s change for event %s", change.type, self.event_id
                )
            finally:
                self._queue.task_done()

    async def start(self) -> None:
        """Subscribe, load the snapshot and start the consumer task.

        The subscription is opened before the snapshot is read, so changes
        committed in between are queued and replayed on top of it.
        """
        if self._task is not None:
            raise RuntimeError("Reconciler already started")
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._subscription = self.gateway.subscribe(
            "rsvps", self._enqueue, event_id=self.event_id
        )
        try:
            await asyncio.to_thread(self.load_snapshot)
        except Exception:
            self.gateway.unsubscribe(self._subscription)
            self._subscription = None
            raise
        self._task = asyncio.create_task(self._drain())

    async def wait_idle(self) -> None:
        """Wait until every queued change has been applied."""
        if self._queue is not None:
            # Let hand-offs scheduled with call_soon_threadsafe land first.
            await asyncio.sleep(0)
            await self._queue.join()

    async def stop(self) -> None:
        if self._subscription is not None:
            self.gateway.unsubscribe(self._subscription)
            self._subscription = None
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    async def __aenter__(self) -> AttendanceReconciler:
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()
