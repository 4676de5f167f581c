"""Remote store gateway: table operations plus a change feed.

Every write goes through :class:`StoreGateway`, which commits through the
shared SQLAlchemy session factory and then fans the resulting change events
out to :class:`ChangeFeed` subscribers. Rows are handed back as plain dicts so
callers never hold live ORM instances outside a session.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from .database import get_session
from .errors import PersistenceFailure
from .models import RSVP, Event, Invitation

logger = logging.getLogger("uvicorn.error")

TABLES: dict[str, type] = {
    "events": Event,
    "rsvps": RSVP,
    "invitations": Invitation,
}

CHANGE_TYPES = ("insert", "update", "delete")


@dataclass(frozen=True)
class Actor:
    """The authenticated user performing an operation."""

    id: str


@dataclass(frozen=True)
class ChangeEvent:
    type: str
    table: str
    new: dict[str, Any] | None = None
    old: dict[str, Any] | None = None

    @property
    def record(self) -> dict[str, Any]:
        return self.new if self.new is not None else (self.old or {})

    def as_dict(self) -> dict[str, Any]:
        return {"type": self.type, "table": self.table, "new": self.new, "old": self.old}


ChangeCallback = Callable[[ChangeEvent], None]


@dataclass(eq=False)
class Subscription:
    table: str
    filters: dict[str, Any]
    callback: ChangeCallback
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    active: bool = True

    def matches(self, change: ChangeEvent) -> bool:
        if not self.active or change.table != self.table:
            return False
        for candidate in (change.new, change.old):
            if candidate is None:
                continue
            if all(candidate.get(key) == value for key, value in self.filters.items()):
                return True
        return False


class ChangeFeed:
    """In-process fan-out of committed row changes."""

    def __init__(self) -> None:
        self._subscriptions: dict[str, Subscription] = {}
        self._lock = threading.Lock()

    def subscribe(self, table: str, callback: ChangeCallback, **filters: Any) -> Subscription:
        _model_for(table)
        handle = Subscription(table=table, filters=dict(filters), callback=callback)
        with self._lock:
            self._subscriptions[handle.id] = handle
        logger.debug("Subscribed %s to %s %s", handle.id, table, filters)
        return handle

    def unsubscribe(self, handle: Subscription) -> None:
        handle.active = False
        with self._lock:
            self._subscriptions.pop(handle.id, None)

    def subscriber_count(self, table: str | None = None) -> int:
        with self._lock:
            return sum(
                1
                for handle in self._subscriptions.values()
                if table is None or handle.table == table
            )

    def publish(self, change: ChangeEvent) -> None:
        with self._lock:
            targets = [
                handle for handle in self._subscriptions.values() if handle.matches(change)
            ]
        for handle in targets:
            try:
                handle.callback(change)
            except Exception:
                logger.exception(
                    "Change subscriber %s failed on %s %s", handle.id, change.type, change.table
                )


def _model_for(table: str) -> type:
    try:
        return TABLES[table]
    except KeyError:
        raise ValueError(f"Unknown table: {table}") from None


def _columns(model: type) -> list[str]:
    return [column.key for column in model.__table__.columns]


def row_to_dict(instance: Any) -> dict[str, Any]:
    return {key: getattr(instance, key) for key in _columns(type(instance))}


def _check_columns(model: type, keys: Iterable[str]) -> None:
    unknown = sorted(set(keys) - set(_columns(model)))
    if unknown:
        raise PersistenceFailure(
            f"Unknown column(s) for {model.__tablename__}: {', '.join(unknown)}"
        )


class StoreGateway:
    """select/insert/update/delete over the Invitely tables.

    ``filters`` are equality matches on column values. Store errors surface
    as :class:`PersistenceFailure`; nothing is retried.
    """

    def __init__(self, feed: ChangeFeed | None = None, actor: Actor | None = None) -> None:
        self.feed = feed or ChangeFeed()
        self._actor = actor

    def for_actor(self, actor: Actor | None) -> StoreGateway:
        """Return a gateway bound to ``actor`` sharing this gateway's feed."""
        return StoreGateway(self.feed, actor)

    def current_actor(self) -> Actor | None:
        return self._actor

    def _filtered(self, model: type, filters: dict[str, Any]):
        _check_columns(model, filters)
        stmt = select(model)
        for key, value in filters.items():
            stmt = stmt.where(getattr(model, key) == value)
        return stmt

    def select(
        self,
        table: str,
        *,
        order_by: str | None = None,
        descending: bool = False,
        **filters: Any,
    ) -> list[dict[str, Any]]:
        model = _model_for(table)
        stmt = self._filtered(model, filters)
        if order_by is not None:
            _check_columns(model, [order_by])
            column = getattr(model, order_by)
            stmt = stmt.order_by(column.desc() if descending else column.asc())
        try:
            with get_session() as session:
                return [row_to_dict(item) for item in session.scalars(stmt).all()]
        except SQLAlchemyError as exc:
            logger.error("Select on %s failed: %s", table, exc)
            raise PersistenceFailure(f"Could not read {table}") from exc

    def select_one(self, table: str, **filters: Any) -> dict[str, Any] | None:
        rows = self.select(table, **filters)
        return rows[0] if rows else None

    def insert(
        self, table: str, values: dict[str, Any] | list[dict[str, Any]]
    ) -> list[dict[str, Any]]:
        """Insert one row or a batch in a single transaction."""
        model = _model_for(table)
        batch = [values] if isinstance(values, dict) else list(values)
        for item in batch:
            _check_columns(model, item)
        try:
            with get_session() as session:
                instances = [model(**item) for item in batch]
                session.add_all(instances)
                session.flush()
                rows = [row_to_dict(instance) for instance in instances]
        except SQLAlchemyError as exc:
            logger.error("Insert into %s failed: %s", table, exc)
            raise PersistenceFailure(f"Could not write {table}") from exc
        for row in rows:
            self.feed.publish(ChangeEvent("insert", table, new=row))
        return rows

    def update(
        self, table: str, values: dict[str, Any], **filters: Any
    ) -> list[dict[str, Any]]:
        model = _model_for(table)
        _check_columns(model, values)
        if "id" in values:
            raise PersistenceFailure("Row ids cannot be changed")
        stmt = self._filtered(model, filters)
        changes: list[tuple[dict[str, Any], dict[str, Any]]] = []
        try:
            with get_session() as session:
                for instance in session.scalars(stmt).all():
                    before = row_to_dict(instance)
                    for key, value in values.items():
                        setattr(instance, key, value)
                    session.flush()
                    changes.append((before, row_to_dict(instance)))
        except SQLAlchemyError as exc:
            logger.error("Update on %s failed: %s", table, exc)
            raise PersistenceFailure(f"Could not update {table}") from exc
        for before, after in changes:
            self.feed.publish(ChangeEvent("update", table, new=after, old=before))
        return [after for _, after in changes]

    def delete(self, table: str, **filters: Any) -> list[dict[str, Any]]:
        model = _model_for(table)
        if not filters:
            raise PersistenceFailure(f"Refusing to delete every row in {table}")
        stmt = self._filtered(model, filters)
        removed: list[dict[str, Any]] = []
        try:
            with get_session() as session:
                for instance in session.scalars(stmt).all():
                    removed.append(row_to_dict(instance))
                    session.delete(instance)
        except SQLAlchemyError as exc:
            logger.error("Delete on %s failed: %s", table, exc)
            raise PersistenceFailure(f"Could not delete from {table}") from exc
        for row in removed:
            self.feed.publish(ChangeEvent("delete", table, old=row))
        return removed

    def subscribe(self, table: str, on_change: ChangeCallback, **filters: Any) -> Subscription:
        return self.feed.subscribe(table, on_change, **filters)

    def unsubscribe(self, handle: Subscription) -> None:
        self.feed.unsubscribe(handle)
