"""Section state machine for the event authoring wizard.

The machine itself is an immutable :class:`WizardState` plus pure transition
functions. :class:`EventWizard` owns one state value together with the draft
aggregator and is the only thing that advances it.

Edit mode (authoring changes to an already persisted event) starts with every
content section completed and ``publish`` active, so any section can be
reopened and the event updated in place at any point.
"""

from __future__ import annotations

import datetime as dt
import enum
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Callable

from .assets import AssetStore, BlobRegistry
from .drafts import Draft, DraftAggregator
from .errors import AuthorizationError, NotAuthenticated, NotFound, SectionLockedError, WizardError
from .gateway import StoreGateway
from .sections import SECTION_ORDER, Section, parse_section, validate_section

logger = logging.getLogger("uvicorn.error")


class WizardMode(str, enum.Enum):
    CREATE = "create"
    EDIT = "edit"


@dataclass(frozen=True)
class WizardState:
    active: Section = Section.OVERVIEW
    completed: frozenset[Section] = frozenset()
    editing: Section | None = None
    mode: WizardMode = WizardMode.CREATE


def initial_state(mode: WizardMode = WizardMode.CREATE) -> WizardState:
    if mode is WizardMode.EDIT:
        return WizardState(
            active=Section.PUBLISH,
            completed=frozenset(SECTION_ORDER[:-1]),
            mode=mode,
        )
    return WizardState(mode=mode)


def is_locked(state: WizardState, section: Section) -> bool:
    return section.order > state.active.order and section not in state.completed


def _first_open(completed: frozenset[Section], start: int = 0) -> Section | None:
    for section in SECTION_ORDER[start:]:
        if section not in completed:
            return section
    return None


def check_complete(state: WizardState, section: Section) -> None:
    """Raise unless ``section`` may be completed from ``state``."""
    if is_locked(state, section):
        raise SectionLockedError(section.value, state.active.value)
    if section is not state.active and section is not state.editing:
        raise WizardError(
            f"Section '{section.value}' is not the active section",
            section=section.value,
            active=state.active.value,
        )


def complete_section(state: WizardState, section: Section) -> WizardState:
    check_complete(state, section)
    completed = state.completed | {section}
    if state.editing is not None:
        # Return to the furthest point reached before the edit began.
        frontier = _first_open(completed) or Section.PUBLISH
        return replace(state, completed=completed, editing=None, active=frontier)
    following = _first_open(completed, section.order + 1)
    return replace(state, completed=completed, active=following or section)


def begin_edit(state: WizardState, section: Section) -> WizardState:
    eligible = section in state.completed or (
        section is Section.PUBLISH and state.mode is WizardMode.EDIT
    )
    if not eligible:
        if is_locked(state, section):
            raise SectionLockedError(section.value, state.active.value)
        raise WizardError(
            f"Section '{section.value}' has not been completed yet",
            section=section.value,
        )
    return replace(state, active=section, editing=section)


@dataclass(frozen=True)
class CompletionResult:
    section: Section
    payload: dict[str, Any]
    event_id: str | None = None


@dataclass
class EventWizard:
    """One authoring session: state machine plus draft."""

    aggregator: DraftAggregator
    state: WizardState = field(default_factory=initial_state)
    clock: Callable[[], dt.date] = dt.date.today
    _blob_refs: set[str] = field(default_factory=set, init=False, repr=False)

    @classmethod
    def create(
        cls,
        gateway: StoreGateway,
        assets: AssetStore,
        blobs: BlobRegistry,
        *,
        bucket: str,
        clock: Callable[[], dt.date] = dt.date.today,
    ) -> EventWizard:
        aggregator = DraftAggregator(gateway, assets, blobs, bucket=bucket)
        return cls(aggregator=aggregator, state=initial_state(WizardMode.CREATE), clock=clock)

    @classmethod
    def edit(
        cls,
        gateway: StoreGateway,
        assets: AssetStore,
        blobs: BlobRegistry,
        event_id: str,
        *,
        bucket: str,
        clock: Callable[[], dt.date] = dt.date.today,
    ) -> EventWizard:
        actor = gateway.current_actor()
        if actor is None:
            raise NotAuthenticated("User not authenticated")
        row = gateway.select_one("events", id=event_id)
        if row is None:
            raise NotFound("Event not found")
        if row["owner_id"] != actor.id:
            raise AuthorizationError("You do not have permission to edit this event")
        aggregator = DraftAggregator(
            gateway,
            assets,
            blobs,
            bucket=bucket,
            draft=Draft.from_event_row(row),
            event_id=event_id,
            owner_id=row["owner_id"],
        )
        return cls(aggregator=aggregator, state=initial_state(WizardMode.EDIT), clock=clock)

    @property
    def draft(self) -> Draft:
        return self.aggregator.draft

    @property
    def event_id(self) -> str | None:
        return self.aggregator.event_id

    def is_locked(self, section: Section | str) -> bool:
        return is_locked(self.state, parse_section(section))

    def register_cover(self, data: bytes, content_type: str) -> str:
        """Hold picked image bytes locally and return their ``blob:`` handle."""
        ref = self.aggregator.blobs.register(data, content_type)
        self._blob_refs.add(ref)
        return ref

    def complete(self, section: Section | str, payload: dict[str, Any] | None = None) -> CompletionResult:
        section = parse_section(section)
        check_complete(self.state, section)
        values = validate_section(section, payload, today=self.clock())

        event_id = None
        if section is Section.PUBLISH:
            event_id = self.aggregator.publish()
        else:
            values = self.aggregator.merge_section(section, values)

        self.state = complete_section(self.state, section)
        logger.debug("Completed section %s; active is now %s", section.value, self.state.active.value)
        return CompletionResult(section=section, payload=values, event_id=event_id)

    def begin_edit(self, section: Section | str) -> WizardState:
        self.state = begin_edit(self.state, parse_section(section))
        return self.state

    def discard(self) -> None:
        for ref in self._blob_refs:
            self.aggregator.blobs.revoke(ref)
        self._blob_refs.clear()

    def summary(self) -> dict[str, Any]:
        return {
            "mode": self.state.mode.value,
            "active": self.state.active.value,
            "editing": self.state.editing.value if self.state.editing else None,
            "event_id": self.event_id,
            "sections": [
                {
                    "name": section.value,
                    "completed": section in self.state.completed,
                    "active": section is self.state.active,
                    "editing": section is self.state.editing,
                    "locked": is_locked(self.state, section),
                }
                for section in SECTION_ORDER
            ],
            "draft": self.draft.as_dict(),
        }
