from __future__ import annotations

from datetime import date, timedelta

import pytest

from invitely.errors import (
    AuthorizationError,
    NotAuthenticated,
    PersistenceFailure,
    SectionLockedError,
    ValidationError,
    WizardError,
)
from invitely.gateway import Actor
from invitely.sections import SECTION_ORDER, Section
from invitely.wizard import (
    EventWizard,
    WizardMode,
    begin_edit,
    complete_section,
    initial_state,
    is_locked,
)

OVERVIEW = {"title": "Garden Party", "description": "Bring a chair."}
COVER = {"cover_image": "https://images.example.com/party.jpg"}


def _datetime_payload(day: date) -> dict:
    return {
        "date": day.isoformat(),
        "start_time": "19:00",
        "end_time": "21:30",
        "location": "12 Elm Street",
        "coordinates": {"lat": 52.37, "lng": 4.89},
    }


def _assert_lock_invariant(state) -> None:
    for section in SECTION_ORDER:
        expected = section.order > state.active.order and section not in state.completed
        assert is_locked(state, section) is expected


def _new_wizard(owner, assets, blobs, day) -> EventWizard:
    return EventWizard.create(owner, assets, blobs, bucket="event-covers", clock=lambda: day)


def test_initial_state_locks_everything_after_overview():
    state = initial_state()
    assert state.active is Section.OVERVIEW
    assert state.completed == frozenset()
    assert state.editing is None
    assert [is_locked(state, s) for s in SECTION_ORDER] == [False, True, True, True]


def test_completing_overview_advances_to_cover():
    state = complete_section(initial_state(), Section.OVERVIEW)

    assert state.active is Section.COVER
    assert Section.OVERVIEW in state.completed
    assert not is_locked(state, Section.OVERVIEW)
    assert is_locked(state, Section.DATETIME)
    assert is_locked(state, Section.PUBLISH)
    # Completed sections can be reopened.
    assert begin_edit(state, Section.OVERVIEW).editing is Section.OVERVIEW


def test_complete_on_locked_section_leaves_state_untouched():
    state = complete_section(initial_state(), Section.OVERVIEW)
    with pytest.raises(SectionLockedError):
        complete_section(state, Section.DATETIME)
    assert state == complete_section(initial_state(), Section.OVERVIEW)


def test_begin_edit_rejects_locked_and_unfinished_sections():
    state = initial_state()
    with pytest.raises(SectionLockedError):
        begin_edit(state, Section.COVER)
    with pytest.raises(WizardError):
        begin_edit(state, Section.OVERVIEW)


def test_editing_returns_to_the_frontier_instead_of_advancing():
    state = initial_state()
    for section in (Section.OVERVIEW, Section.COVER):
        state = complete_section(state, section)
    assert state.active is Section.DATETIME

    state = begin_edit(state, Section.OVERVIEW)
    assert state.active is Section.OVERVIEW
    assert state.editing is Section.OVERVIEW
    _assert_lock_invariant(state)
    assert is_locked(state, Section.DATETIME)

    state = complete_section(state, Section.OVERVIEW)
    assert state.editing is None
    assert state.active is Section.DATETIME
    _assert_lock_invariant(state)


def test_starting_a_new_edit_ends_the_previous_one():
    state = initial_state()
    for section in (Section.OVERVIEW, Section.COVER):
        state = complete_section(state, section)
    state = begin_edit(state, Section.OVERVIEW)
    state = begin_edit(state, Section.COVER)
    assert state.editing is Section.COVER
    assert state.active is Section.COVER
    with pytest.raises(WizardError):
        complete_section(state, Section.OVERVIEW)


def test_edit_mode_keeps_publish_reachable():
    state = initial_state(WizardMode.EDIT)
    assert state.active is Section.PUBLISH
    assert not any(is_locked(state, s) for s in SECTION_ORDER)

    state = begin_edit(state, Section.COVER)
    state = complete_section(state, Section.COVER)
    assert state.active is Section.PUBLISH
    assert begin_edit(state, Section.PUBLISH).active is Section.PUBLISH


def test_lock_invariant_holds_through_a_full_walk():
    state = initial_state()
    _assert_lock_invariant(state)
    for section in SECTION_ORDER:
        state = complete_section(state, section)
        _assert_lock_invariant(state)
        for completed in list(state.completed):
            edited = begin_edit(state, completed)
            _assert_lock_invariant(edited)
            _assert_lock_invariant(complete_section(edited, completed))


def test_wizard_publishes_a_new_event(owner, assets, blobs, future_day):
    wizard = _new_wizard(owner, assets, blobs, date.today())
    wizard.complete("overview", OVERVIEW)
    wizard.complete("cover", COVER)
    wizard.complete("datetime", _datetime_payload(future_day))
    result = wizard.complete("publish")

    assert result.event_id is not None
    row = owner.select_one("events", id=result.event_id)
    assert row["owner_id"] == "owner-1"
    assert row["title"] == "Garden Party"
    assert row["date"] == future_day
    assert row["latitude"] == pytest.approx(52.37)
    assert row["longitude"] == pytest.approx(4.89)


def test_republishing_the_same_draft_updates_in_place(owner, assets, blobs, future_day):
    wizard = _new_wizard(owner, assets, blobs, date.today())
    wizard.complete("overview", OVERVIEW)
    wizard.complete("cover", COVER)
    wizard.complete("datetime", _datetime_payload(future_day))
    first = wizard.complete("publish").event_id

    wizard.begin_edit("overview")
    wizard.complete("overview", {**OVERVIEW, "title": "Garden Party II"})
    second = wizard.complete("publish").event_id

    assert first == second
    rows = owner.select("events")
    assert len(rows) == 1
    assert rows[0]["title"] == "Garden Party II"


def test_section_validation_failure_keeps_state(owner, assets, blobs):
    wizard = _new_wizard(owner, assets, blobs, date.today())
    before = wizard.state
    with pytest.raises(ValidationError) as excinfo:
        wizard.complete("overview", {"title": "   ", "description": "x"})
    assert excinfo.value.errors[0]["field"] == "title"
    assert wizard.state == before
    assert wizard.draft.title is None


def test_datetime_rules(owner, assets, blobs, future_day):
    wizard = _new_wizard(owner, assets, blobs, date.today())
    wizard.complete("overview", OVERVIEW)
    wizard.complete("cover", COVER)

    past = _datetime_payload(date.today() - timedelta(days=1))
    with pytest.raises(ValidationError, match="past"):
        wizard.complete("datetime", past)

    backwards = {**_datetime_payload(future_day), "start_time": "22:00"}
    with pytest.raises(ValidationError, match="End time must be after start time"):
        wizard.complete("datetime", backwards)
    assert wizard.state.active is Section.DATETIME


def test_locked_section_is_rejected_before_validation(owner, assets, blobs):
    wizard = _new_wizard(owner, assets, blobs, date.today())
    with pytest.raises(SectionLockedError):
        wizard.complete("publish", {})
    assert wizard.state == initial_state()


def test_publish_without_actor_fails_and_keeps_state(gateway, assets, blobs, future_day):
    wizard = _new_wizard(gateway, assets, blobs, date.today())
    wizard.complete("overview", OVERVIEW)
    wizard.complete("cover", COVER)
    wizard.complete("datetime", _datetime_payload(future_day))
    before = wizard.state

    with pytest.raises(NotAuthenticated):
        wizard.complete("publish")
    assert wizard.state == before
    assert gateway.select("events") == []


def test_publish_surfaces_persistence_failure(owner, assets, blobs, future_day, monkeypatch):
    wizard = _new_wizard(owner, assets, blobs, date.today())
    wizard.complete("overview", OVERVIEW)
    wizard.complete("cover", COVER)
    wizard.complete("datetime", _datetime_payload(future_day))
    before = wizard.state

    def broken_insert(table, values):
        raise PersistenceFailure("Could not write events")

    monkeypatch.setattr(owner, "insert", broken_insert)
    with pytest.raises(PersistenceFailure):
        wizard.complete("publish")
    assert wizard.state == before


def test_edit_wizard_hydrates_and_preserves_owner(owner, assets, blobs, event):
    wizard = EventWizard.edit(owner, assets, blobs, event["id"], bucket="event-covers")
    assert wizard.state.mode is WizardMode.EDIT
    assert wizard.draft.title == event["title"]

    wizard.begin_edit("overview")
    wizard.complete("overview", {"title": "Moved Indoors", "description": "No chairs needed."})
    wizard.complete("publish")

    row = owner.select_one("events", id=event["id"])
    assert row["title"] == "Moved Indoors"
    assert row["owner_id"] == "owner-1"
    assert row["updated_at"] >= event["updated_at"]


def test_edit_wizard_requires_the_owner(gateway, assets, blobs, event):
    stranger = gateway.for_actor(Actor(id="someone-else"))
    with pytest.raises(AuthorizationError):
        EventWizard.edit(stranger, assets, blobs, event["id"], bucket="event-covers")
    with pytest.raises(NotAuthenticated):
        EventWizard.edit(gateway, assets, blobs, event["id"], bucket="event-covers")


def test_summary_reports_section_flags(owner, assets, blobs):
    wizard = _new_wizard(owner, assets, blobs, date.today())
    wizard.complete("overview", OVERVIEW)
    summary = wizard.summary()
    flags = {item["name"]: item for item in summary["sections"]}
    assert summary["active"] == "cover"
    assert flags["overview"]["completed"] and not flags["overview"]["locked"]
    assert flags["cover"]["active"]
    assert flags["publish"]["locked"]
