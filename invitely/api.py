"""FastAPI application for Invitely."""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from importlib.metadata import PackageNotFoundError, version as pkg_version
from typing import Any

from fastapi import Body, Depends, FastAPI, File, Header, Query, Request, UploadFile, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel

from . import __version__
from .assets import AssetStore, BlobRegistry
from .config import settings
from .errors import AuthorizationError, InvitelyError, NotFound, ValidationError
from .events import cancel_event, get_event, list_owner_events, public_event_view, serialize_event
from .gateway import Actor, ChangeEvent, ChangeFeed, StoreGateway
from .identity import GuestIdentity, MemoryIdentityStore
from .invitations import invite_guests
from .mailer import Mailer, get_mailer
from .models import AttendanceStatus
from .reconciler import AttendanceReconciler
from .rsvp import open_rsvp_dialog, submit_rsvp
from .storage import init_db
from .utils import utcnow
from .wizard import EventWizard

# Use uvicorn's error logger so messages get the level prefix in the default log
# format.
logger = logging.getLogger("uvicorn.error")

ACTOR_HEADER = "X-User-Id"
MAX_COVER_BYTES = 10 * 1024 * 1024


def _load_app_version() -> str:
    try:
        return pkg_version("invitely")
    except PackageNotFoundError:
        return __version__


APP_VERSION = _load_app_version()

feed = ChangeFeed()
store = StoreGateway(feed)
assets = AssetStore(settings.assets_dir, settings.assets_url)
blobs = BlobRegistry()


@dataclass
class WizardSession:
    id: str
    wizard: EventWizard
    actor_id: str | None = None
    touched_at: datetime = field(default_factory=utcnow)


wizard_sessions: dict[str, WizardSession] = {}


def close_wizard_session(session: WizardSession) -> None:
    session.wizard.discard()
    wizard_sessions.pop(session.id, None)


def prune_wizard_sessions(now: datetime | None = None) -> int:
    """Discard drafts nobody has touched within ``draft_ttl_minutes``."""
    cutoff = (now or utcnow()) - timedelta(minutes=settings.draft_ttl_minutes)
    stale = [session for session in list(wizard_sessions.values()) if session.touched_at < cutoff]
    for session in stale:
        close_wizard_session(session)
    if stale:
        logger.info("Discarded %d abandoned drafts", len(stale))
    return len(stale)


@asynccontextmanager
async def lifespan(_: FastAPI):
    init_db()
    try:
        yield
    finally:
        for session in list(wizard_sessions.values()):
            close_wizard_session(session)


app = FastAPI(title="Invitely", version=APP_VERSION, lifespan=lifespan)
app.mount("/assets", StaticFiles(directory=str(settings.assets_dir)), name="assets")


def _actor_from(raw: str | None) -> Actor | None:
    cleaned = (raw or "").strip()
    return Actor(id=cleaned) if cleaned else None


def get_gateway(x_user_id: str | None = Header(None, alias=ACTOR_HEADER)) -> StoreGateway:
    return store.for_actor(_actor_from(x_user_id))


def get_invite_mailer() -> Mailer:
    return get_mailer(settings)


@app.exception_handler(InvitelyError)
async def invitely_error_handler(request: Request, exc: InvitelyError):
    if exc.status_code >= 500:
        logger.error(
            "%s on %s %s: %s",
            type(exc).__name__,
            request.method,
            request.url.path,
            exc.message,
        )
    return JSONResponse(jsonable_encoder(exc.to_dict()), status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        jsonable_encoder(
            {
                "error": "ValidationError",
                "detail": "Some of the fields were invalid.",
                "errors": exc.errors(),
            }
        ),
        status_code=422,
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Gracefully handle unexpected errors."""
    logger.exception(
        "Unhandled error while processing %s %s", request.method, request.url.path
    )
    return JSONResponse({"detail": "Internal server error"}, status_code=500)


@app.get("/healthz")
def healthz():
    return {"status": "ok", "version": APP_VERSION}


def _serialize_event(event: dict[str, Any]) -> dict[str, Any]:
    return serialize_event(event, assets=assets, bucket=settings.cover_bucket)


def _serialize_session(session: WizardSession) -> dict[str, Any]:
    return jsonable_encoder({"id": session.id, **session.wizard.summary()})


def _attendance(gateway: StoreGateway, event: dict[str, Any]) -> dict[str, Any]:
    reconciler = AttendanceReconciler(gateway, event["id"], owner_id=event["owner_id"])
    reconciler.load_snapshot()
    actor = gateway.current_actor()
    return reconciler.snapshot(actor.id if actor else None)


def _ensure_session(session_id: str, gateway: StoreGateway) -> WizardSession:
    prune_wizard_sessions()
    session = wizard_sessions.get(session_id)
    if session is None:
        raise NotFound("Draft not found")
    actor = gateway.current_actor()
    if session.actor_id is not None and (actor is None or actor.id != session.actor_id):
        raise AuthorizationError("This draft belongs to someone else")
    # Publishing checks whoever is acting on this request.
    session.wizard.aggregator.gateway = gateway
    session.touched_at = utcnow()
    return session


def _open_session(wizard: EventWizard, gateway: StoreGateway) -> WizardSession:
    prune_wizard_sessions()
    actor = gateway.current_actor()
    session = WizardSession(
        id=uuid.uuid4().hex, wizard=wizard, actor_id=actor.id if actor else None
    )
    wizard_sessions[session.id] = session
    return session


# Authoring wizard


@app.post("/api/v1/drafts", status_code=201)
def api_create_draft(gateway: StoreGateway = Depends(get_gateway)):
    wizard = EventWizard.create(gateway, assets, blobs, bucket=settings.cover_bucket)
    return _serialize_session(_open_session(wizard, gateway))


@app.post("/api/v1/events/{event_id}/drafts", status_code=201)
def api_edit_event_draft(event_id: str, gateway: StoreGateway = Depends(get_gateway)):
    wizard = EventWizard.edit(gateway, assets, blobs, event_id, bucket=settings.cover_bucket)
    return _serialize_session(_open_session(wizard, gateway))


@app.get("/api/v1/drafts/{session_id}")
def api_get_draft(session_id: str, gateway: StoreGateway = Depends(get_gateway)):
    return _serialize_session(_ensure_session(session_id, gateway))


@app.post("/api/v1/drafts/{session_id}/blobs", status_code=201)
def api_upload_cover_blob(
    session_id: str,
    file: UploadFile = File(...),
    gateway: StoreGateway = Depends(get_gateway),
):
    session = _ensure_session(session_id, gateway)
    data = file.file.read(MAX_COVER_BYTES + 1)
    if len(data) > MAX_COVER_BYTES:
        raise ValidationError(
            "Cover image is too large",
            errors=[{"field": "file", "message": "Images must be 10 MB or smaller"}],
        )
    ref = session.wizard.register_cover(data, file.content_type or "image/jpeg")
    return {"ref": ref}


@app.post("/api/v1/drafts/{session_id}/sections/{section}")
def api_complete_section(
    session_id: str,
    section: str,
    payload: dict[str, Any] | None = Body(None),
    gateway: StoreGateway = Depends(get_gateway),
):
    session = _ensure_session(session_id, gateway)
    result = session.wizard.complete(section, payload)
    response = {
        "section": result.section.value,
        "payload": result.payload,
        "event_id": result.event_id,
        "draft": _serialize_session(session),
    }
    if result.event_id is not None:
        # The event is persisted; the draft is no longer needed.
        close_wizard_session(session)
    return jsonable_encoder(response)


@app.post("/api/v1/drafts/{session_id}/sections/{section}/edit")
def api_begin_section_edit(
    session_id: str, section: str, gateway: StoreGateway = Depends(get_gateway)
):
    session = _ensure_session(session_id, gateway)
    session.wizard.begin_edit(section)
    return _serialize_session(session)


@app.delete("/api/v1/drafts/{session_id}", status_code=204)
def api_discard_draft(session_id: str, gateway: StoreGateway = Depends(get_gateway)):
    close_wizard_session(_ensure_session(session_id, gateway))


# Events


@app.get("/api/v1/events")
def api_list_my_events(gateway: StoreGateway = Depends(get_gateway)):
    return {"events": [_serialize_event(event) for event in list_owner_events(gateway)]}


@app.get("/api/v1/events/{event_id}")
def api_get_event(
    event_id: str,
    code: str | None = Query(None),
    gateway: StoreGateway = Depends(get_gateway),
):
    view = public_event_view(
        gateway, event_id, assets=assets, bucket=settings.cover_bucket, invite_code=code
    )
    event = get_event(gateway, event_id)
    return {"event": view, "attendance": _attendance(gateway, event)}


@app.delete("/api/v1/events/{event_id}")
def api_cancel_event(event_id: str, gateway: StoreGateway = Depends(get_gateway)):
    return {"cancelled": event_id, "removed": cancel_event(gateway, event_id)}


# RSVPs


class RSVPCreatePayload(BaseModel):
    first_name: str
    last_name: str
    status: AttendanceStatus = AttendanceStatus.GOING
    hide_from_guest_list: bool = False


class RSVPUpdatePayload(BaseModel):
    status: AttendanceStatus
    hide_from_guest_list: bool | None = None
    first_name: str = ""
    last_name: str = ""


def _rsvp_response(identity: GuestIdentity, gateway: StoreGateway, event_id: str):
    event = get_event(gateway, event_id)
    return {
        "identity": identity.model_dump(mode="json"),
        "attendance": _attendance(gateway, event),
    }


@app.get("/api/v1/events/{event_id}/rsvps")
def api_list_rsvps(event_id: str, gateway: StoreGateway = Depends(get_gateway)):
    return _attendance(gateway, get_event(gateway, event_id))


@app.post("/api/v1/events/{event_id}/rsvps", status_code=201)
def api_create_rsvp(
    event_id: str,
    payload: RSVPCreatePayload,
    gateway: StoreGateway = Depends(get_gateway),
):
    identities = MemoryIdentityStore()
    dialog = open_rsvp_dialog(identities, event_id, payload.status)
    identity = submit_rsvp(
        gateway,
        identities,
        dialog,
        first_name=payload.first_name,
        last_name=payload.last_name,
        hide_from_guest_list=payload.hide_from_guest_list,
    )
    return _rsvp_response(identity, gateway, event_id)


@app.patch("/api/v1/events/{event_id}/rsvps/{rsvp_id}")
def api_update_rsvp(
    event_id: str,
    rsvp_id: str,
    payload: RSVPUpdatePayload,
    gateway: StoreGateway = Depends(get_gateway),
):
    # The caller presents the identity it remembered for this event.
    identities = MemoryIdentityStore()
    identities.save(
        event_id,
        GuestIdentity(
            first_name=payload.first_name,
            last_name=payload.last_name,
            status=payload.status,
            hide_from_guest_list=bool(payload.hide_from_guest_list),
            rsvp_record_id=rsvp_id,
        ),
    )
    dialog = open_rsvp_dialog(identities, event_id, payload.status)
    identity = submit_rsvp(
        gateway,
        identities,
        dialog,
        hide_from_guest_list=payload.hide_from_guest_list,
    )
    return _rsvp_response(identity, gateway, event_id)


# Invitations


class InvitationPayload(BaseModel):
    emails: str | list[str]


@app.post("/api/v1/events/{event_id}/invitations", status_code=201)
async def api_send_invitations(
    event_id: str,
    payload: InvitationPayload,
    gateway: StoreGateway = Depends(get_gateway),
    mailer: Mailer = Depends(get_invite_mailer),
):
    outcome = await invite_guests(
        gateway,
        mailer,
        event_id,
        payload.emails,
        public_url=settings.public_url,
        limit=settings.invite_batch_limit,
    )
    return {
        "invited": [invitation["email"] for invitation in outcome.invitations],
        "sent": outcome.sent,
        "failed": outcome.failed,
        "results": [result.as_dict() for result in outcome.results],
    }


# Live attendance


@app.websocket("/api/v1/events/{event_id}/rsvps/live")
async def rsvp_live_feed(websocket: WebSocket, event_id: str, code: str | None = None):
    gateway = store.for_actor(_actor_from(websocket.headers.get(ACTOR_HEADER)))
    event = await asyncio.to_thread(gateway.select_one, "events", id=event_id)
    if event is None:
        await websocket.close(code=4404, reason="Event not found")
        return
    if code:
        invitation = await asyncio.to_thread(
            gateway.select_one, "invitations", event_id=event_id, invite_code=code
        )
        if invitation is None:
            await websocket.close(code=4404, reason="Invalid invitation code")
            return

    await websocket.accept()
    actor = gateway.current_actor()
    viewer_id = actor.id if actor else None
    reconciler = AttendanceReconciler(gateway, event_id, owner_id=event["owner_id"])

    async def push_change(change: ChangeEvent, current: AttendanceReconciler) -> None:
        await websocket.send_json(
            {"type": "change", "change": change.type, **current.snapshot(viewer_id)}
        )

    reconciler.add_listener(push_change)
    try:
        async with reconciler:
            await websocket.send_json({"type": "snapshot", **reconciler.snapshot(viewer_id)})
            while True:
                data = await websocket.receive_text()
                try:
                    message = json.loads(data)
                except json.JSONDecodeError:
                    logger.warning("Invalid JSON received on live feed for %s", event_id)
                    continue
                if isinstance(message, dict) and message.get("type") == "ping":
                    await websocket.send_json(
                        {"type": "pong", "timestamp": message.get("timestamp")}
                    )
    except WebSocketDisconnect:
        logger.info("Live feed for event %s disconnected", event_id)
