"""Error taxonomy shared by the wizard, RSVP and invitation flows."""

from __future__ import annotations

from typing import Any


class InvitelyError(Exception):
    """Base class for every domain error raised by Invitely."""

    status_code = 400

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": type(self).__name__, "detail": self.message}
        if self.details:
            payload.update(self.details)
        return payload


class ValidationError(InvitelyError):
    """Malformed or missing field, raised before any write."""

    status_code = 422

    def __init__(self, message: str, *, errors: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message, errors=errors or [])
        self.errors = errors or []


class NotAuthenticated(InvitelyError):
    status_code = 401


class AuthorizationError(InvitelyError):
    status_code = 403


class NotFound(InvitelyError):
    status_code = 404


class PersistenceFailure(InvitelyError):
    """The store rejected a read or write."""

    status_code = 502


class AssetUploadFailure(InvitelyError):
    status_code = 502


class WizardError(InvitelyError):
    """A wizard operation was called outside its contract."""

    status_code = 409


class SectionLockedError(WizardError):
    def __init__(self, section: str, active: str) -> None:
        super().__init__(
            f"Section '{section}' is locked while '{active}' is active",
            section=section,
            active=active,
        )
        self.section = section
        self.active = active
