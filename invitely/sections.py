"""Wizard sections and the field rules each one enforces."""

from __future__ import annotations

import datetime as dt
import enum
from typing import Any

import pydantic
from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator, model_validator

from .errors import ValidationError


class Section(str, enum.Enum):
    OVERVIEW = "overview"
    COVER = "cover"
    DATETIME = "datetime"
    PUBLISH = "publish"

    @property
    def order(self) -> int:
        return SECTION_ORDER.index(self)


SECTION_ORDER: tuple[Section, ...] = (
    Section.OVERVIEW,
    Section.COVER,
    Section.DATETIME,
    Section.PUBLISH,
)


class _SectionFields(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)


class OverviewFields(_SectionFields):
    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1)


class CoverFields(_SectionFields):
    cover_image: str = Field(..., min_length=1, max_length=512)


class Coordinates(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class DateTimeFields(_SectionFields):
    date: dt.date
    start_time: dt.time
    end_time: dt.time
    location: str = Field(..., min_length=1, max_length=255)
    coordinates: Coordinates | None = None

    @field_validator("date")
    @classmethod
    def _not_in_past(cls, value: dt.date, info: ValidationInfo) -> dt.date:
        today = (info.context or {}).get("today") or dt.date.today()
        if value < today:
            raise ValueError("Event date cannot be in the past")
        return value

    @model_validator(mode="after")
    def _end_after_start(self) -> DateTimeFields:
        if self.end_time <= self.start_time:
            raise ValueError("End time must be after start time")
        return self


class PublishFields(_SectionFields):
    pass


SECTION_FIELDS: dict[Section, type[_SectionFields]] = {
    Section.OVERVIEW: OverviewFields,
    Section.COVER: CoverFields,
    Section.DATETIME: DateTimeFields,
    Section.PUBLISH: PublishFields,
}


def parse_section(value: str | Section) -> Section:
    try:
        return Section(value)
    except ValueError:
        raise ValidationError(
            f"Unknown section: {value}",
            errors=[{"field": "section", "message": "Unknown section"}],
        ) from None


def _describe_errors(exc: pydantic.ValidationError) -> list[dict[str, Any]]:
    described = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error.get("loc", ())) or "__root__"
        message = error.get("msg", "Invalid value").removeprefix("Value error, ")
        described.append({"field": field, "message": message})
    return described


def validate_section(
    section: Section, payload: dict[str, Any] | None, *, today: dt.date | None = None
) -> dict[str, Any]:
    """Validate a section payload and return its normalized fields."""
    model = SECTION_FIELDS[section]
    try:
        parsed = model.model_validate(payload or {}, context={"today": today})
    except pydantic.ValidationError as exc:
        errors = _describe_errors(exc)
        raise ValidationError(
            f"Invalid {section.value} section: {errors[0]['message']}", errors=errors
        ) from exc
    return parsed.model_dump()
