"""Record types mirrored from the document store."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any

from .utils import format_timestamp, parse_timestamp

logger = logging.getLogger("uvicorn.error")

RSVPS_PATH = "rsvps"
LANDING_PAGE_PATH = "settings/landingPage"
BACKGROUNDS_PREFIX = "backgrounds"

BACKGROUND_TYPES = ("image", "video")


@dataclass(frozen=True)
class RSVPRecord:
    id: str
    name: str
    affiliation: str
    guests: int
    submitted_at: datetime | None = None

    @classmethod
    def from_value(cls, record_id: str, value: Mapping[str, Any]) -> "RSVPRecord":
        try:
            guests = int(value.get("guests", 1))
        except (TypeError, ValueError):
            guests = 1
        return cls(
            id=record_id,
            name=str(value.get("name") or ""),
            affiliation=str(value.get("affiliation") or ""),
            guests=guests,
            submitted_at=parse_timestamp(value.get("submittedAt")),
        )

    def to_value(self) -> dict[str, Any]:
        return submission_value(
            name=self.name,
            affiliation=self.affiliation,
            guests=self.guests,
            submitted_at=self.submitted_at,
        )


def submission_value(
    *, name: str, affiliation: str, guests: int, submitted_at: datetime | None
) -> dict[str, Any]:
    """Build the stored form of an RSVP; the id is the store key, never a field."""
    value: dict[str, Any] = {
        "name": name,
        "affiliation": affiliation,
        "guests": guests,
    }
    stamp = format_timestamp(submitted_at)
    if stamp is not None:
        value["submittedAt"] = stamp
    return value


def records_from_children(children: Iterable[tuple[str, Any]]) -> list[RSVPRecord]:
    records: list[RSVPRecord] = []
    for key, value in children:
        if not isinstance(value, Mapping):
            logger.warning("Skipping malformed RSVP %s: %r", key, value)
            continue
        records.append(RSVPRecord.from_value(key, value))
    return records


@dataclass(frozen=True)
class LandingPageSettings:
    title: str
    background_type: str = "image"
    background_url: str = ""

    def __post_init__(self) -> None:
        if self.background_type not in BACKGROUND_TYPES:
            raise ValueError(f"Unknown background type {self.background_type!r}")

    @classmethod
    def defaults(cls, title: str) -> "LandingPageSettings":
        return cls(title=title)

    @classmethod
    def from_value(cls, value: Any) -> "LandingPageSettings | None":
        if not isinstance(value, Mapping):
            return None
        background_url = value.get("backgroundUrl")
        background_type = value.get("backgroundType")
        if background_url is None and value.get("backgroundImage"):
            # Older deployments stored only an image URL.
            background_url = value["backgroundImage"]
            background_type = "image"
        if background_type not in BACKGROUND_TYPES:
            background_type = "image"
        return cls(
            title=str(value.get("title") or ""),
            background_type=background_type,
            background_url=str(background_url or ""),
        )

    def to_value(self) -> dict[str, str]:
        return {
            "title": self.title,
            "backgroundType": self.background_type,
            "backgroundUrl": self.background_url,
        }

    def with_background(self, background_type: str, background_url: str):
        return replace(
            self, background_type=background_type, background_url=background_url
        )


def background_type_for(content_type: str | None) -> str:
    """Map a declared media type onto a landing page background kind."""
    major = (content_type or "").split("/", 1)[0].strip().lower()
    if major in BACKGROUND_TYPES:
        return major
    raise ValueError(f"Unsupported background media type: {content_type!r}")
