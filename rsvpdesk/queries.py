"""Stateless helpers the admin views apply to a mirror snapshot."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime

from .records import RSVPRecord

GUEST_MIN = 1
GUEST_MAX = 50


def filter_records(records: Iterable[RSVPRecord], term: str | None) -> list[RSVPRecord]:
    """Case-insensitive substring match on name OR affiliation."""
    needle = (term or "").strip().casefold()
    if not needle:
        return list(records)
    return [
        record
        for record in records
        if needle in record.name.casefold() or needle in record.affiliation.casefold()
    ]


@dataclass(frozen=True)
class Page:
    items: list[RSVPRecord]
    page: int
    per_page: int
    total_items: int
    total_pages: int

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.per_page

    @property
    def has_prev(self) -> bool:
        return self.page > 1

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def prev_page(self) -> int | None:
        return self.page - 1 if self.has_prev else None

    @property
    def next_page(self) -> int | None:
        return self.page + 1 if self.has_next else None


def paginate(records: Sequence[RSVPRecord], page: int, per_page: int) -> Page:
    """Slice ``records`` into 1-indexed pages.

    Pages past the end come back empty instead of being clamped to the last
    page.
    """
    if per_page < 1:
        raise ValueError("per_page must be >= 1")
    page = max(1, page)
    total_items = len(records)
    total_pages = (total_items + per_page - 1) // per_page
    start = (page - 1) * per_page
    return Page(
        items=list(records[start : start + per_page]),
        page=page,
        per_page=per_page,
        total_items=total_items,
        total_pages=total_pages,
    )


def total_guests(records: Iterable[RSVPRecord]) -> int:
    return sum(record.guests for record in records)


def sort_by_submission(records: Iterable[RSVPRecord]) -> list[RSVPRecord]:
    """Oldest submission first; records without a timestamp go last."""
    return sorted(
        records,
        key=lambda record: (
            record.submitted_at is None,
            record.submitted_at or datetime.min,
        ),
    )


def clamp_guest_count(
    raw: int | str | None, minimum: int = GUEST_MIN, maximum: int = GUEST_MAX
) -> int:
    try:
        value = int(raw) if raw is not None else minimum
    except (TypeError, ValueError):
        value = minimum
    return max(minimum, min(value, maximum))


def normalize_submission(
    name: str | None,
    affiliation: str | None,
    guests: int | str | None,
    *,
    minimum: int = GUEST_MIN,
    maximum: int = GUEST_MAX,
) -> tuple[str, str, int]:
    """Apply the required-field check and guest clamp for a new RSVP."""
    clean_name = (name or "").strip()
    clean_affiliation = (affiliation or "").strip()
    if not clean_name:
        raise ValueError("Name is required")
    if not clean_affiliation:
        raise ValueError("Affiliation is required")
    return (
        clean_name,
        clean_affiliation,
        clamp_guest_count(guests, minimum, maximum),
    )
