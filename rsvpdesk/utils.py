"""Utility helpers for RSVPDesk."""

from __future__ import annotations

from datetime import UTC, datetime
import re
import unicodedata

_filename_invalid = re.compile(r"[^A-Za-z0-9._-]+")


def utcnow() -> datetime:
    """Return a naive UTC datetime."""

    return datetime.now(UTC).replace(tzinfo=None)


def to_naive_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def format_timestamp(value: datetime | None) -> str | None:
    """Serialize a timestamp the way stored records carry it (ISO-8601, UTC, Z)."""
    normalized = to_naive_utc(value)
    if normalized is None:
        return None
    return normalized.isoformat(timespec="milliseconds") + "Z"


def parse_timestamp(raw: object) -> datetime | None:
    """Parse stored ISO-8601 strings or epoch milliseconds; ``None`` when unusable."""
    if raw is None or raw == "":
        return None
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return datetime.fromtimestamp(raw / 1000, UTC).replace(tzinfo=None)
    if isinstance(raw, str):
        text = raw.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return to_naive_utc(datetime.fromisoformat(text))
        except ValueError:
            return None
    return None


def secure_filename(value: str | None) -> str:
    """Reduce an uploaded filename to a safe single path segment."""
    name = (
        unicodedata.normalize("NFKD", value or "")
        .encode("ascii", "ignore")
        .decode("ascii")
    )
    name = name.replace("\\", "/").rsplit("/", 1)[-1]
    name = _filename_invalid.sub("_", name).strip("._")
    return name or "upload"


def humanize_time(value: datetime | None, *, now: datetime | None = None) -> str:
    """Return a friendly string such as 'in 2 weeks' or '3 hours ago'."""
    if not value:
        return ""
    now = now or utcnow()
    delta_seconds = (value - now).total_seconds()
    past = delta_seconds < 0
    seconds = abs(delta_seconds)

    units = [
        ("year", 365 * 24 * 3600),
        ("month", 30 * 24 * 3600),
        ("week", 7 * 24 * 3600),
        ("day", 24 * 3600),
        ("hour", 3600),
        ("minute", 60),
    ]

    for name, step in units:
        amount = int(seconds // step)
        if amount >= 1:
            label = name
            break
    else:
        return "in moments" if not past else "moments ago"

    if amount != 1:
        label = f"{label}s"
    if past:
        return f"{amount} {label} ago"
    return f"in {amount} {label}"
