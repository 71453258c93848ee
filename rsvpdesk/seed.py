"""Development helpers for populating fake RSVPs."""

from __future__ import annotations

import asyncio
import random
from datetime import timedelta

from faker import Faker

from .records import RSVPS_PATH, submission_value
from .remote import RemoteStore
from .storage import init_db
from .utils import utcnow

_affiliation_formats = [
    "{company}",
    "{city} High School",
    "{city} Community College",
    "Office of {last_name}",
    "{company} Foundation",
]
_guest_weights = [(1, 8), (2, 6), (3, 3), (4, 2), (5, 1)]


def _affiliation(fake: Faker) -> str:
    template = random.choice(_affiliation_formats)
    return template.format(
        company=fake.company(), city=fake.city(), last_name=fake.last_name()
    )


def _guest_count() -> int:
    counts, weights = zip(*_guest_weights)
    return random.choices(counts, weights=weights, k=1)[0]


async def _push_fake_rsvps(count: int, *, days_back: int) -> int:
    store = RemoteStore()
    fake = Faker()
    now = utcnow()
    window = days_back * 24 * 60
    for _ in range(count):
        await store.push(
            RSVPS_PATH,
            submission_value(
                name=fake.name(),
                affiliation=_affiliation(fake),
                guests=_guest_count(),
                submitted_at=now - timedelta(minutes=random.randint(0, window)),
            ),
        )
    return count


def seed_fake_data(*, count: int = 25, days_back: int = 14) -> dict[str, int]:
    """Push ``count`` synthetic RSVPs into the store."""
    if count < 0:
        raise ValueError("count must be >= 0")
    if days_back < 0:
        raise ValueError("days_back must be >= 0")

    init_db()
    created = asyncio.run(_push_fake_rsvps(count, days_back=days_back))
    return {"rsvps": created}
