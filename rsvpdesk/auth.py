"""Admin sessions backed by the root admin token."""

from __future__ import annotations

import secrets
from datetime import datetime

from sqlalchemy import delete

from .config import settings
from .database import get_session
from .models import AdminSession
from .storage import fetch_root_token
from .utils import utcnow

SESSION_COOKIE = "rsvpdesk_session"


def token_matches(candidate: str | None) -> bool:
    if not candidate:
        return False
    return secrets.compare_digest(candidate.strip(), fetch_root_token())


def create_admin_session(token: str | None) -> str | None:
    """Return a new session id when ``token`` is the root admin token."""
    if not token_matches(token):
        return None
    session_id = secrets.token_urlsafe(32)
    now = utcnow()
    with get_session() as session:
        session.add(AdminSession(id=session_id, created_at=now, last_seen_at=now))
    return session_id


def get_admin_session(
    session_id: str | None, *, now: datetime | None = None
) -> AdminSession | None:
    """Look up a live session and refresh its last-seen time."""
    if not session_id:
        return None
    now = now or utcnow()
    with get_session() as session:
        admin = session.get(AdminSession, session_id)
        if admin is None:
            return None
        if now - admin.last_seen_at > settings.session_max_age:
            session.delete(admin)
            return None
        admin.last_seen_at = now
        return admin


def end_admin_session(session_id: str | None) -> None:
    if not session_id:
        return
    with get_session() as session:
        session.execute(delete(AdminSession).where(AdminSession.id == session_id))


def purge_admin_sessions(*, now: datetime | None = None) -> int:
    """Delete sessions idle for longer than the configured maximum age."""
    cutoff = (now or utcnow()) - settings.session_max_age
    with get_session() as session:
        result = session.execute(
            delete(AdminSession).where(AdminSession.last_seen_at < cutoff)
        )
        return result.rowcount or 0
