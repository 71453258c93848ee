from __future__ import annotations

from rsvpdesk.auth import create_admin_session, get_admin_session
from rsvpdesk.storage import ensure_root_token, fetch_root_token, rotate_root_token


def test_root_token_lifecycle():
    first = ensure_root_token()
    assert isinstance(first, str) and first
    assert ensure_root_token() == first
    assert fetch_root_token() == first
    rotated = rotate_root_token()
    assert rotated != first
    assert fetch_root_token() == rotated


def test_fetch_root_token_creates_one_when_missing():
    token = fetch_root_token()
    assert token
    assert fetch_root_token() == token


def test_rotating_the_token_signs_out_admins():
    session_id = create_admin_session(ensure_root_token())
    assert get_admin_session(session_id) is not None
    rotate_root_token()
    assert get_admin_session(session_id) is None
