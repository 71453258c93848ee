from __future__ import annotations

from datetime import datetime, timedelta, timezone

from rsvpdesk.utils import (
    format_timestamp,
    humanize_time,
    parse_timestamp,
    secure_filename,
)


def test_timestamps_use_utc_with_z_suffix():
    aware = datetime(2024, 5, 1, 20, 30, tzinfo=timezone(timedelta(hours=2)))
    assert format_timestamp(aware) == "2024-05-01T18:30:00.000Z"
    assert format_timestamp(None) is None
    assert parse_timestamp("2024-05-01T18:30:00.000Z") == datetime(2024, 5, 1, 18, 30)


def test_parse_timestamp_accepts_epoch_millis_and_ignores_junk():
    assert parse_timestamp(0) == datetime(1970, 1, 1)
    assert parse_timestamp("yesterday") is None
    assert parse_timestamp("") is None
    assert parse_timestamp(True) is None
    assert parse_timestamp({"seconds": 1}) is None


def test_secure_filename_keeps_a_single_safe_segment():
    assert secure_filename("../../etc/passwd") == "passwd"
    assert secure_filename("C:\\Users\\me\\bg photo.jpg") == "bg_photo.jpg"
    assert secure_filename("...") == "upload"
    assert secure_filename(None) == "upload"


def test_humanize_time_handles_future_and_past():
    now = datetime(2024, 1, 1, 12, 0, 0)
    future = now + timedelta(days=2, hours=3)
    past = now - timedelta(seconds=10)
    assert humanize_time(future, now=now) == "in 2 days"
    assert humanize_time(past, now=now) == "moments ago"
    assert humanize_time(now - timedelta(hours=3), now=now) == "3 hours ago"
