from __future__ import annotations

from datetime import datetime

import pytest

from rsvpdesk.queries import (
    clamp_guest_count,
    filter_records,
    normalize_submission,
    paginate,
    sort_by_submission,
    total_guests,
)
from rsvpdesk.records import RSVPRecord


def _records(count: int) -> list[RSVPRecord]:
    return [
        RSVPRecord(id=f"id{index:02d}", name=f"Guest {index}", affiliation="Acme", guests=1)
        for index in range(1, count + 1)
    ]


def test_filter_matches_name_or_affiliation_case_insensitively():
    records = [
        RSVPRecord("a", "Ana Lopez", "Acme Corp", 2),
        RSVPRecord("b", "Budi", "ACME Labs", 1),
        RSVPRecord("c", "Citra", "Globex", 3),
    ]
    assert [record.id for record in filter_records(records, "acme")] == ["a", "b"]
    assert [record.id for record in filter_records(records, "  CITRA ")] == ["c"]
    assert filter_records(records, "") == records
    assert filter_records(records, None) == records
    assert filter_records(records, "initech") == []


def test_filter_by_affiliation_only_still_matches():
    records = [RSVPRecord("a", "Ana", "Northwind Traders", 1)]
    assert filter_records(records, "wind") == records


def test_paginate_slices_pages_and_reports_totals():
    records = _records(23)
    first = paginate(records, 1, 5)
    assert [record.id for record in first.items] == ["id01", "id02", "id03", "id04", "id05"]
    assert first.total_pages == 5
    assert first.total_items == 23
    assert first.has_prev is False and first.next_page == 2

    last = paginate(records, 5, 5)
    assert [record.id for record in last.items] == ["id21", "id22", "id23"]
    assert last.offset == 20
    assert last.has_next is False and last.prev_page == 4


def test_paginate_past_the_end_is_empty_not_clamped():
    page = paginate(_records(23), 6, 5)
    assert page.items == []
    assert page.page == 6
    assert page.total_pages == 5


def test_paginate_floors_page_and_rejects_bad_page_size():
    assert paginate(_records(3), 0, 2).page == 1
    assert paginate([], 1, 10).total_pages == 0
    with pytest.raises(ValueError):
        paginate(_records(3), 1, 0)


def test_total_guests_sums_the_records_given():
    records = [
        RSVPRecord("a", "Ana", "Acme", 2),
        RSVPRecord("b", "Budi", "Globex", 5),
        RSVPRecord("c", "Citra", "Acme", 3),
    ]
    assert total_guests(records) == 10
    assert total_guests(filter_records(records, "acme")) == 5
    assert total_guests([]) == 0


def test_clamp_guest_count():
    assert clamp_guest_count(0) == 1
    assert clamp_guest_count(51) == 50
    assert clamp_guest_count("7") == 7
    assert clamp_guest_count("many") == 1
    assert clamp_guest_count(None) == 1
    assert clamp_guest_count(12, 1, 10) == 10


def test_normalize_submission_requires_name_and_affiliation():
    assert normalize_submission(" Ana ", " Acme ", "99") == ("Ana", "Acme", 50)
    with pytest.raises(ValueError, match="Name is required"):
        normalize_submission("   ", "Acme", 1)
    with pytest.raises(ValueError, match="Affiliation is required"):
        normalize_submission("Ana", "", 1)


def test_sort_by_submission_puts_undated_last():
    early = RSVPRecord("a", "Ana", "Acme", 1, datetime(2024, 1, 1, 9, 0))
    late = RSVPRecord("b", "Budi", "Acme", 1, datetime(2024, 1, 2, 9, 0))
    undated = RSVPRecord("c", "Citra", "Acme", 1)
    assert sort_by_submission([undated, late, early]) == [early, late, undated]
