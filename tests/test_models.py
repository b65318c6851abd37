from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

import pytest

from models import GuestSession, Paper, Summary, parse_timestamp


@pytest.mark.parametrize("raw,expected", [
    ("2025-08-07T10:00:00Z", datetime(2025, 8, 7, 10, tzinfo=UTC)),
    ("2025-08-07T12:00:00+02:00", datetime(2025, 8, 7, 10, tzinfo=UTC)),
    ("2025-08-07T10:00:00", datetime(2025, 8, 7, 10, tzinfo=UTC)),
    (datetime(2025, 8, 7, 10, tzinfo=timezone(timedelta(hours=-5))), datetime(2025, 8, 7, 15, tzinfo=UTC)),
])
def test_parse_timestamp(raw: object, expected: datetime) -> None:
    assert parse_timestamp(raw) == expected


@pytest.mark.parametrize("raw", [None, "", "   ", "yesterday", 1723024800])
def test_parse_timestamp_invalid(raw: object) -> None:
    assert parse_timestamp(raw) is None


def test_paper_from_row_maps_user_id_and_defaults() -> None:
    paper = Paper.from_row({
        "id": 42,
        "user_id": "user-1",
        "title": "T",
        "content": None,
        "analysis": None,
        "file_size": "big",
        "created_at": "2025-08-07T00:00:00Z",
    })

    assert paper.id == "42"
    assert paper.owner_id == "user-1"
    assert paper.content == ""
    assert paper.analysis == {}
    assert paper.file_size is None
    assert paper.to_dict()["user_id"] == "user-1"
    assert paper.to_dict()["updated_at"] is None


def test_guest_session_from_dict_requires_user_id() -> None:
    assert GuestSession.from_dict({"display_name": "Guest"}) is None
    session = GuestSession.from_dict({"user_id": "guest_1_2"})
    assert session is not None
    assert session.mode == "guest"
    assert session.to_dict()["display_name"] == "Guest"


def test_summary_from_row_keeps_missing_content_as_none() -> None:
    assert Summary.from_row({"id": "s1", "paper_id": "p1", "target_age": 12, "content": None}).content is None
    assert Summary.from_row({"id": "s2", "paper_id": "p1", "target_age": 12}).content is None
    assert Summary.from_row({"id": "s3", "content": {"executive_summary": "x"}}).content == {"executive_summary": "x"}
