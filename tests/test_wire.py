from __future__ import annotations

from datetime import date
from types import SimpleNamespace

from storymap.wire import apply_changes, from_wire, to_wire


def test_from_wire_keeps_only_writable_keys_that_were_sent() -> None:
    changes = from_wire(
        "release",
        {"name": "MVP", "is_unassigned": True, "sort_order": 3, "id": "x", "unknown": 1},
    )

    assert changes == {"name": "MVP"}


def test_explicit_null_is_kept_only_for_nullable_columns() -> None:
    changes = from_wire("story", {"title": None, "size": None, "label_id": None, "status": None})

    assert changes == {"size": None, "label_id": None}


def test_release_dates_can_be_cleared() -> None:
    assert from_wire("release", {"due_date": None, "start_date": date(2026, 1, 5)}) == {
        "due_date": None,
        "start_date": date(2026, 1, 5),
    }


def test_to_wire_renders_the_field_table_with_extras() -> None:
    row = SimpleNamespace(id=1, story_map_id=2, name="ux", color="#fff", created_at=None)

    assert to_wire("tag", row, usage=4) == {
        "id": 1,
        "story_map_id": 2,
        "name": "ux",
        "color": "#fff",
        "created_at": None,
        "usage": 4,
    }


def test_apply_changes_reports_only_real_changes() -> None:
    row = SimpleNamespace(title="Pay", status="READY")

    touched = apply_changes(row, {"title": "Pay", "status": "DONE"})

    assert touched == ["status"]
    assert row.status == "DONE"
