# tests/test_columns.py — Column ordering helpers
from models import BoardColumn
from columns import (
    column_id_from_status, default_columns, detach_everywhere, duplicate_task_ids,
    find_column_containing, insert_task_id, remove_task_id, status_from_column_id,
)


def _columns(*names):
    return [BoardColumn(id=f"c{i}", name=name, order=i, task_ids=[]) for i, name in enumerate(names)]


def test_insert_at_position():
    assert insert_task_id(["a", "b"], "t", 1) == ["a", "t", "b"]
    assert insert_task_id(["a", "b"], "t", 0) == ["t", "a", "b"]


def test_insert_clamps_to_append():
    assert insert_task_id(["a", "b"], "t", 99) == ["a", "b", "t"]
    assert insert_task_id(["a", "b"], "t", None) == ["a", "b", "t"]
    assert insert_task_id(["a", "b"], "t", -1) == ["a", "b", "t"]
    assert insert_task_id(None, "t", 3) == ["t"]


def test_insert_never_duplicates():
    assert insert_task_id(["t", "a", "b"], "t", 2) == ["a", "b", "t"]
    assert insert_task_id(["a", "t"], "t", 0) == ["t", "a"]


def test_insert_returns_new_list():
    original = ["a"]
    result = insert_task_id(original, "t")
    assert original == ["a"]
    assert result is not original


def test_remove_task_id():
    assert remove_task_id(["a", "t", "b"], "t") == ["a", "b"]
    assert remove_task_id(["a"], "missing") == ["a"]
    assert remove_task_id(None, "t") == []


def test_detach_everywhere_reports_touched_columns():
    cols = _columns("To Do", "In Progress", "Done")
    cols[0].task_ids = ["a", "t"]
    cols[2].task_ids = ["t"]
    touched = detach_everywhere(cols, ["t"])
    assert [c.id for c in touched] == ["c0", "c2"]
    assert cols[0].task_ids == ["a"]
    assert cols[2].task_ids == []


def test_find_column_containing():
    cols = _columns("To Do", "Done")
    cols[1].task_ids = ["x"]
    assert find_column_containing(cols, "x").id == "c1"
    assert find_column_containing(cols, "y") is None


def test_duplicate_task_ids():
    assert duplicate_task_ids([["a", "b"], ["c"]]) == []
    assert duplicate_task_ids([["a", "b"], ["b"]]) == ["b"]
    assert duplicate_task_ids([["a", "a"]]) == ["a"]


def test_status_aliases_resolve_to_columns():
    cols = _columns("Backlog", "Working", "Closed")
    assert column_id_from_status(cols, "todo") == "c0"
    assert column_id_from_status(cols, "in-progress") == "c1"
    assert column_id_from_status(cols, "DONE") == "c2"


def test_unknown_status_matches_column_name():
    cols = _columns("To Do", "Review")
    assert column_id_from_status(cols, "review") == "c1"
    assert column_id_from_status(cols, "qa") is None
    assert column_id_from_status(cols, None) is None


def test_status_from_column_id():
    cols = _columns("To Do", "Done")
    assert status_from_column_id(cols, "c1") == "Done"
    assert status_from_column_id(cols, "nope") == "Unknown"
    assert status_from_column_id(cols, None) == "Unknown"


def test_default_columns_are_copies():
    first = default_columns()
    first[0]["name"] = "Changed"
    assert [c["name"] for c in default_columns()] == ["To Do", "In Progress", "Done"]
    assert [c["color"] for c in default_columns()] == ["#EF4444", "#F59E0B", "#10B981"]
