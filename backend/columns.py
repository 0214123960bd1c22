# columns.py — Ordering helpers for board columns
"""
Pure list operations over column task-id arrays.

Every function returns a new list instead of mutating its argument: the lists
live in SQLAlchemy JSON columns, which only detect reassignment.
"""
from typing import Iterable, List, Optional

from models import BoardColumn, DEFAULT_COLUMNS

# Column names a status alias may resolve to, checked case-insensitively
STATUS_ALIASES = {
    "todo": ["to do", "todo", "backlog", "new"],
    "in-progress": ["in progress", "in development", "working", "active"],
    "done": ["done", "complete", "finished", "closed"],
}


def remove_task_id(task_ids: Optional[List[str]], task_id: str) -> List[str]:
    return [tid for tid in (task_ids or []) if tid != task_id]


def insert_task_id(task_ids: Optional[List[str]], task_id: str, position: Optional[int] = None) -> List[str]:
    """Insert task_id at position; None, negative or past-the-end appends.

    Any existing occurrence is dropped first so the id ends up exactly once.
    """
    result = remove_task_id(task_ids, task_id)
    if position is None or position < 0 or position >= len(result):
        result.append(task_id)
    else:
        result.insert(position, task_id)
    return result


def find_column_containing(columns: Iterable[BoardColumn], task_id: str) -> Optional[BoardColumn]:
    for col in columns:
        if task_id in (col.task_ids or []):
            return col
    return None


def find_column(columns: Iterable[BoardColumn], column_id: str) -> Optional[BoardColumn]:
    for col in columns:
        if col.id == column_id:
            return col
    return None


def detach_everywhere(columns: Iterable[BoardColumn], task_ids: Iterable[str]) -> List[BoardColumn]:
    """Strip the given ids from every column; returns the columns that changed"""
    drop = set(task_ids)
    touched = []
    for col in columns:
        current = col.task_ids or []
        kept = [tid for tid in current if tid not in drop]
        if len(kept) != len(current):
            col.task_ids = kept
            touched.append(col)
    return touched


def duplicate_task_ids(column_task_lists: Iterable[Iterable[str]]) -> List[str]:
    """Ids referenced more than once across (or within) the given lists"""
    seen, dupes = set(), []
    for task_ids in column_task_lists:
        for tid in task_ids or []:
            if tid in seen and tid not in dupes:
                dupes.append(tid)
            seen.add(tid)
    return dupes


def default_columns() -> List[dict]:
    return [dict(col) for col in DEFAULT_COLUMNS]


def column_id_from_status(columns: Iterable[BoardColumn], status: Optional[str]) -> Optional[str]:
    """Map a status such as 'todo' / 'in-progress' / 'done' to a column id.

    Unknown statuses fall back to an exact (case-insensitive) column name match.
    """
    if not status:
        return None
    columns = list(columns)
    key = status.strip().lower()
    for name in STATUS_ALIASES.get(key, [key]):
        for col in columns:
            if (col.name or "").strip().lower() == name:
                return col.id
    return None


def status_from_column_id(columns: Iterable[BoardColumn], column_id: Optional[str]) -> str:
    """Display status of a task: the name of the column holding it"""
    col = find_column(columns, column_id) if column_id else None
    return col.name if col is not None else "Unknown"
