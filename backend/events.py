# events.py — Real-time event vocabulary and wire serialisers
# Messages travel as flat JSON objects: {"type": <event>, ...camelCase payload}
from datetime import datetime, timezone
from typing import Iterable, Optional

from columns import status_from_column_id
from models import BoardColumn, Collection, Project, Board, Task

# --- client → server ---
JOIN_BOARD = "join:board"
LEAVE_BOARD = "leave:board"
TASK_CREATE = "task:create"
TASK_UPDATE = "task:update"
TASK_DELETE = "task:delete"
TASK_MOVE = "task:move"
SUBTASK_CREATE = "subtask:create"
COLLECTION_CREATE = "collection:create"
COLLECTION_UPDATE = "collection:update"
COLLECTION_DELETE = "collection:delete"
COLLECTION_REORDER = "collection:reorder"
START_TYPING = "user:start_typing"
STOP_TYPING = "user:stop_typing"
CURSOR_MOVE = "user:cursor_move"
UPDATE_COLUMNS = "board:update_columns"
PING = "ping"

# --- server → client ---
CONNECTED = "connected"
BOARD_JOINED = "board:joined"
USER_JOINED = "user:joined"
USER_LEFT = "user:left"
TASK_CREATED = "task:created"
TASK_UPDATED = "task:updated"
TASK_DELETED = "task:deleted"
TASK_MOVED = "task:moved"
MOVE_FAILED = "move-failed"
SUBTASK_CREATED = "subtask:created"
COLLECTION_CREATED = "collection:created"
COLLECTION_UPDATED = "collection:updated"
COLLECTION_DELETED = "collection:deleted"
COLLECTION_REORDERED = "collection:reordered"
USER_TYPING = "user:typing"
USER_STOPPED_TYPING = "user:stop_typing"
CURSOR_MOVED = "user:cursor_moved"
COLUMNS_UPDATED = "board:columns_updated"
ERROR = "error"
PONG = "pong"


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _ts(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


def task_to_dict(task: Task, columns: Optional[Iterable[BoardColumn]] = None) -> dict:
    data = {
        "id": task.id,
        "title": task.title,
        "description": task.description,
        "priority": task.priority.value if hasattr(task.priority, "value") else task.priority,
        "projectId": task.project_id,
        "boardId": task.board_id,
        "columnId": task.column_id,
        "collectionId": task.collection_id,
        "parentTaskId": task.parent_task_id,
        "isSubtask": task.is_subtask,
        "order": task.order,
        "assigneeId": task.assignee_id,
        "reporterId": task.reporter_id,
        "labels": task.labels or [],
        "dueDate": _ts(task.due_date),
        "timeTracked": task.time_tracked or 0,
        "dependencies": task.dependencies or [],
        "createdAt": _ts(task.created_at),
        "updatedAt": _ts(task.updated_at),
    }
    if columns is not None:
        data["status"] = status_from_column_id(columns, task.column_id)
    return data


def column_to_dict(column: BoardColumn) -> dict:
    return {
        "id": column.id,
        "name": column.name,
        "color": column.color,
        "order": column.order,
        "taskIds": list(column.task_ids or []),
    }


def board_to_dict(board: Board, columns: Optional[Iterable[BoardColumn]] = None) -> dict:
    cols = list(columns) if columns is not None else list(board.columns)
    return {
        "id": board.id,
        "name": board.name,
        "projectId": board.project_id,
        "columns": [column_to_dict(c) for c in sorted(cols, key=lambda c: c.order)],
        "createdAt": _ts(board.created_at),
        "updatedAt": _ts(board.updated_at),
    }


def collection_to_dict(collection: Collection, task_count: Optional[int] = None) -> dict:
    data = {
        "id": collection.id,
        "name": collection.name,
        "description": collection.description,
        "color": collection.color,
        "projectId": collection.project_id,
        "order": collection.order,
        "isArchived": bool(collection.is_archived),
        "createdBy": collection.created_by,
        "createdAt": _ts(collection.created_at),
        "updatedAt": _ts(collection.updated_at),
    }
    if task_count is not None:
        data["taskCount"] = task_count
    return data


def project_to_dict(project: Project) -> dict:
    return {
        "id": project.id,
        "name": project.name,
        "description": project.description,
        "color": project.color,
        "creatorId": project.creator_id,
        "memberIds": list(project.member_ids or []),
        "createdAt": _ts(project.created_at),
        "updatedAt": _ts(project.updated_at),
    }
