# routers/websocket_router.py — Real-time board collaboration
# Protocol: JSON messages {"type": <event>, ...payload} over /ws?token=<jwt>.
# The token is checked once; failures close the socket with 4001 before it is accepted.
import uuid
import logging
from typing import Any, Awaitable, Callable, Dict

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from sqlalchemy.ext.asyncio import AsyncSession

from auth import CurrentUser, authenticate_token
from database import get_session_factory
from errors import AuthenticationRequired, FlowboardError, ValidationError
import events
from realtime import RealtimeHub, get_hub
from schemas import (
    CollectionCreate, CollectionReorder, CollectionUpdate, ColumnIn, MoveTask, SubtaskCreate,
    TaskCreate, TaskUpdate, parse_payload,
)

router = APIRouter(tags=["WebSocket"])
logger = logging.getLogger("flowboard.ws")


class WebSocketConnection:
    """One authenticated socket; the unit the room registry tracks"""

    def __init__(self, websocket: WebSocket, user: CurrentUser):
        self.id = str(uuid.uuid4())
        self.websocket = websocket
        self.user = user

    async def send_json(self, message: Dict[str, Any]) -> None:
        await self.websocket.send_json(message)


def _require(data: dict, *keys: str):
    missing = [k for k in keys if not data.get(k)]
    if missing:
        raise ValidationError(f"Missing required field: {missing[0]}")
    values = tuple(data[k] for k in keys)
    return values[0] if len(values) == 1 else values


# ============================================================
# MESSAGE HANDLERS
# ============================================================

Handler = Callable[[RealtimeHub, WebSocketConnection, AsyncSession, dict], Awaitable[None]]


async def _join_board(hub, conn, db, data):
    await hub.rooms.join(db, conn, _require(data, "boardId"))


async def _leave_board(hub, conn, db, data):
    await hub.rooms.leave(conn, _require(data, "boardId"))


async def _task_create(hub, conn, db, data):
    await hub.broadcaster.create_task(db, conn.user, parse_payload(TaskCreate, data.get("task")))


async def _task_update(hub, conn, db, data):
    task_id = _require(data, "taskId")
    patch = parse_payload(TaskUpdate, data.get("patch") or {})
    position = data.get("position")
    if position is not None and not isinstance(position, int):
        raise ValidationError("position must be an integer")
    await hub.broadcaster.update_task(db, conn.user, task_id, patch, position=position)


async def _task_delete(hub, conn, db, data):
    await hub.broadcaster.delete_task(db, conn.user, _require(data, "taskId"))


async def _task_move(hub, conn, db, data):
    move = parse_payload(MoveTask, {k: v for k, v in data.items() if k != "type"})
    await hub.reconciler.move_task(db, conn.user, move, connection=conn)


async def _subtask_create(hub, conn, db, data):
    parent_task_id = _require(data, "parentTaskId")
    subtask = parse_payload(SubtaskCreate, data.get("subtask"))
    await hub.broadcaster.create_subtask(db, conn.user, parent_task_id, subtask)


async def _collection_create(hub, conn, db, data):
    await hub.broadcaster.create_collection(db, conn.user, parse_payload(CollectionCreate, data.get("collection")))


async def _collection_update(hub, conn, db, data):
    collection_id = _require(data, "collectionId")
    patch = parse_payload(CollectionUpdate, data.get("patch") or {})
    await hub.broadcaster.update_collection(db, conn.user, collection_id, patch)


async def _collection_delete(hub, conn, db, data):
    await hub.broadcaster.delete_collection(
        db, conn.user, _require(data, "collectionId"), data.get("moveTasksToCollection"),
    )


async def _collection_reorder(hub, conn, db, data):
    reorder = parse_payload(CollectionReorder, {k: v for k, v in data.items() if k != "type"})
    await hub.broadcaster.reorder_collections(db, conn.user, reorder.project_id, reorder.collection_ids)


async def _update_columns(hub, conn, db, data):
    board_id = _require(data, "boardId")
    columns = data.get("columns")
    if not isinstance(columns, list):
        raise ValidationError("columns must be a list")
    await hub.broadcaster.update_columns(
        db, conn.user, board_id, [parse_payload(ColumnIn, c) for c in columns],
    )


async def _typing(hub, conn, db, data):
    board_id = hub.rooms.current_board(conn)
    if not board_id:
        return
    task_id = _require(data, "taskId")
    if data["type"] == events.START_TYPING:
        await hub.rooms.emit_to_board(board_id, events.USER_TYPING, {
            "userId": conn.user.id,
            "username": conn.user.username,
            "taskId": task_id,
            "timestamp": events.now_iso(),
        }, exclude=conn)
    else:
        await hub.rooms.emit_to_board(board_id, events.USER_STOPPED_TYPING, {
            "userId": conn.user.id,
            "taskId": task_id,
            "timestamp": events.now_iso(),
        }, exclude=conn)


async def _cursor_move(hub, conn, db, data):
    board_id = hub.rooms.current_board(conn)
    if not board_id or data.get("boardId", board_id) != board_id:
        return
    await hub.rooms.emit_to_board(board_id, events.CURSOR_MOVED, {
        "userId": conn.user.id,
        "username": conn.user.username,
        "x": data.get("x"),
        "y": data.get("y"),
        "boardId": board_id,
        "timestamp": events.now_iso(),
    }, exclude=conn)


async def _ping(hub, conn, db, data):
    await hub.rooms.emit_to_connection(conn, events.PONG, {"timestamp": events.now_iso()})


HANDLERS: Dict[str, Handler] = {
    events.JOIN_BOARD: _join_board,
    events.LEAVE_BOARD: _leave_board,
    events.TASK_CREATE: _task_create,
    events.TASK_UPDATE: _task_update,
    events.TASK_DELETE: _task_delete,
    events.TASK_MOVE: _task_move,
    events.SUBTASK_CREATE: _subtask_create,
    events.COLLECTION_CREATE: _collection_create,
    events.COLLECTION_UPDATE: _collection_update,
    events.COLLECTION_DELETE: _collection_delete,
    events.COLLECTION_REORDER: _collection_reorder,
    events.UPDATE_COLUMNS: _update_columns,
    events.START_TYPING: _typing,
    events.STOP_TYPING: _typing,
    events.CURSOR_MOVE: _cursor_move,
    events.PING: _ping,
}


async def handle_message(hub: RealtimeHub, conn: WebSocketConnection, session_factory, data: Any) -> None:
    """Dispatch one client message; failures are reported to this connection only"""
    if not isinstance(data, dict):
        await hub.rooms.emit_to_connection(conn, events.ERROR, {"message": "Messages must be JSON objects"})
        return
    msg_type = data.get("type", "")
    handler = HANDLERS.get(msg_type)
    if handler is None:
        await hub.rooms.emit_to_connection(conn, events.ERROR, {"message": f"Unknown message type: {msg_type}"})
        return

    try:
        async with session_factory() as db:
            await handler(hub, conn, db, data)
    except FlowboardError as e:
        logger.info(f"{msg_type} rejected for {conn.user.username}: {e.message}")
        await hub.rooms.emit_to_connection(conn, events.ERROR, {
            "message": e.message,
            "code": e.code,
            "event": msg_type,
        })
    except Exception as e:
        logger.error(f"WebSocket handler error ({msg_type}): {e}", exc_info=True)
        await hub.rooms.emit_to_connection(conn, events.ERROR, {
            "message": "Internal server error",
            "event": msg_type,
        })


# ============================================================
# ENDPOINTS
# ============================================================

@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    token: str = Query(None),
    session_factory=Depends(get_session_factory),
):
    """Main WebSocket endpoint for board collaboration"""
    hub: RealtimeHub = websocket.app.state.hub

    try:
        async with session_factory() as db:
            user = await authenticate_token(token, db)
    except AuthenticationRequired as e:
        await websocket.close(code=4001, reason=e.message)
        return

    await websocket.accept()
    conn = WebSocketConnection(websocket, user)
    hub.rooms.register(conn)
    logger.info(f"WS connected: user={user.username} conn={conn.id[:8]}")

    await hub.rooms.emit_to_connection(conn, events.CONNECTED, {
        "userId": user.id,
        "username": user.username,
        "connectionId": conn.id,
        "timestamp": events.now_iso(),
    })

    try:
        while True:
            data = await websocket.receive_json()
            await handle_message(hub, conn, session_factory, data)
    except WebSocketDisconnect:
        logger.info(f"WS disconnected: user={user.username} conn={conn.id[:8]}")
    except Exception as e:
        logger.error(f"WebSocket error: {e}")
    finally:
        await hub.rooms.disconnect(conn)


@router.get("/ws/stats")
async def websocket_stats(hub: RealtimeHub = Depends(get_hub)):
    """Get WebSocket connection statistics"""
    return hub.rooms.stats()
