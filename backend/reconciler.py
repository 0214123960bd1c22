# reconciler.py — Drag-and-drop move reconciliation
"""
A move goes through four states:

    Requested -> Broadcast (optimistic) -> Persisting -> Confirmed | Reverted

The optimistic `task:moved` lets other viewers render the drop immediately.
Persisting happens under the board lock and is followed by a re-read of the
column lists; the room then receives either a confirming `task:moved` (with
the index the task really landed at) or a `move-failed` it can use to roll the
card back. Once the optimistic event is out, exactly one of the two follows,
even when the handling task is cancelled.
"""
import asyncio
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from access import require_access
from auth import CurrentUser
from broadcaster import BoardLocks, actor
from columns import detach_everywhere, find_column, insert_task_id
from errors import ColumnNotFound, ConsistencyConflict, ValidationError
from events import MOVE_FAILED, TASK_MOVED, now_iso, task_to_dict
from gateway import PersistenceGateway
from rooms import BoardRoomRegistry, Connection
from schemas import MoveTask
from telemetry import get_tracer

logger = logging.getLogger("flowboard.reconciler")
tracer = get_tracer("flowboard.reconciler")


class DragDropReconciler:

    def __init__(self, rooms: BoardRoomRegistry, locks: BoardLocks, gateway_cls=PersistenceGateway):
        self.rooms = rooms
        self.locks = locks
        self.gateway_cls = gateway_cls

    async def move_task(
        self,
        db: AsyncSession,
        initiator: CurrentUser,
        move: MoveTask,
        connection: Optional[Connection] = None,
    ) -> dict:
        """Move a task between (or within) columns and reconcile the room.

        `connection` is the initiating socket, which already rendered the move and
        is skipped for the optimistic echo. REST callers pass none; every socket of
        the initiating user is skipped instead.
        """
        with tracer.start_as_current_span("task.move") as span:
            span.set_attribute("flowboard.task_id", move.task_id)
            span.set_attribute("flowboard.board_id", move.board_id)
            span.set_attribute("flowboard.to_column_id", move.to_column_id)

            gw = self.gateway_cls(db)

            # Requested: read-only checks so outsiders never reach the room
            task = await gw.get_task(move.task_id)
            board = await gw.get_board(move.board_id)
            if task.board_id != board.id:
                raise ValidationError("Task does not belong to this board")
            project = await gw.get_project(board.project_id)
            require_access(initiator.id, project)

            # Broadcast (optimistic)
            await self.rooms.emit_to_board(board.id, TASK_MOVED, {
                "taskId": move.task_id,
                "fromColumnId": move.from_column_id,
                "toColumnId": move.to_column_id,
                "position": move.position,
                "boardId": board.id,
                "movedBy": actor(initiator),
                "timestamp": now_iso(),
                "optimistic": True,
            }, exclude=connection, exclude_user=None if connection else initiator.id)

            try:
                task, position = await self._persist(gw, initiator, move)
            except (Exception, asyncio.CancelledError) as e:
                await self._revert(gw, move, e)
                raise

            # Confirmed
            span.set_attribute("flowboard.position", position)
            payload = {
                "task": task_to_dict(task),
                "taskId": task.id,
                "fromColumnId": move.from_column_id,
                "toColumnId": move.to_column_id,
                "position": position,
                "boardId": board.id,
                "movedBy": actor(initiator),
                "timestamp": now_iso(),
                "confirmed": True,
            }
            await self.rooms.emit_to_board(board.id, TASK_MOVED, payload)
            logger.info(
                f"Move confirmed: task={task.id[:8]} {move.from_column_id[:8]} -> "
                f"{move.to_column_id[:8]} at {position}"
            )
            return payload

    async def _persist(self, gw: PersistenceGateway, initiator: CurrentUser, move: MoveTask):
        async with self.locks.hold(move.board_id):
            board, columns = await gw.load_board_for_update(move.board_id)
            project = await gw.get_project(board.project_id, fresh=True)
            require_access(initiator.id, project)
            task = await gw.get_task(move.task_id, fresh=True)
            if task.board_id != board.id:
                raise ValidationError("Task does not belong to this board")

            dest = find_column(columns, move.to_column_id)
            if dest is None:
                raise ColumnNotFound("Destination column not found")

            # The client's fromColumnId may be stale; strip the id from every list
            touched = detach_everywhere(columns, [task.id])
            if move.from_column_id not in [c.id for c in touched]:
                logger.debug(f"Move of {task.id[:8]}: task was not in reported column {move.from_column_id}")
            dest.task_ids = insert_task_id(dest.task_ids, task.id, move.position)
            task.column_id = dest.id
            if dest not in touched:
                touched.append(dest)
            await gw.sync_column_order(touched)
            await gw.commit()

            # Verify against what was actually stored
            stored = await gw.get_columns(move.board_id, fresh=True)
            holders = [c for c in stored if task.id in (c.task_ids or [])]
            if len(holders) != 1 or holders[0].id != dest.id or holders[0].task_ids.count(task.id) != 1:
                raise ConsistencyConflict()
            return task, holders[0].task_ids.index(task.id)

    async def _revert(self, gw: PersistenceGateway, move: MoveTask, error: BaseException) -> None:
        try:
            await gw.rollback()
        except Exception as rollback_error:
            logger.error(f"Rollback after failed move raised: {rollback_error}")

        message = getattr(error, "message", None) or str(error) or "Move cancelled"
        logger.warning(f"Move failed: task={move.task_id[:8]} board={move.board_id[:8]}: {message}")
        await self.rooms.emit_to_board(move.board_id, MOVE_FAILED, {
            "taskId": move.task_id,
            "fromColumnId": move.from_column_id,
            "toColumnId": move.to_column_id,
            "boardId": move.board_id,
            "error": message,
            "timestamp": now_iso(),
        })
