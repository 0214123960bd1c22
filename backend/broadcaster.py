# broadcaster.py — Mutation broadcaster
# Every mutation runs: access check -> persist -> broadcast.
# Nothing is broadcast unless the write committed; errors propagate to the caller.
# Column task-id lists are only rewritten while holding that board's lock.
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from access import require_access
from auth import CurrentUser
from columns import (
    column_id_from_status, detach_everywhere, duplicate_task_ids, find_column, insert_task_id,
)
from errors import BoardMismatch, ColumnNotFound, ValidationError
from events import (
    COLLECTION_CREATED, COLLECTION_DELETED, COLLECTION_REORDERED, COLLECTION_UPDATED,
    COLUMNS_UPDATED, SUBTASK_CREATED, TASK_CREATED, TASK_DELETED, TASK_MOVED, TASK_UPDATED,
    collection_to_dict, column_to_dict, now_iso, task_to_dict,
)
from gateway import PersistenceGateway
from models import BoardColumn, Collection, Task, TaskPriority
from rooms import BoardRoomRegistry
from schemas import (
    CollectionCreate, CollectionUpdate, ColumnIn, SubtaskCreate, TaskCreate, TaskUpdate,
)

logger = logging.getLogger("flowboard.broadcaster")


class BoardLocks:
    """One asyncio.Lock per board id, serialising column list read-modify-write"""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}

    def get(self, board_id: str) -> asyncio.Lock:
        lock = self._locks.get(board_id)
        if lock is None:
            lock = self._locks[board_id] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def hold(self, board_id: str):
        async with self.get(board_id):
            yield

    def discard(self, board_id: str) -> None:
        lock = self._locks.get(board_id)
        if lock is not None and not lock.locked():
            del self._locks[board_id]

    def __len__(self):
        return len(self._locks)


def actor(user: CurrentUser) -> dict:
    return {"userId": user.id, "username": user.username}


class MutationBroadcaster:

    def __init__(self, rooms: BoardRoomRegistry, locks: BoardLocks, gateway_cls=PersistenceGateway):
        self.rooms = rooms
        self.locks = locks
        self.gateway_cls = gateway_cls

    # ============================================================
    # TASKS
    # ============================================================

    async def _insert_new_task(
        self, gw: PersistenceGateway, board_id: str, task: Task,
        column_id: Optional[str], status: Optional[str],
    ) -> List[BoardColumn]:
        """Persist a new task and append it to its column, under the board lock"""
        async with self.locks.hold(board_id):
            _, columns = await gw.load_board_for_update(board_id)
            if not column_id:
                column_id = column_id_from_status(columns, status)
            column = None
            if column_id:
                column = find_column(columns, column_id)
                if column is None:
                    raise ColumnNotFound()
                task.column_id = column.id
                task.order = len(column.task_ids or [])
            gw.add(task)
            await gw.flush()
            if column is not None:
                column.task_ids = insert_task_id(column.task_ids, task.id)
            await gw.commit()
        return columns

    async def create_task(self, db: AsyncSession, initiator: CurrentUser, data: TaskCreate) -> dict:
        gw = self.gateway_cls(db)
        project = await gw.get_project(data.project_id)
        require_access(initiator.id, project)
        board = await gw.get_board(data.board_id)
        if board.project_id != project.id:
            raise BoardMismatch()
        if data.collection_id:
            collection = await gw.get_collection(data.collection_id)
            if collection.project_id != project.id:
                raise ValidationError("Collection does not belong to this project")

        task = Task(
            title=data.title,
            description=data.description,
            priority=TaskPriority(data.priority),
            project_id=project.id,
            board_id=board.id,
            collection_id=data.collection_id,
            assignee_id=data.assignee_id,
            reporter_id=initiator.id,
            labels=[label.model_dump() for label in data.labels],
            due_date=data.due_date,
            time_tracked=data.time_tracked,
            dependencies=list(data.dependencies),
        )
        columns = await self._insert_new_task(gw, board.id, task, data.column_id, data.status)
        logger.info(f"Task created: {task.id[:8]} '{task.title}' board={board.id[:8]}")

        payload = task_to_dict(task, columns)
        await self.rooms.emit_to_board(board.id, TASK_CREATED, {
            "task": payload,
            "createdBy": actor(initiator),
            "timestamp": now_iso(),
        })
        return payload

    async def create_subtask(
        self, db: AsyncSession, initiator: CurrentUser, parent_task_id: str, data: SubtaskCreate,
    ) -> dict:
        gw = self.gateway_cls(db)
        parent = await gw.get_task(parent_task_id)
        project = await gw.get_project(parent.project_id)
        require_access(initiator.id, project)

        subtask = Task(
            title=data.title,
            description=data.description,
            priority=TaskPriority(data.priority),
            project_id=parent.project_id,
            board_id=parent.board_id,
            collection_id=parent.collection_id,
            parent_task_id=parent.id,
            assignee_id=data.assignee_id,
            reporter_id=initiator.id,
            labels=[label.model_dump() for label in data.labels],
            due_date=data.due_date,
        )
        columns = await self._insert_new_task(gw, parent.board_id, subtask, data.column_id, data.status)
        logger.info(f"Subtask created: {subtask.id[:8]} parent={parent.id[:8]}")

        payload = task_to_dict(subtask, columns)
        await self.rooms.emit_to_board(parent.board_id, SUBTASK_CREATED, {
            "task": payload,
            "parentTaskId": parent.id,
            "createdBy": actor(initiator),
            "timestamp": now_iso(),
        })
        return payload

    async def update_task(
        self,
        db: AsyncSession,
        initiator: CurrentUser,
        task_id: str,
        update: TaskUpdate,
        position: Optional[int] = None,
    ) -> dict:
        """Apply a patch; a column change (or an explicit position) turns it into a move"""
        gw = self.gateway_cls(db)
        task = await gw.get_task(task_id)
        project = await gw.get_project(task.project_id)
        require_access(initiator.id, project)

        patch = update.patch()
        if patch.get("collection_id"):
            collection = await gw.get_collection(patch["collection_id"])
            if collection.project_id != project.id:
                raise ValidationError("Collection does not belong to this project")

        board_id = task.board_id
        async with self.locks.hold(board_id):
            _, columns = await gw.load_board_for_update(board_id)
            task = await gw.get_task(task_id, fresh=True)
            from_column_id = task.column_id
            to_column_id = patch.pop("column_id", from_column_id)
            is_move = to_column_id != from_column_id or position is not None

            dest = find_column(columns, to_column_id) if to_column_id else None
            if is_move and to_column_id and dest is None:
                raise ColumnNotFound()

            for field, value in patch.items():
                if field == "priority":
                    value = TaskPriority(value)
                setattr(task, field, value)

            actual_position = None
            if is_move:
                touched = detach_everywhere(columns, [task.id])
                if dest is not None:
                    dest.task_ids = insert_task_id(dest.task_ids, task.id, position)
                    actual_position = dest.task_ids.index(task.id)
                    touched.append(dest)
                task.column_id = to_column_id
                await gw.sync_column_order(touched)
            await gw.commit()

        payload = task_to_dict(task, columns)
        if is_move:
            logger.info(
                f"Task moved via update: {task.id[:8]} {from_column_id} -> {to_column_id} "
                f"at {actual_position}"
            )
            await self.rooms.emit_to_board(board_id, TASK_MOVED, {
                "task": payload,
                "taskId": task.id,
                "fromColumnId": from_column_id,
                "toColumnId": to_column_id,
                "position": actual_position,
                "boardId": board_id,
                "movedBy": actor(initiator),
                "timestamp": now_iso(),
            })
        else:
            await self.rooms.emit_to_board(board_id, TASK_UPDATED, {
                "task": payload,
                "updatedBy": actor(initiator),
                "changes": update.changes(),
                "timestamp": now_iso(),
            })
        return payload

    async def delete_task(self, db: AsyncSession, initiator: CurrentUser, task_id: str) -> dict:
        gw = self.gateway_cls(db)
        task = await gw.get_task(task_id)
        project = await gw.get_project(task.project_id)
        require_access(initiator.id, project)

        board_id, title = task.board_id, task.title
        async with self.locks.hold(board_id):
            _, columns = await gw.load_board_for_update(board_id)

            # Collect the task and every descendant subtask
            doomed, frontier = [task.id], [task.id]
            while frontier:
                children = []
                for parent_id in frontier:
                    children.extend(t.id for t in await gw.find_tasks(parent_task_id=parent_id))
                children = [c for c in children if c not in doomed]
                doomed.extend(children)
                frontier = children

            touched = detach_everywhere(columns, doomed)
            await gw.delete_tasks(doomed)
            await gw.sync_column_order(touched)
            await gw.commit()

        logger.info(f"Task deleted: {task_id[:8]} (+{len(doomed) - 1} subtasks)")
        snapshot = {"id": task_id, "title": title}
        await self.rooms.emit_to_board(board_id, TASK_DELETED, {
            "taskId": task_id,
            "task": snapshot,
            "deletedBy": actor(initiator),
            "timestamp": now_iso(),
        })
        return snapshot

    # ============================================================
    # COLUMNS
    # ============================================================

    async def update_columns(
        self, db: AsyncSession, initiator: CurrentUser, board_id: str, columns_in: List[ColumnIn],
    ) -> List[dict]:
        """Replace a board's column set.

        Columns matched by id are updated, columns without an id are created and
        columns missing from the new set are removed with their tasks detached.
        task_ids given for a column replace its list; omitted, the list is kept.
        """
        gw = self.gateway_cls(db)
        board = await gw.get_board(board_id)
        project = await gw.get_project(board.project_id)
        require_access(initiator.id, project)
        if not columns_in:
            raise ValidationError("A board needs at least one column")

        async with self.locks.hold(board_id):
            _, existing = await gw.load_board_for_update(board_id)
            by_id = {c.id: c for c in existing}

            unknown = [c.id for c in columns_in if c.id and c.id not in by_id]
            if unknown:
                raise ColumnNotFound(f"Column not found on this board: {unknown[0]}")

            proposed = [
                c.task_ids if c.task_ids is not None else (by_id[c.id].task_ids if c.id else [])
                for c in columns_in
            ]
            dupes = duplicate_task_ids(proposed)
            if dupes:
                raise ValidationError(f"Task {dupes[0]} cannot be placed in more than one column")

            kept_ids = {c.id for c in columns_in if c.id}
            removed = [c for c in existing if c.id not in kept_ids]
            for col in removed:
                await gw.detach_column(col.id)
                await gw.delete(col)

            result: List[BoardColumn] = []
            for index, (col_in, task_ids) in enumerate(zip(columns_in, proposed)):
                col = by_id.get(col_in.id) if col_in.id else None
                if col is None:
                    col = BoardColumn(board_id=board_id)
                    gw.add(col)
                col.name = col_in.name
                col.color = col_in.color
                col.order = col_in.order if col_in.order is not None else index
                col.task_ids = list(task_ids or [])
                result.append(col)
            await gw.flush()

            # Tasks dropped from every list lose their column reference
            placed = {tid for ids in proposed for tid in (ids or [])}
            board_tasks = await gw.find_tasks(board_id=board_id)
            for task in board_tasks:
                if task.id not in placed and task.column_id is not None:
                    task.column_id = None
            await gw.sync_column_order(result)
            await gw.commit()

        result.sort(key=lambda c: c.order)
        payload = [column_to_dict(c) for c in result]
        logger.info(f"Columns updated: board={board_id[:8]} count={len(payload)} removed={len(removed)}")
        await self.rooms.emit_to_board(board_id, COLUMNS_UPDATED, {
            "boardId": board_id,
            "columns": payload,
            "updatedBy": actor(initiator),
            "timestamp": now_iso(),
        })
        return payload

    # ============================================================
    # COLLECTIONS
    # ============================================================

    async def create_collection(self, db: AsyncSession, initiator: CurrentUser, data: CollectionCreate) -> dict:
        gw = self.gateway_cls(db)
        project = await gw.get_project(data.project_id)
        require_access(initiator.id, project)
        if await gw.collection_name_taken(project.id, data.name):
            raise ValidationError("A collection with this name already exists in this project")

        collection = Collection(
            name=data.name,
            description=data.description,
            color=data.color,
            project_id=project.id,
            order=await gw.next_collection_order(project.id),
            created_by=initiator.id,
        )
        gw.add(collection)
        await gw.commit()
        logger.info(f"Collection created: {collection.id[:8]} '{collection.name}'")

        payload = collection_to_dict(collection, task_count=0)
        await self.rooms.emit_to_project(project.id, COLLECTION_CREATED, {
            "collection": payload,
            "createdBy": actor(initiator),
            "timestamp": now_iso(),
        })
        return payload

    async def update_collection(
        self, db: AsyncSession, initiator: CurrentUser, collection_id: str, update: CollectionUpdate,
    ) -> dict:
        gw = self.gateway_cls(db)
        collection = await gw.get_collection(collection_id)
        project = await gw.get_project(collection.project_id)
        require_access(initiator.id, project)

        patch = update.model_dump(exclude_unset=True)
        if patch.get("name") and await gw.collection_name_taken(project.id, patch["name"], exclude_id=collection.id):
            raise ValidationError("A collection with this name already exists in this project")
        for field, value in patch.items():
            setattr(collection, field, value)
        await gw.commit()

        payload = collection_to_dict(collection)
        await self.rooms.emit_to_project(project.id, COLLECTION_UPDATED, {
            "collection": payload,
            "updatedBy": actor(initiator),
            "changes": update.model_dump(exclude_unset=True, by_alias=True),
            "timestamp": now_iso(),
        })
        return payload

    async def delete_collection(
        self,
        db: AsyncSession,
        initiator: CurrentUser,
        collection_id: str,
        move_tasks_to: Optional[str] = None,
    ) -> dict:
        """Delete a collection, reassigning its tasks to move_tasks_to or ungrouping them"""
        gw = self.gateway_cls(db)
        collection = await gw.get_collection(collection_id)
        project = await gw.get_project(collection.project_id)
        require_access(initiator.id, project)
        if move_tasks_to:
            if move_tasks_to == collection.id:
                raise ValidationError("Cannot move tasks into the collection being deleted")
            target = await gw.get_collection(move_tasks_to)
            if target.project_id != project.id:
                raise ValidationError("Target collection belongs to another project")

        name = collection.name
        await gw.reassign_collection(collection.id, move_tasks_to or None)
        await gw.delete(collection)
        await gw.commit()
        logger.info(f"Collection deleted: {collection_id[:8]} tasks -> {move_tasks_to or 'ungrouped'}")

        result = {
            "collectionId": collection_id,
            "collection": {"name": name},
            "movedToCollection": move_tasks_to or None,
        }
        await self.rooms.emit_to_project(project.id, COLLECTION_DELETED, {
            **result,
            "deletedBy": actor(initiator),
            "timestamp": now_iso(),
        })
        return result

    async def reorder_collections(
        self, db: AsyncSession, initiator: CurrentUser, project_id: str, collection_ids: List[str],
    ) -> List[dict]:
        gw = self.gateway_cls(db)
        project = await gw.get_project(project_id)
        require_access(initiator.id, project)

        collections = {c.id: c for c in await gw.find_collections(project_id, include_archived=True)}
        missing = [cid for cid in collection_ids if cid not in collections]
        if missing:
            raise ValidationError(f"Collection {missing[0]} does not belong to this project")
        for index, cid in enumerate(collection_ids):
            collections[cid].order = index
        await gw.commit()

        ordered = sorted(collections.values(), key=lambda c: c.order)
        payload = [collection_to_dict(c) for c in ordered]
        await self.rooms.emit_to_project(project_id, COLLECTION_REORDERED, {
            "projectId": project_id,
            "collections": payload,
            "reorderedBy": actor(initiator),
            "timestamp": now_iso(),
        })
        return payload
