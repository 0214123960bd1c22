# gateway.py — Persistence gateway over the async SQLAlchemy session
# - Lookups raise the matching NotFound error instead of returning None
# - commit() rolls back and raises PersistenceFailure on any database error
# - Column lists are always reassigned, never mutated in place (JSON columns
#   only track reassignment)
import logging
from typing import Dict, Iterable, List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from errors import (
    BoardNotFound, CollectionNotFound, PersistenceFailure, ProjectNotFound, TaskNotFound,
)
from columns import default_columns
from models import Board, BoardColumn, Collection, Project, Task, User

logger = logging.getLogger("flowboard.gateway")


class PersistenceGateway:
    """Thin repository used by routers, the broadcaster and the reconciler"""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def _one(self, stmt, fresh: bool):
        if fresh:
            stmt = stmt.execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_project(self, project_id: str, fresh: bool = False) -> Project:
        project = await self._one(select(Project).where(Project.id == project_id), fresh)
        if not project:
            raise ProjectNotFound()
        return project

    async def get_board(self, board_id: str, fresh: bool = False) -> Board:
        board = await self._one(select(Board).where(Board.id == board_id), fresh)
        if not board:
            raise BoardNotFound()
        return board

    async def get_task(self, task_id: str, fresh: bool = False) -> Task:
        task = await self._one(select(Task).where(Task.id == task_id), fresh)
        if not task:
            raise TaskNotFound()
        return task

    async def get_collection(self, collection_id: str, fresh: bool = False) -> Collection:
        collection = await self._one(select(Collection).where(Collection.id == collection_id), fresh)
        if not collection:
            raise CollectionNotFound()
        return collection

    async def get_columns(self, board_id: str, fresh: bool = False) -> List[BoardColumn]:
        stmt = (
            select(BoardColumn)
            .where(BoardColumn.board_id == board_id)
            .order_by(BoardColumn.order, BoardColumn.id)
        )
        if fresh:
            stmt = stmt.execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def load_board_for_update(self, board_id: str):
        """Re-read a board and its columns from the database, discarding cached state.

        Callers hold the board's lock; anything read here is current as of the lock.
        """
        board = await self.get_board(board_id, fresh=True)
        columns = await self.get_columns(board_id, fresh=True)
        return board, columns

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def find_projects_for_user(self, user_id: str) -> List[Project]:
        result = await self.db.execute(select(Project).order_by(Project.created_at.desc()))
        # member_ids is a JSON list; membership is filtered in Python for portability
        return [
            p for p in result.scalars().all()
            if p.creator_id == user_id or user_id in (p.member_ids or [])
        ]

    async def find_users(self, user_ids: Iterable[str]) -> List[User]:
        ids = list(user_ids)
        if not ids:
            return []
        result = await self.db.execute(select(User).where(User.id.in_(ids)))
        return list(result.scalars().all())

    async def find_boards(self, project_ids: Iterable[str]) -> List[Board]:
        ids = list(project_ids)
        if not ids:
            return []
        stmt = select(Board).where(Board.project_id.in_(ids)).order_by(Board.created_at)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def find_tasks(
        self,
        project_id: Optional[str] = None,
        project_ids: Optional[Iterable[str]] = None,
        board_id: Optional[str] = None,
        column_id: Optional[str] = None,
        collection_id: Optional[str] = None,
        parent_task_id: Optional[str] = None,
        top_level_only: bool = False,
    ) -> List[Task]:
        """Filter tasks, ordered by `order` then creation time"""
        stmt = select(Task)
        if project_id:
            stmt = stmt.where(Task.project_id == project_id)
        if project_ids is not None:
            stmt = stmt.where(Task.project_id.in_(list(project_ids)))
        if board_id:
            stmt = stmt.where(Task.board_id == board_id)
        if column_id:
            stmt = stmt.where(Task.column_id == column_id)
        if collection_id:
            stmt = stmt.where(Task.collection_id == collection_id)
        if parent_task_id:
            stmt = stmt.where(Task.parent_task_id == parent_task_id)
        elif top_level_only:
            stmt = stmt.where(Task.parent_task_id.is_(None))
        stmt = stmt.order_by(Task.order, Task.created_at)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def find_collections(self, project_id: str, include_archived: bool = False) -> List[Collection]:
        stmt = select(Collection).where(Collection.project_id == project_id)
        if not include_archived:
            stmt = stmt.where(Collection.is_archived.is_(False))
        stmt = stmt.order_by(Collection.order, Collection.created_at)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def count_collection_tasks(self, collection_ids: Iterable[str]) -> Dict[str, int]:
        ids = list(collection_ids)
        counts = {cid: 0 for cid in ids}
        if not ids:
            return counts
        result = await self.db.execute(select(Task.collection_id).where(Task.collection_id.in_(ids)))
        for (cid,) in result.all():
            counts[cid] += 1
        return counts

    async def collection_name_taken(self, project_id: str, name: str, exclude_id: Optional[str] = None) -> bool:
        stmt = select(Collection.id).where(
            Collection.project_id == project_id, Collection.name == name
        )
        if exclude_id:
            stmt = stmt.where(Collection.id != exclude_id)
        result = await self.db.execute(stmt)
        return result.first() is not None

    async def next_collection_order(self, project_id: str) -> int:
        collections = await self.find_collections(project_id, include_archived=True)
        return max((c.order for c in collections), default=-1) + 1

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def add(self, obj) -> None:
        self.db.add(obj)

    async def flush(self) -> None:
        try:
            await self.db.flush()
        except SQLAlchemyError as e:
            await self.rollback()
            logger.error(f"Flush failed: {e}")
            raise PersistenceFailure() from e

    async def add_board(self, project_id: str, name: str, columns: Optional[List[dict]] = None):
        """Create a board with the given columns (the three defaults when none)"""
        board = Board(project_id=project_id, name=name)
        self.add(board)
        await self.flush()
        created = []
        for index, col_def in enumerate(columns or default_columns()):
            order = col_def.get("order")
            col = BoardColumn(
                board_id=board.id,
                name=col_def["name"],
                color=col_def.get("color") or "#6B7280",
                order=index if order is None else order,
                task_ids=[],
            )
            self.add(col)
            created.append(col)
        await self.flush()
        return board, sorted(created, key=lambda c: c.order)

    async def delete(self, obj) -> None:
        await self.db.delete(obj)

    async def delete_tasks(self, task_ids: Iterable[str]) -> None:
        ids = list(task_ids)
        if ids:
            await self.db.execute(delete(Task).where(Task.id.in_(ids)))

    async def delete_board(self, board_id: str) -> None:
        await self.db.execute(delete(Task).where(Task.board_id == board_id))
        await self.db.execute(delete(BoardColumn).where(BoardColumn.board_id == board_id))
        await self.db.execute(delete(Board).where(Board.id == board_id))

    async def delete_project(self, project_id: str) -> None:
        await self.db.execute(delete(Task).where(Task.project_id == project_id))
        board_ids = select(Board.id).where(Board.project_id == project_id)
        await self.db.execute(delete(BoardColumn).where(BoardColumn.board_id.in_(board_ids)))
        await self.db.execute(delete(Board).where(Board.project_id == project_id))
        await self.db.execute(delete(Collection).where(Collection.project_id == project_id))
        await self.db.execute(delete(Project).where(Project.id == project_id))

    async def reassign_collection(self, collection_id: str, target_id: Optional[str]) -> None:
        """Point every task of a collection at target_id (None detaches them)"""
        await self.db.execute(
            update(Task)
            .where(Task.collection_id == collection_id)
            .values(collection_id=target_id)
            .execution_options(synchronize_session="fetch")
        )

    async def detach_column(self, column_id: str) -> None:
        await self.db.execute(
            update(Task)
            .where(Task.column_id == column_id)
            .values(column_id=None)
            .execution_options(synchronize_session="fetch")
        )

    async def sync_column_order(self, columns: Iterable[BoardColumn]) -> None:
        """Rewrite Task.order for every member of the given columns to its index"""
        for col in columns:
            task_ids = list(col.task_ids or [])
            if not task_ids:
                continue
            result = await self.db.execute(select(Task).where(Task.id.in_(task_ids)))
            by_id = {t.id: t for t in result.scalars().all()}
            for index, tid in enumerate(task_ids):
                task = by_id.get(tid)
                if task is not None:
                    task.order = index
                    task.column_id = col.id

    async def commit(self) -> None:
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.rollback()
            logger.error(f"Commit failed: {e}")
            raise PersistenceFailure() from e

    async def rollback(self) -> None:
        await self.db.rollback()

    async def refresh(self, obj) -> None:
        await self.db.refresh(obj)
