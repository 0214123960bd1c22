# routers/boards.py — Boards and their column sets
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from access import require_access, require_owner
from auth import CurrentUser, get_current_user
from database import get_db_session
from events import board_to_dict, task_to_dict
from gateway import PersistenceGateway
from realtime import RealtimeHub, get_hub
from schemas import BoardCreate, BoardUpdate, ColumnsUpdate

router = APIRouter(prefix="/api/boards", tags=["Boards"])
logger = logging.getLogger("flowboard.boards")


@router.get("")
async def list_boards(
    project_id: Optional[str] = Query(None, alias="projectId"),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Boards of every accessible project, or of one project when projectId is given"""
    gw = PersistenceGateway(db)
    if project_id:
        project = await gw.get_project(project_id)
        require_access(user.id, project)
        project_ids = [project.id]
    else:
        project_ids = [p.id for p in await gw.find_projects_for_user(user.id)]

    boards = await gw.find_boards(project_ids)
    data = [board_to_dict(b, await gw.get_columns(b.id)) for b in boards]
    return {"success": True, "data": data}


@router.get("/{board_id}")
async def get_board(
    board_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Board with columns and its tasks, each task carrying a status"""
    gw = PersistenceGateway(db)
    board = await gw.get_board(board_id)
    project = await gw.get_project(board.project_id)
    require_access(user.id, project)

    columns = await gw.get_columns(board.id)
    tasks = await gw.find_tasks(board_id=board.id)
    payload = board_to_dict(board, columns)
    payload["tasks"] = [task_to_dict(t, columns) for t in tasks]
    return {"success": True, "data": payload}


@router.post("", status_code=201)
async def create_board(
    data: BoardCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    gw = PersistenceGateway(db)
    project = await gw.get_project(data.project_id)
    require_access(user.id, project)

    columns = [c.model_dump(include={"name", "color", "order"}) for c in data.columns] if data.columns else None
    board, created = await gw.add_board(project.id, data.name, columns)
    await gw.commit()
    logger.info(f"Board created: {board.id[:8]} '{board.name}' project={project.id[:8]}")
    return {"success": True, "data": board_to_dict(board, created)}


@router.put("/{board_id}")
async def update_board(
    board_id: str,
    data: BoardUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    gw = PersistenceGateway(db)
    board = await gw.get_board(board_id)
    project = await gw.get_project(board.project_id)
    require_access(user.id, project)

    if data.name:
        board.name = data.name
    await gw.commit()
    return {"success": True, "data": board_to_dict(board, await gw.get_columns(board.id))}


@router.put("/{board_id}/columns")
async def update_columns(
    board_id: str,
    data: ColumnsUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    hub: RealtimeHub = Depends(get_hub),
):
    """Replace the board's columns and notify the board room"""
    columns = await hub.broadcaster.update_columns(db, user, board_id, data.columns)
    return {"success": True, "data": {"boardId": board_id, "columns": columns}}


@router.delete("/{board_id}")
async def delete_board(
    board_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    hub: RealtimeHub = Depends(get_hub),
):
    """Delete a board with its columns and tasks (project creator only)"""
    gw = PersistenceGateway(db)
    board = await gw.get_board(board_id)
    project = await gw.get_project(board.project_id)
    require_owner(user.id, project, "Only the project creator can delete boards")

    async with hub.locks.hold(board.id):
        await gw.delete_board(board.id)
        await gw.commit()
    hub.locks.discard(board.id)
    logger.info(f"Board deleted: {board_id[:8]} by {user.username}")
    return {"success": True, "message": "Board deleted successfully"}
