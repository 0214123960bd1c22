# routers/tasks.py — Task endpoints
# Mutations go through the hub's broadcaster/reconciler so REST and WebSocket
# clients observe the same events.
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from access import require_access
from auth import CurrentUser, get_current_user
from database import get_db_session
from events import task_to_dict
from gateway import PersistenceGateway
from realtime import RealtimeHub, get_hub
from schemas import MoveTask, MoveTaskBody, SubtaskCreate, TaskCreate, TaskUpdate

router = APIRouter(prefix="/api/tasks", tags=["Tasks"])


@router.get("")
async def list_tasks(
    project_id: Optional[str] = Query(None, alias="projectId"),
    board_id: Optional[str] = Query(None, alias="boardId"),
    column_id: Optional[str] = Query(None, alias="columnId"),
    collection_id: Optional[str] = Query(None, alias="collectionId"),
    include_subtasks: bool = Query(False, alias="includeSubtasks"),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Tasks visible to the caller, filtered and ordered by position"""
    gw = PersistenceGateway(db)
    if board_id:
        board = await gw.get_board(board_id)
        project_id = project_id or board.project_id
    if project_id:
        project = await gw.get_project(project_id)
        require_access(user.id, project)
        project_ids = [project.id]
    else:
        project_ids = [p.id for p in await gw.find_projects_for_user(user.id)]

    tasks = await gw.find_tasks(
        project_ids=project_ids,
        board_id=board_id,
        column_id=column_id,
        collection_id=collection_id,
        top_level_only=not include_subtasks,
    )
    columns = await gw.get_columns(board_id) if board_id else None
    return {"success": True, "data": [task_to_dict(t, columns) for t in tasks]}


@router.get("/{task_id}")
async def get_task(
    task_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    gw = PersistenceGateway(db)
    task = await gw.get_task(task_id)
    project = await gw.get_project(task.project_id)
    require_access(user.id, project)

    columns = await gw.get_columns(task.board_id)
    payload = task_to_dict(task, columns)
    payload["subtasks"] = [task_to_dict(s, columns) for s in await gw.find_tasks(parent_task_id=task.id)]
    return {"success": True, "data": payload}


@router.post("", status_code=201)
async def create_task(
    data: TaskCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    hub: RealtimeHub = Depends(get_hub),
):
    task = await hub.broadcaster.create_task(db, user, data)
    return {"success": True, "data": task}


@router.put("/{task_id}")
async def update_task(
    task_id: str,
    data: TaskUpdate,
    position: Optional[int] = Query(None),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    hub: RealtimeHub = Depends(get_hub),
):
    task = await hub.broadcaster.update_task(db, user, task_id, data, position=position)
    return {"success": True, "data": task}


@router.put("/{task_id}/move")
async def move_task(
    task_id: str,
    data: MoveTaskBody,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    hub: RealtimeHub = Depends(get_hub),
):
    """Drag-and-drop move; the room gets an optimistic event, then a confirmation"""
    move = MoveTask(task_id=task_id, **data.model_dump())
    result = await hub.reconciler.move_task(db, user, move)
    return {"success": True, "data": result["task"], "position": result["position"]}


@router.delete("/{task_id}")
async def delete_task(
    task_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    hub: RealtimeHub = Depends(get_hub),
):
    """Delete a task and its subtasks, removing them from their columns"""
    snapshot = await hub.broadcaster.delete_task(db, user, task_id)
    return {"success": True, "data": snapshot}


@router.get("/{task_id}/subtasks")
async def list_subtasks(
    task_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    gw = PersistenceGateway(db)
    parent = await gw.get_task(task_id)
    project = await gw.get_project(parent.project_id)
    require_access(user.id, project)

    columns = await gw.get_columns(parent.board_id)
    subtasks = await gw.find_tasks(parent_task_id=parent.id)
    return {"success": True, "data": [task_to_dict(s, columns) for s in subtasks]}


@router.post("/{task_id}/subtasks", status_code=201)
async def create_subtask(
    task_id: str,
    data: SubtaskCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    hub: RealtimeHub = Depends(get_hub),
):
    subtask = await hub.broadcaster.create_subtask(db, user, task_id, data)
    return {"success": True, "data": subtask}
