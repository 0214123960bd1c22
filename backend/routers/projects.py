# routers/projects.py — Project CRUD and membership
import logging
from contextlib import AsyncExitStack

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from access import require_access, require_owner
from auth import CurrentUser, get_current_user
from database import get_db_session
from errors import ValidationError
from events import board_to_dict, project_to_dict
from gateway import PersistenceGateway
from models import Project
from realtime import RealtimeHub, get_hub
from schemas import AddMembers, ProjectCreate, ProjectUpdate

router = APIRouter(prefix="/api/projects", tags=["Projects"])
logger = logging.getLogger("flowboard.projects")


@router.get("")
async def list_projects(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Projects the caller created or is a member of"""
    gw = PersistenceGateway(db)
    projects = await gw.find_projects_for_user(user.id)
    return {"success": True, "data": [project_to_dict(p) for p in projects]}


@router.post("", status_code=201)
async def create_project(
    data: ProjectCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Create a project with the caller as first member and a default board"""
    gw = PersistenceGateway(db)
    project = Project(
        name=data.name,
        description=data.description,
        color=data.color or "#3B82F6",
        creator_id=user.id,
        member_ids=[user.id],
    )
    gw.add(project)
    await gw.flush()
    board, columns = await gw.add_board(project.id, f"{data.name} Board")
    await gw.commit()
    logger.info(f"Project created: {project.id[:8]} '{project.name}' by {user.username}")

    payload = project_to_dict(project)
    payload["boards"] = [board_to_dict(board, columns)]
    return {"success": True, "data": payload}


@router.get("/{project_id}")
async def get_project(
    project_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    gw = PersistenceGateway(db)
    project = await gw.get_project(project_id)
    require_access(user.id, project)
    payload = project_to_dict(project)
    payload["boards"] = [
        board_to_dict(b, await gw.get_columns(b.id)) for b in await gw.find_boards([project.id])
    ]
    return {"success": True, "data": payload}


@router.put("/{project_id}")
async def update_project(
    project_id: str,
    data: ProjectUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    gw = PersistenceGateway(db)
    project = await gw.get_project(project_id)
    require_access(user.id, project)

    for field, value in data.model_dump(exclude_unset=True).items():
        if value is not None or field == "description":
            setattr(project, field, value)
    await gw.commit()
    return {"success": True, "data": project_to_dict(project)}


@router.delete("/{project_id}")
async def delete_project(
    project_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    hub: RealtimeHub = Depends(get_hub),
):
    """Delete a project with its boards, tasks and collections (creator only)"""
    gw = PersistenceGateway(db)
    project = await gw.get_project(project_id)
    require_owner(user.id, project, "Only the project creator can delete the project")

    # Multiple board locks are taken in sorted id order
    board_ids = sorted(b.id for b in await gw.find_boards([project.id]))
    async with AsyncExitStack() as stack:
        for board_id in board_ids:
            await stack.enter_async_context(hub.locks.hold(board_id))
        await gw.delete_project(project.id)
        await gw.commit()
    for board_id in board_ids:
        hub.locks.discard(board_id)
    logger.info(f"Project deleted: {project_id[:8]} by {user.username}")
    return {"success": True, "message": "Project deleted successfully"}


@router.post("/{project_id}/members")
async def add_members(
    project_id: str,
    data: AddMembers,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Add existing users to the project; ids already present are ignored"""
    gw = PersistenceGateway(db)
    project = await gw.get_project(project_id)
    require_access(user.id, project)

    known = {u.id for u in await gw.find_users(data.member_ids)}
    unknown = [uid for uid in data.member_ids if uid not in known]
    if unknown:
        raise ValidationError(f"Unknown user id: {unknown[0]}")

    members = list(project.member_ids or [])
    added = [uid for uid in dict.fromkeys(data.member_ids) if uid not in members]
    if added:
        project.member_ids = members + added
        await gw.commit()
    return {"success": True, "data": project_to_dict(project), "added": added}
