# routers/collections.py — Collections (epic-like task groups)
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from access import require_access
from auth import CurrentUser, get_current_user
from database import get_db_session
from events import collection_to_dict, task_to_dict
from gateway import PersistenceGateway
from realtime import RealtimeHub, get_hub
from schemas import CollectionCreate, CollectionReorder, CollectionUpdate

router = APIRouter(prefix="/api/collections", tags=["Collections"])


async def _collections_payload(gw: PersistenceGateway, project_id: str, include_archived: bool) -> list:
    collections = await gw.find_collections(project_id, include_archived=include_archived)
    counts = await gw.count_collection_tasks(c.id for c in collections)
    return [collection_to_dict(c, task_count=counts[c.id]) for c in collections]


@router.get("")
async def list_collections(
    project_id: Optional[str] = Query(None, alias="projectId"),
    include_archived: bool = Query(False, alias="includeArchived"),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Collections across the caller's projects, or of one project"""
    gw = PersistenceGateway(db)
    if project_id:
        project = await gw.get_project(project_id)
        require_access(user.id, project)
        project_ids = [project.id]
    else:
        project_ids = [p.id for p in await gw.find_projects_for_user(user.id)]

    data = []
    for pid in project_ids:
        data.extend(await _collections_payload(gw, pid, include_archived))
    return {"success": True, "data": data}


@router.get("/project/{project_id}")
async def list_project_collections(
    project_id: str,
    include_archived: bool = Query(False, alias="includeArchived"),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    gw = PersistenceGateway(db)
    project = await gw.get_project(project_id)
    require_access(user.id, project)
    return {"success": True, "data": await _collections_payload(gw, project.id, include_archived)}


# Registered before /{collection_id} so "reorder" is not taken for an id
@router.put("/reorder")
async def reorder_collections(
    data: CollectionReorder,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    hub: RealtimeHub = Depends(get_hub),
):
    collections = await hub.broadcaster.reorder_collections(db, user, data.project_id, data.collection_ids)
    return {"success": True, "data": collections}


@router.get("/{collection_id}")
async def get_collection(
    collection_id: str,
    include_tasks: bool = Query(True, alias="includeTasks"),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Collection with its top-level tasks in order"""
    gw = PersistenceGateway(db)
    collection = await gw.get_collection(collection_id)
    project = await gw.get_project(collection.project_id)
    require_access(user.id, project, "Access denied to this collection")

    payload = collection_to_dict(collection)
    if include_tasks:
        tasks = await gw.find_tasks(collection_id=collection.id, top_level_only=True)
        payload["tasks"] = [task_to_dict(t) for t in tasks]
        payload["taskCount"] = len(tasks)
    return {"success": True, "data": payload}


@router.post("", status_code=201)
async def create_collection(
    data: CollectionCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    hub: RealtimeHub = Depends(get_hub),
):
    collection = await hub.broadcaster.create_collection(db, user, data)
    return {"success": True, "data": collection}


@router.put("/{collection_id}")
async def update_collection(
    collection_id: str,
    data: CollectionUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    hub: RealtimeHub = Depends(get_hub),
):
    collection = await hub.broadcaster.update_collection(db, user, collection_id, data)
    return {"success": True, "data": collection}


@router.delete("/{collection_id}")
async def delete_collection(
    collection_id: str,
    move_tasks_to: Optional[str] = Query(None, alias="moveTasksToCollection"),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    hub: RealtimeHub = Depends(get_hub),
):
    """Delete a collection; its tasks move to moveTasksToCollection or become ungrouped"""
    result = await hub.broadcaster.delete_collection(db, user, collection_id, move_tasks_to)
    return {"success": True, "data": result, "message": "Collection deleted successfully"}
