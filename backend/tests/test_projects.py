# tests/test_projects.py — Project endpoints
import asyncio

import pytest
from httpx import AsyncClient

from tests.conftest import get_auth_headers


@pytest.mark.asyncio
class TestProjects:
    async def test_create_project_with_default_board(self, client: AsyncClient, alice):
        res = await client.post("/api/projects", json={"name": "Gemini", "description": "Docking"},
                                headers=get_auth_headers(alice))
        assert res.status_code == 201
        data = res.json()["data"]
        assert data["creatorId"] == alice.id
        assert data["memberIds"] == [alice.id]
        assert data["color"] == "#3B82F6"
        board = data["boards"][0]
        assert board["name"] == "Gemini Board"
        assert [c["name"] for c in board["columns"]] == ["To Do", "In Progress", "Done"]
        assert all(c["taskIds"] == [] for c in board["columns"])

    async def test_list_only_accessible_projects(self, client: AsyncClient, workspace, bob, carol):
        res = await client.get("/api/projects", headers=get_auth_headers(bob))
        assert [p["id"] for p in res.json()["data"]] == [workspace.project_id]

        res = await client.get("/api/projects", headers=get_auth_headers(carol))
        assert res.json()["data"] == []

    async def test_get_project_includes_boards(self, client: AsyncClient, workspace, bob):
        res = await client.get(f"/api/projects/{workspace.project_id}", headers=get_auth_headers(bob))
        assert res.status_code == 200
        assert [b["id"] for b in res.json()["data"]["boards"]] == [workspace.board_id]

    async def test_outsider_gets_403(self, client: AsyncClient, workspace, carol):
        res = await client.get(f"/api/projects/{workspace.project_id}", headers=get_auth_headers(carol))
        assert res.status_code == 403
        assert res.json() == {
            "success": False,
            "error": "Access denied to this project",
            "code": "FB-AUTH-002",
            "request_id": res.json()["request_id"],
        }

    async def test_unknown_project_404(self, client: AsyncClient, alice):
        res = await client.get("/api/projects/does-not-exist", headers=get_auth_headers(alice))
        assert res.status_code == 404
        assert res.json()["code"] == "FB-DB-002"

    async def test_member_can_update(self, client: AsyncClient, workspace, bob):
        res = await client.put(f"/api/projects/{workspace.project_id}", json={"name": "Apollo 11"},
                               headers=get_auth_headers(bob))
        assert res.status_code == 200
        assert res.json()["data"]["name"] == "Apollo 11"

    async def test_only_creator_deletes(self, client: AsyncClient, workspace, alice, bob):
        res = await client.delete(f"/api/projects/{workspace.project_id}", headers=get_auth_headers(bob))
        assert res.status_code == 403
        assert res.json()["error"] == "Only the project creator can delete the project"

        res = await client.delete(f"/api/projects/{workspace.project_id}", headers=get_auth_headers(alice))
        assert res.status_code == 200

        res = await client.get(f"/api/boards/{workspace.board_id}", headers=get_auth_headers(alice))
        assert res.status_code == 404

    async def test_delete_releases_board_locks(self, client: AsyncClient, hub, workspace, alice):
        headers = get_auth_headers(alice)
        res = await client.post("/api/boards", json={"name": "Backlog", "projectId": workspace.project_id},
                                headers=headers)
        second_board = res.json()["data"]["id"]
        hub.locks.get(workspace.board_id)
        hub.locks.get(second_board)
        assert len(hub.locks) == 2

        res = await client.delete(f"/api/projects/{workspace.project_id}", headers=headers)
        assert res.status_code == 200
        assert len(hub.locks) == 0

    async def test_delete_waits_for_board_lock(self, client: AsyncClient, hub, workspace, alice):
        lock = hub.locks.get(workspace.board_id)
        await lock.acquire()
        pending = asyncio.create_task(
            client.delete(f"/api/projects/{workspace.project_id}", headers=get_auth_headers(alice))
        )
        await asyncio.sleep(0.2)
        assert not pending.done()

        lock.release()
        res = await pending
        assert res.status_code == 200
        assert len(hub.locks) == 0

    async def test_add_members(self, client: AsyncClient, workspace, alice, carol):
        res = await client.post(f"/api/projects/{workspace.project_id}/members",
                                json={"memberIds": [carol.id, alice.id]}, headers=get_auth_headers(alice))
        assert res.status_code == 200
        body = res.json()
        assert body["added"] == [carol.id]
        assert carol.id in body["data"]["memberIds"]

        res = await client.get(f"/api/projects/{workspace.project_id}", headers=get_auth_headers(carol))
        assert res.status_code == 200

    async def test_add_unknown_member_rejected(self, client: AsyncClient, workspace, alice):
        res = await client.post(f"/api/projects/{workspace.project_id}/members",
                                json={"memberIds": ["ghost"]}, headers=get_auth_headers(alice))
        assert res.status_code == 400
        assert res.json()["error"] == "Unknown user id: ghost"

    async def test_validation_errors_are_400(self, client: AsyncClient, alice):
        res = await client.post("/api/projects", json={"name": ""}, headers=get_auth_headers(alice))
        assert res.status_code == 400
        assert res.json()["success"] is False
