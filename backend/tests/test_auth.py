# tests/test_auth.py — Authentication tests
from datetime import timedelta

import pytest
from httpx import AsyncClient

from auth import AuthService, authenticate_token
from errors import AuthenticationRequired
from tests.conftest import get_auth_headers


@pytest.mark.asyncio
class TestRegistration:
    async def test_register_success(self, client: AsyncClient):
        res = await client.post("/api/auth/register", json={
            "username": "newuser",
            "email": "newuser@flowboard.dev",
            "password": "SecurePass123!",
            "display_name": "New User",
        })
        assert res.status_code == 201
        data = res.json()["data"]
        assert data["token"]
        assert data["tokenType"] == "bearer"
        assert data["user"]["email"] == "newuser@flowboard.dev"
        assert data["user"]["displayName"] == "New User"

    async def test_register_weak_password(self, client: AsyncClient):
        res = await client.post("/api/auth/register", json={
            "username": "weakling",
            "email": "weak@flowboard.dev",
            "password": "short",
        })
        assert res.status_code == 400
        assert res.json()["success"] is False

    async def test_register_duplicate_email(self, client: AsyncClient):
        body = {"username": "dupe", "email": "dupe@flowboard.dev", "password": "SecurePass123!"}
        await client.post("/api/auth/register", json=body)
        res = await client.post("/api/auth/register", json={**body, "username": "dupe2"})
        assert res.status_code == 400
        assert res.json()["code"] == "FB-VAL-001"

    async def test_register_invalid_email(self, client: AsyncClient):
        res = await client.post("/api/auth/register", json={
            "username": "someone",
            "email": "not-an-email",
            "password": "SecurePass123!",
        })
        assert res.status_code == 400


@pytest.mark.asyncio
class TestLogin:
    async def test_login_success(self, client: AsyncClient, alice):
        res = await client.post("/api/auth/login", json={
            "email": "alice@flowboard.dev",
            "password": "Password123!",
        })
        assert res.status_code == 200
        data = res.json()["data"]
        assert data["user"]["id"] == alice.id
        assert AuthService.verify_token(data["token"])["sub"] == alice.id

    async def test_login_wrong_password(self, client: AsyncClient, alice):
        res = await client.post("/api/auth/login", json={
            "email": "alice@flowboard.dev",
            "password": "WrongPassword123!",
        })
        assert res.status_code == 401
        assert res.json()["error"] == "Invalid credentials"

    async def test_login_nonexistent_user(self, client: AsyncClient):
        res = await client.post("/api/auth/login", json={
            "email": "nobody@flowboard.dev",
            "password": "SomePassword123!",
        })
        assert res.status_code == 401


@pytest.mark.asyncio
class TestTokens:
    async def test_me_returns_identity(self, client: AsyncClient, alice):
        res = await client.get("/api/auth/me", headers=get_auth_headers(alice))
        assert res.status_code == 200
        assert res.json()["data"]["username"] == "alice"

    async def test_missing_token_rejected(self, client: AsyncClient):
        res = await client.get("/api/auth/me")
        assert res.status_code == 401
        assert res.json()["code"] == "FB-AUTH-001"

    async def test_invalid_token_rejected(self, client: AsyncClient):
        res = await client.get("/api/auth/me", headers={"Authorization": "Bearer not.a.jwt"})
        assert res.status_code == 401
        assert res.json()["error"] == "Invalid token"

    async def test_expired_token_rejected(self, client: AsyncClient, alice):
        token = AuthService.create_access_token(
            {"sub": alice.id, "username": "alice"}, expires_delta=timedelta(seconds=-1),
        )
        res = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert res.status_code == 401
        assert res.json()["error"] == "Token expired"


@pytest.mark.asyncio
async def test_authenticate_token_resolves_user(db_session, alice):
    user = await authenticate_token(AuthService.token_for(alice), db_session)
    assert (user.id, user.username) == (alice.id, "alice")


@pytest.mark.asyncio
async def test_authenticate_token_rejects_inactive_user(db_session, alice):
    alice.is_active = False
    await db_session.commit()
    with pytest.raises(AuthenticationRequired) as exc:
        await authenticate_token(AuthService.token_for(alice), db_session)
    assert exc.value.message == "User not found or inactive"


def test_password_hashing():
    hashed = AuthService.hash_password("Password123!")
    assert hashed != "Password123!"
    assert AuthService.verify_password("Password123!", hashed)
    assert not AuthService.verify_password("nope", hashed)
