# tests/conftest.py — Shared test fixtures
import os
import uuid
from types import SimpleNamespace

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

# Use SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///./test.db"
os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-unit-tests-only-min-32-chars"
os.environ["ENVIRONMENT"] = "test"

from models import Base, User, Project
from auth import AuthService, CurrentUser
from database import get_db_session, get_session_factory
from gateway import PersistenceGateway
from main import app
from realtime import create_hub


class FakeConnection:
    """In-memory stand-in for a WebSocket connection; records what it was sent"""

    def __init__(self, user, fail=False):
        self.id = str(uuid.uuid4())
        self.user = as_current_user(user)
        self.fail = fail
        self.sent = []

    async def send_json(self, message):
        if self.fail:
            raise ConnectionResetError("socket closed")
        self.sent.append(message)

    def events(self, event_type=None):
        if event_type is None:
            return list(self.sent)
        return [m for m in self.sent if m["type"] == event_type]

    def types(self):
        return [m["type"] for m in self.sent]

    def clear(self):
        self.sent.clear()


def as_current_user(user) -> CurrentUser:
    if isinstance(user, CurrentUser):
        return user
    return CurrentUser(id=user.id, username=user.username, email=user.email, display_name=user.display_name)


def get_auth_headers(user: User) -> dict:
    """Generate auth headers for a user"""
    return {"Authorization": f"Bearer {AuthService.token_for(user)}"}


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    engine = create_async_engine(TEST_DB_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def hub():
    """Fresh rooms/locks/broadcaster/reconciler for each test"""
    return create_hub()


@pytest_asyncio.fixture(scope="function")
async def client(session_factory, hub):
    """HTTP test client with overridden DB dependency and an isolated hub"""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.state.hub = hub
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def make_user(db_session, username: str) -> User:
    user = User(
        id=str(uuid.uuid4()),
        username=username,
        email=f"{username}@flowboard.dev",
        display_name=username.title(),
        password_hash=AuthService.hash_password("Password123!"),
        is_active=True,
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest_asyncio.fixture
async def alice(db_session):
    """Project owner"""
    return await make_user(db_session, "alice")


@pytest_asyncio.fixture
async def bob(db_session):
    """Project member"""
    return await make_user(db_session, "bob")


@pytest_asyncio.fixture
async def carol(db_session):
    """Outsider with no project access"""
    return await make_user(db_session, "carol")


@pytest_asyncio.fixture
async def workspace(db_session, alice, bob):
    """Project owned by alice with bob as member and one board with default columns.

    Ids are captured as plain strings so they stay readable after a rollback
    expires the ORM instances.
    """
    gw = PersistenceGateway(db_session)
    project = Project(name="Apollo", creator_id=alice.id, member_ids=[alice.id, bob.id])
    gw.add(project)
    await gw.flush()
    board, columns = await gw.add_board(project.id, "Apollo Board")
    await gw.commit()
    return SimpleNamespace(
        project_id=project.id,
        board_id=board.id,
        todo=columns[0].id,
        doing=columns[1].id,
        done=columns[2].id,
        column_ids=[c.id for c in columns],
    )


async def column_lists(db_session, board_id: str) -> dict:
    """column id -> task ids, read straight from the database"""
    columns = await PersistenceGateway(db_session).get_columns(board_id, fresh=True)
    return {c.id: list(c.task_ids or []) for c in columns}
