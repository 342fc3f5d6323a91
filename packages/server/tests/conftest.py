"""
Shared fixtures: an in-memory SQLite database, the app wired to it, and a
seeded pair of organizations.

Seeded memberships:

    Main Org.   admin (Admin), editor (Editor), viewer (Viewer),
                loner (Viewer), svc-hidden (Viewer, hidden login)
    Other Org.  viewer (Editor), root (Admin, server admin)

``outsider`` exists but belongs to no org.
"""

import os

# The module-level engine must not need a PostgreSQL driver during tests.
os.environ.setdefault("ORGUSERS_DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from types import SimpleNamespace

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

import orgusers.models  # noqa: F401
from orgusers.core.auth import create_jwt
from orgusers.core.config import Settings
from orgusers.core.database import get_session
from orgusers.main import create_app
from orgusers.models.org_user import OrgUser
from orgusers.models.organization import Organization
from orgusers.models.user import User

HIDDEN_LOGIN = "svc-hidden"


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        secret_key="test-secret",
        log_format="text",
        log_level="warning",
        hidden_users={HIDDEN_LOGIN},
        access_control_enabled=False,
    )


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def app(settings, session_factory):
    app = create_app(settings)

    async def _get_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_session] = _get_session
    return app


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def seed(session_factory) -> SimpleNamespace:
    async with session_factory() as session:
        main = Organization(name="Main Org.")
        other = Organization(name="Other Org.")
        session.add_all([main, other])
        await session.flush()

        def make_user(login: str, name: str, **kwargs) -> User:
            user = User(login=login, email=f"{login}@example.com", name=name, **kwargs)
            session.add(user)
            return user

        admin = make_user("admin", "Ada Admin", org_id=main.id)
        editor = make_user("editor", "Ed Editor", org_id=main.id)
        viewer = make_user("viewer", "Vi Viewer", org_id=main.id)
        loner = make_user("loner", "Lo Ner", org_id=main.id)
        hidden = make_user(HIDDEN_LOGIN, "Hidden Service", org_id=main.id)
        root = make_user("root", "Server Admin", org_id=other.id, is_admin=True)
        outsider = make_user("outsider", "Out Sider")
        await session.flush()

        for org, user, role in [
            (main, admin, "Admin"),
            (main, editor, "Editor"),
            (main, viewer, "Viewer"),
            (main, loner, "Viewer"),
            (main, hidden, "Viewer"),
            (other, viewer, "Editor"),
            (other, root, "Admin"),
        ]:
            session.add(OrgUser(org_id=org.id, user_id=user.id, role=role))
        await session.commit()

        return SimpleNamespace(
            main_org=main.id,
            other_org=other.id,
            admin=admin.id,
            editor=editor.id,
            viewer=viewer.id,
            loner=loner.id,
            hidden=hidden.id,
            root=root.id,
            outsider=outsider.id,
        )


@pytest.fixture
def headers_for(settings):
    """Build Authorization headers for a seeded user."""

    def _headers(user_id: int, org_id: int | None = None) -> dict[str, str]:
        token = create_jwt(user_id, settings, org_id=org_id)
        return {"Authorization": f"Bearer {token}"}

    return _headers
