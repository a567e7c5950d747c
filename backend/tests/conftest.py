"""Shared test fixtures for the FreeCore workflow engine.

Provides:
- Async test database (SQLite file per test, or PostgreSQL via TEST_DATABASE_URL)
- Session factory the engine opens its own transactions from
- Factory helpers for users, project members and templates
- FastAPI test client with overridden DB dependency and a bound engine
"""

from __future__ import annotations

import os
import uuid

# Set test environment BEFORE any app imports so Settings() picks them up.
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-pytest-only-not-for-production")
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from freecore.core.security import create_access_token
from freecore.database import enable_sqlite_foreign_keys
from freecore.models.base import Base
from freecore.services.event_bus import EventBus
from freecore.services.template_registry import TemplateRegistry
from freecore.services.workflow_engine import WorkflowEngine

# ---------------------------------------------------------------------------
# Database engine
# ---------------------------------------------------------------------------


@pytest.fixture
async def test_engine(tmp_path):
    """Fresh schema per test.

    The workflow engine commits through its own sessions, so tests cannot use
    the rollback-a-savepoint pattern; every test gets a clean database instead.
    NullPool keeps each session on its own connection, which is what the
    concurrency tests rely on.
    """
    url = os.getenv("TEST_DATABASE_URL") or f"sqlite+aiosqlite:///{tmp_path / 'workflows.db'}"
    engine = create_async_engine(url, echo=False, poolclass=NullPool)
    if engine.dialect.name == "sqlite":
        enable_sqlite_foreign_keys(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    """Session for arranging test data; helpers commit so engine sessions see it."""
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Factory helpers
# ---------------------------------------------------------------------------


async def create_user(
    db,
    *,
    email=None,
    role="member",
    display_name="Test User",
    is_active=True,
):
    """Insert a user into the test database."""
    from freecore.models.user import User

    user = User(
        email=email or f"test-{uuid.uuid4().hex[:8]}@example.com",
        display_name=display_name,
        role=role,
        is_active=is_active,
    )
    db.add(user)
    await db.commit()
    return user


async def add_member(db, *, project_id, user, role, joined_at=None):
    """Give a user a role on a project."""
    from freecore.models.project_member import ProjectMember

    member = ProjectMember(project_id=project_id, user_id=user.id, role=role)
    if joined_at is not None:
        member.joined_at = joined_at
    db.add(member)
    await db.commit()
    return member


async def create_template(db, definition):
    """Insert a template definition (see ``seed_workflows``) and commit it."""
    from freecore.services.seed_workflows import create_template as _create

    template = _create(db, definition)
    await db.commit()
    return template


async def build_engine(session_factory, **kwargs) -> WorkflowEngine:
    """Engine over a registry snapshot of the templates currently in the database."""
    async with session_factory() as session:
        registry = await TemplateRegistry.load(session)
    return WorkflowEngine(session_factory, registry, **kwargs)


def auth_headers(user) -> dict[str, str]:
    """Generate Bearer token headers for a test user."""
    token = create_access_token(user.id, user.role)
    return {"Authorization": f"Bearer {token}"}


SUBMITTAL_REVIEW = {
    "name": "submittal_review",
    "entity_type": "submittal",
    "is_default": True,
    "stages": [
        {"name": "Submitted", "initial": True},
        {"name": "UnderReview", "role": "architect", "due_hours": 72},
        {"name": "Approved", "terminal": True},
        {"name": "Rejected", "terminal": True},
    ],
    "transitions": [
        {"from": "Submitted", "to": "UnderReview", "action": "submit_for_review",
         "automatic": True},
        {"from": "UnderReview", "to": "Approved", "action": "approve", "label": "Approve"},
        {"from": "UnderReview", "to": "Rejected", "action": "reject", "label": "Reject"},
    ],
}


# ---------------------------------------------------------------------------
# Convenience fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def project_id():
    return uuid.uuid4()


@pytest.fixture
async def admin_user(db):
    return await create_user(db, email="admin@test.com", role="admin", display_name="Admin")


@pytest.fixture
async def member_user(db):
    return await create_user(db, email="member@test.com", role="member", display_name="Member")


@pytest.fixture
async def architect(db, project_id):
    user = await create_user(db, email="architect@test.com", display_name="Ada Architect")
    await add_member(db, project_id=project_id, user=user, role="architect")
    return user


@pytest.fixture
async def submittal_template(db):
    return await create_template(db, SUBMITTAL_REVIEW)


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
async def engine(session_factory, submittal_template, event_bus):
    return await build_engine(session_factory, event_bus=event_bus)


# ---------------------------------------------------------------------------
# FastAPI test app + HTTP client
# ---------------------------------------------------------------------------


@pytest.fixture
async def app(db, engine):
    """Minimal FastAPI test app with ``get_db`` overridden to use the test session."""
    from fastapi import FastAPI

    from freecore.api.errors import register_error_handlers
    from freecore.api.v1.router import api_router
    from freecore.config import settings
    from freecore.database import get_db

    test_app = FastAPI()
    register_error_handlers(test_app)
    test_app.include_router(api_router, prefix=settings.API_V1_PREFIX)
    test_app.state.workflow_engine = engine

    async def _override_get_db():
        yield db

    test_app.dependency_overrides[get_db] = _override_get_db
    yield test_app
    test_app.dependency_overrides.clear()


@pytest.fixture
async def client(app):
    """HTTP test client for the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as c:
        yield c
