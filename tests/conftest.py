"""
tests/conftest.py
Shared fixtures: a throwaway SQLite database, a mocked Redis client,
an httpx client bound to the app, and ready-made accounts.
"""

import os

# Settings are read at import time; configure before importing the app
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test_peer_tutoring.db")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("CELERY_TASK_ALWAYS_EAGER", "true")
os.environ.setdefault("RESEND_API_KEY", "")

import uuid
from typing import Iterable, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import AsyncSessionLocal, Base, engine
from config.redis_client import get_redis
from main import app
from shared.models.models import (
    ClassLevel,
    TutorPreference,
    User,
    UserRole,
    WeeklyAvailabilitySlot,
)
from shared.utils.security import create_access_token
from shared.utils.slots import parse_slot_id


# ── Helpers ───────────────────────────────────────────────────

def auth_headers(user: User) -> dict:
    token, _ = create_access_token(str(user.id), user.role.value, user.email)
    return {"Authorization": f"Bearer {token}"}


async def create_user(
    db: AsyncSession,
    first_name: str = "Léa",
    last_name: str = "Martin",
    class_level: ClassLevel = ClassLevel.SECONDE,
    role: UserRole = UserRole.STUDENT,
    email_verified: bool = True,
    password_hash: str = "x",
    email: Optional[str] = None,
) -> User:
    user = User(
        id=uuid.uuid4(),
        email=email or f"eleve.{uuid.uuid4().hex[:12]}@lycee-exemple.fr",
        password_hash=password_hash,
        first_name=first_name,
        last_name=last_name,
        class_level=class_level,
        specialties=[],
        options=[],
        role=role,
        email_verified=email_verified,
        is_active=True,
    )
    db.add(user)
    await db.commit()
    return user


async def create_tutor(
    db: AsyncSession,
    first_name: str,
    class_level: ClassLevel,
    subjects: Iterable[str],
    levels: Iterable[ClassLevel],
    slots: Iterable[str],
    enabled: bool = True,
) -> User:
    """A verified student with a tutoring profile and weekly slots."""
    user = await create_user(db, first_name=first_name, class_level=class_level)
    db.add(TutorPreference(
        user_id=user.id,
        subjects=list(subjects),
        levels=[ClassLevel(l).value for l in levels],
        available_outside_hours=False,
        enabled=enabled,
    ))
    for slot_id in slots:
        day, time_code = parse_slot_id(slot_id)
        db.add(WeeklyAvailabilitySlot(user_id=user.id, day=day, time_code=time_code))
    await db.commit()
    return user


# ── Database ──────────────────────────────────────────────────

@pytest_asyncio.fixture(autouse=True)
async def setup_database():
    """Fresh schema for every test."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def db() -> AsyncSession:
    async with AsyncSessionLocal() as session:
        yield session


# ── Redis ─────────────────────────────────────────────────────

@pytest.fixture
def mock_redis():
    """Deny-list is empty, publishes succeed."""
    redis = MagicMock()
    redis.exists = AsyncMock(return_value=0)
    redis.setex = AsyncMock(return_value=True)
    redis.publish = AsyncMock(return_value=1)
    redis.ping = AsyncMock(return_value=True)
    return redis


# ── HTTP client ───────────────────────────────────────────────

@pytest_asyncio.fixture
async def client(mock_redis) -> AsyncClient:
    app.dependency_overrides[get_redis] = lambda: mock_redis
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


# ── Accounts ──────────────────────────────────────────────────

@pytest_asyncio.fixture
async def student(db: AsyncSession) -> User:
    return await create_user(db, first_name="Léa", last_name="Martin", class_level=ClassLevel.SECONDE)


@pytest_asyncio.fixture
async def tutor(db: AsyncSession) -> User:
    """Terminale student tutoring maths to every level on Monday S3."""
    return await create_tutor(
        db,
        first_name="Hugo",
        class_level=ClassLevel.TERMINALE,
        subjects=["Mathématiques"],
        levels=[ClassLevel.SECONDE, ClassLevel.PREMIERE, ClassLevel.TERMINALE],
        slots=["Lundi_S3"],
    )


@pytest_asyncio.fixture
async def unverified_user(db: AsyncSession) -> User:
    return await create_user(db, first_name="Nina", email_verified=False)


@pytest_asyncio.fixture
async def moderator(db: AsyncSession) -> User:
    return await create_user(
        db, first_name="Claire", last_name="Dupont",
        class_level=ClassLevel.TERMINALE, role=UserRole.MODERATOR,
    )

