"""
Pytest configuration and shared fixtures for OpenForum tests.
"""

import os

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")
os.environ.setdefault("REQUIRE_EMAIL_VERIFICATION", "false")
os.environ.setdefault("RESEND_API_KEY", "")
os.environ.setdefault("ALGOLIA_APP_ID", "")

import time
from typing import Any, AsyncGenerator

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import openforum.models  # noqa: F401
from openforum.core.cache import CacheService, get_cache
from openforum.core.database import Base, configure_session_factory
from openforum.core.security import create_access_token, hash_password
from openforum.main import app
from openforum.models.forum import Category, Post, Thread
from openforum.models.user import User, UserRole


class DummyRedis:
    """In-memory stand-in for the few Redis commands the cache uses."""

    def __init__(self) -> None:
        self.values: dict[str, Any] = {}
        self.expiry: dict[str, float] = {}

    def _alive(self, key: str) -> bool:
        deadline = self.expiry.get(key)
        if deadline is not None and deadline <= time.time():
            self.values.pop(key, None)
            self.expiry.pop(key, None)
        return key in self.values

    async def get(self, key: str) -> Any:
        return self.values.get(key) if self._alive(key) else None

    async def setex(self, key: str, ttl: int, value: str) -> None:
        self.values[key] = value
        self.expiry[key] = time.time() + ttl

    async def sadd(self, key: str, *members: str) -> int:
        bucket = self.values.setdefault(key, set())
        before = len(bucket)
        bucket.update(members)
        return len(bucket) - before

    async def smembers(self, key: str) -> set[str]:
        return set(self.values.get(key, set())) if self._alive(key) else set()

    async def expire(self, key: str, ttl: int) -> bool:
        if key not in self.values:
            return False
        self.expiry[key] = time.time() + ttl
        return True

    async def ttl(self, key: str) -> int:
        if not self._alive(key):
            return -2
        if key not in self.expiry:
            return -1
        return max(int(self.expiry[key] - time.time()), 0)

    async def incr(self, key: str) -> int:
        value = int(self.values.get(key, 0)) + 1 if self._alive(key) else 1
        self.values[key] = value
        return value

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if key in self.values:
                removed += 1
            self.values.pop(key, None)
            self.expiry.pop(key, None)
        return removed

    async def aclose(self) -> None:
        pass


@pytest.fixture
async def engine(tmp_path):
    """File-backed SQLite engine with a fresh schema per test."""
    test_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'forum.db'}")
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    await test_engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    factory = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )
    configure_session_factory(factory)
    return factory


@pytest.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def redis_client() -> DummyRedis:
    return DummyRedis()


@pytest.fixture
def cache(redis_client) -> CacheService:
    return CacheService(client=redis_client, enabled=True, default_ttl=60)


@pytest.fixture
async def client(session_factory, cache) -> AsyncGenerator[httpx.AsyncClient, None]:
    """API client bound to the test database and cache."""

    async def override_cache() -> CacheService:
        return cache

    app.dependency_overrides[get_cache] = override_cache
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http
    app.dependency_overrides.clear()


# ==================== Factories ====================


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    async def factory(role: str = UserRole.USER.value, **fields: Any) -> User:
        counter["n"] += 1
        n = counter["n"]
        user = User(
            email=fields.pop("email", f"user{n}@example.com"),
            name=fields.pop("name", f"User {n}"),
            username=fields.pop("username", f"user{n}"),
            hashed_password=hash_password(fields.pop("password", "password123")),
            email_verified=fields.pop("email_verified", True),
            role=role,
            **fields,
        )
        db.add(user)
        await db.commit()
        return user

    return factory


@pytest.fixture
async def user(make_user) -> User:
    return await make_user()


@pytest.fixture
async def moderator(make_user) -> User:
    return await make_user(role=UserRole.MODERATOR.value)


@pytest.fixture
async def admin(make_user) -> User:
    return await make_user(role=UserRole.ADMIN.value)


@pytest.fixture
async def category(db) -> Category:
    category = Category(name="General Discussion", slug="general", description="Anything")
    db.add(category)
    await db.commit()
    return category


@pytest.fixture
def make_thread(db, category):
    """Thread with its opening post, committed."""

    async def factory(author: User, title: str = "A thread title", **fields: Any) -> Thread:
        thread = Thread(
            category_id=fields.pop("category_id", category.id),
            author_id=author.id,
            title=title,
            slug=fields.pop("slug", title.lower().replace(" ", "-")),
            **fields,
        )
        db.add(thread)
        await db.flush()
        post = Post(thread_id=thread.id, author_id=author.id, content="Opening post content")
        db.add(post)
        await db.flush()
        thread.last_post_id = post.id
        await db.commit()
        return thread

    return factory


@pytest.fixture
def auth_headers():
    """Bearer header builder for a user."""

    def build(user: User) -> dict[str, str]:
        token = create_access_token(user.id, user.effective_role)
        return {"Authorization": f"Bearer {token}"}

    return build
