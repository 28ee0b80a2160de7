from __future__ import annotations

import os
from collections.abc import AsyncGenerator, Awaitable, Callable, Generator
from datetime import datetime, timezone

import httpx
import pytest
from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("RATE_LIMIT_DISABLED", "true")

from crm_api import audit, events
from crm_api.core.config import get_settings
from crm_api.core.database import create_all, create_session_factory
from crm_api.identity.models import UserAccount
from crm_api.main import create_app
from crm_api.middleware.rate_limit import reset_rate_limiter
from crm_api.platform.security.context import IdentityContext
from crm_api.platform.security.passwords import hash_password
from crm_api.platform.store import RecordStore


SeedUser = Callable[..., Awaitable[UserAccount]]


@pytest.fixture(autouse=True)
def clear_stubs() -> Generator[None, None, None]:
    audit.audit_entries.clear()
    events.published_events.clear()
    reset_rate_limiter()
    get_settings.cache_clear()
    yield
    audit.audit_entries.clear()
    events.published_events.clear()
    reset_rate_limiter()
    get_settings.cache_clear()


@pytest.fixture()
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    await create_all(engine)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture()
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


@pytest.fixture()
def store(session_factory: async_sessionmaker[AsyncSession]) -> RecordStore:
    return RecordStore(session_factory, retry_attempts=2, retry_wait_max_seconds=0.01)


@pytest.fixture()
def seed_user(store: RecordStore) -> SeedUser:
    async def _seed(
        email: str,
        *,
        role: str,
        tenant_id: str,
        user_id: str | None = None,
        password: str = "Secret123!",
        created_by: str = "seed",
        is_deleted: bool = False,
    ) -> UserAccount:
        now = datetime.now(timezone.utc)
        user = UserAccount(
            email=email,
            user_id=user_id or f"user-{email.split('@')[0]}",
            password_hash=hash_password(password),
            role=role,
            tenant_id=tenant_id,
            created_by=created_by,
            first_name=email.split("@")[0].title(),
            last_name="Test",
            is_deleted=is_deleted,
            created_at=now,
            updated_at=now,
        )
        result = await store.put_if_absent(user)
        assert result.applied
        return user

    return _seed


def identity_for(user: UserAccount) -> IdentityContext:
    return IdentityContext(
        user_id=user.user_id,
        email=user.email,
        role=user.role,
        tenant_id=user.tenant_id,
        first_name=user.first_name,
        last_name=user.last_name,
    )


@pytest.fixture()
def as_identity() -> Callable[[UserAccount], IdentityContext]:
    return identity_for


@pytest.fixture()
def app(session_factory: async_sessionmaker[AsyncSession]) -> FastAPI:
    return create_app(get_settings(), session_factory=session_factory)


@pytest.fixture()
async def client(app: FastAPI) -> AsyncGenerator[httpx.AsyncClient, None]:
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as test_client:
        yield test_client


@pytest.fixture()
def login(client: httpx.AsyncClient) -> Callable[..., Awaitable[dict]]:
    async def _login(email: str, password: str = "Secret123!") -> dict:
        response = await client.post("/api/auth/login", json={"email": email, "password": password})
        assert response.status_code == 200, response.text
        return response.json()

    return _login


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def auth_headers() -> Callable[[str], dict[str, str]]:
    return bearer


@pytest.fixture()
async def file_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    # Concurrent sessions need their own connections.
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'crm.db'}")
    await create_all(engine)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture()
def file_store(file_engine: AsyncEngine) -> RecordStore:
    return RecordStore(create_session_factory(file_engine), retry_attempts=2, retry_wait_max_seconds=0.01)
