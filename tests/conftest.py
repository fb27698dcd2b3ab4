"""Pytest fixtures backed by a throwaway SQLite database per test."""

from pathlib import Path
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from explorer.config import Settings
from explorer.utils.db_async import build_engine, init_db

from tests.helpers import FAST_ITERATIONS


@pytest_asyncio.fixture()
async def async_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """Yield an async engine bound to a fresh SQLite file with all tables created."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'explorer-test.db'}")
    await init_db(engine)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture()
def session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(async_engine, expire_on_commit=False, class_=AsyncSession)


@pytest_asyncio.fixture()
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Provide a session for seeding and calling services directly."""
    async with session_factory() as session:
        yield session


@pytest.fixture()
def volume_root(tmp_path: Path) -> Path:
    root = tmp_path / "volume"
    root.mkdir()
    return root


@pytest.fixture()
def app_settings(volume_root: Path) -> Settings:
    """Settings the app under test sees; tests may tweak fields before requests."""
    return Settings(
        _env_file=None,  # type: ignore[call-arg]
        secret_key="test-secret",
        env="dev",
        auth_enabled=True,
        auth_mode="both",
        password_hash_iterations=FAST_ITERATIONS,
        oidc_issuer=None,
        volume_root=str(volume_root),
        user_volumes=False,
    )


@pytest_asyncio.fixture()
async def app_client(
    session_factory: async_sessionmaker[AsyncSession],
    app_settings: Settings,
) -> AsyncGenerator[AsyncClient, None]:
    """Provide an HTTP client with the application wired to the test database."""
    from explorer.main import app
    from explorer.routes.deps import get_settings
    from explorer.utils.db_async import get_session

    async def _get_session_override() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = _get_session_override
    app.dependency_overrides[get_settings] = lambda: app_settings
    transport = ASGITransport(app=app)
    try:
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client
    finally:
        app.dependency_overrides.pop(get_session, None)
        app.dependency_overrides.pop(get_settings, None)
