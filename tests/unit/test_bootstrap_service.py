"""Unit tests for the environment-driven admin bootstrap."""

from __future__ import annotations

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from explorer.config import LockoutPolicy
from explorer.services.bootstrap_service import bootstrap_admin
from explorer.services.local_auth_service import attempt_local_login
from explorer.services.lockout_service import LockoutGuard
from explorer.services.oidc_auth_service import get_or_create_oidc_user
from explorer.services.user_store import count_users
from tests.helpers import FAST_ITERATIONS, FakeClock, create_user


def _guard() -> LockoutGuard:
    return LockoutGuard(LockoutPolicy(), FakeClock())


@pytest.mark.asyncio
class TestBootstrapAdmin:
    async def test_noop_without_credentials(self, db_session: AsyncSession) -> None:
        assert await bootstrap_admin(db_session, email=None, password="secret123") is None
        assert await bootstrap_admin(db_session, email="a@example.com", password=None) is None
        assert await count_users(db_session) == 0

    async def test_creates_admin(self, db_session: AsyncSession) -> None:
        admin = await bootstrap_admin(
            db_session, email="Root@Example.com", password="rootpass1", hash_iterations=FAST_ITERATIONS
        )
        assert admin is not None
        assert admin.email == "root@example.com"
        assert admin.is_admin
        assert await attempt_local_login(db_session, email="root@example.com", password="rootpass1", guard=_guard())

    async def test_overrides_password_and_grants_admin(self, db_session: AsyncSession) -> None:
        existing = await create_user(db_session, email="root@example.com", password="oldpass11")
        admin = await bootstrap_admin(
            db_session, email="root@example.com", password="newpass11", hash_iterations=FAST_ITERATIONS
        )
        assert admin is not None
        assert admin.id == existing.id
        assert "admin" in admin.roles
        assert "user" in admin.roles

        guard = _guard()
        assert await attempt_local_login(db_session, email="root@example.com", password="newpass11", guard=guard)
        assert await attempt_local_login(db_session, email="root@example.com", password="oldpass11", guard=guard) is None

    async def test_adds_password_to_oidc_only_account(self, db_session: AsyncSession) -> None:
        await get_or_create_oidc_user(db_session, issuer="https://idp", sub="1", email="root@example.com")
        await bootstrap_admin(
            db_session, email="root@example.com", password="newpass11", hash_iterations=FAST_ITERATIONS
        )
        assert await attempt_local_login(db_session, email="root@example.com", password="newpass11", guard=_guard())
