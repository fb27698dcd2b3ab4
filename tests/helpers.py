"""Shared helpers for seeding users and signing in during tests."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional, Sequence

from httpx import AsyncClient, Response
from sqlalchemy.ext.asyncio import AsyncSession

from explorer.models.users import ClientUser
from explorer.services.local_auth_service import create_local_user

FAST_ITERATIONS = 1_000
DEFAULT_PASSWORD = "secret123"


async def create_user(
    db: AsyncSession,
    *,
    email: str,
    roles: Optional[Sequence[str]] = None,
    password: str = DEFAULT_PASSWORD,
    username: Optional[str] = None,
    display_name: Optional[str] = None,
) -> ClientUser:
    return await create_local_user(
        db,
        email=email,
        password=password,
        username=username,
        display_name=display_name,
        roles=roles,
        hash_iterations=FAST_ITERATIONS,
    )


async def login(client: AsyncClient, *, email: str, password: str = DEFAULT_PASSWORD) -> Response:
    return await client.post("/api/auth/login", json={"email": email, "password": password})


class FakeClock:
    """Manually advanced clock returning naive UTC datetimes."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)
