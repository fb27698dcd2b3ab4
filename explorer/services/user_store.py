"""Credential store: user, role and auth-method persistence.

Rows are mapped to client-facing shapes here and only here, so every caller
sees the same projection. Helpers prefixed with an underscore expect to run
inside a transaction the caller already opened.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Iterable, Optional

from sqlalchemy import delete, distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from explorer.models.users import AuthMethodRead, ClientUser, ShareableUser
from explorer.schemas.users import AuthMethod, AuthMethodType, User, UserRole

ADMIN_ROLE = "admin"
DEFAULT_ROLE = "user"


def normalize_email(email: object) -> str:
    """Trim and lower-case an email; non-strings normalize to ""."""
    if not isinstance(email, str):
        return ""
    return email.strip().lower()


def clean_roles(roles: Optional[Iterable[object]]) -> list[str]:
    """Trim role strings, dropping blanks, non-strings and duplicates."""
    seen: list[str] = []
    for role in roles or []:
        if not isinstance(role, str):
            continue
        value = role.strip()
        if value and value not in seen:
            seen.append(value)
    return seen


def to_client_user(user: User, roles: Iterable[str]) -> ClientUser:
    return ClientUser(
        id=user.id,
        email=user.email,
        email_verified=bool(user.email_verified),
        username=user.username,
        display_name=user.display_name or None,
        roles=sorted(roles),
        created_at=user.created_at,
        updated_at=user.updated_at,
    )


def to_shareable_user(user: User) -> ShareableUser:
    return ShareableUser(
        id=user.id,
        email=user.email,
        username=user.username,
        display_name=user.display_name or None,
    )


def to_auth_method_read(method: AuthMethod) -> AuthMethodRead:
    return AuthMethodRead(
        id=method.id,
        user_id=method.user_id,
        method_type=AuthMethodType(method.method_type).value,
        provider_issuer=method.provider_issuer,
        provider_sub=method.provider_sub,
        provider_name=method.provider_name,
        enabled=bool(method.enabled),
        created_at=method.created_at,
        last_used_at=method.last_used_at,
    )


# ---------------------------------------------------------------------------
# In-transaction helpers
# ---------------------------------------------------------------------------


async def _get_user(db: AsyncSession, user_id: str) -> User | None:
    result = await db.execute(select(User).where(User.id == user_id))  # type: ignore[arg-type]
    return result.scalar_one_or_none()


async def _get_user_by_email(db: AsyncSession, email: str) -> User | None:
    result = await db.execute(
        select(User).where(User.email == normalize_email(email))  # type: ignore[arg-type]
    )
    return result.scalar_one_or_none()


async def _get_roles(db: AsyncSession, user_id: str) -> list[str]:
    result = await db.execute(
        select(UserRole.role).where(UserRole.user_id == user_id)  # type: ignore[arg-type]
    )
    return sorted(result.scalars().all())


async def _get_roles_map(db: AsyncSession) -> dict[str, list[str]]:
    result = await db.execute(select(UserRole.user_id, UserRole.role))
    roles: dict[str, list[str]] = defaultdict(list)
    for user_id, role in result.all():
        roles[user_id].append(role)
    return roles


async def _set_roles(db: AsyncSession, user_id: str, roles: Iterable[object]) -> list[str]:
    cleaned = clean_roles(roles)
    await db.execute(delete(UserRole).where(UserRole.user_id == user_id))  # type: ignore[arg-type]
    for role in cleaned:
        db.add(UserRole(user_id=user_id, role=role))
    await db.flush()
    return sorted(cleaned)


async def _client_user(db: AsyncSession, user: User | None) -> ClientUser | None:
    if user is None:
        return None
    return to_client_user(user, await _get_roles(db, user.id))


async def _get_local_method(db: AsyncSession, user_id: str) -> AuthMethod | None:
    result = await db.execute(
        select(AuthMethod).where(
            AuthMethod.user_id == user_id,  # type: ignore[arg-type]
            AuthMethod.method_type == AuthMethodType.LOCAL,  # type: ignore[arg-type]
        )
    )
    return result.scalars().first()


async def _get_oidc_method(db: AsyncSession, issuer: str, sub: str) -> AuthMethod | None:
    result = await db.execute(
        select(AuthMethod).where(
            AuthMethod.provider_issuer == issuer,  # type: ignore[arg-type]
            AuthMethod.provider_sub == sub,  # type: ignore[arg-type]
            AuthMethod.method_type == AuthMethodType.OIDC,  # type: ignore[arg-type]
        )
    )
    return result.scalar_one_or_none()


async def _count_admins(db: AsyncSession) -> int:
    result = await db.execute(
        select(func.count(distinct(UserRole.user_id))).where(
            UserRole.role == ADMIN_ROLE  # type: ignore[arg-type]
        )
    )
    return int(result.scalar_one() or 0)


# ---------------------------------------------------------------------------
# Public queries
# ---------------------------------------------------------------------------


async def count_users(db: AsyncSession) -> int:
    async with db.begin():
        result = await db.execute(select(func.count()).select_from(User))
        return int(result.scalar_one() or 0)


async def count_admins(db: AsyncSession) -> int:
    """Count users that currently hold the admin role."""
    async with db.begin():
        return await _count_admins(db)


async def get_by_id(db: AsyncSession, user_id: str) -> ClientUser | None:
    async with db.begin():
        return await _client_user(db, await _get_user(db, user_id))


async def get_by_email(db: AsyncSession, email: str) -> ClientUser | None:
    async with db.begin():
        return await _client_user(db, await _get_user_by_email(db, email))


async def get_user_auth_methods(db: AsyncSession, user_id: str) -> list[AuthMethodRead]:
    """Enabled auth methods for a user (never includes password hashes)."""
    async with db.begin():
        result = await db.execute(
            select(AuthMethod)
            .where(
                AuthMethod.user_id == user_id,  # type: ignore[arg-type]
                AuthMethod.enabled.is_(True),  # type: ignore[attr-defined]
            )
            .order_by(AuthMethod.created_at)  # type: ignore[arg-type]
        )
        return [to_auth_method_read(m) for m in result.scalars().all()]
