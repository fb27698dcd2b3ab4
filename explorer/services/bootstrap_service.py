"""Seed or repair the initial admin account from configuration."""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from explorer.models.users import ClientUser
from explorer.services.local_auth_service import (
    DEFAULT_PBKDF2_ITERATIONS,
    create_local_user,
    set_local_password_admin,
)
from explorer.services.user_store import (
    ADMIN_ROLE,
    _get_roles,
    _get_user_by_email,
    _set_roles,
    get_by_id,
    normalize_email,
)

logger = logging.getLogger(__name__)


async def ensure_admin_role(db: AsyncSession, *, user_id: str) -> list[str]:
    async with db.begin():
        roles = await _get_roles(db, user_id)
        if ADMIN_ROLE in roles:
            return roles
        return await _set_roles(db, user_id, [*roles, ADMIN_ROLE])


async def bootstrap_admin(
    db: AsyncSession,
    *,
    email: Optional[str],
    password: Optional[str],
    hash_iterations: int = DEFAULT_PBKDF2_ITERATIONS,
) -> ClientUser | None:
    """Create the configured admin, or reset its password if it exists.

    Does nothing unless both `email` and `password` are set. The account
    always ends up holding the admin role.
    """
    normalized = normalize_email(email)
    if not normalized or not password:
        return None

    async with db.begin():
        existing = await _get_user_by_email(db, normalized)
        existing_id = existing.id if existing is not None else None

    if existing_id is None:
        user = await create_local_user(
            db,
            email=normalized,
            password=password,
            username="admin",
            display_name="Administrator",
            roles=[ADMIN_ROLE],
            hash_iterations=hash_iterations,
        )
        logger.info("Bootstrapped admin account %s", normalized)
        return user

    await set_local_password_admin(
        db,
        user_id=existing_id,
        new_password=password,
        hash_iterations=hash_iterations,
    )
    await ensure_admin_role(db, user_id=existing_id)
    logger.info("Admin password for %s updated from environment", normalized)
    return await get_by_id(db, existing_id)
