"""Administrative user management."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Optional, Sequence

from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from explorer.errors import ConflictError, NotFoundError, ValidationError
from explorer.models.users import AuthMethodSummary, ClientUser, ShareableUser, UserListItem
from explorer.schemas.access import GuestSession, Share, ShareRecipient, UserVolume
from explorer.schemas.auth import AuthSession
from explorer.schemas.users import AuthMethod, AuthMethodType, User, UserRole
from explorer.services.user_store import (
    ADMIN_ROLE,
    _count_admins,
    _get_roles,
    _get_roles_map,
    _get_user,
    _set_roles,
    normalize_email,
    to_client_user,
    to_shareable_user,
)
from explorer.utils.clock import utcnow

logger = logging.getLogger(__name__)


async def list_users(db: AsyncSession) -> list[UserListItem]:
    """All users, oldest first, with their enabled sign-in methods."""
    async with db.begin():
        users = (
            await db.execute(select(User).order_by(User.created_at))  # type: ignore[arg-type]
        ).scalars().all()
        roles = await _get_roles_map(db)
        methods = (
            await db.execute(
                select(AuthMethod.user_id, AuthMethod.method_type, AuthMethod.provider_name).where(
                    AuthMethod.enabled.is_(True)  # type: ignore[attr-defined]
                )
            )
        ).all()

    by_user: dict[str, list[AuthMethodSummary]] = defaultdict(list)
    for user_id, method_type, provider_name in methods:
        by_user[user_id].append(
            AuthMethodSummary(method=AuthMethodType(method_type).value, provider=provider_name)
        )

    return [
        UserListItem(
            **to_client_user(user, roles.get(user.id, [])).model_dump(),
            auth_methods=by_user.get(user.id, []),
        )
        for user in users
    ]


async def list_shareable_users(
    db: AsyncSession,
    *,
    exclude_user_id: Optional[str] = None,
) -> list[ShareableUser]:
    """Recipients for the share picker, ordered by display name then email."""
    stmt = select(User)
    if isinstance(exclude_user_id, str) and exclude_user_id.strip():
        stmt = stmt.where(User.id != exclude_user_id)  # type: ignore[arg-type]
    stmt = stmt.order_by(User.display_name, User.email)  # type: ignore[arg-type]
    async with db.begin():
        users = (await db.execute(stmt)).scalars().all()
    return [to_shareable_user(u) for u in users]


async def search_users(db: AsyncSession, query: Optional[str], *, limit: int = 10) -> list[ShareableUser]:
    """Case-insensitive substring search over display name, email and username."""
    needle = (query or "").strip().lower()
    if not needle:
        return []
    escaped = needle.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    pattern = f"%{escaped}%"
    stmt = (
        select(User)
        .where(
            or_(
                func.lower(User.display_name).like(pattern, escape="\\"),
                func.lower(User.email).like(pattern, escape="\\"),
                func.lower(User.username).like(pattern, escape="\\"),
            )
        )
        .order_by(User.display_name, User.email)  # type: ignore[arg-type]
        .limit(max(1, limit))
    )
    async with db.begin():
        users = (await db.execute(stmt)).scalars().all()
    return [to_shareable_user(u) for u in users]


async def update_user_profile(
    db: AsyncSession,
    *,
    user_id: str,
    email: Optional[str] = None,
    username: Optional[str] = None,
    display_name: Optional[str] = None,
) -> ClientUser:
    """Update profile fields; only fields passed as strings are touched."""
    async with db.begin():
        user = await _get_user(db, user_id)
        if user is None:
            raise NotFoundError("User not found.")

        changed = False
        if isinstance(email, str):
            normalized_email = normalize_email(email)
            if not normalized_email:
                raise ValidationError("Email is required.", code="EMAIL_REQUIRED")
            taken = (
                await db.execute(
                    select(User.id).where(
                        User.email == normalized_email,  # type: ignore[arg-type]
                        User.id != user_id,  # type: ignore[arg-type]
                    )
                )
            ).first()
            if taken is not None:
                raise ConflictError("Email already in use.", code="EMAIL_IN_USE")
            user.email = normalized_email
            changed = True

        if isinstance(username, str):
            user.username = username.strip() or None
            changed = True

        if isinstance(display_name, str):
            user.display_name = display_name.strip() or None
            changed = True

        if changed:
            user.updated_at = utcnow()
            db.add(user)

        return to_client_user(user, await _get_roles(db, user_id))


async def update_user_roles(
    db: AsyncSession,
    *,
    user_id: str,
    roles: Sequence[str],
) -> ClientUser:
    """Replace a user's roles.

    The last-admin guard lives in `delete_user` only; demoting the last admin
    here is currently allowed.
    """
    async with db.begin():
        user = await _get_user(db, user_id)
        if user is None:
            raise NotFoundError("User not found.")
        stored = await _set_roles(db, user_id, roles)
        user.updated_at = utcnow()
        db.add(user)
        return to_client_user(user, stored)


async def delete_user(db: AsyncSession, *, user_id: str) -> bool:
    """Delete a user and everything hanging off it; refuses the last admin."""
    async with db.begin():
        user = await _get_user(db, user_id)
        if user is None:
            return False

        if ADMIN_ROLE in await _get_roles(db, user_id):
            if await _count_admins(db) <= 1:
                logger.warning("Refusing to delete the last admin (%s)", user.email)
                raise ValidationError("Cannot remove the last admin.", code="LAST_ADMIN")

        owned_shares = select(Share.id).where(Share.owner_id == user_id)  # type: ignore[arg-type]
        await db.execute(
            delete(ShareRecipient).where(
                or_(
                    ShareRecipient.user_id == user_id,  # type: ignore[arg-type]
                    ShareRecipient.share_id.in_(owned_shares),  # type: ignore[attr-defined]
                )
            )
        )
        await db.execute(delete(GuestSession).where(GuestSession.share_id.in_(owned_shares)))  # type: ignore[attr-defined]
        await db.execute(delete(Share).where(Share.owner_id == user_id))  # type: ignore[arg-type]
        await db.execute(delete(UserVolume).where(UserVolume.user_id == user_id))  # type: ignore[arg-type]
        await db.execute(delete(AuthSession).where(AuthSession.user_id == user_id))  # type: ignore[arg-type]
        await db.execute(delete(AuthMethod).where(AuthMethod.user_id == user_id))  # type: ignore[arg-type]
        await db.execute(delete(UserRole).where(UserRole.user_id == user_id))  # type: ignore[arg-type]
        await db.delete(user)

    logger.info("Deleted user %s", user_id)
    return True
