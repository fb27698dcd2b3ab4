"""Shared FastAPI dependencies: settings, lockout guard and request identity."""

from __future__ import annotations

from typing import Any, Optional

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from explorer.config import Settings, settings
from explorer.errors import ForbiddenError, UnauthorizedError
from explorer.models.users import ClientUser, RequestIdentity, SyntheticIdentity
from explorer.services.guest_session_service import GuestSessionData, resolve_guest_session
from explorer.services.lockout_service import LockoutGuard
from explorer.services.request_user_service import get_request_user
from explorer.services.session_service import SESSION_COOKIE_NAME, load_session
from explorer.services.user_store import ADMIN_ROLE
from explorer.utils.db_async import get_session

ANONYMOUS_USER_ID = "anonymous"


def get_settings() -> Settings:
    return settings


def get_lockout_guard(app_settings: Settings = Depends(get_settings)) -> LockoutGuard:
    return LockoutGuard(app_settings.lockout_policy())


def anonymous_identity() -> SyntheticIdentity:
    """Identity used for every request while authentication is disabled."""
    return SyntheticIdentity(
        id=ANONYMOUS_USER_ID,
        email="",
        username=ANONYMOUS_USER_ID,
        display_name="Anonymous",
        roles=[ADMIN_ROLE],
    )


async def get_current_identity(
    request: Request,
    db: AsyncSession = Depends(get_session),
    app_settings: Settings = Depends(get_settings),
) -> Optional[RequestIdentity]:
    """Resolve who is calling; None when unauthenticated."""
    if not app_settings.auth_enabled:
        request.state.user = anonymous_identity()
    else:
        request.state.session = await load_session(
            db,
            raw_token=request.cookies.get(SESSION_COOKIE_NAME),
            secret_key=app_settings.secret_key,
        )
    return await get_request_user(db, request, oidc=app_settings.oidc_config())


async def get_guest_session(
    request: Request,
    identity: Optional[RequestIdentity] = Depends(get_current_identity),
    db: AsyncSession = Depends(get_session),
) -> Optional[GuestSessionData]:
    """Guest session from the X-Guest-Session header; None for signed-in callers."""
    request.state.guest = await resolve_guest_session(db, request, identity=identity)
    return request.state.guest


async def require_identity(
    identity: Optional[RequestIdentity] = Depends(get_current_identity),
) -> RequestIdentity:
    if identity is None:
        raise UnauthorizedError()
    return identity


async def require_admin(identity: RequestIdentity = Depends(require_identity)) -> RequestIdentity:
    if ADMIN_ROLE not in (identity.roles or []):
        raise ForbiddenError("Administrator access required.", code="ADMIN_REQUIRED")
    return identity


def require_user_id(identity: Any) -> str:
    """The stored user id for `identity`, or 401 when there is none."""
    user_id = getattr(identity, "user_id", None)
    if not user_id:
        raise UnauthorizedError("A signed-in account is required.", code="PERSISTED_USER_REQUIRED")
    return user_id


def to_client(identity: Any) -> ClientUser:
    return ClientUser.model_validate(identity.model_dump())
