"""Authentication routes: status, first-run setup, local login/logout."""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from explorer.config import Settings
from explorer.errors import ForbiddenError, UnauthorizedError
from explorer.models.users import (
    AuthStatus,
    ClientUser,
    LoginRequest,
    PasswordChangeRequest,
    RequestIdentity,
    SetupRequest,
)
from explorer.routes.deps import (
    get_current_identity,
    get_lockout_guard,
    get_settings,
    require_identity,
    require_user_id,
    to_client,
)
from explorer.services.local_auth_service import (
    attempt_local_login,
    change_local_password,
    create_local_user,
)
from explorer.services.lockout_service import LockoutGuard
from explorer.services.session_service import (
    SESSION_COOKIE_NAME,
    SESSION_TTL,
    issue_session,
    revoke_session,
)
from explorer.services.user_store import ADMIN_ROLE, count_users
from explorer.utils.db_async import get_session

router = APIRouter(prefix="/api/auth", tags=["auth"])


async def _start_session(
    request: Request,
    response: Response,
    db: AsyncSession,
    *,
    user_id: str,
    app_settings: Settings,
) -> None:
    raw_token = await issue_session(
        db,
        user_id=user_id,
        secret_key=app_settings.secret_key,
        ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=raw_token,
        httponly=True,
        samesite="lax",
        secure=not app_settings.is_dev,
        path="/",
        max_age=int(SESSION_TTL.total_seconds()),
    )


@router.get("/status", response_model=AuthStatus)
async def auth_status(
    identity: Optional[RequestIdentity] = Depends(get_current_identity),
    db: AsyncSession = Depends(get_session),
    app_settings: Settings = Depends(get_settings),
) -> AuthStatus:
    """Report auth configuration and whether first-run setup is pending."""
    requires_setup = app_settings.auth_enabled and await count_users(db) == 0
    return AuthStatus(
        auth_enabled=app_settings.auth_enabled,
        auth_mode=app_settings.auth_mode,
        requires_setup=requires_setup,
        user=to_client(identity) if identity is not None else None,
    )


@router.post("/setup", response_model=ClientUser, status_code=status.HTTP_201_CREATED)
async def setup_first_admin(
    payload: SetupRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_session),
    app_settings: Settings = Depends(get_settings),
) -> ClientUser:
    """Create the first account as an admin and sign it in."""
    if await count_users(db) > 0:
        raise ForbiddenError("Setup has already been completed.", code="SETUP_COMPLETE")

    user = await create_local_user(
        db,
        email=payload.email,
        password=payload.password,
        username=payload.username,
        display_name=payload.display_name,
        roles=[ADMIN_ROLE],
        hash_iterations=app_settings.password_hash_iterations,
    )
    await _start_session(request, response, db, user_id=user.id, app_settings=app_settings)
    return user


@router.post("/login", response_model=ClientUser)
async def login(
    payload: LoginRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_session),
    guard: LockoutGuard = Depends(get_lockout_guard),
    app_settings: Settings = Depends(get_settings),
) -> ClientUser:
    """Verify local credentials and issue a session cookie."""
    if app_settings.auth_mode == "oidc":
        raise ForbiddenError("Local sign-in is disabled.", code="LOCAL_AUTH_DISABLED")

    user = await attempt_local_login(db, email=payload.email, password=payload.password, guard=guard)
    if user is None:
        raise UnauthorizedError("Invalid email or password.", code="INVALID_CREDENTIALS")

    await _start_session(request, response, db, user_id=user.id, app_settings=app_settings)
    return user


@router.post("/logout")
async def logout(
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_session),
    app_settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
    raw_token = request.cookies.get(SESSION_COOKIE_NAME)
    if raw_token:
        await revoke_session(db, raw_token=raw_token, secret_key=app_settings.secret_key)
    response.delete_cookie(SESSION_COOKIE_NAME, path="/")
    return {"success": True}


@router.get("/me")
async def me(identity: RequestIdentity = Depends(require_identity)) -> RequestIdentity:
    return identity


@router.post("/password")
async def change_password(
    payload: PasswordChangeRequest,
    identity: RequestIdentity = Depends(require_identity),
    db: AsyncSession = Depends(get_session),
    app_settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
    """Change the caller's own local password."""
    await change_local_password(
        db,
        user_id=require_user_id(identity),
        current_password=payload.current_password,
        new_password=payload.new_password,
        hash_iterations=app_settings.password_hash_iterations,
    )
    return {"success": True}
