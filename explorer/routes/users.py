"""User administration routes (admin only, except the share picker)."""

from __future__ import annotations

from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from explorer.config import Settings
from explorer.errors import NotFoundError
from explorer.models.access import UserVolumeCreate, UserVolumeRead
from explorer.models.users import (
    AdminPasswordReset,
    ClientUser,
    RequestIdentity,
    RolesUpdate,
    ShareableUser,
    UserCreateRequest,
    UserListItem,
    UserProfileUpdate,
)
from explorer.routes.deps import get_settings, require_admin, require_identity
from explorer.services.local_auth_service import create_local_user, set_local_password_admin
from explorer.services.user_management_service import (
    delete_user,
    list_shareable_users,
    list_users,
    search_users,
    update_user_profile,
    update_user_roles,
)
from explorer.services.user_volumes_service import (
    add_volume_to_user,
    get_volume,
    list_user_volumes,
    remove_volume,
)
from explorer.utils.db_async import get_session

router = APIRouter(prefix="/api/users", tags=["users"])


@router.get("", response_model=List[UserListItem])
async def get_users(
    _admin: RequestIdentity = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> List[UserListItem]:
    return await list_users(db)


@router.post("", response_model=ClientUser, status_code=status.HTTP_201_CREATED)
async def create_user(
    payload: UserCreateRequest,
    _admin: RequestIdentity = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
    app_settings: Settings = Depends(get_settings),
) -> ClientUser:
    return await create_local_user(
        db,
        email=payload.email,
        password=payload.password,
        username=payload.username,
        display_name=payload.display_name,
        roles=payload.roles,
        hash_iterations=app_settings.password_hash_iterations,
    )


@router.get("/shareable", response_model=List[ShareableUser])
async def get_shareable_users(
    q: Optional[str] = Query(default=None, description="Search query"),
    identity: RequestIdentity = Depends(require_identity),
    db: AsyncSession = Depends(get_session),
) -> List[ShareableUser]:
    """Users the caller can pick as share recipients."""
    if q and q.strip():
        return [u for u in await search_users(db, q) if u.id != identity.user_id]
    return await list_shareable_users(db, exclude_user_id=identity.user_id)


@router.patch("/{user_id}", response_model=ClientUser)
async def patch_user(
    user_id: str,
    payload: UserProfileUpdate,
    _admin: RequestIdentity = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> ClientUser:
    return await update_user_profile(
        db,
        user_id=user_id,
        email=payload.email,
        username=payload.username,
        display_name=payload.display_name,
    )


@router.put("/{user_id}/roles", response_model=ClientUser)
async def put_user_roles(
    user_id: str,
    payload: RolesUpdate,
    _admin: RequestIdentity = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> ClientUser:
    return await update_user_roles(db, user_id=user_id, roles=payload.roles)


@router.post("/{user_id}/password")
async def reset_user_password(
    user_id: str,
    payload: AdminPasswordReset,
    _admin: RequestIdentity = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
    app_settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
    await set_local_password_admin(
        db,
        user_id=user_id,
        new_password=payload.new_password,
        hash_iterations=app_settings.password_hash_iterations,
    )
    return {"success": True}


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_user(
    user_id: str,
    _admin: RequestIdentity = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> Response:
    if not await delete_user(db, user_id=user_id):
        raise NotFoundError("User not found.")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# Assigned volumes
# ---------------------------------------------------------------------------


@router.get("/{user_id}/volumes", response_model=List[UserVolumeRead])
async def get_user_volumes(
    user_id: str,
    _admin: RequestIdentity = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> List[UserVolumeRead]:
    return await list_user_volumes(db, user_id=user_id)


@router.post("/{user_id}/volumes", response_model=UserVolumeRead, status_code=status.HTTP_201_CREATED)
async def assign_user_volume(
    user_id: str,
    payload: UserVolumeCreate,
    _admin: RequestIdentity = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> UserVolumeRead:
    return await add_volume_to_user(
        db,
        user_id=user_id,
        label=payload.label,
        volume_path=payload.volume_path,
        access_mode=payload.access_mode,
    )


@router.delete("/{user_id}/volumes/{volume_id}", status_code=status.HTTP_204_NO_CONTENT)
async def unassign_user_volume(
    user_id: str,
    volume_id: str,
    _admin: RequestIdentity = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> Response:
    volume = await get_volume(db, volume_id)
    if volume is None or volume.user_id != user_id or not await remove_volume(db, volume_id=volume_id):
        raise NotFoundError("Volume not found.")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
