"""Share management (``/api/shares``) and public share access (``/api/share``)."""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from explorer.config import Settings
from explorer.models.access import (
    BrowseResponse,
    ShareAccessResponse,
    ShareCreate,
    ShareInfo,
    ShareRead,
    ShareUpdate,
)
from explorer.models.users import RequestIdentity
from explorer.routes.deps import get_current_identity, get_guest_session, get_settings, require_identity
from explorer.services.guest_session_service import GuestSessionData
from explorer.services.shares_service import (
    access_share,
    browse_share,
    create_share,
    delete_share,
    get_share_info,
    list_share_directory,
    list_shares,
    update_share,
)
from explorer.utils.db_async import get_session

router = APIRouter(prefix="/api/shares", tags=["shares"])
public_router = APIRouter(prefix="/api/share", tags=["shares"])


@router.post("", response_model=ShareRead, status_code=status.HTTP_201_CREATED)
async def create(
    payload: ShareCreate,
    identity: RequestIdentity = Depends(require_identity),
    db: AsyncSession = Depends(get_session),
    app_settings: Settings = Depends(get_settings),
) -> ShareRead:
    return await create_share(
        db,
        owner=identity,
        payload=payload,
        user_volumes_enabled=app_settings.user_volumes,
    )


@router.get("", response_model=List[ShareRead])
async def list_own(
    identity: RequestIdentity = Depends(require_identity),
    db: AsyncSession = Depends(get_session),
) -> List[ShareRead]:
    return await list_shares(db, owner=identity)


@router.put("/{share_id}", response_model=ShareRead)
async def update(
    share_id: str,
    payload: ShareUpdate,
    identity: RequestIdentity = Depends(require_identity),
    db: AsyncSession = Depends(get_session),
) -> ShareRead:
    return await update_share(db, share_id=share_id, actor=identity, changes=payload)


@router.delete("/{share_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete(
    share_id: str,
    identity: RequestIdentity = Depends(require_identity),
    db: AsyncSession = Depends(get_session),
) -> Response:
    await delete_share(db, share_id=share_id, actor=identity)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@public_router.get("/{token}/info", response_model=ShareInfo)
async def info(token: str, db: AsyncSession = Depends(get_session)) -> ShareInfo:
    return await get_share_info(db, token=token)


@public_router.get("/{token}/access", response_model=ShareAccessResponse)
async def access(
    token: str,
    identity: Optional[RequestIdentity] = Depends(get_current_identity),
    guest: Optional[GuestSessionData] = Depends(get_guest_session),
    db: AsyncSession = Depends(get_session),
) -> ShareAccessResponse:
    return await access_share(db, token=token, identity=identity, guest=guest)


@public_router.get("/{token}/browse", response_model=BrowseResponse)
@public_router.get("/{token}/browse/{path:path}", response_model=BrowseResponse)
async def browse(
    token: str,
    path: str = "",
    identity: Optional[RequestIdentity] = Depends(get_current_identity),
    db: AsyncSession = Depends(get_session),
    app_settings: Settings = Depends(get_settings),
) -> BrowseResponse:
    """List a directory inside a share."""
    scope = await browse_share(
        db,
        token=token,
        identity=identity,
        inner_path=path,
        volume_root=app_settings.volume_root,
    )
    return await list_share_directory(db, scope)
