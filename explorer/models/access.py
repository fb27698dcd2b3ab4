"""Pydantic request/response models for access rules, volumes and shares."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import Field

from explorer.models.users import ApiModel
from explorer.schemas.access import AccessMode, PathPermission, SharingType, SourceSpace


class AccessRuleIn(ApiModel):
    path: str
    permissions: PathPermission
    recursive: bool = False


class AccessRuleRead(AccessRuleIn):
    id: Optional[int] = None


class UserVolumeCreate(ApiModel):
    label: str
    volume_path: str
    access_mode: AccessMode = AccessMode.READWRITE


class UserVolumeRead(ApiModel):
    id: str
    user_id: str
    label: str
    volume_path: str
    access_mode: AccessMode
    created_at: Optional[datetime] = None


class ShareCreate(ApiModel):
    source_path: str
    access_mode: AccessMode = AccessMode.READONLY
    sharing_type: SharingType = SharingType.ANYONE
    user_ids: list[str] = Field(default_factory=list)
    expires_at: Optional[datetime] = None
    label: Optional[str] = None


class ShareUpdate(ApiModel):
    access_mode: Optional[AccessMode] = None
    user_ids: Optional[list[str]] = None
    expires_at: Optional[datetime] = None
    label: Optional[str] = None


class ShareRead(ApiModel):
    """Owner-facing view of a share."""

    id: str
    share_token: str
    owner_id: str
    source_space: SourceSpace
    source_path: str
    label: Optional[str] = None
    access_mode: AccessMode
    sharing_type: SharingType
    recipient_ids: list[str] = Field(default_factory=list)
    expires_at: Optional[datetime] = None
    is_expired: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ShareInfo(ApiModel):
    """Public metadata for a share token; never fails on expiry."""

    share_token: str
    label: Optional[str] = None
    name: str
    sharing_type: SharingType
    access_mode: AccessMode
    requires_auth: bool
    expires_at: Optional[datetime] = None
    is_expired: bool


class SharedView(ApiModel):
    """What a recipient sees: paths are re-rooted under `share/<token>`."""

    share_token: str
    label: Optional[str] = None
    source_path: str
    access_mode: AccessMode
    sharing_type: SharingType
    expires_at: Optional[datetime] = None


class ShareAccessResponse(ApiModel):
    share: SharedView
    guest_session_id: Optional[str] = None


class BrowseItem(ApiModel):
    name: str
    path: str
    kind: str
    size: Optional[int] = None
    modified_at: Optional[datetime] = None


class BrowseResponse(ApiModel):
    path: str
    access_mode: AccessMode
    items: list[BrowseItem] = Field(default_factory=list)
