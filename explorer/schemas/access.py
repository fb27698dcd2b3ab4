"""Path permission rules, user volumes and shares."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from explorer.utils.clock import new_id, utcnow


class PathPermission(str, Enum):
    HIDDEN = "hidden"
    READ_ONLY = "ro"
    READ_WRITE = "rw"


class AccessMode(str, Enum):
    READONLY = "readonly"
    READWRITE = "readwrite"


class SourceSpace(str, Enum):
    VOLUME = "volume"
    USER_VOLUME = "user_volume"


class SharingType(str, Enum):
    ANYONE = "anyone"
    USERS = "users"


class AccessRule(SQLModel, table=True):  # type: ignore[call-arg]
    """Permission override for a normalized path (no leading/trailing slash)."""

    __tablename__ = "access_rules"

    id: int | None = Field(default=None, primary_key=True)
    position: int = Field(index=True)
    path: str = Field(index=True)
    permissions: PathPermission
    recursive: bool = Field(default=False)


class UserVolume(SQLModel, table=True):  # type: ignore[call-arg]
    """A directory assigned to a single user, addressed by its label."""

    __tablename__ = "user_volumes"
    __table_args__ = (UniqueConstraint("user_id", "label", name="uq_user_volumes_label"),)

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(foreign_key="users.id", index=True, ondelete="CASCADE")
    label: str
    volume_path: str
    access_mode: AccessMode = Field(default=AccessMode.READWRITE)
    created_at: datetime = Field(default_factory=utcnow)


class Share(SQLModel, table=True):  # type: ignore[call-arg]
    """Published access grant to a path, addressed by an opaque token."""

    __tablename__ = "shares"

    id: str = Field(default_factory=new_id, primary_key=True)
    share_token: str = Field(unique=True, index=True)
    owner_id: str = Field(foreign_key="users.id", index=True, ondelete="CASCADE")
    source_space: SourceSpace = Field(default=SourceSpace.VOLUME)
    source_path: str
    label: str | None = Field(default=None)
    access_mode: AccessMode = Field(default=AccessMode.READONLY)
    sharing_type: SharingType = Field(default=SharingType.ANYONE)
    expires_at: datetime | None = Field(default=None, index=True)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ShareRecipient(SQLModel, table=True):  # type: ignore[call-arg]
    """Permitted user for a `users`-type share."""

    __tablename__ = "share_recipients"

    share_id: str = Field(foreign_key="shares.id", primary_key=True, ondelete="CASCADE")
    user_id: str = Field(foreign_key="users.id", primary_key=True, ondelete="CASCADE")


class GuestSession(SQLModel, table=True):  # type: ignore[call-arg]
    """Anonymous visit to an `anyone` share, tracked by the X-Guest-Session header."""

    __tablename__ = "guest_sessions"

    id: str = Field(primary_key=True)
    share_id: str = Field(foreign_key="shares.id", index=True, ondelete="CASCADE")

    created_at: datetime = Field(default_factory=utcnow)
    last_seen_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime = Field(index=True)
