"""Per-user volumes: directories assigned to one user and addressed by label."""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import delete, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from explorer.errors import ConflictError, NotFoundError, ValidationError
from explorer.models.access import UserVolumeRead
from explorer.schemas.access import AccessMode, GuestSession, Share, ShareRecipient, SourceSpace, UserVolume
from explorer.services.user_store import _get_user
from explorer.utils.clock import utcnow
from explorer.utils.paths import ensure_valid_name, normalize_relative_path

logger = logging.getLogger(__name__)


def to_volume_read(volume: UserVolume) -> UserVolumeRead:
    return UserVolumeRead(
        id=volume.id,
        user_id=volume.user_id,
        label=volume.label,
        volume_path=volume.volume_path,
        access_mode=AccessMode(volume.access_mode),
        created_at=volume.created_at,
    )


async def _get_volume_by_label(db: AsyncSession, user_id: str, label: str) -> UserVolume | None:
    result = await db.execute(
        select(UserVolume).where(
            UserVolume.user_id == user_id,  # type: ignore[arg-type]
            UserVolume.label == label,  # type: ignore[arg-type]
        )
    )
    return result.scalar_one_or_none()


async def _get_volume(db: AsyncSession, volume_id: str) -> UserVolume | None:
    result = await db.execute(select(UserVolume).where(UserVolume.id == volume_id))  # type: ignore[arg-type]
    return result.scalar_one_or_none()


async def add_volume_to_user(
    db: AsyncSession,
    *,
    user_id: str,
    label: str,
    volume_path: str,
    access_mode: AccessMode | str = AccessMode.READWRITE,
) -> UserVolumeRead:
    """Assign a directory to a user; labels are unique per user."""
    clean_label = ensure_valid_name(label)
    path = (volume_path or "").strip()
    if not path:
        raise ValidationError("Volume path is required.", code="INVALID_PATH")
    try:
        mode = AccessMode(access_mode)
    except ValueError as exc:
        raise ValidationError("Invalid access mode.", code="INVALID_ACCESS_MODE") from exc

    try:
        async with db.begin():
            if await _get_user(db, user_id) is None:
                raise NotFoundError("User not found.")
            if await _get_volume_by_label(db, user_id, clean_label) is not None:
                raise ConflictError("A volume with this label already exists.", code="VOLUME_EXISTS")
            volume = UserVolume(
                user_id=user_id,
                label=clean_label,
                volume_path=path,
                access_mode=mode,
                created_at=utcnow(),
            )
            db.add(volume)
            await db.flush()
            created = to_volume_read(volume)
    except IntegrityError as exc:
        raise ConflictError("A volume with this label already exists.", code="VOLUME_EXISTS") from exc

    logger.info("Assigned volume %s to user %s", clean_label, user_id)
    return created


async def list_user_volumes(db: AsyncSession, *, user_id: str) -> list[UserVolumeRead]:
    async with db.begin():
        result = await db.execute(
            select(UserVolume)
            .where(UserVolume.user_id == user_id)  # type: ignore[arg-type]
            .order_by(UserVolume.label)  # type: ignore[arg-type]
        )
        return [to_volume_read(v) for v in result.scalars().all()]


async def get_volume(db: AsyncSession, volume_id: str) -> UserVolumeRead | None:
    async with db.begin():
        volume = await _get_volume(db, volume_id)
        return to_volume_read(volume) if volume is not None else None


async def remove_volume(db: AsyncSession, *, volume_id: str) -> bool:
    """Remove a volume and every share published from it."""
    async with db.begin():
        volume = await _get_volume(db, volume_id)
        if volume is None:
            return False
        share_ids = select(Share.id).where(
            Share.source_space == SourceSpace.USER_VOLUME,  # type: ignore[arg-type]
            or_(
                Share.source_path == volume_id,  # type: ignore[arg-type]
                Share.source_path.startswith(volume_id + "/"),  # type: ignore[attr-defined]
            ),
        )
        await db.execute(delete(ShareRecipient).where(ShareRecipient.share_id.in_(share_ids)))  # type: ignore[attr-defined]
        await db.execute(delete(GuestSession).where(GuestSession.share_id.in_(share_ids)))  # type: ignore[attr-defined]
        await db.execute(delete(Share).where(Share.id.in_(share_ids)))  # type: ignore[union-attr]
        await db.delete(volume)

    logger.info("Removed volume %s", volume_id)
    return True


async def resolve_user_volume_path(
    db: AsyncSession,
    *,
    user_id: str,
    path: Optional[str],
) -> tuple[UserVolumeRead, str] | None:
    """Split `<label>/<inner>` into the user's volume and the inner path.

    Returns None when the first segment does not name one of the user's
    volumes.
    """
    normalized = normalize_relative_path(path)
    if not normalized:
        return None
    label, _, inner = normalized.partition("/")
    async with db.begin():
        volume = await _get_volume_by_label(db, user_id, label)
        if volume is None:
            return None
        return to_volume_read(volume), inner
