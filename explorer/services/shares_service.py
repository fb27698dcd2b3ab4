"""Share links: publishing a path under an opaque token and authorizing access.

Two source spaces exist. ``volume`` shares point into the shared volume root
and are subject to access rules. ``user_volume`` shares point into one of
the owner's assigned volumes and are stored as ``<volume id>/<inner path>``.

Anonymous visitors of ``anyone`` shares are tracked with guest sessions.
Expired shares stay visible through `get_share_info` but refuse access and
browsing. ``users`` shares are limited to their recipient set.
"""

from __future__ import annotations

import logging
import os
import secrets
import stat
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Iterable, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from explorer.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from explorer.models.access import (
    BrowseItem,
    BrowseResponse,
    ShareAccessResponse,
    ShareCreate,
    SharedView,
    ShareInfo,
    ShareRead,
    ShareUpdate,
)
from explorer.schemas.access import (
    AccessMode,
    GuestSession,
    PathPermission,
    Share,
    ShareRecipient,
    SharingType,
    SourceSpace,
    UserVolume,
)
from explorer.schemas.users import User
from explorer.services.access_control_service import get_permission_for_path, get_rules, resolve_permission
from explorer.services.guest_session_service import GuestSessionData, create_guest_session
from explorer.services.user_store import ADMIN_ROLE
from explorer.services.user_volumes_service import resolve_user_volume_path
from explorer.utils.clock import to_naive_utc, utcnow
from explorer.utils.paths import combine_relative_path, normalize_relative_path, resolve_within

logger = logging.getLogger(__name__)

SHARE_TOKEN_BYTES = 16


@dataclass(frozen=True)
class ShareScope:
    """Absolute directory a share access is allowed to see."""

    share_token: str
    source_space: SourceSpace
    root: Path
    directory: Path
    relative_path: str
    access_mode: AccessMode
    volume_source_path: Optional[str] = None


def generate_share_token() -> str:
    return secrets.token_urlsafe(SHARE_TOKEN_BYTES)


def is_expired(expires_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
    if expires_at is None:
        return False
    return to_naive_utc(expires_at) <= (now or utcnow())  # type: ignore[operator]


def narrower_mode(*modes: AccessMode | str) -> AccessMode:
    """The most restrictive of the given access modes."""
    if all(AccessMode(m) == AccessMode.READWRITE for m in modes):
        return AccessMode.READWRITE
    return AccessMode.READONLY


def _identity_user_id(identity: Any) -> Optional[str]:
    """Stored user id behind an identity; None for ephemeral/synthetic ones."""
    if identity is None:
        return None
    if hasattr(identity, "user_id"):
        return identity.user_id
    return getattr(identity, "id", None)


def _is_admin(identity: Any) -> bool:
    return ADMIN_ROLE in (getattr(identity, "roles", None) or [])


def _require_owner(identity: Any) -> str:
    user_id = _identity_user_id(identity)
    if not user_id:
        raise UnauthorizedError(
            "A signed-in account is required to manage shares.",
            code="PERSISTED_USER_REQUIRED",
        )
    return user_id


def to_share_read(share: Share, recipient_ids: Iterable[str], now: Optional[datetime] = None) -> ShareRead:
    return ShareRead(
        id=share.id,
        share_token=share.share_token,
        owner_id=share.owner_id,
        source_space=SourceSpace(share.source_space),
        source_path=share.source_path,
        label=share.label,
        access_mode=AccessMode(share.access_mode),
        sharing_type=SharingType(share.sharing_type),
        recipient_ids=sorted(recipient_ids),
        expires_at=share.expires_at,
        is_expired=is_expired(share.expires_at, now),
        created_at=share.created_at,
        updated_at=share.updated_at,
    )


# ---------------------------------------------------------------------------
# In-transaction helpers
# ---------------------------------------------------------------------------


async def _get_share(db: AsyncSession, share_id: str) -> Share | None:
    result = await db.execute(select(Share).where(Share.id == share_id))  # type: ignore[arg-type]
    return result.scalar_one_or_none()


async def _get_share_by_token(db: AsyncSession, token: str) -> Share | None:
    result = await db.execute(select(Share).where(Share.share_token == token))  # type: ignore[arg-type]
    return result.scalar_one_or_none()


async def _recipient_ids(db: AsyncSession, share_id: str) -> list[str]:
    result = await db.execute(
        select(ShareRecipient.user_id).where(ShareRecipient.share_id == share_id)  # type: ignore[arg-type]
    )
    return list(result.scalars().all())


async def _existing_user_ids(db: AsyncSession, user_ids: Iterable[str]) -> list[str]:
    wanted = {u.strip() for u in user_ids if isinstance(u, str) and u.strip()}
    if not wanted:
        return []
    result = await db.execute(select(User.id).where(User.id.in_(sorted(wanted))))  # type: ignore[attr-defined]
    return sorted(result.scalars().all())


async def _replace_recipients(db: AsyncSession, share_id: str, user_ids: Iterable[str]) -> list[str]:
    await db.execute(delete(ShareRecipient).where(ShareRecipient.share_id == share_id))  # type: ignore[arg-type]
    stored = list(user_ids)
    for user_id in stored:
        db.add(ShareRecipient(share_id=share_id, user_id=user_id))
    await db.flush()
    return stored


async def _get_volume_for_share(db: AsyncSession, share: Share) -> UserVolume | None:
    volume_id = share.source_path.split("/", 1)[0]
    result = await db.execute(select(UserVolume).where(UserVolume.id == volume_id))  # type: ignore[arg-type]
    return result.scalar_one_or_none()


def _inner_path(share: Share) -> str:
    if SourceSpace(share.source_space) == SourceSpace.USER_VOLUME:
        return share.source_path.partition("/")[2]
    return share.source_path


# ---------------------------------------------------------------------------
# Creation and management
# ---------------------------------------------------------------------------


async def _check_volume_source(db: AsyncSession, source_path: str, access_mode: AccessMode) -> None:
    permission = await get_permission_for_path(db, source_path)
    if permission == PathPermission.HIDDEN:
        raise ForbiddenError("Path is not accessible.", code="PATH_HIDDEN")
    if permission == PathPermission.READ_ONLY and access_mode == AccessMode.READWRITE:
        raise ValidationError("Path is read-only; cannot create a read-write share.", code="READONLY_PATH")


def _check_user_volume_mode(volume_mode: AccessMode | str, access_mode: AccessMode) -> None:
    if AccessMode(volume_mode) == AccessMode.READONLY and access_mode == AccessMode.READWRITE:
        raise ValidationError("Volume is read-only; cannot create a read-write share.", code="READONLY_VOLUME")


async def _resolve_source(
    db: AsyncSession,
    *,
    owner: Any,
    owner_id: str,
    source_path: str,
    access_mode: AccessMode,
    user_volumes_enabled: bool,
) -> tuple[SourceSpace, str]:
    normalized = normalize_relative_path(source_path)
    if not normalized:
        raise ValidationError("A source path is required.", code="INVALID_PATH")

    if user_volumes_enabled:
        resolved = await resolve_user_volume_path(db, user_id=owner_id, path=normalized)
        if resolved is not None:
            volume, inner = resolved
            _check_user_volume_mode(volume.access_mode, access_mode)
            return SourceSpace.USER_VOLUME, combine_relative_path(volume.id, inner)
        if not _is_admin(owner):
            raise ForbiddenError(
                "Only admins can share from the shared volume.",
                code="VOLUME_SHARE_FORBIDDEN",
            )

    await _check_volume_source(db, normalized, access_mode)
    return SourceSpace.VOLUME, normalized


async def create_share(
    db: AsyncSession,
    *,
    owner: Any,
    payload: ShareCreate,
    user_volumes_enabled: bool = False,
) -> ShareRead:
    """Publish `payload.source_path` under a fresh token owned by `owner`."""
    owner_id = _require_owner(owner)
    access_mode = AccessMode(payload.access_mode)
    sharing_type = SharingType(payload.sharing_type)
    now = utcnow()

    expires_at = to_naive_utc(payload.expires_at)
    if expires_at is not None and expires_at <= now:
        raise ValidationError("Expiry must be in the future.", code="INVALID_EXPIRY")

    space, stored_path = await _resolve_source(
        db,
        owner=owner,
        owner_id=owner_id,
        source_path=payload.source_path,
        access_mode=access_mode,
        user_volumes_enabled=user_volumes_enabled,
    )

    try:
        async with db.begin():
            recipients: list[str] = []
            if sharing_type == SharingType.USERS:
                recipients = await _existing_user_ids(db, payload.user_ids)
                if not recipients:
                    raise ValidationError(
                        "Select at least one existing user to share with.",
                        code="RECIPIENTS_REQUIRED",
                    )
            share = Share(
                share_token=generate_share_token(),
                owner_id=owner_id,
                source_space=space,
                source_path=stored_path,
                label=(payload.label or "").strip() or None,
                access_mode=access_mode,
                sharing_type=sharing_type,
                expires_at=expires_at,
                created_at=now,
                updated_at=now,
            )
            db.add(share)
            await db.flush()
            await _replace_recipients(db, share.id, recipients)
            created = to_share_read(share, recipients, now)
    except IntegrityError as exc:
        raise ConflictError("Could not allocate a share token; retry.") from exc

    logger.info("Share %s created by %s (%s, %s)", created.id, owner_id, space.value, sharing_type.value)
    return created


async def _load_managed_share(db: AsyncSession, share_id: str, actor: Any) -> Share:
    actor_id = _require_owner(actor)
    share = await _get_share(db, share_id)
    if share is None:
        raise NotFoundError("Share not found.")
    if share.owner_id != actor_id and not _is_admin(actor):
        raise ForbiddenError("Only the owner can manage this share.")
    return share


async def update_share(
    db: AsyncSession,
    *,
    share_id: str,
    actor: Any,
    changes: ShareUpdate,
) -> ShareRead:
    """Apply the fields explicitly set on `changes`; owner or admin only.

    Setting `expires_at` to a past time is allowed and expires the share.
    """
    provided = changes.model_fields_set

    async with db.begin():
        share = await _load_managed_share(db, share_id, actor)
        source_space = SourceSpace(share.source_space)
        source_path = share.source_path
        volume_mode: Optional[AccessMode] = None
        if source_space == SourceSpace.USER_VOLUME:
            volume = await _get_volume_for_share(db, share)
            if volume is None:
                raise NotFoundError("Share source no longer exists.", code="SOURCE_MISSING")
            volume_mode = AccessMode(volume.access_mode)

    new_mode: Optional[AccessMode] = None
    if "access_mode" in provided and changes.access_mode is not None:
        new_mode = AccessMode(changes.access_mode)
        if volume_mode is not None:
            _check_user_volume_mode(volume_mode, new_mode)
        else:
            await _check_volume_source(db, source_path, new_mode)

    now = utcnow()
    async with db.begin():
        share = await _load_managed_share(db, share_id, actor)
        if new_mode is not None:
            share.access_mode = new_mode
        if "expires_at" in provided:
            share.expires_at = to_naive_utc(changes.expires_at)
        if "label" in provided:
            share.label = (changes.label or "").strip() or None

        if "user_ids" in provided and changes.user_ids is not None:
            recipients = await _existing_user_ids(db, changes.user_ids)
            if SharingType(share.sharing_type) == SharingType.USERS and not recipients:
                raise ValidationError(
                    "Select at least one existing user to share with.",
                    code="RECIPIENTS_REQUIRED",
                )
            await _replace_recipients(db, share.id, recipients)
        else:
            recipients = await _recipient_ids(db, share.id)

        share.updated_at = now
        db.add(share)
        return to_share_read(share, recipients, now)


async def delete_share(db: AsyncSession, *, share_id: str, actor: Any) -> None:
    async with db.begin():
        share = await _load_managed_share(db, share_id, actor)
        await db.execute(delete(GuestSession).where(GuestSession.share_id == share.id))  # type: ignore[arg-type]
        await db.execute(delete(ShareRecipient).where(ShareRecipient.share_id == share.id))  # type: ignore[arg-type]
        await db.delete(share)
    logger.info("Share %s deleted", share_id)


async def list_shares(db: AsyncSession, *, owner: Any) -> list[ShareRead]:
    """Shares owned by `owner`, newest first."""
    owner_id = _require_owner(owner)
    now = utcnow()
    async with db.begin():
        shares = (
            await db.execute(
                select(Share)
                .where(Share.owner_id == owner_id)  # type: ignore[arg-type]
                .order_by(Share.created_at.desc())  # type: ignore[attr-defined]
            )
        ).scalars().all()
        return [to_share_read(s, await _recipient_ids(db, s.id), now) for s in shares]


# ---------------------------------------------------------------------------
# Public access
# ---------------------------------------------------------------------------


async def get_share_info(db: AsyncSession, *, token: str) -> ShareInfo:
    """Public metadata for a token. Reports expiry rather than failing on it."""
    async with db.begin():
        share = await _get_share_by_token(db, token)
        if share is None:
            raise NotFoundError("Share not found.", code="SHARE_NOT_FOUND")
        inner = _inner_path(share)
        name = inner.rsplit("/", 1)[-1] if inner else ""
        if not name and SourceSpace(share.source_space) == SourceSpace.USER_VOLUME:
            volume = await _get_volume_for_share(db, share)
            name = volume.label if volume is not None else ""
        sharing_type = SharingType(share.sharing_type)
        return ShareInfo(
            share_token=share.share_token,
            label=share.label,
            name=share.label or name or share.share_token,
            sharing_type=sharing_type,
            access_mode=AccessMode(share.access_mode),
            requires_auth=sharing_type == SharingType.USERS,
            expires_at=share.expires_at,
            is_expired=is_expired(share.expires_at),
        )


async def _authorize(db: AsyncSession, token: str, identity: Any) -> tuple[Share, Optional[UserVolume]]:
    """Load a share for access, enforcing expiry and the recipient set."""
    share = await _get_share_by_token(db, token)
    if share is None:
        raise NotFoundError("Share not found.", code="SHARE_NOT_FOUND")
    if is_expired(share.expires_at):
        raise ForbiddenError("This share has expired.", code="SHARE_EXPIRED")

    if SharingType(share.sharing_type) == SharingType.USERS:
        if identity is None:
            raise UnauthorizedError("Sign in to open this share.")
        user_id = _identity_user_id(identity)
        if not user_id or user_id not in await _recipient_ids(db, share.id):
            raise ForbiddenError("This share is not shared with you.", code="SHARE_NOT_PERMITTED")

    volume: Optional[UserVolume] = None
    if SourceSpace(share.source_space) == SourceSpace.USER_VOLUME:
        volume = await _get_volume_for_share(db, share)
        if volume is None:
            raise NotFoundError("Share source no longer exists.", code="SOURCE_MISSING")
    return share, volume


async def _effective_mode(db: AsyncSession, share: Share, volume: Optional[UserVolume]) -> AccessMode:
    if volume is not None:
        return narrower_mode(share.access_mode, volume.access_mode)
    permission = await get_permission_for_path(db, share.source_path)
    if permission == PathPermission.HIDDEN:
        raise ForbiddenError("Path is not accessible.", code="PATH_HIDDEN")
    if permission == PathPermission.READ_ONLY:
        return AccessMode.READONLY
    return AccessMode(share.access_mode)


async def access_share(
    db: AsyncSession,
    *,
    token: str,
    identity: Any,
    guest: Optional[GuestSessionData] = None,
) -> ShareAccessResponse:
    """Authorize a share and describe it re-rooted under ``share/<token>``.

    Anonymous callers get a guest session id, reusing `guest` when it already
    belongs to this share.
    """
    async with db.begin():
        share, volume = await _authorize(db, token, identity)
    mode = await _effective_mode(db, share, volume)

    guest_session_id: Optional[str] = None
    if identity is None:
        if guest is not None and guest.share_id == share.id:
            guest_session_id = guest.id
        else:
            guest_session_id = (await create_guest_session(db, share_id=share.id)).id

    return ShareAccessResponse(
        share=SharedView(
            share_token=share.share_token,
            label=share.label,
            source_path=f"share/{share.share_token}",
            access_mode=mode,
            sharing_type=SharingType(share.sharing_type),
            expires_at=share.expires_at,
        ),
        guest_session_id=guest_session_id,
    )


async def browse_share(
    db: AsyncSession,
    *,
    token: str,
    identity: Any,
    inner_path: Optional[str],
    volume_root: str,
) -> ShareScope:
    """Resolve the absolute directory `inner_path` names inside a share.

    Traversal above the share root is a ValidationError.
    """
    relative = normalize_relative_path(inner_path)
    async with db.begin():
        share, volume = await _authorize(db, token, identity)
    mode = await _effective_mode(db, share, volume)

    if volume is not None:
        root = resolve_within(volume.volume_path, _inner_path(share))
        volume_source = None
    else:
        root = resolve_within(volume_root, share.source_path)
        volume_source = combine_relative_path(share.source_path, relative)
        permission = await get_permission_for_path(db, volume_source)
        if permission == PathPermission.HIDDEN:
            raise ForbiddenError("Path is not accessible.", code="PATH_HIDDEN")
        if permission == PathPermission.READ_ONLY:
            mode = AccessMode.READONLY

    return ShareScope(
        share_token=share.share_token,
        source_space=SourceSpace(share.source_space),
        root=root,
        directory=resolve_within(root, relative),
        relative_path=relative,
        access_mode=mode,
        volume_source_path=volume_source,
    )


def _modified_at(stat_mtime: float) -> datetime:
    return datetime.fromtimestamp(stat_mtime, UTC).replace(tzinfo=None)


def _entry_target(root: Path, entry: Path) -> Path | None:
    """Resolved target of a listing entry, or None if it is dangling or escapes `root`."""
    try:
        target = entry.resolve(strict=True)
    except (OSError, RuntimeError):
        return None
    if target != root and root not in target.parents:
        return None
    return target


async def list_share_directory(db: AsyncSession, scope: ShareScope) -> BrowseResponse:
    """List `scope.directory`, skipping entries hidden by access rules.

    Symlinks are followed only while they stay inside the share root;
    dangling links and links leaving the root are left out of the listing.
    """
    if not scope.directory.exists():
        raise NotFoundError("Path not found.", code="PATH_NOT_FOUND")
    if not scope.directory.is_dir():
        raise ValidationError("Path is not a directory.", code="NOT_A_DIRECTORY")

    rules = await get_rules(db) if scope.volume_source_path is not None else []

    listed: list[tuple[Path, os.stat_result]] = []
    for entry in scope.directory.iterdir():
        if rules:
            rule_path = combine_relative_path(scope.volume_source_path, entry.name)
            if resolve_permission(rules, rule_path) == PathPermission.HIDDEN:
                continue
        target = _entry_target(scope.root, entry)
        if target is None:
            logger.debug("Skipping %s in share %s", entry.name, scope.share_token)
            continue
        try:
            listed.append((entry, target.stat()))
        except OSError:
            logger.debug("Could not stat %s in share %s", entry.name, scope.share_token)

    listed.sort(key=lambda item: (not stat.S_ISDIR(item[1].st_mode), item[0].name.lower()))
    items = [
        BrowseItem(
            name=entry.name,
            path=combine_relative_path(scope.relative_path, entry.name),
            kind="directory" if stat.S_ISDIR(info.st_mode) else "file",
            size=None if stat.S_ISDIR(info.st_mode) else info.st_size,
            modified_at=_modified_at(info.st_mtime),
        )
        for entry, info in listed
    ]
    return BrowseResponse(path=scope.relative_path, access_mode=scope.access_mode, items=items)
