"""Guest sessions for anonymous visitors of ``anyone`` shares.

Opening a share without signing in issues a guest session id. The client
sends it back in the ``X-Guest-Session`` header so repeat visits reuse the
same session. A guest session is bound to one share, dies with it, and never
outranks a signed-in identity.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from explorer.errors import NotFoundError
from explorer.schemas.access import GuestSession, Share, SharingType
from explorer.utils.clock import Clock, utcnow

logger = logging.getLogger(__name__)

GUEST_SESSION_HEADER = "X-Guest-Session"
GUEST_SESSION_TTL = timedelta(hours=24)


@dataclass(frozen=True)
class GuestSessionData:
    id: str
    share_id: str
    share_token: str
    expires_at: datetime


def generate_guest_session_id() -> str:
    return secrets.token_urlsafe(24)


async def create_guest_session(
    db: AsyncSession,
    *,
    share_id: str,
    clock: Clock = utcnow,
) -> GuestSessionData:
    now = clock()
    async with db.begin():
        share = (
            await db.execute(select(Share).where(Share.id == share_id))  # type: ignore[arg-type]
        ).scalar_one_or_none()
        if share is None:
            raise NotFoundError("Share not found.", code="SHARE_NOT_FOUND")
        guest = GuestSession(
            id=generate_guest_session_id(),
            share_id=share.id,
            created_at=now,
            last_seen_at=now,
            expires_at=now + GUEST_SESSION_TTL,
        )
        db.add(guest)
        created = GuestSessionData(
            id=guest.id,
            share_id=share.id,
            share_token=share.share_token,
            expires_at=guest.expires_at,
        )
    logger.info("Guest session opened for share %s", share_id)
    return created


async def load_guest_session(
    db: AsyncSession,
    *,
    guest_session_id: Optional[str],
    clock: Clock = utcnow,
) -> GuestSessionData | None:
    """Resolve a guest session id; unknown, expired or orphaned ids give None.

    A session also lapses once its share expires or stops being public.
    """
    if not guest_session_id or not guest_session_id.strip():
        return None

    now = clock()
    async with db.begin():
        row = (
            await db.execute(
                select(GuestSession, Share)
                .join(Share, Share.id == GuestSession.share_id)  # type: ignore[arg-type]
                .where(GuestSession.id == guest_session_id.strip())  # type: ignore[arg-type]
            )
        ).one_or_none()
        if row is None:
            return None
        guest, share = row
        if guest.expires_at <= now:
            return None
        if share.expires_at is not None and share.expires_at <= now:
            return None
        if SharingType(share.sharing_type) != SharingType.ANYONE:
            return None

        guest.last_seen_at = now
        db.add(guest)
        return GuestSessionData(
            id=guest.id,
            share_id=share.id,
            share_token=share.share_token,
            expires_at=guest.expires_at,
        )


async def revoke_guest_session(db: AsyncSession, *, guest_session_id: str) -> None:
    async with db.begin():
        await db.execute(delete(GuestSession).where(GuestSession.id == guest_session_id))  # type: ignore[arg-type]


async def resolve_guest_session(
    db: AsyncSession,
    request: Any,
    *,
    identity: Any,
    clock: Clock = utcnow,
) -> GuestSessionData | None:
    """Guest session named by the request header.

    Signed-in callers keep their own identity; a lingering guest header is
    ignored for them.
    """
    if identity is not None:
        return None
    headers = getattr(request, "headers", None) or {}
    return await load_guest_session(db, guest_session_id=headers.get(GUEST_SESSION_HEADER), clock=clock)
