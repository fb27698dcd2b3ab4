"""Server-side sessions for local logins.

The cookie carries a random token; only its HMAC is stored. The request
identity resolver consumes the resulting `SessionData`, it never touches
tokens itself.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from explorer.schemas.auth import AuthSession
from explorer.utils.clock import utcnow

SESSION_COOKIE_NAME = "explorer_session"

SESSION_TTL = timedelta(days=7)
IDLE_TIMEOUT = timedelta(days=1)
LAST_SEEN_UPDATE_THROTTLE = timedelta(minutes=5)


@dataclass(frozen=True)
class SessionData:
    """What a session tells the identity resolver."""

    local_user_id: str | None = None


def _hash_token(token: str, secret_key: str) -> str:
    key = secret_key.encode("utf-8")
    return hmac.new(key, token.encode("utf-8"), hashlib.sha256).hexdigest()


def generate_session_token() -> str:
    """Generate a raw cookie token (stored only as a hash server-side)."""
    return secrets.token_urlsafe(32)


async def issue_session(
    db: AsyncSession,
    *,
    user_id: str,
    secret_key: str,
    ip: str | None = None,
    user_agent: str | None = None,
) -> str:
    """Create a session row and return the raw cookie token."""
    now = utcnow()
    raw_token = generate_session_token()
    async with db.begin():
        db.add(
            AuthSession(
                user_id=user_id,
                token_hash=_hash_token(raw_token, secret_key),
                created_at=now,
                last_seen_at=now,
                expires_at=now + SESSION_TTL,
                revoked_at=None,
                ip=ip,
                user_agent=user_agent,
            )
        )
    return raw_token


async def revoke_session(db: AsyncSession, *, raw_token: str, secret_key: str) -> None:
    """Revoke a session token (idempotent)."""
    now = utcnow()
    token_hash = _hash_token(raw_token, secret_key)
    async with db.begin():
        await db.execute(
            update(AuthSession)
            .where(
                AuthSession.token_hash == token_hash,  # type: ignore[arg-type]
                AuthSession.revoked_at.is_(None),  # type: ignore[union-attr]
            )
            .values(revoked_at=now)
        )


async def load_session(
    db: AsyncSession,
    *,
    raw_token: str | None,
    secret_key: str,
) -> SessionData:
    """Resolve a cookie token to session data; unknown/expired tokens are empty."""
    if not raw_token:
        return SessionData()

    now = utcnow()
    token_hash = _hash_token(raw_token, secret_key)
    async with db.begin():
        result = await db.execute(
            select(AuthSession.user_id, AuthSession.last_seen_at).where(
                AuthSession.token_hash == token_hash,  # type: ignore[arg-type]
                AuthSession.revoked_at.is_(None),  # type: ignore[union-attr]
                AuthSession.expires_at > now,  # type: ignore[operator,arg-type]
            )
        )
        row = result.one_or_none()
        if row is None:
            return SessionData()

        user_id, last_seen_at = row
        if last_seen_at < (now - IDLE_TIMEOUT):
            return SessionData()

        if now - last_seen_at > LAST_SEEN_UPDATE_THROTTLE:
            await db.execute(
                update(AuthSession)
                .where(AuthSession.token_hash == token_hash)  # type: ignore[arg-type]
                .values(last_seen_at=now)
            )

    return SessionData(local_user_id=user_id)
