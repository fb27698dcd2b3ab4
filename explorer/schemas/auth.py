"""Login lockout and server-side session tables."""

from __future__ import annotations

from datetime import datetime

from sqlmodel import Field, SQLModel

from explorer.utils.clock import utcnow


class AuthLock(SQLModel, table=True):  # type: ignore[call-arg]
    """Failed-attempt counter keyed by normalized email.

    `locked_until` is only ever set once `failed_count` reaches the policy
    threshold; expiry is a wall-clock comparison at read time.
    """

    __tablename__ = "auth_locks"

    key: str = Field(primary_key=True)
    failed_count: int = Field(default=0)
    locked_until: datetime | None = Field(default=None)


class AuthSession(SQLModel, table=True):  # type: ignore[call-arg]
    """Server-side session for a local login (cookie token is hashed)."""

    __tablename__ = "auth_sessions"

    id: int | None = Field(default=None, primary_key=True)
    user_id: str = Field(foreign_key="users.id", index=True, ondelete="CASCADE")
    token_hash: str = Field(unique=True, index=True)

    created_at: datetime = Field(default_factory=utcnow)
    last_seen_at: datetime = Field(default_factory=utcnow, index=True)
    expires_at: datetime = Field(index=True)
    revoked_at: datetime | None = Field(default=None, index=True)

    ip: str | None = Field(default=None)
    user_agent: str | None = Field(default=None)
