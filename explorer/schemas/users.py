"""User identity tables.

A user owns any number of auth methods (one local password, N OIDC links)
and a set of roles stored one row per role.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from explorer.utils.clock import new_id, utcnow


class AuthMethodType(str, Enum):
    LOCAL = "local"
    OIDC = "oidc"


class User(SQLModel, table=True):  # type: ignore[call-arg]
    """Identity record; email is stored normalized (trimmed, lower-cased)."""

    __tablename__ = "users"

    id: str = Field(default_factory=new_id, primary_key=True)
    email: str = Field(unique=True, index=True)
    email_verified: bool = Field(default=False)
    username: str | None = Field(default=None, index=True)
    display_name: str | None = Field(default=None)
    avatar_url: str | None = Field(default=None)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class UserRole(SQLModel, table=True):  # type: ignore[call-arg]
    """Role membership; admin checks are `"admin" in roles`."""

    __tablename__ = "user_roles"

    user_id: str = Field(foreign_key="users.id", primary_key=True, ondelete="CASCADE")
    role: str = Field(primary_key=True, index=True)


class AuthMethod(SQLModel, table=True):  # type: ignore[call-arg]
    """One credential mechanism attached to a user."""

    __tablename__ = "auth_methods"
    __table_args__ = (
        UniqueConstraint("provider_issuer", "provider_sub", name="uq_auth_methods_provider"),
    )

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(foreign_key="users.id", index=True, ondelete="CASCADE")
    method_type: AuthMethodType = Field(index=True)

    # local only
    password_hash: str | None = Field(default=None)

    # oidc only
    provider_issuer: str | None = Field(default=None)
    provider_sub: str | None = Field(default=None)
    provider_name: str | None = Field(default=None)

    enabled: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=utcnow)
    last_used_at: datetime | None = Field(default=None)
