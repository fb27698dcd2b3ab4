"""Pydantic request/response models for users and request identities."""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    """Base for wire models: snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ClientUser(ApiModel):
    """Client-safe user projection; never carries password hashes."""

    id: str
    email: str
    email_verified: bool = False
    username: Optional[str] = None
    display_name: Optional[str] = None
    roles: list[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_admin(self) -> bool:
        return "admin" in self.roles


class ShareableUser(ApiModel):
    """Minimal projection for share recipient pickers."""

    id: str
    email: str
    username: Optional[str] = None
    display_name: Optional[str] = None


class AuthMethodSummary(ApiModel):
    method: str
    provider: Optional[str] = None


class UserListItem(ClientUser):
    auth_methods: list[AuthMethodSummary] = Field(default_factory=list)


class AuthMethodRead(ApiModel):
    id: str
    user_id: str
    method_type: str
    provider_issuer: Optional[str] = None
    provider_sub: Optional[str] = None
    provider_name: Optional[str] = None
    enabled: bool = True
    created_at: Optional[datetime] = None
    last_used_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Request identities
# ---------------------------------------------------------------------------


class _IdentityBase(ClientUser):
    avatar_url: Optional[str] = None
    provider: str = "local"


class PersistedIdentity(_IdentityBase):
    """Identity backed by a `users` row; `user_id` is safe as a foreign key."""

    kind: Literal["persisted"] = "persisted"
    oidc_issuer: Optional[str] = None

    @property
    def user_id(self) -> Optional[str]:
        return self.id


class EphemeralIdentity(_IdentityBase):
    """Identity synthesized from OIDC claims before any row exists.

    The `id` is prefixed with ``oidc:`` and must never be stored; `user_id`
    is always None.
    """

    kind: Literal["ephemeral"] = "ephemeral"
    provider: str = "oidc"
    subject: str

    @property
    def user_id(self) -> Optional[str]:
        return None


class SyntheticIdentity(_IdentityBase):
    """Stand-in identity used when authentication is disabled."""

    kind: Literal["synthetic"] = "synthetic"
    provider: str = "none"

    @property
    def user_id(self) -> Optional[str]:
        return None


RequestIdentity = Union[PersistedIdentity, EphemeralIdentity, SyntheticIdentity]


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------


class LoginRequest(ApiModel):
    email: str
    password: str


class SetupRequest(ApiModel):
    email: str
    password: str
    username: Optional[str] = None
    display_name: Optional[str] = None


class PasswordChangeRequest(ApiModel):
    current_password: str
    new_password: str


class UserCreateRequest(ApiModel):
    email: str
    password: str
    username: Optional[str] = None
    display_name: Optional[str] = None
    roles: Optional[list[str]] = None


class UserProfileUpdate(ApiModel):
    email: Optional[str] = None
    username: Optional[str] = None
    display_name: Optional[str] = None


class RolesUpdate(ApiModel):
    roles: list[str]


class AdminPasswordReset(ApiModel):
    new_password: str


class AuthStatus(ApiModel):
    auth_enabled: bool
    auth_mode: str
    requires_setup: bool
    user: Optional[ClientUser] = None
