"""Resolve the canonical identity behind an inbound request.

Sources, in strict precedence order:

1. ``request.state.user`` -- a pre-populated identity (auth disabled);
   returned as-is when it carries a truthy ``id``.
2. ``request.state.session.local_user_id`` -- a local login session.
3. ``request.state.oidc`` -- an authenticated OIDC session with a ``sub``.

Anything else resolves to None.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from explorer.config import OidcConfig
from explorer.models.users import EphemeralIdentity, PersistedIdentity, RequestIdentity
from explorer.services.oidc_auth_service import derive_roles_from_claims
from explorer.services.user_store import (
    _get_oidc_method,
    _get_roles,
    _get_user,
    normalize_email,
)

logger = logging.getLogger(__name__)


def _state(request: Any) -> Any:
    return getattr(request, "state", None)


def _clean_str(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _oidc_claims(oidc: Any) -> Optional[Mapping[str, Any]]:
    """Claims of an authenticated OIDC session carrying a subject, else None."""
    if oidc is None:
        return None
    is_authenticated = getattr(oidc, "is_authenticated", None)
    if not callable(is_authenticated) or not is_authenticated():
        return None
    claims = getattr(oidc, "user", None)
    if not isinstance(claims, Mapping) or not claims.get("sub"):
        return None
    return claims


async def _load_persisted(
    db: AsyncSession,
    user_id: str,
    *,
    provider: str,
) -> PersistedIdentity | None:
    async with db.begin():
        user = await _get_user(db, user_id)
        if user is None:
            return None
        roles = await _get_roles(db, user.id)
    return PersistedIdentity(
        id=user.id,
        email=user.email,
        email_verified=bool(user.email_verified),
        username=user.username,
        display_name=user.display_name or None,
        avatar_url=user.avatar_url,
        roles=roles,
        created_at=user.created_at,
        updated_at=user.updated_at,
        provider=provider,
    )


def ephemeral_identity_from_claims(
    claims: Mapping[str, Any],
    admin_groups: list[str],
) -> EphemeralIdentity:
    """Build a not-yet-synced identity straight from OIDC claims."""
    sub = str(claims.get("sub"))
    email = normalize_email(claims.get("email") or "")
    username = (
        _clean_str(claims.get("preferred_username"))
        or _clean_str(claims.get("username"))
        or email
        or sub
    )
    return EphemeralIdentity(
        id=f"oidc:{sub}",
        subject=sub,
        email=email,
        email_verified=bool(claims.get("email_verified") or False),
        username=username,
        display_name=_clean_str(claims.get("name")) or username,
        avatar_url=_clean_str(claims.get("picture")),
        roles=derive_roles_from_claims(claims, admin_groups),
        created_at=None,
        updated_at=None,
    )


async def get_request_user(
    db: AsyncSession,
    request: Any,
    *,
    oidc: OidcConfig,
) -> RequestIdentity | Any | None:
    """Return the identity for `request`, or None when unauthenticated."""
    state = _state(request)

    pre_populated = getattr(state, "user", None)
    if pre_populated is not None and getattr(pre_populated, "id", None):
        return pre_populated

    session = getattr(state, "session", None)
    local_user_id = getattr(session, "local_user_id", None)
    if local_user_id:
        return await _load_persisted(db, local_user_id, provider="local")

    claims = _oidc_claims(getattr(state, "oidc", None))
    if claims is None:
        return None

    if not oidc.issuer:
        return None

    async with db.begin():
        method = await _get_oidc_method(db, oidc.issuer, str(claims["sub"]))
        linked_user_id = method.user_id if method is not None else None

    if linked_user_id is not None:
        identity = await _load_persisted(db, linked_user_id, provider="oidc")
        if identity is None:
            return None
        identity.oidc_issuer = oidc.issuer
        if not identity.avatar_url:
            identity.avatar_url = _clean_str(claims.get("picture"))
        return identity

    # No synthetic fallback when auto-create is off: claims alone must not
    # be enough to act as a user.
    if not oidc.auto_create_users:
        return None

    try:
        return ephemeral_identity_from_claims(claims, oidc.admin_groups)
    except (TypeError, ValueError):
        logger.warning("Could not build identity from OIDC claims", exc_info=True)
        return None
