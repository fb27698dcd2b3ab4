"""OIDC identity resolution: linking, auto-creation and role mapping.

Claims arrive already verified by the OIDC middleware; nothing here talks to
the identity provider.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from explorer.errors import ConflictError, ForbiddenError, UnauthorizedError, ValidationError
from explorer.models.users import ClientUser
from explorer.schemas.users import AuthMethod, AuthMethodType, User
from explorer.services.user_store import (
    ADMIN_ROLE,
    DEFAULT_ROLE,
    _get_oidc_method,
    _get_roles,
    _get_user,
    _get_user_by_email,
    _set_roles,
    normalize_email,
    to_client_user,
)
from explorer.utils.clock import utcnow

logger = logging.getLogger(__name__)

ROLE_CLAIMS = ("groups", "roles", "entitlements")
OIDC_PROVIDER_NAME = "OIDC"


def _normalized_strings(values: Any) -> list[str]:
    if not isinstance(values, (list, tuple)):
        return []
    return [v.strip().lower() for v in values if isinstance(v, str) and v.strip()]


def derive_roles_from_claims(
    claims: Optional[Mapping[str, Any]],
    admin_groups: Optional[Iterable[str]],
) -> list[str]:
    """Map provider group/role claims to app roles.

    Returns ["admin"] when any configured admin group appears in the
    `groups`, `roles` or `entitlements` claims (case-insensitive), else
    ["user"]. Malformed input never raises.
    """
    try:
        if not isinstance(claims, Mapping):
            return [DEFAULT_ROLE]
        groups: set[str] = set()
        for claim in ROLE_CLAIMS:
            groups.update(_normalized_strings(claims.get(claim)))

        configured = _normalized_strings(list(admin_groups or []))
        if any(group in groups for group in configured):
            return [ADMIN_ROLE]
        return [DEFAULT_ROLE]
    except Exception:
        logger.debug("Could not derive roles from claims", exc_info=True)
        return [DEFAULT_ROLE]


def _apply_profile_claims(
    user: User,
    *,
    username: Optional[str],
    display_name: Optional[str],
) -> None:
    """Coalesce: a claim only overwrites when it carries a value."""
    if isinstance(display_name, str) and display_name.strip():
        user.display_name = display_name.strip()
    if isinstance(username, str) and username.strip():
        user.username = username.strip()
    user.email_verified = True
    user.updated_at = utcnow()


async def get_or_create_oidc_user(
    db: AsyncSession,
    *,
    issuer: str,
    sub: str,
    email: Optional[str],
    email_verified: bool = False,
    username: Optional[str] = None,
    display_name: Optional[str] = None,
    roles: Optional[Sequence[str]] = None,
    require_email_verified: bool = False,
    auto_create_users: bool = True,
) -> ClientUser:
    """Resolve an OIDC login to a stored user.

    Order: existing (issuer, sub) link, then auto-link by email, then
    auto-create. Email is mandatory on every path.
    """
    normalized_email = normalize_email(email)
    if not normalized_email:
        raise ValidationError("Email is required from OIDC provider.", code="EMAIL_REQUIRED")
    if not issuer or not sub:
        raise ValidationError("OIDC issuer and subject are required.", code="INVALID_OIDC_IDENTITY")

    try:
        async with db.begin():
            now = utcnow()
            method = await _get_oidc_method(db, issuer, sub)
            if method is not None:
                user = await _get_user(db, method.user_id)
                if user is None:
                    raise UnauthorizedError("Linked account no longer exists.")
                method.last_used_at = now
                _apply_profile_claims(user, username=username, display_name=display_name)
                db.add(method)
                db.add(user)
                return to_client_user(user, await _get_roles(db, user.id))

            user = await _get_user_by_email(db, normalized_email)
            if user is not None:
                if require_email_verified and not email_verified:
                    raise UnauthorizedError(
                        "Email must be verified by identity provider.",
                        code="EMAIL_NOT_VERIFIED",
                    )
                logger.info("Auto-linking OIDC identity to existing user: %s", user.email)
                db.add(
                    AuthMethod(
                        user_id=user.id,
                        method_type=AuthMethodType.OIDC,
                        provider_issuer=issuer,
                        provider_sub=sub,
                        provider_name=OIDC_PROVIDER_NAME,
                        created_at=now,
                        last_used_at=now,
                    )
                )
                _apply_profile_claims(user, username=username, display_name=display_name)
                db.add(user)
                return to_client_user(user, await _get_roles(db, user.id))

            if not auto_create_users:
                raise ForbiddenError("Profile does not exist.", code="PROFILE_NOT_FOUND")

            logger.info("Creating new user from OIDC: %s", normalized_email)
            user = User(
                email=normalized_email,
                email_verified=True,
                username=(username or "").strip() or None,
                display_name=(display_name or "").strip() or None,
                created_at=now,
                updated_at=now,
            )
            db.add(user)
            await db.flush()
            stored_roles = await _set_roles(db, user.id, roles or [DEFAULT_ROLE])
            db.add(
                AuthMethod(
                    user_id=user.id,
                    method_type=AuthMethodType.OIDC,
                    provider_issuer=issuer,
                    provider_sub=sub,
                    provider_name=OIDC_PROVIDER_NAME,
                    created_at=now,
                    last_used_at=now,
                )
            )
            return to_client_user(user, stored_roles)
    except IntegrityError as exc:
        # A concurrent first login for the same identity won the insert.
        raise ConflictError("OIDC identity is already being linked; retry.") from exc
