"""Local (email + password) authentication."""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import os
from typing import Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from explorer.errors import (
    ConflictError,
    LockedError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from explorer.models.users import ClientUser
from explorer.schemas.users import AuthMethod, AuthMethodType, User
from explorer.services.lockout_service import LockoutGuard
from explorer.services.user_store import (
    DEFAULT_ROLE,
    _client_user,
    _get_local_method,
    _get_user,
    _get_user_by_email,
    _set_roles,
    normalize_email,
    to_client_user,
)
from explorer.utils.clock import utcnow

logger = logging.getLogger(__name__)

DEFAULT_PBKDF2_ITERATIONS = 210_000
MIN_PASSWORD_LENGTH = 8


def _b64decode(raw: str) -> bytes:
    padding = "=" * (-len(raw) % 4)
    return base64.urlsafe_b64decode(raw + padding)


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def hash_password(password: str, *, iterations: int = DEFAULT_PBKDF2_ITERATIONS) -> str:
    """Return a salted PBKDF2-SHA256 hash string.

    Format: "pbkdf2_sha256$<iterations>$<salt_b64>$<digest_b64>"
    """
    salt = os.urandom(16)
    digest = hashlib.pbkdf2_hmac(
        "sha256",
        password.encode("utf-8"),
        salt,
        iterations,
    )
    return f"pbkdf2_sha256${iterations}${_b64encode(salt)}${_b64encode(digest)}"


def verify_password(password: str, encoded_hash: str | None) -> bool:
    """Constant-time check of `password` against a stored hash string."""
    if not encoded_hash:
        return False
    try:
        algorithm, iterations_raw, salt_b64, digest_b64 = encoded_hash.split("$", 3)
    except ValueError:
        return False

    if algorithm != "pbkdf2_sha256":
        return False

    try:
        iterations = int(iterations_raw)
    except ValueError:
        return False

    try:
        salt = _b64decode(salt_b64)
        expected = _b64decode(digest_b64)
    except (ValueError, TypeError):
        return False

    actual = hashlib.pbkdf2_hmac(
        "sha256",
        password.encode("utf-8"),
        salt,
        iterations,
    )
    return hmac.compare_digest(actual, expected)


def validate_password(password: object) -> str:
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters.",
            code="WEAK_PASSWORD",
        )
    return password


def _optional_text(value: Optional[str]) -> Optional[str]:
    if not isinstance(value, str):
        return None
    return value.strip() or None


def _require_email(email: object) -> str:
    normalized = normalize_email(email)
    if not normalized or "@" not in normalized:
        raise ValidationError("A valid email is required.", code="EMAIL_REQUIRED")
    return normalized


async def create_local_user(
    db: AsyncSession,
    *,
    email: str,
    password: str,
    username: Optional[str] = None,
    display_name: Optional[str] = None,
    roles: Optional[Sequence[str]] = None,
    hash_iterations: int = DEFAULT_PBKDF2_ITERATIONS,
) -> ClientUser:
    """Create a user with a local password; user and method land together."""
    normalized_email = _require_email(email)
    validate_password(password)
    password_hash = hash_password(password, iterations=hash_iterations)

    try:
        async with db.begin():
            existing = await _get_user_by_email(db, normalized_email)
            if existing is not None:
                if await _get_local_method(db, existing.id) is not None:
                    raise ConflictError(
                        "A local account with this email already exists.",
                        code="EMAIL_IN_USE",
                    )
                raise ConflictError(
                    "Email already in use; add a password to the existing account instead.",
                    code="EMAIL_IN_USE",
                )

            now = utcnow()
            user = User(
                email=normalized_email,
                email_verified=False,
                username=_optional_text(username),
                display_name=_optional_text(display_name),
                created_at=now,
                updated_at=now,
            )
            db.add(user)
            await db.flush()

            stored_roles = await _set_roles(db, user.id, roles or [DEFAULT_ROLE])
            db.add(
                AuthMethod(
                    user_id=user.id,
                    method_type=AuthMethodType.LOCAL,
                    password_hash=password_hash,
                    provider_name="local",
                    created_at=now,
                )
            )
    except IntegrityError as exc:
        raise ConflictError("Email already in use.", code="EMAIL_IN_USE") from exc

    logger.info("Created local user %s", normalized_email)
    return to_client_user(user, stored_roles)


async def attempt_local_login(
    db: AsyncSession,
    *,
    email: str,
    password: str,
    guard: LockoutGuard,
) -> ClientUser | None:
    """Verify credentials; None on mismatch, LockedError while locked out.

    The lock is checked before the password so a locked account cannot be
    guessed against. Failed attempts count against the normalized email even when no
    such account exists.
    """
    lockout_key = normalize_email(email)
    if not lockout_key or not isinstance(password, str) or not password:
        raise ValidationError("Email and password are required.")

    locked_until = await guard.active_lock(db, lockout_key)
    if locked_until is not None:
        raise LockedError(details={"lockedUntil": locked_until.isoformat()})

    async with db.begin():
        user = await _get_user_by_email(db, lockout_key)
        method = await _get_local_method(db, user.id) if user is not None else None

    if (
        user is None
        or method is None
        or not method.enabled
        or not verify_password(password, method.password_hash)
    ):
        await guard.increment_failed_attempts(db, lockout_key)
        return None

    await guard.clear_lock(db, lockout_key)
    async with db.begin():
        method.last_used_at = utcnow()
        db.add(method)
        return await _client_user(db, user)


async def change_local_password(
    db: AsyncSession,
    *,
    user_id: str,
    current_password: str,
    new_password: str,
    hash_iterations: int = DEFAULT_PBKDF2_ITERATIONS,
) -> None:
    """Change a password after verifying the current one.

    Lockout state is left untouched.
    """
    validate_password(new_password)
    async with db.begin():
        user = await _get_user(db, user_id)
        if user is None:
            raise NotFoundError("User not found.")
        method = await _get_local_method(db, user_id)
        if method is None:
            raise NotFoundError("No local password is set for this account.", code="NO_LOCAL_PASSWORD")
        if not verify_password(current_password or "", method.password_hash):
            raise UnauthorizedError("Current password is incorrect.", code="INVALID_CREDENTIALS")

        now = utcnow()
        method.password_hash = hash_password(new_password, iterations=hash_iterations)
        user.updated_at = now
        db.add(method)
        db.add(user)


async def set_local_password_admin(
    db: AsyncSession,
    *,
    user_id: str,
    new_password: str,
    hash_iterations: int = DEFAULT_PBKDF2_ITERATIONS,
) -> None:
    """Privileged reset: no current-password check, creates the method if missing."""
    validate_password(new_password)
    password_hash = hash_password(new_password, iterations=hash_iterations)
    async with db.begin():
        user = await _get_user(db, user_id)
        if user is None:
            raise NotFoundError("User not found.")

        now = utcnow()
        method = await _get_local_method(db, user_id)
        if method is None:
            method = AuthMethod(
                user_id=user_id,
                method_type=AuthMethodType.LOCAL,
                provider_name="local",
                created_at=now,
            )
        method.password_hash = password_hash
        method.enabled = True
        user.updated_at = now
        db.add(method)
        db.add(user)

    logger.info("Password reset by administrator for user %s", user_id)


async def add_local_password(
    db: AsyncSession,
    *,
    user_id: str,
    password: str,
    hash_iterations: int = DEFAULT_PBKDF2_ITERATIONS,
) -> None:
    """Attach a local password to a user that so far only signs in via OIDC."""
    validate_password(password)
    password_hash = hash_password(password, iterations=hash_iterations)
    async with db.begin():
        user = await _get_user(db, user_id)
        if user is None:
            raise NotFoundError("User not found.")
        if await _get_local_method(db, user_id) is not None:
            raise ConflictError("A local password already exists for this account.")

        now = utcnow()
        db.add(
            AuthMethod(
                user_id=user_id,
                method_type=AuthMethodType.LOCAL,
                password_hash=password_hash,
                provider_name="local",
                created_at=now,
            )
        )
        user.updated_at = now
        db.add(user)
