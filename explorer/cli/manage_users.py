from __future__ import annotations

import argparse
import asyncio
import getpass
import sys
from typing import Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from explorer.config import settings
from explorer.errors import AppError
from explorer.services.bootstrap_service import ensure_admin_role
from explorer.services.local_auth_service import create_local_user, set_local_password_admin
from explorer.services.lockout_service import LockoutGuard
from explorer.services.user_store import ADMIN_ROLE, get_by_email, normalize_email
from explorer.utils.db_async import SessionLocal, init_db, load_schema_modules


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Manage explorer user accounts.")
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create-admin", help="Create an admin account (or promote an existing one).")
    create.add_argument("email")
    create.add_argument("--password", help="Password; prompted for when omitted.")
    create.add_argument("--username")
    create.add_argument("--display-name")

    reset = sub.add_parser("reset-password", help="Set a new local password for an account.")
    reset.add_argument("email")
    reset.add_argument("--password", help="Password; prompted for when omitted.")

    unlock = sub.add_parser("unlock", help="Clear the failed-login lockout for an email.")
    unlock.add_argument("email")

    return parser.parse_args(argv)


def _read_password(value: Optional[str]) -> str:
    if value:
        return value
    first = getpass.getpass("Password: ")
    if first != getpass.getpass("Confirm password: "):
        raise SystemExit("Passwords do not match.")
    return first


async def create_admin(session: AsyncSession, args: argparse.Namespace) -> str:
    existing = await get_by_email(session, args.email)
    if existing is not None:
        await ensure_admin_role(session, user_id=existing.id)
        return f"Granted admin to existing user {existing.email}"

    user = await create_local_user(
        session,
        email=args.email,
        password=_read_password(args.password),
        username=args.username,
        display_name=args.display_name,
        roles=[ADMIN_ROLE],
        hash_iterations=settings.password_hash_iterations,
    )
    return f"Created admin {user.email} ({user.id})"


async def reset_password(session: AsyncSession, args: argparse.Namespace) -> str:
    user = await get_by_email(session, args.email)
    if user is None:
        raise SystemExit(f"No user with email {normalize_email(args.email)}")
    await set_local_password_admin(
        session,
        user_id=user.id,
        new_password=_read_password(args.password),
        hash_iterations=settings.password_hash_iterations,
    )
    return f"Password updated for {user.email}"


async def unlock(session: AsyncSession, args: argparse.Namespace) -> str:
    key = normalize_email(args.email)
    await LockoutGuard(settings.lockout_policy()).clear_lock(session, key)
    return f"Cleared lockout for {key}"


COMMANDS = {
    "create-admin": create_admin,
    "reset-password": reset_password,
    "unlock": unlock,
}


async def main_async(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    load_schema_modules()
    await init_db()
    async with SessionLocal() as session:
        try:
            message = await COMMANDS[args.command](session, args)
        except AppError as exc:
            print(f"error: {exc.message}", file=sys.stderr)
            return 1
    print(message)
    return 0


def main(argv: Optional[Sequence[str]] = None) -> None:
    raise SystemExit(asyncio.run(main_async(argv)))


if __name__ == "__main__":
    main()
