"""Failed-login lockout guard.

Counters are keyed by the lockout key (normalized email). Once the counter
reaches the policy threshold a `locked_until` timestamp is stored; expiry is
a plain wall-clock comparison on read and nothing sweeps expired rows. The
counter is only reset by a successful login or an explicit clear.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import case, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from explorer.config import LockoutPolicy
from explorer.schemas.auth import AuthLock
from explorer.utils.clock import Clock, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LockState:
    failed_count: int
    locked_until: datetime | None


def _insert_for(db: AsyncSession):
    dialect = db.bind.dialect.name if db.bind is not None else "sqlite"
    return postgresql.insert if dialect == "postgresql" else sqlite.insert


class LockoutGuard:
    """Tracks failed attempts and enforces timed lockout for a policy."""

    def __init__(self, policy: LockoutPolicy, clock: Clock = utcnow) -> None:
        self.policy = policy
        self.clock = clock

    @property
    def lockout_duration(self) -> timedelta:
        return timedelta(minutes=self.policy.lockout_minutes)

    async def _get_lock(self, db: AsyncSession, key: str) -> LockState:
        # Column select: the row is written with Core upserts, so skip the identity map.
        result = await db.execute(
            select(AuthLock.failed_count, AuthLock.locked_until).where(
                AuthLock.key == key  # type: ignore[arg-type]
            )
        )
        row = result.one_or_none()
        if row is None:
            return LockState(failed_count=0, locked_until=None)
        return LockState(failed_count=int(row.failed_count or 0), locked_until=row.locked_until)

    async def _set_lock(
        self,
        db: AsyncSession,
        key: str,
        failed_count: int,
        locked_until: datetime | None,
    ) -> None:
        insert = _insert_for(db)
        stmt = insert(AuthLock).values(key=key, failed_count=failed_count, locked_until=locked_until)
        stmt = stmt.on_conflict_do_update(
            index_elements=["key"],
            set_={"failed_count": failed_count, "locked_until": locked_until},
        )
        await db.execute(stmt)

    async def get_lock(self, db: AsyncSession, key: str) -> LockState:
        async with db.begin():
            return await self._get_lock(db, key)

    async def active_lock(self, db: AsyncSession, key: str) -> datetime | None:
        """Return `locked_until` while the lock is in force, else None."""
        state = await self.get_lock(db, key)
        if state.locked_until is None or self.clock() >= state.locked_until:
            return None
        return state.locked_until

    async def is_locked(self, db: AsyncSession, key: str) -> bool:
        return await self.active_lock(db, key) is not None

    async def increment_failed_attempts(self, db: AsyncSession, key: str) -> LockState:
        """Atomically bump the counter, locking once the threshold is reached."""
        threshold = self.policy.max_failed_attempts
        until = self.clock() + self.lockout_duration
        table = AuthLock.__table__  # type: ignore[attr-defined]
        next_count = table.c.failed_count + 1

        insert = _insert_for(db)
        stmt = insert(AuthLock).values(
            key=key,
            failed_count=1,
            locked_until=until if threshold <= 1 else None,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["key"],
            set_={
                "failed_count": next_count,
                "locked_until": case((next_count >= threshold, until), else_=None),
            },
        )
        async with db.begin():
            await db.execute(stmt)
            state = await self._get_lock(db, key)

        if state.locked_until is not None and state.failed_count == threshold:
            logger.warning(
                "Lockout engaged for %s after %s failed attempts (until %s)",
                key,
                state.failed_count,
                state.locked_until.isoformat(),
            )
        return state

    async def clear_lock(self, db: AsyncSession, key: str) -> None:
        async with db.begin():
            await self._set_lock(db, key, 0, None)
