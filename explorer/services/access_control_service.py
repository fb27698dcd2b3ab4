"""Path-based access rules (hidden / ro / rw).

A non-recursive rule matches only its exact path. A recursive rule matches
its path and every descendant. The longest matching path wins; at equal
length an exact non-recursive rule beats a recursive one, then stored order
decides. Paths with no matching rule are read-write.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional, Sequence

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from explorer.errors import ForbiddenError, ValidationError
from explorer.models.access import AccessRuleIn, AccessRuleRead
from explorer.schemas.access import AccessRule, PathPermission
from explorer.utils.paths import is_same_or_descendant, normalize_relative_path

logger = logging.getLogger(__name__)

DEFAULT_PERMISSION = PathPermission.READ_WRITE


def to_rule_read(rule: AccessRule) -> AccessRuleRead:
    return AccessRuleRead(
        id=rule.id,
        path=rule.path,
        permissions=PathPermission(rule.permissions),
        recursive=bool(rule.recursive),
    )


def _rule_matches(rule: AccessRuleIn, path: str) -> bool:
    if rule.path == path:
        return True
    return rule.recursive and is_same_or_descendant(path, rule.path)


def resolve_permission(rules: Sequence[AccessRuleIn], path: Optional[str]) -> PathPermission:
    """Pick the effective permission for `path` from an ordered rule list."""
    target = normalize_relative_path(path)
    best: Optional[tuple[int, int, int]] = None
    winner: Optional[AccessRuleIn] = None
    for index, rule in enumerate(rules):
        if not _rule_matches(rule, target):
            continue
        # Higher tuple wins: longer path, then exact non-recursive, then earlier position.
        rank = (len(rule.path), 0 if rule.recursive else 1, -index)
        if best is None or rank > best:
            best, winner = rank, rule
    return PathPermission(winner.permissions) if winner is not None else DEFAULT_PERMISSION


def _prepare_rules(rules: Iterable[AccessRuleIn]) -> list[AccessRuleIn]:
    prepared: list[AccessRuleIn] = []
    for rule in rules:
        path = normalize_relative_path(rule.path)
        if not path:
            raise ValidationError("Access rules need a non-root path.", code="INVALID_RULE")
        prepared.append(AccessRuleIn(path=path, permissions=rule.permissions, recursive=rule.recursive))
    return prepared


async def get_rules(db: AsyncSession) -> list[AccessRuleRead]:
    async with db.begin():
        result = await db.execute(select(AccessRule).order_by(AccessRule.position))  # type: ignore[arg-type]
        return [to_rule_read(r) for r in result.scalars().all()]


async def set_rules(db: AsyncSession, rules: Iterable[AccessRuleIn]) -> list[AccessRuleRead]:
    """Replace the whole rule set, keeping the given order."""
    prepared = _prepare_rules(rules)
    async with db.begin():
        await db.execute(delete(AccessRule))
        stored = [
            AccessRule(
                position=position,
                path=rule.path,
                permissions=rule.permissions,
                recursive=rule.recursive,
            )
            for position, rule in enumerate(prepared)
        ]
        db.add_all(stored)
        await db.flush()
        result = [to_rule_read(r) for r in stored]

    logger.info("Access rules replaced (%d rules)", len(result))
    return result


async def get_permission_for_path(db: AsyncSession, path: Optional[str]) -> PathPermission:
    return resolve_permission(await get_rules(db), path)


async def assert_path_access(db: AsyncSession, path: Optional[str], *, write: bool = False) -> PathPermission:
    """Raise ForbiddenError when `path` is hidden, or read-only and `write` is set."""
    permission = await get_permission_for_path(db, path)
    if permission == PathPermission.HIDDEN:
        raise ForbiddenError("Path is not accessible.", code="PATH_HIDDEN")
    if write and permission != PathPermission.READ_WRITE:
        raise ForbiddenError("Path is read-only.", code="PATH_READ_ONLY")
    return permission
