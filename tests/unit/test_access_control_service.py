"""Unit tests for path permission resolution and rule storage."""

from __future__ import annotations

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from explorer.errors import ForbiddenError, ValidationError
from explorer.models.access import AccessRuleIn
from explorer.schemas.access import PathPermission
from explorer.services.access_control_service import (
    assert_path_access,
    get_permission_for_path,
    get_rules,
    resolve_permission,
    set_rules,
)


def rule(path: str, permissions: str, recursive: bool = False) -> AccessRuleIn:
    return AccessRuleIn(path=path, permissions=PathPermission(permissions), recursive=recursive)


class TestResolvePermission:
    def test_default_is_read_write(self) -> None:
        assert resolve_permission([], "anything/here") == PathPermission.READ_WRITE

    def test_non_recursive_matches_exact_path_only(self) -> None:
        rules = [rule("docs", "ro")]
        assert resolve_permission(rules, "docs") == PathPermission.READ_ONLY
        assert resolve_permission(rules, "docs/inner") == PathPermission.READ_WRITE

    def test_recursive_matches_descendants(self) -> None:
        rules = [rule("secret", "hidden", recursive=True)]
        assert resolve_permission(rules, "secret") == PathPermission.HIDDEN
        assert resolve_permission(rules, "secret/a/b") == PathPermission.HIDDEN
        assert resolve_permission(rules, "secretive") == PathPermission.READ_WRITE

    def test_longest_path_wins(self) -> None:
        rules = [rule("media", "ro", recursive=True), rule("media/uploads", "rw", recursive=True)]
        assert resolve_permission(rules, "media/uploads/x.png") == PathPermission.READ_WRITE
        assert resolve_permission(rules, "media/photos") == PathPermission.READ_ONLY

    def test_exact_beats_recursive_at_same_length(self) -> None:
        rules = [rule("shared", "hidden", recursive=True), rule("shared", "ro")]
        assert resolve_permission(rules, "shared") == PathPermission.READ_ONLY
        assert resolve_permission(rules, "shared/child") == PathPermission.HIDDEN

    def test_exact_child_rule_falls_through_to_recursive_parent(self) -> None:
        rules = [rule("parent/child", "hidden"), rule("parent", "ro", recursive=True)]
        assert resolve_permission(rules, "parent/child") == PathPermission.HIDDEN
        assert resolve_permission(rules, "parent/child/file.txt") == PathPermission.READ_ONLY
        assert resolve_permission(rules, "parent/other") == PathPermission.READ_ONLY
        assert resolve_permission(rules, "unmatched/path") == PathPermission.READ_WRITE

    def test_stored_order_breaks_remaining_ties(self) -> None:
        rules = [rule("a", "ro", recursive=True), rule("a", "hidden", recursive=True)]
        assert resolve_permission(rules, "a/b") == PathPermission.READ_ONLY

    def test_query_path_is_normalized(self) -> None:
        rules = [rule("docs", "ro")]
        assert resolve_permission(rules, "/docs/") == PathPermission.READ_ONLY
        assert resolve_permission(rules, "docs/sub/..") == PathPermission.READ_ONLY
        assert resolve_permission(rules, "docs\\") == PathPermission.READ_ONLY


@pytest.mark.asyncio
class TestRuleStorage:
    async def test_set_rules_replaces_and_keeps_order(self, db_session: AsyncSession) -> None:
        await set_rules(db_session, [rule("old", "hidden")])
        stored = await set_rules(
            db_session,
            [rule("/b/", "ro", recursive=True), rule("a\\x", "hidden")],
        )
        assert [(r.path, r.permissions) for r in stored] == [
            ("b", PathPermission.READ_ONLY),
            ("a/x", PathPermission.HIDDEN),
        ]

        fetched = await get_rules(db_session)
        assert [(r.path, r.recursive) for r in fetched] == [("b", True), ("a/x", False)]

    async def test_root_rule_rejected(self, db_session: AsyncSession) -> None:
        with pytest.raises(ValidationError):
            await set_rules(db_session, [rule("/", "hidden")])

    async def test_permission_lookup_and_assertions(self, db_session: AsyncSession) -> None:
        await set_rules(
            db_session,
            [rule("private", "hidden", recursive=True), rule("archive", "ro", recursive=True)],
        )
        assert await get_permission_for_path(db_session, "private/x") == PathPermission.HIDDEN

        with pytest.raises(ForbiddenError):
            await assert_path_access(db_session, "private/x")
        with pytest.raises(ForbiddenError):
            await assert_path_access(db_session, "archive/2020", write=True)

        assert await assert_path_access(db_session, "archive/2020") == PathPermission.READ_ONLY
        assert await assert_path_access(db_session, "public", write=True) == PathPermission.READ_WRITE
