"""Unit tests for request identity resolution."""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from explorer.config import OidcConfig
from explorer.models.users import EphemeralIdentity, PersistedIdentity, SyntheticIdentity
from explorer.services.oidc_auth_service import get_or_create_oidc_user
from explorer.services.request_user_service import get_request_user
from explorer.services.session_service import SessionData
from explorer.services.user_management_service import delete_user
from tests.helpers import create_user

ISSUER = "https://idp.example.com"


class StubOidc:
    def __init__(self, claims: Optional[dict[str, Any]], authenticated: bool = True) -> None:
        self.user = claims
        self._authenticated = authenticated

    def is_authenticated(self) -> bool:
        return self._authenticated


def make_request(**state: Any) -> SimpleNamespace:
    return SimpleNamespace(state=SimpleNamespace(**state))


@pytest.mark.asyncio
class TestGetRequestUser:
    async def test_pre_populated_user_wins(self, db_session: AsyncSession) -> None:
        synthetic = SyntheticIdentity(id="anonymous", email="", roles=["admin"])
        local = await create_user(db_session, email="l@example.com")
        request = make_request(user=synthetic, session=SessionData(local_user_id=local.id))

        assert await get_request_user(db_session, request, oidc=OidcConfig()) is synthetic

    async def test_pre_populated_user_without_id_is_ignored(self, db_session: AsyncSession) -> None:
        request = make_request(user=SimpleNamespace(id=""))
        assert await get_request_user(db_session, request, oidc=OidcConfig()) is None

    async def test_local_session(self, db_session: AsyncSession) -> None:
        local = await create_user(db_session, email="l@example.com", roles=["admin"])
        request = make_request(session=SessionData(local_user_id=local.id))

        identity = await get_request_user(db_session, request, oidc=OidcConfig(issuer=ISSUER))
        assert isinstance(identity, PersistedIdentity)
        assert identity.provider == "local"
        assert identity.user_id == local.id
        assert identity.roles == ["admin"]

    async def test_session_for_deleted_user_is_none(self, db_session: AsyncSession) -> None:
        await create_user(db_session, email="admin@example.com", roles=["admin"])
        gone = await create_user(db_session, email="gone@example.com")
        assert await delete_user(db_session, user_id=gone.id)

        request = make_request(session=SessionData(local_user_id=gone.id))
        assert await get_request_user(db_session, request, oidc=OidcConfig()) is None

    async def test_no_sources_is_none(self, db_session: AsyncSession) -> None:
        assert await get_request_user(db_session, make_request(), oidc=OidcConfig(issuer=ISSUER)) is None
        assert await get_request_user(db_session, SimpleNamespace(), oidc=OidcConfig()) is None

    async def test_unauthenticated_oidc_is_none(self, db_session: AsyncSession) -> None:
        request = make_request(oidc=StubOidc({"sub": "x"}, authenticated=False))
        assert await get_request_user(db_session, request, oidc=OidcConfig(issuer=ISSUER)) is None

    async def test_oidc_without_issuer_is_none(self, db_session: AsyncSession) -> None:
        request = make_request(oidc=StubOidc({"sub": "x", "email": "x@example.com"}))
        assert await get_request_user(db_session, request, oidc=OidcConfig(issuer=None)) is None

    async def test_linked_oidc_identity_is_persisted(self, db_session: AsyncSession) -> None:
        stored = await get_or_create_oidc_user(db_session, issuer=ISSUER, sub="sub-1", email="o@example.com")
        request = make_request(
            oidc=StubOidc({"sub": "sub-1", "email": "o@example.com", "picture": "https://img/p.png"})
        )

        identity = await get_request_user(db_session, request, oidc=OidcConfig(issuer=ISSUER))
        assert isinstance(identity, PersistedIdentity)
        assert identity.user_id == stored.id
        assert identity.provider == "oidc"
        assert identity.oidc_issuer == ISSUER
        assert identity.avatar_url == "https://img/p.png"

    async def test_unlinked_with_auto_create_is_ephemeral(self, db_session: AsyncSession) -> None:
        claims = {
            "sub": "sub-2",
            "email": "Eph@Example.com",
            "preferred_username": "eph",
            "name": "Eph Emeral",
            "groups": ["admins"],
        }
        request = make_request(oidc=StubOidc(claims))
        config = OidcConfig(issuer=ISSUER, auto_create_users=True, admin_groups=["admins"])

        identity = await get_request_user(db_session, request, oidc=config)
        assert isinstance(identity, EphemeralIdentity)
        assert identity.id == "oidc:sub-2"
        assert identity.user_id is None
        assert identity.email == "eph@example.com"
        assert identity.username == "eph"
        assert identity.display_name == "Eph Emeral"
        assert identity.roles == ["admin"]
        assert identity.created_at is None and identity.updated_at is None

    async def test_unlinked_without_auto_create_is_none(self, db_session: AsyncSession) -> None:
        request = make_request(oidc=StubOidc({"sub": "sub-3", "email": "n@example.com"}))
        config = OidcConfig(issuer=ISSUER, auto_create_users=False)
        assert await get_request_user(db_session, request, oidc=config) is None

    async def test_session_beats_oidc(self, db_session: AsyncSession) -> None:
        local = await create_user(db_session, email="l@example.com")
        request = make_request(
            session=SessionData(local_user_id=local.id),
            oidc=StubOidc({"sub": "sub-4", "email": "other@example.com"}),
        )
        identity = await get_request_user(db_session, request, oidc=OidcConfig(issuer=ISSUER))
        assert identity is not None and identity.id == local.id
