"""HTTP tests for /api/auth: setup, login, lockout and sessions."""

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from explorer.config import Settings
from explorer.services.session_service import SESSION_COOKIE_NAME
from tests.helpers import DEFAULT_PASSWORD, create_user, login


@pytest.mark.asyncio
async def test_health(app_client: AsyncClient) -> None:
    resp = await app_client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_status_reports_pending_setup(app_client: AsyncClient) -> None:
    resp = await app_client.get("/api/auth/status")
    assert resp.status_code == 200
    body = resp.json()
    assert body["authEnabled"] is True
    assert body["authMode"] == "both"
    assert body["requiresSetup"] is True
    assert body["user"] is None


@pytest.mark.asyncio
async def test_setup_creates_signed_in_admin(app_client: AsyncClient) -> None:
    resp = await app_client.post(
        "/api/auth/setup",
        json={"email": "Root@Example.com", "password": "supersecret", "displayName": "Root"},
    )
    assert resp.status_code == 201
    created = resp.json()
    assert created["email"] == "root@example.com"
    assert created["roles"] == ["admin"]
    assert "passwordHash" not in created
    assert SESSION_COOKIE_NAME in resp.cookies

    me = await app_client.get("/api/auth/me")
    assert me.status_code == 200
    assert me.json()["id"] == created["id"]
    assert me.json()["kind"] == "persisted"

    status = (await app_client.get("/api/auth/status")).json()
    assert status["requiresSetup"] is False
    assert status["user"]["email"] == "root@example.com"

    again = await app_client.post("/api/auth/setup", json={"email": "x@example.com", "password": "supersecret"})
    assert again.status_code == 403
    assert again.json()["error"]["code"] == "SETUP_COMPLETE"


@pytest.mark.asyncio
async def test_login_failure_shape(app_client: AsyncClient, db_session: AsyncSession) -> None:
    await create_user(db_session, email="user@example.com")

    resp = await login(app_client, email="user@example.com", password="wrong-password")
    assert resp.status_code == 401
    error = resp.json()["error"]
    assert error["code"] == "INVALID_CREDENTIALS"
    assert error["statusCode"] == 401
    assert error["message"]
    assert error["timestamp"]


@pytest.mark.asyncio
async def test_malformed_body_is_validation_error(app_client: AsyncClient) -> None:
    resp = await app_client.post("/api/auth/login", json={"email": "user@example.com"})
    assert resp.status_code == 400
    error = resp.json()["error"]
    assert error["code"] == "VALIDATION_ERROR"
    assert error["details"]["errors"]


@pytest.mark.asyncio
async def test_login_and_logout(app_client: AsyncClient, db_session: AsyncSession) -> None:
    user = await create_user(db_session, email="user@example.com", display_name="User")

    resp = await login(app_client, email="USER@example.com ")
    assert resp.status_code == 200
    assert resp.json()["id"] == user.id
    assert resp.json()["displayName"] == "User"

    assert (await app_client.get("/api/auth/me")).status_code == 200

    out = await app_client.post("/api/auth/logout")
    assert out.status_code == 200
    assert out.json() == {"success": True}

    me = await app_client.get("/api/auth/me")
    assert me.status_code == 401
    assert me.json()["error"]["code"] == "AUTH_REQUIRED"


@pytest.mark.asyncio
async def test_lockout_after_repeated_failures(app_client: AsyncClient, db_session: AsyncSession) -> None:
    await create_user(db_session, email="user@example.com")

    for _ in range(5):
        resp = await login(app_client, email="user@example.com", password="wrong-password")
        assert resp.status_code == 401

    locked = await login(app_client, email="user@example.com", password=DEFAULT_PASSWORD)
    assert locked.status_code == 423
    error = locked.json()["error"]
    assert error["code"] == "ACCOUNT_LOCKED"
    assert "lockedUntil" in error["details"]


@pytest.mark.asyncio
async def test_local_login_disabled_in_oidc_mode(
    app_client: AsyncClient, app_settings: Settings, db_session: AsyncSession
) -> None:
    await create_user(db_session, email="user@example.com")
    app_settings.auth_mode = "oidc"
    resp = await login(app_client, email="user@example.com")
    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "LOCAL_AUTH_DISABLED"


@pytest.mark.asyncio
async def test_change_password(app_client: AsyncClient, db_session: AsyncSession) -> None:
    await create_user(db_session, email="user@example.com")
    await login(app_client, email="user@example.com")

    wrong = await app_client.post(
        "/api/auth/password",
        json={"currentPassword": "not-it", "newPassword": "brandnew99"},
    )
    assert wrong.status_code == 401

    ok = await app_client.post(
        "/api/auth/password",
        json={"currentPassword": DEFAULT_PASSWORD, "newPassword": "brandnew99"},
    )
    assert ok.status_code == 200

    app_client.cookies.clear()
    assert (await login(app_client, email="user@example.com")).status_code == 401
    assert (await login(app_client, email="user@example.com", password="brandnew99")).status_code == 200


@pytest.mark.asyncio
async def test_auth_disabled_uses_anonymous_admin(app_client: AsyncClient, app_settings: Settings) -> None:
    app_settings.auth_enabled = False
    resp = await app_client.get("/api/auth/me")
    assert resp.status_code == 200
    body = resp.json()
    assert body["id"] == "anonymous"
    assert body["kind"] == "synthetic"
    assert "admin" in body["roles"]

    status = (await app_client.get("/api/auth/status")).json()
    assert status["authEnabled"] is False
    assert status["requiresSetup"] is False
