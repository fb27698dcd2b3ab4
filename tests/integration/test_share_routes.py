"""HTTP tests for share management and public share access."""

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from explorer.config import Settings
from tests.helpers import create_user, login


def _iso(delta: timedelta) -> str:
    return (datetime.now(UTC) + delta).isoformat()


@pytest.mark.asyncio
async def test_user_volume_share_flow(
    app_client: AsyncClient,
    app_settings: Settings,
    db_session: AsyncSession,
    tmp_path: Path,
) -> None:
    app_settings.user_volumes = True
    volume_dir = tmp_path / "uservol"
    (volume_dir / "myfolder").mkdir(parents=True)
    (volume_dir / "myfolder" / "hello.txt").write_text("hello")

    await create_user(db_session, email="admin@example.com", roles=["admin"])
    user = await create_user(db_session, email="user@example.com")

    await login(app_client, email="admin@example.com")
    resp = await app_client.post(
        f"/api/users/{user.id}/volumes",
        json={"label": "MyVol", "volumePath": str(volume_dir), "accessMode": "readonly"},
    )
    assert resp.status_code == 201
    volume_id = resp.json()["id"]

    app_client.cookies.clear()
    await login(app_client, email="user@example.com")

    rw = await app_client.post("/api/shares", json={"sourcePath": "MyVol/myfolder", "accessMode": "readwrite"})
    assert rw.status_code == 400

    denied = await app_client.post("/api/shares", json={"sourcePath": "elsewhere"})
    assert denied.status_code == 403

    resp = await app_client.post("/api/shares", json={"sourcePath": "MyVol/myfolder"})
    assert resp.status_code == 201
    share = resp.json()
    assert share["sourceSpace"] == "user_volume"
    assert share["sourcePath"] == f"{volume_id}/myfolder"

    app_client.cookies.clear()
    browse = await app_client.get(f"/api/share/{share['shareToken']}/browse")
    assert browse.status_code == 200
    body = browse.json()
    assert body["accessMode"] == "readonly"
    assert [item["name"] for item in body["items"]] == ["hello.txt"]

    info = await app_client.get(f"/api/share/{share['shareToken']}/info")
    assert info.json()["name"] == "myfolder"


@pytest.mark.asyncio
async def test_expired_share_flow(
    app_client: AsyncClient, db_session: AsyncSession, volume_root: Path
) -> None:
    (volume_root / "docs").mkdir()
    await create_user(db_session, email="owner@example.com")
    await login(app_client, email="owner@example.com")

    past = await app_client.post("/api/shares", json={"sourcePath": "docs", "expiresAt": _iso(-timedelta(hours=1))})
    assert past.status_code == 400

    created = await app_client.post(
        "/api/shares", json={"sourcePath": "docs", "expiresAt": _iso(timedelta(days=1))}
    )
    assert created.status_code == 201
    share = created.json()
    token = share["shareToken"]

    assert (await app_client.get(f"/api/share/{token}/access")).status_code == 200

    updated = await app_client.put(f"/api/shares/{share['id']}", json={"expiresAt": _iso(-timedelta(minutes=5))})
    assert updated.status_code == 200
    assert updated.json()["isExpired"] is True

    info = await app_client.get(f"/api/share/{token}/info")
    assert info.status_code == 200
    assert info.json()["isExpired"] is True

    access = await app_client.get(f"/api/share/{token}/access")
    assert access.status_code == 403
    assert access.json()["error"]["code"] == "SHARE_EXPIRED"
    assert (await app_client.get(f"/api/share/{token}/browse")).status_code == 403


@pytest.mark.asyncio
async def test_users_share_access(app_client: AsyncClient, db_session: AsyncSession, volume_root: Path) -> None:
    (volume_root / "docs" / "nested").mkdir(parents=True)
    await create_user(db_session, email="owner@example.com")
    friend = await create_user(db_session, email="friend@example.com")
    await create_user(db_session, email="stranger@example.com")

    await login(app_client, email="owner@example.com")
    created = await app_client.post(
        "/api/shares",
        json={"sourcePath": "docs", "sharingType": "users", "userIds": [friend.id], "label": "Docs"},
    )
    assert created.status_code == 201
    token = created.json()["shareToken"]
    assert created.json()["recipientIds"] == [friend.id]

    app_client.cookies.clear()
    anonymous = await app_client.get(f"/api/share/{token}/access")
    assert anonymous.status_code == 401

    info = await app_client.get(f"/api/share/{token}/info")
    assert info.json()["requiresAuth"] is True
    assert info.json()["name"] == "Docs"

    await login(app_client, email="stranger@example.com")
    stranger = await app_client.get(f"/api/share/{token}/access")
    assert stranger.status_code == 403
    assert stranger.json()["error"]["code"] == "SHARE_NOT_PERMITTED"

    app_client.cookies.clear()
    await login(app_client, email="friend@example.com")
    resp = await app_client.get(f"/api/share/{token}/access")
    assert resp.status_code == 200
    view = resp.json()["share"]
    assert view["sourcePath"] == f"share/{token}"
    assert view["sharingType"] == "users"

    nested = await app_client.get(f"/api/share/{token}/browse/nested")
    assert nested.status_code == 200
    assert nested.json()["path"] == "nested"
    assert nested.json()["items"] == []


@pytest.mark.asyncio
async def test_manage_own_shares(app_client: AsyncClient, db_session: AsyncSession) -> None:
    await create_user(db_session, email="owner@example.com")
    await create_user(db_session, email="other@example.com")

    await login(app_client, email="owner@example.com")
    share = (await app_client.post("/api/shares", json={"sourcePath": "docs"})).json()

    listed = await app_client.get("/api/shares")
    assert [s["id"] for s in listed.json()] == [share["id"]]

    app_client.cookies.clear()
    await login(app_client, email="other@example.com")
    assert (await app_client.get("/api/shares")).json() == []
    assert (await app_client.delete(f"/api/shares/{share['id']}")).status_code == 403

    app_client.cookies.clear()
    await login(app_client, email="owner@example.com")
    assert (await app_client.delete(f"/api/shares/{share['id']}")).status_code == 204
    assert (await app_client.get(f"/api/share/{share['shareToken']}/info")).status_code == 404


@pytest.mark.asyncio
async def test_share_routes_require_sign_in(app_client: AsyncClient) -> None:
    resp = await app_client.post("/api/shares", json={"sourcePath": "docs"})
    assert resp.status_code == 401
    assert (await app_client.get("/api/share/unknown/info")).status_code == 404


@pytest.mark.asyncio
async def test_access_rules_admin_only(app_client: AsyncClient, db_session: AsyncSession) -> None:
    await create_user(db_session, email="admin@example.com", roles=["admin"])
    await create_user(db_session, email="user@example.com")

    await login(app_client, email="user@example.com")
    assert (await app_client.get("/api/access-rules")).status_code == 403

    app_client.cookies.clear()
    await login(app_client, email="admin@example.com")
    rules = [
        {"path": "/private/", "permissions": "hidden", "recursive": True},
        {"path": "archive", "permissions": "ro"},
    ]
    resp = await app_client.put("/api/access-rules", json=rules)
    assert resp.status_code == 200
    assert [(r["path"], r["permissions"]) for r in resp.json()] == [("private", "hidden"), ("archive", "ro")]

    assert (await app_client.get("/api/access-rules")).json() == resp.json()

    hidden = await app_client.post("/api/shares", json={"sourcePath": "private/x"})
    assert hidden.status_code == 403
    assert hidden.json()["error"]["code"] == "PATH_HIDDEN"


@pytest.mark.asyncio
async def test_guest_session_yields_to_signed_in_user(app_client: AsyncClient, volume_root: Path) -> None:
    projects = volume_root / "Projects"
    projects.mkdir()
    (projects / "hello.txt").write_text("hello")

    setup = await app_client.post(
        "/api/auth/setup",
        json={"email": "owner@example.com", "username": "owner", "password": "secret123"},
    )
    assert setup.status_code == 201
    created = await app_client.post(
        "/api/shares",
        json={"sourcePath": "Projects", "accessMode": "readonly", "sharingType": "anyone"},
    )
    assert created.status_code == 201
    token = created.json()["shareToken"]

    app_client.cookies.clear()
    guest_access = await app_client.get(f"/api/share/{token}/access")
    assert guest_access.status_code == 200
    guest_session_id = guest_access.json()["guestSessionId"]
    assert guest_session_id

    repeat = await app_client.get(f"/api/share/{token}/access", headers={"X-Guest-Session": guest_session_id})
    assert repeat.json()["guestSessionId"] == guest_session_id

    # A guest header alone never stands in for an account.
    anonymous = await app_client.get("/api/shares", headers={"X-Guest-Session": guest_session_id})
    assert anonymous.status_code == 401

    assert (await login(app_client, email="owner@example.com")).status_code == 200
    stale = {"X-Guest-Session": guest_session_id}

    owned = await app_client.get("/api/shares", headers=stale)
    assert owned.status_code == 200
    assert [s["shareToken"] for s in owned.json()] == [token]

    me = await app_client.get("/api/auth/me", headers=stale)
    assert me.json()["email"] == "owner@example.com"

    signed_in = await app_client.get(f"/api/share/{token}/access", headers=stale)
    assert signed_in.status_code == 200
    assert signed_in.json()["guestSessionId"] is None

    browse = await app_client.get(f"/api/share/{token}/browse", headers=stale)
    assert browse.status_code == 200
    assert [item["name"] for item in browse.json()["items"]] == ["hello.txt"]
