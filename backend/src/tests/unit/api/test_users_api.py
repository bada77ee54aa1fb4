"""API tests for the /api/users endpoints."""

import pytest
from sqlalchemy import select

from palette.auth.models import Account


async def _reload(session_factory, account_id):
    async with session_factory() as session:
        result = await session.execute(select(Account).where(Account.id == account_id))
        return result.scalar_one_or_none()


class TestProfile:
    @pytest.mark.asyncio
    async def test_update_profile(self, client, make_account, auth_headers):
        account = await make_account(email="me@x.com", nickname="before")

        resp = await client.put(
            "/users/me",
            json={"nickname": "after", "avatarUrl": "https://img.example/a.png"},
            headers=auth_headers(account),
        )

        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["nickname"] == "after"
        assert data["avatarUrl"] == "https://img.example/a.png"

    @pytest.mark.asyncio
    async def test_nickname_conflict(self, client, make_account, auth_headers):
        await make_account(email="other@x.com", nickname="taken")
        account = await make_account(email="me@x.com", nickname="mine")

        resp = await client.put("/users/me", json={"nickname": "TAKEN"}, headers=auth_headers(account))

        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"


class TestUnlink:
    @pytest.mark.asyncio
    async def test_unlink_with_remaining_method(self, client, make_account, auth_headers, session_factory):
        account = await make_account(email="me@x.com", bindings=(("google", "g-1"), ("kakao", "k-1")))

        resp = await client.delete("/users/me/social-links/kakao", headers=auth_headers(account))

        assert resp.status_code == 200
        assert [link["provider"] for link in resp.json()["data"]["socialLinks"]] == ["google"]
        reloaded = await _reload(session_factory, account.id)
        assert reloaded.binding_for("kakao") is None

    @pytest.mark.asyncio
    async def test_last_method_refused(self, client, make_account, auth_headers):
        account = await make_account(email="me@x.com", bindings=(("google", "g-1"),))

        resp = await client.delete("/users/me/social-links/google", headers=auth_headers(account))

        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "LAST_AUTH_METHOD"

    @pytest.mark.asyncio
    async def test_unknown_provider(self, client, make_account, auth_headers):
        account = await make_account(email="me@x.com", password_hash="x")
        resp = await client.delete("/users/me/social-links/myspace", headers=auth_headers(account))
        assert resp.json()["error"]["code"] == "UNSUPPORTED_PROVIDER"


class TestDeletion:
    @pytest.mark.asyncio
    async def test_delete_self(self, client, make_account, auth_headers, session_factory):
        account = await make_account(email="me@x.com", bindings=(("google", "g-1"),))
        headers = auth_headers(account)

        resp = await client.delete("/users/me", headers=headers)

        assert resp.status_code == 200
        assert await _reload(session_factory, account.id) is None

        # Tokens for a deleted account stop working
        resp = await client.get("/auth/me", headers=headers)
        assert resp.json()["error"]["code"] == "TOKEN_INVALID"

    @pytest.mark.asyncio
    async def test_admin_deletes_other(self, client, make_account, auth_headers, session_factory):
        victim = await make_account(email="victim@x.com", nickname="victim")
        admin = await make_account(email="admin@x.com", nickname="admin", role="admin")

        resp = await client.delete(f"/users/{victim.id}", headers=auth_headers(admin))

        assert resp.status_code == 200
        assert await _reload(session_factory, victim.id) is None

    @pytest.mark.asyncio
    async def test_non_admin_cannot_delete_other(self, client, make_account, auth_headers):
        victim = await make_account(email="victim@x.com", nickname="victim")
        intruder = await make_account(email="intruder@x.com", nickname="intruder")

        resp = await client.delete(f"/users/{victim.id}", headers=auth_headers(intruder))

        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "AUTHORIZATION_ERROR"
