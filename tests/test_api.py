"""End-to-end tests for the HTTP surface."""

from unittest.mock import AsyncMock
from urllib.parse import parse_qs, urlsplit

import pytest

from auth.jwt import create_access_token


def _token_param(url: str) -> str:
    return parse_qs(urlsplit(url).query)["token"][0]


class TestCallerAuthentication:
    @pytest.mark.asyncio
    async def test_legacy_headers(self, client, api_headers):
        resp = await client.get("/gpt/accounts", headers=api_headers())
        assert resp.status_code == 200
        assert resp.json() == {"accounts": []}

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "headers, message",
        [
            ({}, "Missing x-api-key header"),
            ({"x-api-key": "test-api-key"}, "Missing x-gpt-user-id header"),
            ({"x-api-key": "wrong-key!!!", "x-gpt-user-id": "u1"}, "Invalid API key"),
            ({"x-api-key": "short", "x-gpt-user-id": "u1"}, "Invalid API key"),
        ],
    )
    async def test_legacy_header_failures(self, client, headers, message):
        resp = await client.get("/gpt/accounts", headers=headers)
        assert resp.status_code == 401
        assert resp.json() == {"error": message}

    @pytest.mark.asyncio
    async def test_bearer_token_identifies_user(self, client, make_account):
        await make_account(user_id="user_perm")
        token = create_access_token("user_perm", "accounts")

        resp = await client.get("/gpt/accounts", headers={"Authorization": f"Bearer {token}"})

        assert resp.status_code == 200
        assert [a["label"] for a in resp.json()["accounts"]] == ["work"]

    @pytest.mark.asyncio
    async def test_bad_bearer_token(self, client):
        resp = await client.get("/gpt/accounts", headers={"Authorization": "Bearer nonsense"})
        assert resp.status_code == 401
        assert resp.json()["error"].startswith("Invalid or expired token")


class TestLinkingFlow:
    @pytest.mark.asyncio
    async def test_create_link_start_and_callback(self, client, api_headers, registry):
        resp = await client.post(
            "/gpt/create-auth-link", json={"provider": "gmail", "label": "work"}, headers=api_headers()
        )
        assert resp.status_code == 200
        token = _token_param(resp.json()["authUrl"])

        resp = await client.get("/auth/start", params={"token": token})
        assert resp.status_code == 200
        assert resp.json() == {"authUrl": f"https://gmail.example/authorize?state={token}"}

        resp = await client.get("/auth/callback/gmail", params={"code": "C1", "state": token})
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "message": "Account connected successfully", "warnings": []}

        resp = await client.get("/gpt/accounts", headers=api_headers())
        (account,) = resp.json()["accounts"]
        assert account["provider"] == "gmail"
        assert account["label"] == "work"
        assert account["metadata"] == {"email": "user@example.com"}
        assert "access_token" not in account and "refresh_token" not in account

        resp = await client.get("/auth/callback/gmail", params={"code": "C2", "state": token})
        assert resp.status_code == 404
        assert resp.json() == {"error": "Invalid or expired token"}

    @pytest.mark.asyncio
    async def test_missing_fields(self, client, api_headers):
        resp = await client.post("/gpt/create-auth-link", json={"provider": "gmail"}, headers=api_headers())
        assert resp.status_code == 400
        assert resp.json() == {"error": "Missing required fields: label"}

    @pytest.mark.asyncio
    async def test_unknown_provider(self, client, api_headers):
        resp = await client.post(
            "/gpt/create-auth-link", json={"provider": "mercury", "label": "x"}, headers=api_headers()
        )
        assert resp.status_code == 400
        assert resp.json() == {"error": "Invalid provider: mercury"}

    @pytest.mark.asyncio
    async def test_start_without_token(self, client):
        resp = await client.get("/auth/start")
        assert resp.status_code == 400
        assert resp.json() == {"error": "Missing token parameter"}

    @pytest.mark.asyncio
    async def test_start_with_unknown_token(self, client):
        resp = await client.get("/auth/start", params={"token": "missing"})
        assert resp.status_code == 404
        assert resp.json() == {"error": "Invalid or expired token"}

    @pytest.mark.asyncio
    async def test_callback_without_code(self, client):
        resp = await client.get("/auth/callback/gmail", params={"state": "s"})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Missing code or state parameter"}

    @pytest.mark.asyncio
    async def test_callback_unknown_provider(self, client):
        resp = await client.get("/auth/callback/mercury", params={"code": "c", "state": "s"})
        assert resp.status_code == 404


class TestAccountManagement:
    @pytest.mark.asyncio
    async def test_toggle_twice(self, client, api_headers, make_account):
        account = await make_account()
        states = []
        for _ in range(2):
            resp = await client.post(f"/gpt/accounts/{account.id}/toggle", headers=api_headers())
            assert resp.status_code == 200
            states.append(resp.json()["enabled"])
        assert states == [False, True]

    @pytest.mark.asyncio
    async def test_foreign_account(self, client, api_headers, make_account):
        account = await make_account(user_id="owner")
        resp = await client.delete(f"/gpt/accounts/{account.id}", headers=api_headers("intruder"))
        assert resp.status_code == 403
        assert resp.json() == {"error": "Unauthorized"}

    @pytest.mark.asyncio
    async def test_delete(self, client, api_headers, make_account, registry):
        account = await make_account()
        resp = await client.delete(f"/gpt/accounts/{account.id}", headers=api_headers())
        assert resp.json() == {"success": True}
        registry.get("gmail").revoke_token.assert_awaited_once()

        resp = await client.get("/gpt/accounts", headers=api_headers())
        assert resp.json() == {"accounts": []}

    @pytest.mark.asyncio
    async def test_management_link_drives_integrations(self, client, api_headers, make_account):
        account = await make_account()
        resp = await client.post("/gpt/create-management-link", headers=api_headers())
        token = _token_param(resp.json()["managementUrl"])

        resp = await client.get("/integrations", params={"token": token})
        assert resp.status_code == 200
        assert resp.json()["chatgptUserId"] == "user-1"
        assert [a["id"] for a in resp.json()["accounts"]] == [str(account.id)]

        resp = await client.post(f"/integrations/{account.id}/toggle", params={"token": token})
        assert resp.json() == {"success": True, "id": str(account.id), "enabled": False}

        resp = await client.delete(f"/integrations/{account.id}", params={"token": token})
        assert resp.json() == {"success": True}

    @pytest.mark.asyncio
    async def test_integrations_bad_token(self, client):
        assert (await client.get("/integrations")).status_code == 400
        assert (await client.get("/integrations", params={"token": "nope"})).status_code == 404


class TestActionsRoute:
    @pytest.mark.asyncio
    async def test_dispatches_to_handler(self, client, api_headers, make_account, actions):
        handler = AsyncMock(return_value={"messageId": "m1"})
        actions.register("gmail", "send-email", handler)
        account = await make_account()

        resp = await client.post(
            "/gpt/actions/gmail/send-email",
            json={"accountId": str(account.id), "params": {"to": "a@b.c"}},
            headers=api_headers(),
        )

        assert resp.status_code == 200
        assert resp.json() == {"messageId": "m1"}
        assert handler.await_args.args[1] == {"to": "a@b.c"}

    @pytest.mark.asyncio
    async def test_disabled_account(self, client, api_headers, make_account, actions):
        handler = AsyncMock()
        actions.register("gmail", "send-email", handler)
        account = await make_account(enabled=False)

        resp = await client.post(
            "/gpt/actions/gmail/send-email", json={"accountId": str(account.id)}, headers=api_headers()
        )

        assert resp.status_code == 403
        assert resp.json() == {"error": "Account is disabled"}
        handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_account_id(self, client, api_headers):
        resp = await client.post("/gpt/actions/gmail/send-email", json={}, headers=api_headers())
        assert resp.status_code == 400
        assert resp.json() == {"error": "Missing required fields: accountId"}

    @pytest.mark.asyncio
    async def test_reconnect_required(self, client, api_headers, make_account, actions):
        from conftest import in_seconds

        actions.register("gmail", "send-email", AsyncMock())
        account = await make_account(refresh_token=None, expires_at=in_seconds(-60))

        resp = await client.post(
            "/gpt/actions/gmail/send-email", json={"accountId": str(account.id)}, headers=api_headers()
        )

        assert resp.status_code == 401
        assert "reconnect" in resp.json()["error"]

    @pytest.mark.asyncio
    async def test_search_all_emails_without_accounts(self, client, api_headers, actions):
        actions.register("gmail", "search-emails", AsyncMock())
        resp = await client.post("/gpt/search-all-emails", json={}, headers=api_headers())
        assert resp.json() == {"accounts": [], "totalEmails": 0, "message": "No Gmail accounts connected"}


class TestOAuthRoutes:
    @pytest.mark.asyncio
    async def test_authorize_and_token_round_trip(self, client):
        resp = await client.get(
            "/oauth/authorize",
            params={"client_id": "assistant", "redirect_uri": "https://chat.example/cb", "state": "st"},
            headers={"openai-ephemeral-user-id": "eph-9"},
        )
        assert resp.status_code == 302
        params = parse_qs(urlsplit(resp.headers["location"]).query)
        assert params["state"] == ["st"]

        resp = await client.post(
            "/oauth/token",
            data={
                "grant_type": "authorization_code",
                "code": params["code"][0],
                "client_id": "assistant",
                "redirect_uri": "https://chat.example/cb",
            },
        )
        assert resp.status_code == 200
        assert resp.headers["cache-control"] == "no-store"
        access_token = resp.json()["access_token"]

        resp = await client.get("/gpt/accounts", headers={"Authorization": f"Bearer {access_token}"})
        assert resp.status_code == 200

    @pytest.mark.asyncio
    async def test_authorize_without_user_context(self, client):
        resp = await client.get(
            "/oauth/authorize",
            params={"client_id": "assistant", "redirect_uri": "https://chat.example/cb", "state": "st"},
        )
        assert resp.status_code == 400
        assert resp.json() == {"error": "invalid_request", "error_description": "Missing user context"}

    @pytest.mark.asyncio
    async def test_token_json_body_errors(self, client):
        resp = await client.post("/oauth/token", json={"grant_type": "password"})
        assert resp.status_code == 400
        assert resp.json() == {"error": "unsupported_grant_type"}

        resp = await client.post(
            "/oauth/token",
            json={"grant_type": "authorization_code", "code": "x", "client_id": "a", "redirect_uri": "b"},
        )
        assert resp.json() == {"error": "invalid_grant", "error_description": "Invalid authorization code"}


class TestProviders:
    @pytest.mark.asyncio
    async def test_lists_configured_providers(self, client):
        resp = await client.get("/providers")
        assert [p["provider"] for p in resp.json()] == ["gmail", "slack", "linear", "zoho"]
