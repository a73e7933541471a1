"""
SlackConnector — OAuth2 v2 flow for Slack workspaces.

Slack wraps every response in an ``{"ok": bool}`` envelope and issues
bot tokens that never expire, so there is no refresh grant.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List
from urllib.parse import urlencode

import httpx

from connectors.base import BaseConnector, TokenResponse
from utils.errors import ProviderError

logger = logging.getLogger(__name__)

_SLACK_AUTH_URL = "https://slack.com/oauth/v2/authorize"
_SLACK_TOKEN_URL = "https://slack.com/api/oauth.v2.access"
_SLACK_REVOKE_URL = "https://slack.com/api/auth.revoke"
_SLACK_USER_INFO_URL = "https://slack.com/api/users.identity"


class SlackConnector(BaseConnector):
    """OAuth2 connector for Slack."""

    provider_name = "slack"
    display_name = "Slack"
    icon = "💬"
    scopes: List[str] = [
        "chat:write",
        "channels:read",
        "users:read",
        "users:read.email",
    ]
    scope_separator = ","

    @property
    def supports_refresh(self) -> bool:
        return False

    def _unwrap(self, resp: httpx.Response, action: str) -> Dict[str, Any]:
        self._check(resp, action)
        data = resp.json()
        if not data.get("ok"):
            raise ProviderError(self.provider_name, f"Slack API error: {data.get('error', 'unknown_error')}")
        return data

    def get_auth_url(self, state: str) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": self.scope_string(),
            "state": state,
            "user_scope": "",
        }
        return f"{_SLACK_AUTH_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> TokenResponse:
        async with self._client() as client:
            resp = await client.post(
                _SLACK_TOKEN_URL,
                data={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "code": code,
                    "redirect_uri": self.redirect_uri,
                },
            )
        data = self._unwrap(resp, "exchange code for token")
        return TokenResponse(
            access_token=data["access_token"],
            token_type=data.get("token_type"),
            scope=data.get("scope"),
        )

    async def refresh_access_token(self, refresh_token: str) -> TokenResponse:
        raise ProviderError(self.provider_name, "Slack tokens do not require refresh")

    async def revoke_token(self, token: str) -> bool:
        async with self._client() as client:
            resp = await client.post(
                _SLACK_REVOKE_URL,
                headers={"Authorization": f"Bearer {token}"},
            )
        self._unwrap(resp, "revoke token")
        return True

    async def fetch_user_info(self, access_token: str) -> Dict[str, Any]:
        async with self._client() as client:
            resp = await client.get(
                _SLACK_USER_INFO_URL,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        return self._unwrap(resp, "get user info").get("user") or {}
