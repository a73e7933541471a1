"""
LinearConnector — OAuth2 for the Linear issue tracker.

Linear access tokens are long-lived and have no refresh grant.  The
profile lookup goes through the GraphQL API.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from connectors.base import BaseConnector, TokenResponse
from utils.errors import ProviderError

logger = logging.getLogger(__name__)

_LINEAR_AUTH_URL = "https://linear.app/oauth/authorize"
_LINEAR_TOKEN_URL = "https://api.linear.app/oauth/token"
_LINEAR_REVOKE_URL = "https://api.linear.app/oauth/revoke"
LINEAR_API_URL = "https://api.linear.app/graphql"

_VIEWER_QUERY = """
query {
  viewer {
    id
    name
    email
  }
}
"""


class LinearConnector(BaseConnector):
    """OAuth2 connector for Linear."""

    provider_name = "linear"
    display_name = "Linear"
    icon = "📐"
    scopes: List[str] = ["read", "write"]
    scope_separator = ","

    @property
    def supports_refresh(self) -> bool:
        return False

    def get_auth_url(self, state: str) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": self.scope_string(),
            "state": state,
        }
        return f"{_LINEAR_AUTH_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> TokenResponse:
        async with self._client() as client:
            resp = await client.post(
                _LINEAR_TOKEN_URL,
                data={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "code": code,
                    "grant_type": "authorization_code",
                    "redirect_uri": self.redirect_uri,
                },
            )
        self._check(resp, "exchange code for token")
        return self._token_response(resp.json(), "exchange code for token")

    async def refresh_access_token(self, refresh_token: str) -> TokenResponse:
        raise ProviderError(self.provider_name, "Linear tokens do not require refresh")

    async def revoke_token(self, token: str) -> bool:
        async with self._client() as client:
            resp = await client.post(
                _LINEAR_REVOKE_URL,
                data={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "token": token,
                },
            )
        self._check(resp, "revoke token")
        return True

    async def fetch_user_info(self, access_token: str) -> Optional[Dict[str, Any]]:
        async with self._client() as client:
            resp = await client.post(
                LINEAR_API_URL,
                json={"query": _VIEWER_QUERY},
                headers={"Authorization": f"Bearer {access_token}"},
            )
        self._check(resp, "get user info")
        return (resp.json().get("data") or {}).get("viewer")
