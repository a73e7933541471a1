"""
GmailConnector — OAuth2 web flow for Gmail.

Uses Google's OAuth2 to get per-user Gmail access without the user
sharing any credentials with the application.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List
from urllib.parse import urlencode

from connectors.base import BaseConnector, TokenResponse

logger = logging.getLogger(__name__)

# Google OAuth2 endpoints
_GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
_GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
_GOOGLE_REVOKE_URL = "https://oauth2.googleapis.com/revoke"
_GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"


class GmailConnector(BaseConnector):
    """OAuth2 connector for Gmail."""

    provider_name = "gmail"
    display_name = "Gmail"
    icon = "📧"
    scopes: List[str] = [
        "https://www.googleapis.com/auth/gmail.send",
        "https://www.googleapis.com/auth/gmail.readonly",
        "https://www.googleapis.com/auth/userinfo.email",
    ]

    def get_auth_url(self, state: str) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": self.scope_string(),
            "state": state,
            "access_type": "offline",       # gets refresh_token
            "prompt": "consent",            # force consent to always get refresh_token
        }
        return f"{_GOOGLE_AUTH_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> TokenResponse:
        async with self._client() as client:
            resp = await client.post(
                _GOOGLE_TOKEN_URL,
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
        async with self._client() as client:
            resp = await client.post(
                _GOOGLE_TOKEN_URL,
                data={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "refresh_token": refresh_token,
                    "grant_type": "refresh_token",
                },
            )
        self._check(resp, "refresh token")
        return self._token_response(resp.json(), "refresh token")

    async def revoke_token(self, token: str) -> bool:
        async with self._client() as client:
            resp = await client.post(_GOOGLE_REVOKE_URL, data={"token": token})
        self._check(resp, "revoke token")
        return True

    async def fetch_user_info(self, access_token: str) -> Dict[str, Any]:
        async with self._client() as client:
            resp = await client.get(
                _GOOGLE_USERINFO_URL,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        self._check(resp, "get user info")
        return resp.json()
