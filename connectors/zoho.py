"""
ZohoConnector — OAuth2 for Zoho Mail.

Zoho runs separate data centres (``zoho.com``, ``zoho.eu``, ``zoho.in``,
…) selected by ``ZOHO_DOMAIN``.  Its token endpoint takes parameters on
the query string, its API wants the ``Zoho-oauthtoken`` scheme, and mail
calls need the numeric mail ``accountId`` which is resolved once at link
time and kept in the account metadata.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List
from urllib.parse import urlencode

import httpx

from connectors.base import BaseConnector, TokenResponse

logger = logging.getLogger(__name__)


class ZohoConnector(BaseConnector):
    """OAuth2 connector for Zoho Mail."""

    provider_name = "zoho"
    display_name = "Zoho Mail"
    icon = "✉️"
    scopes: List[str] = [
        "ZohoMail.messages.ALL",
        "ZohoMail.accounts.READ",
    ]
    scope_separator = ","

    def __init__(self, *args, domain: str = "zoho.com", **kwargs):
        super().__init__(*args, **kwargs)
        self.domain = domain

    @classmethod
    def from_settings(cls, settings, **kwargs):
        return super().from_settings(settings, domain=settings.zoho_domain, **kwargs)

    # ── Endpoints ───────────────────────────────────────────────────────

    @property
    def accounts_base(self) -> str:
        return f"https://accounts.{self.domain}"

    @property
    def mail_api_base(self) -> str:
        return f"https://mail.{self.domain}/api"

    @staticmethod
    def auth_header(access_token: str) -> Dict[str, str]:
        return {"Authorization": f"Zoho-oauthtoken {access_token}"}

    # ── OAuth flow ──────────────────────────────────────────────────────

    def get_auth_url(self, state: str) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": self.scope_string(),
            "state": state,
            "access_type": "offline",
            "prompt": "consent",
        }
        return f"{self.accounts_base}/oauth/v2/auth?{urlencode(params)}"

    async def exchange_code(self, code: str) -> TokenResponse:
        # Zoho expects parameters as query string, not in body
        params = {
            "grant_type": "authorization_code",
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "redirect_uri": self.redirect_uri,
            "code": code,
            "scope": self.scope_string(),
        }
        async with self._client() as client:
            resp = await client.post(f"{self.accounts_base}/oauth/v2/token", params=params)
        self._check(resp, "exchange code for token")
        return self._token_response(resp.json(), "exchange code for token")

    async def refresh_access_token(self, refresh_token: str) -> TokenResponse:
        params = {
            "grant_type": "refresh_token",
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "refresh_token": refresh_token,
        }
        async with self._client() as client:
            resp = await client.post(f"{self.accounts_base}/oauth/v2/token", params=params)
        self._check(resp, "refresh token")
        return self._token_response(resp.json(), "refresh token")

    async def revoke_token(self, token: str) -> bool:
        async with self._client() as client:
            resp = await client.post(
                f"{self.accounts_base}/oauth/v2/token/revoke",
                data={"token": token},
            )
        self._check(resp, "revoke token")
        return True

    async def fetch_user_info(self, access_token: str) -> Dict[str, Any]:
        async with self._client() as client:
            resp = await client.get(
                f"{self.accounts_base}/oauth/user/info",
                headers=self.auth_header(access_token),
            )
            self._check(resp, "get user info")
            user_info = resp.json()

            # The mail account id is separate from the OAuth identity.
            try:
                accounts_resp = await client.get(
                    f"{self.mail_api_base}/accounts",
                    headers=self.auth_header(access_token),
                )
                if accounts_resp.is_success:
                    accounts = accounts_resp.json().get("data") or []
                    if not isinstance(accounts, list):
                        raise ValueError(f"unexpected accounts payload: {accounts!r}")
                    primary = next((a for a in accounts if a.get("isPrimary")), None)
                    primary = primary or (accounts[0] if accounts else None)
                    if primary:
                        user_info["accountId"] = primary.get("accountId")
                        user_info["email"] = primary.get("emailAddress") or user_info.get("Email")
                else:
                    logger.warning("Zoho mail account lookup returned HTTP %s", accounts_resp.status_code)
            except Exception as exc:
                logger.warning("Failed to get Zoho Mail account ID: %s", exc)

        return user_info
