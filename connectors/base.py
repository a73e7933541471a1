"""
BaseConnector — abstract interface for all OAuth2 providers.

Every provider (Gmail, Slack, Linear, Zoho) subclasses this and
implements the three core methods.  Revocation and user-info lookup are
optional capabilities with no-op defaults.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, ConfigDict

from utils.errors import ProviderError

logger = logging.getLogger(__name__)


class TokenResponse(BaseModel):
    """Normalised result of a code exchange or refresh."""

    model_config = ConfigDict(extra="ignore")

    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    scope: Optional[str] = None
    token_type: Optional[str] = None


class BaseConnector(ABC):
    """Abstract base for all OAuth2 connectors."""

    # ── Identity ────────────────────────────────────────────────────────
    provider_name: str = ""
    display_name: str = ""
    icon: str = "🔗"
    scopes: List[str] = []
    scope_separator: str = " "

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        *,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self._timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings, **kwargs) -> Optional["BaseConnector"]:
        """Build the connector from app settings; None when not configured."""
        creds = settings.provider_credentials(cls.provider_name)
        if creds is None:
            return None
        client_id, client_secret = creds
        return cls(
            client_id,
            client_secret,
            settings.redirect_uri(cls.provider_name),
            timeout=settings.provider_timeout_seconds,
            **kwargs,
        )

    # ── OAuth flow ──────────────────────────────────────────────────────

    @abstractmethod
    def get_auth_url(self, state: str) -> str:
        """
        Build the provider's OAuth2 authorization URL.

        Parameters
        ----------
        state : str
            Opaque value the provider echoes back verbatim on callback.
        """
        ...

    @abstractmethod
    async def exchange_code(self, code: str) -> TokenResponse:
        """
        Exchange the authorization code for tokens.

        Codes are single-use and short-lived, so callers must invoke this
        before doing any other validation work.
        """
        ...

    @abstractmethod
    async def refresh_access_token(self, refresh_token: str) -> TokenResponse:
        """
        Refresh an expired access token.

        Providers without a refresh grant raise ``ProviderError``.
        """
        ...

    async def revoke_token(self, token: str) -> bool:
        """
        Revoke the token at the provider (optional).
        Returns True on success, False if the provider doesn't support it.
        """
        return False

    async def fetch_user_info(self, access_token: str) -> Optional[Dict[str, Any]]:
        """Return profile metadata for the token owner, or None if unsupported."""
        return None

    # ── Helpers ─────────────────────────────────────────────────────────

    @property
    def supports_refresh(self) -> bool:
        return True

    def scope_string(self) -> str:
        return self.scope_separator.join(self.scopes)

    def parse_scopes(self, scope: Optional[str]) -> Optional[List[str]]:
        """Split a provider scope string on commas and/or whitespace."""
        if not scope:
            return None
        return [s for s in re.split(r"[,\s]+", scope) if s]

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    def _check(self, resp: httpx.Response, action: str) -> None:
        """Raise ``ProviderError`` for non-2xx provider responses."""
        if resp.is_success:
            return
        logger.warning(
            "%s %s failed with HTTP %s", self.provider_name, action, resp.status_code
        )
        raise ProviderError(
            self.provider_name,
            f"Failed to {action} ({resp.status_code}): {resp.text}",
        )

    def _token_response(self, data: Dict[str, Any], action: str) -> TokenResponse:
        if not data.get("access_token"):
            error = data.get("error_description") or data.get("error") or "no access token in response"
            raise ProviderError(self.provider_name, f"Failed to {action}: {error}")
        return TokenResponse.model_validate(data)
