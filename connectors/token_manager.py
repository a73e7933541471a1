"""
Token manager — keep a linked account's access token usable.

``ensure_fresh()`` is the single entry point every provider call goes
through.  It is a no-op for tokens with no expiry or more than the
refresh margin left; otherwise it refreshes through the provider,
persists the result, and only then hands the account back.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

import httpx
from fastapi import status
from sqlalchemy.ext.asyncio import AsyncSession

from auth.tokens import as_utc, expiry_from_lifetime, utcnow
from config.settings import config
from connectors.registry import ConnectorRegistry
from database.helpers import LinkedAccount, get_account, update_account_tokens
from utils.errors import NotFound, ProviderError, ReconnectRequired, TokenRefreshFailed

logger = logging.getLogger(__name__)


def is_expiring_soon(expires_at: Optional[datetime], margin_seconds: Optional[int] = None) -> bool:
    """
    True when ``expires_at`` is known and less than the margin away.

    A missing expiry means the provider issued a non-expiring token.
    """
    if expires_at is None:
        return False
    margin = config.refresh_margin_seconds if margin_seconds is None else margin_seconds
    return as_utc(expires_at) - utcnow() < timedelta(seconds=margin)


async def ensure_fresh(
    account: LinkedAccount,
    *,
    registry: ConnectorRegistry,
    db_session: AsyncSession,
    margin_seconds: Optional[int] = None,
) -> LinkedAccount:
    """
    Return ``account`` with an access token that is safe to use.

    Raises
    ------
    ReconnectRequired
        The token is expiring and there is no refresh token.
    TokenRefreshFailed
        The provider refused or could not be reached; the stored row is
        left untouched so a later call can try again.
    """
    if not is_expiring_soon(account.expires_at, margin_seconds):
        return account

    if not account.refresh_token:
        logger.info("Account %s (%s) expired with no refresh token", account.id, account.provider)
        raise ReconnectRequired()

    connector = registry.get(account.provider)
    if connector is None:
        raise TokenRefreshFailed(f"Failed to refresh token: invalid provider {account.provider}")

    try:
        refreshed = await connector.refresh_access_token(account.refresh_token)
    except ProviderError as exc:
        logger.warning("Token refresh failed for %s account %s: %s", account.provider, account.id, exc)
        raise TokenRefreshFailed(f"Failed to refresh token: {exc}") from exc
    except httpx.HTTPError as exc:
        logger.warning("Token refresh request failed for %s account %s: %s", account.provider, account.id, exc)
        raise TokenRefreshFailed(
            f"Failed to refresh token: {exc}",
            status_code=status.HTTP_502_BAD_GATEWAY,
        ) from exc

    # Some providers rotate refresh tokens, others never resend them
    written = await update_account_tokens(
        db_session,
        account,
        access_token=refreshed.access_token,
        refresh_token=refreshed.refresh_token or account.refresh_token,
        expires_at=expiry_from_lifetime(refreshed.expires_in),
    )
    await db_session.commit()

    if written:
        logger.info("Refreshed %s token for account %s", account.provider, account.id)
    else:
        logger.info(
            "Account %s was refreshed concurrently; using the stored token", account.id
        )

    current = await get_account(db_session, account.id)
    if current is None:
        raise NotFound("Account not found")
    return current
