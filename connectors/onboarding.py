"""
Account linking — onboarding links, authorization start and callback.

An onboarding token is a single-use capability: "the holder may link a
``provider`` account labelled ``label`` for this user".  It doubles as
the OAuth ``state`` so the callback can recover the (user, provider,
label) triple without a second secret.

Token lifecycle: issued → consumed (deleted by a successful callback),
or issued → expired → reaped (deleted when next read after expiry).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List

import httpx
from fastapi import status
from sqlalchemy.ext.asyncio import AsyncSession

from auth.tokens import expiry_from_lifetime, is_expired
from config.settings import config
from connectors.base import BaseConnector, TokenResponse
from connectors.registry import ConnectorRegistry
from database.helpers import (
    LinkedAccount,
    create_onboarding_token,
    delete_onboarding_token,
    get_onboarding_token,
    upsert_account,
)
from database.models import OnboardingToken
from utils.errors import NotFound, ProviderError, TokenExpired, ValidationFailed

logger = logging.getLogger(__name__)


@dataclass
class LinkResult:
    account: LinkedAccount
    created: bool
    warnings: List[str] = field(default_factory=list)


async def create_auth_link(
    session: AsyncSession,
    registry: ConnectorRegistry,
    *,
    user_id: str,
    provider: str,
    label: str,
) -> str:
    """Issue an onboarding token and return the link that starts linking."""
    if provider not in registry:
        raise ValidationFailed(f"Invalid provider: {provider}")

    row = await create_onboarding_token(
        session,
        user_id=user_id,
        provider=provider,
        label=label,
        ttl_seconds=config.onboarding_token_ttl_seconds,
    )
    await session.commit()
    logger.info("Issued onboarding token for user %s (%s/%s)", user_id, provider, label)
    return f"{config.app_url.rstrip('/')}/auth/start?token={row.token}"


async def _load_live_token(session: AsyncSession, token: str) -> OnboardingToken:
    """Fetch an onboarding token, reaping it if it has expired."""
    row = await get_onboarding_token(session, token)
    if row is None:
        raise NotFound("Invalid or expired token")
    if is_expired(row.expires_at):
        await delete_onboarding_token(session, token)
        await session.commit()
        raise TokenExpired("Token has expired")
    return row


async def start_authorization(
    session: AsyncSession,
    registry: ConnectorRegistry,
    token: str,
) -> str:
    """Return the provider consent URL for a live onboarding token."""
    row = await _load_live_token(session, token)
    connector = registry.require(row.provider)
    return connector.get_auth_url(state=token)


async def _exchange(connector: BaseConnector, code: str) -> TokenResponse:
    try:
        return await connector.exchange_code(code)
    except ProviderError as exc:
        logger.error("Failed to exchange code for %s token: %s", connector.provider_name, exc)
        raise ProviderError(
            connector.provider_name,
            f"Failed to exchange authorization code: {exc.message}",
        ) from exc
    except httpx.HTTPError as exc:
        logger.error("Code exchange request to %s failed: %s", connector.provider_name, exc)
        raise ProviderError(
            connector.provider_name,
            f"Failed to exchange authorization code: {exc}",
            status_code=status.HTTP_502_BAD_GATEWAY,
        ) from exc


async def _user_metadata(connector: BaseConnector, access_token: str, warnings: List[str]) -> Dict[str, Any]:
    """Best-effort profile lookup; failures become warnings."""
    try:
        info = await connector.fetch_user_info(access_token)
    except Exception as exc:
        logger.warning("Failed to get user info for %s: %s", connector.provider_name, exc, exc_info=True)
        warnings.append(f"Could not fetch account details: {exc}")
        return {}
    return dict(info or {})


async def complete_callback(
    session: AsyncSession,
    registry: ConnectorRegistry,
    *,
    provider: str,
    code: str,
    state: str,
) -> LinkResult:
    """
    Finish linking after the provider redirects back.

    The code is exchanged before anything else is checked: codes are
    single-use and expire within about a minute.  If the onboarding token
    then turns out to be invalid, the fresh provider tokens are dropped.
    """
    connector = registry.require(provider)

    tokens = await _exchange(connector, code)
    logger.info("Exchanged code for %s token (expires in %ss)", provider, tokens.expires_in)

    onboarding = await get_onboarding_token(session, state)
    if onboarding is None:
        logger.warning("Invalid onboarding token after successful %s code exchange", provider)
        raise NotFound("Invalid or expired token")
    if onboarding.provider != provider:
        raise ValidationFailed("Provider mismatch")
    if is_expired(onboarding.expires_at):
        await delete_onboarding_token(session, state)
        await session.commit()
        raise TokenExpired("Token has expired")

    warnings: List[str] = []
    metadata = await _user_metadata(connector, tokens.access_token, warnings)

    account, created = await upsert_account(
        session,
        user_id=onboarding.chatgpt_user_id,
        provider=provider,
        label=onboarding.label,
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        expires_at=expiry_from_lifetime(tokens.expires_in),
        scopes=connector.parse_scopes(tokens.scope),
        metadata=metadata,
    )
    await delete_onboarding_token(session, state)
    await session.commit()

    return LinkResult(account=account, created=created, warnings=warnings)
