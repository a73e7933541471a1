"""
Account management — management links and ownership-checked operations.

A management token is reusable until it expires (it backs a browser
session that lists, toggles and deletes accounts); it is deleted lazily
when found expired.  Every operation re-checks that the target account
belongs to the caller, whichever way the caller was identified.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from sqlalchemy.ext.asyncio import AsyncSession

from auth.tokens import is_expired
from config.settings import config
from connectors.registry import ConnectorRegistry
from database.helpers import (
    LinkedAccount,
    create_management_token,
    delete_account,
    delete_management_token,
    get_account,
    get_management_token,
    set_account_enabled,
)
from utils.errors import Forbidden, NotFound, TokenExpired

logger = logging.getLogger(__name__)


async def create_management_link(session: AsyncSession, *, user_id: str) -> str:
    row = await create_management_token(
        session,
        user_id=user_id,
        ttl_seconds=config.management_token_ttl_seconds,
    )
    await session.commit()
    logger.info("Issued management token for user %s", user_id)
    return f"{config.app_url.rstrip('/')}/integrations?token={row.token}"


async def resolve_management_token(session: AsyncSession, token: str) -> str:
    """Return the user id a live management token belongs to."""
    row = await get_management_token(session, token)
    if row is None:
        raise NotFound("Invalid or expired token")
    if is_expired(row.expires_at):
        await delete_management_token(session, token)
        await session.commit()
        raise TokenExpired("Token has expired")
    return row.chatgpt_user_id


async def load_owned_account(session: AsyncSession, account_id: str, user_id: str) -> LinkedAccount:
    account = await get_account(session, account_id)
    if account is None:
        raise NotFound("Account not found")
    if account.chatgpt_user_id != user_id:
        raise Forbidden("Unauthorized")
    return account


async def toggle_account(session: AsyncSession, account_id: str, user_id: str) -> Dict[str, Any]:
    """Flip the enabled flag of an owned account."""
    account = await load_owned_account(session, account_id, user_id)
    enabled = not account.enabled
    await set_account_enabled(session, account.id, enabled)
    await session.commit()
    logger.info("Account %s %s", account.id, "enabled" if enabled else "disabled")
    return {"id": str(account.id), "enabled": enabled}


async def remove_account(
    session: AsyncSession,
    registry: ConnectorRegistry,
    account_id: str,
    user_id: str,
) -> None:
    """
    Delete an owned account, revoking its token with the provider first.

    Revocation is best-effort and never blocks the local delete.
    """
    account = await load_owned_account(session, account_id, user_id)

    connector = registry.get(account.provider)
    if connector is not None and account.access_token:
        try:
            await connector.revoke_token(account.access_token)
        except Exception as exc:
            logger.warning(
                "Failed to revoke %s token for account %s: %s", account.provider, account.id, exc, exc_info=True
            )

    await delete_account(session, account.id)
    await session.commit()
    logger.info("Deleted %s account %s for user %s", account.provider, account.id, user_id)
