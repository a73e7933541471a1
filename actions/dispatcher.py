"""
Action dispatcher — route a caller's request to a provider action.

Pre-flight checks run in a fixed order and stop at the first failure,
so no provider is contacted for an account that is missing, foreign,
disabled, of the wrong provider or tokenless:

  1. account exists and belongs to the caller   → 404
  2. account is enabled                          → 403
  3. account provider matches the path           → 400
  4. account holds an access token               → 400
  5. (provider, action) has a handler            → 404

Only then is the token made fresh and the handler invoked.

``search_all_emails`` fans one Gmail search out over every enabled Gmail
account of a user.  Each account gets its own DB session and its own
refresh, and a failure is reported on that account's entry only.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

import httpx
from fastapi import status
from sqlalchemy.ext.asyncio import AsyncSession

from actions.base import ActionContext
from actions.registry import ActionRegistry
from config.settings import config
from connectors.registry import ConnectorRegistry
from connectors.token_manager import ensure_fresh
from database.helpers import LinkedAccount, get_account, list_accounts
from utils.errors import ActionError, BrokerError, Forbidden, NotFound, ValidationFailed

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_QUERY = "newer_than:2d"
DEFAULT_SEARCH_MAX_RESULTS = 20


async def _run_handler(
    handler: Callable,
    account: LinkedAccount,
    params: Dict[str, Any],
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Any:
    async with httpx.AsyncClient(
        timeout=config.provider_timeout_seconds,
        transport=transport,
    ) as http:
        ctx = ActionContext(
            account_id=str(account.id),
            user_id=account.chatgpt_user_id,
            access_token=account.access_token,
            refresh_token=account.refresh_token,
            metadata=dict(account.metadata or {}),
            http=http,
        )
        try:
            return await handler(ctx, params)
        except httpx.HTTPError as exc:
            logger.error("%s action request failed for account %s: %s", account.provider, account.id, exc)
            raise ActionError(
                f"Provider request failed: {exc}",
                status_code=status.HTTP_502_BAD_GATEWAY,
            ) from exc
        except ValueError as exc:
            # undecodable provider response
            raise ActionError(f"Invalid provider response: {exc}") from exc


async def execute_action(
    session: AsyncSession,
    registry: ConnectorRegistry,
    actions: ActionRegistry,
    *,
    user_id: str,
    provider: str,
    action: str,
    account_id: str,
    params: Optional[Dict[str, Any]] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Any:
    """Run ``provider/action`` against one of the caller's accounts."""
    account = await get_account(session, account_id)
    if account is None or account.chatgpt_user_id != user_id:
        raise NotFound("Account not found")
    if not account.enabled:
        raise Forbidden("Account is disabled")
    if account.provider != provider:
        raise ValidationFailed("Provider mismatch")
    if not account.access_token:
        raise ValidationFailed("Account has no access token")

    handler = actions.get(provider, action)
    if handler is None:
        raise NotFound(f"Invalid action: {action} for provider: {provider}")

    account = await ensure_fresh(account, registry=registry, db_session=session)

    logger.info("Executing %s/%s for account %s", provider, action, account.id)
    return await _run_handler(handler, account, params or {}, transport)


# ═══════════════════════════════════════════════════════════════════════════════
# Bulk Gmail search
# ═══════════════════════════════════════════════════════════════════════════════


async def _search_account(
    session_factory: Callable[[], AsyncSession],
    registry: ConnectorRegistry,
    handler: Callable,
    account: LinkedAccount,
    params: Dict[str, Any],
    transport: Optional[httpx.AsyncBaseTransport],
) -> Dict[str, Any]:
    entry: Dict[str, Any] = {
        "accountId": str(account.id),
        "label": account.label,
        "email": (account.metadata or {}).get("email"),
    }
    try:
        async with session_factory() as session:
            fresh = await ensure_fresh(account, registry=registry, db_session=session)
        result = await _run_handler(handler, fresh, params, transport)
    except BrokerError as exc:
        logger.warning("Gmail search failed for account %s: %s", account.id, exc.message)
        return {**entry, "success": False, "messages": [], "error": exc.message}
    except Exception as exc:
        logger.error("Gmail search crashed for account %s: %s", account.id, exc, exc_info=True)
        return {**entry, "success": False, "messages": [], "error": str(exc)}

    return {**entry, "success": True, "messages": result.get("messages", []), "error": None}


async def search_all_emails(
    session_factory: Callable[[], AsyncSession],
    registry: ConnectorRegistry,
    actions: ActionRegistry,
    *,
    user_id: str,
    query: Optional[str] = None,
    max_results: Optional[int] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Dict[str, Any]:
    """Search every enabled Gmail account of ``user_id`` concurrently."""
    async with session_factory() as session:
        accounts = await list_accounts(session, user_id, provider="gmail", enabled=True)

    if not accounts:
        return {"accounts": [], "totalEmails": 0, "message": "No Gmail accounts connected"}

    handler = actions.get("gmail", "search-emails")
    if handler is None:
        raise NotFound("Invalid action: search-emails for provider: gmail")

    params = {
        "query": query or DEFAULT_SEARCH_QUERY,
        "maxResults": max_results or DEFAULT_SEARCH_MAX_RESULTS,
    }
    results: List[Dict[str, Any]] = await asyncio.gather(
        *(
            _search_account(session_factory, registry, handler, account, params, transport)
            for account in accounts
        )
    )

    logger.info(
        "search_all_emails → user=%s  accounts=%d  ok=%d",
        user_id,
        len(results),
        sum(1 for r in results if r["success"]),
    )
    return {
        "accounts": results,
        "totalEmails": sum(len(r["messages"]) for r in results),
        "successfulAccounts": sum(1 for r in results if r["success"]),
        "totalAccounts": len(results),
    }
