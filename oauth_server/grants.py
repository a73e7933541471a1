"""
OAuth2 grants issued by this service.

Authorize step
    The assistant's platform sends the end-user here with ``client_id``,
    ``redirect_uri`` and ``state`` plus an ``openai-ephemeral-user-id``
    header.  The ephemeral id is mapped to a permanent one (minted on
    first sight), a short-lived code is stored and the browser is sent
    back to ``redirect_uri`` with ``code`` and ``state``.

Token step
    ``authorization_code`` exchanges a stored, unexpired code (matching
    client and redirect URI) for a signed access token and a random
    refresh token; the code is deleted.  ``refresh_token`` trades a
    stored refresh token for a new pair, rotating the refresh token.

All failures are ``OAuthError`` so they render as RFC 6749 error bodies.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from sqlalchemy.ext.asyncio import AsyncSession

from auth.jwt import create_access_token
from auth.tokens import is_expired
from config.settings import config
from database.helpers import (
    create_oauth_code,
    create_oauth_refresh_token,
    delete_oauth_code,
    delete_oauth_refresh_token,
    get_oauth_code,
    get_oauth_refresh_token,
    resolve_permanent_user_id,
)
from utils.errors import OAuthError, StoreError

logger = logging.getLogger(__name__)

GRANT_AUTHORIZATION_CODE = "authorization_code"
GRANT_REFRESH_TOKEN = "refresh_token"


def _server_error(exc: Exception) -> OAuthError:
    logger.error("OAuth server error: %s", exc, exc_info=True)
    return OAuthError("server_error", "Internal server error", status_code=500)


def _with_query(url: str, **params: str) -> str:
    """Append ``params`` to ``url`` keeping any query it already has."""
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend(params.items())
    return urlunsplit(parts._replace(query=urlencode(query)))


async def authorize(
    session: AsyncSession,
    *,
    client_id: Optional[str],
    redirect_uri: Optional[str],
    state: Optional[str],
    scope: Optional[str],
    ephemeral_user_id: Optional[str],
    conversation_id: Optional[str] = None,
) -> str:
    """Issue an authorization code and return the redirect URL."""
    if not client_id or not redirect_uri or not state:
        raise OAuthError("invalid_request", "Missing required parameters")
    if not ephemeral_user_id:
        raise OAuthError("invalid_request", "Missing user context")

    try:
        permanent_user_id = await resolve_permanent_user_id(session, ephemeral_user_id, conversation_id)
        row = await create_oauth_code(
            session,
            permanent_user_id=permanent_user_id,
            client_id=client_id,
            redirect_uri=redirect_uri,
            scope=scope or "",
            ttl_seconds=config.oauth_code_ttl_seconds,
        )
        await session.commit()
    except StoreError as exc:
        raise _server_error(exc) from exc

    logger.info("Issued authorization code for client %s", client_id)
    return _with_query(redirect_uri, code=row.code, state=state)


async def _issue_tokens(
    session: AsyncSession,
    *,
    permanent_user_id: str,
    client_id: str,
    scope: str,
) -> Dict[str, Any]:
    try:
        access_token = create_access_token(
            permanent_user_id,
            scope,
            expires_in=config.access_token_ttl_seconds,
        )
    except RuntimeError as exc:
        raise _server_error(exc) from exc

    refresh = await create_oauth_refresh_token(
        session,
        permanent_user_id=permanent_user_id,
        client_id=client_id,
        scope=scope,
        ttl_seconds=config.refresh_token_ttl_seconds,
    )
    return {
        "access_token": access_token,
        "token_type": "Bearer",
        "expires_in": config.access_token_ttl_seconds,
        "refresh_token": refresh.refresh_token,
        "scope": scope,
    }


async def _authorization_code_grant(session: AsyncSession, body: Dict[str, Any]) -> Dict[str, Any]:
    code = body.get("code")
    client_id = body.get("client_id")
    redirect_uri = body.get("redirect_uri")
    if not code or not client_id or not redirect_uri:
        raise OAuthError("invalid_request", "Missing required parameters")

    row = await get_oauth_code(session, code, client_id, redirect_uri)
    if row is None:
        raise OAuthError("invalid_grant", "Invalid authorization code")
    if is_expired(row.expires_at):
        await delete_oauth_code(session, code)
        await session.commit()
        raise OAuthError("invalid_grant", "Authorization code expired")

    # Only one of several concurrent exchanges of a code deletes it.
    if not await delete_oauth_code(session, code, client_id, redirect_uri):
        raise OAuthError("invalid_grant", "Invalid authorization code")

    tokens = await _issue_tokens(
        session,
        permanent_user_id=row.permanent_user_id,
        client_id=client_id,
        scope=row.scope or "",
    )
    await session.commit()
    logger.info("Exchanged authorization code for client %s", client_id)
    return tokens


async def _refresh_token_grant(session: AsyncSession, body: Dict[str, Any]) -> Dict[str, Any]:
    refresh_token = body.get("refresh_token")
    client_id = body.get("client_id")
    if not refresh_token or not client_id:
        raise OAuthError("invalid_request", "Missing required parameters")

    row = await get_oauth_refresh_token(session, refresh_token, client_id)
    if row is None:
        raise OAuthError("invalid_grant", "Invalid refresh token")
    if is_expired(row.expires_at):
        await delete_oauth_refresh_token(session, refresh_token)
        await session.commit()
        raise OAuthError("invalid_grant", "Refresh token expired")

    if not await delete_oauth_refresh_token(session, refresh_token, client_id):
        raise OAuthError("invalid_grant", "Invalid refresh token")

    tokens = await _issue_tokens(
        session,
        permanent_user_id=row.permanent_user_id,
        client_id=client_id,
        scope=row.scope or "",
    )
    await session.commit()
    logger.info("Rotated refresh token for client %s", client_id)
    return tokens


async def exchange_token(session: AsyncSession, body: Dict[str, Any]) -> Dict[str, Any]:
    """Dispatch a token request on its ``grant_type``."""
    grant_type = body.get("grant_type")
    try:
        if grant_type == GRANT_AUTHORIZATION_CODE:
            return await _authorization_code_grant(session, body)
        if grant_type == GRANT_REFRESH_TOKEN:
            return await _refresh_token_grant(session, body)
    except StoreError as exc:
        raise _server_error(exc) from exc
    raise OAuthError("unsupported_grant_type")
