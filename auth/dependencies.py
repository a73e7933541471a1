"""
FastAPI dependencies shared by the routers.

Provides ``db_session``, the registries stored on ``app.state``, a
session factory for fan-out work, and ``get_current_user_id``.

A caller identifies an end-user in one of two ways:
  • ``Authorization: Bearer <access token>`` issued by the internal
    OAuth server (subject = permanent user id), or
  • legacy ``x-api-key`` (pre-shared key) + ``x-gpt-user-id`` headers.
"""

from __future__ import annotations

from typing import AsyncGenerator, Callable, Optional

from fastapi import Depends, Header, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from actions.registry import ActionRegistry
from auth.jwt import verify_access_token
from auth.tokens import constant_time_compare
from config.settings import config
from connectors.registry import ConnectorRegistry
from database.session import async_session_factory, get_db_session
from utils.errors import AuthenticationFailed, BrokerError

_bearer_scheme = HTTPBearer(auto_error=False)


async def db_session(
    session: AsyncSession = Depends(get_db_session),
) -> AsyncGenerator[AsyncSession, None]:
    """Yield a DB session for route handlers."""
    yield session


def get_registry(request: Request) -> ConnectorRegistry:
    return request.app.state.registry


def get_action_registry(request: Request) -> ActionRegistry:
    return request.app.state.actions


def get_session_factory() -> Callable[[], AsyncSession]:
    """Factory for work that needs one session per concurrent task."""
    return async_session_factory


def verify_api_key_headers(api_key: Optional[str], user_id: Optional[str]) -> str:
    """Legacy header auth; returns the asserted end-user id."""
    if not api_key:
        raise AuthenticationFailed("Missing x-api-key header")
    if not user_id:
        raise AuthenticationFailed("Missing x-gpt-user-id header")
    if not config.gpt_api_key:
        raise BrokerError("Server configuration error: GPT_API_KEY not set")
    if not constant_time_compare(api_key, config.gpt_api_key):
        raise AuthenticationFailed("Invalid API key")
    return user_id


async def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
    x_api_key: Optional[str] = Header(None, alias="x-api-key"),
    x_gpt_user_id: Optional[str] = Header(None, alias="x-gpt-user-id"),
) -> str:
    """
    Resolve the end-user the request acts for.

    A Bearer token wins when present; otherwise the legacy headers are
    checked.
    """
    if credentials is not None:
        claims = verify_access_token(credentials.credentials)
        return claims["sub"]
    return verify_api_key_headers(x_api_key, x_gpt_user_id)
