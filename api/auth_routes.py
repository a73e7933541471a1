"""
Account-linking routes — the browser half of onboarding.

  GET /auth/start?token=…              → {authUrl} of the provider consent page
  GET /auth/callback/{provider}?code&state → exchange, store, consume token
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from auth.dependencies import db_session, get_registry
from connectors.onboarding import complete_callback, start_authorization
from connectors.registry import ConnectorRegistry
from utils.errors import ValidationFailed
from utils.schemas import AuthLinkResponse, CallbackResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["onboarding"])


@router.get("/start", response_model=AuthLinkResponse)
async def auth_start(
    token: Optional[str] = Query(None),
    session: AsyncSession = Depends(db_session),
    registry: ConnectorRegistry = Depends(get_registry),
) -> AuthLinkResponse:
    if not token:
        raise ValidationFailed("Missing token parameter")
    auth_url = await start_authorization(session, registry, token)
    return AuthLinkResponse(authUrl=auth_url)


@router.get("/callback/{provider}", response_model=CallbackResponse)
async def auth_callback(
    provider: str,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    session: AsyncSession = Depends(db_session),
    registry: ConnectorRegistry = Depends(get_registry),
) -> CallbackResponse:
    """
    Provider redirect target.  The authorization code is exchanged before
    the onboarding token is validated.
    """
    if error:
        logger.info("User declined %s authorization: %s", provider, error)
        raise ValidationFailed(f"Authorization failed: {error}")
    if not code or not state:
        raise ValidationFailed("Missing code or state parameter")

    result = await complete_callback(session, registry, provider=provider, code=code, state=state)
    logger.info(
        "OAuth connected: user=%s provider=%s label=%s (%s)",
        result.account.chatgpt_user_id,
        provider,
        result.account.label,
        "new" if result.created else "reconnected",
    )
    return CallbackResponse(message="Account connected successfully", warnings=result.warnings)
