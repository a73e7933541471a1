"""
Internal OAuth2 endpoints.

  GET  /oauth/authorize  → 302 to the client's redirect_uri with code + state
  POST /oauth/token      → access / refresh token pair (JSON or form body)
"""

from __future__ import annotations

import json
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, Query, Request, status
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from auth.dependencies import db_session
from oauth_server.grants import authorize, exchange_token
from utils.errors import OAuthError

router = APIRouter(prefix="/oauth", tags=["oauth"])


@router.get("/authorize")
async def oauth_authorize(
    client_id: Optional[str] = Query(None),
    redirect_uri: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    scope: Optional[str] = Query(None),
    ephemeral_user_id: Optional[str] = Header(None, alias="openai-ephemeral-user-id"),
    conversation_id: Optional[str] = Header(None, alias="openai-conversation-id"),
    session: AsyncSession = Depends(db_session),
) -> RedirectResponse:
    location = await authorize(
        session,
        client_id=client_id,
        redirect_uri=redirect_uri,
        state=state,
        scope=scope,
        ephemeral_user_id=ephemeral_user_id,
        conversation_id=conversation_id,
    )
    return RedirectResponse(location, status_code=status.HTTP_302_FOUND)


async def _token_request_body(request: Request) -> Dict[str, Any]:
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/x-www-form-urlencoded") or content_type.startswith(
        "multipart/form-data"
    ):
        form = await request.form()
        return dict(form)
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise OAuthError("invalid_request", "Malformed request body") from exc
    if not isinstance(body, dict):
        raise OAuthError("invalid_request", "Malformed request body")
    return body


@router.post("/token")
async def oauth_token(
    request: Request,
    session: AsyncSession = Depends(db_session),
) -> JSONResponse:
    body = await _token_request_body(request)
    tokens = await exchange_token(session, body)
    return JSONResponse(tokens, headers={"Cache-Control": "no-store", "Pragma": "no-cache"})
