"""
Management routes — back the browser page opened from a management link.

The management token in the ``token`` query parameter identifies the
user; it stays valid for reuse until it expires.

Route prefix: /integrations
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from auth.dependencies import db_session, get_registry
from connectors.management import remove_account, resolve_management_token, toggle_account
from connectors.registry import ConnectorRegistry
from database.helpers import list_accounts
from utils.errors import ValidationFailed
from utils.schemas import IntegrationsResponse, ToggleResponse

router = APIRouter(prefix="/integrations", tags=["integrations"])


async def management_user_id(
    token: Optional[str] = Query(None),
    session: AsyncSession = Depends(db_session),
) -> str:
    if not token:
        raise ValidationFailed("Missing token parameter")
    return await resolve_management_token(session, token)


@router.get("", response_model=IntegrationsResponse)
async def list_integrations(
    user_id: str = Depends(management_user_id),
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    accounts = await list_accounts(session, user_id)
    return {"accounts": [a.to_public() for a in accounts], "chatgptUserId": user_id}


@router.delete("/{account_id}")
async def delete_integration(
    account_id: str,
    user_id: str = Depends(management_user_id),
    session: AsyncSession = Depends(db_session),
    registry: ConnectorRegistry = Depends(get_registry),
) -> Dict[str, bool]:
    await remove_account(session, registry, account_id, user_id)
    return {"success": True}


@router.post("/{account_id}/toggle", response_model=ToggleResponse)
async def toggle_integration(
    account_id: str,
    user_id: str = Depends(management_user_id),
    session: AsyncSession = Depends(db_session),
) -> ToggleResponse:
    return ToggleResponse(**await toggle_account(session, account_id, user_id))
