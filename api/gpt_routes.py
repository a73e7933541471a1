"""
Assistant-facing API.

Every route resolves the end-user through ``get_current_user_id``
(Bearer access token or legacy headers) and only ever touches that
user's accounts.

Route prefix: /gpt
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from actions.dispatcher import execute_action, search_all_emails
from actions.registry import ActionRegistry
from auth.dependencies import (
    db_session,
    get_action_registry,
    get_current_user_id,
    get_registry,
    get_session_factory,
)
from connectors.management import create_management_link, remove_account, toggle_account
from connectors.onboarding import create_auth_link
from connectors.registry import ConnectorRegistry
from database.helpers import list_accounts
from utils.schemas import (
    AccountListResponse,
    ActionRequest,
    AuthLinkResponse,
    CreateAuthLinkRequest,
    ManagementLinkResponse,
    SearchAllEmailsRequest,
    ToggleResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/gpt", tags=["gpt"])


@router.post("/create-auth-link", response_model=AuthLinkResponse)
async def create_auth_link_route(
    body: CreateAuthLinkRequest,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(db_session),
    registry: ConnectorRegistry = Depends(get_registry),
) -> AuthLinkResponse:
    url = await create_auth_link(session, registry, user_id=user_id, provider=body.provider, label=body.label)
    return AuthLinkResponse(authUrl=url)


@router.post("/create-management-link", response_model=ManagementLinkResponse)
async def create_management_link_route(
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(db_session),
) -> ManagementLinkResponse:
    url = await create_management_link(session, user_id=user_id)
    return ManagementLinkResponse(managementUrl=url)


@router.get("/accounts", response_model=AccountListResponse)
async def list_accounts_route(
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    accounts = await list_accounts(session, user_id)
    return {"accounts": [a.to_public() for a in accounts]}


@router.delete("/accounts/{account_id}")
async def delete_account_route(
    account_id: str,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(db_session),
    registry: ConnectorRegistry = Depends(get_registry),
) -> Dict[str, bool]:
    await remove_account(session, registry, account_id, user_id)
    return {"success": True}


@router.post("/accounts/{account_id}/toggle", response_model=ToggleResponse)
async def toggle_account_route(
    account_id: str,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(db_session),
) -> ToggleResponse:
    result = await toggle_account(session, account_id, user_id)
    return ToggleResponse(**result)


@router.post("/actions/{provider}/{action}")
async def execute_action_route(
    provider: str,
    action: str,
    body: ActionRequest,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(db_session),
    registry: ConnectorRegistry = Depends(get_registry),
    actions: ActionRegistry = Depends(get_action_registry),
) -> Any:
    return await execute_action(
        session,
        registry,
        actions,
        user_id=user_id,
        provider=provider,
        action=action,
        account_id=body.account_id,
        params=body.params,
    )


@router.post("/search-all-emails")
async def search_all_emails_route(
    body: SearchAllEmailsRequest,
    user_id: str = Depends(get_current_user_id),
    session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),
    registry: ConnectorRegistry = Depends(get_registry),
    actions: ActionRegistry = Depends(get_action_registry),
) -> Dict[str, Any]:
    return await search_all_emails(
        session_factory,
        registry,
        actions,
        user_id=user_id,
        query=body.query,
        max_results=body.max_results,
    )
