"""
Pydantic schemas for the broker's request and response bodies.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# ═══════════════════════════════════════════════════════════════════════════════
# Assistant-facing requests
# ═══════════════════════════════════════════════════════════════════════════════


class CreateAuthLinkRequest(BaseModel):
    provider: str = Field(..., min_length=1)
    label: str = Field(..., min_length=1)


class ActionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    account_id: str = Field(..., alias="accountId", min_length=1)
    params: Dict[str, Any] = Field(default_factory=dict)


class SearchAllEmailsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    query: Optional[str] = None
    max_results: Optional[int] = Field(None, alias="maxResults", ge=1, le=500)


# ═══════════════════════════════════════════════════════════════════════════════
# Responses
# ═══════════════════════════════════════════════════════════════════════════════


class AuthLinkResponse(BaseModel):
    authUrl: str


class ManagementLinkResponse(BaseModel):
    managementUrl: str


class AccountOut(BaseModel):
    id: str
    provider: str
    label: str
    enabled: bool
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[str] = None


class AccountListResponse(BaseModel):
    accounts: List[AccountOut]


class IntegrationsResponse(AccountListResponse):
    chatgptUserId: str


class ToggleResponse(BaseModel):
    success: bool = True
    id: str
    enabled: bool


class CallbackResponse(BaseModel):
    success: bool = True
    message: str
    warnings: List[str] = Field(default_factory=list)


class ProviderOut(BaseModel):
    provider: str
    display_name: str
    icon: str
