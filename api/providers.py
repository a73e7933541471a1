"""
Static provider lookup for UIs — no auth required.
"""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends

from auth.dependencies import get_registry
from connectors.registry import ConnectorRegistry
from utils.schemas import ProviderOut

router = APIRouter(tags=["providers"])


@router.get("/providers", response_model=List[ProviderOut])
async def list_providers(registry: ConnectorRegistry = Depends(get_registry)) -> List[dict]:
    """Providers that are configured on this deployment."""
    return registry.list_providers()
