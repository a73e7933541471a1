"""
ConnectorRegistry — name → provider implementation mapping.

The registry is an explicit object built once at startup by
``build_registry()`` and stored on ``app.state``; tests build their own
with fake connectors.  Callers never branch on provider names, they
resolve a connector here and use the uniform ``BaseConnector`` API.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Type

import httpx

from config.settings import Settings, config
from connectors.base import BaseConnector
from connectors.gmail import GmailConnector
from connectors.linear import LinearConnector
from connectors.slack import SlackConnector
from connectors.zoho import ZohoConnector
from utils.errors import NotFound

logger = logging.getLogger(__name__)

# ── All known connectors — add new ones here ─────────────────────────────

CONNECTOR_CLASSES: List[Type[BaseConnector]] = [
    GmailConnector,
    SlackConnector,
    LinearConnector,
    ZohoConnector,
]


class ConnectorRegistry:
    """Holds the configured connectors, keyed by provider name."""

    def __init__(self, connectors: Iterable[BaseConnector] = ()):
        self._connectors: Dict[str, BaseConnector] = {}
        for connector in connectors:
            self.register(connector)

    def register(self, connector: BaseConnector) -> None:
        self._connectors[connector.provider_name] = connector

    def get(self, provider: str) -> Optional[BaseConnector]:
        """Get a connector by provider name."""
        return self._connectors.get(provider)

    def require(self, provider: str) -> BaseConnector:
        """Like ``get`` but raises ``NotFound`` for unknown providers."""
        connector = self._connectors.get(provider)
        if connector is None:
            raise NotFound(f"Invalid provider: {provider}")
        return connector

    def __contains__(self, provider: str) -> bool:
        return provider in self._connectors

    def list_providers(self) -> List[Dict[str, str]]:
        """Return display info about every configured connector."""
        return [
            {
                "provider": c.provider_name,
                "display_name": c.display_name,
                "icon": c.icon,
            }
            for c in self._connectors.values()
        ]

    def list_configured(self) -> List[str]:
        return list(self._connectors.keys())


def build_registry(
    settings: Settings = config,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ConnectorRegistry:
    """Instantiate every connector whose client credentials are configured."""
    registry = ConnectorRegistry()
    for cls in CONNECTOR_CLASSES:
        connector = cls.from_settings(settings, transport=transport)
        if connector is None:
            logger.warning(
                "Connector %s skipped — not configured (missing client_id/secret)",
                cls.provider_name,
            )
            continue
        registry.register(connector)
        logger.info("Connector registered: %s (%s)", cls.display_name, cls.provider_name)
    return registry
