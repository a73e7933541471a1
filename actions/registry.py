"""
ActionRegistry — (provider, action-name) → handler mapping.

Handlers are collected from the modules listed in ``ACTION_MODULES`` by
looking for functions tagged with ``@action``.
"""

from __future__ import annotations

import importlib
import inspect
import logging
from typing import Dict, Iterable, List, Optional, Tuple

from actions.base import ActionHandler

logger = logging.getLogger(__name__)

ACTION_MODULES: List[str] = [
    "actions.gmail_actions",
    "actions.slack_actions",
    "actions.linear_actions",
    "actions.zoho_actions",
]


class ActionRegistry:
    """Holds the action handlers available to the dispatcher."""

    def __init__(self) -> None:
        self._handlers: Dict[Tuple[str, str], ActionHandler] = {}

    def register(self, provider: str, name: str, handler: ActionHandler) -> None:
        self._handlers[(provider, name)] = handler

    def get(self, provider: str, name: str) -> Optional[ActionHandler]:
        return self._handlers.get((provider, name))

    def list_actions(self, provider: Optional[str] = None) -> List[str]:
        return sorted(
            f"{p}/{n}" for (p, n) in self._handlers if provider is None or p == provider
        )

    def load_modules(self, module_names: Iterable[str] = ACTION_MODULES) -> None:
        """Register every ``@action`` function found in ``module_names``."""
        for module_name in module_names:
            module = importlib.import_module(module_name)
            for _, obj in inspect.getmembers(module, inspect.iscoroutinefunction):
                if getattr(obj, "is_action", False):
                    self.register(obj.action_provider, obj.action_name, obj)
                    logger.debug("Registered action %s/%s", obj.action_provider, obj.action_name)


def build_action_registry() -> ActionRegistry:
    registry = ActionRegistry()
    registry.load_modules()
    logger.info("Loaded %d provider actions", len(registry.list_actions()))
    return registry
