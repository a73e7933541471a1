"""
@action decorator — marks a coroutine as the handler for one
(provider, action-name) pair.

Usage:
    from actions import action

    @action("gmail", "send-email")
    async def send_email(ctx: ActionContext, params: Dict[str, Any]) -> Dict:
        ...

Handlers receive a refreshed ``ActionContext`` and the caller's params,
return JSON-serialisable data and raise ``ActionError`` on failure.
"""

from __future__ import annotations

from typing import Callable


def action(provider: str, name: str) -> Callable:
    """Decorator that tags a function as a provider action handler."""

    def decorator(func: Callable) -> Callable:
        func.is_action = True  # type: ignore[attr-defined]
        func.action_provider = provider  # type: ignore[attr-defined]
        func.action_name = name  # type: ignore[attr-defined]
        return func

    return decorator
