"""
ActionContext — everything a handler needs to call a provider API.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx


@dataclass
class ActionContext:
    account_id: str
    user_id: str
    access_token: str
    refresh_token: Optional[str]
    metadata: Dict[str, Any] = field(default_factory=dict)
    # shared client with the provider timeout applied
    http: Optional[httpx.AsyncClient] = None


ActionHandler = Callable[[ActionContext, Dict[str, Any]], Awaitable[Any]]


def require_params(params: Dict[str, Any], *names: str) -> None:
    """Raise ``ActionError`` listing any missing required params."""
    from utils.errors import ActionError

    missing = [n for n in names if not params.get(n)]
    if missing:
        label = "field" if len(missing) == 1 else "fields"
        raise ActionError(f"Missing required {label}: {', '.join(missing)}")
