"""
Slack actions — Web API calls with the account's bot token.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from actions import action
from actions.base import ActionContext, require_params
from utils.errors import ActionError

logger = logging.getLogger(__name__)

SLACK_API_URL = "https://slack.com/api"


def _unwrap(data: Dict[str, Any]) -> Dict[str, Any]:
    # Slack reports failures as HTTP 200 with ok=false
    if not data.get("ok"):
        raise ActionError(f"Slack API error: {data.get('error', 'unknown_error')}")
    return data


@action("slack", "post-message")
async def post_message(ctx: ActionContext, params: Dict[str, Any]) -> Dict[str, Any]:
    require_params(params, "channel", "text")
    payload: Dict[str, Any] = {"channel": params["channel"], "text": params["text"]}
    if params.get("blocks"):
        payload["blocks"] = params["blocks"]

    resp = await ctx.http.post(
        f"{SLACK_API_URL}/chat.postMessage",
        headers={"Authorization": f"Bearer {ctx.access_token}"},
        json=payload,
    )
    data = _unwrap(resp.json())
    logger.info("post_message → account=%s  channel=%s", ctx.account_id, data.get("channel"))
    return {"channel": data.get("channel"), "ts": data.get("ts"), "message": data.get("message")}


@action("slack", "list-channels")
async def list_channels(ctx: ActionContext, params: Dict[str, Any]) -> Dict[str, Any]:
    resp = await ctx.http.get(
        f"{SLACK_API_URL}/conversations.list",
        headers={"Authorization": f"Bearer {ctx.access_token}"},
        params={
            "limit": params.get("limit", 100),
            "types": params.get("types", "public_channel,private_channel"),
        },
    )
    data = _unwrap(resp.json())
    return {"channels": data.get("channels", [])}
