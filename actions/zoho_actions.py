"""
Zoho Mail actions.

Every Zoho Mail endpoint is scoped by the mailbox ``accountId`` resolved
when the account was linked and stored in its metadata.  Accounts
linked without it have to be reconnected.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from actions import action
from actions.base import ActionContext, require_params
from config.settings import config
from connectors.zoho import ZohoConnector
from utils.errors import ActionError

logger = logging.getLogger(__name__)


def _mail_api_base() -> str:
    return f"https://mail.{config.zoho_domain}/api"


def _zoho_account_id(ctx: ActionContext) -> str:
    account_id = (ctx.metadata or {}).get("accountId")
    if not account_id:
        raise ActionError("Zoho account ID not found in metadata. Please reconnect your Zoho account.")
    return str(account_id)


def _iso_time(received: Any) -> Optional[str]:
    """Zoho timestamps are epoch milliseconds, usually as strings."""
    if received in (None, ""):
        return None
    try:
        return datetime.fromtimestamp(int(received) / 1000, tz=timezone.utc).isoformat()
    except (TypeError, ValueError):
        return str(received)


def _check(resp: httpx.Response, action_label: str) -> Dict[str, Any]:
    if resp.is_error:
        raise ActionError(f"Failed to {action_label}: {resp.text}")
    return resp.json()


@action("zoho", "send-email")
async def send_email(ctx: ActionContext, params: Dict[str, Any]) -> Dict[str, Any]:
    require_params(params, "to", "subject", "body")
    account_id = _zoho_account_id(ctx)
    from_address = params.get("fromAddress") or (ctx.metadata or {}).get("email")
    if not from_address:
        raise ActionError("From address not specified and no default email found")

    payload: Dict[str, Any] = {
        "fromAddress": from_address,
        "toAddress": params["to"],
        "subject": params["subject"],
        "content": params["body"],
        "mailFormat": "html",
    }
    if params.get("cc"):
        payload["ccAddress"] = params["cc"]
    if params.get("bcc"):
        payload["bccAddress"] = params["bcc"]

    resp = await ctx.http.post(
        f"{_mail_api_base()}/accounts/{account_id}/messages",
        headers=ZohoConnector.auth_header(ctx.access_token),
        json=payload,
    )
    data = _check(resp, "send email").get("data") or {}
    logger.info("send_email → zoho account=%s  message_id=%s", ctx.account_id, data.get("messageId"))
    return {"messageId": data.get("messageId"), "mailId": data.get("mailId")}


@action("zoho", "search-emails")
async def search_emails(ctx: ActionContext, params: Dict[str, Any]) -> Dict[str, Any]:
    """Metadata-only search; use get-email-content for bodies."""
    require_params(params, "query")
    account_id = _zoho_account_id(ctx)

    resp = await ctx.http.get(
        f"{_mail_api_base()}/accounts/{account_id}/messages/search",
        headers=ZohoConnector.auth_header(ctx.access_token),
        params={"searchKey": params["query"], "limit": int(params.get("maxResults", 50))},
    )
    messages = _check(resp, "search emails").get("data") or []

    formatted = [
        {
            "id": msg.get("messageId"),
            "threadId": msg.get("conversationId"),
            "subject": msg.get("subject") or "(No subject)",
            "from": msg.get("fromAddress"),
            "to": msg.get("toAddress"),
            "date": _iso_time(msg.get("receivedTime")),
            "snippet": msg.get("summary") or "",
            "folderId": msg.get("folderId"),
        }
        for msg in messages
    ]
    return {"messages": formatted, "resultSizeEstimate": len(formatted)}


async def _fetch_content(ctx: ActionContext, account_id: str, message_info: Any) -> Dict[str, Any]:
    """Content of one message; failures are reported on the item."""
    if isinstance(message_info, dict):
        message_id = message_info.get("messageId")
        folder_id = message_info.get("folderId")
    else:
        message_id, folder_id = message_info, None

    headers = ZohoConnector.auth_header(ctx.access_token)
    try:
        if not folder_id:
            resp = await ctx.http.get(
                f"{_mail_api_base()}/accounts/{account_id}/messages/view",
                headers=headers,
                params={"messageId": message_id},
            )
            if resp.is_success:
                folder_id = (resp.json().get("data") or {}).get("folderId")
        if not folder_id:
            return {"id": message_id, "error": "Could not determine folder ID for message"}

        resp = await ctx.http.get(
            f"{_mail_api_base()}/accounts/{account_id}/folders/{folder_id}/messages/{message_id}/content",
            headers=headers,
        )
        if resp.is_error:
            return {"id": message_id, "error": "Failed to fetch message content"}
        msg = resp.json().get("data") or {}
    except (httpx.HTTPError, ValueError) as exc:
        return {"id": message_id, "error": f"Error fetching message: {exc}"}

    return {
        "id": message_id,
        "threadId": msg.get("conversationId"),
        "subject": msg.get("subject") or "(No subject)",
        "from": msg.get("fromAddress"),
        "to": msg.get("toAddress"),
        "date": _iso_time(msg.get("receivedTime")),
        "body": msg.get("content") or msg.get("summary") or "(No content)",
    }


@action("zoho", "get-email-content")
async def get_email_content(ctx: ActionContext, params: Dict[str, Any]) -> Dict[str, Any]:
    """
    Full content for ``messageIds``: a list of message id strings or of
    ``{"messageId", "folderId"}`` objects as returned by search-emails.
    """
    message_ids = params.get("messageIds")
    if not isinstance(message_ids, list) or not message_ids:
        raise ActionError("Missing required field: messageIds (array)")
    account_id = _zoho_account_id(ctx)

    messages = await asyncio.gather(*(_fetch_content(ctx, account_id, m) for m in message_ids))
    return {"messages": list(messages)}
