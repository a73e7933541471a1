"""
Gmail actions — send and search mail for one linked Gmail account.

The Gmail API is reached through ``googleapiclient``.  Its calls are
synchronous, so every ``.execute`` is offloaded with ``asyncio.to_thread``
and a service is built per call from the account's refreshed token.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Dict, Optional

import google_auth_httplib2
import httplib2
from fastapi import status
from google.auth.exceptions import RefreshError, TransportError
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from actions import action
from actions.base import ActionContext, require_params
from config.settings import config
from utils.errors import ActionError

logger = logging.getLogger(__name__)

# Raised out of ``.execute`` when Google is unreachable or times out.
_TRANSPORT_ERRORS = (OSError, TransportError, httplib2.HttpLib2Error)


def build_gmail_service(access_token: str) -> Any:
    """Gmail v1 service authorised with ``access_token``."""
    http = google_auth_httplib2.AuthorizedHttp(
        Credentials(token=access_token),
        http=httplib2.Http(timeout=config.provider_timeout_seconds),
    )
    return build("gmail", "v1", http=http, cache_discovery=False)


def _decode(data: str) -> str:
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4)).decode(errors="replace")


def _parse_message(msg: Dict) -> Dict[str, Any]:
    """Extract useful fields from a Gmail API message resource."""
    payload = msg.get("payload", {})
    headers = {h["name"].lower(): h["value"] for h in payload.get("headers", [])}
    snippet = msg.get("snippet", "")

    body = ""
    for part in payload.get("parts") or [payload]:
        if part.get("mimeType") == "text/plain" and part.get("body", {}).get("data"):
            body = _decode(part["body"]["data"])
            break

    return {
        "id": msg.get("id"),
        "threadId": msg.get("threadId"),
        "subject": headers.get("subject"),
        "from": headers.get("from"),
        "to": headers.get("to"),
        "date": headers.get("date"),
        "snippet": snippet,
        "body": body or snippet,
    }


def _build_mime_message(
    to: str,
    subject: str,
    body: str,
    cc: Optional[str] = None,
    bcc: Optional[str] = None,
) -> str:
    """Create a base64url-encoded RFC 2822 message."""
    mime = MIMEMultipart()
    mime["to"] = to
    mime["subject"] = subject
    if cc:
        mime["cc"] = cc
    if bcc:
        mime["bcc"] = bcc
    mime.attach(MIMEText(body, "plain"))
    return base64.urlsafe_b64encode(mime.as_bytes()).decode()


@action("gmail", "send-email")
async def send_email(ctx: ActionContext, params: Dict[str, Any]) -> Dict[str, Any]:
    require_params(params, "to", "subject", "body")
    raw = _build_mime_message(
        params["to"],
        params["subject"],
        params["body"],
        cc=params.get("cc"),
        bcc=params.get("bcc"),
    )

    try:
        service = await asyncio.to_thread(build_gmail_service, ctx.access_token)
        sent = await asyncio.to_thread(
            service.users()
            .messages()
            .send(userId="me", body={"raw": raw})
            .execute
        )
    except (HttpError, RefreshError) as exc:
        raise ActionError(f"Failed to send email: {exc}") from exc
    except _TRANSPORT_ERRORS as exc:
        logger.error("Gmail send request failed for account %s: %s", ctx.account_id, exc)
        raise ActionError(f"Failed to send email: {exc}", status_code=status.HTTP_502_BAD_GATEWAY) from exc

    logger.info("send_email → account=%s  message_id=%s", ctx.account_id, sent.get("id"))
    return {"messageId": sent.get("id"), "threadId": sent.get("threadId")}


@action("gmail", "search-emails")
async def search_emails(ctx: ActionContext, params: Dict[str, Any]) -> Dict[str, Any]:
    """
    Search messages with a Gmail query and return their parsed details.

    Messages whose detail fetch fails are left out of the result.
    """
    require_params(params, "query")
    max_results = int(params.get("maxResults") or 10)

    try:
        service = await asyncio.to_thread(build_gmail_service, ctx.access_token)
        results = await asyncio.to_thread(
            service.users()
            .messages()
            .list(userId="me", q=params["query"], maxResults=max_results)
            .execute
        )
    except (HttpError, RefreshError) as exc:
        raise ActionError(f"Failed to search emails: {exc}") from exc
    except _TRANSPORT_ERRORS as exc:
        logger.error("Gmail search request failed for account %s: %s", ctx.account_id, exc)
        raise ActionError(f"Failed to search emails: {exc}", status_code=status.HTTP_502_BAD_GATEWAY) from exc

    parsed = []
    for meta in results.get("messages", []):
        try:
            msg = await asyncio.to_thread(
                service.users()
                .messages()
                .get(userId="me", id=meta["id"], format="full")
                .execute
            )
        except (HttpError, *_TRANSPORT_ERRORS) as exc:
            logger.warning("Skipping Gmail message %s: %s", meta["id"], exc)
            continue
        parsed.append(_parse_message(msg))

    logger.info("search_emails → account=%s  found=%d", ctx.account_id, len(parsed))
    return {"messages": parsed, "resultSizeEstimate": results.get("resultSizeEstimate")}
