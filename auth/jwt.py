"""
JWT creation and verification for access tokens issued by the internal
OAuth server.

Tokens are compact HS256 JWTs (``header.payload.signature``, base64url
without padding) signed with ``config.signing_secret``.  Claims:

    sub    permanent user id
    scope  space-separated scope string granted at authorize time
    type   always ``"access_token"``
    iat    issued-at (unix seconds)
    exp    expiry (unix seconds)
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from base64 import urlsafe_b64decode, urlsafe_b64encode
from typing import Any, Dict, Optional

from config.settings import config
from utils.errors import AuthenticationFailed

ACCESS_TOKEN_TYPE = "access_token"

_HEADER = {"alg": "HS256", "typ": "JWT"}


def _b64encode(raw: bytes) -> str:
    return urlsafe_b64encode(raw).rstrip(b"=").decode()


def _b64decode(segment: str) -> bytes:
    return urlsafe_b64decode(segment + "=" * (-len(segment) % 4))


def _sign(signing_input: bytes, secret: str) -> str:
    return _b64encode(hmac.new(secret.encode(), signing_input, hashlib.sha256).digest())


def create_access_token(
    subject: str,
    scope: str = "",
    *,
    expires_in: Optional[int] = None,
    secret: Optional[str] = None,
) -> str:
    """Create a signed access token asserting ``subject``."""
    secret = secret or config.signing_secret
    if not secret:
        raise RuntimeError("No signing secret configured (set JWT_SECRET or GPT_API_KEY)")

    now = int(time.time())
    payload = {
        "sub": subject,
        "scope": scope,
        "type": ACCESS_TOKEN_TYPE,
        "iat": now,
        "exp": now + (expires_in if expires_in is not None else config.access_token_ttl_seconds),
    }
    header = _b64encode(json.dumps(_HEADER, separators=(",", ":")).encode())
    body = _b64encode(json.dumps(payload, separators=(",", ":")).encode())
    signing_input = f"{header}.{body}".encode()
    return f"{header}.{body}.{_sign(signing_input, secret)}"


def verify_access_token(token: str, *, secret: Optional[str] = None) -> Dict[str, Any]:
    """
    Verify signature, expiry and ``type`` claim; return the claims.

    Raises ``AuthenticationFailed`` on any problem.
    """
    secret = secret or config.signing_secret
    try:
        if not secret:
            raise ValueError("no signing secret configured")
        parts = token.split(".")
        if len(parts) != 3:
            raise ValueError("bad format")
        header_seg, body_seg, sig = parts
        header = json.loads(_b64decode(header_seg))
        if header.get("alg") != "HS256":
            raise ValueError("unsupported algorithm")
        expected_sig = _sign(f"{header_seg}.{body_seg}".encode(), secret)
        if not hmac.compare_digest(sig, expected_sig):
            raise ValueError("bad signature")
        claims = json.loads(_b64decode(body_seg))
        if claims.get("exp", 0) < time.time():
            raise ValueError("token expired")
        if claims.get("type") != ACCESS_TOKEN_TYPE:
            raise ValueError("not an access token")
        if not claims.get("sub"):
            raise ValueError("missing subject")
        return claims
    except (ValueError, TypeError, AttributeError) as exc:
        raise AuthenticationFailed(f"Invalid or expired token: {exc}")
