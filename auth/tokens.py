"""
Secure token generation and expiry helpers.

Every capability this service hands out (onboarding links, management
links, internal authorization codes and refresh tokens) is an opaque
string produced here.
"""

from __future__ import annotations

import hmac
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional


def generate_secure_token(length: int = 32) -> str:
    """
    Return a URL-safe token built from ``length`` random bytes.

    Uses the OS CSPRNG via :mod:`secrets`; the output alphabet is
    ``[A-Za-z0-9_-]`` so it never needs percent-encoding.
    """
    return secrets.token_urlsafe(length)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (some drivers drop the tzinfo)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def expiry_after(seconds: int) -> datetime:
    return utcnow() + timedelta(seconds=seconds)


def expiry_from_lifetime(expires_in: Optional[int]) -> Optional[datetime]:
    """``now + expires_in`` seconds, or None for tokens with no lifetime."""
    if expires_in is None:
        return None
    return utcnow() + timedelta(seconds=int(expires_in))


def is_expired(expires_at: datetime) -> bool:
    return as_utc(expires_at) < utcnow()


def constant_time_compare(a: str, b: str) -> bool:
    """
    Compare two secrets without leaking where they differ.

    Inputs of different length are rejected straight away; equal-length
    inputs are compared in full by :func:`hmac.compare_digest`.
    """
    a_bytes = a.encode("utf-8")
    b_bytes = b.encode("utf-8")
    if len(a_bytes) != len(b_bytes):
        return False
    return hmac.compare_digest(a_bytes, b_bytes)
