"""
SQLAlchemy ORM models for linked accounts and the capability tokens
that gate linking, management and the internal OAuth issuer.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Index,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class Account(Base):
    """One linked third-party credential for (user, provider, label)."""

    __tablename__ = "accounts"
    __table_args__ = (
        UniqueConstraint("chatgpt_user_id", "provider", "label", name="uq_accounts_user_provider_label"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    chatgpt_user_id = Column(String(128), nullable=False, index=True)
    provider = Column(String(32), nullable=False)
    label = Column(String(128), nullable=False)
    enabled = Column(Boolean, nullable=False, default=True)
    access_token = Column(Text)
    refresh_token = Column(Text)
    expires_at = Column(DateTime(timezone=True))
    scopes = Column(JSON)
    metadata_ = Column("metadata", JSON, default=dict)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class OnboardingToken(Base):
    """Single-use capability to link one account for a user."""

    __tablename__ = "onboarding_tokens"

    token = Column(String(128), primary_key=True)
    chatgpt_user_id = Column(String(128), nullable=False)
    provider = Column(String(32), nullable=False)
    label = Column(String(128), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class ManagementToken(Base):
    """Reusable (until expiry) capability to manage a user's accounts."""

    __tablename__ = "management_tokens"

    token = Column(String(128), primary_key=True)
    chatgpt_user_id = Column(String(128), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class OAuthCode(Base):
    __tablename__ = "oauth_codes"

    code = Column(String(128), primary_key=True)
    permanent_user_id = Column(String(128), nullable=False)
    client_id = Column(String(256), nullable=False)
    redirect_uri = Column(Text, nullable=False)
    scope = Column(Text, nullable=False, default="")
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class OAuthToken(Base):
    __tablename__ = "oauth_tokens"

    refresh_token = Column(String(128), primary_key=True)
    permanent_user_id = Column(String(128), nullable=False)
    client_id = Column(String(256), nullable=False)
    scope = Column(Text, nullable=False, default="")
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class UserMapping(Base):
    """Ephemeral per-conversation user id → stable permanent user id."""

    __tablename__ = "user_mappings"

    ephemeral_user_id = Column(String(256), primary_key=True)
    permanent_user_id = Column(String(128), nullable=False)
    conversation_id = Column(String(256))
    created_at = Column(DateTime(timezone=True), default=_utcnow)


Index("ix_oauth_tokens_user", OAuthToken.permanent_user_id)
