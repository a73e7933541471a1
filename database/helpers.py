"""
Database helper functions — the account store and capability-token tables.

Every function takes the caller's ``AsyncSession`` and only flushes;
committing is left to the caller so a flow can decide where its write
becomes visible.  Provider tokens are encrypted/decrypted here and
nowhere else: everything above this module sees ``LinkedAccount``
objects with plaintext tokens.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from auth.tokens import as_utc, expiry_after, generate_secure_token, utcnow
from connectors.encryption import decrypt_token, encrypt_token
from database.models import (
    Account,
    ManagementToken,
    OAuthCode,
    OAuthToken,
    OnboardingToken,
    UserMapping,
)
from utils.errors import StoreError

logger = logging.getLogger(__name__)


def _to_uuid(value: str | uuid.UUID) -> Optional[uuid.UUID]:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


@asynccontextmanager
async def _store_op(message: str):
    """Turn driver errors into a ``StoreError`` carrying ``message``."""
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error("%s: %s", message, exc, exc_info=True)
        raise StoreError(message) from exc


# ═══════════════════════════════════════════════════════════════════════════════
# Accounts
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass
class LinkedAccount:
    """Decrypted view of an ``accounts`` row."""

    id: uuid.UUID
    chatgpt_user_id: str
    provider: str
    label: str
    enabled: bool
    access_token: Optional[str]
    refresh_token: Optional[str]
    expires_at: Optional[datetime]
    scopes: Optional[List[str]]
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    # raw column value as read, used as the optimistic-concurrency predicate
    stored_access_token: Optional[str] = field(default=None, repr=False)

    @classmethod
    def from_row(cls, row: Account) -> "LinkedAccount":
        return cls(
            id=row.id,
            chatgpt_user_id=row.chatgpt_user_id,
            provider=row.provider,
            label=row.label,
            enabled=bool(row.enabled),
            access_token=decrypt_token(row.access_token),
            refresh_token=decrypt_token(row.refresh_token),
            expires_at=as_utc(row.expires_at) if row.expires_at else None,
            scopes=row.scopes,
            metadata=row.metadata_ or {},
            created_at=row.created_at,
            updated_at=row.updated_at,
            stored_access_token=row.access_token,
        )

    def to_public(self) -> Dict[str, Any]:
        """Listing shape — never includes secrets."""
        return {
            "id": str(self.id),
            "provider": self.provider,
            "label": self.label,
            "enabled": self.enabled,
            "metadata": self.metadata,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


async def get_account(session: AsyncSession, account_id: str | uuid.UUID) -> Optional[LinkedAccount]:
    account_uuid = _to_uuid(account_id)
    if account_uuid is None:
        return None
    async with _store_op("Failed to fetch account"):
        row = await session.get(Account, account_uuid, populate_existing=True)
    return LinkedAccount.from_row(row) if row else None


async def find_account(
    session: AsyncSession,
    user_id: str,
    provider: str,
    label: str,
) -> Optional[LinkedAccount]:
    """Look up the unique account for a (user, provider, label) triple."""
    async with _store_op("Failed to fetch account"):
        result = await session.execute(
            select(Account).where(
                Account.chatgpt_user_id == user_id,
                Account.provider == provider,
                Account.label == label,
            )
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
    return LinkedAccount.from_row(row) if row else None


async def list_accounts(
    session: AsyncSession,
    user_id: str,
    *,
    provider: Optional[str] = None,
    enabled: Optional[bool] = None,
) -> List[LinkedAccount]:
    """All accounts of a user, newest first, optionally filtered."""
    stmt = select(Account).where(Account.chatgpt_user_id == user_id)
    if provider is not None:
        stmt = stmt.where(Account.provider == provider)
    if enabled is not None:
        stmt = stmt.where(Account.enabled == enabled)
    stmt = stmt.order_by(Account.created_at.desc()).execution_options(populate_existing=True)
    async with _store_op("Failed to fetch accounts"):
        result = await session.execute(stmt)
        rows = result.scalars().all()
    return [LinkedAccount.from_row(r) for r in rows]


async def upsert_account(
    session: AsyncSession,
    *,
    user_id: str,
    provider: str,
    label: str,
    access_token: str,
    refresh_token: Optional[str],
    expires_at: Optional[datetime],
    scopes: Optional[List[str]],
    metadata: Dict[str, Any],
) -> tuple[LinkedAccount, bool]:
    """
    Update the (user, provider, label) account in place, or insert it.

    Returns ``(account, created)``.  Reconnecting re-enables the account.
    """
    async with _store_op("Failed to fetch account"):
        result = await session.execute(
            select(Account).where(
                Account.chatgpt_user_id == user_id,
                Account.provider == provider,
                Account.label == label,
            )
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()

    values = dict(
        access_token=encrypt_token(access_token),
        refresh_token=encrypt_token(refresh_token),
        expires_at=expires_at,
        scopes=scopes,
        metadata_=metadata,
        enabled=True,
    )

    if row is not None:
        async with _store_op("Failed to update account"):
            for key, value in values.items():
                setattr(row, key, value)
            row.updated_at = utcnow()
            await session.flush()
        logger.info("Updated %s account %s for user %s", provider, row.id, user_id)
        return LinkedAccount.from_row(row), False

    row = Account(
        id=uuid.uuid4(),
        chatgpt_user_id=user_id,
        provider=provider,
        label=label,
        **values,
    )
    async with _store_op("Failed to create account"):
        session.add(row)
        await session.flush()
    logger.info("Created %s account %s for user %s", provider, row.id, user_id)
    return LinkedAccount.from_row(row), True


async def update_account_tokens(
    session: AsyncSession,
    account: LinkedAccount,
    *,
    access_token: str,
    refresh_token: Optional[str],
    expires_at: Optional[datetime],
) -> bool:
    """
    Persist refreshed tokens if the row still holds the access token that
    ``account`` was read with.  Returns False when another writer got
    there first (nothing is written in that case).
    """
    if account.stored_access_token is None:
        unchanged = Account.access_token.is_(None)
    else:
        unchanged = Account.access_token == account.stored_access_token

    stmt = (
        update(Account)
        .where(Account.id == account.id, unchanged)
        .values(
            access_token=encrypt_token(access_token),
            refresh_token=encrypt_token(refresh_token),
            expires_at=expires_at,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    async with _store_op("Failed to update account with new tokens"):
        result = await session.execute(stmt)
    return result.rowcount == 1


async def set_account_enabled(session: AsyncSession, account_id: uuid.UUID, enabled: bool) -> None:
    async with _store_op("Failed to toggle account"):
        await session.execute(
            update(Account)
            .where(Account.id == account_id)
            .values(enabled=enabled, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )


async def delete_account(session: AsyncSession, account_id: uuid.UUID) -> None:
    async with _store_op("Failed to delete account"):
        await session.execute(delete(Account).where(Account.id == account_id))


# ═══════════════════════════════════════════════════════════════════════════════
# Onboarding / management tokens
# ═══════════════════════════════════════════════════════════════════════════════


async def create_onboarding_token(
    session: AsyncSession,
    *,
    user_id: str,
    provider: str,
    label: str,
    ttl_seconds: int,
) -> OnboardingToken:
    row = OnboardingToken(
        token=generate_secure_token(),
        chatgpt_user_id=user_id,
        provider=provider,
        label=label,
        expires_at=expiry_after(ttl_seconds),
    )
    async with _store_op("Failed to create auth link"):
        session.add(row)
        await session.flush()
    return row


async def get_onboarding_token(session: AsyncSession, token: str) -> Optional[OnboardingToken]:
    async with _store_op("Failed to fetch onboarding token"):
        return await session.get(OnboardingToken, token)


async def delete_onboarding_token(session: AsyncSession, token: str) -> None:
    async with _store_op("Failed to delete onboarding token"):
        await session.execute(delete(OnboardingToken).where(OnboardingToken.token == token))


async def create_management_token(
    session: AsyncSession,
    *,
    user_id: str,
    ttl_seconds: int,
) -> ManagementToken:
    row = ManagementToken(
        token=generate_secure_token(),
        chatgpt_user_id=user_id,
        expires_at=expiry_after(ttl_seconds),
    )
    async with _store_op("Failed to create management link"):
        session.add(row)
        await session.flush()
    return row


async def get_management_token(session: AsyncSession, token: str) -> Optional[ManagementToken]:
    async with _store_op("Failed to fetch management token"):
        return await session.get(ManagementToken, token)


async def delete_management_token(session: AsyncSession, token: str) -> None:
    async with _store_op("Failed to delete management token"):
        await session.execute(delete(ManagementToken).where(ManagementToken.token == token))


# ═══════════════════════════════════════════════════════════════════════════════
# Internal OAuth issuer
# ═══════════════════════════════════════════════════════════════════════════════


async def resolve_permanent_user_id(
    session: AsyncSession,
    ephemeral_user_id: str,
    conversation_id: Optional[str] = None,
) -> str:
    """Return the permanent id mapped to ``ephemeral_user_id``, minting one if new."""
    async with _store_op("Failed to resolve user mapping"):
        mapping = await session.get(UserMapping, ephemeral_user_id)
        if mapping is not None:
            return mapping.permanent_user_id

        permanent_user_id = f"user_{generate_secure_token()}"
        session.add(
            UserMapping(
                ephemeral_user_id=ephemeral_user_id,
                permanent_user_id=permanent_user_id,
                conversation_id=conversation_id,
            )
        )
        await session.flush()
    logger.info("Minted permanent user id for new ephemeral user")
    return permanent_user_id


async def create_oauth_code(
    session: AsyncSession,
    *,
    permanent_user_id: str,
    client_id: str,
    redirect_uri: str,
    scope: str,
    ttl_seconds: int,
) -> OAuthCode:
    row = OAuthCode(
        code=generate_secure_token(),
        permanent_user_id=permanent_user_id,
        client_id=client_id,
        redirect_uri=redirect_uri,
        scope=scope,
        expires_at=expiry_after(ttl_seconds),
    )
    async with _store_op("Failed to store authorization code"):
        session.add(row)
        await session.flush()
    return row


async def get_oauth_code(
    session: AsyncSession,
    code: str,
    client_id: str,
    redirect_uri: str,
) -> Optional[OAuthCode]:
    async with _store_op("Failed to fetch authorization code"):
        result = await session.execute(
            select(OAuthCode).where(
                OAuthCode.code == code,
                OAuthCode.client_id == client_id,
                OAuthCode.redirect_uri == redirect_uri,
            )
        )
        return result.scalar_one_or_none()


async def delete_oauth_code(
    session: AsyncSession,
    code: str,
    client_id: Optional[str] = None,
    redirect_uri: Optional[str] = None,
) -> bool:
    """Returns True when this call removed the row."""
    stmt = delete(OAuthCode).where(OAuthCode.code == code)
    if client_id is not None:
        stmt = stmt.where(OAuthCode.client_id == client_id)
    if redirect_uri is not None:
        stmt = stmt.where(OAuthCode.redirect_uri == redirect_uri)
    async with _store_op("Failed to delete authorization code"):
        result = await session.execute(stmt)
    return result.rowcount == 1


async def create_oauth_refresh_token(
    session: AsyncSession,
    *,
    permanent_user_id: str,
    client_id: str,
    scope: str,
    ttl_seconds: int,
) -> OAuthToken:
    row = OAuthToken(
        refresh_token=generate_secure_token(),
        permanent_user_id=permanent_user_id,
        client_id=client_id,
        scope=scope,
        expires_at=expiry_after(ttl_seconds),
    )
    async with _store_op("Failed to store refresh token"):
        session.add(row)
        await session.flush()
    return row


async def get_oauth_refresh_token(
    session: AsyncSession,
    refresh_token: str,
    client_id: str,
) -> Optional[OAuthToken]:
    async with _store_op("Failed to fetch refresh token"):
        result = await session.execute(
            select(OAuthToken).where(
                OAuthToken.refresh_token == refresh_token,
                OAuthToken.client_id == client_id,
            )
        )
        return result.scalar_one_or_none()


async def delete_oauth_refresh_token(
    session: AsyncSession,
    refresh_token: str,
    client_id: Optional[str] = None,
) -> bool:
    stmt = delete(OAuthToken).where(OAuthToken.refresh_token == refresh_token)
    if client_id is not None:
        stmt = stmt.where(OAuthToken.client_id == client_id)
    async with _store_op("Failed to delete refresh token"):
        result = await session.execute(stmt)
    return result.rowcount == 1


# ═══════════════════════════════════════════════════════════════════════════════
# Housekeeping
# ═══════════════════════════════════════════════════════════════════════════════


async def purge_expired_tokens(session: AsyncSession) -> Dict[str, int]:
    """Delete expired capability rows.  Returns per-table delete counts."""
    now = utcnow()
    counts: Dict[str, int] = {}
    async with _store_op("Failed to purge expired tokens"):
        for model in (OnboardingToken, ManagementToken, OAuthCode, OAuthToken):
            result = await session.execute(delete(model).where(model.expires_at < now))
            counts[model.__tablename__] = result.rowcount or 0
    return counts
