"""Tests for the token refresh engine (ensure_fresh)."""

from datetime import timedelta
from unittest.mock import patch

import httpx
import pytest
from sqlalchemy import select

import connectors.token_manager as token_manager
from auth.tokens import utcnow
from connectors.token_manager import ensure_fresh, is_expiring_soon
from database.helpers import get_account
from database.models import Account
from utils.errors import ProviderError, ReconnectRequired, TokenRefreshFailed

from conftest import in_seconds


def _spy_writes():
    """Patch the store write used by the refresh engine, keeping its behaviour."""
    return patch.object(
        token_manager,
        "update_account_tokens",
        wraps=token_manager.update_account_tokens,
    )


class TestIsExpiringSoon:
    def test_no_expiry_never_expires(self):
        assert is_expiring_soon(None) is False

    def test_inside_margin(self):
        assert is_expiring_soon(utcnow() + timedelta(seconds=299)) is True

    def test_outside_margin(self):
        assert is_expiring_soon(utcnow() + timedelta(seconds=301)) is False

    def test_custom_margin(self):
        assert is_expiring_soon(utcnow() + timedelta(seconds=30), margin_seconds=10) is False


class TestEnsureFresh:
    @pytest.mark.asyncio
    async def test_null_expiry_never_refreshes(self, db, registry, make_account):
        account = await make_account(expires_at=None)
        with _spy_writes() as writes:
            result = await ensure_fresh(account, registry=registry, db_session=db)
        assert result is account
        registry.get("gmail").refresh_access_token.assert_not_awaited()
        writes.assert_not_called()

    @pytest.mark.asyncio
    async def test_far_expiry_is_untouched(self, db, registry, make_account):
        account = await make_account(expires_at=in_seconds(600))
        with _spy_writes() as writes:
            result = await ensure_fresh(account, registry=registry, db_session=db)
        assert result is account
        assert result.access_token == "access-1"
        registry.get("gmail").refresh_access_token.assert_not_awaited()
        writes.assert_not_called()

    @pytest.mark.asyncio
    async def test_expired_with_refresh_token_refreshes_once(self, db, registry, make_account):
        account = await make_account(expires_at=in_seconds(-60))
        connector = registry.get("gmail")

        before = utcnow()
        result = await ensure_fresh(account, registry=registry, db_session=db)

        connector.refresh_access_token.assert_awaited_once_with("refresh-1")
        assert result.access_token == "gmail-refreshed"
        # provider sent no new refresh token, so the old one is kept
        assert result.refresh_token == "refresh-1"
        assert before + timedelta(seconds=3590) <= result.expires_at <= utcnow() + timedelta(seconds=3600)

        stored = await get_account(db, account.id)
        assert stored.access_token == "gmail-refreshed"

    @pytest.mark.asyncio
    async def test_expiring_within_margin_refreshes(self, db, registry, make_account):
        account = await make_account(expires_at=in_seconds(120))
        result = await ensure_fresh(account, registry=registry, db_session=db)
        assert result.access_token == "gmail-refreshed"

    @pytest.mark.asyncio
    async def test_rotated_refresh_token_is_stored(self, db, registry, make_account):
        from connectors.base import TokenResponse

        account = await make_account(expires_at=in_seconds(-60))
        registry.get("gmail").refresh_access_token.return_value = TokenResponse(
            access_token="new-at", refresh_token="new-rt", expires_in=60
        )
        result = await ensure_fresh(account, registry=registry, db_session=db)
        assert result.refresh_token == "new-rt"

    @pytest.mark.asyncio
    async def test_expired_without_refresh_token_requires_reconnect(self, db, registry, make_account):
        account = await make_account(expires_at=in_seconds(-60), refresh_token=None)
        with _spy_writes() as writes:
            with pytest.raises(ReconnectRequired, match="Please reconnect your account"):
                await ensure_fresh(account, registry=registry, db_session=db)
        registry.get("gmail").refresh_access_token.assert_not_awaited()
        writes.assert_not_called()

    @pytest.mark.asyncio
    async def test_provider_refusal_leaves_row_untouched(self, db, registry, make_account):
        account = await make_account(expires_at=in_seconds(-60))
        registry.get("gmail").refresh_access_token.side_effect = ProviderError("gmail", "invalid_grant")

        with _spy_writes() as writes:
            with pytest.raises(TokenRefreshFailed, match="Failed to refresh token") as exc_info:
                await ensure_fresh(account, registry=registry, db_session=db)
        assert exc_info.value.status_code == 401
        writes.assert_not_called()

        stored = await get_account(db, account.id)
        assert stored.access_token == "access-1"
        assert stored.refresh_token == "refresh-1"

    @pytest.mark.asyncio
    async def test_transport_failure_maps_to_502(self, db, registry, make_account):
        account = await make_account(expires_at=in_seconds(-60))
        registry.get("gmail").refresh_access_token.side_effect = httpx.ReadTimeout("slow")

        with pytest.raises(TokenRefreshFailed) as exc_info:
            await ensure_fresh(account, registry=registry, db_session=db)
        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_tokens_are_encrypted_at_rest(self, db, registry, make_account):
        account = await make_account(expires_at=in_seconds(-60))
        await ensure_fresh(account, registry=registry, db_session=db)

        raw = (await db.execute(select(Account.access_token).where(Account.id == account.id))).scalar_one()
        assert raw != "gmail-refreshed"
        assert "gmail-refreshed" not in raw


class TestConcurrentRefresh:
    @pytest.mark.asyncio
    async def test_losing_writer_returns_stored_token(self, session_factory, registry, make_account):
        from connectors.base import TokenResponse

        account = await make_account(expires_at=in_seconds(-60))
        connector = registry.get("gmail")

        async with session_factory() as first, session_factory() as second:
            stale_view = await get_account(first, account.id)
            racing_view = await get_account(second, account.id)

            connector.refresh_access_token.return_value = TokenResponse(access_token="winner", expires_in=3600)
            won = await ensure_fresh(racing_view, registry=registry, db_session=second)
            assert won.access_token == "winner"

            connector.refresh_access_token.return_value = TokenResponse(access_token="loser", expires_in=3600)
            lost = await ensure_fresh(stale_view, registry=registry, db_session=first)

        assert lost.access_token == "winner"
        async with session_factory() as check:
            assert (await get_account(check, account.id)).access_token == "winner"
