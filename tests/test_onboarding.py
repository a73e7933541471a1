"""Tests for onboarding links, authorization start and the OAuth callback."""

from datetime import timedelta
from unittest.mock import AsyncMock
from urllib.parse import parse_qs, urlsplit

import pytest
from sqlalchemy import func, select, update

from auth.tokens import utcnow
from connectors.onboarding import complete_callback, create_auth_link, start_authorization
from database.helpers import get_onboarding_token, list_accounts
from database.models import Account, OnboardingToken
from utils.errors import NotFound, ProviderError, TokenExpired, ValidationFailed


def _token_from(url: str) -> str:
    return parse_qs(urlsplit(url).query)["token"][0]


async def _expire(db, token: str) -> None:
    await db.execute(
        update(OnboardingToken)
        .where(OnboardingToken.token == token)
        .values(expires_at=utcnow() - timedelta(seconds=1))
    )
    await db.commit()


async def _account_count(db) -> int:
    return (await db.execute(select(func.count()).select_from(Account))).scalar_one()


class TestCreateAuthLink:
    @pytest.mark.asyncio
    async def test_link_points_at_start_with_token(self, db, registry):
        url = await create_auth_link(db, registry, user_id="u1", provider="gmail", label="work")
        assert url.startswith("http://testserver/auth/start?token=")

        row = await get_onboarding_token(db, _token_from(url))
        assert (row.chatgpt_user_id, row.provider, row.label) == ("u1", "gmail", "work")
        remaining = row.expires_at.replace(tzinfo=None) - utcnow().replace(tzinfo=None)
        assert timedelta(seconds=590) < remaining <= timedelta(seconds=600)

    @pytest.mark.asyncio
    async def test_unknown_provider_rejected(self, db, registry):
        with pytest.raises(ValidationFailed, match="Invalid provider: mercury"):
            await create_auth_link(db, registry, user_id="u1", provider="mercury", label="x")


class TestStartAuthorization:
    @pytest.mark.asyncio
    async def test_returns_provider_url_with_token_as_state(self, db, registry):
        token = _token_from(await create_auth_link(db, registry, user_id="u1", provider="slack", label="team"))
        url = await start_authorization(db, registry, token)
        assert url == f"https://slack.example/authorize?state={token}"

    @pytest.mark.asyncio
    async def test_unknown_token(self, db, registry):
        with pytest.raises(NotFound, match="Invalid or expired token"):
            await start_authorization(db, registry, "nope")

    @pytest.mark.asyncio
    async def test_expired_token_is_reaped(self, db, registry):
        token = _token_from(await create_auth_link(db, registry, user_id="u1", provider="gmail", label="w"))
        await _expire(db, token)

        with pytest.raises(TokenExpired, match="Token has expired"):
            await start_authorization(db, registry, token)
        assert await get_onboarding_token(db, token) is None

        # reaped: the next read is "invalid", not "expired"
        with pytest.raises(NotFound):
            await start_authorization(db, registry, token)


class TestCompleteCallback:
    @pytest.mark.asyncio
    async def test_creates_account_and_consumes_token(self, db, registry):
        token = _token_from(await create_auth_link(db, registry, user_id="u1", provider="gmail", label="work"))

        result = await complete_callback(db, registry, provider="gmail", code="C1", state=token)

        assert result.created is True
        assert result.warnings == []
        registry.get("gmail").exchange_code.assert_awaited_once_with("C1")
        assert result.account.access_token == "gmail-access"
        assert result.account.refresh_token == "gmail-refresh"
        assert result.account.metadata == {"email": "user@example.com"}
        assert result.account.scopes == ["read", "write"]
        assert result.account.expires_at is not None
        assert await get_onboarding_token(db, token) is None
        assert await _account_count(db) == 1

    @pytest.mark.asyncio
    async def test_consumed_token_cannot_be_reused(self, db, registry):
        token = _token_from(await create_auth_link(db, registry, user_id="u1", provider="gmail", label="work"))
        await complete_callback(db, registry, provider="gmail", code="C1", state=token)

        with pytest.raises(NotFound, match="Invalid or expired token"):
            await complete_callback(db, registry, provider="gmail", code="C2", state=token)
        assert await _account_count(db) == 1

    @pytest.mark.asyncio
    async def test_reconnect_updates_same_row(self, db, registry):
        first_token = _token_from(await create_auth_link(db, registry, user_id="u1", provider="gmail", label="work"))
        first = await complete_callback(db, registry, provider="gmail", code="C1", state=first_token)

        registry.get("gmail").exchange_code.return_value = registry.get("gmail").exchange_code.return_value.model_copy(
            update={"access_token": "second-access"}
        )
        second_token = _token_from(await create_auth_link(db, registry, user_id="u1", provider="gmail", label="work"))
        second = await complete_callback(db, registry, provider="gmail", code="C2", state=second_token)

        assert second.created is False
        assert second.account.id == first.account.id
        assert second.account.access_token == "second-access"
        assert await _account_count(db) == 1

    @pytest.mark.asyncio
    async def test_reconnect_re_enables_account(self, db, registry, make_account):
        existing = await make_account(user_id="u1", label="work", enabled=False)
        token = _token_from(await create_auth_link(db, registry, user_id="u1", provider="gmail", label="work"))
        result = await complete_callback(db, registry, provider="gmail", code="C", state=token)
        assert result.account.id == existing.id
        assert result.account.enabled is True

    @pytest.mark.asyncio
    async def test_code_is_exchanged_before_token_validation(self, db, registry):
        with pytest.raises(NotFound):
            await complete_callback(db, registry, provider="gmail", code="C1", state="unknown-state")
        registry.get("gmail").exchange_code.assert_awaited_once_with("C1")

    @pytest.mark.asyncio
    async def test_exchange_failure_keeps_onboarding_token(self, db, registry):
        token = _token_from(await create_auth_link(db, registry, user_id="u1", provider="gmail", label="work"))
        registry.get("gmail").exchange_code.side_effect = ProviderError("gmail", "invalid_grant")

        with pytest.raises(ProviderError, match="Failed to exchange authorization code"):
            await complete_callback(db, registry, provider="gmail", code="C1", state=token)
        assert await get_onboarding_token(db, token) is not None
        assert await _account_count(db) == 0

    @pytest.mark.asyncio
    async def test_provider_mismatch(self, db, registry):
        token = _token_from(await create_auth_link(db, registry, user_id="u1", provider="gmail", label="work"))
        with pytest.raises(ValidationFailed, match="Provider mismatch"):
            await complete_callback(db, registry, provider="slack", code="C1", state=token)
        assert await _account_count(db) == 0

    @pytest.mark.asyncio
    async def test_expired_token_is_reaped(self, db, registry):
        token = _token_from(await create_auth_link(db, registry, user_id="u1", provider="gmail", label="work"))
        await _expire(db, token)

        with pytest.raises(TokenExpired):
            await complete_callback(db, registry, provider="gmail", code="C1", state=token)
        assert await get_onboarding_token(db, token) is None
        assert await _account_count(db) == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "failure",
        [ProviderError("gmail", "boom"), KeyError("boom"), AttributeError("boom"), TypeError("boom")],
    )
    async def test_user_info_failure_is_a_warning(self, db, registry, failure):
        registry.get("gmail").fetch_user_info = AsyncMock(side_effect=failure)
        token = _token_from(await create_auth_link(db, registry, user_id="u1", provider="gmail", label="work"))

        result = await complete_callback(db, registry, provider="gmail", code="C1", state=token)

        assert result.created is True
        assert result.account.metadata == {}
        assert len(result.warnings) == 1 and "boom" in result.warnings[0]

    @pytest.mark.asyncio
    async def test_unknown_provider(self, db, registry):
        with pytest.raises(NotFound, match="Invalid provider"):
            await complete_callback(db, registry, provider="mercury", code="C1", state="s")

    @pytest.mark.asyncio
    async def test_labels_are_independent(self, db, registry):
        for label in ("work", "personal"):
            token = _token_from(await create_auth_link(db, registry, user_id="u1", provider="gmail", label=label))
            await complete_callback(db, registry, provider="gmail", code=f"C-{label}", state=token)

        accounts = await list_accounts(db, "u1")
        assert [a.label for a in accounts] == ["personal", "work"]
