"""Shared pytest fixtures: a throwaway SQLite store, fake connectors and an app client."""

import os

# Settings are read at import time, so the environment goes first
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("APP_URL", "http://testserver")
os.environ.setdefault("GPT_API_KEY", "test-api-key")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("TOKEN_ENCRYPTION_KEY", "A" * 43 + "=")
for _provider in ("GOOGLE", "SLACK", "LINEAR", "ZOHO"):
    os.environ.setdefault(f"{_provider}_CLIENT_ID", f"{_provider.lower()}-client-id")
    os.environ.setdefault(f"{_provider}_CLIENT_SECRET", f"{_provider.lower()}-client-secret")

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from unittest.mock import AsyncMock

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from actions.registry import ActionRegistry
from config.settings import config
from connectors.base import BaseConnector, TokenResponse
from connectors.registry import ConnectorRegistry
from database.helpers import upsert_account
from database.models import Base


class FakeConnector(BaseConnector):
    """Connector whose provider calls are AsyncMocks."""

    def __init__(self, provider_name: str = "gmail", *, user_info: Optional[Dict[str, Any]] = None):
        super().__init__(
            f"{provider_name}-client-id",
            f"{provider_name}-client-secret",
            config.redirect_uri(provider_name),
        )
        self.provider_name = provider_name
        self.display_name = provider_name.title()
        self.exchange_code = AsyncMock(
            return_value=TokenResponse(
                access_token=f"{provider_name}-access",
                refresh_token=f"{provider_name}-refresh",
                expires_in=3600,
                scope="read write",
            )
        )
        self.refresh_access_token = AsyncMock(
            return_value=TokenResponse(access_token=f"{provider_name}-refreshed", expires_in=3600)
        )
        self.revoke_token = AsyncMock(return_value=True)
        self.fetch_user_info = AsyncMock(
            return_value=user_info if user_info is not None else {"email": "user@example.com"}
        )

    def get_auth_url(self, state: str) -> str:
        return f"https://{self.provider_name}.example/authorize?state={state}"

    async def exchange_code(self, code: str) -> TokenResponse:  # replaced per instance
        raise NotImplementedError

    async def refresh_access_token(self, refresh_token: str) -> TokenResponse:  # replaced per instance
        raise NotImplementedError


def in_seconds(seconds: int) -> datetime:
    return datetime.now(timezone.utc) + timedelta(seconds=seconds)


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'broker.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def registry():
    return ConnectorRegistry([FakeConnector(name) for name in ("gmail", "slack", "linear", "zoho")])


@pytest.fixture
def actions():
    return ActionRegistry()


@pytest.fixture
def make_account(db):
    """Insert an account row and return its decrypted view."""

    async def _make(
        user_id: str = "user-1",
        provider: str = "gmail",
        label: str = "work",
        *,
        access_token: str = "access-1",
        refresh_token: Optional[str] = "refresh-1",
        expires_at: Optional[datetime] = None,
        enabled: bool = True,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        account, _ = await upsert_account(
            db,
            user_id=user_id,
            provider=provider,
            label=label,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
            scopes=None,
            metadata=metadata if metadata is not None else {"email": f"{label}@example.com"},
        )
        if not enabled:
            from database.helpers import set_account_enabled

            await set_account_enabled(db, account.id, False)
            account.enabled = False
        await db.commit()
        return account

    return _make


@pytest_asyncio.fixture
async def client(session_factory, registry, actions):
    """HTTP client against the app with the test store and registries plugged in."""
    from auth.dependencies import get_session_factory
    from database.session import get_db_session
    from main import create_app

    app = create_app()
    app.state.registry = registry
    app.state.actions = actions

    async def _test_db_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db_session] = _test_db_session
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http:
        yield http


@pytest.fixture
def api_headers():
    def _headers(user_id: str = "user-1") -> Dict[str, str]:
        return {"x-api-key": "test-api-key", "x-gpt-user-id": user_id}

    return _headers
