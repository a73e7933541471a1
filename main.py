"""
OAuth broker — application entry point.
"""

from __future__ import annotations

import logging
import sys

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from actions.registry import build_action_registry
from api.auth_routes import router as auth_router
from api.gpt_routes import router as gpt_router
from api.integrations import router as integrations_router
from api.middleware import register_exception_handlers, register_middleware
from api.oauth import router as oauth_router
from api.providers import router as providers_router
from config.settings import config
from connectors.encryption import is_encryption_enabled
from connectors.registry import build_registry
from database.helpers import purge_expired_tokens
from database.session import async_session_factory, create_tables

logging.basicConfig(
    level=logging.DEBUG if config.debug else logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
    stream=sys.stdout,
)
for _noisy in ("httpcore", "httpx", "urllib3", "googleapiclient.discovery_cache"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(
        title="OAuth Broker",
        version="1.0.0",
        description="Multi-tenant OAuth broker and provider action gateway.",
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_middleware(app)
    register_exception_handlers(app)

    # Routes
    app.include_router(auth_router)
    app.include_router(gpt_router)
    app.include_router(integrations_router)
    app.include_router(oauth_router)
    app.include_router(providers_router)

    app.state.registry = build_registry(config)
    app.state.actions = build_action_registry()

    @app.on_event("startup")
    async def on_startup():
        logger.info("Configured providers: %s", app.state.registry.list_configured())

        await create_tables()

        # Lazy reaping is the main path; this clears what nobody came back for
        async with async_session_factory() as session:
            purged = await purge_expired_tokens(session)
            await session.commit()
        if any(purged.values()):
            logger.info("Purged expired tokens: %s", purged)

        # warns when TOKEN_ENCRYPTION_KEY is missing
        is_encryption_enabled()
        if not config.signing_secret:
            logger.warning("Neither JWT_SECRET nor GPT_API_KEY is set; /oauth/token cannot issue tokens")

        logger.info("Application ready to accept requests.")

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=config.host,
        port=config.port,
        reload=config.debug,
        log_level="debug" if config.debug else "info",
    )
