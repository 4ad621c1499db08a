"""FastAPI application wiring for the identity service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from psycopg_pool import ConnectionPool

from .api.routes import router as account_router
from .config import Settings, get_settings
from .domain.ports import CredentialStore, TokenProvider
from .domain.service import AccountService
from .memory_repository import InMemoryCredentialStore
from .notifications.smtp import SmtpDispatcher
from .repository import PostgresCredentialStore
from .security.token_codec import TokenCodec
from .security.token_providers import RedisTokenProvider, SignedTokenProvider
from .security.tokens import SessionIssuer

logger = logging.getLogger(__name__)

settings = get_settings()


def _build_token_provider(settings: Settings) -> TokenProvider:
    """Instantiate the configured token provider, preferring Redis when requested and reachable."""
    if settings.token_provider_backend == "redis" and settings.redis_url:
        try:
            import redis

            client = redis.from_url(settings.redis_url)
            # ensure connectivity early to fail fast and fall back
            client.ping()
            logger.info("token provider configured for redis backend at %s", settings.redis_url)
            return RedisTokenProvider(client, settings)
        except Exception as exc:  # pragma: no cover - depends on a live server
            logger.warning("redis token provider unavailable, falling back to signed tokens: %s", exc)

    logger.info("token provider using signed tokens")
    return SignedTokenProvider(settings)


def build_service(settings: Settings, store: CredentialStore) -> tuple[AccountService, SessionIssuer]:
    """Assemble the account service and its session issuer around ``store``."""
    sessions = SessionIssuer(settings)
    service = AccountService(
        store=store,
        codec=TokenCodec(_build_token_provider(settings)),
        sessions=sessions,
        dispatcher=SmtpDispatcher(settings),
        settings=settings,
    )
    return service, sessions


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialise shared resources (Postgres pool, services) for the app lifecycle."""
    pool: ConnectionPool | None = None
    store: CredentialStore
    if settings.store_backend == "memory":
        logger.warning("using in-memory credential store; accounts are lost on restart")
        store = InMemoryCredentialStore()
    else:
        pool = ConnectionPool(settings.database_url, open=False)
        pool.open()
        store = PostgresCredentialStore(pool)
    app.state.pool = pool
    app.state.account_service, app.state.session_issuer = build_service(settings, store)
    try:
        yield
    finally:
        if pool is not None:
            pool.close()


app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.client_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=600,
)


@app.get("/healthz", tags=["health"])
def healthz() -> dict[str, str]:
    """Return a minimal readiness indicator used by orchestration systems."""
    return {"status": "ok"}


app.include_router(account_router)


# Prometheus metrics endpoint for Prometheus scrapes
try:
    from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

    @app.get("/metrics")
    def metrics() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
except Exception:  # pragma: no cover - metrics are optional in dev
    pass
