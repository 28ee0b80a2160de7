from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from crm_api.api.errors import register_error_handlers
from crm_api.api.routes import router as api_router
from crm_api.core.config import Settings, get_settings
from crm_api.core.database import create_engine_from_settings, create_session_factory
from crm_api.core.events import DomainEvent, event_bus
from crm_api.crm.service import build_entity_services
from crm_api.identity.service import AuthService, UserAdminService
from crm_api.logging import configure_logging
from crm_api.middleware.rate_limit import AuthRateLimitMiddleware
from crm_api.middleware.request_context import RequestContextMiddleware
from crm_api.middleware.request_logging import RequestLoggingMiddleware
from crm_api.otel import configure_tracing, instrument_app
from crm_api.platform.security.authenticator import RequestAuthenticator
from crm_api.platform.security.tokens import TokenService
from crm_api.platform.store import RecordStore


configure_logging()
logger = logging.getLogger("crm_api.lifecycle")


def _on_system_started(event: DomainEvent) -> None:
    logger.info("system_event", extra={"reason": event.name})


@asynccontextmanager
async def lifespan(app: FastAPI):
    event_bus.subscribe("system.started", _on_system_started)
    event_bus.publish("system.started", {"service": "api"})
    try:
        yield
    finally:
        event_bus.unsubscribe("system.started", _on_system_started)
        engine = getattr(app.state, "engine", None)
        if engine is not None:
            await engine.dispose()


def create_app(
    settings: Settings | None = None,
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> FastAPI:
    """Build the API with its record store and services wired in.

    Passing ``session_factory`` skips engine creation, which is how tests run
    the app against an in-memory database.
    """

    settings = settings or get_settings()
    settings.validate_secrets()

    engine = None
    if session_factory is None:
        engine = create_engine_from_settings(settings)
        session_factory = create_session_factory(engine)

    store = RecordStore(
        session_factory,
        retry_attempts=settings.store_retry_attempts,
        retry_wait_max_seconds=settings.store_retry_wait_max_seconds,
    )
    tokens = TokenService.from_settings(store, settings)

    app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.engine = engine
    app.state.store = store
    app.state.tokens = tokens
    app.state.authenticator = RequestAuthenticator(tokens, store)
    app.state.auth_service = AuthService(store, tokens, settings)
    app.state.user_admin_service = UserAdminService(store, tokens)
    app.state.crm_services = build_entity_services(store)

    # Last added runs first: the request context must wrap logging and limits.
    app.add_middleware(AuthRateLimitMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestContextMiddleware)
    app.include_router(api_router)
    register_error_handlers(app)

    configure_tracing(settings)
    instrument_app(app)
    return app


app = create_app()
