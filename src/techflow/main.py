"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. Lifespan manages startup/shutdown (Redis, the change-feed
observer, the subscription registry, the database engine).
Middleware, CORS, and routers all registered here.

Realtime wiring happens in create_app(), not in the lifespan, so the
registry and notifier exist even when the app is driven without lifespan
events (httpx ASGITransport in tests):
- sync mode: app.state.notifier is a ChangeNotifier over the registry
- feed mode: app.state.notifier is a NullNotifier and the lifespan starts
  a ContactFeedObserver that publishes through its own ChangeNotifier
"""

import asyncio
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from techflow import __version__
from techflow.api import api_router
from techflow.config import settings
from techflow.realtime.notifier import ChangeNotifier, NullNotifier
from techflow.realtime.registry import SubscriptionRegistry

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: FastAPI lifespan replaces on_event("startup") / on_event("shutdown").
    Anything before `yield` runs at startup, after `yield` runs at shutdown.
    """
    logger.info(
        "techflow.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
        realtime_mode=settings.realtime_mode,
    )

    from techflow.db.redis_client import close_redis, init_redis
    try:
        await init_redis()
        logger.info("techflow.redis_connected", url=settings.redis_url)
    except Exception as e:
        logger.warning("techflow.redis_unavailable", error=str(e))
        # Redis is optional — only rate limiting is skipped without it

    feed_observer = None
    feed_task = None
    if settings.realtime_mode == "feed":
        from techflow.realtime.feed import ContactFeedObserver
        feed_observer = ContactFeedObserver(
            ChangeNotifier(app.state.registry),
            settings.database_url,
            reconnect_delay=settings.feed_reconnect_seconds,
        )
        feed_task = asyncio.create_task(feed_observer.run())
        logger.info("techflow.feed_observer_started")

    yield

    # Shutdown
    logger.info("techflow.shutdown")

    if feed_observer is not None:
        await feed_observer.stop()
        feed_task.cancel()
        try:
            await feed_task
        except asyncio.CancelledError:
            pass

    app.state.registry.close()

    await close_redis()

    from techflow.db.engine import engine
    await engine.dispose()


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    app = FastAPI(
        title="TechFlow Contacts",
        description="Contact form, dashboard API, and realtime contact events",
        version=__version__,
        lifespan=lifespan,
    )

    registry = SubscriptionRegistry()
    app.state.registry = registry
    app.state.notifier = (
        ChangeNotifier(registry) if settings.realtime_mode == "sync" else NullNotifier()
    )

    # ── Middleware stack ──────────────────────────────────────
    # Note: Starlette middleware executes in reverse order of registration.
    # Request flow: RequestId → Security → RateLimit → CORS → handler

    from techflow.middleware.rate_limit import RateLimitMiddleware
    from techflow.middleware.request_id import RequestIdMiddleware
    from techflow.middleware.security import SecurityHeadersMiddleware

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(
        RateLimitMiddleware,
        window_seconds=settings.rate_limit_window_seconds,
        default_limit=settings.rate_limit_max_requests,
        auth_limit=settings.rate_limit_auth_max_requests,
        contact_limit=settings.rate_limit_contact_max_requests,
    )
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestIdMiddleware)

    # Mount API routes
    app.include_router(api_router)

    # Mount WebSocket route (realtime contact events)
    from techflow.realtime.websocket import router as ws_router
    app.include_router(ws_router)

    return app


# Default app instance (used by uvicorn: techflow.main:app)
app = create_app()
