from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Callable, Iterable, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from admission.app.api.admin import router as admin_router
from admission.app.api.metrics import MetricsCollector, MetricsMiddleware, router as metrics_router
from admission.app.core.config import Settings, settings as default_settings
from admission.app.core.logging import get_logger, setup_logging
from admission.app.middleware.rate_limit import RateLimitMiddleware, install_rate_limiting
from admission.app.middleware.request_id import RequestIdMiddleware, get_request_id
from admission.app.services.counter_store import CounterStore
from admission.app.services.rate_limit import (
    LimiterRegistry,
    RateLimitConfig,
    RateLimitEngine,
    build_presets,
)


def create_app(
    config: Optional[Settings] = None,
    store: Optional[CounterStore] = None,
    limits: Optional[Iterable[RateLimitConfig]] = None,
    clock: Optional[Callable[[], int]] = None,
    global_preset: Optional[str] = "api",
    configure_logging: bool = True,
) -> FastAPI:
    """Create and configure the FastAPI application.

    This is the composition root: the store client, decision engine, limiter
    registry and metrics collector are built here once and attached to
    ``app.state``.

    Args:
        config: Settings (defaults to the environment)
        store: Counter store client (defaults to one built from settings)
        limits: Rate limit configs (defaults to the named presets)
        clock: Epoch-millisecond clock for the engine
        global_preset: Preset applied to every non-exempt path, None to disable
        configure_logging: Apply the logging dictConfig

    Returns:
        Configured FastAPI application instance

    Raises:
        InvalidConfiguration: If any rate limit config is unusable
    """
    config = config or default_settings
    if configure_logging:
        setup_logging(config)
    logger = get_logger(__name__)

    # Fail fast on bad limits before anything touches the network
    limit_configs = list(limits) if limits is not None else list(build_presets(config).values())
    store = store or CounterStore.from_settings(config)
    engine = RateLimitEngine(store, clock=clock)
    registry = LimiterRegistry(engine, limit_configs)
    metrics = MetricsCollector()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Check the store on startup and release its pool on shutdown."""
        if await store.ping():
            logger.info(
                "Application startup complete",
                extra={"presets": registry.names(), "store_prefix": store.key_prefix},
            )
        else:
            # Limiting fails open until the store comes back
            logger.warning("Rate limit store unreachable at startup; requests will fail open")
        yield
        await store.close()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="Admission Control",
        description="Request admission control with distributed rate limiting",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = config
    app.state.store = store
    app.state.metrics = metrics
    install_rate_limiting(app, registry, metrics)

    # Add middleware (order matters: last added = first executed)
    if global_preset is not None:
        registry.get(global_preset)
        app.add_middleware(RateLimitMiddleware, preset=global_preset)
    app.add_middleware(MetricsMiddleware, collector=metrics)
    app.add_middleware(RequestIdMiddleware)
    # CORS outermost so 429s carry CORS headers too
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
        allow_headers=["*"],
        expose_headers=[
            "X-Request-ID",
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
            "X-RateLimit-Window",
            "Retry-After",
        ],
        max_age=600,
    )

    app.include_router(admin_router)
    app.include_router(metrics_router)

    @app.get("/health")
    async def health() -> dict[str, Any]:
        """Health check with shared store status."""
        if await store.ping():
            return {"status": "ok", "components": {"store": {"status": "ok"}}}
        # Degraded, not down: limiting fails open without the store
        return {
            "status": "degraded",
            "components": {"store": {"status": "error", "fail_open": True}},
        }

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled exceptions.

        Never returns a traceback to the client; debug mode adds the
        exception message and type.
        """
        request_id = get_request_id(request)
        logger.exception(
            f"Unhandled exception [request_id={request_id}]",
            extra={
                "request_id": request_id,
                "exception_type": type(exc).__name__,
            },
        )

        content = {
            "error": "internal_error",
            "message": "Internal server error",
            "request_id": request_id,
        }
        if config.debug:
            content["message"] = str(exc)
            content["exception_type"] = type(exc).__name__
        return JSONResponse(status_code=500, content=content)

    return app


# Create the application instance
app = create_app()
