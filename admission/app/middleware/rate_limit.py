"""Rate limit interception for the HTTP layer.

Turns a rate limit decision into PASS or BLOCK for one request:

1. derive the identifier with the preset's key function;
2. ask the decision engine;
3. attach X-RateLimit-* metadata;
4. BLOCK with the preset's callback response or a standard 429, or PASS.

A store outage never reaches the client: the request passes, a warning is
logged, and no rate limit metadata is attached.

Two surfaces share one RateLimitInterceptor:

- ``RateLimit(preset)``: per-route FastAPI dependency::

      @app.post("/login", dependencies=[Depends(RateLimit("login"))])

  Headers are also applied by RateLimitHeadersMiddleware, so routes that
  return their own Response object still carry them.
- ``RateLimitMiddleware``: app-wide middleware applying one preset.
"""

import inspect
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Iterable, Optional

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from starlette.datastructures import MutableHeaders
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from admission.app.core.logging import get_log_context, get_logger
from admission.app.exceptions import DecisionComputationError, RateLimitExceeded, StoreUnavailable
from admission.app.services.rate_limit import LimiterRegistry, RateLimitConfig, RateLimitDecision

if TYPE_CHECKING:
    from admission.app.api.metrics import MetricsCollector

logger = get_logger(__name__)


class Outcome(str, Enum):
    PASS = "pass"
    BLOCK = "block"


@dataclass
class Verdict:
    """Terminal state of one request's rate limit check."""
    outcome: Outcome
    identifier: str
    headers: dict[str, str] = field(default_factory=dict)
    decision: Optional[RateLimitDecision] = None
    retry_after: int = 0
    response: Optional[Response] = None
    degraded: bool = False

    @property
    def blocked(self) -> bool:
        return self.outcome is Outcome.BLOCK


def rate_limit_headers(config: RateLimitConfig, decision: RateLimitDecision) -> dict[str, str]:
    """Client-visible metadata for a decision."""
    return {
        "X-RateLimit-Limit": str(config.max_requests),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": decision.reset_at.isoformat(timespec="milliseconds"),
        "X-RateLimit-Window": str(config.window_ms),
    }


class RateLimitInterceptor:
    """Evaluates requests against registered presets."""

    def __init__(
        self,
        registry: LimiterRegistry,
        metrics: Optional["MetricsCollector"] = None,
    ) -> None:
        self.registry = registry
        self.metrics = metrics

    async def _record(self, preset: str, outcome: str) -> None:
        if self.metrics is not None:
            await self.metrics.record_decision(preset, outcome)

    async def evaluate(self, request: Request, preset: str) -> Verdict:
        """Check one request against a preset.

        Args:
            request: Inbound request
            preset: Registered preset name

        Returns:
            Verdict (PASS or BLOCK)

        Raises:
            InvalidConfiguration: If the preset is not registered
        """
        config = self.registry.get(preset)
        identifier = config.key_func(request)
        if inspect.isawaitable(identifier):
            identifier = await identifier

        engine = self.registry.engine
        log_context = get_log_context(
            identifier=identifier,
            algorithm=config.algorithm.value,
            preset=config.name,
            path=request.url.path,
            method=request.method,
        )

        try:
            decision = await engine.decide(identifier, config)
        except DecisionComputationError as e:
            logger.error(
                f"Malformed rate limit data, failing open: {e}",
                extra=log_context,
            )
            await self._record(config.name, "degraded")
            return Verdict(Outcome.PASS, identifier, degraded=True)
        except StoreUnavailable as e:
            logger.warning(
                f"Rate limit store unavailable, failing open: {e}",
                extra=log_context,
            )
            await self._record(config.name, "degraded")
            return Verdict(Outcome.PASS, identifier, degraded=True)

        headers = rate_limit_headers(config, decision)

        if not decision.is_limited:
            await self._record(config.name, Outcome.PASS.value)
            return Verdict(Outcome.PASS, identifier, headers=headers, decision=decision)

        retry_after = decision.retry_after_seconds(engine.now_ms())
        logger.info(
            f"Rate limit exceeded ({decision.total_hits}/{config.max_requests})",
            extra=log_context,
        )
        await self._record(config.name, Outcome.BLOCK.value)

        callback_response = None
        if config.on_limit_reached is not None:
            result = config.on_limit_reached(identifier, request)
            if inspect.isawaitable(result):
                result = await result
            if isinstance(result, Response):
                callback_response = result

        return Verdict(
            Outcome.BLOCK,
            identifier,
            headers=headers,
            decision=decision,
            retry_after=retry_after,
            response=callback_response,
        )


def blocked_exception(verdict: Verdict) -> RateLimitExceeded:
    return RateLimitExceeded(
        retry_after=verdict.retry_after,
        headers=verdict.headers,
        response=verdict.response,
    )


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """Render a BLOCK as the callback's response or the standard 429."""
    if exc.response is not None:
        exc.response.headers.update(exc.headers)
        return exc.response
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_response(),
        headers={**exc.headers, "Retry-After": str(exc.retry_after)},
    )


def get_interceptor(request: Request) -> RateLimitInterceptor:
    return request.app.state.rate_limit_interceptor


def install_rate_limiting(
    app: FastAPI,
    registry: LimiterRegistry,
    metrics: Optional["MetricsCollector"] = None,
) -> RateLimitInterceptor:
    """Attach a registry to an app and register the 429 handler."""
    interceptor = RateLimitInterceptor(registry, metrics)
    app.state.limiters = registry
    app.state.rate_limit_interceptor = interceptor
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_middleware(RateLimitHeadersMiddleware)
    return interceptor


class RateLimit:
    """Per-route rate limit dependency.

    PASS attaches metadata to the route's response and returns the decision
    (None when the store was unavailable). BLOCK raises RateLimitExceeded.
    """

    def __init__(self, preset: str):
        self.preset = preset

    async def __call__(self, request: Request, response: Response) -> Optional[RateLimitDecision]:
        verdict = await get_interceptor(request).evaluate(request, self.preset)
        if verdict.blocked:
            raise blocked_exception(verdict)
        response.headers.update(verdict.headers)
        request.state.rate_limit = verdict.decision
        request.state.rate_limit_headers = verdict.headers
        return verdict.decision


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Middleware to enforce one preset on every non-exempt request."""

    DEFAULT_EXEMPT_PATHS = ("/health", "/metrics", "/stats", "/admin")

    def __init__(
        self,
        app,
        preset: str = "api",
        exempt_paths: Iterable[str] = DEFAULT_EXEMPT_PATHS,
    ):
        super().__init__(app)
        self.preset = preset
        self.exempt_paths = tuple(exempt_paths)

    def _is_exempt(self, path: str) -> bool:
        return any(path == p or path.startswith(p.rstrip("/") + "/") for p in self.exempt_paths)

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        """Process request with rate limiting."""
        if self._is_exempt(request.url.path):
            return await call_next(request)

        verdict = await get_interceptor(request).evaluate(request, self.preset)
        if verdict.blocked:
            return await rate_limit_exceeded_handler(request, blocked_exception(verdict))

        response = await call_next(request)
        response.headers.update(verdict.headers)
        return response


class RateLimitHeadersMiddleware:
    """ASGI middleware adding the dependency's metadata to any response.

    FastAPI only merges dependency headers into responses it builds itself;
    this covers routes that return a Response directly.
    """

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        async def wrapped_send(message):
            if message["type"] == "http.response.start":
                pending = scope.get("state", {}).get("rate_limit_headers")
                if pending:
                    headers = MutableHeaders(scope=message)
                    for name, value in pending.items():
                        if name not in headers:
                            headers[name] = value
            await send(message)

        await self.app(scope, receive, wrapped_send)
