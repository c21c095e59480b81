"""Rate limit decision engine.

Dispatches a check to the algorithm selected by configuration and returns a
structured decision. Holds no window state and applies no fallback policy:
StoreUnavailable propagates to the caller, which decides how to degrade.
"""

import asyncio
import re
import time
from functools import partial
from typing import Callable, Optional

from admission.app.core.logging import get_log_context, get_logger
from admission.app.services.counter_store import CounterStore

from .algorithms import ALGORITHMS, RateLimitAlgorithm, encode_identifier
from .models import Algorithm, RateLimitConfig, RateLimitDecision

logger = get_logger(__name__)

_GLOB_CHARS = re.compile(r"[*?\[\]\\]")


def _epoch_ms() -> int:
    return time.time_ns() // 1_000_000


def escape_glob(value: str) -> str:
    """Escape Redis glob metacharacters so a value only matches itself."""
    return _GLOB_CHARS.sub(lambda m: "\\" + m.group(0), value)


def _log_detached_failure(
    identifier: str, config: RateLimitConfig, algorithm: Algorithm, task: asyncio.Task
) -> None:
    # Runs only once the caller has gone away, so nobody else retrieves the error
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning(
            f"Rate limit update failed after the request was cancelled: {exc}",
            extra=get_log_context(identifier=identifier, algorithm=algorithm.value, preset=config.name),
        )


class RateLimitEngine:
    """Decision engine over a fixed table of algorithm strategies.

    Example:
        >>> engine = RateLimitEngine(store)
        >>> decision = await engine.decide("203.0.113.7", config)
        >>> decision.is_limited
        False
    """

    def __init__(self, store: CounterStore, clock: Optional[Callable[[], int]] = None) -> None:
        """Initialize the engine.

        Args:
            store: Shared counter store client
            clock: Returns the current time in epoch milliseconds
        """
        self._store = store
        self._clock = clock or _epoch_ms
        self._algorithms: dict[Algorithm, RateLimitAlgorithm] = {
            algorithm: cls(store) for algorithm, cls in ALGORITHMS.items()
        }

    @property
    def store(self) -> CounterStore:
        return self._store

    def now_ms(self) -> int:
        return self._clock()

    async def decide(
        self,
        identifier: str,
        config: RateLimitConfig,
        algorithm: Optional[Algorithm] = None,
    ) -> RateLimitDecision:
        """Record a hit for the identifier and decide on it.

        Args:
            identifier: Caller fingerprint
            config: Limit being enforced
            algorithm: Overrides config.algorithm when given

        Returns:
            RateLimitDecision

        Raises:
            StoreUnavailable: If the store cannot be reached within its timeout
        """
        selected = Algorithm(algorithm or config.algorithm)
        strategy = self._algorithms[selected]
        task = asyncio.ensure_future(strategy.decide(identifier, config, self._clock()))
        # Shielded: a cancelled request must not cancel an in-flight increment
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            task.add_done_callback(partial(_log_detached_failure, identifier, config, selected))
            raise

    async def reset_limit(self, identifier: str, scope: Optional[str] = None) -> int:
        """Delete all window state for an identifier.

        Args:
            identifier: Identifier whose state should be removed
            scope: Restrict to one preset name (all presets when None)

        Returns:
            Number of keys deleted

        Raises:
            StoreUnavailable: If the store cannot be reached
        """
        scope_pattern = escape_glob(scope) if scope else "*"
        # Keys hold exactly one brace pair, so "{id}" only matches the hash tag itself
        pattern = f"{scope_pattern}:*:{{{escape_glob(encode_identifier(identifier))}}}*"
        deleted = await self._store.delete_by_pattern(pattern)
        logger.info(
            f"Rate limit reset: {deleted} keys deleted",
            extra=get_log_context(identifier=identifier, preset=scope),
        )
        return deleted
