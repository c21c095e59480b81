"""Rate limit algorithms built on the shared counter store.

Three interchangeable strategies behind one interface:

- FixedWindowAlgorithm: O(1) epoch-aligned counter. Known boundary bias: a
  client can get up to 2x max_requests through in a short burst straddling
  two buckets.
- SlidingWindowAlgorithm: sorted-set log of event timestamps. No boundary
  bias, O(log n) work and storage proportional to recent traffic.
- AtomicWindowAlgorithm: the whole bucket/increment/TTL/compare sequence runs
  as one Lua script, so concurrent callers never observe an intermediate
  state and overshoot is zero.

No algorithm keeps window state in process memory.
"""

from abc import ABC, abstractmethod

from admission.app.services.counter_store import CounterStore

from .models import Algorithm, RateLimitConfig, RateLimitDecision


_IDENTIFIER_ESCAPES = str.maketrans({"%": "%25", "{": "%7B", "}": "%7D", "\\": "%5C"})


def encode_identifier(identifier: str) -> str:
    """Percent-encode the characters that would break the hash tag.

    Client-controlled identifiers (the account part of a login key) must not
    be able to close the tag early or embed another identifier's tag.
    """
    return identifier.translate(_IDENTIFIER_ESCAPES)


def state_key(config: RateLimitConfig, algorithm: Algorithm, identifier: str) -> str:
    """Relative store key for one identifier's window state.

    The encoded identifier is wrapped in a hash tag so every key for it maps
    to the same cluster slot. Each key carries exactly one brace pair, which
    is what lets reset patterns match an identifier exactly.
    """
    return f"{config.name}:{algorithm.value}:{{{encode_identifier(identifier)}}}"


class RateLimitAlgorithm(ABC):
    """Abstract base class for rate limit algorithms."""

    algorithm: Algorithm

    def __init__(self, store: CounterStore) -> None:
        self._store = store

    @abstractmethod
    async def decide(
        self, identifier: str, config: RateLimitConfig, now_ms: int
    ) -> RateLimitDecision:
        """Record one hit for the identifier and decide on it.

        Args:
            identifier: Caller fingerprint
            config: Limit being enforced
            now_ms: Current time in epoch milliseconds

        Returns:
            RateLimitDecision for this hit

        Raises:
            StoreUnavailable: If the store cannot be reached
        """


class FixedWindowAlgorithm(RateLimitAlgorithm):
    """Fixed window counter aligned to the epoch."""

    algorithm = Algorithm.FIXED_WINDOW

    async def decide(
        self, identifier: str, config: RateLimitConfig, now_ms: int
    ) -> RateLimitDecision:
        bucket = (now_ms // config.window_ms) * config.window_ms
        key = f"{state_key(config, self.algorithm, identifier)}:{bucket}"
        total_hits = await self._store.increment_with_expiry(key, config.window_seconds)
        return RateLimitDecision.from_hits(
            total_hits, config.max_requests, bucket + config.window_ms
        )


class SlidingWindowAlgorithm(RateLimitAlgorithm):
    """Sliding window log of request timestamps.

    Denied requests are logged too, so a client that keeps hammering stays
    blocked until it backs off for a whole window.
    """

    algorithm = Algorithm.SLIDING_WINDOW

    async def decide(
        self, identifier: str, config: RateLimitConfig, now_ms: int
    ) -> RateLimitDecision:
        key = state_key(config, self.algorithm, identifier)
        total_hits = await self._store.record_window_event(key, now_ms, config.window_ms)
        # Approximate: exact reset would be oldest surviving entry + window
        return RateLimitDecision.from_hits(
            total_hits, config.max_requests, now_ms + config.window_ms
        )


class AtomicWindowAlgorithm(RateLimitAlgorithm):
    """Fixed window decided entirely inside one store-side script."""

    algorithm = Algorithm.ATOMIC_WINDOW

    async def decide(
        self, identifier: str, config: RateLimitConfig, now_ms: int
    ) -> RateLimitDecision:
        key = state_key(config, self.algorithm, identifier)
        new_count, remaining, reset_time_ms, limited = await self._store.run_atomic_window_script(
            key, config.window_ms, config.max_requests, now_ms
        )
        return RateLimitDecision(
            total_hits=new_count,
            remaining=remaining,
            reset_time_ms=reset_time_ms,
            is_limited=limited,
        )


ALGORITHMS = {
    Algorithm.FIXED_WINDOW: FixedWindowAlgorithm,
    Algorithm.SLIDING_WINDOW: SlidingWindowAlgorithm,
    Algorithm.ATOMIC_WINDOW: AtomicWindowAlgorithm,
}
