"""Shared counter store client backed by Redis.

This is the only component that talks to the external store. Every primitive
is a single atomic operation (one command, one Lua script or one MULTI/EXEC
pipeline) bounded by a timeout. Failures surface as StoreUnavailable; the
client never retries.
"""

import asyncio
import uuid
from typing import Any, Awaitable, Optional, Tuple

import redis
import redis.asyncio as aioredis

from admission.app.core.config import Settings, settings as default_settings
from admission.app.core.logging import get_logger
from admission.app.exceptions import DecisionComputationError, StoreUnavailable

from .redis_lua import ATOMIC_WINDOW_SCRIPT, INCREMENT_WITH_EXPIRY_SCRIPT

logger = get_logger(__name__)

DELETE_BATCH_SIZE = 500


class CounterStore:
    """Async adapter over a shared Redis instance.

    All keys passed in are relative; the store prepends its namespace
    prefix (``<prefix>:<key>``) so several deployments can share one Redis.

    Example:
        >>> store = CounterStore.from_settings()
        >>> await store.increment_with_expiry("api:fixed_window:{1.2.3.4}:0", 60)
        1
    """

    def __init__(
        self,
        redis_client: Any,
        key_prefix: str = "ratelimit",
        timeout: float = 3.0,
    ) -> None:
        """Initialize the store client.

        Args:
            redis_client: redis.asyncio client (or compatible) instance
            key_prefix: Namespace prepended to every key
            timeout: Upper bound in seconds for each primitive
        """
        self._redis = redis_client
        self._prefix = key_prefix
        self._timeout = timeout

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> "CounterStore":
        """Create a store client with a pooled connection from settings."""
        config = config or default_settings
        client = aioredis.from_url(
            config.redis_url,
            decode_responses=True,
            socket_timeout=config.store_timeout_seconds,
            socket_connect_timeout=config.store_timeout_seconds,
            max_connections=config.redis_max_connections,
        )
        return cls(
            client,
            key_prefix=config.rate_limit_key_prefix,
            timeout=config.store_timeout_seconds,
        )

    @property
    def key_prefix(self) -> str:
        return self._prefix

    @property
    def timeout(self) -> float:
        return self._timeout

    def make_key(self, key: str) -> str:
        """Namespace a relative key."""
        return f"{self._prefix}:{key}"

    async def _execute(self, operation: str, call: Awaitable[Any]) -> Any:
        """Await a store call with the configured timeout.

        Raises:
            StoreUnavailable: On timeout, connection or protocol errors
        """
        try:
            return await asyncio.wait_for(call, timeout=self._timeout)
        except asyncio.TimeoutError as e:
            raise StoreUnavailable(
                f"Store {operation} timed out after {self._timeout}s",
                operation=operation,
            ) from e
        except redis.ConnectionError as e:
            raise StoreUnavailable(
                f"Store connection failed during {operation}: {e}",
                operation=operation,
            ) from e
        except redis.TimeoutError as e:
            raise StoreUnavailable(
                f"Store {operation} timed out: {e}",
                operation=operation,
            ) from e
        except redis.RedisError as e:
            raise StoreUnavailable(
                f"Store error during {operation}: {e}",
                operation=operation,
            ) from e

    @staticmethod
    def _to_int(value: Any, operation: str) -> int:
        """Parse an integer reply, rejecting anything malformed."""
        if isinstance(value, bool):
            raise DecisionComputationError(
                f"Unexpected boolean reply from {operation}", operation=operation
            )
        try:
            return int(value)
        except (TypeError, ValueError) as e:
            raise DecisionComputationError(
                f"Non-numeric reply from {operation}: {value!r}",
                operation=operation,
            ) from e

    async def increment_with_expiry(self, key: str, ttl_seconds: int) -> int:
        """Atomically increment a counter and attach its expiry.

        The counter is created at 0 if absent. Expiry is attached in the same
        script, so no reader can see the counter without one.

        Args:
            key: Relative counter key
            ttl_seconds: Expiry to attach when the key is created

        Returns:
            Post-increment value
        """
        result = await self._execute(
            "increment_with_expiry",
            self._redis.eval(
                INCREMENT_WITH_EXPIRY_SCRIPT,
                1,  # Number of keys
                self.make_key(key),  # KEYS[1]
                int(ttl_seconds),  # ARGV[1]
            ),
        )
        return self._to_int(result, "increment_with_expiry")

    async def add_to_window_set(self, key: str, score: int, member: Optional[str] = None) -> None:
        """Add an event to a sorted window set.

        Args:
            key: Relative set key
            score: Event timestamp in epoch milliseconds
            member: Member name (defaults to a unique name derived from the score)
        """
        member = member or self._event_member(score)
        await self._execute(
            "add_to_window_set",
            self._redis.zadd(self.make_key(key), {member: score}),
        )

    async def prune_window_set(self, key: str, older_than: int) -> None:
        """Remove all events with score <= older_than."""
        await self._execute(
            "prune_window_set",
            self._redis.zremrangebyscore(self.make_key(key), "-inf", older_than),
        )

    async def cardinality(self, key: str) -> int:
        """Number of events currently held in a window set."""
        result = await self._execute("cardinality", self._redis.zcard(self.make_key(key)))
        return self._to_int(result, "cardinality")

    async def record_window_event(self, key: str, now_ms: int, window_ms: int) -> int:
        """Prune, add, refresh TTL and count a window set in one transaction.

        Runs as a MULTI/EXEC pipeline so the prune always happens before the
        count and no other client interleaves with the four steps.

        Args:
            key: Relative set key
            now_ms: Event timestamp in epoch milliseconds
            window_ms: Window length in milliseconds

        Returns:
            Number of events in the window, including this one
        """
        full_key = self.make_key(key)
        member = self._event_member(now_ms)

        async def _run() -> list:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.zremrangebyscore(full_key, "-inf", now_ms - window_ms)
                pipe.zadd(full_key, {member: now_ms})
                pipe.pexpire(full_key, window_ms)
                pipe.zcard(full_key)
                return await pipe.execute()

        results = await self._execute("record_window_event", _run())
        try:
            count = results[3]
        except (IndexError, TypeError) as e:
            raise DecisionComputationError(
                f"Malformed pipeline reply from record_window_event: {results!r}",
                operation="record_window_event",
            ) from e
        return self._to_int(count, "record_window_event")

    async def run_atomic_window_script(
        self,
        key: str,
        window_ms: int,
        max_requests: int,
        now_ms: int,
    ) -> Tuple[int, int, int, bool]:
        """Run the whole window decision as one server-side transaction.

        Args:
            key: Relative base key (the bucket suffix is added by the script)
            window_ms: Window length in milliseconds
            max_requests: Requests allowed per window
            now_ms: Current time in epoch milliseconds

        Returns:
            Tuple of (new_count, remaining, reset_time_ms, limited)
        """
        result = await self._execute(
            "run_atomic_window_script",
            self._redis.eval(
                ATOMIC_WINDOW_SCRIPT,
                1,  # Number of keys
                self.make_key(key),  # KEYS[1]
                int(window_ms),  # ARGV[1]
                int(max_requests),  # ARGV[2]
                int(now_ms),  # ARGV[3]
            ),
        )
        if not isinstance(result, (list, tuple)) or len(result) != 4:
            raise DecisionComputationError(
                f"Malformed reply from atomic window script: {result!r}",
                operation="run_atomic_window_script",
            )
        new_count, remaining, reset_time, limited = (
            self._to_int(v, "run_atomic_window_script") for v in result
        )
        return new_count, remaining, reset_time, bool(limited)

    async def delete_by_pattern(self, pattern: str) -> int:
        """Delete every key matching a relative glob pattern.

        Uses SCAN rather than KEYS so large keyspaces are not blocked.

        Returns:
            Number of keys deleted
        """
        full_pattern = self.make_key(pattern)

        async def _run() -> int:
            deleted = 0
            batch: list = []
            async for found in self._redis.scan_iter(match=full_pattern, count=DELETE_BATCH_SIZE):
                batch.append(found)
                if len(batch) >= DELETE_BATCH_SIZE:
                    deleted += await self._redis.delete(*batch)
                    batch = []
            if batch:
                deleted += await self._redis.delete(*batch)
            return deleted

        deleted = await self._execute("delete_by_pattern", _run())
        logger.debug(f"Deleted {deleted} keys matching {full_pattern}")
        return self._to_int(deleted, "delete_by_pattern")

    async def ping(self) -> bool:
        """Check store connectivity without raising."""
        try:
            return bool(await self._execute("ping", self._redis.ping()))
        except StoreUnavailable as e:
            logger.warning(f"Store ping failed: {e}")
            return False

    async def close(self) -> None:
        """Release the connection pool."""
        try:
            await self._redis.aclose()
        except redis.RedisError as e:
            logger.warning(f"Error closing store connection: {e}")

    @staticmethod
    def _event_member(score: int) -> str:
        # Unique per event so simultaneous timestamps are all counted
        return f"{score}-{uuid.uuid4().hex[:16]}"
