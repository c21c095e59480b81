"""Rate limiting data models.

This module contains the typed configuration bound to each protected
endpoint class and the decision returned for every check.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

from starlette.requests import Request
from starlette.responses import Response

from admission.app.exceptions import InvalidConfiguration


KeyFunc = Callable[[Request], Union[str, Awaitable[str]]]
LimitReachedCallback = Callable[[str, Request], Union[Optional[Response], Awaitable[Optional[Response]]]]


class Algorithm(str, Enum):
    """Closed set of rate limit algorithms."""
    FIXED_WINDOW = "fixed_window"
    SLIDING_WINDOW = "sliding_window"
    ATOMIC_WINDOW = "atomic_window"


def _is_positive_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


@dataclass(frozen=True)
class RateLimitConfig:
    """Rate limit configuration for one endpoint class.

    Attributes:
        name: Preset / endpoint-class name, also scopes the stored state
        window_ms: Window length in milliseconds
        max_requests: Requests allowed per window
        key_func: Derives the identifier from a request (sync or async)
        on_limit_reached: Optional callback invoked on BLOCK with
            (identifier, request); a returned Response replaces the default 429
        algorithm: Which algorithm enforces this limit

    Raises:
        InvalidConfiguration: If any value is unusable
    """
    name: str
    window_ms: int
    max_requests: int
    key_func: KeyFunc
    on_limit_reached: Optional[LimitReachedCallback] = None
    algorithm: Algorithm = Algorithm.FIXED_WINDOW

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise InvalidConfiguration("Rate limit config needs a non-empty name")
        if any(ch in self.name for ch in "*?[]{}:"):
            raise InvalidConfiguration(
                f"Rate limit config name {self.name!r} must not contain ':', glob or hash-tag characters"
            )
        if not _is_positive_int(self.window_ms):
            raise InvalidConfiguration(
                f"Rate limit '{self.name}': window_ms must be a positive integer, got {self.window_ms!r}"
            )
        if not _is_positive_int(self.max_requests):
            raise InvalidConfiguration(
                f"Rate limit '{self.name}': max_requests must be a positive integer, got {self.max_requests!r}"
            )
        if not callable(self.key_func):
            raise InvalidConfiguration(f"Rate limit '{self.name}': key_func must be callable")
        if self.on_limit_reached is not None and not callable(self.on_limit_reached):
            raise InvalidConfiguration(f"Rate limit '{self.name}': on_limit_reached must be callable")
        try:
            object.__setattr__(self, "algorithm", Algorithm(self.algorithm))
        except ValueError as e:
            raise InvalidConfiguration(
                f"Rate limit '{self.name}': unknown algorithm {self.algorithm!r}"
            ) from e

    @property
    def window_seconds(self) -> int:
        """Window length rounded up to whole seconds."""
        return math.ceil(self.window_ms / 1000)


@dataclass(frozen=True)
class RateLimitDecision:
    """Result of a rate limit check. Computed per call, never persisted."""
    total_hits: int
    remaining: int
    reset_time_ms: int
    is_limited: bool

    @property
    def reset_at(self) -> datetime:
        """Reset time as an aware UTC datetime."""
        return datetime.fromtimestamp(self.reset_time_ms / 1000, tz=timezone.utc)

    def retry_after_seconds(self, now_ms: int) -> int:
        """Whole seconds until the window resets, never negative."""
        return math.ceil(max(0, self.reset_time_ms - now_ms) / 1000)

    @classmethod
    def from_hits(cls, total_hits: int, max_requests: int, reset_time_ms: int) -> "RateLimitDecision":
        """Build a decision from a post-increment hit count."""
        return cls(
            total_hits=total_hits,
            remaining=max(0, max_requests - total_hits),
            reset_time_ms=reset_time_ms,
            is_limited=total_hits > max_requests,
        )
