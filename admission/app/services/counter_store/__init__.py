"""Shared counter store for rate limiting across multi-instance deployments.

This package provides atomic counter, window-set and scripted window
operations on Redis. It is the only code that talks to the store.
"""

from .client import CounterStore
from .redis_lua import ATOMIC_WINDOW_SCRIPT, INCREMENT_WITH_EXPIRY_SCRIPT

__all__ = [
    "CounterStore",
    "ATOMIC_WINDOW_SCRIPT",
    "INCREMENT_WITH_EXPIRY_SCRIPT",
]
