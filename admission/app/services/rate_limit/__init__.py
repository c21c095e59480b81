"""Rate limit decision engine, algorithms, presets and registry."""

from .algorithms import (
    AtomicWindowAlgorithm,
    FixedWindowAlgorithm,
    RateLimitAlgorithm,
    SlidingWindowAlgorithm,
    encode_identifier,
    state_key,
)
from .engine import RateLimitEngine, escape_glob
from .key_functions import address_and_account, account_and_endpoint, client_address
from .models import Algorithm, RateLimitConfig, RateLimitDecision
from .presets import PRESETS, Preset, build_presets
from .registry import LimiterRegistry

__all__ = [
    # Models
    "Algorithm",
    "RateLimitConfig",
    "RateLimitDecision",
    # Algorithms
    "RateLimitAlgorithm",
    "FixedWindowAlgorithm",
    "SlidingWindowAlgorithm",
    "AtomicWindowAlgorithm",
    "state_key",
    "encode_identifier",
    # Engine and registry
    "RateLimitEngine",
    "LimiterRegistry",
    "escape_glob",
    # Presets and key functions
    "PRESETS",
    "Preset",
    "build_presets",
    "client_address",
    "address_and_account",
    "account_and_endpoint",
]
