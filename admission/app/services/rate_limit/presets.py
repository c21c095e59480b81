"""Named rate limit presets, one per protected endpoint class."""

from typing import Mapping, NamedTuple, Optional

from admission.app.core.config import Settings, settings as default_settings

from .key_functions import make_key_functions
from .models import Algorithm, LimitReachedCallback, RateLimitConfig

MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS


class Preset(NamedTuple):
    window_ms: int
    max_requests: int
    key: str  # name in make_key_functions()
    algorithm: Algorithm


# Credential and account endpoints use the atomic window: no overshoot at all.
PRESETS: dict[str, Preset] = {
    "login": Preset(15 * MINUTE_MS, 5, "address_and_account", Algorithm.ATOMIC_WINDOW),
    "api": Preset(15 * MINUTE_MS, 100, "address", Algorithm.FIXED_WINDOW),
    "upload": Preset(1 * MINUTE_MS, 10, "address", Algorithm.SLIDING_WINDOW),
    "search": Preset(1 * MINUTE_MS, 30, "address", Algorithm.SLIDING_WINDOW),
    "password_reset": Preset(1 * HOUR_MS, 3, "address_and_account", Algorithm.ATOMIC_WINDOW),
    "registration": Preset(1 * HOUR_MS, 5, "address", Algorithm.ATOMIC_WINDOW),
}


def build_presets(
    config: Optional[Settings] = None,
    on_limit_reached: Optional[Mapping[str, LimitReachedCallback]] = None,
    presets: Optional[Mapping[str, Preset]] = None,
) -> dict[str, RateLimitConfig]:
    """Build validated configs for every preset.

    Args:
        config: Settings (proxy trust for key functions)
        on_limit_reached: Optional per-preset BLOCK callbacks
        presets: Preset table (defaults to PRESETS)

    Returns:
        Mapping of preset name to RateLimitConfig

    Raises:
        InvalidConfiguration: If any preset value is unusable
    """
    config = config or default_settings
    callbacks = dict(on_limit_reached or {})
    key_functions = make_key_functions(config.trust_forwarded_for)
    table = presets if presets is not None else PRESETS

    return {
        name: RateLimitConfig(
            name=name,
            window_ms=preset.window_ms,
            max_requests=preset.max_requests,
            key_func=key_functions[preset.key],
            on_limit_reached=callbacks.get(name),
            algorithm=preset.algorithm,
        )
        for name, preset in table.items()
    }
