"""Explicit registry of rate limit configs per endpoint class.

Built once by the app factory and stored on ``app.state.limiters``. There is
no module-level instance; tests build isolated registries.
"""

from typing import Iterable, Iterator, Optional

from admission.app.exceptions import InvalidConfiguration

from .engine import RateLimitEngine
from .models import RateLimitConfig


class LimiterRegistry:
    """Mapping of preset name to config, bound to one decision engine."""

    def __init__(self, engine: RateLimitEngine, configs: Iterable[RateLimitConfig] = ()) -> None:
        self._engine = engine
        self._configs: dict[str, RateLimitConfig] = {}
        for config in configs:
            self.register(config)

    @property
    def engine(self) -> RateLimitEngine:
        return self._engine

    def register(self, config: RateLimitConfig) -> None:
        """Bind a config to its name.

        Raises:
            InvalidConfiguration: If the name is already bound
        """
        if config.name in self._configs:
            raise InvalidConfiguration(f"Rate limit preset '{config.name}' is already registered")
        self._configs[config.name] = config

    def get(self, name: str) -> RateLimitConfig:
        """Config bound to a name.

        Raises:
            InvalidConfiguration: If no config is bound to the name
        """
        try:
            return self._configs[name]
        except KeyError:
            raise InvalidConfiguration(f"Unknown rate limit preset '{name}'") from None

    def names(self) -> list[str]:
        return list(self._configs)

    def __contains__(self, name: object) -> bool:
        return name in self._configs

    def __iter__(self) -> Iterator[RateLimitConfig]:
        return iter(self._configs.values())

    def __len__(self) -> int:
        return len(self._configs)

    async def reset_limit(self, identifier: str, scope: Optional[str] = None) -> int:
        """Delete an identifier's window state, optionally for one preset only."""
        if scope is not None:
            self.get(scope)
        return await self._engine.reset_limit(identifier, scope)
