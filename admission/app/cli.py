"""Command line administration for rate limits.

Usage:
    admission-reset 203.0.113.7
    admission-reset "203.0.113.7:alice@example.com" --scope login
"""

import argparse
import asyncio
import sys
from typing import Optional, Sequence

from admission.app.core.config import Settings, settings as default_settings
from admission.app.core.logging import setup_logging
from admission.app.exceptions import AdmissionError
from admission.app.services.counter_store import CounterStore
from admission.app.services.rate_limit import LimiterRegistry, RateLimitEngine, build_presets


async def reset_identifier(identifier: str, scope: Optional[str], config: Settings) -> int:
    """Delete an identifier's window state using the configured store."""
    store = CounterStore.from_settings(config)
    try:
        registry = LimiterRegistry(RateLimitEngine(store), build_presets(config).values())
        return await registry.reset_limit(identifier, scope)
    finally:
        await store.close()


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Reset rate limit state for an identifier")
    parser.add_argument("identifier", help="Identifier as produced by the preset key function")
    parser.add_argument("--scope", help="Only reset this preset (e.g. login)")
    args = parser.parse_args(argv)

    config = default_settings
    setup_logging(config)
    try:
        deleted = asyncio.run(reset_identifier(args.identifier, args.scope, config))
    except AdmissionError as e:
        print(f"Reset failed: {e.message}", file=sys.stderr)
        return 1

    print(f"Deleted {deleted} keys for {args.identifier}" + (f" (scope: {args.scope})" if args.scope else ""))
    return 0


if __name__ == "__main__":
    sys.exit(main())
