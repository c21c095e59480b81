"""Administrative rate limit operations (admin only)."""

from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from admission.app.core.logging import get_log_context, get_logger
from admission.app.exceptions import StoreUnavailable
from admission.app.middleware.auth import require_admin
from admission.app.services.rate_limit import LimiterRegistry

logger = get_logger(__name__)
router = APIRouter(prefix="/admin/rate-limits", tags=["admin"])


def get_registry(request: Request) -> LimiterRegistry:
    return request.app.state.limiters


@router.get("")
async def list_presets(
    admin=Depends(require_admin),
    registry: LimiterRegistry = Depends(get_registry),
) -> dict[str, Any]:
    """List registered presets and their limits."""
    return {
        "presets": [
            {
                "name": config.name,
                "window_ms": config.window_ms,
                "max_requests": config.max_requests,
                "algorithm": config.algorithm.value,
            }
            for config in registry
        ]
    }


@router.delete("/{identifier}")
async def reset_limit(
    identifier: str,
    scope: Optional[str] = Query(default=None, description="Only reset this preset"),
    admin=Depends(require_admin),
    registry: LimiterRegistry = Depends(get_registry),
) -> dict[str, Any]:
    """Delete all window state for an identifier (manual unblock)."""
    if scope is not None and scope not in registry:
        raise HTTPException(status_code=404, detail=f"Unknown rate limit preset '{scope}'")
    try:
        deleted = await registry.reset_limit(identifier, scope)
    except StoreUnavailable as e:
        logger.error(
            f"Rate limit reset failed: {e}",
            extra=get_log_context(identifier=identifier, preset=scope),
        )
        raise HTTPException(
            status_code=503,
            detail={"error": "store_unavailable", "message": "Rate limit store unavailable"},
        ) from e
    return {"identifier": identifier, "scope": scope, "deleted": deleted}
