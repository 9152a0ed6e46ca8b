"""Health check endpoints."""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends

from lfx_server import __version__
from lfx_server.api.app_state import AppState
from lfx_server.api.dependencies import get_state

router = APIRouter(prefix="/api", tags=["health"])


@router.get("/health")
async def health() -> dict[str, str]:
    """Basic health check for load balancers."""
    return {
        "status": "healthy",
        "version": __version__,
        "timestamp": datetime.now(UTC).isoformat(),
    }


@router.get("/health/detailed")
async def health_detailed(
    state: AppState = Depends(get_state),
) -> dict[str, object]:
    """Pool, dedup lock and NATS state.

    Nothing here opens a connection; an idle warehouse or NATS link
    reports as not connected.
    """
    warehouse_connected = state.snowflake.is_connected()
    nats_connected = state.nats.is_connected()
    components = {
        "warehouse": {
            "status": "connected" if warehouse_connected else "idle",
            "pool": state.snowflake.get_pool_stats().as_dict(),
            "locks": state.snowflake.get_lock_stats().as_dict(),
        },
        "nats": {"status": "connected" if nats_connected else "idle"},
    }
    return {
        "status": "healthy",
        "version": __version__,
        "components": components,
        "timestamp": datetime.now(UTC).isoformat(),
    }
