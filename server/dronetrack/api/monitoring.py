"""Health check and monitoring endpoints."""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter

from dronetrack.core.phases import get_preset

router = APIRouter(prefix="/api/v1")


@router.get("/health")
async def health() -> dict:
    """Basic health check."""
    from dronetrack.main import get_bus, get_registry, get_stats, get_store

    snapshot = get_stats().snapshot()
    store = get_store()
    return {
        "status": "ok",
        "version": "0.1.0",
        "uptime_seconds": snapshot["uptime_seconds"],
        "active_sessions": len(get_registry()),
        "bus_subscribers": get_bus().subscriber_count(),
        "orders": store.count("orders"),
        "drones": store.count("drones"),
    }


@router.get("/stats")
async def stats() -> dict:
    """Tracking statistics.

    The ``ticks`` section counts ticks by what drove the drone position:
    - ``realtime``: a fresh pushed position
    - ``local``: local animation while realtime was quiet
    - ``hold``: a stationary phase (picking up, delivering)
    - ``pending``: waypoints not resolved yet
    - ``idle``: no drone assigned, or delivery completed
    """
    from dronetrack.main import get_registry, get_stats

    result = get_stats().snapshot()
    result["sessions"]["open"] = len(get_registry())
    return result


@router.get("/config")
async def get_client_config() -> dict:
    """Configuration endpoint for tracking clients.

    Clients animating locally use these to stay in step with the server.
    """
    from dronetrack.main import get_config

    config = get_config()
    tracking = config.tracking
    return {
        "tick_interval_seconds": tracking.tick_interval_seconds,
        "freshness_window_seconds": tracking.freshness_window_seconds,
        "eta_refresh_seconds": tracking.eta_refresh_seconds,
        "path_max_points": tracking.path_max_points,
        "phase_preset": tracking.phase_preset,
        "phase_durations": asdict(get_preset(tracking.phase_preset)),
        "pricing": asdict(config.pricing),
    }
