"""dronetrack server — main entry point.

This is the only file that knows about concrete implementations.
It wires together the core, store, bus, geocoder and API layers.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from dronetrack.api.delivery import router as delivery_router
from dronetrack.api.documents import router as documents_router
from dronetrack.api.monitoring import router as monitoring_router
from dronetrack.api.tracking import router as tracking_router
from dronetrack.bus.asyncio_bus import AsyncioRealtimeBus
from dronetrack.config import AppConfig, load_config
from dronetrack.core.calculator import DeliveryCalculator
from dronetrack.core.registry import SessionRegistry
from dronetrack.core.stats import TrackingStats
from dronetrack.core.tracking import TrackingSessionController
from dronetrack.geocode.nominatim import NominatimGeocoder
from dronetrack.geocode.offline import OfflineGeocoder
from dronetrack.store.memory_store import MemoryDocumentStore

log = structlog.get_logger()

# Module-level singletons (set during startup)
_config: AppConfig | None = None
_stats: TrackingStats | None = None
_bus: AsyncioRealtimeBus | None = None
_store: MemoryDocumentStore | None = None
_geocoder: NominatimGeocoder | OfflineGeocoder | None = None
_calculator: DeliveryCalculator | None = None
_registry: SessionRegistry | None = None


def get_config() -> AppConfig:
    assert _config is not None, "Server not initialized"
    return _config


def get_stats() -> TrackingStats:
    assert _stats is not None, "Server not initialized"
    return _stats


def get_bus() -> AsyncioRealtimeBus:
    assert _bus is not None, "Server not initialized"
    return _bus


def get_store() -> MemoryDocumentStore:
    assert _store is not None, "Server not initialized"
    return _store


def get_calculator() -> DeliveryCalculator:
    assert _calculator is not None, "Server not initialized"
    return _calculator


def get_registry() -> SessionRegistry:
    assert _registry is not None, "Server not initialized"
    return _registry


def _setup_logging(config: AppConfig) -> None:
    """Configure structlog based on the logging config."""
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if config.logging.format == "json":
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(config.logging.level.upper()),
        ),
    )


def make_geocoder(config: AppConfig) -> NominatimGeocoder | OfflineGeocoder:
    if config.geocoder.backend == "nominatim":
        return NominatimGeocoder(
            base_url=config.geocoder.base_url,
            timeout_seconds=config.geocoder.timeout_seconds,
            user_agent=config.geocoder.user_agent,
        )
    return OfflineGeocoder()


def make_registry(
    config: AppConfig,
    store: MemoryDocumentStore,
    bus: AsyncioRealtimeBus,
    calculator: DeliveryCalculator,
    geocoder: NominatimGeocoder | OfflineGeocoder | None,
    stats: TrackingStats,
) -> SessionRegistry:
    """Registry whose sessions all share the same store, bus and config."""

    def factory() -> TrackingSessionController:
        return TrackingSessionController(
            orders=store,
            drones=store,
            restaurants=store,
            bus=bus,
            calculator=calculator,
            geocoder=geocoder,
            tracking=config.tracking,
            waypoints=config.waypoints,
            stats=stats,
        )

    return SessionRegistry(factory)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    global _config, _stats, _bus, _store, _geocoder, _calculator, _registry

    _config = load_config()
    _setup_logging(_config)

    log.info("server_starting",
             env=_config.server.env,
             geocoder=_config.geocoder.backend,
             phase_preset=_config.tracking.phase_preset)

    # Create components
    _stats = TrackingStats()
    _bus = AsyncioRealtimeBus()
    _store = MemoryDocumentStore(bus=_bus)
    if _config.store.seed_file:
        _store.load_seed(_config.store.seed_file)
    _geocoder = make_geocoder(_config)
    _calculator = DeliveryCalculator(_config.pricing, geocoder=_geocoder, stats=_stats)
    _registry = make_registry(_config, _store, _bus, _calculator, _geocoder, _stats)

    log.info("server_started",
             host=_config.server.host,
             port=_config.server.port)

    yield

    # Shutdown
    await _registry.close_all()
    await _geocoder.aclose()
    log.info("server_stopped")


app = FastAPI(
    title="dronetrack",
    description="Drone delivery tracking server",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(tracking_router)
app.include_router(delivery_router)
app.include_router(documents_router)
app.include_router(monitoring_router)
