"""dronetrack configuration.

Loads from config.yaml if present, with environment variable overrides.
Environment variables use the pattern: DRONETRACK_<SECTION>_<KEY> (uppercase).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path

import yaml


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8000
    env: str = "dev"  # "dev" or "prod"


@dataclass
class TrackingConfig:
    tick_interval_seconds: float = 1.0
    freshness_window_seconds: float = 3.0
    eta_refresh_seconds: float = 30.0
    path_max_points: int = 50
    path_min_step_m: float = 1.0
    phase_preset: str = "client"  # "client" or "simulator"
    reconnect_epsilon_deg: float = 0.001
    recent_assignment_seconds: float = 120.0


@dataclass
class PricingConfig:
    time_per_km_minutes: float = 0.5
    cost_per_km: int = 3000
    min_distance_km: float = 1.0
    min_cost: int = 3000
    min_delivery_minutes: float = 0.5
    preparation_minutes: float = 15.0


@dataclass
class WaypointConfig:
    hub_latitude: float = 10.7587229
    hub_longitude: float = 106.682131
    fallback_latitude: float = 10.762622
    fallback_longitude: float = 106.660172
    # Used when a drone has no hub, home or position: park it next to the restaurant.
    hub_offset_deg: float = 0.008


@dataclass
class GeocoderConfig:
    backend: str = "none"  # "none" or "nominatim"
    base_url: str = "https://nominatim.openstreetmap.org"
    timeout_seconds: float = 5.0
    user_agent: str = "dronetrack/0.1"


@dataclass
class StoreConfig:
    backend: str = "memory"
    seed_file: str = ""


@dataclass
class LoggingConfig:
    level: str = "info"
    format: str = "console"  # "console" or "json"


@dataclass
class AppConfig:
    server: ServerConfig = field(default_factory=ServerConfig)
    tracking: TrackingConfig = field(default_factory=TrackingConfig)
    pricing: PricingConfig = field(default_factory=PricingConfig)
    waypoints: WaypointConfig = field(default_factory=WaypointConfig)
    geocoder: GeocoderConfig = field(default_factory=GeocoderConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _coerce(current: object, raw: str) -> object:
    """Convert an environment string to the type of the current value."""
    if isinstance(current, bool):
        return raw.lower() in ("1", "true", "yes", "on")
    if isinstance(current, int):
        return int(raw)
    if isinstance(current, float):
        return float(raw)
    return raw


def _apply_env_overrides(config: AppConfig) -> None:
    """Override config values from environment variables."""
    for section_field in fields(config):
        section = getattr(config, section_field.name)
        for f in fields(section):
            env_key = f"DRONETRACK_{section_field.name}_{f.name}".upper()
            val = os.environ.get(env_key)
            if val is not None:
                setattr(section, f.name, _coerce(getattr(section, f.name), val))


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load configuration from YAML file + environment overrides."""
    config = AppConfig()

    if config_path is None:
        config_path = Path(os.environ.get("DRONETRACK_CONFIG", "config.yaml"))
    else:
        config_path = Path(config_path)

    if config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}

        for section_field in fields(config):
            section = getattr(config, section_field.name)
            for k, v in (raw.get(section_field.name) or {}).items():
                if hasattr(section, k):
                    setattr(section, k, v)

    # Environment overrides always win
    _apply_env_overrides(config)
    return config
