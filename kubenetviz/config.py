"""Configuration loading from environment variables."""

from __future__ import annotations

import os
import re
from datetime import timedelta

from kubenetviz.models.config import (
    APIConfig,
    FlowConfig,
    KubeNetVizConfig,
    LogConfig,
    NotificationConfig,
    ScoutConfig,
)

_DURATION_UNITS = {"s": "seconds", "m": "minutes", "h": "hours", "d": "days"}


def _env(key: str, default: str = "") -> str:
    return os.environ.get(f"KUBENETVIZ_{key}", default)


def _env_bool(key: str, default: bool = False) -> bool:
    val = _env(key, str(default).lower())
    return val.lower() in ("true", "1", "yes")


def _env_int(key: str, default: int, min_val: int | None = None, max_val: int | None = None) -> int:
    val = int(_env(key, str(default)))
    if min_val is not None:
        val = max(val, min_val)
    if max_val is not None:
        val = min(val, max_val)
    return val


def _env_float(key: str, default: float, min_val: float | None = None, max_val: float | None = None) -> float:
    val = float(_env(key, str(default)))
    if min_val is not None:
        val = max(val, min_val)
    if max_val is not None:
        val = min(val, max_val)
    return val


def _validate_duration(value: str) -> str:
    if not re.match(r"^[0-9]+(s|m|h|d)$", value):
        raise ValueError(f"Invalid duration format: {value}")
    return value


def parse_duration(value: str) -> timedelta:
    """Convert ``"15m"``-style strings into a timedelta."""
    _validate_duration(value)
    return timedelta(**{_DURATION_UNITS[value[-1]]: int(value[:-1])})


def _validate_log_level(value: str) -> str:
    valid = {"debug", "info", "warning", "error"}
    if value.lower() not in valid:
        raise ValueError(f"Invalid log level: {value}. Must be one of {valid}")
    return value.lower()


def load_config() -> KubeNetVizConfig:
    """Load configuration from KUBENETVIZ_* environment variables."""
    return KubeNetVizConfig(
        cluster_id=_env("CLUSTER_ID", ""),
        flows=FlowConfig(
            buffer_capacity=_env_int("FLOWS_BUFFER_CAPACITY", 10_000, min_val=100, max_val=1_000_000),
            aggregation_window_seconds=_env_int("FLOWS_WINDOW_SECONDS", 60, min_val=5, max_val=3600),
            rate_alpha=_env_float("FLOWS_RATE_ALPHA", 0.3, min_val=0.01, max_val=1.0),
            sweep_interval_seconds=_env_int("FLOWS_SWEEP_INTERVAL_SECONDS", 10, min_val=1, max_val=600),
            ingest_queue_size=_env_int("FLOWS_INGEST_QUEUE_SIZE", 5_000, min_val=10, max_val=1_000_000),
        ),
        scout=ScoutConfig(
            tick_seconds=_env_int("SCOUT_TICK_SECONDS", 5, min_val=1, max_val=600),
            min_baseline_samples=_env_int("SCOUT_MIN_BASELINE_SAMPLES", 10, min_val=1, max_val=1000),
            baseline_alpha=_env_float("SCOUT_BASELINE_ALPHA", 0.3, min_val=0.01, max_val=1.0),
            spike_threshold=_env_float("SCOUT_SPIKE_THRESHOLD", 3.0, min_val=1.1),
            error_rate_threshold=_env_float("SCOUT_ERROR_RATE_THRESHOLD", 0.05, min_val=0.0, max_val=1.0),
            port_scan_threshold=_env_int("SCOUT_PORT_SCAN_THRESHOLD", 20, min_val=2),
            exfil_threshold_bytes=_env_int("SCOUT_EXFIL_THRESHOLD_BYTES", 10 * 1024 * 1024, min_val=1024),
            exfil_sustain_ticks=_env_int("SCOUT_EXFIL_SUSTAIN_TICKS", 3, min_val=1, max_val=100),
            max_events=_env_int("SCOUT_MAX_EVENTS", 1_000, min_val=10, max_val=100_000),
        ),
        notifications=NotificationConfig(
            webhook_secret_ref=_env("NOTIFICATIONS_WEBHOOK_SECRET_REF", ""),
            cooldown=_validate_duration(_env("NOTIFICATIONS_COOLDOWN", "15m")),
        ),
        api=APIConfig(
            enabled=_env_bool("API_ENABLED", True),
            port=_env_int("API_PORT", 8080, min_val=1024, max_val=65535),
        ),
        log=LogConfig(
            level=_validate_log_level(_env("LOG_LEVEL", "info")),
        ),
    )
