"""Configuration data structures."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class FlowConfig:
    """Flow aggregator configuration."""

    buffer_capacity: int = 10_000
    aggregation_window_seconds: int = 60
    rate_alpha: float = 0.3
    sweep_interval_seconds: int = 10
    ingest_queue_size: int = 5_000


@dataclass
class ScoutConfig:
    """Anomaly detector configuration."""

    tick_seconds: int = 5
    min_baseline_samples: int = 10
    baseline_alpha: float = 0.3
    spike_threshold: float = 3.0
    error_rate_threshold: float = 0.05
    port_scan_threshold: int = 20
    exfil_threshold_bytes: int = 10 * 1024 * 1024
    exfil_sustain_ticks: int = 3
    max_events: int = 1_000


@dataclass
class NotificationConfig:
    """Notification system configuration."""

    webhook_secret_ref: str = ""
    cooldown: str = "15m"


@dataclass
class APIConfig:
    """REST API configuration."""

    enabled: bool = True
    port: int = 8080


@dataclass
class LogConfig:
    """Logging configuration."""

    level: str = "info"


@dataclass
class KubeNetVizConfig:
    """Top-level kubenetviz configuration."""

    cluster_id: str = ""
    flows: FlowConfig = field(default_factory=FlowConfig)
    scout: ScoutConfig = field(default_factory=ScoutConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    api: APIConfig = field(default_factory=APIConfig)
    log: LogConfig = field(default_factory=LogConfig)
