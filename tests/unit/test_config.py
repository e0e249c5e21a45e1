"""Tests for environment-driven configuration loading."""

from __future__ import annotations

import os
from datetime import timedelta

import pytest

from kubenetviz.config import load_config, parse_duration


class TestLoadConfig:
    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        for key in list(os.environ):
            if key.startswith("KUBENETVIZ_"):
                monkeypatch.delenv(key)
        config = load_config()
        assert config.cluster_id == ""
        assert config.flows.buffer_capacity == 10_000
        assert config.flows.aggregation_window_seconds == 60
        assert config.scout.min_baseline_samples == 10
        assert config.scout.spike_threshold == 3.0
        assert config.scout.exfil_threshold_bytes == 10 * 1024 * 1024
        assert config.scout.max_events == 1_000
        assert config.notifications.cooldown == "15m"
        assert config.api.enabled is True
        assert config.api.port == 8080
        assert config.log.level == "info"

    def test_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("KUBENETVIZ_CLUSTER_ID", "prod-eu")
        monkeypatch.setenv("KUBENETVIZ_FLOWS_BUFFER_CAPACITY", "500")
        monkeypatch.setenv("KUBENETVIZ_SCOUT_SPIKE_THRESHOLD", "4.5")
        monkeypatch.setenv("KUBENETVIZ_API_ENABLED", "false")
        monkeypatch.setenv("KUBENETVIZ_LOG_LEVEL", "DEBUG")
        config = load_config()
        assert config.cluster_id == "prod-eu"
        assert config.flows.buffer_capacity == 500
        assert config.scout.spike_threshold == 4.5
        assert config.api.enabled is False
        assert config.log.level == "debug"

    def test_values_are_clamped(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("KUBENETVIZ_FLOWS_BUFFER_CAPACITY", "1")
        monkeypatch.setenv("KUBENETVIZ_API_PORT", "80")
        monkeypatch.setenv("KUBENETVIZ_SCOUT_BASELINE_ALPHA", "7")
        config = load_config()
        assert config.flows.buffer_capacity == 100
        assert config.api.port == 1024
        assert config.scout.baseline_alpha == 1.0

    @pytest.mark.parametrize(
        ("key", "value"),
        [
            ("KUBENETVIZ_LOG_LEVEL", "verbose"),
            ("KUBENETVIZ_NOTIFICATIONS_COOLDOWN", "15 minutes"),
            ("KUBENETVIZ_FLOWS_BUFFER_CAPACITY", "lots"),
        ],
    )
    def test_invalid_values_raise(self, monkeypatch: pytest.MonkeyPatch, key: str, value: str) -> None:
        monkeypatch.setenv(key, value)
        with pytest.raises(ValueError):
            load_config()


class TestParseDuration:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("30s", timedelta(seconds=30)),
            ("15m", timedelta(minutes=15)),
            ("2h", timedelta(hours=2)),
            ("1d", timedelta(days=1)),
        ],
    )
    def test_units(self, value: str, expected: timedelta) -> None:
        assert parse_duration(value) == expected

    def test_rejects_garbage(self) -> None:
        with pytest.raises(ValueError):
            parse_duration("soon")
