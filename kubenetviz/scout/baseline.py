"""Learned per-edge traffic baselines."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum

DEFAULT_MIN_SAMPLES = 10
DEFAULT_ALPHA = 0.3


class MetricKind(StrEnum):
    """Edge metrics that carry a baseline."""

    BYTES_PER_SEC = "bytes_per_sec"
    PACKETS_PER_SEC = "packets_per_sec"
    ERROR_RATE = "error_rate"


class BaselineState(StrEnum):
    """Whether a baseline has seen enough samples to be trusted."""

    WARMING_UP = "warming_up"
    BASELINED = "baselined"


@dataclass
class Baseline:
    """Exponentially weighted mean and variance of one metric on one edge.

    The first sample seeds the mean.  Each later sample ``x`` moves the
    mean by ``alpha * (x - mean)`` and the variance follows the matching
    incremental EWM form, so memory stays constant.  The baseline is
    ``WARMING_UP`` until ``min_samples`` samples have been folded in.
    """

    alpha: float = DEFAULT_ALPHA
    min_samples: int = DEFAULT_MIN_SAMPLES
    mean: float = 0.0
    variance: float = 0.0
    sample_count: int = 0
    last_updated: datetime | None = field(default=None)

    def update(self, value: float, at: datetime | None = None) -> None:
        if self.sample_count == 0:
            self.mean = value
            self.variance = 0.0
        else:
            diff = value - self.mean
            increment = self.alpha * diff
            self.mean += increment
            self.variance = (1 - self.alpha) * (self.variance + diff * increment)
        self.sample_count += 1
        self.last_updated = at or datetime.now(tz=UTC)

    @property
    def std_dev(self) -> float:
        return math.sqrt(max(self.variance, 0.0))

    @property
    def state(self) -> BaselineState:
        if self.sample_count >= self.min_samples:
            return BaselineState.BASELINED
        return BaselineState.WARMING_UP

    @property
    def is_trusted(self) -> bool:
        return self.state is BaselineState.BASELINED

    def to_dict(self) -> dict[str, object]:
        return {
            "mean": self.mean,
            "std_dev": self.std_dev,
            "sample_count": self.sample_count,
            "state": self.state.value,
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
        }
