"""Shared fixtures for run_tracker tests."""

import math

import pytest

from run_tracker.models import PositionSample

# Meters per degree of latitude on the 6,371 km sphere used by haversine_m.
M_PER_DEG = 6_371_000.0 * math.pi / 180.0

T0_MS = 1_735_686_000_000  # 2025-01-01 07:00:00 +08:00


def north_of_origin(meters: float) -> float:
    """Latitude that lies exactly ``meters`` north of (0, 0)."""
    return meters / M_PER_DEG


@pytest.fixture
def sample():
    """Factory for PositionSample with sensible defaults."""

    def _make(lat=0.0, lon=0.0, speed=3.0, accuracy=5.0, t=0):
        return PositionSample(
            timestamp_ms=T0_MS + int(t * 1000),
            latitude=lat,
            longitude=lon,
            accuracy_m=accuracy,
            speed_mps=speed,
        )

    return _make


@pytest.fixture
def meters_north(sample):
    """Factory for a sample ``m`` meters north of the origin."""

    def _make(m, speed=3.0, t=0):
        return sample(lat=north_of_origin(m), speed=speed, t=t)

    return _make
