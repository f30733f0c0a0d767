"""Geospatial utilities (no external dependencies)."""

from __future__ import annotations

import math
from typing import Final

from run_tracker.models import DataQualityReason

EARTH_RADIUS_M: Final[float] = 6_371_000.0  # mean Earth radius in meters


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Compute Haversine distance in meters between two lat/lon points.

    Args:
        lat1: Latitude 1 in degrees.
        lon1: Longitude 1 in degrees.
        lat2: Latitude 2 in degrees.
        lon2: Longitude 2 in degrees.

    Returns:
        Distance in meters. Identical points give exactly 0.0; degenerate input
        (non-finite values) also gives 0.0 instead of NaN.
    """

    if lat1 == lat2 and lon1 == lon2:
        return 0.0
    if not all(math.isfinite(v) for v in (lat1, lon1, lat2, lon2)):
        return 0.0

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2.0) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2.0) ** 2
    # rounding can push a slightly outside [0, 1] for antipodal points
    a = min(1.0, max(0.0, a))
    c = 2.0 * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))
    return EARTH_RADIUS_M * c


def coordinate_problem(lat: float, lon: float) -> DataQualityReason | None:
    """Return why a coordinate pair is unusable, or None if it is fine."""

    if not (math.isfinite(lat) and math.isfinite(lon)):
        return DataQualityReason.NON_FINITE_COORDINATE
    if not -90.0 <= lat <= 90.0:
        return DataQualityReason.LATITUDE_OUT_OF_RANGE
    if not -180.0 <= lon <= 180.0:
        return DataQualityReason.LONGITUDE_OUT_OF_RANGE
    return None
