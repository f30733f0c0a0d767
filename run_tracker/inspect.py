"""Inspect recorded samples before replaying them."""

from __future__ import annotations

import math
import statistics
from collections import Counter
from dataclasses import dataclass, field
from typing import Sequence

from run_tracker.geo import coordinate_problem
from run_tracker.models import PositionSample
from run_tracker.quality import SignalQuality, quality_from_accuracy


@dataclass(frozen=True, slots=True)
class SamplingStats:
    """How regularly fixes arrived, over intervals between consecutive samples.

    Attributes:
        intervals: Number of forward intervals (backwards steps are skipped).
        median_s: Median interval in seconds.
        p95_s: 95th percentile interval in seconds.
        max_s: Longest interval in seconds.
        dropouts: Intervals longer than the gap threshold (lost signal, stalled source).
        dropout_s: Total seconds spent inside those dropouts.
    """

    intervals: int
    median_s: float
    p95_s: float
    max_s: float
    dropouts: int
    dropout_s: float


def sampling_stats(samples: Sequence[PositionSample], gap_threshold_s: float = 10.0) -> SamplingStats | None:
    """Measure the intervals between consecutive samples in delivery order.

    Returns None when there is no forward interval at all.
    """

    gaps = sorted(
        (b.timestamp_ms - a.timestamp_ms) / 1000.0
        for a, b in zip(samples, samples[1:])
        if b.timestamp_ms >= a.timestamp_ms
    )
    if not gaps:
        return None
    n = len(gaps)
    dropouts = [g for g in gaps if g > gap_threshold_s]
    return SamplingStats(
        intervals=n,
        median_s=statistics.median(gaps),
        p95_s=gaps[int(0.95 * (n - 1))],
        max_s=gaps[-1],
        dropouts=len(dropouts),
        dropout_s=sum(dropouts),
    )


@dataclass(frozen=True, slots=True)
class InspectResult:
    """High-level sample inspection result."""

    samples: int
    min_time_ms: int | None
    max_time_ms: int | None
    sampling: SamplingStats | None
    min_lat: float | None
    max_lat: float | None
    min_lon: float | None
    max_lon: float | None
    duplicates_timestamp: int
    out_of_order: int
    malformed_coordinates: int
    negative_speed: int
    quality_counts: dict[str, int] = field(default_factory=dict)


def inspect_samples(samples: Sequence[PositionSample], gap_threshold_s: float = 10.0) -> InspectResult:
    """Inspect already-loaded samples.

    Coordinate ranges only cover samples with usable coordinates.
    """

    if not samples:
        return InspectResult(
            samples=0,
            min_time_ms=None,
            max_time_ms=None,
            sampling=None,
            min_lat=None,
            max_lat=None,
            min_lon=None,
            max_lon=None,
            duplicates_timestamp=0,
            out_of_order=0,
            malformed_coordinates=0,
            negative_speed=0,
        )

    out_of_order = sum(
        1 for i in range(1, len(samples)) if samples[i].timestamp_ms < samples[i - 1].timestamp_ms
    )
    times = sorted(s.timestamp_ms for s in samples)
    dupe = 0
    for i in range(1, len(times)):
        if times[i] == times[i - 1]:
            dupe += 1

    valid = [s for s in samples if coordinate_problem(s.latitude, s.longitude) is None]
    lats = [s.latitude for s in valid]
    lons = [s.longitude for s in valid]
    quality = Counter(quality_from_accuracy(s.accuracy_m) for s in samples)
    return InspectResult(
        samples=len(samples),
        min_time_ms=times[0],
        max_time_ms=times[-1],
        sampling=sampling_stats(samples, gap_threshold_s=gap_threshold_s),
        min_lat=min(lats) if lats else None,
        max_lat=max(lats) if lats else None,
        min_lon=min(lons) if lons else None,
        max_lon=max(lons) if lons else None,
        duplicates_timestamp=dupe,
        out_of_order=out_of_order,
        malformed_coordinates=len(samples) - len(valid),
        negative_speed=sum(1 for s in samples if math.isfinite(s.speed_mps) and s.speed_mps < 0),
        quality_counts={q.value: quality.get(q, 0) for q in SignalQuality},
    )
