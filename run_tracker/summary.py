"""Post-run summary: pace, average speed, calories and route export."""

from __future__ import annotations

import csv
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from run_tracker.models import GeoPoint, RunSnapshot

CaloriesFn = Callable[[float], float]


def linear_calories(kcal_per_km: float, base_kcal: float = 0.0) -> CaloriesFn:
    """Build a calories function linear in distance (meters -> kcal)."""

    def _calories(distance_m: float) -> float:
        return base_kcal + kcal_per_km * distance_m / 1000.0

    return _calories


def format_clock(seconds: float) -> str:
    """Render elapsed time as m:ss, or h:mm:ss once it reaches an hour."""

    s = int(round(max(0.0, seconds)))
    h = s // 3600
    m = (s % 3600) // 60
    sec = s % 60
    if h:
        return f"{h}:{m:02d}:{sec:02d}"
    return f"{m}:{sec:02d}"



def format_local_time(epoch_ms: int, tz_name: str) -> str:
    """Render a sample timestamp as local ISO time with offset, e.g. "2025-01-01 07:00:00+08:00".

    Raises:
        ValueError: If ``tz_name`` is not a known IANA zone.
    """

    try:
        zone = ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"无效时区：{tz_name!r}。例如可用：Asia/Shanghai") from exc
    return datetime.fromtimestamp(epoch_ms / 1000.0, tz=zone).isoformat(sep=" ")


@dataclass(frozen=True, slots=True)
class RunSummary:
    """Numbers a presentation sink shows once a run has ended."""

    distance_m: float
    seconds_elapsed: int
    route_points: int
    pace_s_per_km: float | None
    avg_speed_mps: float | None
    calories_kcal: float | None
    auto_pauses: int
    samples_accepted: int
    samples_rejected: int
    start: GeoPoint | None
    end: GeoPoint | None
    start_ms: int | None
    end_ms: int | None

    @property
    def distance_km(self) -> float:
        return self.distance_m / 1000.0

    @property
    def avg_speed_kmh(self) -> float | None:
        return None if self.avg_speed_mps is None else self.avg_speed_mps * 3.6

    @property
    def pace_text(self) -> str:
        """Pace as m:ss per km, or "--" when no distance was covered."""

        if self.pace_s_per_km is None:
            return "--"
        return f"{format_clock(self.pace_s_per_km)}/km"

    def as_record(self) -> dict[str, object]:
        """Flat, JSON-friendly view (distance rounded to centimeters)."""

        return {
            "distance_m": round(self.distance_m, 2),
            "seconds_elapsed": self.seconds_elapsed,
            "elapsed": format_clock(self.seconds_elapsed),
            "route_points": self.route_points,
            "pace_s_per_km": None if self.pace_s_per_km is None else round(self.pace_s_per_km, 1),
            "avg_speed_mps": None if self.avg_speed_mps is None else round(self.avg_speed_mps, 3),
            "calories_kcal": None if self.calories_kcal is None else round(self.calories_kcal, 1),
            "auto_pauses": self.auto_pauses,
            "samples_accepted": self.samples_accepted,
            "samples_rejected": self.samples_rejected,
            "start_latitude": None if self.start is None else self.start.latitude,
            "start_longitude": None if self.start is None else self.start.longitude,
            "end_latitude": None if self.end is None else self.end.latitude,
            "end_longitude": None if self.end is None else self.end.longitude,
            "start_epoch_ms": self.start_ms,
            "end_epoch_ms": self.end_ms,
        }


def summarize(snapshot: RunSnapshot, calories: CaloriesFn | None = None) -> RunSummary:
    """Compute summary figures from a (normally finished) run snapshot.

    Args:
        snapshot: Session snapshot, usually taken after ``end_run()``.
        calories: Optional distance(m) -> kcal function, see :func:`linear_calories`.
    """

    distance = snapshot.distance_covered_m
    seconds = snapshot.seconds_elapsed
    pace = seconds / (distance / 1000.0) if distance > 0 else None
    speed = distance / seconds if seconds > 0 else None
    start = snapshot.start_position
    end = snapshot.end_position
    return RunSummary(
        distance_m=distance,
        seconds_elapsed=seconds,
        route_points=len(snapshot.route),
        pace_s_per_km=pace,
        avg_speed_mps=speed,
        calories_kcal=None if calories is None else calories(distance),
        auto_pauses=snapshot.auto_pauses,
        samples_accepted=snapshot.samples_accepted,
        samples_rejected=snapshot.samples_rejected,
        start=None if start is None else start.point,
        end=None if end is None else end.point,
        start_ms=None if start is None else start.timestamp_ms,
        end_ms=None if end is None else end.timestamp_ms,
    )


def write_route_csv(route: Iterable[GeoPoint], out_path: str | Path) -> None:
    """Write accepted route points to CSV (seq, latitude, longitude)."""

    p = Path(out_path)
    with p.open("w", encoding="utf-8", newline="") as f:
        w = csv.DictWriter(f, fieldnames=["seq", "latitude", "longitude"])
        w.writeheader()
        for i, pt in enumerate(route):
            w.writerow({"seq": i, "latitude": pt.latitude, "longitude": pt.longitude})
