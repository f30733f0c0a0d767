"""Data models for position samples, routes and run sessions."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Final


@dataclass(frozen=True, slots=True)
class GeoPoint:
    """A latitude/longitude pair stored in the route."""

    latitude: float
    longitude: float


@dataclass(frozen=True, slots=True)
class PositionSample:
    """A single GPS fix delivered by the position source.

    Attributes:
        timestamp_ms: Unix epoch milliseconds.
        latitude: Latitude in decimal degrees.
        longitude: Longitude in decimal degrees.
        accuracy_m: Horizontal accuracy in meters. Some sources use -1.0 for unknown.
        speed_mps: Instantaneous speed in meters/second, as reported (may be negative).
    """

    timestamp_ms: int
    latitude: float
    longitude: float
    accuracy_m: float = -1.0
    speed_mps: float = 0.0

    @property
    def timestamp_s(self) -> float:
        """Unix epoch seconds as float."""

        return self.timestamp_ms / 1000.0

    @property
    def point(self) -> GeoPoint:
        return GeoPoint(self.latitude, self.longitude)


class RunStatus(str, Enum):
    """Movement state of a run session."""

    IDLE = "idle"
    ACTIVE = "active"
    AUTO_PAUSED = "auto_paused"


class DataQualityReason(str, Enum):
    NON_FINITE_COORDINATE = "non_finite_coordinate"
    LATITUDE_OUT_OF_RANGE = "latitude_out_of_range"
    LONGITUDE_OUT_OF_RANGE = "longitude_out_of_range"


@dataclass(frozen=True, slots=True)
class DataQualityEvent:
    """A sample the engine refused to use."""

    reason: DataQualityReason
    sample: PositionSample
    detail: str = ""


@dataclass(slots=True)
class RunSession:
    """Aggregate state of one tracking session.

    Only the engine mutates this object. ``route`` is append-only while the
    session is alive; a new run gets a fresh session instead of a cleared one.
    """

    status: RunStatus = RunStatus.IDLE
    start_position: PositionSample | None = None
    current_position: PositionSample | None = None
    end_position: PositionSample | None = None
    distance_covered_m: float = 0.0
    seconds_elapsed: int = 0
    last_accepted_point: GeoPoint | None = None
    still_streak: int = 0
    route: list[GeoPoint] = field(default_factory=list)
    samples_received: int = 0
    samples_accepted: int = 0
    samples_rejected: int = 0
    auto_pauses: int = 0


@dataclass(frozen=True, slots=True)
class RunSnapshot:
    """Read-only copy of a session handed to presentation/persistence sinks."""

    status: RunStatus
    start_position: PositionSample | None
    current_position: PositionSample | None
    end_position: PositionSample | None
    distance_covered_m: float
    seconds_elapsed: int
    route: tuple[GeoPoint, ...]
    samples_received: int
    samples_accepted: int
    samples_rejected: int
    auto_pauses: int

    @classmethod
    def of(cls, session: RunSession) -> RunSnapshot:
        return cls(
            status=session.status,
            start_position=session.start_position,
            current_position=session.current_position,
            end_position=session.end_position,
            distance_covered_m=session.distance_covered_m,
            seconds_elapsed=session.seconds_elapsed,
            route=tuple(session.route),
            samples_received=session.samples_received,
            samples_accepted=session.samples_accepted,
            samples_rejected=session.samples_rejected,
            auto_pauses=session.auto_pauses,
        )


DEFAULT_TZ: Final[str] = "Asia/Shanghai"
