"""Run tracking engine: jitter filter, auto-pause and active-time accounting."""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass
from typing import Callable, Protocol

from run_tracker.geo import coordinate_problem, haversine_m
from run_tracker.models import (
    DataQualityEvent,
    GeoPoint,
    PositionSample,
    RunSession,
    RunSnapshot,
    RunStatus,
)
from run_tracker.quality import SignalQuality, quality_from_accuracy

logger = logging.getLogger(__name__)

SampleCallback = Callable[[PositionSample], None]
TickCallback = Callable[[], None]
DataQualityListener = Callable[[DataQualityEvent], None]
StatusListener = Callable[[RunStatus, RunStatus], None]


class PositionSource(Protocol):
    """Anything that can push position samples to a callback until unsubscribed."""

    def subscribe(self, callback: SampleCallback) -> None: ...

    def unsubscribe(self) -> None: ...


class TickScheduler(Protocol):
    """Periodic scheduler delivering one tick per interval until stopped."""

    def start(self, callback: TickCallback) -> None: ...

    def stop(self) -> None: ...


@dataclass(frozen=True, slots=True)
class TrackingParams:
    """Parameters controlling the jitter filter and auto-pause policy."""

    # A sample is accepted only if it is strictly farther than this from the last accepted point.
    min_distance_m: float = 5.0
    # Speeds strictly below this count toward the still streak.
    pause_threshold_mps: float = 0.5
    # While auto-paused, a speed strictly above this resumes the run.
    resume_threshold_mps: float = 1.0
    # Consecutive low-speed samples needed before auto-pausing.
    pause_debounce_samples: int = 5
    tick_interval_s: float = 1.0

    def __post_init__(self) -> None:
        if self.min_distance_m < 0:
            raise ValueError(f"min_distance_m 不能为负数：{self.min_distance_m!r}")
        if self.pause_threshold_mps < 0:
            raise ValueError(f"pause_threshold_mps 不能为负数：{self.pause_threshold_mps!r}")
        if self.resume_threshold_mps < self.pause_threshold_mps:
            raise ValueError(
                f"resume_threshold_mps ({self.resume_threshold_mps}) 必须 >= "
                f"pause_threshold_mps ({self.pause_threshold_mps})，否则状态会来回抖动"
            )
        if self.pause_debounce_samples < 1:
            raise ValueError(f"pause_debounce_samples 至少为 1：{self.pause_debounce_samples!r}")
        if not self.tick_interval_s > 0:
            raise ValueError(f"tick_interval_s 必须为正数：{self.tick_interval_s!r}")


class RunTracker:
    """Owns one run session and turns a noisy position stream into run statistics.

    The clock and the position source are independent drivers that call
    :meth:`on_clock_tick` and :meth:`on_position_sample`. Every entry point
    holds the same lock for its whole duration, so ticks and samples arriving
    on different threads never interleave partial updates.

    Example:
        tracker = RunTracker(source=IterablePositionSource(samples), clock=PeriodicClock())
        tracker.start_run(first_sample)
        ...
        tracker.end_run()
        print(tracker.distance_covered_m, tracker.seconds_elapsed)
    """

    def __init__(
        self,
        params: TrackingParams | None = None,
        *,
        source: PositionSource | None = None,
        clock: TickScheduler | None = None,
        on_data_quality: DataQualityListener | None = None,
        on_status_change: StatusListener | None = None,
    ) -> None:
        self.params = params or TrackingParams()
        self._source = source
        self._clock = clock
        self._on_data_quality = on_data_quality
        self._on_status_change = on_status_change
        self._lock = threading.RLock()
        self._session = RunSession()
        self._attached = False

    # ------------------------------------------------------------------ lifecycle

    def start_run(self, initial_position: PositionSample) -> None:
        """Start a new session anchored at ``initial_position``.

        Any previous session (and its clock/subscription) is discarded.

        Raises:
            ValueError: If the initial position has unusable coordinates.
        """

        problem = coordinate_problem(initial_position.latitude, initial_position.longitude)
        if problem is not None:
            raise ValueError(f"起点坐标无效（{problem.value}）：{initial_position!r}")

        self._detach()
        start = initial_position.point
        with self._lock:
            old_status = self._session.status
            self._session = RunSession(
                status=RunStatus.ACTIVE,
                start_position=initial_position,
                current_position=initial_position,
                last_accepted_point=start,
                route=[start],
            )
            self._attached = True
        logger.info("Run started at (%.6f, %.6f)", start.latitude, start.longitude)
        self._notify_status(old_status, RunStatus.ACTIVE)
        self._attach()

    def end_run(self) -> None:
        """Stop the run and freeze its statistics. Calling it again has no effect."""

        # Drivers go first: once they are stopped nothing else can reach the session.
        self._detach()
        with self._lock:
            s = self._session
            old_status = s.status
            if old_status is RunStatus.IDLE:
                return
            s.status = RunStatus.IDLE
            s.end_position = s.current_position
            distance, seconds = s.distance_covered_m, s.seconds_elapsed
        logger.info("Run ended: distance=%.1fm elapsed=%ss", distance, seconds)
        self._notify_status(old_status, RunStatus.IDLE)

    # ------------------------------------------------------------------ drivers

    def on_clock_tick(self) -> None:
        """Count one second of active time. Paused and idle sessions are frozen."""

        with self._lock:
            if self._session.status is RunStatus.ACTIVE:
                self._session.seconds_elapsed += 1

    def on_position_sample(self, sample: PositionSample) -> None:
        """Feed one GPS fix through validation, auto-pause and the jitter filter."""

        rejected: DataQualityEvent | None = None
        transition: tuple[RunStatus, RunStatus] | None = None
        with self._lock:
            s = self._session
            if s.status is RunStatus.IDLE:
                return
            s.samples_received += 1

            problem = coordinate_problem(sample.latitude, sample.longitude)
            if problem is not None:
                s.samples_rejected += 1
                rejected = DataQualityEvent(
                    reason=problem,
                    sample=sample,
                    detail=f"lat={sample.latitude!r}, lon={sample.longitude!r}",
                )
            else:
                speed = sample.speed_mps if math.isfinite(sample.speed_mps) else 0.0
                speed = max(0.0, speed)
                transition = self._apply_auto_pause(speed)
                s.current_position = sample
                if s.status is RunStatus.ACTIVE:
                    self._accept_if_moved(sample.point)

        if rejected is not None:
            logger.warning("Rejected sample (%s): %s", rejected.reason.value, rejected.detail)
            if self._on_data_quality is not None:
                self._on_data_quality(rejected)
        if transition is not None:
            self._notify_status(*transition)

    # ------------------------------------------------------------------ policy

    def _apply_auto_pause(self, speed: float) -> tuple[RunStatus, RunStatus] | None:
        s = self._session
        p = self.params
        if s.status is RunStatus.AUTO_PAUSED:
            if speed > p.resume_threshold_mps:
                s.status = RunStatus.ACTIVE
                s.still_streak = 0
                logger.info("Run resumed at speed %.2f m/s", speed)
                return RunStatus.AUTO_PAUSED, RunStatus.ACTIVE
            return None

        if speed < p.pause_threshold_mps:
            s.still_streak += 1
            if s.still_streak >= p.pause_debounce_samples:
                s.status = RunStatus.AUTO_PAUSED
                s.auto_pauses += 1
                logger.info("Run auto-paused after %s low-speed samples", s.still_streak)
                return RunStatus.ACTIVE, RunStatus.AUTO_PAUSED
        else:
            s.still_streak = 0
        return None

    def _accept_if_moved(self, point: GeoPoint) -> None:
        s = self._session
        ref = s.last_accepted_point
        if ref is None:
            return
        d = haversine_m(ref.latitude, ref.longitude, point.latitude, point.longitude)
        if d > self.params.min_distance_m:
            s.distance_covered_m += d
            s.route.append(point)
            s.last_accepted_point = point
            s.samples_accepted += 1
            logger.debug("Accepted +%.2fm, total %.2fm", d, s.distance_covered_m)

    # ------------------------------------------------------------------ wiring

    def _attach(self) -> None:
        # start_run claims the drivers under the lock; an end_run that already ran released them.
        with self._lock:
            if not self._attached:
                return
        if self._clock is not None:
            self._clock.start(self.on_clock_tick)
        if self._source is not None:
            self._source.subscribe(self.on_position_sample)
        with self._lock:
            released = not self._attached
        if released:
            # end_run slipped in while the drivers were starting.
            self._stop_drivers()

    def _detach(self) -> None:
        # Stopping a clock joins its thread, which may be waiting on the lock: never stop under it.
        with self._lock:
            attached, self._attached = self._attached, False
        if attached:
            self._stop_drivers()

    def _stop_drivers(self) -> None:
        if self._source is not None:
            self._source.unsubscribe()
        if self._clock is not None:
            self._clock.stop()

    def _notify_status(self, old: RunStatus, new: RunStatus) -> None:
        if self._on_status_change is not None and old is not new:
            self._on_status_change(old, new)

    # ------------------------------------------------------------------ accessors

    @property
    def status(self) -> RunStatus:
        with self._lock:
            return self._session.status

    @property
    def current_position(self) -> PositionSample | None:
        with self._lock:
            return self._session.current_position

    @property
    def start_position(self) -> PositionSample | None:
        with self._lock:
            return self._session.start_position

    @property
    def end_position(self) -> PositionSample | None:
        with self._lock:
            return self._session.end_position

    @property
    def distance_covered_m(self) -> float:
        with self._lock:
            return self._session.distance_covered_m

    @property
    def seconds_elapsed(self) -> int:
        with self._lock:
            return self._session.seconds_elapsed

    @property
    def route(self) -> tuple[GeoPoint, ...]:
        with self._lock:
            return tuple(self._session.route)

    @property
    def signal_quality(self) -> SignalQuality | None:
        """Quality of the latest fix, or None before any run."""

        pos = self.current_position
        return None if pos is None else quality_from_accuracy(pos.accuracy_m)

    def snapshot(self) -> RunSnapshot:
        with self._lock:
            return RunSnapshot.of(self._session)
