"""Concrete drivers for the engine: a 1 Hz clock, an iterable position feed and offline replay."""

from __future__ import annotations

import logging
import threading
from typing import Iterable, Iterator

from run_tracker.engine import (
    DataQualityListener,
    RunTracker,
    SampleCallback,
    StatusListener,
    TickCallback,
    TrackingParams,
)
from run_tracker.geo import coordinate_problem
from run_tracker.models import DataQualityEvent, PositionSample, RunSnapshot

logger = logging.getLogger(__name__)


class PeriodicClock:
    """Background thread that calls a callback once per interval until stopped."""

    def __init__(self, interval_s: float = 1.0, name: str = "run-clock") -> None:
        if not interval_s > 0:
            raise ValueError(f"interval_s 必须为正数：{interval_s!r}")
        self.interval_s = interval_s
        self._name = name
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self, callback: TickCallback) -> None:
        self.stop()
        stop = threading.Event()
        self._stop = stop

        def _run() -> None:
            while not stop.wait(self.interval_s):
                callback()

        self._thread = threading.Thread(target=_run, name=self._name, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop ticking. When this returns from another thread, no tick is in flight."""

        self._stop.set()
        t, self._thread = self._thread, None
        if t is not None and t is not threading.current_thread():
            t.join()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()


class IterablePositionSource:
    """Feeds samples from an iterable on a background thread.

    The iterable is consumed lazily and cached, so a later ``subscribe`` (a
    restarted run) replays every sample again, even from a generator.

    Args:
        samples: Samples in delivery order.
        speedup: If set, sleep between samples according to their timestamps
            divided by this factor (1.0 = real time). None delivers as fast as possible.
    """

    def __init__(self, samples: Iterable[PositionSample], speedup: float | None = None) -> None:
        if speedup is not None and not speedup > 0:
            raise ValueError(f"speedup 必须为正数：{speedup!r}")
        self._pending: Iterator[PositionSample] = iter(samples)
        self._seen: list[PositionSample] = []
        self._speedup = speedup
        self._stop = threading.Event()
        self._exhausted = threading.Event()
        self._thread: threading.Thread | None = None
        self.delivered = 0

    def subscribe(self, callback: SampleCallback) -> None:
        self.unsubscribe()
        stop = threading.Event()
        self._stop = stop
        self._exhausted.clear()

        def _run() -> None:
            prev_ms: int | None = None
            try:
                for sample in self._samples():
                    if self._speedup is not None and prev_ms is not None:
                        gap_s = max(0.0, (sample.timestamp_ms - prev_ms) / 1000.0) / self._speedup
                        if stop.wait(gap_s):
                            return
                    if stop.is_set():
                        return
                    prev_ms = sample.timestamp_ms
                    callback(sample)
                    self.delivered += 1
            finally:
                self._exhausted.set()

        self._thread = threading.Thread(target=_run, name="position-feed", daemon=True)
        self._thread.start()

    def _samples(self) -> Iterator[PositionSample]:
        yield from self._seen
        for sample in self._pending:
            self._seen.append(sample)
            yield sample

    def unsubscribe(self) -> None:
        """Stop delivery. When this returns from another thread, no sample is in flight."""

        self._stop.set()
        t, self._thread = self._thread, None
        if t is not None and t is not threading.current_thread():
            t.join()

    def wait_exhausted(self, timeout: float | None = None) -> bool:
        """Block until every sample was delivered (or delivery stopped)."""

        return self._exhausted.wait(timeout)


def replay(
    samples: Iterable[PositionSample],
    params: TrackingParams | None = None,
    *,
    on_data_quality: DataQualityListener | None = None,
    on_status_change: StatusListener | None = None,
) -> RunSnapshot:
    """Replay recorded samples through a fresh engine, deterministically and without threads.

    The first sample with usable coordinates starts the run. Before each later
    sample, one clock tick is delivered for every whole tick interval of sample
    time elapsed since the start. The run is ended after the last sample.

    Returns:
        Snapshot of the finished (idle) session. If no usable sample exists the
        snapshot is an empty idle session.
    """

    params = params or TrackingParams()
    tracker = RunTracker(params, on_data_quality=on_data_quality, on_status_change=on_status_change)
    it = iter(samples)

    start: PositionSample | None = None
    for sample in it:
        problem = coordinate_problem(sample.latitude, sample.longitude)
        if problem is None:
            start = sample
            break
        logger.warning("Skipping unusable sample before run start (%s)", problem.value)
        if on_data_quality is not None:
            on_data_quality(DataQualityEvent(reason=problem, sample=sample, detail="before run start"))
    if start is None:
        return tracker.snapshot()

    tracker.start_run(start)
    interval_ms = params.tick_interval_s * 1000.0
    ticks = 0
    for sample in it:
        due = int((sample.timestamp_ms - start.timestamp_ms) // interval_ms)
        while ticks < due:
            tracker.on_clock_tick()
            ticks += 1
        tracker.on_position_sample(sample)
    tracker.end_run()
    return tracker.snapshot()
