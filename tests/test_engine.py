"""
Run Tracker Engine Tests
========================

Tests for the jitter filter, auto-pause hysteresis and active-time accounting.
"""

import math

import pytest

from run_tracker.drivers import IterablePositionSource, PeriodicClock
from run_tracker.engine import RunTracker, TrackingParams
from run_tracker.geo import haversine_m
from run_tracker.models import DataQualityReason, GeoPoint, RunStatus
from run_tracker.quality import SignalQuality


class RecordingSource:
    """Position source double that records subscribe/unsubscribe calls."""

    def __init__(self, tracker_ref=None):
        self.callback = None
        self.calls = []
        self.tracker_ref = tracker_ref

    def subscribe(self, callback):
        self.calls.append("subscribe")
        self.callback = callback

    def unsubscribe(self):
        status = self.tracker_ref().status if self.tracker_ref else None
        self.calls.append(("unsubscribe", status))
        self.callback = None


class RecordingClock:
    def __init__(self):
        self.callback = None
        self.calls = []

    def start(self, callback):
        self.calls.append("start")
        self.callback = callback

    def stop(self):
        self.calls.append("stop")
        self.callback = None


class TestStartRun:
    """Tests for starting a session."""

    def test_initial_state_is_idle(self):
        """A fresh tracker has no session."""
        tracker = RunTracker()
        assert tracker.status is RunStatus.IDLE
        assert tracker.distance_covered_m == 0.0
        assert tracker.route == ()
        assert tracker.current_position is None
        assert tracker.signal_quality is None

    def test_start_resets_everything(self, sample):
        """start_run anchors route, positions and counters at the initial fix."""
        tracker = RunTracker()
        first = sample()
        tracker.start_run(first)

        assert tracker.status is RunStatus.ACTIVE
        assert tracker.start_position == first
        assert tracker.current_position == first
        assert tracker.end_position is None
        assert tracker.distance_covered_m == 0.0
        assert tracker.seconds_elapsed == 0
        assert tracker.route == (GeoPoint(0.0, 0.0),)

    def test_restart_discards_previous_session(self, sample, meters_north):
        """A second start_run leaves no state from the first run."""
        tracker = RunTracker()
        tracker.start_run(sample())
        tracker.on_clock_tick()
        tracker.on_position_sample(meters_north(50))
        tracker.end_run()

        tracker.start_run(sample(lat=1.0, lon=1.0))
        assert tracker.distance_covered_m == 0.0
        assert tracker.seconds_elapsed == 0
        assert tracker.route == (GeoPoint(1.0, 1.0),)
        assert tracker.end_position is None

    def test_start_rejects_malformed_initial_position(self, sample):
        """A run cannot be anchored on a NaN coordinate."""
        tracker = RunTracker()
        with pytest.raises(ValueError):
            tracker.start_run(sample(lat=math.nan))
        assert tracker.status is RunStatus.IDLE

    def test_start_attaches_drivers(self, sample):
        """Clock and source are started by start_run."""
        source = RecordingSource()
        clock = RecordingClock()
        tracker = RunTracker(source=source, clock=clock)
        tracker.start_run(sample())

        assert source.calls == ["subscribe"]
        assert clock.calls == ["start"]
        assert source.callback == tracker.on_position_sample
        assert clock.callback == tracker.on_clock_tick

    def test_restart_cancels_previous_drivers(self, sample):
        """Starting again stops the old clock and subscription first."""
        source = RecordingSource()
        clock = RecordingClock()
        tracker = RunTracker(source=source, clock=clock)
        tracker.start_run(sample())
        tracker.start_run(sample())

        assert clock.calls == ["start", "stop", "start"]
        assert [c if isinstance(c, str) else c[0] for c in source.calls] == [
            "subscribe",
            "unsubscribe",
            "subscribe",
        ]


class TestClockTick:
    """Tests for active-time accounting."""

    def test_tick_counts_while_active(self, sample):
        tracker = RunTracker()
        tracker.start_run(sample())
        for _ in range(10):
            tracker.on_clock_tick()
        assert tracker.seconds_elapsed == 10

    def test_tick_ignored_while_idle(self):
        tracker = RunTracker()
        tracker.on_clock_tick()
        assert tracker.seconds_elapsed == 0

    def test_tick_frozen_while_auto_paused(self, sample):
        """Paused time does not count."""
        tracker = RunTracker()
        tracker.start_run(sample())
        tracker.on_clock_tick()
        for _ in range(5):
            tracker.on_position_sample(sample(speed=0.0))
        assert tracker.status is RunStatus.AUTO_PAUSED

        for _ in range(7):
            tracker.on_clock_tick()
        assert tracker.seconds_elapsed == 1


class TestAutoPause:
    """Tests for the speed hysteresis state machine."""

    def test_debounce_and_asymmetric_thresholds(self, sample):
        """4 slow samples keep it active, the 5th pauses, 0.6 m/s stays paused, 1.1 m/s resumes."""
        tracker = RunTracker()
        tracker.start_run(sample())

        for _ in range(4):
            tracker.on_position_sample(sample(speed=0.3))
            assert tracker.status is RunStatus.ACTIVE

        tracker.on_position_sample(sample(speed=0.3))
        assert tracker.status is RunStatus.AUTO_PAUSED

        tracker.on_position_sample(sample(speed=0.6))
        assert tracker.status is RunStatus.AUTO_PAUSED

        tracker.on_position_sample(sample(speed=1.1))
        assert tracker.status is RunStatus.ACTIVE

    def test_fast_sample_resets_still_streak(self, sample):
        """A sample at or above the pause threshold breaks the streak."""
        tracker = RunTracker()
        tracker.start_run(sample())
        for _ in range(4):
            tracker.on_position_sample(sample(speed=0.1))
        tracker.on_position_sample(sample(speed=0.5))
        for _ in range(4):
            tracker.on_position_sample(sample(speed=0.1))
        assert tracker.status is RunStatus.ACTIVE

    def test_resume_needs_fresh_streak_to_pause_again(self, sample):
        """After resuming, five new slow samples are needed to pause again."""
        tracker = RunTracker()
        tracker.start_run(sample())
        for _ in range(5):
            tracker.on_position_sample(sample(speed=0.0))
        tracker.on_position_sample(sample(speed=2.0))
        assert tracker.status is RunStatus.ACTIVE

        for _ in range(4):
            tracker.on_position_sample(sample(speed=0.0))
        assert tracker.status is RunStatus.ACTIVE
        tracker.on_position_sample(sample(speed=0.0))
        assert tracker.status is RunStatus.AUTO_PAUSED
        assert tracker.snapshot().auto_pauses == 2

    def test_negative_speed_is_clamped(self, sample):
        """Negative speed counts as standing still, never as movement."""
        tracker = RunTracker()
        tracker.start_run(sample())
        for _ in range(5):
            tracker.on_position_sample(sample(speed=-1.0))
        assert tracker.status is RunStatus.AUTO_PAUSED

    def test_nan_speed_treated_as_zero(self, sample):
        tracker = RunTracker()
        tracker.start_run(sample())
        for _ in range(5):
            tracker.on_position_sample(sample(speed=math.nan))
        assert tracker.status is RunStatus.AUTO_PAUSED

    def test_custom_debounce(self, sample):
        tracker = RunTracker(TrackingParams(pause_debounce_samples=2))
        tracker.start_run(sample())
        tracker.on_position_sample(sample(speed=0.0))
        assert tracker.status is RunStatus.ACTIVE
        tracker.on_position_sample(sample(speed=0.0))
        assert tracker.status is RunStatus.AUTO_PAUSED

    def test_status_listener_sees_every_transition(self, sample):
        """Listener receives start, pause, resume and end transitions in order."""
        seen = []
        tracker = RunTracker(on_status_change=lambda old, new: seen.append((old, new)))
        tracker.start_run(sample())
        for _ in range(5):
            tracker.on_position_sample(sample(speed=0.0))
        tracker.on_position_sample(sample(speed=2.0))
        tracker.end_run()

        assert seen == [
            (RunStatus.IDLE, RunStatus.ACTIVE),
            (RunStatus.ACTIVE, RunStatus.AUTO_PAUSED),
            (RunStatus.AUTO_PAUSED, RunStatus.ACTIVE),
            (RunStatus.ACTIVE, RunStatus.IDLE),
        ]


class TestJitterFilter:
    """Tests for distance accumulation and route simplification."""

    def test_sub_threshold_moves_are_discarded(self, sample, meters_north):
        """3 m drift does not count and does not move the reference point."""
        tracker = RunTracker()
        tracker.start_run(sample())

        tracker.on_position_sample(meters_north(3))
        tracker.on_position_sample(meters_north(3))
        assert tracker.distance_covered_m == 0.0
        assert len(tracker.route) == 1

        tracker.on_position_sample(meters_north(6))
        assert tracker.distance_covered_m == pytest.approx(6.0, abs=1e-6)
        assert len(tracker.route) == 2

    def test_exactly_threshold_is_not_accepted(self, sample):
        """Acceptance requires strictly more than the minimum distance."""
        tracker = RunTracker(TrackingParams(min_distance_m=10.0))
        tracker.start_run(sample())
        far = sample(lat=0.0001)
        d = haversine_m(0.0, 0.0, 0.0001, 0.0)

        tracker2 = RunTracker(TrackingParams(min_distance_m=d))
        tracker2.start_run(sample())
        tracker2.on_position_sample(far)
        assert tracker2.distance_covered_m == 0.0

        tracker.on_position_sample(far)
        assert tracker.distance_covered_m == pytest.approx(d)

    def test_distance_is_sum_of_accepted_legs(self, sample, meters_north):
        """Total distance equals the pairwise haversine sum over accepted route points."""
        tracker = RunTracker()
        tracker.start_run(sample())
        history = []
        for m in [2, 8, 9, 12, 30, 31, 33, 40, 80]:
            tracker.on_position_sample(meters_north(m))
            history.append(tracker.distance_covered_m)

        route = tracker.route
        expected = sum(
            haversine_m(a.latitude, a.longitude, b.latitude, b.longitude) for a, b in zip(route, route[1:])
        )
        assert tracker.distance_covered_m == pytest.approx(expected)
        assert history == sorted(history)
        # 0 -> 8 -> 30 -> 40 -> 80
        assert len(route) == 5
        assert tracker.distance_covered_m == pytest.approx(80.0, abs=1e-6)

    def test_no_distance_while_auto_paused(self, sample, meters_north):
        """Movement reported while paused is neither counted nor added to the route."""
        tracker = RunTracker()
        tracker.start_run(sample())
        for _ in range(5):
            tracker.on_position_sample(sample(speed=0.0))
        tracker.on_position_sample(meters_north(50, speed=0.8))

        assert tracker.status is RunStatus.AUTO_PAUSED
        assert tracker.distance_covered_m == 0.0
        assert len(tracker.route) == 1
        # current position still follows the latest fix
        assert tracker.current_position.latitude == pytest.approx(meters_north(50).latitude)

    def test_resume_sample_is_measured_from_last_accepted(self, sample, meters_north):
        """The sample that resumes the run is measured against the pre-pause reference."""
        tracker = RunTracker()
        tracker.start_run(sample())
        for _ in range(5):
            tracker.on_position_sample(sample(speed=0.0))
        tracker.on_position_sample(meters_north(20, speed=2.0))

        assert tracker.status is RunStatus.ACTIVE
        assert tracker.distance_covered_m == pytest.approx(20.0, abs=1e-6)

    def test_short_run_then_frozen(self, sample):
        """Start at origin, 10 ticks, one ~11 m sample, end: everything freezes."""
        tracker = RunTracker()
        tracker.start_run(sample())
        for _ in range(10):
            tracker.on_clock_tick()
        assert tracker.seconds_elapsed == 10

        tracker.on_position_sample(sample(lat=0.0001, lon=0.0))
        assert tracker.distance_covered_m == pytest.approx(11.1, abs=0.1)
        assert len(tracker.route) == 2

        tracker.end_run()
        before = tracker.snapshot()
        tracker.on_clock_tick()
        tracker.on_position_sample(sample(lat=0.01, lon=0.0))
        assert tracker.snapshot() == before


class TestDataQuality:
    """Tests for malformed sample handling."""

    @pytest.mark.parametrize(
        "lat, lon, reason",
        [
            (math.nan, 0.0, DataQualityReason.NON_FINITE_COORDINATE),
            (0.0, math.inf, DataQualityReason.NON_FINITE_COORDINATE),
            (91.0, 0.0, DataQualityReason.LATITUDE_OUT_OF_RANGE),
            (0.0, -180.5, DataQualityReason.LONGITUDE_OUT_OF_RANGE),
        ],
    )
    def test_malformed_sample_is_reported_not_applied(self, sample, lat, lon, reason):
        events = []
        tracker = RunTracker(on_data_quality=events.append)
        first = sample()
        tracker.start_run(first)
        for _ in range(4):
            tracker.on_position_sample(sample(speed=0.0))

        bad = sample(lat=lat, lon=lon, speed=0.0)
        tracker.on_position_sample(bad)

        assert len(events) == 1
        assert events[0].reason is reason
        assert events[0].sample == bad
        # the malformed sample did not complete the still streak
        assert tracker.status is RunStatus.ACTIVE
        assert tracker.current_position != bad
        assert tracker.distance_covered_m == 0.0
        assert tracker.snapshot().samples_rejected == 1

    def test_malformed_sample_ignored_when_idle(self, sample):
        """No session, no report."""
        events = []
        tracker = RunTracker(on_data_quality=events.append)
        tracker.on_position_sample(sample(lat=math.nan))
        assert events == []


class TestEndRun:
    """Tests for finishing a run."""

    def test_end_freezes_and_sets_end_position(self, sample, meters_north):
        tracker = RunTracker()
        tracker.start_run(sample())
        last = meters_north(25)
        tracker.on_position_sample(last)
        tracker.end_run()

        assert tracker.status is RunStatus.IDLE
        assert tracker.end_position == last
        assert tracker.start_position == sample()

    def test_end_is_idempotent(self, sample, meters_north):
        """Calling end_run twice gives the same final numbers as once."""
        tracker = RunTracker()
        tracker.start_run(sample())
        tracker.on_clock_tick()
        tracker.on_position_sample(meters_north(25))
        tracker.end_run()
        once = tracker.snapshot()
        tracker.end_run()
        assert tracker.snapshot() == once

    def test_end_before_start_is_noop(self):
        tracker = RunTracker()
        tracker.end_run()
        assert tracker.status is RunStatus.IDLE
        assert tracker.end_position is None

    def test_drivers_detached_before_status_flip(self, sample):
        """Unsubscribe happens while the session is still live, then it goes idle."""
        holder = {}
        source = RecordingSource(tracker_ref=lambda: holder["t"])
        clock = RecordingClock()
        tracker = RunTracker(source=source, clock=clock)
        holder["t"] = tracker

        tracker.start_run(sample())
        tracker.end_run()
        tracker.end_run()

        assert source.calls == ["subscribe", ("unsubscribe", RunStatus.ACTIVE)]
        assert clock.calls == ["start", "stop"]

    def test_late_sample_after_end_is_noop(self, sample, meters_north):
        """A sample delivered in the race window after end_run changes nothing."""
        source = RecordingSource()
        tracker = RunTracker(source=source)
        tracker.start_run(sample())
        deliver = source.callback
        tracker.end_run()

        before = tracker.snapshot()
        deliver(meters_north(100))
        assert tracker.snapshot() == before

    def test_end_from_start_listener_leaves_drivers_stopped(self, sample):
        """A listener that ends the run as soon as it starts leaves nothing attached."""
        source = RecordingSource()
        clock = RecordingClock()
        seen = []

        def _on_status(old, new):
            seen.append((old, new))
            if new is RunStatus.ACTIVE:
                tracker.end_run()

        tracker = RunTracker(source=source, clock=clock, on_status_change=_on_status)
        tracker.start_run(sample())

        assert tracker.status is RunStatus.IDLE
        assert seen == [(RunStatus.IDLE, RunStatus.ACTIVE), (RunStatus.ACTIVE, RunStatus.IDLE)]
        assert source.callback is None
        assert clock.callback is None
        assert source.calls[-1][0] == "unsubscribe"
        assert clock.calls[-1] == "stop"

    def test_end_while_drivers_starting_stops_them(self, sample):
        """An end_run that lands while the drivers are being started still stops them."""
        source = RecordingSource()

        class EndingClock(RecordingClock):
            def start(self, callback):
                super().start(callback)
                tracker.end_run()

        clock = EndingClock()
        tracker = RunTracker(source=source, clock=clock)
        tracker.start_run(sample())

        assert tracker.status is RunStatus.IDLE
        assert source.callback is None
        assert clock.callback is None

    def test_end_from_start_listener_with_real_drivers(self, sample, meters_north):
        source = IterablePositionSource([meters_north(10 * i) for i in range(1, 50)], speedup=1.0)
        clock = PeriodicClock(interval_s=0.01)

        def _on_status(old, new):
            if new is RunStatus.ACTIVE:
                tracker.end_run()

        tracker = RunTracker(source=source, clock=clock, on_status_change=_on_status)
        tracker.start_run(sample())

        assert tracker.status is RunStatus.IDLE
        assert not clock.running
        assert source.delivered == 0


class TestSnapshot:
    def test_snapshot_is_detached_copy(self, sample, meters_north):
        """A snapshot does not change when the session keeps running."""
        tracker = RunTracker()
        tracker.start_run(sample())
        snap = tracker.snapshot()
        tracker.on_position_sample(meters_north(20))

        assert len(snap.route) == 1
        assert len(tracker.snapshot().route) == 2

    def test_signal_quality_of_current_fix(self, sample):
        tracker = RunTracker()
        tracker.start_run(sample(accuracy=4.0))
        assert tracker.signal_quality is SignalQuality.EXCELLENT
        tracker.on_position_sample(sample(accuracy=45.0))
        assert tracker.signal_quality is SignalQuality.POOR


class TestTrackingParams:
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"min_distance_m": -1.0},
            {"pause_threshold_mps": -0.1},
            {"pause_threshold_mps": 1.0, "resume_threshold_mps": 0.5},
            {"pause_debounce_samples": 0},
            {"tick_interval_s": 0.0},
        ],
    )
    def test_invalid_params_rejected(self, kwargs):
        with pytest.raises(ValueError):
            TrackingParams(**kwargs)

    def test_defaults(self):
        p = TrackingParams()
        assert p.min_distance_m == 5.0
        assert p.pause_threshold_mps == 0.5
        assert p.resume_threshold_mps == 1.0
        assert p.pause_debounce_samples == 5
        assert p.tick_interval_s == 1.0
