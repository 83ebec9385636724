import logging
import math
import sys
from pathlib import Path
from unittest.mock import Mock, patch

import numpy as np

sys.path.append(str(Path(__file__).resolve().parents[1]))

from impact_physics import (
    CelestialBody,
    Collider,
    Orbit,
    Part,
    Vehicle,
    estimate_vehicle_height,
)
from impact_tracker import (
    HEIGHT_REFRESH_INTERVAL_S,
    FlightFrame,
    HeightCache,
    ImpactTracker,
    TrackerState,
    current_description,
    current_impact_speed,
    current_seconds_until_impact,
)
from settings import ImpactSettings

RADIUS = 200000.0
G = 9.81


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


def make_body(has_atmosphere=False):
    return CelestialBody(
        name="Testbody",
        position=np.zeros(3),
        radius=RADIUS,
        has_atmosphere=has_atmosphere,
        time_warp_min_altitude=5000.0,
    )


def make_vehicle(altitude, vertical_speed, leg_tolerance=60.0, leg_drop=2.0):
    base = RADIUS + altitude
    leg_center = [base - leg_drop, 0.0, 0.0]
    parts = [
        Part(
            name="leg",
            position=leg_center,
            collider=Collider(center=leg_center, extents=[0.5, 0.5, 0.5]),
            crash_tolerance=leg_tolerance,
        )
    ]
    return Vehicle(
        parts=parts,
        position=[base, 0.0, 0.0],
        vertical_speed=vertical_speed,
        horizontal_surface_speed=0.0,
        orbit=Orbit(semi_major_axis=RADIUS / 2.0, eccentricity=0.99),
        gravitational_acceleration=[-G, 0.0, 0.0],
        orbital_velocity=[vertical_speed, 0.0, 0.0],
    )


def frame(altitude=1000.0, vertical_speed=-50.0, body=None, **kwargs):
    return FlightFrame(
        vehicle=make_vehicle(altitude, vertical_speed),
        body=body or make_body(),
        **kwargs,
    )


def expected_seconds(clearance, fall_speed):
    return (-fall_speed + math.sqrt(fall_speed ** 2 + 2.0 * G * clearance)) / G


def make_tracker(**kwargs):
    clock = kwargs.pop("clock", FakeClock())
    tracker = ImpactTracker(clock=clock, **kwargs)
    tracker.start()
    return tracker, clock


def assert_idle(tracker):
    assert tracker.state is TrackerState.IDLE
    assert math.isnan(tracker.impact_speed)
    assert math.isnan(tracker.seconds_until_impact)
    assert tracker.description is None
    assert tracker.lowest_part is None


# ------------------------------ Query interface ------------------------------


def test_accessors_report_no_value_when_uninitialised():
    assert math.isnan(current_impact_speed(None))
    assert current_description(None) is None
    assert math.isnan(current_seconds_until_impact(None))


def test_started_tracker_is_idle():
    tracker, _ = make_tracker()
    assert_idle(tracker)
    assert math.isnan(current_impact_speed(tracker))
    assert current_description(tracker) is None


# ------------------------------ Tracking ------------------------------


def test_eligible_frame_publishes_prediction():
    tracker, _ = make_tracker()

    shown = tracker.late_update(frame())

    # leg box bottom sits 2.5 m below the reference point
    t = expected_seconds(1000.0 - 2.5, 50.0)
    assert shown
    assert tracker.state is TrackerState.TRACKING
    assert np.isclose(tracker.seconds_until_impact, t)
    assert np.isclose(current_seconds_until_impact(tracker), t)
    assert tracker.impact_verb == "Impact"
    assert tracker.description == "Impact in 10s"
    assert tracker.lowest_part.name == "leg"
    assert tracker.impact_speed > 60.0


def test_seconds_and_description_only_change_on_whole_second():
    formatter = Mock(side_effect=lambda s: f"{s}s")
    tracker, clock = make_tracker(formatter=formatter)

    tracker.late_update(frame(altitude=1000.0))
    first_seconds = tracker.seconds_until_impact
    first_speed = tracker.impact_speed

    clock.now += 0.02
    tracker.late_update(frame(altitude=999.0))
    assert tracker.seconds_until_impact == first_seconds
    assert tracker.impact_speed != first_speed
    assert formatter.call_count == 1

    clock.now += 0.5
    tracker.late_update(frame(altitude=900.0))
    assert tracker.seconds_until_impact < first_seconds
    assert tracker.description == "Impact in 9s"
    assert formatter.call_count == 2


def test_gentle_descent_reads_touchdown():
    tracker, _ = make_tracker()
    tracker.late_update(frame(altitude=12.5, vertical_speed=-3.0))
    assert tracker.impact_verb == "Touchdown"
    assert tracker.description.startswith("Touchdown in ")


# ------------------------------ Eligibility ------------------------------


def test_atmosphere_forces_idle_and_clears_prediction():
    tracker, _ = make_tracker()
    tracker.late_update(frame())
    assert tracker.has_info

    shown = tracker.late_update(frame(body=make_body(has_atmosphere=True)))

    assert not shown
    assert_idle(tracker)
    assert tracker.impact_verb == "N/A"


def test_disabled_setting_never_tracks():
    tracker, _ = make_tracker(settings=ImpactSettings(show_impact=False))
    assert not tracker.late_update(frame())
    assert_idle(tracker)


def test_prediction_beyond_horizon_is_not_shown():
    tracker, _ = make_tracker(settings=ImpactSettings(max_time_until_impact_s=5.0))
    assert not tracker.late_update(frame())
    assert_idle(tracker)

    assert tracker.late_update(frame(altitude=100.0))
    assert tracker.seconds_until_impact <= 5.0


def test_missing_vehicle_or_body_is_idle():
    tracker, _ = make_tracker()
    assert not tracker.late_update(FlightFrame(vehicle=None, body=make_body()))
    assert not tracker.late_update(FlightFrame(vehicle=make_vehicle(1000.0, -50.0), body=None))
    assert_idle(tracker)


def test_rising_vehicle_clears_prediction():
    tracker, _ = make_tracker()
    tracker.late_update(frame())
    tracker.late_update(frame(vertical_speed=5.0))
    assert_idle(tracker)


def test_burn_overlay_suppresses_tracking():
    tracker, _ = make_tracker()
    tracker.late_update(frame())
    assert tracker.has_info

    assert not tracker.late_update(frame(burn_overlay_active=True))
    assert_idle(tracker)

    assert not tracker.late_update(frame(burn_overlay_active=True))
    assert tracker.late_update(frame())


def test_published_values_are_all_or_nothing():
    tracker, clock = make_tracker()
    frames = [
        frame(),
        frame(vertical_speed=1.0),
        frame(altitude=500.0),
        frame(body=make_body(has_atmosphere=True)),
        frame(altitude=50.0, vertical_speed=-10.0),
        frame(burn_overlay_active=True),
    ]
    for f in frames:
        clock.now += 0.1
        tracker.late_update(f)
        speed_known = not math.isnan(tracker.impact_speed)
        seconds_known = math.isfinite(tracker.seconds_until_impact)
        assert speed_known == seconds_known
        assert (tracker.description is not None) == (speed_known and seconds_known)


# ------------------------------ Fault containment ------------------------------


def test_frame_fault_is_logged_and_previous_prediction_kept(caplog):
    formatter = Mock(side_effect=["10s", RuntimeError("formatter broke"), "8s"])
    tracker, clock = make_tracker(formatter=formatter)

    tracker.late_update(frame(altitude=1000.0))
    published = (tracker.seconds_until_impact, tracker.impact_speed, tracker.description)

    clock.now += 1.0
    with caplog.at_level(logging.ERROR, logger="impact_tracker"):
        shown = tracker.late_update(frame(altitude=900.0))

    assert shown
    assert (tracker.seconds_until_impact, tracker.impact_speed, tracker.description) == published
    assert "Impact tracking failed for this frame" in caplog.text

    clock.now += 1.0
    tracker.late_update(frame(altitude=800.0))
    assert tracker.description == "Impact in 8s"


def test_collaborator_fault_does_not_escape():
    tracker, _ = make_tracker()
    with patch("impact_tracker.solve_impact", side_effect=ValueError("bad state")):
        assert tracker.late_update(frame()) is False
    assert tracker.late_update(frame())


# ------------------------------ Height throttle ------------------------------


def test_height_estimate_is_throttled_between_frames():
    tracker, clock = make_tracker()
    with patch("impact_tracker.estimate_vehicle_height", wraps=estimate_vehicle_height) as mock_est:
        for _ in range(3):
            tracker.late_update(frame())
            clock.now += 0.1
        assert mock_est.call_count == 1

        clock.now += HEIGHT_REFRESH_INTERVAL_S
        tracker.late_update(frame())
        assert mock_est.call_count == 2


def test_reset_forces_fresh_height_estimate():
    tracker, clock = make_tracker()
    with patch("impact_tracker.estimate_vehicle_height", wraps=estimate_vehicle_height) as mock_est:
        tracker.late_update(frame())
        tracker.late_update(frame(body=make_body(has_atmosphere=True)))
        clock.now += 0.01
        tracker.late_update(frame())
        assert mock_est.call_count == 2


def test_height_cache_returns_cached_value_within_interval():
    cache = HeightCache()
    recompute = Mock(side_effect=[(2.5, "a"), (7.0, "b")])

    assert cache.maybe_refresh(10.0, recompute) == (2.5, "a")
    assert cache.maybe_refresh(10.0 + HEIGHT_REFRESH_INTERVAL_S, recompute) == (2.5, "a")
    assert recompute.call_count == 1

    assert cache.maybe_refresh(10.3, recompute) == (7.0, "b")
    assert recompute.call_count == 2


def test_height_cache_refresh_matches_direct_estimate():
    vehicle = make_vehicle(300.0, -20.0)
    body = make_body()
    cache = HeightCache()

    first = cache.maybe_refresh(0.0, lambda: estimate_vehicle_height(vehicle, body))
    again = cache.maybe_refresh(0.1, lambda: estimate_vehicle_height(vehicle, body))
    later = cache.maybe_refresh(1.0, lambda: estimate_vehicle_height(vehicle, body))

    assert again == first
    assert np.isclose(later[0], estimate_vehicle_height(vehicle, body)[0])


def test_height_cache_invalidate():
    cache = HeightCache()
    cache.maybe_refresh(0.0, lambda: (1.0, None))
    cache.invalidate()
    assert not cache.has_value
    assert cache.maybe_refresh(0.0, lambda: (4.0, None)) == (4.0, None)
