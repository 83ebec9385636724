"""Per-frame impact tracking.

The tracker is driven by the host once per rendered frame.  It decides whether
an impact prediction should be shown, runs the solver, and publishes the last
valid prediction for display code.  It deliberately offers no burn countdown:
the terrain model only looks at the ground directly below the vessel, so a
countdown would be misleading as soon as the vessel moves sideways.
"""

from __future__ import annotations

import enum
import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from impact_physics import (
    CelestialBody,
    ImpactSolution,
    Part,
    Vehicle,
    as_whole_seconds,
    estimate_vehicle_height,
    solve_impact,
)
from settings import ImpactSettings
from time_formatter import format_duration

LOG = logging.getLogger(__name__)

# Minimum wall-clock spacing between vessel height estimates.
HEIGHT_REFRESH_INTERVAL_S = 0.25

VERB_NONE = "N/A"


class TrackerState(enum.Enum):
    IDLE = "idle"
    TRACKING = "tracking"


@dataclass(frozen=True)
class FlightFrame:
    """What the host knows about the flight on this frame."""

    vehicle: Optional[Vehicle]
    body: Optional[CelestialBody]
    # True while the burn-countdown display is showing its own information.
    burn_overlay_active: bool = False


class HeightCache:
    """Last vessel height estimate and the time after which it goes stale."""

    def __init__(self, interval_s: float = HEIGHT_REFRESH_INTERVAL_S) -> None:
        self.interval_s = float(interval_s)
        self.height = math.nan
        self.lowest_part: Optional[Part] = None
        self.valid_until = -math.inf

    @property
    def has_value(self) -> bool:
        return not math.isnan(self.height)

    def invalidate(self) -> None:
        self.height = math.nan
        self.lowest_part = None
        self.valid_until = -math.inf

    def maybe_refresh(
        self,
        now: float,
        recompute: Callable[[], Tuple[float, Optional[Part]]],
    ) -> Tuple[float, Optional[Part]]:
        """Return the cached estimate, recomputing it if absent or expired."""

        if not self.has_value or now > self.valid_until:
            height, lowest_part = recompute()
            self.height = float(height)
            self.lowest_part = lowest_part
            self.valid_until = now + self.interval_s
            LOG.debug("Vessel height refreshed: %.2f m", self.height)
        return self.height, self.lowest_part


class ImpactTracker:
    """Tracks time to surface impact for the active vessel.

    Consumers that display the prediction are handed the tracker instance and
    read ``impact_speed``, ``description`` and ``seconds_until_impact``.
    """

    def __init__(
        self,
        settings: Optional[ImpactSettings] = None,
        formatter: Callable[[int], str] = format_duration,
        clock: Callable[[], float] = time.monotonic,
        refresh_interval_s: float = HEIGHT_REFRESH_INTERVAL_S,
    ) -> None:
        self.settings = settings if settings is not None else ImpactSettings()
        self.formatter = formatter
        self.clock = clock
        self.height_cache = HeightCache(refresh_interval_s)
        self.state = TrackerState.IDLE
        self.reset()

    # ------------------------------------------------------------------
    # Host entry points

    def start(self) -> None:
        """Begin a tracking session with the height estimate immediately due."""

        try:
            self.reset()
        except Exception:  # noqa: BLE001
            LOG.exception("Impact tracker failed to start")

    def late_update(self, frame: FlightFrame) -> bool:
        """Per-frame hook; returns True when a prediction is on display.

        A failure anywhere in the frame is logged and the previously published
        prediction is kept; the next frame starts afresh.
        """

        try:
            if frame.burn_overlay_active:
                if self.has_info:
                    self.reset()
                return False
            return self.recalculate(frame)
        except Exception:  # noqa: BLE001
            LOG.exception("Impact tracking failed for this frame")
            return self.state is TrackerState.TRACKING

    # ------------------------------------------------------------------
    # Published prediction

    @property
    def impact_speed(self) -> float:
        return self._impact_speed

    @property
    def description(self) -> Optional[str]:
        return self._description

    @property
    def seconds_until_impact(self) -> float:
        return self._seconds_until_impact

    @property
    def impact_verb(self) -> str:
        return self._impact_verb

    @property
    def lowest_part(self) -> Optional[Part]:
        return self._lowest_part

    @property
    def has_info(self) -> bool:
        return not math.isnan(self._impact_speed)

    # ------------------------------------------------------------------

    def recalculate(self, frame: FlightFrame) -> bool:
        """Update the published prediction for one frame.

        Cheap to call every frame: the vessel height estimate is throttled by
        the height cache.
        """

        vehicle = frame.vehicle
        body = frame.body
        should_display = bool(self.settings.show_impact)

        # Parachutes make acceleration far too noisy in atmosphere.
        should_display &= body is not None and vehicle is not None and not body.has_atmosphere

        solution: Optional[ImpactSolution] = None
        if should_display:
            solution = solve_impact(vehicle, body, lambda: self._vessel_height(vehicle, body))
            if not solution.predicted or (
                solution.seconds_until_impact > self.settings.max_time_until_impact_s
            ):
                should_display = False

        if not should_display:
            if self.state is TrackerState.TRACKING:
                LOG.debug("Impact tracking idle")
            self.reset()
            return False

        seconds = solution.seconds_until_impact
        remaining = as_whole_seconds(seconds)
        description = self._description
        publish_seconds = remaining != as_whole_seconds(self._seconds_until_impact)
        if publish_seconds:
            description = f"{solution.verb} in {self.formatter(remaining)}"

        # Commit only once everything for this frame has been computed.
        if self.state is TrackerState.IDLE:
            LOG.debug("Impact tracking engaged: %s", solution.verb)
        self.state = TrackerState.TRACKING
        self._impact_speed = solution.impact_speed
        self._impact_verb = solution.verb
        self._lowest_part = solution.lowest_part
        if publish_seconds:
            self._seconds_until_impact = seconds
            self._description = description
        return True

    def reset(self) -> None:
        self.state = TrackerState.IDLE
        self.height_cache.invalidate()
        self._impact_verb = VERB_NONE
        self._lowest_part: Optional[Part] = None
        self._impact_speed = math.nan
        self._seconds_until_impact = math.nan
        self._description: Optional[str] = None

    def _vessel_height(self, vehicle: Vehicle, body: CelestialBody) -> Tuple[float, Optional[Part]]:
        return self.height_cache.maybe_refresh(
            self.clock(), lambda: estimate_vehicle_height(vehicle, body)
        )


# ------------------------- Read-only accessors -------------------------


def current_impact_speed(tracker: Optional[ImpactTracker]) -> float:
    """Projected surface impact speed, NaN when there is none."""

    return math.nan if tracker is None else tracker.impact_speed


def current_description(tracker: Optional[ImpactTracker]) -> Optional[str]:
    """Text to display for the impact (including time until), or None."""

    return None if tracker is None else tracker.description


def current_seconds_until_impact(tracker: Optional[ImpactTracker]) -> float:
    return math.nan if tracker is None else tracker.seconds_until_impact


__all__ = [
    "HEIGHT_REFRESH_INTERVAL_S",
    "VERB_NONE",
    "TrackerState",
    "FlightFrame",
    "HeightCache",
    "ImpactTracker",
    "current_impact_speed",
    "current_description",
    "current_seconds_until_impact",
]
