"""Core impact-prediction primitives.

This module holds the geometry and kinematics used to decide whether an
unpowered vehicle is about to hit the surface of the body it orbits.  Like the
rest of the numerical helpers it is free of any Streamlit imports so the
solver can be driven from the tracker, from scripts and from unit tests.

The terrain model is deliberately local: only the ground elevation directly
below the vehicle is considered, so the results are a time-to-impact estimate
rather than a guidance solution.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple, Union

import numpy as np

# ---------------------------- Constants ----------------------------

# Falling slower than this (or rising) is not tracked.
MIN_FALL_SPEED_MPS = 2.0

# A net-outward trajectory must reach at least this far past the surface
# before it counts as an impact.
ESCAPE_MARGIN_M = 1.0

# Part selection for large vehicles
FULL_SCAN_PART_LIMIT = 50
LOWEST_PART_SAMPLE = 30

DEFAULT_CRASH_TOLERANCE_MPS = 9.0

VERB_IMPACT = "Impact"
VERB_SPLASH = "Splash"
VERB_TOUCHDOWN = "Touchdown"


# ------------------------------ Geometry ------------------------------


def _vec(value: Sequence[float]) -> np.ndarray:
    return np.asarray(value, dtype=float).reshape(3)


@dataclass(eq=False)
class Collider:
    """World-space axis-aligned collision bounds for a part."""

    center: np.ndarray
    extents: np.ndarray
    enabled: bool = True

    def __post_init__(self) -> None:
        self.center = _vec(self.center)
        self.extents = np.abs(_vec(self.extents))

    def closest_point_on_bounds(self, point: Sequence[float]) -> np.ndarray:
        lo = self.center - self.extents
        hi = self.center + self.extents
        return np.clip(_vec(point), lo, hi)


@dataclass(eq=False)
class Part:
    name: str
    position: np.ndarray
    collider: Optional[Collider] = None
    crash_tolerance: float = DEFAULT_CRASH_TOLERANCE_MPS

    def __post_init__(self) -> None:
        self.position = _vec(self.position)

    @property
    def collidable(self) -> bool:
        return self.collider is not None and self.collider.enabled


@dataclass(frozen=True)
class Orbit:
    """Osculating orbit reduced to the two elements the solver needs."""

    semi_major_axis: float
    eccentricity: float

    @property
    def periapsis(self) -> float:
        """Distance from the body centre at the lowest point of the orbit."""

        return self.semi_major_axis * (1.0 - self.eccentricity)

    @classmethod
    def from_state_vectors(
        cls,
        position: Sequence[float],
        velocity: Sequence[float],
        mu: float,
    ) -> "Orbit":
        """Derive elements from body-relative position and velocity.

        Hyperbolic trajectories come out with a negative semi-major axis and
        ``e > 1``, which still yields the correct periapsis distance.  An
        exactly parabolic trajectory is nudged to a very large ellipse.
        """

        r = _vec(position)
        v = _vec(velocity)
        r_mag = float(np.linalg.norm(r))
        v_sq = float(np.dot(v, v))
        energy_term = 2.0 / r_mag - v_sq / mu
        if abs(energy_term) < 1e-15:
            energy_term = math.copysign(1e-15, energy_term or 1.0)
        sma = 1.0 / energy_term
        e_vec = ((v_sq - mu / r_mag) * r - float(np.dot(r, v)) * v) / mu
        return cls(semi_major_axis=float(sma), eccentricity=float(np.linalg.norm(e_vec)))


def _flat_terrain(_point: np.ndarray) -> float:
    return 0.0


@dataclass(eq=False)
class CelestialBody:
    name: str
    position: np.ndarray
    radius: float
    has_atmosphere: bool = False
    has_ocean: bool = False
    # Lowest altitude at which time acceleration is permitted.
    time_warp_min_altitude: float = 0.0
    terrain_elevation: Callable[[np.ndarray], float] = field(default=_flat_terrain, repr=False)

    def __post_init__(self) -> None:
        self.position = _vec(self.position)

    def terrain_altitude_at(self, point: Sequence[float]) -> float:
        """Terrain elevation above the mean datum directly below ``point``."""

        return float(self.terrain_elevation(_vec(point)))


@dataclass(eq=False)
class Vehicle:
    """Snapshot of a vehicle as supplied by the host for one frame.

    The part list may differ from frame to frame (staging, docking), so
    nothing derived from it is kept beyond the call that reads it.
    """

    parts: List[Part]
    position: np.ndarray
    vertical_speed: float
    horizontal_surface_speed: float
    orbit: Orbit
    gravitational_acceleration: np.ndarray
    orbital_velocity: np.ndarray
    landed_or_splashed: bool = False
    packed: bool = False
    is_crew_eva: bool = False

    def __post_init__(self) -> None:
        self.position = _vec(self.position)
        self.gravitational_acceleration = _vec(self.gravitational_acceleration)
        self.orbital_velocity = _vec(self.orbital_velocity)

    def altitude_above(self, body: CelestialBody) -> float:
        """Altitude above the body's mean datum (sea level)."""

        return float(np.linalg.norm(self.position - body.position)) - body.radius


# ------------------------- Height estimation -------------------------


def choose_parts(vehicle: Vehicle, body: CelestialBody) -> List[Part]:
    """Return the parts worth examining for the vehicle's lowest point.

    Small vessels are scanned in full.  For large ones only the
    ``LOWEST_PART_SAMPLE`` collidable parts nearest the body centre are kept;
    the sort is stable so equal distances keep their input order.
    """

    parts = list(vehicle.parts)
    if len(parts) < FULL_SCAN_PART_LIMIT:
        return parts

    ranked = sorted(
        (part for part in parts if part.collidable),
        key=lambda part: float(np.linalg.norm(part.position - body.position)),
    )
    return ranked[:LOWEST_PART_SAMPLE]


def estimate_vehicle_height(
    vehicle: Vehicle, body: CelestialBody
) -> Tuple[float, Optional[Part]]:
    """Return (height from reference point to lowest extent, lowest part).

    Subtracting the height from the vehicle altitude gives the altitude of the
    bottom of the vessel in its current orientation.  This is the expensive
    step of the pipeline and should not run every frame.
    """

    if vehicle.packed or vehicle.is_crew_eva:
        return 0.0, None

    lowest_part: Optional[Part] = None
    min_distance = math.inf
    for part in choose_parts(vehicle, body):
        if not part.collidable:
            continue
        bound_point = part.collider.closest_point_on_bounds(body.position)
        distance = float(np.linalg.norm(bound_point - body.position))
        if distance < min_distance:
            min_distance = distance
            lowest_part = part

    if lowest_part is None:
        return 0.0, None

    vehicle_distance = float(np.linalg.norm(vehicle.position - body.position))
    return vehicle_distance - min_distance, lowest_part


# --------------------------- Impact solving ---------------------------


@dataclass(frozen=True)
class NoImpact:
    """No trackable impact on the current trajectory."""

    reason: str

    @property
    def seconds_until_impact(self) -> float:
        return math.inf

    @property
    def impact_speed(self) -> float:
        return math.nan

    @property
    def predicted(self) -> bool:
        return False


@dataclass(frozen=True)
class PredictedImpact:
    seconds_until_impact: float
    impact_speed: float
    verb: str
    lowest_part: Optional[Part] = None

    @property
    def predicted(self) -> bool:
        return True


ImpactSolution = Union[NoImpact, PredictedImpact]
HeightSource = Callable[[], Tuple[float, Optional[Part]]]


def centripetal_acceleration(
    relative_position: Sequence[float], orbital_velocity: Sequence[float]
) -> float:
    """Apparent upward acceleration from the surface curving away below us."""

    r = _vec(relative_position)
    r_mag = float(np.linalg.norm(r))
    if r_mag <= 0.0:
        return 0.0
    lateral_speed = float(np.linalg.norm(np.cross(r / r_mag, _vec(orbital_velocity))))
    return lateral_speed * lateral_speed / r_mag


def fall_time(fall_speed: float, clearance: float, downward_accel: float) -> float:
    """Time to fall ``clearance`` from ``fall_speed`` under constant acceleration.

    Returns ``inf`` when the surface is never reached.  Uses the rationalised
    root ``2c / (v + sqrt(v^2 + 2ac))``, which stays accurate as the
    acceleration goes to zero and reduces to ``c / v`` there.
    """

    discriminant = fall_speed * fall_speed + 2.0 * downward_accel * clearance
    if discriminant < 0.0:
        return math.inf
    denominator = fall_speed + math.sqrt(discriminant)
    if denominator <= 0.0:
        return math.inf
    t = 2.0 * clearance / denominator
    if not math.isfinite(t) or t < 0.0:
        return math.inf
    return t


def impact_speed_after(
    fall_speed: float, downward_accel: float, t: float, horizontal_speed: float
) -> float:
    vertical = fall_speed + t * downward_accel
    return math.hypot(vertical, horizontal_speed)


def solve_impact(
    vehicle: Vehicle,
    body: CelestialBody,
    height_source: HeightSource,
) -> ImpactSolution:
    """Predict when and how fast the vehicle meets the surface.

    ``height_source`` supplies ``(vessel height, lowest part)`` and is only
    consulted once the cheap early exits have passed.  Propulsion is ignored
    on purpose: including thrust makes the figure jump whenever the throttle
    moves.
    """

    if vehicle.landed_or_splashed:
        return NoImpact("landed")

    fall_speed = -float(vehicle.vertical_speed)
    if fall_speed < MIN_FALL_SPEED_MPS:
        return NoImpact("not falling")

    if vehicle.orbit.periapsis > body.radius + body.time_warp_min_altitude:
        return NoImpact("orbiting")

    altitude = vehicle.altitude_above(body)
    vessel_height, lowest_part = height_source()
    clearance = altitude - body.terrain_altitude_at(vehicle.position) - vessel_height
    verb = VERB_IMPACT

    # Ground below sea level: the water surface is what we hit.
    is_water = body.has_ocean and clearance > altitude
    if is_water:
        clearance = altitude
        verb = VERB_SPLASH

    if clearance <= 0.0:
        return NoImpact("below surface")

    relative_position = vehicle.position - body.position
    centripetal = centripetal_acceleration(relative_position, vehicle.orbital_velocity)
    downward_accel = float(np.linalg.norm(vehicle.gravitational_acceleration)) - centripetal

    if downward_accel < 0.0:
        max_fall_distance = -(fall_speed * fall_speed) / (2.0 * downward_accel)
        if max_fall_distance < clearance + ESCAPE_MARGIN_M:
            return NoImpact("outbound")

    seconds = fall_time(fall_speed, clearance, downward_accel)
    if not math.isfinite(seconds):
        return NoImpact("unreachable")

    speed = impact_speed_after(
        fall_speed, downward_accel, seconds, float(vehicle.horizontal_surface_speed)
    )
    if not is_water and lowest_part is not None and speed <= lowest_part.crash_tolerance:
        verb = VERB_TOUCHDOWN

    return PredictedImpact(
        seconds_until_impact=seconds,
        impact_speed=speed,
        verb=verb,
        lowest_part=lowest_part,
    )


def as_whole_seconds(value: float) -> int:
    """Truncate to whole seconds; NaN and infinities map to -1."""

    if math.isnan(value) or math.isinf(value):
        return -1
    return int(value)


__all__ = [
    # constants
    "MIN_FALL_SPEED_MPS",
    "ESCAPE_MARGIN_M",
    "FULL_SCAN_PART_LIMIT",
    "LOWEST_PART_SAMPLE",
    "DEFAULT_CRASH_TOLERANCE_MPS",
    "VERB_IMPACT",
    "VERB_SPLASH",
    "VERB_TOUCHDOWN",
    # model
    "Collider",
    "Part",
    "Orbit",
    "CelestialBody",
    "Vehicle",
    "NoImpact",
    "PredictedImpact",
    "ImpactSolution",
    "HeightSource",
    # helpers
    "choose_parts",
    "estimate_vehicle_height",
    "centripetal_acceleration",
    "fall_time",
    "impact_speed_after",
    "solve_impact",
    "as_whole_seconds",
]
