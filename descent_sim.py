"""Unpowered descent harness that plays the host for the impact tracker.

The harness integrates a point-mass lander falling towards an airless body,
rebuilds the vehicle snapshot the host would supply on every frame, and calls
:meth:`ImpactTracker.late_update` at a fixed frame rate on a simulated clock.
The result is a frame log as a pandas DataFrame so predictions can be compared
against the time at which the lander actually reaches the surface.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Union

import numpy as np
import pandas as pd

from impact_physics import (
    CelestialBody,
    Collider,
    Orbit,
    Part,
    Vehicle,
    estimate_vehicle_height,
)
from impact_tracker import FlightFrame, ImpactTracker
from settings import ImpactSettings

DEFAULT_FRAME_RATE_HZ = 50.0
DEFAULT_MAX_DURATION_S = 900.0

FRAME_COLUMNS = [
    "t_s",
    "altitude_m",
    "clearance_m",
    "vertical_speed_mps",
    "horizontal_speed_mps",
    "speed_mps",
    "state",
    "seconds_until_impact",
    "impact_speed_mps",
    "verb",
    "description",
]


@dataclass(frozen=True)
class BodyPreset:
    name: str
    mu: float                 # gravitational parameter [m^3/s^2]
    radius_m: float           # mean radius [m]
    has_atmosphere: bool = False
    has_ocean: bool = False
    time_warp_min_altitude_m: float = 5000.0

    def to_body(
        self, terrain_elevation: Union[float, Callable[[np.ndarray], float]] = 0.0
    ) -> CelestialBody:
        if callable(terrain_elevation):
            terrain = terrain_elevation
        else:
            offset = float(terrain_elevation)

            def terrain(_point: np.ndarray) -> float:
                return offset

        return CelestialBody(
            name=self.name,
            position=np.zeros(3),
            radius=self.radius_m,
            has_atmosphere=self.has_atmosphere,
            has_ocean=self.has_ocean,
            time_warp_min_altitude=self.time_warp_min_altitude_m,
            terrain_elevation=terrain,
        )


MOON = BodyPreset(name="Moon", mu=4.9048695e12, radius_m=1737.4e3)
MERCURY = BodyPreset(name="Mercury", mu=2.2032e13, radius_m=2439.7e3, time_warp_min_altitude_m=10000.0)
CERES = BodyPreset(name="Ceres", mu=6.26325e10, radius_m=469.7e3, time_warp_min_altitude_m=2000.0)
# Airless test world with a sea, for exercising splash predictions.
OCEAN_MOON = BodyPreset(name="Oceanus", mu=4.9e12, radius_m=1700e3, has_ocean=True)
# Atmospheric body: the tracker stays idle here.
MARS = BodyPreset(name="Mars", mu=4.282837e13, radius_m=3389.5e3, has_atmosphere=True)

BODY_PRESETS: Dict[str, BodyPreset] = {
    preset.name: preset for preset in (MOON, MERCURY, CERES, OCEAN_MOON, MARS)
}


@dataclass(frozen=True)
class LanderGeometry:
    """Hull with foot pads hanging below it; all dimensions in metres."""

    hull_half_size_m: float = 1.5
    leg_length_m: float = 2.0
    pad_half_size_m: float = 0.25
    leg_spread_m: float = 1.8
    n_legs: int = 4
    hull_crash_tolerance_mps: float = 8.0
    leg_crash_tolerance_mps: float = 12.0


class SimulatedClock:
    """Callable clock whose time only moves when the harness advances it."""

    def __init__(self, start_s: float = 0.0) -> None:
        self.now = float(start_s)

    def __call__(self) -> float:
        return self.now

    def advance(self, dt_s: float) -> None:
        self.now += float(dt_s)


def _tangent_basis(up: np.ndarray) -> tuple:
    ref = np.array([0.0, 0.0, 1.0]) if abs(up[2]) < 0.9 else np.array([1.0, 0.0, 0.0])
    east = np.cross(ref, up)
    east /= np.linalg.norm(east)
    north = np.cross(up, east)
    return east, north


def build_lander(position: np.ndarray, up: np.ndarray, geometry: LanderGeometry) -> List[Part]:
    """Lay out hull and legs around ``position`` with ``up`` pointing away from the body."""

    position = np.asarray(position, dtype=float)
    up = np.asarray(up, dtype=float)
    hull_extents = np.full(3, geometry.hull_half_size_m)
    parts = [
        Part(
            name="hull",
            position=position,
            collider=Collider(center=position, extents=hull_extents),
            crash_tolerance=geometry.hull_crash_tolerance_mps,
        )
    ]

    east, north = _tangent_basis(up)
    drop = geometry.hull_half_size_m + geometry.leg_length_m
    pad_extents = np.full(3, geometry.pad_half_size_m)
    for k in range(int(geometry.n_legs)):
        angle = 2.0 * math.pi * k / max(1, int(geometry.n_legs))
        lateral = geometry.leg_spread_m * (math.cos(angle) * east + math.sin(angle) * north)
        pad_pos = position - drop * up + lateral
        parts.append(
            Part(
                name=f"leg{k + 1}",
                position=pad_pos,
                collider=Collider(center=pad_pos, extents=pad_extents),
                crash_tolerance=geometry.leg_crash_tolerance_mps,
            )
        )
    return parts


def vehicle_snapshot(
    r: np.ndarray,
    v: np.ndarray,
    preset: BodyPreset,
    geometry: LanderGeometry,
    landed: bool = False,
) -> Vehicle:
    """Vehicle state as the host would report it for body-relative ``r``, ``v``."""

    r_mag = float(np.linalg.norm(r))
    up = r / r_mag
    vertical_speed = float(np.dot(v, up))
    horizontal = v - vertical_speed * up
    return Vehicle(
        parts=build_lander(r, up, geometry),
        position=r,
        vertical_speed=vertical_speed,
        # Non-rotating body: surface speed equals orbital speed.
        horizontal_surface_speed=float(np.linalg.norm(horizontal)),
        orbit=Orbit.from_state_vectors(r, v, preset.mu),
        gravitational_acceleration=-preset.mu * r / r_mag ** 3,
        orbital_velocity=v,
        landed_or_splashed=landed,
    )


def surface_clearance(vehicle: Vehicle, body: CelestialBody) -> float:
    """True distance between the lander's lowest extent and the surface below."""

    altitude = vehicle.altitude_above(body)
    surface = body.terrain_altitude_at(vehicle.position)
    if body.has_ocean:
        surface = max(surface, 0.0)
    height, _ = estimate_vehicle_height(vehicle, body)
    return altitude - surface - height


def simulate_descent(
    preset: BodyPreset = MOON,
    initial_altitude_m: float = 5000.0,
    vertical_speed_mps: float = -50.0,
    horizontal_speed_mps: float = 0.0,
    terrain_elevation: Union[float, Callable[[np.ndarray], float]] = 0.0,
    geometry: Optional[LanderGeometry] = None,
    settings: Optional[ImpactSettings] = None,
    frame_rate_hz: float = DEFAULT_FRAME_RATE_HZ,
    max_duration_s: float = DEFAULT_MAX_DURATION_S,
    tracker: Optional[ImpactTracker] = None,
    burn_overlay: Optional[Callable[[float], bool]] = None,
) -> pd.DataFrame:
    """Fly an unpowered descent and log the tracker's output on every frame.

    ``burn_overlay`` receives the simulated time and reports whether the
    burn-countdown display is active on that frame.  A supplied ``tracker``
    is used as-is (its clock is not replaced).
    """

    if frame_rate_hz <= 0.0:
        raise ValueError("frame_rate_hz must be positive")

    geometry = geometry or LanderGeometry()
    body = preset.to_body(terrain_elevation)
    dt = 1.0 / float(frame_rate_hz)

    clock = SimulatedClock()
    if tracker is None:
        tracker = ImpactTracker(settings=settings, clock=clock)
    tracker.start()

    r = np.array([preset.radius_m + float(initial_altitude_m), 0.0, 0.0])
    v = np.array([float(vertical_speed_mps), float(horizontal_speed_mps), 0.0])

    data: List[Dict] = []
    contact_t: Optional[float] = None
    prev_t = prev_clearance = None
    t = 0.0
    while t <= max_duration_s + 1e-9:
        vehicle = vehicle_snapshot(r, v, preset, geometry)
        clearance = surface_clearance(vehicle, body)
        overlay = bool(burn_overlay(t)) if burn_overlay is not None else False
        tracker.late_update(FlightFrame(vehicle=vehicle, body=body, burn_overlay_active=overlay))

        data.append(
            dict(
                t_s=t,
                altitude_m=vehicle.altitude_above(body),
                clearance_m=clearance,
                vertical_speed_mps=vehicle.vertical_speed,
                horizontal_speed_mps=vehicle.horizontal_surface_speed,
                speed_mps=float(np.linalg.norm(v)),
                state=tracker.state.value,
                seconds_until_impact=tracker.seconds_until_impact,
                impact_speed_mps=tracker.impact_speed,
                verb=tracker.impact_verb,
                description=tracker.description,
            )
        )

        if clearance <= 0.0:
            if prev_clearance is None:
                contact_t = t
            else:
                frac = prev_clearance / (prev_clearance - clearance)
                contact_t = prev_t + frac * (t - prev_t)
            break

        prev_t, prev_clearance = t, clearance
        g = -preset.mu * r / float(np.linalg.norm(r)) ** 3
        v = v + g * dt
        r = r + v * dt
        t += dt
        clock.advance(dt)

    df = pd.DataFrame(data, columns=FRAME_COLUMNS)
    if contact_t is None:
        df["actual_remaining_s"] = np.nan
    else:
        df["actual_remaining_s"] = contact_t - df["t_s"]
    df.attrs["contact_t_s"] = contact_t
    return df


def summarize_descent(df: pd.DataFrame) -> Dict[str, Optional[float]]:
    """Headline figures for a frame log produced by :func:`simulate_descent`."""

    summary: Dict[str, Optional[float]] = {
        "contact_t_s": None,
        "contact_speed_mps": None,
        "first_tracking_t_s": None,
        "mean_abs_error_s": None,
        "last_verb": None,
    }
    if df is None or df.empty:
        return summary

    contact_t = df.attrs.get("contact_t_s")
    if contact_t is not None:
        summary["contact_t_s"] = float(contact_t)
        summary["contact_speed_mps"] = float(df["speed_mps"].iloc[-1])

    tracking = df.loc[df["state"] == "tracking"]
    if not tracking.empty:
        summary["first_tracking_t_s"] = float(tracking["t_s"].iloc[0])
        summary["last_verb"] = str(tracking["verb"].iloc[-1])
        errors = (tracking["seconds_until_impact"] - tracking["actual_remaining_s"]).abs()
        if errors.notna().any():
            summary["mean_abs_error_s"] = float(errors.mean())

    return summary


__all__ = [
    "DEFAULT_FRAME_RATE_HZ",
    "DEFAULT_MAX_DURATION_S",
    "FRAME_COLUMNS",
    "BodyPreset",
    "MOON",
    "MERCURY",
    "CERES",
    "OCEAN_MOON",
    "MARS",
    "BODY_PRESETS",
    "LanderGeometry",
    "SimulatedClock",
    "build_lander",
    "vehicle_snapshot",
    "surface_clearance",
    "simulate_descent",
    "summarize_descent",
]
