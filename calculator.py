#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Impact Tracker Explorer - Streamlit app
Flies an unpowered descent over an airless body and shows what the impact
tracker would display on every frame:
 A) Body presets (Moon, Mercury, Ceres, an ocean world, and Mars to show the atmosphere gate)
 B) Lander geometry with per-part crash tolerance (drives the Touchdown verb)
 C) Tracker settings: feature toggle and maximum trackable time to impact
 D) Predicted vs actual time to contact, with a filtered frame inspector
"""
from __future__ import annotations

import logging
from typing import Optional

import numpy as np
import pandas as pd
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
import streamlit as st

from descent_sim import (
    BODY_PRESETS,
    LanderGeometry,
    simulate_descent,
    summarize_descent,
)
from inspector_utils import get_frame_description, get_prediction_error
from preview_filters import FINAL_WINDOW_S, build_preview_dataframe
from settings import DEFAULT_MAX_TIME_UNTIL_IMPACT_S, ImpactSettings

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s | %(levelname)s | %(name)s | %(message)s'
)

PREVIEW_COLUMNS = [
    "t_s",
    "altitude_m",
    "clearance_m",
    "vertical_speed_mps",
    "state",
    "seconds_until_impact",
    "actual_remaining_s",
    "impact_speed_mps",
    "verb",
    "description",
]


def format_metric(value: Optional[float], unit: str, digits: int = 1) -> str:
    """Return a metric label, or "n/a" when the value is absent."""

    if value is None or (isinstance(value, float) and np.isnan(value)):
        return "n/a"
    return f"{value:,.{digits}f} {unit}"


def terrain_profile(base_elevation_m: float, roughness_m: float, wavelength_km: float):
    """Return a terrain elevation function: a base level plus a sinusoidal ridge."""

    if roughness_m <= 0.0 or wavelength_km <= 0.0:
        return float(base_elevation_m)

    k = 2.0 * np.pi / (wavelength_km * 1000.0)

    def elevation(point: np.ndarray) -> float:
        # Arc length along the surface from the +x axis, in the descent plane.
        arc = np.arctan2(point[1], point[0]) * np.linalg.norm(point[:2])
        return float(base_elevation_m + roughness_m * np.sin(k * arc))

    return elevation


# ------------------------------- Streamlit UI -------------------------------

st.set_page_config(page_title="Impact Tracker Explorer", layout="wide")
st.title("Impact Tracker Explorer")

with st.sidebar:
    st.header("Descent Controls")

    with st.expander("Body & Terrain", expanded=True):
        body_name = st.selectbox(
            "Body",
            list(BODY_PRESETS),
            help="Select the body to fall towards. Bodies with an atmosphere keep the tracker idle."
        )
        preset = BODY_PRESETS[body_name]
        terrain_base = st.number_input(
            "Terrain elevation below the start point (m)",
            value=0.0,
            step=50.0,
            help="Local ground elevation relative to the mean datum. Negative values on an ocean world mean open water."
        )
        roughness = st.number_input(
            "Ridge amplitude (m)",
            value=0.0,
            min_value=0.0,
            step=10.0,
            help="Adds a sinusoidal ridge along the ground track; the tracker only sees the ground directly below."
        )
        wavelength = st.number_input(
            "Ridge wavelength (km)",
            value=5.0,
            min_value=0.1,
            step=0.5,
            help="Distance between ridge crests along the ground track."
        )

    with st.expander("Initial State", expanded=True):
        initial_altitude = st.number_input("Initial altitude (m)", value=5000.0, min_value=10.0, step=100.0,
                                           help="Height above the mean datum at the start of the descent.")
        vertical_speed = st.number_input("Vertical speed (m/s)", value=-50.0, step=5.0,
                                         help="Signed vertical speed; negative values are falling.")
        horizontal_speed = st.number_input("Horizontal speed (m/s)", value=0.0, min_value=0.0, step=10.0,
                                           help="Surface speed across the ground track.")
        frame_rate = st.number_input("Frame rate (Hz)", value=50.0, min_value=5.0, max_value=240.0, step=5.0,
                                     help="How often the host invokes the tracker.")

    with st.expander("Lander Geometry", expanded=False):
        leg_length = st.number_input("Leg length (m)", value=2.0, min_value=0.0, step=0.25,
                                     help="Distance from the hull bottom to the foot pads.")
        leg_tolerance = st.number_input("Leg crash tolerance (m/s)", value=12.0, min_value=0.5, step=0.5,
                                        help="Predicted contact speeds at or below this read as Touchdown.")
        hull_tolerance = st.number_input("Hull crash tolerance (m/s)", value=8.0, min_value=0.5, step=0.5,
                                         help="Applies when the hull is the lowest part (e.g. zero-length legs).")

    with st.expander("Tracker Settings", expanded=True):
        show_impact = st.checkbox("Show impact prediction", value=True,
                                  help="Global switch for the impact display.")
        max_time = st.number_input("Maximum time to impact (s)", value=DEFAULT_MAX_TIME_UNTIL_IMPACT_S,
                                   min_value=1.0, step=10.0,
                                   help="Predictions further out than this are not shown.")


tabs = st.tabs(["Descent run", "Frame inspector"])

with tabs[0]:
    if st.button("Run descent"):
        geometry = LanderGeometry(
            leg_length_m=float(leg_length),
            leg_crash_tolerance_mps=float(leg_tolerance),
            hull_crash_tolerance_mps=float(hull_tolerance),
        )
        settings = ImpactSettings(show_impact=bool(show_impact), max_time_until_impact_s=float(max_time))
        df = simulate_descent(
            preset,
            initial_altitude_m=float(initial_altitude),
            vertical_speed_mps=float(vertical_speed),
            horizontal_speed_mps=float(horizontal_speed),
            terrain_elevation=terrain_profile(float(terrain_base), float(roughness), float(wavelength)),
            geometry=geometry,
            settings=settings,
            frame_rate_hz=float(frame_rate),
        )
        st.session_state['df'] = df

    if 'df' in st.session_state and st.session_state['df'] is not None:
        df = st.session_state['df']
        summary = summarize_descent(df)

        c1, c2, c3, c4 = st.columns(4)
        c1.metric("Contact time", format_metric(summary["contact_t_s"], "s"))
        c2.metric("Contact speed", format_metric(summary["contact_speed_mps"], "m/s"))
        c3.metric("Tracking from", format_metric(summary["first_tracking_t_s"], "s"))
        c4.metric("Mean |error|", format_metric(summary["mean_abs_error_s"], "s", digits=2))
        if summary["contact_t_s"] is None:
            st.info("The lander did not reach the surface within the simulated window.")
        if summary["last_verb"] is not None:
            st.caption(f"Last published verb: {summary['last_verb']}.")
        else:
            st.caption("The tracker never published a prediction for this descent.")

        fig, ax = plt.subplots(figsize=(8, 4))
        ax.plot(df["t_s"], df["actual_remaining_s"], label="Actual time to contact")
        ax.plot(df["t_s"], df["seconds_until_impact"], label="Published prediction", drawstyle="steps-post")
        ax.set_xlabel("Elapsed time (s)")
        ax.set_ylabel("Seconds to contact")
        ax.set_title(f"{preset.name} descent")
        ax.legend()
        ax.grid(True, alpha=0.3)
        st.pyplot(fig)
        st.caption("The prediction only changes when the whole-second value changes, hence the staircase.")

with tabs[1]:
    if 'df' not in st.session_state or st.session_state['df'] is None:
        st.info("Run a descent first.")
    else:
        df = st.session_state['df']
        f1, f2, f3 = st.columns(3)
        with f1:
            tracking_only = st.checkbox("Tracking frames only", value=True)
        with f2:
            verb_choice = st.multiselect("Verbs", ["Impact", "Splash", "Touchdown"], default=[])
        with f3:
            final_only = st.checkbox(f"Final {FINAL_WINDOW_S:.0f} s only", value=False)

        preview_df = build_preview_dataframe(
            df,
            tracking_only=tracking_only,
            verbs=verb_choice or None,
            final_window_s=FINAL_WINDOW_S if final_only else None,
        )
        st.dataframe(preview_df[[c for c in PREVIEW_COLUMNS if c in preview_df.columns]])

        if not preview_df.empty:
            frame_options = list(preview_df.index)
            frame_idx = st.select_slider("Frame", options=frame_options, value=frame_options[0])
            row = preview_df.loc[frame_idx]
            description = get_frame_description(row)
            error = get_prediction_error(row)
            st.markdown(f"**Display text**: {description if description else '(nothing shown)'}")
            st.markdown(f"**Prediction error**: {format_metric(error, 's', digits=2)}")
            st.table(pd.DataFrame([row[[c for c in PREVIEW_COLUMNS if c in row.index]]]))
