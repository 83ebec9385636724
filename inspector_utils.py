"""Utilities for the Streamlit frame inspector."""

from __future__ import annotations

from typing import Optional

import pandas as pd


def get_frame_description(row: pd.Series) -> Optional[str]:
    """Return the impact description published on a frame.

    Parameters
    ----------
    row:
        A pandas Series representing one frame of a descent log.

    Returns
    -------
    Optional[str]
        The description text when the tracker published one. Returns ``None``
        when the column is absent or the value is missing.
    """

    if "description" not in row.index:
        return None

    value = row["description"]
    if value is None or pd.isna(value):
        return None

    return str(value)


def get_prediction_error(row: pd.Series) -> Optional[float]:
    """Return predicted minus actual seconds to contact for a frame, if known."""

    for column in ("seconds_until_impact", "actual_remaining_s"):
        if column not in row.index or pd.isna(row[column]):
            return None

    return float(row["seconds_until_impact"]) - float(row["actual_remaining_s"])
