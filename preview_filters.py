"""Preview filtering utilities for the descent explorer app."""
from __future__ import annotations

from typing import Iterable, Optional

import pandas as pd

FINAL_WINDOW_S = 10.0


def build_preview_dataframe(
    df: pd.DataFrame,
    *,
    tracking_only: bool = False,
    verbs: Optional[Iterable[str]] = None,
    final_window_s: Optional[float] = None,
) -> pd.DataFrame:
    """Return a filtered frame-log preview respecting the configured options.

    ``final_window_s`` keeps only the frames within that many seconds of the
    last logged frame, which is where predictions matter most.
    """

    if df is None:
        return pd.DataFrame()
    if df.empty:
        return df.iloc[0:0]

    preview_df = df
    if tracking_only:
        if "state" not in df.columns:
            return df.iloc[0:0]
        preview_df = preview_df.loc[preview_df["state"] == "tracking"]

    if verbs is not None:
        wanted = set(verbs)
        if "verb" not in df.columns:
            return df.iloc[0:0]
        preview_df = preview_df.loc[preview_df["verb"].isin(wanted)]

    if final_window_s is not None:
        if "t_s" not in df.columns:
            return df.iloc[0:0]
        last_t = df["t_s"].max()
        if pd.isna(last_t):
            return df.iloc[0:0]
        threshold = float(last_t) - float(final_window_s)
        preview_df = preview_df.loc[preview_df["t_s"] >= threshold]

    return preview_df.copy()
