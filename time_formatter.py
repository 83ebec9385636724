"""Render whole-second durations for on-screen text."""

from __future__ import annotations

SECONDS_PER_MINUTE = 60
SECONDS_PER_HOUR = 3600


def format_duration(seconds: int, hours_per_day: int = 24) -> str:
    """Return a compact duration string such as ``"3m 05s"``.

    Leading units are dropped when zero; every unit after the first is
    zero-padded so the width stays stable while counting down.
    """

    if seconds < 0:
        raise ValueError("Duration must be non-negative")
    seconds = int(seconds)
    if hours_per_day <= 0:
        raise ValueError("hours_per_day must be positive")

    seconds_per_day = hours_per_day * SECONDS_PER_HOUR
    days, rem = divmod(seconds, seconds_per_day)
    hours, rem = divmod(rem, SECONDS_PER_HOUR)
    minutes, secs = divmod(rem, SECONDS_PER_MINUTE)

    if days:
        return f"{days}d {hours:02d}h {minutes:02d}m {secs:02d}s"
    if hours:
        return f"{hours}h {minutes:02d}m {secs:02d}s"
    if minutes:
        return f"{minutes}m {secs:02d}s"
    return f"{secs}s"


__all__ = ["format_duration"]
