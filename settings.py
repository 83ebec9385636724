"""Startup settings for the impact tracker."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional, Union

import yaml

LOG = logging.getLogger(__name__)

DEFAULT_MAX_TIME_UNTIL_IMPACT_S = 120.0


@dataclass(frozen=True)
class ImpactSettings:
    """The two tunables the tracker reads once when it starts."""

    show_impact: bool = True
    max_time_until_impact_s: float = DEFAULT_MAX_TIME_UNTIL_IMPACT_S


def _parse_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        text = value.strip().lower()
        if text in {"true", "yes", "on", "1"}:
            return True
        if text in {"false", "no", "off", "0"}:
            return False
    raise ValueError(f"Setting '{key}' must be a boolean, got {value!r}")


def _parse_seconds(key: str, value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError(f"Setting '{key}' must be a number of seconds, got {value!r}")
    try:
        seconds = float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Setting '{key}' must be a number of seconds, got {value!r}") from exc
    if math.isnan(seconds) or seconds < 0.0:
        raise ValueError(f"Setting '{key}' must be non-negative, got {value!r}")
    return seconds


def settings_from_mapping(data: Optional[Mapping[str, Any]]) -> ImpactSettings:
    """Build settings from a parsed mapping, falling back to defaults per key."""

    defaults = ImpactSettings()
    if data is None:
        return defaults
    if not isinstance(data, Mapping):
        raise ValueError("Impact settings must be a mapping of key/value pairs")

    show = defaults.show_impact
    if data.get("show_impact") is not None:
        show = _parse_bool("show_impact", data["show_impact"])

    max_time = defaults.max_time_until_impact_s
    if data.get("impact_max_time_until") is not None:
        max_time = _parse_seconds("impact_max_time_until", data["impact_max_time_until"])

    return ImpactSettings(show_impact=show, max_time_until_impact_s=max_time)


def load_settings(path: Optional[Union[str, Path]] = None) -> ImpactSettings:
    """Load settings from a YAML file; a missing file yields the defaults."""

    if path is None:
        return ImpactSettings()

    path = Path(path)
    if not path.exists():
        LOG.info("No settings file at %s; using defaults", path)
        return ImpactSettings()

    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)

    settings = settings_from_mapping(data)
    LOG.info(
        "Loaded impact settings from %s (show_impact=%s, max_time=%.0f s)",
        path,
        settings.show_impact,
        settings.max_time_until_impact_s,
    )
    return settings


__all__ = [
    "DEFAULT_MAX_TIME_UNTIL_IMPACT_S",
    "ImpactSettings",
    "settings_from_mapping",
    "load_settings",
]
