"""Pydantic schemas for analytics query windows."""

import math

from pydantic import BaseModel, field_validator

from tao_dashboard.utils.constants import (
    DEFAULT_DELTA_HOURS,
    DEFAULT_WINDOW_DAYS,
    MAX_DELTA_HOURS,
    MAX_WINDOW_DAYS,
    MIN_DELTA_HOURS,
)


def clamp_number(raw, default: int, low: int, high: int) -> int:
    """Parse a query value, floor it and clamp to [low, high]; junk gives `default`."""
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return default
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(value):
        return default
    return max(low, min(high, math.floor(value)))


class WindowQuery(BaseModel):
    days: int = DEFAULT_WINDOW_DAYS

    @field_validator("days", mode="before")
    @classmethod
    def _clamp_days(cls, value) -> int:
        return clamp_number(value, DEFAULT_WINDOW_DAYS, 1, MAX_WINDOW_DAYS)


class DeltaQuery(BaseModel):
    hours: int = DEFAULT_DELTA_HOURS

    @field_validator("hours", mode="before")
    @classmethod
    def _clamp_hours(cls, value) -> int:
        return clamp_number(value, DEFAULT_DELTA_HOURS, MIN_DELTA_HOURS, MAX_DELTA_HOURS)
