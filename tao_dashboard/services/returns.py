"""Return and risk metrics over an ordered snapshot series."""

import math
from datetime import datetime, timedelta
from typing import Iterable, Sequence

import numpy as np
import pandas as pd

from tao_dashboard.services.numeric import decimal_str, fixed_str
from tao_dashboard.services.types import SnapshotPoint


def percent_return(start: float, end: float) -> float | None:
    """(end - start) / start * 100, or None without a positive baseline."""
    if not start > 0:
        return None
    pct = (end - start) / start * 100
    return pct if math.isfinite(pct) else None


def max_drawdown_pct(values: Iterable[float]) -> float | None:
    """Most negative (value / running peak - 1) * 100 seen in one forward pass.

    Non-finite points are skipped without resetting the peak. Returns None if
    the series never reaches a positive peak.
    """
    peak = -math.inf
    worst: float | None = None
    for v in values:
        if v is None or not math.isfinite(v):
            continue
        if v > peak:
            peak = v
        if peak > 0:
            dd = (v / peak - 1) * 100
            if worst is None or dd < worst:
                worst = dd
    return worst


def select_window(
    snapshots: Sequence[SnapshotPoint],
    now: datetime,
    days: int,
) -> list[SnapshotPoint]:
    """Snapshots in [now - days, now] plus the latest one before the window.

    The extra leading snapshot keeps the window's start value real when the
    capture cadence does not line up with the window boundary.
    """
    if days <= 0:
        raise ValueError(f"window days must be positive, got {days}")

    start = now - timedelta(days=days)
    ordered = sorted((s for s in snapshots if s.captured_at <= now), key=lambda s: s.captured_at)

    in_range = [s for s in ordered if s.captured_at >= start]
    before = [s for s in ordered if s.captured_at < start][-1:]
    return before + in_range


def daily_returns(snapshots: Sequence[SnapshotPoint], limit: int = 7) -> list[dict]:
    """Per-interval TAO deltas, newest first, capped at `limit` intervals."""
    rows = []
    for prev, curr in zip(snapshots, snapshots[1:]):
        p = percent_return(prev.total_value_tao, curr.total_value_tao)
        rows.append({
            "periodEnd": curr.captured_at.isoformat(),
            "deltaTao": decimal_str(curr.total_value_tao - prev.total_value_tao),
            "returnPctTao": fixed_str(p),
        })
    return list(reversed(rows[-limit:])) if limit > 0 else []


def drawdown_curve(snapshots: Sequence[SnapshotPoint]) -> list[dict]:
    """Equity curve with the drawdown from the running peak at every point."""
    if not snapshots:
        return []

    equity = pd.Series(
        [s.total_value_tao for s in snapshots],
        index=[s.captured_at for s in snapshots],
        dtype=float,
    )
    equity = equity.replace([np.inf, -np.inf], np.nan)
    peak = equity.where(equity > 0).ffill().cummax()
    drawdown = (equity / peak - 1.0) * 100.0

    return [
        {
            "capturedAt": ts.isoformat(),
            "valueTao": decimal_str(float(value)) if not math.isnan(value) else None,
            "drawdownPct": fixed_str(None if math.isnan(dd) else float(dd)),
        }
        for ts, value, dd in zip(equity.index, equity.values, drawdown.values)
    ]
