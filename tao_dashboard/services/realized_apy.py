"""Trailing realized APY per position over 1/7/30-day windows.

Snapshots arrive on an irregular cadence, so each window starts at the latest
point captured at or before the cutoff. When no such point exists the window is
reported as unavailable (None), never as 0%.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Sequence

from tao_dashboard.services.flow_classifier import is_series_flow_likely
from tao_dashboard.services.numeric import fixed_str
from tao_dashboard.services.types import PositionKey, PositionsBySnapshot, SnapshotPoint
from tao_dashboard.utils.constants import APY_WINDOWS_DAYS

_APY_FIELDS = {1: "oneDayPct", 7: "sevenDayPct", 30: "thirtyDayPct"}


@dataclass(frozen=True)
class SeriesPoint:
    captured_at: datetime
    value_tao: float
    value_tao_raw: str = "0"
    value_usd_raw: str = "0"
    alpha_balance: float | None = None
    alpha_balance_raw: str | None = None


def find_point_at_or_before(series: Sequence[SeriesPoint], cutoff: datetime) -> SeriesPoint | None:
    """Latest point with captured_at <= cutoff; `series` must be ascending."""
    for point in reversed(series):
        if point.captured_at <= cutoff:
            return point
    return None


def annualized_return_pct(start_value: float, end_value: float, days: float) -> float | None:
    """Compounded annualization: ((1 + r) ** (365 / days) - 1) * 100."""
    if not start_value > 0 or not days > 0:
        return None
    r = (end_value - start_value) / start_value
    if not math.isfinite(r):
        return None
    try:
        apy = math.pow(1 + r, 365 / days) - 1
    except (OverflowError, ValueError):
        return None
    if not math.isfinite(apy):
        return None
    return apy * 100


def realized_apy(
    series: Sequence[SeriesPoint],
    end_at: datetime,
    windows: Sequence[int] = APY_WINDOWS_DAYS,
) -> dict[int, float | None]:
    """APY for each window length (days) ending at `end_at`.

    A series whose last point is before `end_at` (a closed position) has no
    value at `end_at`, so every window is unavailable.
    """
    out: dict[int, float | None] = {d: None for d in windows}
    if not series or series[-1].captured_at < end_at:
        return out

    end_value = series[-1].value_tao
    for d in windows:
        start = find_point_at_or_before(series, end_at - timedelta(days=d))
        if start is None:
            continue
        out[d] = annualized_return_pct(start.value_tao, end_value, d)
    return out


@dataclass
class PositionHistory:
    key: PositionKey
    series: list[SeriesPoint] = field(default_factory=list)
    apy: dict[int, float | None] = field(default_factory=dict)
    flow_likely: bool = False
    subnet_name: str | None = None

    @property
    def name(self) -> str:
        if not self.key.is_subnet:
            return "Root"
        return self.subnet_name or f"Subnet {self.key.netuid}"

    def to_dict(self) -> dict:
        series = []
        for p in self.series:
            point = {
                "capturedAt": p.captured_at.isoformat(),
                "valueTao": p.value_tao_raw,
                "valueUsd": p.value_usd_raw,
            }
            if self.key.is_subnet:
                point["alphaBalance"] = p.alpha_balance_raw or "0"
            series.append(point)

        return {
            "positionType": self.key.position_type.value,
            "netuid": self.key.netuid,
            "hotkey": self.key.hotkey,
            "name": self.name,
            "series": series,
            "apy": {
                field_name: fixed_str(self.apy.get(d), places=2)
                for d, field_name in _APY_FIELDS.items()
            },
            "flags": {"flowLikely": self.flow_likely},
        }


def build_position_histories(
    snapshots: Sequence[SnapshotPoint],
    positions_by_snapshot: PositionsBySnapshot,
) -> list[PositionHistory]:
    """Group position rows by identity and compute realized APY per holding.

    All windows end at the last selected snapshot's capture time.
    """
    if not snapshots:
        return []

    ordered = sorted(snapshots, key=lambda s: s.captured_at)
    end_at = ordered[-1].captured_at
    by_key: dict[PositionKey, PositionHistory] = {}

    for snap in ordered:
        for key, pos in positions_by_snapshot.get(snap.id, {}).items():
            history = by_key.setdefault(key, PositionHistory(key=key))
            if pos.name:
                history.subnet_name = pos.name
            history.series.append(SeriesPoint(
                captured_at=snap.captured_at,
                value_tao=pos.value_tao,
                value_tao_raw=pos.value_tao_raw,
                value_usd_raw=pos.value_usd_raw,
                alpha_balance=pos.alpha_balance if key.is_subnet else None,
                alpha_balance_raw=pos.alpha_balance_raw,
            ))

    histories = sorted(by_key.values(), key=lambda h: h.key.sort_key)
    for history in histories:
        history.apy = realized_apy(history.series, end_at)
        if history.key.is_subnet:
            history.flow_likely = is_series_flow_likely(
                history.series[0].alpha_balance,
                history.series[-1].alpha_balance,
            )
    return histories
