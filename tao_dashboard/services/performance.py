"""Portfolio performance summary: KPIs, contributors and recent daily returns.

Pure composition of the window, return and attribution modules. "Not enough
data" is a normal result with `kpis=None` and a note, never an exception.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Sequence

from tao_dashboard.services.attribution import Contributor, attribute
from tao_dashboard.services.flow_classifier import (
    DEFAULT_ALPHA_PCT_THRESHOLD,
    DEFAULT_VALUE_PCT_THRESHOLD,
)
from tao_dashboard.services.numeric import decimal_str, fixed_str
from tao_dashboard.services.returns import (
    daily_returns,
    max_drawdown_pct,
    percent_return,
    select_window,
)
from tao_dashboard.services.types import PositionsBySnapshot, SnapshotPoint


@dataclass
class PerformanceSummary:
    kpis: dict | None = None
    contributors: list[Contributor] = field(default_factory=list)
    daily: list[dict] = field(default_factory=list)
    end_captured_at: datetime | None = None
    note: str | None = None

    def to_dict(self) -> dict:
        out = {
            "endCapturedAt": self.end_captured_at.isoformat() if self.end_captured_at else None,
            "kpis": self.kpis,
            "contributors": [c.to_dict() for c in self.contributors],
            "daily": self.daily,
        }
        if self.note:
            out["note"] = self.note
        return out


def build_performance_summary(
    snapshots: Sequence[SnapshotPoint],
    positions_by_snapshot: PositionsBySnapshot,
    now: datetime,
    days: int,
    alpha_pct_threshold: float = DEFAULT_ALPHA_PCT_THRESHOLD,
    value_pct_threshold: float = DEFAULT_VALUE_PCT_THRESHOLD,
) -> PerformanceSummary:
    """Summarize the last `days` of an address's snapshots."""
    if len(snapshots) < 2:
        return PerformanceSummary(note="Not enough snapshots yet (need at least 2).")

    selected = select_window(snapshots, now, days)
    if len(selected) < 2:
        return PerformanceSummary(note="Not enough snapshots in selected range.")

    start, end = selected[0], selected[-1]

    attribution = attribute(
        selected,
        positions_by_snapshot,
        alpha_pct_threshold=alpha_pct_threshold,
        value_pct_threshold=value_pct_threshold,
    )

    kpis = {
        "startTotalTao": decimal_str(start.total_value_tao),
        "endTotalTao": decimal_str(end.total_value_tao),
        "deltaTao": decimal_str(end.total_value_tao - start.total_value_tao),
        "returnTaoPct": fixed_str(percent_return(start.total_value_tao, end.total_value_tao)),
        "startTotalUsd": decimal_str(start.total_value_usd),
        "endTotalUsd": decimal_str(end.total_value_usd),
        "deltaUsd": decimal_str(end.total_value_usd - start.total_value_usd),
        "returnUsdPct": fixed_str(percent_return(start.total_value_usd, end.total_value_usd)),
        "maxDrawdownPct": fixed_str(max_drawdown_pct(s.total_value_tao for s in selected)),
        "alphaTaoImpactEstNet": decimal_str(attribution.total_impact_net),
        "alphaTaoImpactEstStaking": decimal_str(attribution.total_impact_staking),
    }

    return PerformanceSummary(
        kpis=kpis,
        contributors=attribution.contributors,
        daily=daily_returns(selected, limit=7),
        end_captured_at=end.captured_at,
    )
