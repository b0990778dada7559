"""Stateless anomaly signals for held subnets.

Evaluates the latest day's subnet metrics and the wallet's own positions
against rolling baselines and emits severity-tagged signals.
Pure computation over typed inputs: no I/O, no database access.

Severity for each signal type is picked by the first applicable rule:
z-score vs. a 30-day baseline, day-over-day change vs. yesterday, then an
absolute fallback. Every (subnet, signal type) cell is evaluated on its own,
so one missing input never suppresses unrelated signals.
"""

from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from typing import Sequence

import numpy as np

from tao_dashboard.services.numeric import decimal_str
from tao_dashboard.services.types import MetricRow

MIN_BASELINE_POINTS = 14
BASELINE_DAYS = 30
MAX_STREAK_DAYS = 10
STD_FLOOR = 1e-9


class Severity(str, Enum):
    INFO = "INFO"
    WARN = "WARN"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {Severity.INFO: 1, Severity.WARN: 2, Severity.CRITICAL: 3}


class SignalType(str, Enum):
    FLOW_SPIKE = "FLOW_SPIKE"
    NEGATIVE_FLOW_STREAK = "NEGATIVE_FLOW_STREAK"
    EMISSION_SHOCK = "EMISSION_SHOCK"
    LIQUIDITY_DRAIN = "LIQUIDITY_DRAIN"
    POSITION_VALUE_SHOCK = "POSITION_VALUE_SHOCK"
    CONCENTRATION_RISK = "CONCENTRATION_RISK"


# (INFO, WARN, CRITICAL) cut-offs
Tiers = tuple[float, float, float]


@dataclass(frozen=True)
class SignalThresholds:
    """Trigger tables; override any tier per deployment."""
    flow_z: Tiers = (2.0, 3.0, 4.0)
    flow_pct: Tiers = (1.0, 2.0, 4.0)
    flow_abs: Tiers = (2e12, 5e12, 1e13)
    streak_warn_days: int = 3
    streak_critical_days: int = 7
    emission_pp: Tiers = (0.25, 0.75, 1.5)
    emission_z: Tiers = (2.0, 3.0, 4.0)
    liquidity_pct: Tiers = (-0.10, -0.25, -0.40)
    liquidity_z: Tiers = (-2.0, -3.0, -4.0)
    value_shock_pct: Tiers = (0.05, 0.10, 0.20)
    concentration_weight: Tiers = (0.15, 0.25, 0.35)


# ---------------------------------------------------------------------------
# Core computation helpers
# ---------------------------------------------------------------------------

def add_days(day: str, delta: int) -> str:
    """Shift a YYYY-MM-DD UTC day key."""
    return (date.fromisoformat(day) + timedelta(days=delta)).isoformat()


def mean_std(values: Sequence[float]) -> tuple[float, float] | None:
    """Population mean and std (std floored to avoid dividing by zero)."""
    xs = np.asarray([v for v in values if v is not None], dtype=float)
    xs = xs[np.isfinite(xs)]
    if len(xs) < 2:
        return None
    mean = float(np.mean(xs))
    std = float(np.std(xs))
    if abs(std) < STD_FLOOR:
        std = STD_FLOOR
    return mean, std


def baseline_zscore(today: float, history: Sequence[float]) -> float | None:
    """z of today vs. history; None with fewer than MIN_BASELINE_POINTS values."""
    if len(history) < MIN_BASELINE_POINTS:
        return None
    ms = mean_std(history)
    if ms is None:
        return None
    mean, std = ms
    return (today - mean) / std


def severity_at_least(value: float, tiers: Tiers) -> Severity | None:
    """Highest tier with value >= cut-off."""
    info, warn, critical = tiers
    if value >= critical:
        return Severity.CRITICAL
    if value >= warn:
        return Severity.WARN
    if value >= info:
        return Severity.INFO
    return None


def severity_at_most(value: float, tiers: Tiers) -> Severity | None:
    """Highest tier with value <= cut-off (for falling metrics)."""
    info, warn, critical = tiers
    if value <= critical:
        return Severity.CRITICAL
    if value <= warn:
        return Severity.WARN
    if value <= info:
        return Severity.INFO
    return None


def negative_flow_streak(rows_desc: Sequence[MetricRow], day: str, max_days: int = MAX_STREAK_DAYS) -> int:
    """Consecutive calendar days ending at `day` with flow_24h < 0.

    A missing day or a missing flow value ends the streak.
    """
    by_day = {r.day: r for r in rows_desc}
    streak = 0
    cursor = day
    while streak < max_days:
        row = by_day.get(cursor)
        if row is None or row.flow_24h is None or not row.flow_24h < 0:
            break
        streak += 1
        cursor = add_days(cursor, -1)
    return streak


# ---------------------------------------------------------------------------
# Signal result types
# ---------------------------------------------------------------------------

@dataclass
class Signal:
    """One alert for one subnet on one day."""
    day: str
    netuid: int
    severity: Severity
    type: SignalType
    title: str
    why: str
    metrics: dict = field(default_factory=dict)

    @property
    def id(self) -> str:
        return signal_id(self.day, self.netuid, self.type)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "day": self.day,
            "netuid": self.netuid,
            "severity": self.severity.value,
            "type": self.type.value,
            "title": self.title,
            "why": self.why,
            "metrics": {k: _metric_str(v) for k, v in self.metrics.items()},
        }


@dataclass
class HeldPosition:
    """Today's USD value of one held subnet (summed across hotkeys)."""
    netuid: int
    value_usd: float | None


@dataclass
class SignalReport:
    day: str | None
    signals: list[Signal] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)
    held_netuids: list[int] = field(default_factory=list)
    note: str | None = None

    @property
    def partial(self) -> bool:
        return len(self.missing) > 0

    def to_dict(self) -> dict:
        meta = {
            "partial": self.partial,
            "missing": list(self.missing),
            "heldNetuids": list(self.held_netuids),
        }
        if self.note:
            meta["note"] = self.note
        return {
            "day": self.day,
            "signals": [s.to_dict() for s in self.signals],
            "meta": meta,
        }


def signal_id(day: str, netuid: int, signal_type: SignalType) -> str:
    """Deterministic id so re-running a day yields the same signal set."""
    return f"{day}:{netuid}:{signal_type.value}"


def _metric_str(value):
    if value is None or isinstance(value, (bool, str)):
        return value
    if isinstance(value, int):
        return value
    return decimal_str(value)


# ---------------------------------------------------------------------------
# Per-type evaluators
# ---------------------------------------------------------------------------

def evaluate_flow_spike(
    day: str,
    netuid: int,
    flow_today: float,
    flow_yesterday: float | None,
    flow_history: Sequence[float],
    thresholds: SignalThresholds,
) -> Signal | None:
    z = baseline_zscore(flow_today, flow_history)
    delta1 = flow_today - flow_yesterday if flow_yesterday is not None else None
    pct = delta1 / max(abs(flow_yesterday), 1.0) if flow_yesterday is not None else None

    if z is not None:
        severity = severity_at_least(abs(z), thresholds.flow_z)
        why = f"24H flow deviated {z:.2f}σ from 30D baseline."
    elif pct is not None:
        severity = severity_at_least(abs(pct), thresholds.flow_pct)
        why = "24H flow changed sharply vs yesterday."
    else:
        severity = severity_at_least(abs(flow_today), thresholds.flow_abs)
        why = "24H flow exceeded absolute threshold."

    if severity is None:
        return None
    return Signal(
        day=day,
        netuid=netuid,
        severity=severity,
        type=SignalType.FLOW_SPIKE,
        title=f"Flow spike detected (netuid {netuid})",
        why=why,
        metrics={
            "flow24h": flow_today,
            "prevFlow24h": flow_yesterday,
            "delta1": delta1,
            "pctChange": pct,
            "z30": z,
            "baselineCount": len(flow_history),
        },
    )


def evaluate_negative_flow_streak(
    day: str,
    netuid: int,
    flow_today: float,
    rows_desc: Sequence[MetricRow],
    thresholds: SignalThresholds,
) -> Signal | None:
    streak = negative_flow_streak(rows_desc, day)

    if streak >= thresholds.streak_critical_days:
        severity = Severity.CRITICAL
    elif streak >= thresholds.streak_warn_days:
        severity = Severity.WARN
    else:
        return None

    return Signal(
        day=day,
        netuid=netuid,
        severity=severity,
        type=SignalType.NEGATIVE_FLOW_STREAK,
        title=f"Sustained negative flow ({streak}d) (netuid {netuid})",
        why=f"Subnet has had net outflows for {streak} consecutive day(s).",
        metrics={"streakDays": streak, "flow24h": flow_today},
    )


def evaluate_emission_shock(
    day: str,
    netuid: int,
    emission_today: float,
    emission_yesterday: float | None,
    emission_history: Sequence[float],
    thresholds: SignalThresholds,
) -> Signal | None:
    z = baseline_zscore(emission_today, emission_history)
    delta_pp = emission_today - emission_yesterday if emission_yesterday is not None else None

    # Day-over-day move in percentage points outranks the baseline here
    if delta_pp is not None:
        severity = severity_at_least(abs(delta_pp), thresholds.emission_pp)
        why = f"Emission share moved {delta_pp:.4f} percentage points vs yesterday."
    elif z is not None:
        severity = severity_at_least(abs(z), thresholds.emission_z)
        why = "Emission share deviated strongly vs baseline."
    else:
        return None

    if severity is None:
        return None
    return Signal(
        day=day,
        netuid=netuid,
        severity=severity,
        type=SignalType.EMISSION_SHOCK,
        title=f"Emission share change (netuid {netuid})",
        why=why,
        metrics={
            "emissionPct": emission_today,
            "prevEmissionPct": emission_yesterday,
            "deltaPp": delta_pp,
            "z30": z,
            "baselineCount": len(emission_history),
        },
    )


def evaluate_liquidity_drain(
    day: str,
    netuid: int,
    liquidity_today: float,
    liquidity_yesterday: float | None,
    liquidity_history: Sequence[float],
    thresholds: SignalThresholds,
) -> Signal | None:
    z = baseline_zscore(liquidity_today, liquidity_history)
    pct = None
    if liquidity_yesterday is not None and liquidity_yesterday > 0:
        pct = (liquidity_today - liquidity_yesterday) / liquidity_yesterday

    if pct is not None:
        severity = severity_at_most(pct, thresholds.liquidity_pct)
        why = f"Liquidity changed {pct * 100:.2f}% vs yesterday."
    elif z is not None:
        severity = severity_at_most(z, thresholds.liquidity_z)
        why = "Liquidity is unusually low vs baseline."
    else:
        return None

    if severity is None:
        return None
    return Signal(
        day=day,
        netuid=netuid,
        severity=severity,
        type=SignalType.LIQUIDITY_DRAIN,
        title=f"Liquidity dropped (netuid {netuid})",
        why=why,
        metrics={
            "liquidity": liquidity_today,
            "prevLiquidity": liquidity_yesterday,
            "pctChange": pct,
            "z30": z,
            "baselineCount": len(liquidity_history),
        },
    )


def evaluate_position_value_shock(
    day: str,
    netuid: int,
    value_usd: float,
    prev_value_usd: float,
    thresholds: SignalThresholds,
) -> Signal | None:
    if not prev_value_usd > 0:
        return None
    pct = (value_usd - prev_value_usd) / prev_value_usd
    severity = severity_at_least(abs(pct), thresholds.value_shock_pct)
    if severity is None:
        return None
    return Signal(
        day=day,
        netuid=netuid,
        severity=severity,
        type=SignalType.POSITION_VALUE_SHOCK,
        title=f"Your position value moved {pct * 100:.1f}% (netuid {netuid})",
        why=f"Your subnet position value changed {pct * 100:.2f}% vs yesterday.",
        metrics={"valueUsd": value_usd, "prevValueUsd": prev_value_usd, "pctChange": pct},
    )


def evaluate_concentration_risk(
    day: str,
    netuid: int,
    value_usd: float,
    portfolio_total_usd: float,
    thresholds: SignalThresholds,
) -> Signal | None:
    if not portfolio_total_usd > 0:
        return None
    weight = value_usd / portfolio_total_usd
    severity = severity_at_least(weight, thresholds.concentration_weight)
    if severity is None:
        return None
    return Signal(
        day=day,
        netuid=netuid,
        severity=severity,
        type=SignalType.CONCENTRATION_RISK,
        title=f"Concentration risk: {weight * 100:.1f}% of portfolio (netuid {netuid})",
        why=f"This subnet is {weight * 100:.2f}% of your portfolio value.",
        metrics={"weight": weight, "valueUsd": value_usd, "portfolioTotalUsd": portfolio_total_usd},
    )


# ---------------------------------------------------------------------------
# Main signal function
# ---------------------------------------------------------------------------

def evaluate_signals(
    day: str,
    held: Sequence[HeldPosition],
    prev_day_values: dict[int, float] | None,
    portfolio_total_usd: float | None,
    metrics_by_netuid: dict[int, Sequence[MetricRow]],
    thresholds: SignalThresholds | None = None,
) -> SignalReport:
    """Compute all signals for `day`.

    Args:
        day: UTC day key of the latest portfolio snapshot.
        held: Subnets held in that snapshot with today's USD value.
        prev_day_values: netuid -> USD value from the prior day's snapshot,
            or None when no prior-day snapshot exists.
        portfolio_total_usd: Latest snapshot's total USD value.
        metrics_by_netuid: Metric rows on or before `day`, any order.
        thresholds: Trigger tables (defaults if omitted).
    """
    thresholds = thresholds or SignalThresholds()
    report = SignalReport(day=day, held_netuids=sorted({h.netuid for h in held}))
    missing: list[str] = []

    if prev_day_values is None:
        missing.append(f"portfolio snapshot missing for prior day {add_days(day, -1)} (value shock skipped)")
    if portfolio_total_usd is None or not portfolio_total_usd > 0:
        missing.append("portfolio totalValueUsd (for concentration risk)")

    yesterday_key = add_days(day, -1)

    for netuid in report.held_netuids:
        rows = sorted(metrics_by_netuid.get(netuid, ()), key=lambda r: r.day, reverse=True)
        today = next((r for r in rows if r.day == day), None)
        yesterday = next((r for r in rows if r.day == yesterday_key), None)
        history = [r for r in rows if r.day < day][:BASELINE_DAYS]

        if today is None:
            missing.append(f"subnet metrics missing for day={day}, netuid={netuid}")
        else:
            report.signals.extend(
                _metric_signals(day, netuid, today, yesterday, history, rows, thresholds, missing)
            )

        value_usd = _held_value(held, netuid)
        if value_usd is None:
            continue

        if prev_day_values is not None and netuid in prev_day_values:
            sig = evaluate_position_value_shock(day, netuid, value_usd, prev_day_values[netuid], thresholds)
            if sig:
                report.signals.append(sig)

        if portfolio_total_usd is not None and portfolio_total_usd > 0:
            sig = evaluate_concentration_risk(day, netuid, value_usd, portfolio_total_usd, thresholds)
            if sig:
                report.signals.append(sig)

    report.signals.sort(key=lambda s: (-s.severity.rank, s.netuid, s.type.value))
    report.missing = list(dict.fromkeys(missing))
    if prev_day_values is None:
        report.note = "Prev-day portfolio snapshot missing: value-shock signals are skipped."
    return report


def _metric_signals(day, netuid, today, yesterday, history, rows_desc, thresholds, missing) -> list[Signal]:
    out: list[Signal] = []

    if today.flow_24h is not None:
        flow_hist = [r.flow_24h for r in history if r.flow_24h is not None]
        sig = evaluate_flow_spike(
            day, netuid, today.flow_24h,
            yesterday.flow_24h if yesterday else None,
            flow_hist, thresholds,
        )
        if sig:
            out.append(sig)
        sig = evaluate_negative_flow_streak(day, netuid, today.flow_24h, rows_desc, thresholds)
        if sig:
            out.append(sig)
    else:
        missing.append(f"flow_24h missing (day={day}, netuid={netuid})")

    # Emission share is optional upstream; absence is not reported
    if today.emission_pct is not None:
        emis_hist = [r.emission_pct for r in history if r.emission_pct is not None]
        sig = evaluate_emission_shock(
            day, netuid, today.emission_pct,
            yesterday.emission_pct if yesterday else None,
            emis_hist, thresholds,
        )
        if sig:
            out.append(sig)

    if today.liquidity is not None:
        liq_hist = [r.liquidity for r in history if r.liquidity is not None]
        sig = evaluate_liquidity_drain(
            day, netuid, today.liquidity,
            yesterday.liquidity if yesterday else None,
            liq_hist, thresholds,
        )
        if sig:
            out.append(sig)
    else:
        missing.append(f"liquidity missing (day={day}, netuid={netuid})")

    return out


def _held_value(held: Sequence[HeldPosition], netuid: int) -> float | None:
    values = [h.value_usd for h in held if h.netuid == netuid and h.value_usd is not None]
    return sum(values) if values else None
