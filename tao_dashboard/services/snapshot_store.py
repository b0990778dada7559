"""Snapshot store reads: database rows -> typed analytics inputs.

Numeric coercion happens here, once. Malformed stored values become 0.0 (or
None where absence carries meaning) so no NaN reaches an aggregate.
"""

import logging
from collections import defaultdict
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable

from sqlmodel import Session, select

from tao_dashboard.models.portfolio_snapshot import PortfolioSnapshot
from tao_dashboard.models.position_snapshot import PositionSnapshot, PositionType
from tao_dashboard.models.subnet_metric_snapshot import SubnetMetricSnapshot
from tao_dashboard.services.numeric import decimal_str, to_float, to_optional_float
from tao_dashboard.services.signal_engine import (
    HeldPosition,
    SignalReport,
    SignalThresholds,
    add_days,
    evaluate_signals,
)
from tao_dashboard.services.types import (
    MetricRow,
    PositionKey,
    PositionPoint,
    PositionsBySnapshot,
    SnapshotPoint,
)
from tao_dashboard.utils.constants import MAX_SNAPSHOT_ROWS

logger = logging.getLogger(__name__)

# Enough history for a 30-row baseline even with gaps in ingestion
METRIC_LOOKBACK_DAYS = 90


def as_utc(ts: datetime) -> datetime:
    """SQLite drops tzinfo; every timestamp in the system is UTC."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def day_bounds(day: str) -> tuple[datetime, datetime]:
    start = datetime.combine(date.fromisoformat(day), time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


# ---------------------------------------------------------------------------
# Row conversion
# ---------------------------------------------------------------------------

def to_snapshot_point(row: PortfolioSnapshot) -> SnapshotPoint:
    return SnapshotPoint(
        id=row.id,
        captured_at=as_utc(row.captured_at),
        tao_usd=to_optional_float(row.tao_usd),
        total_value_tao=to_float(row.total_value_tao),
        total_value_usd=to_float(row.total_value_usd),
    )


def to_position_point(row: PositionSnapshot) -> PositionPoint | None:
    """None for rows that cannot form a valid identity."""
    try:
        key = PositionKey(PositionType(row.position_type), row.netuid, row.hotkey or None)
    except ValueError as e:
        logger.warning(f"Skipping position row {row.id}: {e}")
        return None

    return PositionPoint(
        key=key,
        alpha_balance=to_float(row.alpha_balance),
        value_tao=to_float(row.value_tao),
        value_usd=to_float(row.value_usd),
        alpha_balance_raw=decimal_str(row.alpha_balance) if row.alpha_balance is not None else None,
        value_tao_raw=decimal_str(row.value_tao),
        value_usd_raw=decimal_str(row.value_usd),
        name=row.subnet_name or None,
    )


def to_metric_row(row: SubnetMetricSnapshot) -> MetricRow:
    return MetricRow(
        day=row.day,
        netuid=row.netuid,
        flow_24h=to_optional_float(row.flow_24h),
        emission_pct=to_optional_float(row.emission_pct),
        liquidity=to_optional_float(row.liquidity),
        price=to_optional_float(row.price),
        tao_volume_24h=to_optional_float(row.tao_volume_24h),
    )


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

def load_snapshots(
    session: Session,
    address: str,
    until: datetime,
    since: datetime | None = None,
    limit: int = MAX_SNAPSHOT_ROWS,
) -> list[SnapshotPoint]:
    """Most recent snapshots captured at or before `until`, returned ascending."""
    stmt = (
        select(PortfolioSnapshot)
        .where(PortfolioSnapshot.address == address)
        .where(PortfolioSnapshot.captured_at <= until)
    )
    if since is not None:
        stmt = stmt.where(PortfolioSnapshot.captured_at >= since)
    stmt = stmt.order_by(PortfolioSnapshot.captured_at.desc()).limit(limit)

    rows = session.exec(stmt).all()
    return sorted((to_snapshot_point(r) for r in rows), key=lambda s: s.captured_at)


def load_positions(
    session: Session,
    snapshot_ids: Iterable[int],
    position_type: PositionType | None = None,
) -> PositionsBySnapshot:
    ids = list(snapshot_ids)
    if not ids:
        return {}

    stmt = select(PositionSnapshot).where(PositionSnapshot.snapshot_id.in_(ids))  # type: ignore[attr-defined]
    if position_type is not None:
        stmt = stmt.where(PositionSnapshot.position_type == position_type)

    out: PositionsBySnapshot = defaultdict(dict)
    for row in session.exec(stmt).all():
        point = to_position_point(row)
        if point is not None:
            out[row.snapshot_id][point.key] = point
    return dict(out)


def latest_snapshot(session: Session, address: str | None = None) -> PortfolioSnapshot | None:
    stmt = select(PortfolioSnapshot)
    if address:
        stmt = stmt.where(PortfolioSnapshot.address == address)
    return session.exec(stmt.order_by(PortfolioSnapshot.captured_at.desc()).limit(1)).first()


def snapshot_for_day(session: Session, address: str | None, day: str) -> PortfolioSnapshot | None:
    """Latest snapshot whose capture falls on UTC `day`."""
    start, end = day_bounds(day)
    stmt = (
        select(PortfolioSnapshot)
        .where(PortfolioSnapshot.captured_at >= start)
        .where(PortfolioSnapshot.captured_at < end)
    )
    if address:
        stmt = stmt.where(PortfolioSnapshot.address == address)
    return session.exec(stmt.order_by(PortfolioSnapshot.captured_at.desc()).limit(1)).first()


def load_metric_rows(
    session: Session,
    netuids: Iterable[int],
    day: str,
    lookback_days: int = METRIC_LOOKBACK_DAYS,
) -> dict[int, list[MetricRow]]:
    """Metric rows on or before `day` per netuid, newest first."""
    ids = list(netuids)
    if not ids:
        return {}

    stmt = (
        select(SubnetMetricSnapshot)
        .where(SubnetMetricSnapshot.netuid.in_(ids))  # type: ignore[attr-defined]
        .where(SubnetMetricSnapshot.day <= day)  # YYYY-MM-DD sorts lexically
        .where(SubnetMetricSnapshot.day >= add_days(day, -lookback_days))
        .order_by(SubnetMetricSnapshot.day.desc())
    )
    out: dict[int, list[MetricRow]] = defaultdict(list)
    for row in session.exec(stmt).all():
        out[row.netuid].append(to_metric_row(row))
    return dict(out)


# ---------------------------------------------------------------------------
# Composite reads
# ---------------------------------------------------------------------------

def _subnet_values_by_netuid(positions: dict[PositionKey, PositionPoint]) -> dict[int, float]:
    values: dict[int, float] = defaultdict(float)
    for key, pos in positions.items():
        if key.is_subnet:
            values[key.netuid] += pos.value_usd
    return dict(values)


def signal_report_for(
    session: Session,
    address: str | None,
    thresholds: SignalThresholds | None = None,
) -> SignalReport:
    """Load every input the signal engine needs for the latest snapshot day."""
    latest = latest_snapshot(session, address)
    if latest is None:
        return SignalReport(day=None, missing=["portfolio snapshots (none found)"])

    day = as_utc(latest.captured_at).date().isoformat()
    today_positions = load_positions(session, [latest.id], PositionType.subnet).get(latest.id, {})
    today_values = _subnet_values_by_netuid(today_positions)

    if not today_values:
        return SignalReport(day=day, note="No held subnet positions found in latest snapshot")

    held = [HeldPosition(netuid=n, value_usd=v) for n, v in sorted(today_values.items())]

    prev_values = None
    prev = snapshot_for_day(session, address, add_days(day, -1))
    if prev is not None:
        prev_positions = load_positions(session, [prev.id], PositionType.subnet).get(prev.id, {})
        prev_values = _subnet_values_by_netuid(prev_positions)

    return evaluate_signals(
        day=day,
        held=held,
        prev_day_values=prev_values,
        portfolio_total_usd=to_optional_float(latest.total_value_usd),
        metrics_by_netuid=load_metric_rows(session, today_values.keys(), day),
        thresholds=thresholds,
    )
