"""Portfolio API — performance, position histories, alpha deltas and daily signals."""

import logging
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends
from sqlmodel import Session

from tao_dashboard.api.deps import delta_hours, tracked_address, window_days
from tao_dashboard.config import settings
from tao_dashboard.database import get_session
from tao_dashboard.models.position_snapshot import PositionType
from tao_dashboard.services.alpha_deltas import alpha_deltas
from tao_dashboard.services.performance import build_performance_summary
from tao_dashboard.services.realized_apy import build_position_histories
from tao_dashboard.services.returns import select_window
from tao_dashboard.services.signal_engine import SignalThresholds
from tao_dashboard.services.snapshot_store import load_positions, load_snapshots, signal_report_for

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/portfolio", tags=["portfolio"])


def signal_thresholds() -> SignalThresholds:
    return SignalThresholds(
        flow_abs=(
            settings.flow_spike_abs_info,
            settings.flow_spike_abs_warn,
            settings.flow_spike_abs_critical,
        ),
    )


@router.get("/performance")
def portfolio_performance(
    days: int = Depends(window_days),
    address: str = Depends(tracked_address),
    session: Session = Depends(get_session),
):
    """Window KPIs, top alpha contributors and recent per-interval returns."""
    now = datetime.now(timezone.utc)
    snapshots = load_snapshots(session, address, until=now)
    selected = select_window(snapshots, now, days) if snapshots else []
    positions = load_positions(session, [s.id for s in selected], PositionType.subnet)

    summary = build_performance_summary(
        snapshots,
        positions,
        now=now,
        days=days,
        alpha_pct_threshold=settings.flow_alpha_pct_threshold,
        value_pct_threshold=settings.flow_value_pct_threshold,
    )
    return {
        "ok": True,
        "address": address,
        "days": days,
        "updatedAt": now.isoformat(),
        **summary.to_dict(),
    }


@router.get("/history")
def portfolio_history(
    days: int = Depends(window_days),
    address: str = Depends(tracked_address),
    session: Session = Depends(get_session),
):
    """Per-position value series with realized APY."""
    now = datetime.now(timezone.utc)
    snapshots = load_snapshots(session, address, until=now)
    if not snapshots:
        return {
            "ok": True,
            "address": address,
            "days": days,
            "updatedAt": now.isoformat(),
            "positions": [],
            "note": "No snapshots yet. Wait for the scheduler or trigger a snapshot.",
        }

    selected = select_window(snapshots, now, days)
    positions = load_positions(session, [s.id for s in selected])
    histories = build_position_histories(selected, positions)

    return {
        "ok": True,
        "address": address,
        "days": days,
        "updatedAt": now.isoformat(),
        "positions": [h.to_dict() for h in histories],
    }


@router.get("/alpha-deltas")
def portfolio_alpha_deltas(
    hours: int = Depends(delta_hours),
    address: str = Depends(tracked_address),
    session: Session = Depends(get_session),
):
    """Alpha token changes per subnet position between consecutive snapshots."""
    now = datetime.now(timezone.utc)
    snapshots = load_snapshots(session, address, until=now, since=now - timedelta(hours=hours))
    positions = load_positions(session, [s.id for s in snapshots], PositionType.subnet)
    return {
        "ok": True,
        "hours": hours,
        "periods": alpha_deltas(snapshots, positions),
    }


@router.get("/signals")
def portfolio_signals(session: Session = Depends(get_session)):
    """Risk signals for held subnets on the latest snapshot day."""
    report = signal_report_for(session, settings.coldkey_address or None, signal_thresholds())
    if report.partial:
        logger.info(f"Signals for {report.day} are partial: {len(report.missing)} missing inputs")
    return {"ok": True, **report.to_dict()}
