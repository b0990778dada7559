"""Dashboard API — latest wallet totals and the TAO equity curve."""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlmodel import Session, select, func

from tao_dashboard.api.deps import tracked_address, window_days
from tao_dashboard.database import get_session
from tao_dashboard.models.portfolio_snapshot import PortfolioSnapshot
from tao_dashboard.services.numeric import decimal_str, finite_sum, fixed_str
from tao_dashboard.services.returns import drawdown_curve, max_drawdown_pct, select_window
from tao_dashboard.services.snapshot_store import as_utc, latest_snapshot, load_positions, load_snapshots

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])


@router.get("/summary")
def dashboard_summary(
    address: str = Depends(tracked_address),
    session: Session = Depends(get_session),
):
    """Totals from the latest snapshot plus its root/subnet split."""
    snapshot_count = session.exec(
        select(func.count()).select_from(PortfolioSnapshot).where(PortfolioSnapshot.address == address)
    ).one()

    latest = latest_snapshot(session, address)
    if latest is None:
        return {
            "address": address,
            "snapshotCount": 0,
            "latest": None,
            "note": "No snapshots yet.",
        }

    positions = load_positions(session, [latest.id]).get(latest.id, {})
    subnets = [p for k, p in positions.items() if k.is_subnet]
    root = [p for k, p in positions.items() if not k.is_subnet]

    return {
        "address": address,
        "snapshotCount": snapshot_count,
        "latest": {
            "capturedAt": as_utc(latest.captured_at).isoformat(),
            "taoUsd": decimal_str(latest.tao_usd) if latest.tao_usd is not None else None,
            "totalValueTao": decimal_str(latest.total_value_tao),
            "totalValueUsd": decimal_str(latest.total_value_usd) if latest.total_value_usd is not None else None,
            "rootValueTao": decimal_str(finite_sum(p.value_tao for p in root)),
            "subnetValueTao": decimal_str(finite_sum(p.value_tao for p in subnets)),
            "subnetCount": len({p.key.netuid for p in subnets}),
        },
    }


@router.get("/equity")
def equity_curve(
    days: int = Depends(window_days),
    address: str = Depends(tracked_address),
    session: Session = Depends(get_session),
):
    """TAO equity curve with drawdown from the running peak."""
    now = datetime.now(timezone.utc)
    snapshots = load_snapshots(session, address, until=now)
    selected = select_window(snapshots, now, days) if snapshots else []
    return {
        "days": days,
        "maxDrawdownPct": fixed_str(max_drawdown_pct(s.total_value_tao for s in selected)),
        "points": drawdown_curve(selected),
    }
