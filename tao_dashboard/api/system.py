"""System API — health check, scheduler status, snapshot cadence, cron runs, manual snapshot."""

from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from sqlmodel import Session, select

from tao_dashboard.api.deps import require_cron_secret
from tao_dashboard.config import settings
from tao_dashboard.database import get_session
from tao_dashboard.models.cron_run import CronRun
from tao_dashboard.models.portfolio_snapshot import PortfolioSnapshot
from tao_dashboard.services.coverage import snapshot_coverage
from tao_dashboard.services.snapshot_store import as_utc
from tao_dashboard.utils.constants import COVERAGE_DAYS, SNAPSHOT_JOB

router = APIRouter(prefix="/api/system", tags=["system"])

# Slack so a snapshot taken just after midnight 30 days ago still counts
COVERAGE_LOOKBACK_DAYS = COVERAGE_DAYS + 5


def _cron_run_dict(run: CronRun) -> dict:
    return {
        "id": run.id,
        "job": run.job,
        "ranAt": as_utc(run.ran_at).isoformat(),
        "ok": run.ok,
        "message": run.message,
        "durationMs": run.duration_ms,
        "snapshotsInserted": run.snapshots_inserted,
        "positionsInserted": run.positions_inserted,
        "metricsInserted": run.metrics_inserted,
    }


def _last_cron_run(session: Session) -> CronRun | None:
    return session.exec(
        select(CronRun).where(CronRun.job == SNAPSHOT_JOB).order_by(CronRun.ran_at.desc()).limit(1)
    ).first()


@router.get("/health")
def health_check():
    return {"status": "ok"}


@router.get("/scheduler")
def scheduler_status():
    """Current scheduler state with job details."""
    from tao_dashboard.engine.scheduler import get_scheduler_status
    return get_scheduler_status()


@router.get("/cron-status")
def cron_status(session: Session = Depends(get_session)):
    """Snapshot cadence health for the tracked address plus the last cron run."""
    now = datetime.now(timezone.utc)
    last_run = _last_cron_run(session)
    out = {
        "ok": True,
        "address": settings.coldkey_address or None,
        "now": now.isoformat(),
        "lastCronRun": _cron_run_dict(last_run) if last_run else None,
    }

    if not settings.coldkey_address:
        out["note"] = "coldkey_address not set; snapshot coverage skipped."
        return out

    captured = session.exec(
        select(PortfolioSnapshot.captured_at)
        .where(PortfolioSnapshot.address == settings.coldkey_address)
        .where(PortfolioSnapshot.captured_at >= now - timedelta(days=COVERAGE_LOOKBACK_DAYS))
    ).all()
    out.update(snapshot_coverage([as_utc(ts) for ts in captured], now))
    return out


@router.get("/cron-runs")
def cron_runs(
    ok: bool | None = None,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    session: Session = Depends(get_session),
):
    stmt = select(CronRun).order_by(CronRun.ran_at.desc())
    if ok is not None:
        stmt = stmt.where(CronRun.ok == ok)
    rows = session.exec(stmt.offset(offset).limit(limit)).all()
    return [_cron_run_dict(r) for r in rows]


@router.post("/snapshot", dependencies=[Depends(require_cron_secret)])
async def trigger_snapshot(force: bool = False, day: str | None = None):
    """Run one snapshot cycle now. `day` (YYYY-MM-DD) backfills at noon UTC."""
    from tao_dashboard.engine.snapshot_job import run_snapshot_cycle

    if day is not None:
        try:
            datetime.strptime(day, "%Y-%m-%d")
        except ValueError:
            raise HTTPException(status_code=422, detail="day must be YYYY-MM-DD")

    result = await run_snapshot_cycle(force=force, day=day)
    if not result.ok:
        return JSONResponse(status_code=502, content=result.to_dict())
    return result.to_dict()
