"""Daily wallet snapshot cycle.

This is the function APScheduler (and the cron endpoint) calls. It orchestrates:
existence check → portfolio fetch → snapshot + position rows → subnet metric
ingestion for held netuids → CronRun audit row.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime, time as dt_time, timezone

from sqlmodel import Session, select

from tao_dashboard.config import settings
from tao_dashboard.database import engine
from tao_dashboard.models.cron_run import CronRun
from tao_dashboard.models.portfolio_snapshot import PortfolioSnapshot
from tao_dashboard.models.position_snapshot import PositionSnapshot, PositionType
from tao_dashboard.models.subnet_metric_snapshot import METRIC_FIELDS, SubnetMetricSnapshot
from tao_dashboard.services.market_data import (
    PortfolioReading,
    SubnetMetricReading,
    fetch_portfolio,
    fetch_subnet_metrics,
)
from tao_dashboard.services.snapshot_store import snapshot_for_day
from tao_dashboard.services.taostats_client import CoinGeckoClient, ResponseCache, TaostatsClient
from tao_dashboard.utils.constants import SNAPSHOT_JOB

logger = logging.getLogger(__name__)
_cycle_lock = asyncio.Lock()


@dataclass
class MetricIngestResult:
    netuids: list[int] = field(default_factory=list)
    inserted: int = 0
    skipped: int = 0
    note: str | None = None

    def to_dict(self) -> dict:
        return {
            "netuids": self.netuids,
            "inserted": self.inserted,
            "skipped": self.skipped,
            "note": self.note,
        }


@dataclass
class SnapshotResult:
    ok: bool
    skipped: bool = False
    reason: str | None = None
    error: str | None = None
    force: bool = False
    address: str | None = None
    captured_at: datetime | None = None
    day: str | None = None
    snapshot_id: int | None = None
    positions_inserted: int = 0
    metrics: MetricIngestResult | None = None

    def to_dict(self) -> dict:
        out = {"ok": self.ok, "skipped": self.skipped}
        if self.error:
            out["error"] = self.error
            return out
        if self.reason:
            out["reason"] = self.reason
        out.update({
            "force": self.force,
            "address": self.address,
            "capturedAt": self.captured_at.isoformat() if self.captured_at else None,
            "day": self.day,
        })
        if not self.skipped:
            out["snapshotId"] = self.snapshot_id
            out["positionsInserted"] = self.positions_inserted
            out["subnetMetrics"] = self.metrics.to_dict() if self.metrics else None
        return out


def capture_time(day: str | None, now: datetime | None = None) -> datetime:
    """Backfills are pinned to noon UTC so they land in a stable day bucket."""
    if day:
        return datetime.combine(date.fromisoformat(day), dt_time(12, 0), tzinfo=timezone.utc)
    return now or datetime.now(timezone.utc)


async def run_snapshot_cycle(force: bool = False, day: str | None = None) -> SnapshotResult:
    """Run one snapshot cycle, skipping if a prior cycle is still in-flight."""
    if _cycle_lock.locked():
        logger.warning("[snapshot] Skipping overlapping cycle")
        _log_run(ok=True, message="Skipped: previous cycle still in progress", duration_ms=0)
        return SnapshotResult(ok=True, skipped=True, reason="cycle already in progress")

    async with _cycle_lock:
        return await _run_snapshot_cycle_once(force=force, day=day)


async def _run_snapshot_cycle_once(force: bool, day: str | None) -> SnapshotResult:
    started = time.monotonic()
    ran_at = datetime.now(timezone.utc)
    ok = False
    message = None
    snapshots_inserted = 0
    positions_inserted = 0
    metrics = MetricIngestResult()

    try:
        address = settings.coldkey_address
        if not address:
            raise ValueError("coldkey_address is not configured")

        captured_at = capture_time(day, now=ran_at)
        day_key = captured_at.date().isoformat()

        with Session(engine) as session:
            exists = snapshot_for_day(session, address, day_key) is not None

        if exists and not force:
            ok = True
            message = "Skipped: snapshot already exists for UTC day"
            logger.info(f"[snapshot] {message} ({day_key})")
            return SnapshotResult(
                ok=True,
                skipped=True,
                reason="snapshot already exists for UTC day",
                address=address,
                captured_at=captured_at,
                day=day_key,
            )

        cache = ResponseCache()
        async with TaostatsClient(cache=cache) as taostats, CoinGeckoClient(cache=cache) as coingecko:
            if not taostats.has_key:
                raise ValueError("taostats_api_key is not configured")

            reading = await fetch_portfolio(taostats, coingecko, address)
            snapshot_id, positions_inserted = store_portfolio(reading, captured_at)
            snapshots_inserted = 1
            logger.info(
                f"[snapshot] Stored snapshot {snapshot_id} for {day_key}: "
                f"{positions_inserted} positions, total={reading.total_value_tao} TAO"
            )

            if reading.held_netuids:
                metrics = await ingest_subnet_metrics(taostats, reading.held_netuids, day_key, captured_at)

        ok = True
        parts = []
        if force:
            parts.append("FORCE")
        parts.append(f"OK: inserted snapshot + {positions_inserted} positions")
        if metrics.netuids:
            parts.append(
                f"subnet metrics: inserted {metrics.inserted}, skipped {metrics.skipped} "
                f"(held netuids={len(metrics.netuids)})"
            )
        if metrics.note:
            parts.append(f"subnet metrics note: {metrics.note}")
        message = " | ".join(parts)

        return SnapshotResult(
            ok=True,
            force=force,
            address=address,
            captured_at=captured_at,
            day=day_key,
            snapshot_id=snapshot_id,
            positions_inserted=positions_inserted,
            metrics=metrics,
        )

    except Exception as e:
        message = f"FAILED: {e}"
        logger.exception(f"[snapshot] Cycle failed: {e}")
        return SnapshotResult(ok=False, error=str(e))

    finally:
        _log_run(
            ok=ok,
            message=message,
            duration_ms=int((time.monotonic() - started) * 1000),
            ran_at=ran_at,
            snapshots_inserted=snapshots_inserted,
            positions_inserted=positions_inserted,
            metrics_inserted=metrics.inserted,
        )


def store_portfolio(reading: PortfolioReading, captured_at: datetime) -> tuple[int, int]:
    """Insert the snapshot and its root + subnet position rows in one transaction."""
    with Session(engine) as session:
        snapshot = PortfolioSnapshot(
            address=reading.address,
            captured_at=captured_at,
            tao_usd=reading.tao_usd,
            total_value_tao=reading.total_value_tao,
            total_value_usd=reading.total_value_usd,
        )
        session.add(snapshot)
        session.flush()
        snapshot_id = snapshot.id

        rows = [
            PositionSnapshot(
                snapshot_id=snapshot_id,
                position_type=PositionType.root,
                netuid=0,
                hotkey=None,
                alpha_balance=None,
                value_tao=reading.root_value_tao,
                value_usd=reading.root_value_usd,
            )
        ]
        for p in reading.subnets:
            rows.append(PositionSnapshot(
                snapshot_id=snapshot_id,
                position_type=PositionType.subnet,
                netuid=p.netuid,
                hotkey=p.hotkey,
                subnet_name=p.name or None,
                alpha_balance=p.alpha_balance,
                value_tao=p.value_tao,
                value_usd=p.value_usd,
            ))

        session.add_all(rows)
        session.commit()
        return snapshot_id, len(rows)


async def ingest_subnet_metrics(
    taostats: TaostatsClient,
    netuids: list[int],
    day: str,
    captured_at: datetime,
    max_concurrency: int | None = None,
) -> MetricIngestResult:
    """Fetch metrics for held subnets with bounded concurrency and upsert by (day, netuid).

    Fail-soft: endpoint errors only reduce what gets stored.
    """
    semaphore = asyncio.Semaphore(max(1, max_concurrency or settings.max_concurrency))

    async def _fetch(netuid: int) -> SubnetMetricReading:
        async with semaphore:
            return await fetch_subnet_metrics(taostats, netuid)

    readings = await asyncio.gather(*(_fetch(n) for n in netuids))

    result = MetricIngestResult(netuids=list(netuids))
    with Session(engine) as session:
        for reading in readings:
            if reading.errors and result.note is None:
                result.note = reading.errors[0]
            if not reading.has_any:
                result.skipped += 1
                continue
            upsert_metric(session, day, captured_at, reading)
            result.inserted += 1
        session.commit()

    if result.note:
        logger.warning(f"[snapshot] Subnet metrics partially unavailable: {result.note}")
    return result


def upsert_metric(session: Session, day: str, captured_at: datetime, reading: SubnetMetricReading):
    """Insert or update the (day, netuid) row. A null reading never erases a stored value."""
    row = session.exec(
        select(SubnetMetricSnapshot)
        .where(SubnetMetricSnapshot.day == day)
        .where(SubnetMetricSnapshot.netuid == reading.netuid)
    ).first()

    if row is None:
        row = SubnetMetricSnapshot(day=day, netuid=reading.netuid)

    row.captured_at = captured_at
    for name in METRIC_FIELDS:
        value = reading.values.get(name)
        if value is not None:
            setattr(row, name, value)
    session.add(row)


def _log_run(
    ok: bool,
    message: str | None,
    duration_ms: int,
    ran_at: datetime | None = None,
    snapshots_inserted: int = 0,
    positions_inserted: int = 0,
    metrics_inserted: int = 0,
):
    """Write a CronRun entry. Best-effort: a logging failure never fails the cycle."""
    try:
        with Session(engine) as session:
            session.add(CronRun(
                job=SNAPSHOT_JOB,
                ran_at=ran_at or datetime.now(timezone.utc),
                ok=ok,
                message=message,
                duration_ms=duration_ms,
                snapshots_inserted=snapshots_inserted,
                positions_inserted=positions_inserted,
                metrics_inserted=metrics_inserted,
            ))
            session.commit()
    except Exception as e:
        logger.warning(f"[snapshot] Failed to write cron run: {e}")
