"""CronRun model — append-only audit log of ingestion job executions."""

from datetime import datetime, timezone

from sqlalchemy import DateTime, Index
from sqlmodel import SQLModel, Field


class CronRun(SQLModel, table=True):
    __tablename__ = "cron_run"
    __table_args__ = (Index("ix_cron_run_job_ran_at", "job", "ran_at"),)

    id: int | None = Field(default=None, primary_key=True)
    job: str  # "snapshot"
    ran_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_type=DateTime(timezone=True),
    )
    ok: bool = False
    message: str | None = None
    duration_ms: int | None = None
    snapshots_inserted: int | None = None
    positions_inserted: int | None = None
    metrics_inserted: int | None = None
