"""SubnetMetricSnapshot model — daily per-subnet aggregates, upserted by (day, netuid)."""

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import DateTime, UniqueConstraint
from sqlmodel import SQLModel, Field

from tao_dashboard.models.types import ExactDecimal

# Metric columns filled by ingestion; all optional
METRIC_FIELDS = (
    "flow_24h",
    "emission_pct",
    "price",
    "liquidity",
    "tao_volume_24h",
    "price_change_1d",
    "price_change_1w",
    "price_change_1m",
)


class SubnetMetricSnapshot(SQLModel, table=True):
    __tablename__ = "subnet_metric_snapshot"
    __table_args__ = (
        UniqueConstraint("day", "netuid", name="uq_subnet_metric_snapshot_day_netuid"),
    )

    id: int | None = Field(default=None, primary_key=True)
    day: str = Field(index=True)  # YYYY-MM-DD (UTC)
    netuid: int = Field(index=True)
    captured_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_type=DateTime(timezone=True),
    )
    flow_24h: Decimal | None = Field(default=None, sa_type=ExactDecimal)
    emission_pct: Decimal | None = Field(default=None, sa_type=ExactDecimal)
    price: Decimal | None = Field(default=None, sa_type=ExactDecimal)
    liquidity: Decimal | None = Field(default=None, sa_type=ExactDecimal)
    tao_volume_24h: Decimal | None = Field(default=None, sa_type=ExactDecimal)
    price_change_1d: Decimal | None = Field(default=None, sa_type=ExactDecimal)
    price_change_1w: Decimal | None = Field(default=None, sa_type=ExactDecimal)
    price_change_1m: Decimal | None = Field(default=None, sa_type=ExactDecimal)
