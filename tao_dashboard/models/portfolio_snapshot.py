"""PortfolioSnapshot model — one immutable wallet-level capture per ingestion cycle."""

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import DateTime, Index
from sqlmodel import SQLModel, Field

from tao_dashboard.models.types import ExactDecimal


class PortfolioSnapshot(SQLModel, table=True):
    __tablename__ = "portfolio_snapshot"
    __table_args__ = (
        Index("ix_portfolio_snapshot_address_captured_at", "address", "captured_at"),
    )

    id: int | None = Field(default=None, primary_key=True)
    captured_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_type=DateTime(timezone=True),
    )
    address: str
    tao_usd: Decimal | None = Field(default=None, sa_type=ExactDecimal)
    total_value_tao: Decimal | None = Field(default=None, sa_type=ExactDecimal)
    total_value_usd: Decimal | None = Field(default=None, sa_type=ExactDecimal)
