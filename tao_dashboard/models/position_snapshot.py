"""PositionSnapshot model — per-position balances belonging to one PortfolioSnapshot."""

from decimal import Decimal
from enum import Enum

from sqlalchemy import CheckConstraint, Column, ForeignKey, Integer, UniqueConstraint
from sqlmodel import SQLModel, Field

from tao_dashboard.models.types import ExactDecimal


class PositionType(str, Enum):
    root = "root"
    subnet = "subnet"


class PositionSnapshot(SQLModel, table=True):
    __tablename__ = "position_snapshot"
    __table_args__ = (
        UniqueConstraint(
            "snapshot_id", "position_type", "netuid", "hotkey",
            name="uq_position_snapshot_snapshot_type_netuid_hotkey",
        ),
        # Root stake lives on netuid 0 with no hotkey; subnets never use netuid 0
        CheckConstraint(
            "(position_type = 'root' AND netuid = 0 AND hotkey IS NULL)"
            " OR (position_type = 'subnet' AND netuid <> 0)",
            name="ck_position_snapshot_root_subnet_netuid",
        ),
    )

    id: int | None = Field(default=None, primary_key=True)
    snapshot_id: int = Field(
        sa_column=Column(
            Integer,
            ForeignKey("portfolio_snapshot.id", ondelete="CASCADE"),
            index=True,
            nullable=False,
        )
    )
    position_type: PositionType = Field(index=True)
    netuid: int = Field(index=True)
    hotkey: str | None = None
    subnet_name: str | None = None  # as reported by Taostats at capture time
    alpha_balance: Decimal | None = Field(default=None, sa_type=ExactDecimal)
    value_tao: Decimal = Field(default=Decimal(0), sa_type=ExactDecimal)
    value_usd: Decimal = Field(default=Decimal(0), sa_type=ExactDecimal)
