"""Typed, normalized inputs shared by the analytics modules.

The snapshot store converts database rows into these before any analytics run,
so nothing below this layer parses strings or sniffs payload shapes.
"""

from dataclasses import dataclass
from datetime import datetime

from tao_dashboard.models.position_snapshot import PositionType


@dataclass(frozen=True)
class PositionKey:
    """Stable identity of one holding across snapshots.

    Hotkey is part of identity: the same subnet may be delegated to several
    validators.
    """
    position_type: PositionType
    netuid: int
    hotkey: str | None = None

    def __post_init__(self):
        if self.position_type == PositionType.root:
            if self.netuid != 0 or self.hotkey is not None:
                raise ValueError("root positions must have netuid 0 and no hotkey")
        elif self.netuid == 0:
            raise ValueError("subnet positions cannot use netuid 0")

    @classmethod
    def root(cls) -> "PositionKey":
        return cls(PositionType.root, 0, None)

    @classmethod
    def subnet(cls, netuid: int, hotkey: str | None = None) -> "PositionKey":
        return cls(PositionType.subnet, netuid, hotkey)

    @property
    def is_subnet(self) -> bool:
        return self.position_type == PositionType.subnet

    @property
    def sort_key(self) -> tuple:
        # Root first, then netuid, then hotkey (None before any hotkey)
        return (
            0 if self.position_type == PositionType.root else 1,
            self.netuid,
            self.hotkey is not None,
            self.hotkey or "",
        )


@dataclass(frozen=True)
class SnapshotPoint:
    """Wallet-level totals at one capture time."""
    id: int
    captured_at: datetime
    tao_usd: float | None = None
    total_value_tao: float = 0.0
    total_value_usd: float = 0.0


@dataclass(frozen=True)
class PositionPoint:
    """One position's balances inside one snapshot.

    Floats drive the math; the `*_raw` decimal strings are passed through to
    outputs untouched.
    """
    key: PositionKey
    alpha_balance: float = 0.0
    value_tao: float = 0.0
    value_usd: float = 0.0
    alpha_balance_raw: str | None = None
    value_tao_raw: str = "0"
    value_usd_raw: str = "0"
    name: str | None = None

    @property
    def price_tao(self) -> float:
        """Alpha price implied by this snapshot (0 when undefined)."""
        if self.alpha_balance > 0 and self.value_tao > 0:
            return self.value_tao / self.alpha_balance
        return 0.0


@dataclass(frozen=True)
class MetricRow:
    """Daily subnet aggregates; any metric may be missing."""
    day: str
    netuid: int
    flow_24h: float | None = None
    emission_pct: float | None = None
    liquidity: float | None = None
    price: float | None = None
    tao_volume_24h: float | None = None


# snapshot id -> position identity -> balances
PositionsBySnapshot = dict[int, dict[PositionKey, PositionPoint]]
