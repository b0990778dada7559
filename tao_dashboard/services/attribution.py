"""Per-position contribution to portfolio TAO change, net and flow-filtered.

Walks every consecutive snapshot pair, values each position's alpha delta at
the end-of-interval price, and keeps two views: "net" (every delta) and
"staking-estimated" (deltas the flow classifier did not flag as deposits).
"""

import math
from dataclasses import dataclass
from typing import Sequence

from tao_dashboard.services.flow_classifier import (
    DEFAULT_ALPHA_PCT_THRESHOLD,
    DEFAULT_VALUE_PCT_THRESHOLD,
    is_flow_likely,
)
from tao_dashboard.services.numeric import decimal_str, finite_sum
from tao_dashboard.services.types import (
    PositionKey,
    PositionPoint,
    PositionsBySnapshot,
    SnapshotPoint,
)


@dataclass
class Contributor:
    """Running aggregates for one position identity."""
    key: PositionKey
    alpha_net: float = 0.0
    alpha_staking: float = 0.0
    alpha_flow: float = 0.0
    tao_impact_net: float = 0.0
    tao_impact_staking: float = 0.0
    tao_impact_flow: float = 0.0
    flow_likely_periods: int = 0
    share_pct_net: float = 0.0
    share_pct_staking: float = 0.0

    def to_dict(self) -> dict:
        return {
            "netuid": self.key.netuid,
            "hotkey": self.key.hotkey,
            "alphaEarnedNet": decimal_str(self.alpha_net),
            "alphaEarnedStakingEst": decimal_str(self.alpha_staking),
            "alphaFlowExcluded": decimal_str(self.alpha_flow),
            "taoImpactEstNet": decimal_str(self.tao_impact_net),
            "taoImpactEstStaking": decimal_str(self.tao_impact_staking),
            "taoImpactFlowExcluded": decimal_str(self.tao_impact_flow),
            "sharePctNet": decimal_str(self.share_pct_net),
            "sharePctStaking": decimal_str(self.share_pct_staking),
            "flowLikelyPeriods": self.flow_likely_periods,
        }


@dataclass
class AttributionResult:
    contributors: list[Contributor]
    total_impact_net: float
    total_impact_staking: float


def attribute(
    snapshots: Sequence[SnapshotPoint],
    positions_by_snapshot: PositionsBySnapshot,
    alpha_pct_threshold: float = DEFAULT_ALPHA_PCT_THRESHOLD,
    value_pct_threshold: float = DEFAULT_VALUE_PCT_THRESHOLD,
) -> AttributionResult:
    """Attribute alpha deltas across every interval of an ascending snapshot series."""
    by_key: dict[PositionKey, Contributor] = {}
    empty: dict[PositionKey, PositionPoint] = {}

    for start, end in zip(snapshots, snapshots[1:]):
        start_map = _subnets_only(positions_by_snapshot.get(start.id, empty))
        end_map = _subnets_only(positions_by_snapshot.get(end.id, empty))

        # New and closed positions appear on one side only
        for key in start_map.keys() | end_map.keys():
            s0 = start_map.get(key)
            s1 = end_map.get(key)

            alpha_start = s0.alpha_balance if s0 else 0.0
            alpha_end = s1.alpha_balance if s1 else 0.0
            earned = alpha_end - alpha_start
            if not math.isfinite(earned) or earned == 0:
                continue

            end_price = s1.price_tao if s1 else 0.0
            tao_impact = earned * end_price if end_price > 0 else 0.0
            if not math.isfinite(tao_impact):
                tao_impact = 0.0

            c = by_key.get(key)
            if c is None:
                c = by_key[key] = Contributor(key=key)

            c.alpha_net += earned
            c.tao_impact_net += tao_impact

            flagged = is_flow_likely(
                alpha_start,
                alpha_end,
                s0.value_tao if s0 else 0.0,
                s1.value_tao if s1 else 0.0,
                alpha_pct_threshold=alpha_pct_threshold,
                value_pct_threshold=value_pct_threshold,
            )
            if flagged:
                c.flow_likely_periods += 1
                c.alpha_flow += earned
                c.tao_impact_flow += tao_impact
                continue

            c.alpha_staking += earned
            c.tao_impact_staking += tao_impact

    contributors = list(by_key.values())
    total_net = finite_sum(c.tao_impact_net for c in contributors)
    total_staking = finite_sum(c.tao_impact_staking for c in contributors)

    for c in contributors:
        c.share_pct_net = c.tao_impact_net / total_net * 100 if total_net > 0 else 0.0
        c.share_pct_staking = c.tao_impact_staking / total_staking * 100 if total_staking > 0 else 0.0

    contributors.sort(key=lambda c: (-c.tao_impact_staking, -c.tao_impact_net, c.key.sort_key))

    return AttributionResult(
        contributors=contributors,
        total_impact_net=total_net,
        total_impact_staking=total_staking,
    )


def _subnets_only(positions: dict[PositionKey, PositionPoint]) -> dict[PositionKey, PositionPoint]:
    return {k: p for k, p in positions.items() if k.is_subnet}
