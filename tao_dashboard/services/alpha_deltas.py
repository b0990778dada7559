"""Per-interval alpha token deltas for every subnet position."""

from typing import Sequence

from tao_dashboard.services.numeric import decimal_str
from tao_dashboard.services.types import PositionsBySnapshot, SnapshotPoint


def alpha_deltas(
    snapshots: Sequence[SnapshotPoint],
    positions_by_snapshot: PositionsBySnapshot,
) -> list[dict]:
    """One row per (consecutive snapshot pair, subnet identity), newest period first.

    An identity present on only one side of a pair reads as "0" on the other.
    """
    ordered = sorted(snapshots, key=lambda s: s.captured_at)
    periods = []

    pairs = list(zip(ordered, ordered[1:]))
    for start, end in reversed(pairs):
        start_map = {k: p for k, p in positions_by_snapshot.get(start.id, {}).items() if k.is_subnet}
        end_map = {k: p for k, p in positions_by_snapshot.get(end.id, {}).items() if k.is_subnet}

        for key in sorted(start_map.keys() | end_map.keys(), key=lambda k: k.sort_key):
            s0 = start_map.get(key)
            s1 = end_map.get(key)
            alpha_start = s0.alpha_balance if s0 else 0.0
            alpha_end = s1.alpha_balance if s1 else 0.0

            periods.append({
                "periodStart": start.captured_at.isoformat(),
                "periodEnd": end.captured_at.isoformat(),
                "netuid": key.netuid,
                "hotkey": key.hotkey,
                "alphaStart": (s0.alpha_balance_raw if s0 else None) or "0",
                "alphaEnd": (s1.alpha_balance_raw if s1 else None) or "0",
                "alphaEarned": decimal_str(alpha_end - alpha_start),
            })

    return periods
