"""Tests for per-position alpha attribution."""

from datetime import datetime, timedelta, timezone

import pytest

from tao_dashboard.services.attribution import attribute
from tao_dashboard.services.types import PositionKey, PositionPoint, SnapshotPoint

T0 = datetime(2026, 2, 1, tzinfo=timezone.utc)
ROOT = PositionKey.root()
SN1 = PositionKey.subnet(1, "hk1")
SN2 = PositionKey.subnet(2, "hk2")


def _snaps(n: int) -> list[SnapshotPoint]:
    return [SnapshotPoint(id=i + 1, captured_at=T0 + timedelta(days=i)) for i in range(n)]


def _pos(key: PositionKey, alpha: float, value_tao: float) -> PositionPoint:
    return PositionPoint(key=key, alpha_balance=alpha, value_tao=value_tao)


# ---------------------------------------------------------------------------
# 1. Net vs staking split
# ---------------------------------------------------------------------------

class TestAttribute:
    def setup_method(self):
        self.snaps = _snaps(3)
        self.positions = {
            1: {ROOT: _pos(ROOT, 0, 50), SN1: _pos(SN1, 100, 10.0), SN2: _pos(SN2, 50, 5.0)},
            2: {ROOT: _pos(ROOT, 0, 51), SN1: _pos(SN1, 101, 10.2), SN2: _pos(SN2, 80, 8.0)},
            3: {ROOT: _pos(ROOT, 0, 52), SN1: _pos(SN1, 102, 10.4), SN2: _pos(SN2, 80, 8.0)},
        }

    def test_organic_growth_counts_as_staking(self):
        result = attribute(self.snaps, self.positions)
        sn1 = next(c for c in result.contributors if c.key == SN1)
        assert sn1.alpha_net == pytest.approx(2.0)
        assert sn1.alpha_staking == pytest.approx(2.0)
        assert sn1.flow_likely_periods == 0
        expected = 1 * 10.2 / 101 + 1 * 10.4 / 102
        assert sn1.tao_impact_staking == pytest.approx(expected)

    def test_deposit_is_excluded_from_staking(self):
        result = attribute(self.snaps, self.positions)
        sn2 = next(c for c in result.contributors if c.key == SN2)
        assert sn2.alpha_net == pytest.approx(30.0)
        assert sn2.alpha_staking == 0.0
        assert sn2.alpha_flow == pytest.approx(30.0)
        assert sn2.flow_likely_periods == 1
        assert sn2.tao_impact_net == pytest.approx(3.0)
        assert sn2.tao_impact_staking == 0.0

    def test_root_is_never_attributed(self):
        result = attribute(self.snaps, self.positions)
        assert all(c.key.is_subnet for c in result.contributors)

    def test_net_identity(self):
        result = attribute(self.snaps, self.positions)
        for c in result.contributors:
            assert c.alpha_net == pytest.approx(c.alpha_staking + c.alpha_flow)

    def test_shares_sum_to_100(self):
        result = attribute(self.snaps, self.positions)
        assert sum(c.share_pct_net for c in result.contributors) == pytest.approx(100.0)
        assert sum(c.share_pct_staking for c in result.contributors) == pytest.approx(100.0)

    def test_sorted_by_staking_impact(self):
        result = attribute(self.snaps, self.positions)
        assert [c.key for c in result.contributors] == [SN1, SN2]

    def test_to_dict_uses_decimal_strings(self):
        result = attribute(self.snaps, self.positions)
        sn2 = result.contributors[1].to_dict()
        assert sn2["netuid"] == 2
        assert sn2["hotkey"] == "hk2"
        assert sn2["alphaEarnedNet"] == "30"
        assert sn2["alphaFlowExcluded"] == "30"
        assert sn2["flowLikelyPeriods"] == 1


# ---------------------------------------------------------------------------
# 2. Positions opening and closing
# ---------------------------------------------------------------------------

class TestOpenClose:
    def test_new_position_is_flow(self):
        snaps = _snaps(2)
        positions = {1: {}, 2: {SN1: _pos(SN1, 20, 2.0)}}
        result = attribute(snaps, positions)
        (c,) = result.contributors
        assert c.alpha_flow == pytest.approx(20.0)
        assert c.tao_impact_flow == pytest.approx(2.0)
        assert c.flow_likely_periods == 1

    def test_closed_position_has_no_tao_impact(self):
        snaps = _snaps(2)
        positions = {1: {SN1: _pos(SN1, 10, 1.0)}, 2: {}}
        result = attribute(snaps, positions)
        (c,) = result.contributors
        assert c.alpha_net == pytest.approx(-10.0)
        assert c.alpha_staking == pytest.approx(-10.0)
        assert c.tao_impact_net == 0.0

    def test_non_positive_total_gives_zero_shares(self):
        snaps = _snaps(2)
        positions = {1: {SN1: _pos(SN1, 100, 10.0)}, 2: {SN1: _pos(SN1, 90, 9.0)}}
        result = attribute(snaps, positions)
        assert result.total_impact_staking < 0
        assert all(c.share_pct_staking == 0.0 for c in result.contributors)
        assert all(c.share_pct_net == 0.0 for c in result.contributors)

    def test_unchanged_positions_are_omitted(self):
        snaps = _snaps(2)
        positions = {1: {SN1: _pos(SN1, 10, 1.0)}, 2: {SN1: _pos(SN1, 10, 1.5)}}
        assert attribute(snaps, positions).contributors == []
