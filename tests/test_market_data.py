"""Tests for Taostats payload normalization."""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from tao_dashboard.services.market_data import (
    ACCOUNT_PATH,
    STAKE_BALANCE_PATH,
    TAO_FLOW_PATH,
    fetch_portfolio,
    fetch_subnet_metrics,
    hotkey_of,
    normalize_portfolio,
    normalize_subnet_metrics,
    rao_int,
    rao_to_tao,
    rows,
)
from tao_dashboard.services.taostats_client import TaostatsError

ADDRESS = "5Fwallet"
TAO = 10 ** 9

ACCOUNT = {
    "data": [{
        "balance_free": str(1 * TAO),
        "balance_staked_root": 2 * TAO,
        "balance_staked_alpha_as_tao": 3 * TAO,
        "balance_total": 6 * TAO,
    }],
}
STAKE = {
    "pagination": {"total_items": 5},
    "data": [
        {"netuid": 0, "hotkey": {"ss58": "hkRoot"}, "balance": 2 * TAO, "balance_as_tao": 2 * TAO},
        {"netuid": 5, "hotkey": {"ss58": "hkA"}, "balance": 100 * TAO, "balance_as_tao": 1_500_000_000},
        {"netuid": 5, "hotkey": "hkA", "balance": 20 * TAO, "balance_as_tao": 500_000_000},
        {"netuid": 3, "hotkey": "hkB", "balance": str(50 * TAO), "balance_as_tao": str(TAO)},
        {"netuid": "bad", "balance": 1},
    ],
}


# ---------------------------------------------------------------------------
# 1. Shape helpers
# ---------------------------------------------------------------------------

class TestShapes:
    @pytest.mark.parametrize("value, expected", [
        (123, 123),
        ("123", 123),
        ("  -5 ", -5),
        (1.9, 1),
        (float("nan"), 0),
        (Decimal("12"), 12),
        ([7], 7),
        ({"value": "9"}, 9),
        (True, 0),
        (None, 0),
        ("abc", 0),
    ])
    def test_rao_int(self, value, expected):
        assert rao_int(value) == expected

    def test_rao_to_tao_exact(self):
        assert rao_to_tao(1) == Decimal("0.000000001")
        assert rao_to_tao(123_456_789_012) == Decimal("123.456789012")

    def test_rows(self):
        assert rows({"data": [{"a": 1}, 3]}) == [{"a": 1}]
        assert rows({"data": {"results": [{"b": 2}]}}) == [{"b": 2}]
        assert rows({"x": 1}) == [{"x": 1}]
        assert rows("junk") == []
        assert rows(None) == []

    def test_hotkey_of(self):
        assert hotkey_of({"hotkey": {"hex": "0xab"}}) == "0xab"
        assert hotkey_of({"hotkey": "  "}) is None
        assert hotkey_of({}) is None


# ---------------------------------------------------------------------------
# 2. Portfolio
# ---------------------------------------------------------------------------

class TestNormalizePortfolio:
    def test_totals(self):
        reading = normalize_portfolio(ADDRESS, ACCOUNT, STAKE, Decimal("400"))
        assert reading.free_tao == Decimal(1)
        assert reading.staked_tao == Decimal(5)
        assert reading.total_value_tao == Decimal(6)
        assert reading.total_value_usd == Decimal("2400.00")
        assert reading.root_value_tao == Decimal(2)
        assert reading.root_value_usd == Decimal("800.00")

    def test_subnets_sorted_and_merged(self):
        reading = normalize_portfolio(ADDRESS, ACCOUNT, STAKE, Decimal("400"))
        assert [(p.netuid, p.hotkey) for p in reading.subnets] == [(3, "hkB"), (5, "hkA")]
        merged = reading.subnets[1]
        assert merged.alpha_balance == Decimal(120)
        assert merged.value_tao == Decimal(2)
        assert merged.value_usd == Decimal("800.00")
        assert reading.held_netuids == [3, 5]
        assert reading.used_alpha_fallback is False

    def test_no_price(self):
        reading = normalize_portfolio(ADDRESS, ACCOUNT, STAKE, None)
        assert reading.total_value_usd is None
        assert all(p.value_usd == 0 for p in reading.subnets)

    def test_staked_fallback_and_derived_total(self):
        account = {"data": {"balance_free": TAO, "balance_staked": 4 * TAO}}
        reading = normalize_portfolio(ADDRESS, account, {"data": []}, None)
        assert reading.staked_tao == Decimal(4)
        assert reading.total_value_tao == Decimal(5)

    @pytest.mark.parametrize("stake_payload", [None, {"data": []}])
    def test_alpha_balances_fallback(self, stake_payload):
        account = {"data": [{
            "balance_total": 2 * TAO,
            "alpha_balances": [{"netuid": 7, "hotkey": "hk", "balance": TAO, "balance_as_tao": TAO // 10}],
        }]}
        reading = normalize_portfolio(ADDRESS, account, stake_payload, Decimal("100"))
        assert reading.used_alpha_fallback is True
        assert [p.netuid for p in reading.subnets] == [7]
        assert reading.subnets[0].value_tao == Decimal("0.1")

    @pytest.mark.asyncio
    async def test_fetch_portfolio_survives_stake_failure(self):
        account = {"data": [{"balance_total": TAO, "alpha_balances": [{"netuid": 2, "balance": TAO}]}]}

        async def first_ok(path, variants):
            if path == ACCOUNT_PATH:
                return account
            assert path == STAKE_BALANCE_PATH
            raise TaostatsError("stake down")

        taostats = MagicMock()
        taostats.get_first_ok = AsyncMock(side_effect=first_ok)
        coingecko = MagicMock()
        coingecko.tao_usd = AsyncMock(return_value=Decimal("300"))

        reading = await fetch_portfolio(taostats, coingecko, ADDRESS)
        assert reading.tao_usd == Decimal("300")
        assert reading.used_alpha_fallback is True
        assert reading.held_netuids == [2]

    @pytest.mark.asyncio
    async def test_fetch_portfolio_account_failure_raises(self):
        taostats = MagicMock()
        taostats.get_first_ok = AsyncMock(side_effect=TaostatsError("account down"))
        coingecko = MagicMock()
        coingecko.tao_usd = AsyncMock(return_value=None)

        with pytest.raises(TaostatsError):
            await fetch_portfolio(taostats, coingecko, ADDRESS)


# ---------------------------------------------------------------------------
# 3. Subnet metrics
# ---------------------------------------------------------------------------

class TestSubnetMetrics:
    def test_normalize_alternate_keys(self):
        pool = {"data": [{
            "price": "0.05",
            "liquidity": "1000",
            "tao_volume_24h": "12",
            "price_change_1_day": "-2.5",
        }]}
        flow = {"data": [{"tao_flow": "-300"}]}
        emission = {"data": {"emission": "1.2"}}

        reading = normalize_subnet_metrics(5, pool, flow, emission)
        assert reading.values["flow_24h"] == Decimal("-300")
        assert reading.values["emission_pct"] == Decimal("1.2")
        assert reading.values["liquidity"] == Decimal("1000")
        assert reading.values["price_change_1d"] == Decimal("-2.5")
        assert reading.values["price_change_1w"] is None
        assert reading.has_any is True

    def test_empty_payloads(self):
        reading = normalize_subnet_metrics(5, None, None, None)
        assert reading.has_any is False

    @pytest.mark.asyncio
    async def test_fetch_endpoints_fail_independently(self):
        async def get_json(path, params):
            if path == TAO_FLOW_PATH:
                raise TaostatsError("boom")
            return {"data": [{"liquidity": "10", "emission_pct": "0.5"}]}

        taostats = MagicMock()
        taostats.get_json = AsyncMock(side_effect=get_json)

        reading = await fetch_subnet_metrics(taostats, 5)
        assert reading.values["flow_24h"] is None
        assert reading.values["liquidity"] == Decimal("10")
        assert reading.values["emission_pct"] == Decimal("0.5")
        assert reading.errors == ["netuid=5 :: flow :: boom"]
        assert taostats.get_json.await_count == 3
