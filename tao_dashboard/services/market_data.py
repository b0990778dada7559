"""Wallet and subnet market data from Taostats, normalized for storage.

Taostats payloads vary in shape between endpoints and API versions:
`{pagination, data: [...]}`, `{data: {...}}` or a bare object, with balances
as RAO integers (sometimes strings, sometimes nested). Every shape-sniffing
rule lives in this module; callers only see the *Reading dataclasses.
"""

import asyncio
import logging
import math
import re
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from tao_dashboard.services.numeric import to_decimal
from tao_dashboard.services.taostats_client import CoinGeckoClient, TaostatsClient, TaostatsError
from tao_dashboard.utils.constants import RAO_DECIMALS

logger = logging.getLogger(__name__)

ACCOUNT_PATH = "/api/account/latest/v1"
STAKE_BALANCE_PATH = "/api/dtao/stake_balance/latest/v1"
POOL_PATH = "/api/dtao/pool/latest/v1"
TAO_FLOW_PATH = "/api/dtao/tao_flow/v1"
SUBNET_EMISSION_PATH = "/api/dtao/subnet_emission/v1"

USD_PLACES = Decimal("0.01")

_INT_RE = re.compile(r"-?\d+")

# Alternate field names seen across Taostats responses, in preference order
FLOW_KEYS = ("flow_24h", "flow24h", "flow", "tao_flow_24h", "tao_flow")
EMISSION_KEYS = ("emission_pct", "emissionPct", "emission_percent", "emission")
VOLUME_KEYS = ("tao_volume_24h", "taoVolume24h", "tao_volume", "volume_24h")
PRICE_CHANGE_1D_KEYS = ("price_change_1_day", "priceChange1d", "price_change_24h", "price_change_day")
PRICE_CHANGE_1W_KEYS = ("price_change_1_week", "priceChange1w", "price_change_7d")
PRICE_CHANGE_1M_KEYS = ("price_change_1_month", "priceChange1m", "price_change_30d")


@dataclass
class PositionReading:
    netuid: int
    hotkey: str | None
    alpha_balance: Decimal
    value_tao: Decimal
    value_usd: Decimal = Decimal(0)
    name: str = ""


@dataclass
class PortfolioReading:
    address: str
    tao_usd: Decimal | None
    free_tao: Decimal
    staked_tao: Decimal
    total_value_tao: Decimal
    total_value_usd: Decimal | None
    root_value_tao: Decimal
    root_value_usd: Decimal
    subnets: list[PositionReading] = field(default_factory=list)
    used_alpha_fallback: bool = False

    @property
    def held_netuids(self) -> list[int]:
        return sorted({p.netuid for p in self.subnets})


@dataclass
class SubnetMetricReading:
    netuid: int
    values: dict[str, Decimal | None] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)

    @property
    def has_any(self) -> bool:
        return any(v is not None for v in self.values.values())


# ---------------------------------------------------------------------------
# Shape helpers
# ---------------------------------------------------------------------------

def unwrap(payload: Any) -> Any:
    """Strip the `{data: ...}` envelope when present."""
    if isinstance(payload, dict) and "data" in payload:
        return payload["data"]
    return payload


def rows(payload: Any) -> list[dict]:
    data = unwrap(payload)
    if isinstance(data, list):
        return [r for r in data if isinstance(r, dict)]
    if isinstance(data, dict):
        results = data.get("results")
        if isinstance(results, list):
            return [r for r in results if isinstance(r, dict)]
        return [data]
    return []


def first_row(payload: Any) -> dict | None:
    found = rows(payload)
    return found[0] if found else None


def pick(row: dict | None, keys: tuple[str, ...]) -> Any:
    """First present, non-empty value among `keys`."""
    if not row:
        return None
    for key in keys:
        value = row.get(key)
        if value is not None and value != "":
            return value
    return None


def rao_int(value: Any) -> int:
    """Parse a RAO amount from whatever shape Taostats used; 0 when unparseable."""
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else 0
    if isinstance(value, Decimal):
        return int(value) if value.is_finite() else 0
    if isinstance(value, str):
        match = _INT_RE.search(value.strip())
        return int(match.group(0)) if match else 0
    if isinstance(value, list):
        return rao_int(value[0]) if value else 0
    if isinstance(value, dict):
        for key in ("value", "raw", "amount", "balance", "free"):
            if key in value:
                return rao_int(value[key])
    return 0


def rao_to_tao(rao: int) -> Decimal:
    """Exact RAO -> TAO conversion."""
    return Decimal(rao).scaleb(-RAO_DECIMALS)


def hotkey_of(row: dict) -> str | None:
    value = row.get("hotkey")
    if isinstance(value, dict):
        value = value.get("ss58") or value.get("hex")
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def usd_value(value_tao: Decimal, tao_usd: Decimal | None) -> Decimal:
    if tao_usd is None or tao_usd <= 0:
        return Decimal(0)
    return (value_tao * tao_usd).quantize(USD_PLACES)


# ---------------------------------------------------------------------------
# Portfolio
# ---------------------------------------------------------------------------

def _address_variants(address: str, keys: tuple[str, ...]) -> list[dict]:
    return [{key: address} for key in keys]


def normalize_portfolio(
    address: str,
    account_payload: Any,
    stake_payload: Any,
    tao_usd: Decimal | None,
) -> PortfolioReading:
    """Build a PortfolioReading from raw account and stake-balance responses.

    `stake_payload` may be None when the stake endpoint failed; positions then
    fall back to the account's `alpha_balances`.
    """
    account = first_row(account_payload) or {}

    free_rao = rao_int(account.get("balance_free"))
    staked_root_rao = rao_int(account.get("balance_staked_root"))
    staked_alpha_rao = rao_int(account.get("balance_staked_alpha_as_tao"))
    if staked_root_rao or staked_alpha_rao:
        staked_rao = staked_root_rao + staked_alpha_rao
    else:
        staked_rao = rao_int(account.get("balance_staked"))
    total_rao = rao_int(account.get("balance_total")) or (free_rao + staked_rao)

    positions = rows(stake_payload) if stake_payload is not None else []
    used_fallback = False
    if not positions:
        fallback = account.get("alpha_balances")
        if isinstance(fallback, list) and fallback:
            positions = [p for p in fallback if isinstance(p, dict)]
            used_fallback = True

    root_rao = 0
    merged: dict[tuple[int, str | None], PositionReading] = {}
    for p in positions:
        try:
            netuid = int(p.get("netuid"))
        except (TypeError, ValueError):
            continue

        value_rao = rao_int(p.get("balance_as_tao"))
        if netuid == 0:
            root_rao += value_rao
            continue

        key = (netuid, hotkey_of(p))
        alpha = rao_to_tao(rao_int(p.get("balance")))
        value_tao = rao_to_tao(value_rao)
        if key in merged:
            merged[key].alpha_balance += alpha
            merged[key].value_tao += value_tao
        else:
            merged[key] = PositionReading(
                netuid=netuid,
                hotkey=key[1],
                alpha_balance=alpha,
                value_tao=value_tao,
                name=str(p.get("subnet_name") or ""),
            )

    subnets = sorted(merged.values(), key=lambda r: (r.netuid, r.hotkey or ""))
    for reading in subnets:
        reading.value_usd = usd_value(reading.value_tao, tao_usd)

    total_value_tao = rao_to_tao(total_rao)
    root_value_tao = rao_to_tao(root_rao)

    return PortfolioReading(
        address=address,
        tao_usd=tao_usd,
        free_tao=rao_to_tao(free_rao),
        staked_tao=rao_to_tao(staked_rao),
        total_value_tao=total_value_tao,
        total_value_usd=usd_value(total_value_tao, tao_usd) if tao_usd else None,
        root_value_tao=root_value_tao,
        root_value_usd=usd_value(root_value_tao, tao_usd),
        subnets=subnets,
        used_alpha_fallback=used_fallback,
    )


async def fetch_portfolio(
    taostats: TaostatsClient,
    coingecko: CoinGeckoClient,
    address: str,
) -> PortfolioReading:
    """Fetch and normalize the wallet. Raises TaostatsError if the account call fails."""
    account_payload, tao_usd = await asyncio.gather(
        taostats.get_first_ok(
            ACCOUNT_PATH,
            _address_variants(address, ("address", "ss58", "coldkey", "coldkey_ss58")),
        ),
        coingecko.tao_usd(),
    )

    stake_payload = None
    try:
        stake_payload = await taostats.get_first_ok(
            STAKE_BALANCE_PATH,
            _address_variants(address, ("coldkey", "address", "ss58", "wallet")),
        )
    except TaostatsError as e:
        logger.warning(f"[Portfolio] stake_balance unavailable, falling back to alpha_balances: {e}")

    reading = normalize_portfolio(address, account_payload, stake_payload, tao_usd)
    if reading.used_alpha_fallback:
        logger.info(f"[Portfolio] Using account alpha_balances for {len(reading.subnets)} positions")
    return reading


# ---------------------------------------------------------------------------
# Subnet metrics
# ---------------------------------------------------------------------------

def normalize_subnet_metrics(netuid: int, pool: Any, flow: Any, emission: Any) -> SubnetMetricReading:
    pool_row = first_row(pool)
    flow_row = first_row(flow)
    emission_row = first_row(emission)

    return SubnetMetricReading(
        netuid=netuid,
        values={
            "flow_24h": to_decimal(pick(flow_row, FLOW_KEYS)),
            "emission_pct": to_decimal(pick(emission_row, EMISSION_KEYS)),
            "price": to_decimal(pick(pool_row, ("price",))),
            "liquidity": to_decimal(pick(pool_row, ("liquidity",))),
            "tao_volume_24h": to_decimal(pick(pool_row, VOLUME_KEYS)),
            "price_change_1d": to_decimal(pick(pool_row, PRICE_CHANGE_1D_KEYS)),
            "price_change_1w": to_decimal(pick(pool_row, PRICE_CHANGE_1W_KEYS)),
            "price_change_1m": to_decimal(pick(pool_row, PRICE_CHANGE_1M_KEYS)),
        },
    )


async def fetch_subnet_metrics(taostats: TaostatsClient, netuid: int) -> SubnetMetricReading:
    """Pool, flow and emission for one subnet. Each endpoint fails independently."""
    payloads: dict[str, Any] = {}
    errors: list[str] = []

    for name, path in (("pool", POOL_PATH), ("flow", TAO_FLOW_PATH), ("emission", SUBNET_EMISSION_PATH)):
        try:
            payloads[name] = await taostats.get_json(path, {"netuid": netuid})
        except TaostatsError as e:
            payloads[name] = None
            errors.append(f"netuid={netuid} :: {name} :: {e}")

    reading = normalize_subnet_metrics(netuid, payloads["pool"], payloads["flow"], payloads["emission"])
    reading.errors = errors
    return reading
