"""Trading data model shared by the router, venues and analyzers."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from utils.addressing import is_address


class TradeType(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class TradingPhase(str, Enum):
    BONDING_CURVE = "BONDING_CURVE"
    DEX = "DEX"


class RouteType(str, Enum):
    BONDING_CURVE = "BONDING_CURVE"
    DEX_V2 = "DEX_V2"
    DEX_V3 = "DEX_V3"
    MULTI_HOP = "MULTI_HOP"


class TransactionStatus(str, Enum):
    PENDING = "PENDING"
    SUBMITTED = "SUBMITTED"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"


class TradeState(str, Enum):
    INITIATED = "INITIATED"
    ROUTED = "ROUTED"
    SUBMITTED = "SUBMITTED"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"


def _int_string(value: Any, field_name: str) -> str:
    try:
        number = int(str(value).strip())
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{field_name} must be an integer string, got {value!r}") from exc
    if number < 0:
        raise ValueError(f"{field_name} must not be negative")
    return str(number)


@dataclass
class TradeParams:
    token_address: str
    trade_type: TradeType
    amount: str
    slippage_tolerance: float = 2.0
    deadline: int | None = None
    recipient: str | None = None
    min_amount_out: str | None = None
    max_amount_in: str | None = None
    priority_fee: str | None = None
    use_private_mempool: bool = False

    def __post_init__(self) -> None:
        if not is_address(self.token_address):
            raise ValueError(f"invalid token address: {self.token_address!r}")
        if self.recipient is not None and not is_address(self.recipient):
            raise ValueError(f"invalid recipient address: {self.recipient!r}")
        self.trade_type = TradeType(self.trade_type)
        self.amount = _int_string(self.amount, "amount")
        if int(self.amount) <= 0:
            raise ValueError("amount must be positive")
        self.slippage_tolerance = float(self.slippage_tolerance)
        if not 0.0 <= self.slippage_tolerance <= 50.0:
            raise ValueError("slippage_tolerance must be within [0, 50]")
        if self.min_amount_out is not None:
            self.min_amount_out = _int_string(self.min_amount_out, "min_amount_out")
        if self.max_amount_in is not None:
            self.max_amount_in = _int_string(self.max_amount_in, "max_amount_in")
        if self.priority_fee is not None:
            self.priority_fee = _int_string(self.priority_fee, "priority_fee")


@dataclass
class TokenState:
    address: str
    phase: TradingPhase
    is_platform_token: bool
    is_launched: bool
    is_open: bool
    can_sell: bool
    sold: str = "0"
    raised: str = "0"
    total_supply: str = "0"
    current_price: str = "0"
    market_cap: str = "0"
    liquidity: str = "0"
    bonding_curve_progress: float = 0.0
    symbol: str = ""
    decimals: int = 18


@dataclass
class Route:
    route_type: RouteType
    path: list[str]
    estimated_gas: str
    price_impact: float
    execution_price: str
    amount_in: str
    amount_out: str
    minimum_amount_out: str
    fee: str
    pools: list[str] = field(default_factory=list)
    dex: str = ""


@dataclass
class BondingCurveQuote:
    tokens_out: str
    cost_in_wei: str
    price_per_token: str
    current_supply: str
    target_supply: str
    progress_percent: float
    next_price_increment: str
    will_trigger_launch: bool
    fee_bps: int = 0


@dataclass
class DexQuote:
    dex: str
    pool_address: str
    reserve_in: str
    reserve_out: str
    amount_out: str
    price_impact: float
    execution_price: str
    fee: str
    path: list[str]
    pools: list[str] = field(default_factory=list)


@dataclass
class RouteAttempt:
    """Outcome of quoting one venue: either a route or the reason it was skipped."""

    venue: str
    path: list[str]
    route: Route | None = None
    skip_reason: str = ""

    @property
    def ok(self) -> bool:
        return self.route is not None


@dataclass
class TransactionDetails:
    hash: str
    from_address: str
    to: str
    value: str
    data: str
    gas_price: str
    gas_limit: str
    nonce: int
    chain_id: int
    status: TransactionStatus = TransactionStatus.SUBMITTED


@dataclass
class TradeResult:
    success: bool
    token_address: str
    trade_type: TradeType
    phase: TradingPhase
    amount_in: str
    amount_out: str
    execution_price: str
    price_impact: float
    route: Route
    tx_hash: str = ""
    gas_used: str = "0"
    gas_cost: str = "0"
    timestamp: float = field(default_factory=time.time)
    error: str = ""
    error_code: str = ""
    retries: int = 0


@dataclass
class MEVThreat:
    type: str
    severity: str
    description: str
    mitigation: str


@dataclass
class MempoolScan:
    """Pending-pool scan outcome; available=False means no view, not "safe"."""

    available: bool
    suspicious_count: int = 0
    scanned: int = 0


@dataclass
class DexVenueConfig:
    name: str
    router: str
    factory: str
    # Reserved: pair lookups go through the factory, not CREATE2 derivation.
    init_code_hash: str = ""
    fee_bps: int = 30


@dataclass
class MEVProtectionConfig:
    enabled: bool = False
    use_flashbots: bool = False
    private_mempool: bool = False
    max_priority_fee: int = 2_000_000_000
    # Reserved for bundle submission; flashbots mode falls back to a normal send.
    bundle_timeout: int = 60_000
    front_run_protection: bool = True
    back_run_protection: bool = True  # reserved


@dataclass
class RetryConfig:
    max_retries: int = 3
    retry_delay: float = 1.0
    exponential_backoff: bool = True
    # False: max_retries counts resubmits after the first attempt.
    count_first_attempt: bool = False

    def total_attempts(self) -> int:
        retries = max(0, int(self.max_retries))
        if self.count_first_attempt:
            return max(1, retries)
        return retries + 1


@dataclass
class TradingConfig:
    network: str
    rpc_urls: list[str]
    base_asset: str
    dex_venues: list[DexVenueConfig] = field(default_factory=list)
    bonding_curve_address: str = ""
    intermediate_tokens: list[str] = field(default_factory=list)
    chain_id: int = 0
    max_slippage: float = 10.0
    max_price_impact: float = 15.0
    default_deadline: int = 1200
    max_gas_price: int = 100_000_000_000
    tx_timeout: int = 180
    rpc_timeout: int = 10
    mev_protection: MEVProtectionConfig = field(default_factory=MEVProtectionConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
