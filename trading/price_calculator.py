"""Price impact, slippage bounds, gas tiers and curve/AMM arithmetic.

All monetary inputs and outputs are integers in the smallest unit (or their
string form). Intermediate math runs in ``decimal.Decimal`` with a wide
context and is truncated toward zero only when an amount is returned.
"""

from __future__ import annotations

import logging
from decimal import ROUND_DOWN, Decimal, localcontext
from typing import TYPE_CHECKING, Any

from trading.models import TokenState, TradeParams, TradeType, TradingPhase

if TYPE_CHECKING:
    from trading.chain import ChainClient

logger = logging.getLogger(__name__)

DECIMAL_PRECISION = 80
PRICE_PLACES = Decimal("1e-18")
GAS_TIER_PERCENT: dict[str, int] = {"slow": 90, "normal": 100, "fast": 120}
SECONDS_PER_YEAR = 365 * 24 * 60 * 60


def _dec(value: Any) -> Decimal:
    return Decimal(str(value if value not in (None, "") else 0))


def truncate(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_DOWN))


def format_price(value: Decimal) -> str:
    if value.is_zero():
        return "0"
    with localcontext() as ctx:
        ctx.prec = DECIMAL_PRECISION
        quantized = value.quantize(PRICE_PLACES, rounding=ROUND_DOWN)
        if quantized.is_zero():
            return "0"
        return format(quantized.normalize(), "f")


def clamp_percent(value: float | Decimal) -> float:
    number = float(value)
    if number != number:  # NaN
        return 0.0
    return max(0.0, min(100.0, number))


class PriceCalculator:
    def __init__(self, chain: ChainClient | None = None) -> None:
        self.chain = chain

    # ---- price impact -------------------------------------------------

    def calculate_price_impact(self, params: TradeParams, token_state: TokenState) -> float:
        if token_state.phase is TradingPhase.BONDING_CURVE:
            return self.bonding_curve_price_impact(params, token_state)
        return self.dex_price_impact(params, token_state)

    @staticmethod
    def bonding_curve_price_impact(params: TradeParams, token_state: TokenState) -> float:
        """Approximate sold-supply change as a percent of the target supply."""
        current_price = int(token_state.current_price or 0)
        target = int(token_state.total_supply or 0)
        if current_price <= 0 or target <= 0:
            return 0.0
        sold = int(token_state.sold or 0)
        trade_size = int(params.amount)
        if params.trade_type is TradeType.BUY:
            new_sold = sold + trade_size // current_price
        else:
            new_sold = max(0, sold - trade_size)
        with localcontext() as ctx:
            ctx.prec = DECIMAL_PRECISION
            change = Decimal(abs(new_sold - sold)) * 100 / Decimal(target)
        return clamp_percent(change)

    @staticmethod
    def dex_price_impact(params: TradeParams, token_state: TokenState) -> float:
        liquidity = int(token_state.liquidity or 0)
        if liquidity <= 0:
            return 100.0
        with localcontext() as ctx:
            ctx.prec = DECIMAL_PRECISION
            impact = Decimal(int(params.amount)) * 100 / Decimal(liquidity)
        return clamp_percent(impact)

    @staticmethod
    def amm_price_impact(amount_in: Any, amount_out: Any, reserve_in: Any, reserve_out: Any) -> float:
        """|spot - execution| / spot * 100 for a constant-product pool."""
        r_in, r_out = _dec(reserve_in), _dec(reserve_out)
        a_in, a_out = _dec(amount_in), _dec(amount_out)
        if r_in <= 0 or r_out <= 0 or a_in <= 0:
            return 100.0
        with localcontext() as ctx:
            ctx.prec = DECIMAL_PRECISION
            spot = r_out / r_in
            execution = a_out / a_in
            impact = abs(spot - execution) / spot * 100
        return clamp_percent(impact)

    @staticmethod
    def amm_amount_out(amount_in: int, reserve_in: int, reserve_out: int, fee_bps: int = 30) -> int:
        """UniswapV2 getAmountOut with the pool fee taken from the input."""
        if amount_in <= 0 or reserve_in <= 0 or reserve_out <= 0:
            return 0
        amount_in_with_fee = int(amount_in) * (10_000 - int(fee_bps))
        numerator = amount_in_with_fee * int(reserve_out)
        denominator = int(reserve_in) * 10_000 + amount_in_with_fee
        return numerator // denominator

    # ---- slippage bounds ---------------------------------------------

    @staticmethod
    def calculate_minimum_amount_out(expected_amount: Any, slippage_tolerance: float) -> str:
        with localcontext() as ctx:
            ctx.prec = DECIMAL_PRECISION
            slippage = _dec(slippage_tolerance) / 100
            minimum = _dec(expected_amount) * (1 - slippage)
        return str(max(0, truncate(minimum)))

    @staticmethod
    def calculate_maximum_amount_in(expected_amount: Any, slippage_tolerance: float) -> str:
        with localcontext() as ctx:
            ctx.prec = DECIMAL_PRECISION
            slippage = _dec(slippage_tolerance) / 100
            maximum = _dec(expected_amount) * (1 + slippage)
        return str(max(0, truncate(maximum)))

    # ---- gas ------------------------------------------------------------

    @staticmethod
    def gas_price_for_tier(base_gas_price: int, priority: str) -> int:
        percent = GAS_TIER_PERCENT.get(str(priority).lower(), 100)
        return (int(base_gas_price) * percent) // 100

    async def estimate_optimal_gas_price(self, priority: str = "normal") -> int:
        if self.chain is None:
            raise RuntimeError("chain client is not configured")
        base = await self.chain.gas_price()
        return self.gas_price_for_tier(base, priority)

    async def estimate_gas_price(self) -> int:
        """Current gas price plus a 10% inclusion buffer."""
        if self.chain is None:
            raise RuntimeError("chain client is not configured")
        base = await self.chain.gas_price()
        return base + base // 10

    # ---- prices ---------------------------------------------------------

    @staticmethod
    def execution_price(base_amount: Any, token_amount: Any) -> str:
        """Base asset paid (or received) per token unit."""
        tokens = _dec(token_amount)
        if tokens <= 0:
            return "0"
        with localcontext() as ctx:
            ctx.prec = DECIMAL_PRECISION
            price = _dec(base_amount) / tokens
        return format_price(price)

    @staticmethod
    def calculate_execution_price(amount_in: Any, amount_out: Any, decimals_in: int = 18, decimals_out: int = 18) -> str:
        """Decimals-adjusted amount_in / amount_out for display."""
        with localcontext() as ctx:
            ctx.prec = DECIMAL_PRECISION
            adjusted_in = _dec(amount_in) / (Decimal(10) ** int(decimals_in))
            adjusted_out = _dec(amount_out) / (Decimal(10) ** int(decimals_out))
            if adjusted_out.is_zero():
                return "0"
            return format_price(adjusted_in / adjusted_out)

    @staticmethod
    def calculate_apy(initial_price: Any, current_price: Any, time_elapsed_seconds: float) -> float:
        initial = _dec(initial_price)
        if time_elapsed_seconds <= 0 or initial.is_zero():
            return 0.0
        with localcontext() as ctx:
            ctx.prec = DECIMAL_PRECISION
            years = _dec(time_elapsed_seconds) / SECONDS_PER_YEAR
            total_return = (_dec(current_price) - initial) / initial
            return float(total_return / years * 100)

    # ---- linear bonding curve ----------------------------------------

    @staticmethod
    def curve_price(sold: int, target: int, initial_price: int, final_price: int) -> int:
        """initial + (final - initial) * min(sold, target) / target, truncated."""
        if target <= 0 or sold <= 0:
            return int(initial_price)
        capped = min(int(sold), int(target))
        with localcontext() as ctx:
            ctx.prec = DECIMAL_PRECISION
            price = Decimal(initial_price) + Decimal(int(final_price) - int(initial_price)) * Decimal(capped) / Decimal(target)
        return truncate(price)

    @staticmethod
    def tokens_for_core(core_in: int, sold: int, target: int, initial_price: int, final_price: int) -> int:
        """Tokens bought for ``core_in`` by integrating the linear price from ``sold``."""
        if core_in <= 0 or target <= 0 or sold >= target:
            return 0
        with localcontext() as ctx:
            ctx.prec = DECIMAL_PRECISION
            slope = Decimal(int(final_price) - int(initial_price)) / Decimal(target)
            price_now = Decimal(initial_price) + slope * Decimal(sold)
            core = Decimal(core_in)
            if slope.is_zero():
                tokens = core / price_now if price_now > 0 else Decimal(0)
            else:
                # (slope/2) t^2 + price_now * t - core = 0
                discriminant = price_now * price_now + 2 * slope * core
                if discriminant < 0:
                    return 0
                tokens = (discriminant.sqrt() - price_now) / slope
        return max(0, min(truncate(tokens), int(target) - int(sold)))

    @staticmethod
    def core_for_tokens(tokens_in: int, sold: int, target: int, initial_price: int, final_price: int) -> int:
        """Core returned for selling ``tokens_in`` back down the curve from ``sold``."""
        if tokens_in <= 0 or target <= 0 or sold <= 0:
            return 0
        tokens = min(int(tokens_in), int(sold))
        with localcontext() as ctx:
            ctx.prec = DECIMAL_PRECISION
            slope = Decimal(int(final_price) - int(initial_price)) / Decimal(target)
            s = Decimal(sold)
            t = Decimal(tokens)
            core = Decimal(initial_price) * t + slope * (2 * s * t - t * t) / 2
        return max(0, truncate(core))

    @staticmethod
    def estimate_tokens_received(core_amount: Any, current_sold: Any, target_supply: Any, initial_price: Any, final_price: Any) -> str:
        """Rough estimate: amount over the average of current and half-range price."""
        target = _dec(target_supply)
        if target <= 0:
            return "0"
        with localcontext() as ctx:
            ctx.prec = DECIMAL_PRECISION
            price_range = _dec(final_price) - _dec(initial_price)
            current_price = _dec(initial_price) + price_range * (_dec(current_sold) / target)
            avg_price = current_price + price_range / 2
            if avg_price <= 0:
                return "0"
            tokens = _dec(core_amount) / avg_price
        return str(truncate(tokens))
