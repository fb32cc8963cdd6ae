"""Quotes and executes trades against the linear bonding-curve sale contract."""

from __future__ import annotations

import logging
from decimal import Decimal, localcontext
from typing import Any

from trading.abis import BONDING_CURVE_ABI, TOKEN_INFO_SOLD_INDEX
from trading.errors import TradingEngineError, TradingError
from trading.models import (
    BondingCurveQuote,
    Route,
    RouteType,
    TokenState,
    TradeParams,
    TradeResult,
    TradeType,
    TradingPhase,
)
from trading.price_calculator import DECIMAL_PRECISION, truncate
from trading.venues import SubmittedCallback, TradingVenue
from utils.addressing import same_address

logger = logging.getLogger(__name__)

BUY_GAS_ESTIMATE = 150_000
SELL_GAS_ESTIMATE = 120_000


class BondingCurveTrader(TradingVenue):
    name = "bonding_curve"
    phase = TradingPhase.BONDING_CURVE

    def handles(self, route: Route) -> bool:
        return route.route_type is RouteType.BONDING_CURVE

    def _require_contract(self) -> str:
        address = self.config.bonding_curve_address
        if not address:
            raise TradingEngineError(TradingError.TOKEN_NOT_TRADEABLE, "Bonding curve contract not configured")
        return address

    async def _read(self, fn_name: str, *args: Any) -> Any:
        return await self.chain.call(self._require_contract(), BONDING_CURVE_ABI, fn_name, *args)

    async def quote(self, params: TradeParams, token_state: TokenState) -> BondingCurveQuote:
        return await self.get_quote(params, token_state)

    async def get_quote(self, params: TradeParams, token_state: TokenState) -> BondingCurveQuote:
        self._require_contract()
        info = await self._read("getTokenInfo", params.token_address)
        sold = int(info[TOKEN_INFO_SOLD_INDEX])
        target = int(await self._read("TOKEN_LIMIT"))
        fee_bps = int(await self._read("platformTradingFee"))
        amount = int(params.amount)

        if params.trade_type is TradeType.BUY:
            tokens_out = int(await self._read("calculateTokensOut", sold, amount))
            if tokens_out <= 0:
                raise TradingEngineError(
                    TradingError.INSUFFICIENT_LIQUIDITY,
                    "Bonding curve returned zero tokens for this amount",
                    details={"sold": sold, "target": target},
                )
            new_sold = sold + tokens_out
            price = self.calculator.execution_price(amount, tokens_out)
            cost = amount
            will_launch = target > 0 and new_sold >= target
        else:
            if amount > sold:
                raise TradingEngineError(
                    TradingError.INSUFFICIENT_LIQUIDITY,
                    "Sell amount exceeds tokens sold on the curve",
                    details={"sold": sold, "amount": amount},
                )
            cost = int(await self._read("calculateETHOut", sold, amount))
            tokens_out = amount
            new_sold = sold - amount
            price = self.calculator.execution_price(cost, amount)
            will_launch = False

        progress = float(new_sold) / float(target) * 100 if target > 0 else 0.0
        return BondingCurveQuote(
            tokens_out=str(tokens_out),
            cost_in_wei=str(cost),
            price_per_token=price,
            current_supply=str(sold),
            target_supply=str(target),
            progress_percent=progress,
            next_price_increment=str(await self._next_price_increment(sold, new_sold, target)),
            will_trigger_launch=will_launch,
            fee_bps=fee_bps,
        )

    async def _next_price_increment(self, sold: int, new_sold: int, target: int) -> int:
        """Marginal price move across the trade, from the curve constants."""
        initial = int(await self._read("INITIAL_PRICE"))
        final = int(await self._read("FINAL_PRICE"))
        before = self.calculator.curve_price(sold, target, initial, final)
        after = self.calculator.curve_price(new_sold, target, initial, final)
        return abs(after - before)

    async def build_route(self, params: TradeParams, token_state: TokenState) -> Route:
        return await self.get_route(params, token_state)

    async def get_route(self, params: TradeParams, token_state: TokenState) -> Route:
        quote = await self.get_quote(params, token_state)
        is_buy = params.trade_type is TradeType.BUY
        amount_out = quote.tokens_out if is_buy else quote.cost_in_wei
        with localcontext() as ctx:
            ctx.prec = DECIMAL_PRECISION
            fee = truncate(Decimal(int(params.amount)) * quote.fee_bps / 10_000)

        base = self.config.base_asset
        path = [base, params.token_address] if is_buy else [params.token_address, base]
        minimum = params.min_amount_out or self.calculator.calculate_minimum_amount_out(
            amount_out, params.slippage_tolerance
        )
        return Route(
            route_type=RouteType.BONDING_CURVE,
            path=path,
            pools=[self.config.bonding_curve_address],
            dex=self.name,
            estimated_gas=str(BUY_GAS_ESTIMATE if is_buy else SELL_GAS_ESTIMATE),
            price_impact=self.calculator.bonding_curve_price_impact(params, token_state),
            execution_price=quote.price_per_token,
            amount_in=params.amount,
            amount_out=str(amount_out),
            minimum_amount_out=str(minimum),
            fee=str(fee),
        )

    async def execute(
        self,
        params: TradeParams,
        route: Route,
        signer: Any,
        on_submitted: SubmittedCallback | None = None,
    ) -> TradeResult:
        curve = self._require_contract()
        try:
            sale = await self.chain.call(curve, BONDING_CURVE_ABI, "tokenSales", params.token_address)
            if not bool(sale[3]):
                raise TradingEngineError(
                    TradingError.TOKEN_NOT_TRADEABLE,
                    "Token sale is not open",
                    details={"launched": bool(sale[2])},
                )
            gas_price = await self.resolve_gas_price(params)
        except TradingEngineError:
            raise
        except Exception as exc:
            # Read failures before submission go through the retry policy.
            return self.failed_result(params, route, exc)

        is_buy = params.trade_type is TradeType.BUY
        minimum = int(route.minimum_amount_out or 0)
        if is_buy:
            fn_name, args, value = "buyToken", [params.token_address, minimum], int(params.amount)
        else:
            fn_name, args, value = "sellToken", [params.token_address, int(params.amount), minimum], 0

        sent, track = self.track_submissions(on_submitted)
        try:
            details, receipt = await self.submit_and_confirm(
                curve,
                BONDING_CURVE_ABI,
                fn_name,
                args,
                self.tx_params(signer, gas_price, route.estimated_gas, value),
                signer,
                private=params.use_private_mempool,
                on_submitted=track,
            )
            amount_in, amount_out = self._filled_amounts(receipt, params, route)
        except Exception as exc:
            return self.failed_result(params, route, exc, tx_hash=sent[-1].hash if sent else "")

        logger.info(
            "CURVE_TRADE_OK token=%s side=%s in=%s out=%s hash=%s",
            params.token_address,
            params.trade_type.value,
            amount_in,
            amount_out,
            details.hash,
        )
        return self.success_result(params, route, details, receipt, amount_in, amount_out)

    def _filled_amounts(self, receipt: Any, params: TradeParams, route: Route) -> tuple[str, str]:
        is_buy = params.trade_type is TradeType.BUY
        event_name = "TokenPurchased" if is_buy else "TokenSold"
        try:
            events = self.chain.decode_events(self.config.bonding_curve_address, BONDING_CURVE_ABI, event_name, receipt)
        except Exception as exc:
            logger.debug("CURVE_EVENT_DECODE_FAILED event=%s error=%s", event_name, exc)
            events = []
        for event in events:
            if not same_address(event.get("token"), params.token_address):
                continue
            if is_buy:
                return str(int(event["cost"])), str(int(event["amount"]))
            return str(int(event["amount"])), str(int(event["proceeds"]))
        return params.amount, route.amount_out
