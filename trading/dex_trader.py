"""Quotes and executes trades against configured UniswapV2-compatible AMMs."""

from __future__ import annotations

import asyncio
import logging
import time
from decimal import Decimal, localcontext
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from trading.abis import ERC20_ABI, MAX_UINT256, V2_FACTORY_ABI, V2_PAIR_ABI, V2_ROUTER_ABI
from trading.errors import TradingEngineError, TradingError
from trading.models import (
    DexQuote,
    DexVenueConfig,
    Route,
    RouteAttempt,
    RouteType,
    TokenState,
    TradeParams,
    TradeResult,
    TradeType,
    TradingConfig,
    TradingPhase,
)
from trading.price_calculator import DECIMAL_PRECISION, PriceCalculator, truncate
from trading.venues import SubmittedCallback, TradingVenue
from utils.addressing import is_zero_address, normalize_address, same_address

if TYPE_CHECKING:
    from trading.chain import ChainClient
    from trading.mev_protection import MEVProtection

logger = logging.getLogger(__name__)

DIRECT_GAS_ESTIMATE = 200_000
MULTI_HOP_GAS_ESTIMATE = 250_000
APPROVE_GAS_ESTIMATE = 60_000
# Multi-hop impact is not derived from pool reserves; this is a fixed estimate.
MULTI_HOP_PRICE_IMPACT = 1.0


def venue_key(name: str | None) -> str:
    return str(name or "").strip().lower()


class DexVenue(TradingVenue):
    phase = TradingPhase.DEX

    def __init__(
        self,
        chain: ChainClient,
        config: TradingConfig,
        venue: DexVenueConfig,
        *,
        mev: MEVProtection | None = None,
        calculator: PriceCalculator | None = None,
        now: Callable[[], float] | None = None,
    ) -> None:
        super().__init__(chain, config, mev=mev, calculator=calculator)
        self.venue = venue
        self.name = venue.name
        self._now = now or time.time

    def handles(self, route: Route) -> bool:
        if route.route_type not in (RouteType.DEX_V2, RouteType.MULTI_HOP):
            return False
        return venue_key(route.dex) == venue_key(self.name)

    def direct_path(self, params: TradeParams) -> list[str]:
        base = self.config.base_asset
        if params.trade_type is TradeType.BUY:
            return [base, params.token_address]
        return [params.token_address, base]

    def multi_hop_path(self, params: TradeParams, intermediate: str) -> list[str]:
        base = self.config.base_asset
        if params.trade_type is TradeType.BUY:
            return [base, intermediate, params.token_address]
        return [params.token_address, intermediate, base]

    def _fee(self, amount: int, hops: int) -> int:
        with localcontext() as ctx:
            ctx.prec = DECIMAL_PRECISION
            return truncate(Decimal(amount) * int(self.venue.fee_bps) * hops / 10_000)

    def _execution_price(self, params: TradeParams, amount_out: int) -> str:
        # Always base asset per token unit.
        if params.trade_type is TradeType.BUY:
            return self.calculator.execution_price(params.amount, amount_out)
        return self.calculator.execution_price(amount_out, params.amount)

    async def _pair(self, token_a: str, token_b: str) -> str:
        pair = await self.chain.call(self.venue.factory, V2_FACTORY_ABI, "getPair", token_a, token_b)
        return "" if is_zero_address(pair) else str(pair)

    async def _amount_out(self, amount_in: int, path: list[str]) -> int:
        amounts = await self.chain.call(self.venue.router, V2_ROUTER_ABI, "getAmountsOut", amount_in, path)
        if not isinstance(amounts, (list, tuple)) or len(amounts) < 2:
            raise TradingEngineError(TradingError.INSUFFICIENT_LIQUIDITY, "quote_empty")
        amount_out = int(amounts[-1])
        if amount_out <= 0:
            raise TradingEngineError(TradingError.INSUFFICIENT_LIQUIDITY, "quote_zero")
        return amount_out

    async def quote(self, params: TradeParams, token_state: TokenState) -> DexQuote:
        path = self.direct_path(params)
        pair = await self._pair(path[0], path[1])
        if not pair:
            raise TradingEngineError(
                TradingError.INSUFFICIENT_LIQUIDITY,
                f"no {self.name} pair for {params.token_address}",
            )
        reserves = await self.chain.call(pair, V2_PAIR_ABI, "getReserves")
        token0 = await self.chain.call(pair, V2_PAIR_ABI, "token0")
        reserve0, reserve1 = int(reserves[0]), int(reserves[1])
        if same_address(token0, path[0]):
            reserve_in, reserve_out = reserve0, reserve1
        else:
            reserve_in, reserve_out = reserve1, reserve0

        amount_in = int(params.amount)
        amount_out = await self._amount_out(amount_in, path)
        return DexQuote(
            dex=self.name,
            pool_address=pair,
            reserve_in=str(reserve_in),
            reserve_out=str(reserve_out),
            amount_out=str(amount_out),
            price_impact=self.calculator.amm_price_impact(amount_in, amount_out, reserve_in, reserve_out),
            execution_price=self._execution_price(params, amount_out),
            fee=str(self._fee(amount_in, 1)),
            path=path,
            pools=[pair],
        )

    async def build_route(self, params: TradeParams, token_state: TokenState) -> Route:
        quote = await self.quote(params, token_state)
        return self._route(params, quote, RouteType.DEX_V2, DIRECT_GAS_ESTIMATE)

    async def build_multi_hop_route(self, params: TradeParams, intermediate: str) -> Route:
        path = self.multi_hop_path(params, intermediate)
        amount_in = int(params.amount)
        amount_out = await self._amount_out(amount_in, path)
        pools: list[str] = []
        for hop_in, hop_out in zip(path, path[1:]):
            try:
                pair = await self._pair(hop_in, hop_out)
            except Exception as exc:
                logger.debug("DEX_POOL_LOOKUP_FAILED dex=%s error=%s", self.name, exc)
                pair = ""
            if pair:
                pools.append(pair)
        quote = DexQuote(
            dex=self.name,
            pool_address="",
            reserve_in="0",
            reserve_out="0",
            amount_out=str(amount_out),
            price_impact=MULTI_HOP_PRICE_IMPACT,
            execution_price=self._execution_price(params, amount_out),
            fee=str(self._fee(amount_in, len(path) - 1)),
            path=path,
            pools=pools,
        )
        return self._route(params, quote, RouteType.MULTI_HOP, MULTI_HOP_GAS_ESTIMATE)

    def _route(self, params: TradeParams, quote: DexQuote, route_type: RouteType, gas: int) -> Route:
        minimum = params.min_amount_out or self.calculator.calculate_minimum_amount_out(
            quote.amount_out, params.slippage_tolerance
        )
        return Route(
            route_type=route_type,
            path=list(quote.path),
            pools=list(quote.pools),
            dex=self.name,
            estimated_gas=str(gas),
            price_impact=quote.price_impact,
            execution_price=quote.execution_price,
            amount_in=params.amount,
            amount_out=quote.amount_out,
            minimum_amount_out=str(minimum),
            fee=quote.fee,
        )

    async def execute(
        self,
        params: TradeParams,
        route: Route,
        signer: Any,
        on_submitted: SubmittedCallback | None = None,
    ) -> TradeResult:
        try:
            gas_price = await self.resolve_gas_price(params)
        except TradingEngineError:
            raise
        except Exception as exc:
            return self.failed_result(params, route, exc)
        base = self.config.base_asset
        amount = int(params.amount)
        minimum = int(route.minimum_amount_out or 0)
        recipient = params.recipient or signer.address
        deadline = int(params.deadline or int(self._now()) + int(self.config.default_deadline))
        path = list(route.path)

        sent, track = self.track_submissions(on_submitted)
        try:
            if params.trade_type is TradeType.BUY and same_address(path[0], base):
                fn_name = "swapExactETHForTokens"
                args: list[Any] = [minimum, path, recipient, deadline]
                value = amount
            else:
                await self._ensure_allowance(path[0], amount, signer, gas_price)
                fn_name = "swapExactTokensForETH" if same_address(path[-1], base) else "swapExactTokensForTokens"
                args = [amount, minimum, path, recipient, deadline]
                value = 0

            details, receipt = await self.submit_and_confirm(
                self.venue.router,
                V2_ROUTER_ABI,
                fn_name,
                args,
                self.tx_params(signer, gas_price, route.estimated_gas, value),
                signer,
                private=params.use_private_mempool,
                on_submitted=track,
            )
            amount_out = self._filled_output(receipt, path[-1], recipient, route)
        except Exception as exc:
            return self.failed_result(params, route, exc, tx_hash=sent[-1].hash if sent else "")

        logger.info(
            "DEX_TRADE_OK dex=%s token=%s side=%s fn=%s out=%s hash=%s",
            self.name,
            params.token_address,
            params.trade_type.value,
            fn_name,
            amount_out,
            details.hash,
        )
        return self.success_result(params, route, details, receipt, params.amount, amount_out)

    async def _ensure_allowance(self, token: str, required: int, signer: Any, gas_price: int) -> None:
        allowance = int(await self.chain.call(token, ERC20_ABI, "allowance", signer.address, self.venue.router))
        if allowance >= required:
            return
        logger.info("TOKEN_APPROVE token=%s spender=%s dex=%s", token, self.venue.router, self.name)
        await self.submit_and_confirm(
            token,
            ERC20_ABI,
            "approve",
            [self.venue.router, MAX_UINT256],
            self.tx_params(signer, gas_price, APPROVE_GAS_ESTIMATE),
            signer,
        )

    def _filled_output(self, receipt: Any, output_token: str, recipient: str, route: Route) -> str:
        if same_address(output_token, self.config.base_asset):
            # Native payout emits no Transfer to the recipient.
            return route.amount_out
        try:
            transfers = self.chain.decode_events(output_token, ERC20_ABI, "Transfer", receipt)
        except Exception as exc:
            logger.debug("DEX_TRANSFER_DECODE_FAILED token=%s error=%s", output_token, exc)
            return route.amount_out
        received = sum(int(t.get("value") or 0) for t in transfers if same_address(t.get("to"), recipient))
        return str(received) if received > 0 else route.amount_out


class DexTrader:
    """Fans route discovery out across every configured DEX venue."""

    def __init__(
        self,
        chain: ChainClient,
        config: TradingConfig,
        *,
        mev: MEVProtection | None = None,
        calculator: PriceCalculator | None = None,
        now: Callable[[], float] | None = None,
    ) -> None:
        self.config = config
        self.venues: list[DexVenue] = [
            DexVenue(chain, config, venue, mev=mev, calculator=calculator, now=now) for venue in config.dex_venues
        ]

    def venue(self, name: str) -> DexVenue:
        for venue in self.venues:
            if venue_key(venue.name) == venue_key(name):
                return venue
        raise TradingEngineError(TradingError.ROUTE_NOT_FOUND, f"DEX not found: {name!r}")

    def intermediates(self, params: TradeParams) -> list[str]:
        out: list[str] = []
        seen: set[str] = set()
        for token in self.config.intermediate_tokens:
            key = normalize_address(token)
            if key in seen or same_address(token, params.token_address) or same_address(token, self.config.base_asset):
                continue
            seen.add(key)
            out.append(token)
        return out

    @staticmethod
    async def _attempt(venue: DexVenue, path: list[str], build: Awaitable[Route]) -> RouteAttempt:
        try:
            route = await build
        except Exception as exc:
            logger.info("DEX_ROUTE_SKIPPED dex=%s path=%s reason=%s", venue.name, "->".join(path), exc)
            return RouteAttempt(venue=venue.name, path=path, skip_reason=str(exc))
        return RouteAttempt(venue=venue.name, path=path, route=route)

    async def discover_routes(self, params: TradeParams, token_state: TokenState) -> list[RouteAttempt]:
        attempts = [
            self._attempt(venue, venue.direct_path(params), venue.build_route(params, token_state))
            for venue in self.venues
        ]
        return list(await asyncio.gather(*attempts))

    async def discover_multi_hop_routes(self, params: TradeParams, token_state: TokenState) -> list[RouteAttempt]:
        attempts = [
            self._attempt(venue, venue.multi_hop_path(params, mid), venue.build_multi_hop_route(params, mid))
            for venue in self.venues
            for mid in self.intermediates(params)
        ]
        return list(await asyncio.gather(*attempts))

    async def get_all_routes(self, params: TradeParams, token_state: TokenState) -> list[Route]:
        return [a.route for a in await self.discover_routes(params, token_state) if a.route is not None]

    async def get_multi_hop_routes(self, params: TradeParams, token_state: TokenState) -> list[Route]:
        return [a.route for a in await self.discover_multi_hop_routes(params, token_state) if a.route is not None]

    async def execute(
        self,
        params: TradeParams,
        route: Route,
        signer: Any,
        on_submitted: SubmittedCallback | None = None,
    ) -> TradeResult:
        return await self.venue(route.dex).execute(params, route, signer, on_submitted)
