"""Unified router: phase resolution, best-route selection, execution and retries."""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from trading.bonding_curve_trader import BondingCurveTrader
from trading.dex_trader import DexTrader
from trading.errors import TradingEngineError, TradingError, handle_error, is_transient_error
from trading.events import (
    MEV_DETECTED,
    SLIPPAGE_WARNING,
    TRADE_CONFIRMED,
    TRADE_FAILED,
    TRADE_INITIATED,
    TRADE_ROUTED,
    TRADE_SUBMITTED,
    TradeEvents,
)
from trading.mev_protection import MEVProtection
from trading.models import (
    Route,
    RouteAttempt,
    TokenState,
    TradeParams,
    TradeResult,
    TradeState,
    TradeType,
    TradingConfig,
    TradingPhase,
    TransactionDetails,
)
from trading.price_calculator import PriceCalculator
from trading.token_analyzer import TokenAnalyzer
from trading.venues import TradingVenue
from utils.addressing import same_address

if TYPE_CHECKING:
    from trading.chain import ChainClient

logger = logging.getLogger(__name__)


def route_sort_key(route: Route, trade_type: TradeType) -> tuple[Decimal, int]:
    """Best first: cheapest base-per-token for BUY, richest for SELL, then lower gas."""
    price = Decimal(str(route.execution_price or "0"))
    gas = int(route.estimated_gas or 0)
    if trade_type is TradeType.BUY:
        return price, gas
    return -price, gas


def actual_slippage(params: TradeParams, amount_out: str) -> float:
    """Shortfall of the filled output below min_amount_out, in percent."""
    if not params.min_amount_out:
        return 0.0
    expected = int(params.min_amount_out)
    actual = int(amount_out or 0)
    if expected <= 0 or actual >= expected:
        return 0.0
    return ((expected - actual) * 10_000 // expected) / 100


class UnifiedTradingRouter:
    def __init__(
        self,
        chain: ChainClient,
        config: TradingConfig,
        *,
        events: TradeEvents | None = None,
        analyzer: TokenAnalyzer | None = None,
        calculator: PriceCalculator | None = None,
        mev: MEVProtection | None = None,
        bonding_curve: BondingCurveTrader | None = None,
        dex: DexTrader | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ) -> None:
        self.chain = chain
        self.config = config
        self.events = events if events is not None else TradeEvents()
        self.calculator = calculator or PriceCalculator(chain)
        self.mev = mev or MEVProtection(chain, config.mev_protection)
        self.analyzer = analyzer or TokenAnalyzer(chain, config, calculator=self.calculator)
        if bonding_curve is None and config.bonding_curve_address:
            bonding_curve = BondingCurveTrader(chain, config, mev=self.mev, calculator=self.calculator)
        self.bonding_curve = bonding_curve
        self.dex = dex or DexTrader(chain, config, mev=self.mev, calculator=self.calculator)
        self._sleep = sleep or asyncio.sleep

    @property
    def venues(self) -> list[TradingVenue]:
        out: list[TradingVenue] = []
        if self.bonding_curve is not None:
            out.append(self.bonding_curve)
        out.extend(self.dex.venues)
        return out

    def on(self, event: str, callback: Callable[[Any], None]) -> Callable[[], None]:
        return self.events.on(event, callback)

    async def get_token_state(self, address: str) -> TokenState | None:
        return await self.analyzer.analyze_token(address)

    # ---- quoting ------------------------------------------------------

    async def get_quote(self, params: TradeParams) -> Route:
        self.events.emit(TRADE_INITIATED, params)
        self._log_state(params, TradeState.INITIATED)
        state = await self._require_state(params)
        routes = await self._candidate_routes(params, state)
        best = routes[0]
        self.events.emit(TRADE_ROUTED, best)
        self._log_state(params, TradeState.ROUTED, route=best.route_type.value, dex=best.dex)
        return best

    async def get_all_routes(self, params: TradeParams) -> list[Route]:
        state = await self._require_state(params)
        return await self._candidate_routes(params, state)

    async def _require_state(self, params: TradeParams) -> TokenState:
        state = await self.analyzer.analyze_token(params.token_address)
        if state is None:
            raise TradingEngineError(
                TradingError.TOKEN_NOT_TRADEABLE,
                f"Token {params.token_address} could not be analyzed",
            )
        return state

    async def _candidate_routes(self, params: TradeParams, state: TokenState) -> list[Route]:
        if state.phase is TradingPhase.BONDING_CURVE:
            if self.bonding_curve is None:
                raise TradingEngineError(TradingError.TOKEN_NOT_TRADEABLE, "Bonding curve contract not configured")
            try:
                return [await self.bonding_curve.get_route(params, state)]
            except Exception as exc:
                raise handle_error(exc) from exc

        direct, multi_hop = await asyncio.gather(
            self.dex.discover_routes(params, state),
            self.dex.discover_multi_hop_routes(params, state),
        )
        attempts: list[RouteAttempt] = [*direct, *multi_hop]
        routes = [a.route for a in attempts if a.route is not None]
        if not routes:
            raise TradingEngineError(
                TradingError.ROUTE_NOT_FOUND,
                f"No route found for {params.token_address}",
                details={a.venue + ":" + "->".join(a.path): a.skip_reason for a in attempts},
            )
        routes.sort(key=lambda r: route_sort_key(r, params.trade_type))
        return routes

    # ---- execution ----------------------------------------------------

    async def execute_trade(self, params: TradeParams, signer: Any, route: Route | None = None) -> TradeResult:
        try:
            self._check_slippage(params)
            if route is None:
                route = await self.get_quote(params)
            else:
                self.events.emit(TRADE_INITIATED, params)
                self.events.emit(TRADE_ROUTED, route)
            venue = self._venue_for(route)
            self._check_price_impact(route)
            self._check_amount_in(params, route)
            await self._check_balance(params, route, signer)
        except Exception as exc:
            error = handle_error(exc)
            self._log_state(params, TradeState.FAILED, code=error.code.value)
            self.events.emit(TRADE_FAILED, {"params": params, "error": error})
            if error is exc:
                raise
            raise error from exc

        await self._advise(params, route)
        return await self._execute_with_retries(params, route, venue, signer)

    def _venue_for(self, route: Route) -> TradingVenue:
        for venue in self.venues:
            if venue.handles(route):
                return venue
        raise TradingEngineError(
            TradingError.ROUTE_NOT_FOUND,
            f"No venue handles route type={route.route_type.value} dex={route.dex!r}",
        )

    def _check_slippage(self, params: TradeParams) -> None:
        limit = float(self.config.max_slippage)
        if params.slippage_tolerance > limit:
            raise TradingEngineError(
                TradingError.EXCESSIVE_SLIPPAGE,
                f"Slippage tolerance {params.slippage_tolerance}% exceeds maximum {limit}%",
            )

    def _check_price_impact(self, route: Route) -> None:
        limit = float(self.config.max_price_impact)
        if route.price_impact > limit:
            raise TradingEngineError(
                TradingError.PRICE_IMPACT_TOO_HIGH,
                f"Price impact too high: {route.price_impact:.2f}%",
                details={"limit": limit},
            )

    @staticmethod
    def _check_amount_in(params: TradeParams, route: Route) -> None:
        if params.max_amount_in is None:
            return
        spend = int(route.amount_in or params.amount)
        if spend > int(params.max_amount_in):
            raise TradingEngineError(
                TradingError.EXCESSIVE_SLIPPAGE,
                f"Route input {spend} exceeds max_amount_in {params.max_amount_in}",
                details={"amount_in": str(spend), "max_amount_in": params.max_amount_in},
            )

    async def _check_balance(self, params: TradeParams, route: Route, signer: Any) -> None:
        if params.trade_type is not TradeType.BUY or not route.path:
            return
        if not same_address(route.path[0], self.config.base_asset):
            return
        balance = await self.chain.native_balance(signer.address)
        if balance < int(params.amount):
            raise TradingEngineError(
                TradingError.INSUFFICIENT_BALANCE,
                "Insufficient native balance",
                details={"have": str(balance), "want": params.amount},
            )

    async def _advise(self, params: TradeParams, route: Route) -> None:
        # Advisory only: neither signal stops execution.
        try:
            assessment = await self.mev.assess(params, route)
        except Exception as exc:
            logger.warning("MEV_ASSESS_FAILED token=%s error=%s", params.token_address, exc)
        else:
            if assessment.threat is not None:
                logger.warning(
                    "MEV_THREAT token=%s type=%s severity=%s mempool_view=%s",
                    params.token_address,
                    assessment.threat.type,
                    assessment.threat.severity,
                    assessment.mempool.available,
                )
                self.events.emit(MEV_DETECTED, {"transaction": params, "threat": assessment.threat})

        if route.price_impact > params.slippage_tolerance:
            self.events.emit(
                SLIPPAGE_WARNING,
                {"expected": params.slippage_tolerance, "actual": route.price_impact},
            )

    async def _execute_with_retries(
        self,
        params: TradeParams,
        route: Route,
        venue: TradingVenue,
        signer: Any,
    ) -> TradeResult:
        policy = self.config.retry
        total_attempts = policy.total_attempts()
        delay = float(policy.retry_delay)

        def _submitted(details: TransactionDetails) -> None:
            self._log_state(params, TradeState.SUBMITTED, hash=details.hash)
            self.events.emit(TRADE_SUBMITTED, details)

        attempt = 0
        while True:
            attempt += 1
            try:
                result = await venue.execute(params, route, signer, on_submitted=_submitted)
            except Exception as exc:
                error = handle_error(exc)
                self._log_state(params, TradeState.FAILED, code=error.code.value)
                self.events.emit(TRADE_FAILED, {"params": params, "error": error})
                if error is exc:
                    raise
                raise error from exc
            result.retries = attempt - 1

            if result.success:
                self._log_state(params, TradeState.CONFIRMED, hash=result.tx_hash)
                slippage = actual_slippage(params, result.amount_out)
                if slippage > params.slippage_tolerance:
                    self.events.emit(SLIPPAGE_WARNING, {"expected": params.slippage_tolerance, "actual": slippage})
                self.events.emit(TRADE_CONFIRMED, result)
                return result

            code = TradingError(result.error_code) if result.error_code else TradingError.UNKNOWN_ERROR
            self._log_state(params, TradeState.FAILED, code=code.value, attempt=attempt)
            self.events.emit(
                TRADE_FAILED,
                {"params": params, "error": TradingEngineError(code, result.error, details=result.tx_hash)},
            )
            if attempt >= total_attempts or not is_transient_error(result.error):
                return result

            logger.warning(
                "TRADE_RETRY token=%s attempt=%s/%s delay_s=%.2f error=%s",
                params.token_address,
                attempt + 1,
                total_attempts,
                delay,
                result.error,
            )
            await self._sleep(delay)
            if policy.exponential_backoff:
                delay *= 2

    @staticmethod
    def _log_state(params: TradeParams, state: TradeState, **fields: Any) -> None:
        extra = " ".join(f"{key}={value}" for key, value in fields.items())
        logger.info(
            "TRADE_STATE token=%s side=%s state=%s %s",
            params.token_address,
            params.trade_type.value,
            state.value,
            extra,
        )
