from __future__ import annotations

import asyncio
import unittest

from tests.fakes import (
    BASE,
    FACTORY_A,
    FACTORY_B,
    MID,
    ROUTER_A,
    ROUTER_B,
    SIGNER,
    TOKEN,
    FakeChain,
    FakeDex,
    FakeSigner,
    install_erc20,
    make_config,
)
from trading.abis import MAX_UINT256
from trading.dex_trader import DexTrader
from trading.errors import TradingEngineError, TradingError
from trading.models import Route, RouteType, TokenState, TradeParams, TradeType, TradingPhase


def _state() -> TokenState:
    return TokenState(
        address=TOKEN,
        phase=TradingPhase.DEX,
        is_platform_token=False,
        is_launched=True,
        is_open=True,
        can_sell=True,
        liquidity="1000",
    )


class DexTraderTestBase(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.chain = FakeChain()
        self.alpha = FakeDex(self.chain, "alpha", ROUTER_A, FACTORY_A)
        self.beta = FakeDex(self.chain, "beta", ROUTER_B, FACTORY_B)
        self.cfg = make_config([self.alpha, self.beta], intermediates=[MID])
        self.trader = DexTrader(self.chain, self.cfg, now=lambda: 1000.0)


class DexQuoteTests(DexTraderTestBase):
    async def test_constant_product_buy_route(self) -> None:
        pair = self.alpha.add_pair(BASE, 1000, TOKEN, 1000)
        params = TradeParams(TOKEN, TradeType.BUY, "100")
        route = await self.trader.venue("alpha").build_route(params, _state())
        self.assertEqual(route.route_type, RouteType.DEX_V2)
        self.assertEqual(route.dex, "alpha")
        self.assertEqual(route.path, [BASE, TOKEN])
        self.assertEqual(route.pools, [pair])
        self.assertEqual(route.amount_out, "90")
        self.assertEqual(route.minimum_amount_out, "88")
        self.assertEqual(route.estimated_gas, "200000")
        self.assertEqual(route.execution_price, "1.111111111111111111")
        self.assertAlmostEqual(route.price_impact, 10.0, places=6)

    async def test_reserves_follow_token0_orientation(self) -> None:
        self.beta.add_pair(TOKEN, 500, BASE, 2000)
        quote = await self.trader.venue("beta").quote(TradeParams(TOKEN, TradeType.BUY, "100"), _state())
        self.assertEqual(quote.reserve_in, "2000")
        self.assertEqual(quote.reserve_out, "500")

    async def test_sell_price_is_base_per_token(self) -> None:
        self.alpha.add_pair(BASE, 1000, TOKEN, 1000)
        params = TradeParams(TOKEN, TradeType.SELL, "100")
        route = await self.trader.venue("alpha").build_route(params, _state())
        self.assertEqual(route.path, [TOKEN, BASE])
        self.assertEqual(route.amount_out, "90")
        self.assertEqual(route.execution_price, "0.9")

    async def test_fee_uses_venue_fee_bps(self) -> None:
        self.alpha.add_pair(BASE, 10**9, TOKEN, 10**9)
        route = await self.trader.venue("alpha").build_route(TradeParams(TOKEN, TradeType.BUY, "100000"), _state())
        self.assertEqual(route.fee, "300")

    async def test_missing_pair_is_insufficient_liquidity(self) -> None:
        with self.assertRaises(TradingEngineError) as ctx:
            await self.trader.venue("beta").build_route(TradeParams(TOKEN, TradeType.BUY, "100"), _state())
        self.assertEqual(ctx.exception.code, TradingError.INSUFFICIENT_LIQUIDITY)

    async def test_discovery_skips_failing_venues(self) -> None:
        self.alpha.add_pair(BASE, 1000, TOKEN, 1000)
        attempts = await self.trader.discover_routes(TradeParams(TOKEN, TradeType.BUY, "100"), _state())
        self.assertEqual([a.venue for a in attempts], ["alpha", "beta"])
        self.assertTrue(attempts[0].ok)
        self.assertFalse(attempts[1].ok)
        self.assertIn("no beta pair", attempts[1].skip_reason)

    async def test_reverting_quote_is_skipped(self) -> None:
        self.alpha.add_pair(BASE, 1000, TOKEN, 1000)
        self.beta.add_pair(BASE, 1000, TOKEN, 1000)
        self.alpha.quote_error = RuntimeError("execution reverted")
        routes = await self.trader.get_all_routes(TradeParams(TOKEN, TradeType.BUY, "100"), _state())
        self.assertEqual([r.dex for r in routes], ["beta"])

    async def test_multi_hop_route(self) -> None:
        self.alpha.add_pair(BASE, 10**6, MID, 10**6)
        self.alpha.add_pair(MID, 10**6, TOKEN, 10**6)
        attempts = await self.trader.discover_multi_hop_routes(TradeParams(TOKEN, TradeType.BUY, "10000"), _state())
        self.assertEqual(len(attempts), 2)
        routes = [a.route for a in attempts if a.route is not None]
        self.assertEqual(len(routes), 1)
        route = routes[0]
        self.assertEqual(route.route_type, RouteType.MULTI_HOP)
        self.assertEqual(route.path, [BASE, MID, TOKEN])
        self.assertEqual(len(route.pools), 2)
        self.assertEqual(route.estimated_gas, "250000")
        self.assertEqual(route.price_impact, 1.0)
        self.assertEqual(route.fee, "60")

    def test_intermediates_skip_duplicates_token_and_base(self) -> None:
        self.cfg.intermediate_tokens = [MID, MID.lower(), TOKEN, BASE.lower()]
        params = TradeParams(TOKEN, TradeType.BUY, "1")
        self.assertEqual(self.trader.intermediates(params), [MID])

    def test_unknown_venue(self) -> None:
        with self.assertRaises(TradingEngineError) as ctx:
            self.trader.venue("gamma")
        self.assertEqual(ctx.exception.code, TradingError.ROUTE_NOT_FOUND)

    def test_venue_names_ignore_case_and_padding(self) -> None:
        venue = self.trader.venue(" ALPHA ")
        self.assertEqual(venue.name, "alpha")
        route = Route(
            route_type=RouteType.DEX_V2,
            path=[BASE, TOKEN],
            estimated_gas="200000",
            price_impact=0.1,
            execution_price="1",
            amount_in="1",
            amount_out="1",
            minimum_amount_out="1",
            fee="0",
            dex="Alpha",
        )
        self.assertTrue(venue.handles(route))
        self.assertFalse(self.trader.venue("beta").handles(route))


class DexFanOutTests(DexTraderTestBase):
    async def test_venues_are_quoted_concurrently(self) -> None:
        self.alpha.add_pair(BASE, 1000, TOKEN, 1000)
        self.beta.add_pair(BASE, 1000, TOKEN, 2000)
        in_flight: set[str] = set()
        all_in_flight = asyncio.Event()

        def _gated(dex: FakeDex):
            quote = dex._amounts_out

            async def _handler(amount_in: int, path: list[str]):
                in_flight.add(dex.name)
                if len(in_flight) == 2:
                    all_in_flight.set()
                # Neither quote returns until both venues are being queried.
                await all_in_flight.wait()
                return quote(amount_in, path)

            return _handler

        for dex in (self.alpha, self.beta):
            self.chain.on_call(dex.router, "getAmountsOut", _gated(dex))

        attempts = await asyncio.wait_for(
            self.trader.discover_routes(TradeParams(TOKEN, TradeType.BUY, "100"), _state()),
            timeout=2.0,
        )
        self.assertEqual([a.venue for a in attempts], ["alpha", "beta"])
        self.assertTrue(all(a.ok for a in attempts))
        self.assertEqual(in_flight, {"alpha", "beta"})


class DexExecuteTests(DexTraderTestBase):
    def setUp(self) -> None:
        super().setUp()
        self.alpha.add_pair(BASE, 10**6, TOKEN, 10**6)
        self.signer = FakeSigner()

    async def _route(self, params: TradeParams) -> Route:
        return await self.trader.venue("alpha").build_route(params, _state())

    async def test_buy_swaps_native_for_tokens(self) -> None:
        params = TradeParams(TOKEN, TradeType.BUY, "1000")
        route = await self._route(params)
        self.chain.events["Transfer"] = [
            {"from": "0x" + "9" * 40, "to": SIGNER, "value": 990},
            {"from": SIGNER, "to": "0x" + "8" * 40, "value": 5},
        ]
        submitted = []

        result = await self.trader.execute(params, route, self.signer, on_submitted=submitted.append)

        self.assertTrue(result.success)
        self.assertEqual(result.amount_out, "990")
        self.assertEqual(len(submitted), 1)
        tx = self.chain.sent[0]
        self.assertEqual(tx["fn"], "swapExactETHForTokens")
        self.assertEqual(tx["to"], ROUTER_A)
        self.assertEqual(tx["value"], 1000)
        self.assertEqual(tx["args"], [int(route.minimum_amount_out), [BASE, TOKEN], SIGNER, 2200])

    async def test_sell_approves_router_first(self) -> None:
        install_erc20(self.chain, TOKEN, allowance=0)
        params = TradeParams(TOKEN, TradeType.SELL, "1000")
        route = await self._route(params)
        submitted = []

        result = await self.trader.execute(params, route, self.signer, on_submitted=submitted.append)

        self.assertTrue(result.success)
        approve, swap = self.chain.sent
        self.assertEqual(approve["fn"], "approve")
        self.assertEqual(approve["to"], TOKEN)
        self.assertEqual(approve["args"], [ROUTER_A, MAX_UINT256])
        self.assertEqual(approve["gas"], 60000)
        self.assertEqual(swap["fn"], "swapExactTokensForETH")
        self.assertEqual(swap["value"], 0)
        self.assertEqual(len(submitted), 1)
        self.assertEqual(result.tx_hash, submitted[0].hash)
        self.assertEqual(result.amount_out, route.amount_out)

    async def test_sell_with_allowance_skips_approval(self) -> None:
        install_erc20(self.chain, TOKEN, allowance=10**30)
        params = TradeParams(TOKEN, TradeType.SELL, "1000", recipient="0x" + "7" * 40, deadline=99)
        route = await self._route(params)
        await self.trader.execute(params, route, self.signer)
        self.assertEqual([tx["fn"] for tx in self.chain.sent], ["swapExactTokensForETH"])
        self.assertEqual(self.chain.sent[0]["args"][3:], ["0x" + "7" * 40, 99])

    async def test_token_to_token_path(self) -> None:
        install_erc20(self.chain, TOKEN, allowance=10**30)
        params = TradeParams(TOKEN, TradeType.SELL, "1000")
        route = Route(
            route_type=RouteType.DEX_V2,
            path=[TOKEN, MID],
            estimated_gas="200000",
            price_impact=0.1,
            execution_price="1",
            amount_in="1000",
            amount_out="900",
            minimum_amount_out="800",
            fee="3",
            dex="alpha",
        )
        result = await self.trader.execute(params, route, self.signer)
        self.assertTrue(result.success)
        self.assertEqual(self.chain.sent[0]["fn"], "swapExactTokensForTokens")

    async def test_send_failure_becomes_failed_result(self) -> None:
        params = TradeParams(TOKEN, TradeType.BUY, "1000")
        route = await self._route(params)
        self.chain.send_errors = [RuntimeError("insufficient funds for gas * price + value")]
        result = await self.trader.execute(params, route, self.signer)
        self.assertFalse(result.success)
        self.assertEqual(result.error_code, TradingError.INSUFFICIENT_BALANCE.value)
        self.assertEqual(result.tx_hash, "")

    async def test_gas_read_failure_becomes_failed_result(self) -> None:
        params = TradeParams(TOKEN, TradeType.BUY, "1000")
        route = await self._route(params)
        self.chain.gas_errors = [RuntimeError("eth_gasPrice failed after retries: Read timed out")]
        result = await self.trader.execute(params, route, self.signer)
        self.assertFalse(result.success)
        self.assertEqual(result.error_code, TradingError.DEADLINE_EXCEEDED.value)
        self.assertEqual(self.chain.sent, [])


if __name__ == "__main__":
    unittest.main()
