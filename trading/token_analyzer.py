"""Trading-phase detection and token metadata from chain reads."""

from __future__ import annotations

import logging
from dataclasses import replace
from decimal import Decimal, localcontext
from typing import TYPE_CHECKING, Any

from trading.abis import BONDING_CURVE_ABI, ERC20_ABI, V2_FACTORY_ABI, V2_PAIR_ABI
from trading.models import DexVenueConfig, TokenState, TradingConfig, TradingPhase
from trading.price_calculator import DECIMAL_PRECISION, PriceCalculator
from utils.addressing import is_zero_address, normalize_address, same_address
from utils.ttl_cache import TTLCache

if TYPE_CHECKING:
    from trading.chain import ChainClient

logger = logging.getLogger(__name__)

TOKEN_STATE_TTL_SECONDS = 10.0
PRICE_SCALE = 10**18


class TokenAnalyzer:
    def __init__(
        self,
        chain: ChainClient,
        config: TradingConfig,
        *,
        cache: TTLCache[TokenState] | None = None,
        calculator: PriceCalculator | None = None,
    ) -> None:
        self.chain = chain
        self.config = config
        self.cache: TTLCache[TokenState] = cache if cache is not None else TTLCache(TOKEN_STATE_TTL_SECONDS)
        self.calculator = calculator or PriceCalculator(chain)
        # Addresses seen in DEX phase; a graduated token never goes back.
        self._graduated: set[str] = set()

    async def analyze_token(self, address: str) -> TokenState | None:
        """Resolve phase and metadata; None means unknown, never fatal."""
        key = normalize_address(address)
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        try:
            if await self._is_platform_token(address):
                state = await self._analyze_platform_token(address)
            else:
                state = await self._analyze_external_token(address)
        except Exception as exc:
            logger.warning("TOKEN_ANALYZE_FAILED token=%s error=%s", address, exc)
            return None

        state = self._enforce_phase_monotonic(key, state)
        self.cache.set(key, state)
        return state

    def clear_cache(self) -> None:
        self.cache.clear()

    def _enforce_phase_monotonic(self, key: str, state: TokenState) -> TokenState:
        if state.phase is TradingPhase.DEX:
            self._graduated.add(key)
            return state
        if key in self._graduated:
            logger.warning("TOKEN_PHASE_REGRESSION_IGNORED token=%s", state.address)
            return replace(state, phase=TradingPhase.DEX, is_launched=True, can_sell=True)
        return state

    async def _is_platform_token(self, address: str) -> bool:
        if not self.config.bonding_curve_address:
            return False
        try:
            sale = await self.chain.call(self.config.bonding_curve_address, BONDING_CURVE_ABI, "tokenSales", address)
        except Exception as exc:
            logger.debug("TOKEN_SALE_LOOKUP_FAILED token=%s error=%s", address, exc)
            return False
        sold, raised = int(sale[0]), int(sale[1])
        return sold > 0 or raised > 0

    async def _analyze_platform_token(self, address: str) -> TokenState:
        curve = self.config.bonding_curve_address
        sale = await self.chain.call(curve, BONDING_CURVE_ABI, "tokenSales", address)
        target = int(await self.chain.call(curve, BONDING_CURVE_ABI, "TARGET_SUPPLY"))
        initial_price = int(await self.chain.call(curve, BONDING_CURVE_ABI, "INITIAL_PRICE"))
        final_price = int(await self.chain.call(curve, BONDING_CURVE_ABI, "FINAL_PRICE"))

        sold, raised, launched, is_open = int(sale[0]), int(sale[1]), bool(sale[2]), bool(sale[3])
        price = self.calculator.curve_price(sold, target, initial_price, final_price)
        phase = TradingPhase.DEX if launched else TradingPhase.BONDING_CURVE
        liquidity = await self._dex_liquidity(address) if launched else 0
        progress = (sold / target * 100) if target > 0 else 0.0

        return TokenState(
            address=address,
            phase=phase,
            is_platform_token=True,
            is_launched=launched,
            is_open=is_open,
            can_sell=phase is TradingPhase.DEX,
            sold=str(sold),
            raised=str(raised),
            total_supply=str(target),
            current_price=str(price),
            market_cap=str(sold * price),
            liquidity=str(liquidity),
            bonding_curve_progress=progress,
        )

    async def _analyze_external_token(self, address: str) -> TokenState:
        total_supply = int(await self.chain.call(address, ERC20_ABI, "totalSupply"))
        decimals = int(await self.chain.call(address, ERC20_ABI, "decimals"))
        symbol = ""
        try:
            symbol = str(await self.chain.call(address, ERC20_ABI, "symbol"))
        except Exception as exc:
            logger.debug("TOKEN_SYMBOL_UNAVAILABLE token=%s error=%s", address, exc)

        pools = await self._pool_reserves(address)
        liquidity = sum(base for _, base, _ in pools)
        price = 0
        # First pool with nonzero reserves sets the price; no weighted aggregation.
        for _, base_reserve, token_reserve in pools:
            if base_reserve > 0 and token_reserve > 0:
                price = (base_reserve * PRICE_SCALE) // token_reserve
                break

        with localcontext() as ctx:
            ctx.prec = DECIMAL_PRECISION
            market_cap = int(Decimal(total_supply) * Decimal(price) / (Decimal(10) ** decimals))

        return TokenState(
            address=address,
            phase=TradingPhase.DEX,
            is_platform_token=False,
            is_launched=True,
            is_open=True,
            can_sell=True,
            total_supply=str(total_supply),
            current_price=str(price),
            market_cap=str(market_cap),
            liquidity=str(liquidity),
            symbol=symbol,
            decimals=decimals,
        )

    async def _dex_liquidity(self, address: str) -> int:
        return sum(base for _, base, _ in await self._pool_reserves(address))

    async def _pool_reserves(self, address: str) -> list[tuple[str, int, int]]:
        """(pair, base_reserve, token_reserve) for every configured DEX with a pair."""
        rows: list[tuple[str, int, int]] = []
        for venue in self.config.dex_venues:
            try:
                row = await self._venue_reserves(venue, address)
            except Exception as exc:
                logger.debug("DEX_LIQUIDITY_LOOKUP_FAILED dex=%s token=%s error=%s", venue.name, address, exc)
                continue
            if row is not None:
                rows.append(row)
        return rows

    async def _venue_reserves(self, venue: DexVenueConfig, address: str) -> tuple[str, int, int] | None:
        base = self.config.base_asset
        pair = await self.chain.call(venue.factory, V2_FACTORY_ABI, "getPair", address, base)
        if is_zero_address(pair):
            return None
        reserves: Any = await self.chain.call(pair, V2_PAIR_ABI, "getReserves")
        token0 = await self.chain.call(pair, V2_PAIR_ABI, "token0")
        reserve0, reserve1 = int(reserves[0]), int(reserves[1])
        if same_address(token0, base):
            return str(pair), reserve0, reserve1
        return str(pair), reserve1, reserve0
