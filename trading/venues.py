"""Common venue interface and the shared submit/confirm path."""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Callable, Sequence

from trading.errors import TradingEngineError, TradingError, classify_execution_error
from trading.models import (
    Route,
    TokenState,
    TradeParams,
    TradeResult,
    TradingConfig,
    TradingPhase,
    TransactionDetails,
)
from trading.price_calculator import PriceCalculator

if TYPE_CHECKING:
    from trading.chain import ChainClient
    from trading.mev_protection import MEVProtection

logger = logging.getLogger(__name__)

SubmittedCallback = Callable[[TransactionDetails], None]


class TradingVenue(ABC):
    """One place a trade can execute: the curve sale contract or a single AMM."""

    name: str = ""
    phase: TradingPhase = TradingPhase.DEX

    def __init__(
        self,
        chain: ChainClient,
        config: TradingConfig,
        *,
        mev: MEVProtection | None = None,
        calculator: PriceCalculator | None = None,
    ) -> None:
        self.chain = chain
        self.config = config
        self.mev = mev
        self.calculator = calculator or PriceCalculator(chain)

    @abstractmethod
    async def quote(self, params: TradeParams, token_state: TokenState) -> Any:
        ...

    @abstractmethod
    async def build_route(self, params: TradeParams, token_state: TokenState) -> Route:
        ...

    @abstractmethod
    async def execute(
        self,
        params: TradeParams,
        route: Route,
        signer: Any,
        on_submitted: SubmittedCallback | None = None,
    ) -> TradeResult:
        ...

    @abstractmethod
    def handles(self, route: Route) -> bool:
        ...

    # ---- shared execution helpers --------------------------------------

    async def resolve_gas_price(self, params: TradeParams) -> int:
        """Current gas price plus the MEV priority fee when protection is on.

        Raises GAS_PRICE_TOO_HIGH before anything is signed.
        """
        observed = await self.chain.gas_price()
        cap = int(self.config.max_gas_price or 0)
        if cap > 0 and observed > cap:
            raise TradingEngineError(
                TradingError.GAS_PRICE_TOO_HIGH,
                f"gas price {observed} exceeds ceiling {cap}",
                details={"observed": observed, "cap": cap},
            )
        if not self.config.mev_protection.enabled:
            return observed
        priority = int(params.priority_fee or self.config.mev_protection.max_priority_fee or 0)
        return observed + priority

    @staticmethod
    def tx_params(signer: Any, gas_price: int, gas_limit: int | str, value: int = 0) -> dict[str, Any]:
        return {
            "from": signer.address,
            "value": int(value),
            "gas": int(gas_limit),
            "gasPrice": int(gas_price),
        }

    @staticmethod
    def track_submissions(
        on_submitted: SubmittedCallback | None,
    ) -> tuple[list[TransactionDetails], SubmittedCallback]:
        """Wrap the caller's callback so failures can still report the last tx hash."""
        sent: list[TransactionDetails] = []

        def _track(details: TransactionDetails) -> None:
            sent.append(details)
            if on_submitted is not None:
                on_submitted(details)

        return sent, _track

    async def submit_and_confirm(
        self,
        address: str,
        abi: list[dict[str, Any]],
        fn_name: str,
        args: Sequence[Any],
        tx_params: dict[str, Any],
        signer: Any,
        *,
        private: bool = False,
        on_submitted: SubmittedCallback | None = None,
    ) -> tuple[TransactionDetails, Any]:
        tx = await self.chain.build_transaction(address, abi, fn_name, args, tx_params)
        if self.mev is not None:
            details = await self.mev.protect_transaction(tx, signer, private=private)
        else:
            details = await self.chain.send_transaction(tx, signer)
        logger.info("TX_SUBMITTED venue=%s fn=%s hash=%s", self.name, fn_name, details.hash)
        if on_submitted is not None:
            on_submitted(details)

        receipt = await self.chain.wait_for_receipt(details.hash, self.config.tx_timeout)
        if int(_receipt_field(receipt, "status", 0)) != 1:
            raise RuntimeError(f"tx_failed execution reverted hash={details.hash}")
        return details, receipt

    def success_result(
        self,
        params: TradeParams,
        route: Route,
        details: TransactionDetails,
        receipt: Any,
        amount_in: str,
        amount_out: str,
    ) -> TradeResult:
        gas_used = int(_receipt_field(receipt, "gasUsed", 0))
        effective_price = int(_receipt_field(receipt, "effectiveGasPrice", 0) or details.gas_price or 0)
        return TradeResult(
            success=True,
            token_address=params.token_address,
            trade_type=params.trade_type,
            phase=self.phase,
            amount_in=str(amount_in),
            amount_out=str(amount_out),
            execution_price=route.execution_price,
            price_impact=route.price_impact,
            route=route,
            tx_hash=details.hash,
            gas_used=str(gas_used),
            gas_cost=str(gas_used * effective_price),
            timestamp=time.time(),
        )

    def failed_result(self, params: TradeParams, route: Route, error: BaseException, tx_hash: str = "") -> TradeResult:
        code = classify_execution_error(error)
        logger.error(
            "TRADE_EXECUTION_FAILED venue=%s token=%s side=%s code=%s error=%s",
            self.name,
            params.token_address,
            params.trade_type.value,
            code.value,
            error,
        )
        return TradeResult(
            success=False,
            token_address=params.token_address,
            trade_type=params.trade_type,
            phase=self.phase,
            amount_in=params.amount,
            amount_out="0",
            execution_price="0",
            price_impact=0.0,
            route=route,
            tx_hash=tx_hash,
            timestamp=time.time(),
            error=str(error),
            error_code=code.value,
        )


def _receipt_field(receipt: Any, key: str, default: Any = None) -> Any:
    if receipt is None:
        return default
    if isinstance(receipt, dict):
        return receipt.get(key, default)
    getter = getattr(receipt, "get", None)
    if callable(getter):
        return getter(key, default)
    return getattr(receipt, key, default)
