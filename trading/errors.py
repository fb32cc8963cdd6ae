"""Trading error taxonomy and execution-failure classification."""

from __future__ import annotations

from enum import Enum
from typing import Any


class TradingError(str, Enum):
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    INSUFFICIENT_LIQUIDITY = "INSUFFICIENT_LIQUIDITY"
    EXCESSIVE_SLIPPAGE = "EXCESSIVE_SLIPPAGE"
    PRICE_IMPACT_TOO_HIGH = "PRICE_IMPACT_TOO_HIGH"
    TRANSACTION_FAILED = "TRANSACTION_FAILED"
    ROUTE_NOT_FOUND = "ROUTE_NOT_FOUND"
    TOKEN_NOT_TRADEABLE = "TOKEN_NOT_TRADEABLE"
    DEADLINE_EXCEEDED = "DEADLINE_EXCEEDED"
    GAS_PRICE_TOO_HIGH = "GAS_PRICE_TOO_HIGH"
    MEV_ATTACK_DETECTED = "MEV_ATTACK_DETECTED"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class TradingEngineError(RuntimeError):
    """Typed failure raised for precondition violations and quote failures."""

    def __init__(self, code: TradingError, message: str, details: Any = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


# Lowercased substrings of node/web3 error messages that are worth a resubmit.
TRANSIENT_ERROR_MARKERS: tuple[str, ...] = (
    "timeout",
    "timed out",
    "not in the chain after",
    "nonce too low",
    "nonce too high",
    "invalid nonce",
    "nonce has already been used",
    "underpriced",
    "fee too low",
    "max fee per gas less than block base fee",
)

_REVERT_MARKERS: tuple[str, ...] = ("execution reverted", "reverted", "tx_failed", "status=0")

# Custom errors of the sale contract mapped to typed codes.
_SALE_REVERT_REASONS: dict[str, tuple[TradingError, str]] = {
    "insufficienteth": (TradingError.INSUFFICIENT_BALANCE, "Insufficient native balance"),
    "saleclosed": (TradingError.TOKEN_NOT_TRADEABLE, "Token sale is closed"),
    "amountexceeded": (TradingError.INSUFFICIENT_LIQUIDITY, "Amount exceeds bonding curve limit"),
    "tokenamounttoolow": (TradingError.EXCESSIVE_SLIPPAGE, "Token amount below minimum"),
}


def is_transient_error(error: BaseException | str | None) -> bool:
    text = str(error or "").strip().lower()
    if not text:
        return False
    return any(marker in text for marker in TRANSIENT_ERROR_MARKERS)


def classify_execution_error(error: BaseException | str | None) -> TradingError:
    if isinstance(error, TradingEngineError):
        return error.code
    text = str(error or "").strip().lower()
    if "insufficient funds" in text or "insufficient_balance" in text:
        return TradingError.INSUFFICIENT_BALANCE
    if "underpriced" in text or "fee too low" in text or "gas_price_too_high" in text:
        return TradingError.GAS_PRICE_TOO_HIGH
    if "timeout" in text or "timed out" in text or "not in the chain after" in text or "expired" in text:
        return TradingError.DEADLINE_EXCEEDED
    if "insufficient_output_amount" in text or "insufficient output" in text:
        return TradingError.EXCESSIVE_SLIPPAGE
    if "insufficient_liquidity" in text:
        return TradingError.INSUFFICIENT_LIQUIDITY
    if any(marker in text for marker in _REVERT_MARKERS):
        return TradingError.TRANSACTION_FAILED
    if "nonce" in text:
        return TradingError.TRANSACTION_FAILED
    return TradingError.UNKNOWN_ERROR


def handle_error(error: BaseException) -> TradingEngineError:
    """Normalize an arbitrary exception into a TradingEngineError."""
    if isinstance(error, TradingEngineError):
        return error
    text = str(error or "")
    lowered = text.lower().replace(" ", "")
    for marker, (code, message) in _SALE_REVERT_REASONS.items():
        if marker in lowered:
            return TradingEngineError(code, message, details=text)
    if "insufficientfunds" in lowered:
        return TradingEngineError(
            TradingError.INSUFFICIENT_BALANCE,
            "Insufficient balance for transaction",
            details=text,
        )
    code = classify_execution_error(error)
    return TradingEngineError(code, text or "Unknown trading error", details=type(error).__name__)
