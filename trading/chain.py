"""JSON-RPC chain client over web3.py with provider rotation and read backoff."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Sequence

from web3 import HTTPProvider, Web3
from web3.contract import Contract
from web3.exceptions import ContractLogicError
from web3.logs import DISCARD

from trading.models import TransactionDetails, TransactionStatus
from utils.addressing import is_address, normalize_address

logger = logging.getLogger(__name__)


class ChainRPCError(RuntimeError):
    """Raised when RPC read operations fail after retries."""


class ChainClient:
    def __init__(
        self,
        rpc_urls: Sequence[str],
        *,
        timeout_seconds: int = 10,
        chain_id: int = 0,
        read_retry_delays: Sequence[float] = (1, 2, 4),
        balance_buffer: float = 1.20,
    ) -> None:
        self.providers = [str(url).strip() for url in rpc_urls if str(url or "").strip()]
        if not self.providers:
            raise ChainRPCError("No RPC endpoints configured.")
        self.provider_index = 0
        self.timeout_seconds = int(timeout_seconds)
        self.chain_id = int(chain_id or 0)
        self.read_retry_delays = [float(d) for d in read_retry_delays] or [0.0]
        self.balance_buffer = float(balance_buffer)
        self.w3 = self._build_web3()
        self._contracts: dict[tuple[str, int], Contract] = {}

    def _build_web3(self) -> Web3:
        provider = self.providers[self.provider_index]
        return Web3(HTTPProvider(provider, request_kwargs={"timeout": self.timeout_seconds}))

    def _rotate_provider(self) -> None:
        if len(self.providers) <= 1:
            return
        self.provider_index = (self.provider_index + 1) % len(self.providers)
        self.w3 = self._build_web3()
        self._contracts.clear()
        logger.warning("RPC_ROTATE provider_index=%s", self.provider_index)

    async def _rpc_with_backoff(self, call: Callable[[], Any], op_name: str) -> Any:
        last_error: Exception | None = None
        for attempt, delay in enumerate(self.read_retry_delays, start=1):
            try:
                return await asyncio.to_thread(call)
            except ContractLogicError:
                # A revert is an answer, not a transport problem.
                raise
            except Exception as exc:  # pragma: no cover - network/runtime dependent
                last_error = exc
                if attempt < len(self.read_retry_delays):
                    self._rotate_provider()
                    await asyncio.sleep(delay)
        raise ChainRPCError(f"{op_name} failed after retries: {last_error}")

    @staticmethod
    def _prepare_arg(value: Any) -> Any:
        if isinstance(value, str) and is_address(value):
            return Web3.to_checksum_address(value)
        if isinstance(value, (list, tuple)):
            return [ChainClient._prepare_arg(item) for item in value]
        return value

    def contract(self, address: str, abi: list[dict[str, Any]]) -> Contract:
        key = (normalize_address(address), id(abi))
        cached = self._contracts.get(key)
        if cached is not None:
            return cached
        contract = self.w3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)
        self._contracts[key] = contract
        return contract

    def _function(self, address: str, abi: list[dict[str, Any]], fn_name: str, args: Sequence[Any]) -> Any:
        contract = self.contract(address, abi)
        prepared = [self._prepare_arg(arg) for arg in args]
        return getattr(contract.functions, fn_name)(*prepared)

    async def call(self, address: str, abi: list[dict[str, Any]], fn_name: str, *args: Any) -> Any:
        return await self._rpc_with_backoff(
            lambda: self._function(address, abi, fn_name, args).call(),
            f"{fn_name}@{normalize_address(address)}",
        )

    async def gas_price(self) -> int:
        return int(await self._rpc_with_backoff(lambda: self.w3.eth.gas_price, "eth_gasPrice") or 0)

    async def base_fee(self) -> int:
        block = await self._rpc_with_backoff(lambda: self.w3.eth.get_block("latest"), "eth_getBlockByNumber")
        return int(block.get("baseFeePerGas") or 0)

    async def native_balance(self, address: str) -> int:
        checksum = Web3.to_checksum_address(address)
        return int(await self._rpc_with_backoff(lambda: self.w3.eth.get_balance(checksum), "eth_getBalance"))

    async def pending_transactions(self) -> list[dict[str, Any]] | None:
        """Full pending-block transactions, or None when the node exposes no pending view."""
        try:
            block = await asyncio.to_thread(self.w3.eth.get_block, "pending", True)
        except Exception as exc:
            logger.debug("PENDING_VIEW_UNAVAILABLE error=%s", exc)
            return None
        if not block:
            return None
        rows: list[dict[str, Any]] = []
        for tx in block.get("transactions") or []:
            if isinstance(tx, (bytes, str)):
                # Node returned hashes only; no usable view.
                return None
            rows.append(dict(tx))
        return rows

    async def build_transaction(
        self,
        address: str,
        abi: list[dict[str, Any]],
        fn_name: str,
        args: Sequence[Any],
        tx_params: dict[str, Any],
    ) -> dict[str, Any]:
        params = dict(tx_params)
        if params.get("from"):
            params["from"] = Web3.to_checksum_address(params["from"])
        return await asyncio.to_thread(
            lambda: dict(self._function(address, abi, fn_name, args).build_transaction(params))
        )

    async def send_transaction(self, tx: dict[str, Any], signer: Any) -> TransactionDetails:
        def _send() -> TransactionDetails:
            prepared = dict(tx)
            sender = Web3.to_checksum_address(signer.address)
            prepared["from"] = sender
            prepared["nonce"] = self.w3.eth.get_transaction_count(sender, "pending")
            if self.chain_id and "chainId" not in prepared:
                prepared["chainId"] = self.chain_id
            if not prepared.get("gas"):
                prepared["gas"] = int(self.w3.eth.estimate_gas(prepared) * 1.15)

            # Preflight: worst-case gas * fee + value must be affordable.
            balance = int(self.w3.eth.get_balance(sender))
            fee = int(prepared.get("maxFeePerGas") or prepared.get("gasPrice") or 0)
            value = int(prepared.get("value") or 0)
            worst_cost = int(int(prepared["gas"]) * fee + value)
            if int(worst_cost * self.balance_buffer) > balance:
                raise RuntimeError(
                    f"insufficient funds for gas * price + value have_wei={balance} want_wei={worst_cost}"
                )

            signed = signer.sign_transaction(prepared)
            raw_tx = getattr(signed, "raw_transaction", None)
            if raw_tx is None:
                raw_tx = getattr(signed, "rawTransaction", None)
            if raw_tx is None:
                raise RuntimeError("signed_tx_missing_raw_bytes")
            tx_hash = self.w3.eth.send_raw_transaction(raw_tx)
            return TransactionDetails(
                hash=Web3.to_hex(tx_hash),
                from_address=sender,
                to=str(prepared.get("to") or ""),
                value=str(value),
                data=str(prepared.get("data") or "0x"),
                gas_price=str(fee),
                gas_limit=str(int(prepared["gas"])),
                nonce=int(prepared["nonce"]),
                chain_id=int(prepared.get("chainId") or 0),
                status=TransactionStatus.SUBMITTED,
            )

        return await asyncio.to_thread(_send)

    async def wait_for_receipt(self, tx_hash: str, timeout: int) -> Any:
        return await asyncio.to_thread(self.w3.eth.wait_for_transaction_receipt, tx_hash, timeout=int(timeout))

    def decode_events(self, address: str, abi: list[dict[str, Any]], event_name: str, receipt: Any) -> list[dict[str, Any]]:
        contract = self.contract(address, abi)
        events = getattr(contract.events, event_name)().process_receipt(receipt, errors=DISCARD)
        return [dict(event["args"]) for event in events]
