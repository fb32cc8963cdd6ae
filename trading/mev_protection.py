"""Rule-based MEV risk scoring and protected transaction submission."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from trading.models import MEVThreat, MempoolScan, MEVProtectionConfig, Route, TradeParams, TransactionDetails
from utils.addressing import same_address

if TYPE_CHECKING:
    from trading.chain import ChainClient

logger = logging.getLogger(__name__)

SANDWICH_SLIPPAGE_PERCENT = 5.0
SANDWICH_IMPACT_PERCENT = 3.0
SUSPICIOUS_GAS_RATIO = 1.5
MEMPOOL_HIGH_THRESHOLD = 5
MAX_JITTER_MS = 1000

_SEVERITY_RANK = {"high": 3, "medium": 2, "low": 1}


@dataclass
class MEVAssessment:
    threat: MEVThreat | None
    mempool: MempoolScan


class MEVProtection:
    def __init__(
        self,
        chain: ChainClient,
        config: MEVProtectionConfig,
        *,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.chain = chain
        self.config = config
        self._sleep = sleep or asyncio.sleep
        self._rng = rng or random.Random()

    async def detect_threat(self, params: TradeParams, route: Route) -> MEVThreat | None:
        return (await self.assess(params, route)).threat

    async def assess(self, params: TradeParams, route: Route) -> MEVAssessment:
        if not self.config.enabled:
            return MEVAssessment(threat=None, mempool=MempoolScan(available=False))

        threats: list[MEVThreat] = []
        if self.is_sandwich_vulnerable(params, route):
            threats.append(
                MEVThreat(
                    type="sandwich",
                    severity="high",
                    description="Trade is vulnerable to sandwich attacks due to high slippage or price impact",
                    mitigation="Use private mempool or reduce trade size",
                )
            )
        if self.is_frontrun_vulnerable(params):
            threats.append(
                MEVThreat(
                    type="frontrun",
                    severity="medium",
                    description="Trade may be frontrun due to predictable execution",
                    mitigation="Set an explicit deadline and priority fee",
                )
            )

        scan = await self.scan_mempool(params)
        mempool_threat = self.mempool_threat(scan)
        if mempool_threat is not None:
            threats.append(mempool_threat)

        return MEVAssessment(threat=self.highest_severity(threats), mempool=scan)

    @staticmethod
    def highest_severity(threats: list[MEVThreat]) -> MEVThreat | None:
        best: MEVThreat | None = None
        for threat in threats:
            # Strict > keeps the first match among equal severities.
            if best is None or _SEVERITY_RANK.get(threat.severity, 0) > _SEVERITY_RANK.get(best.severity, 0):
                best = threat
        return best

    @staticmethod
    def is_sandwich_vulnerable(params: TradeParams, route: Route) -> bool:
        if float(params.slippage_tolerance) > SANDWICH_SLIPPAGE_PERCENT:
            return True
        return float(route.price_impact) > SANDWICH_IMPACT_PERCENT

    @staticmethod
    def is_frontrun_vulnerable(params: TradeParams) -> bool:
        return not params.deadline or not params.priority_fee

    async def scan_mempool(self, params: TradeParams) -> MempoolScan:
        pending = await self.chain.pending_transactions()
        if pending is None:
            logger.info("MEMPOOL_VIEW_UNAVAILABLE token=%s", params.token_address)
            return MempoolScan(available=False)

        prices = [int(tx.get("gasPrice") or 0) for tx in pending if tx.get("gasPrice")]
        if prices:
            average = sum(prices) / len(prices)
        else:
            try:
                average = float(await self.chain.gas_price())
            except Exception as exc:
                logger.debug("MEMPOOL_GAS_REFERENCE_FAILED error=%s", exc)
                average = 0.0

        suspicious = 0
        for tx in pending:
            if same_address(tx.get("to"), params.token_address):
                suspicious += 1
                continue
            gas_price = int(tx.get("gasPrice") or 0)
            if average > 0 and gas_price / average > SUSPICIOUS_GAS_RATIO:
                suspicious += 1
        return MempoolScan(available=True, suspicious_count=suspicious, scanned=len(pending))

    @staticmethod
    def mempool_threat(scan: MempoolScan) -> MEVThreat | None:
        if not scan.available:
            return None
        if scan.suspicious_count > MEMPOOL_HIGH_THRESHOLD:
            return MEVThreat(
                type="sandwich",
                severity="high",
                description=f"Detected {scan.suspicious_count} suspicious transactions in mempool",
                mitigation="Wait for mempool to clear or use private relay",
            )
        if scan.suspicious_count > 0:
            return MEVThreat(
                type="frontrun",
                severity="medium",
                description=f"Detected {scan.suspicious_count} potential MEV bots in mempool",
                mitigation="Consider using MEV protection",
            )
        return None

    async def protect_transaction(self, tx: dict[str, Any], signer: Any, private: bool = False) -> TransactionDetails:
        if not self.config.enabled:
            return await self.chain.send_transaction(tx, signer)

        if self.config.use_flashbots:
            logger.info("MEV_BUNDLE_UNAVAILABLE fallback=standard")
            return await self.chain.send_transaction(tx, signer)
        if self.config.private_mempool or private:
            logger.info("MEV_PRIVATE_MEMPOOL_UNAVAILABLE fallback=standard")
            return await self.chain.send_transaction(tx, signer)

        protected = dict(tx)
        priority = int(self.config.max_priority_fee or 0)
        if priority > 0:
            base = await self.chain.gas_price()
            protected.pop("gasPrice", None)
            protected["maxPriorityFeePerGas"] = priority
            protected["maxFeePerGas"] = int(base) + priority

        if self.config.front_run_protection:
            delay_ms = self._rng.uniform(0, MAX_JITTER_MS)
            logger.debug("MEV_JITTER delay_ms=%.0f", delay_ms)
            await self._sleep(delay_ms / 1000.0)

        return await self.chain.send_transaction(protected, signer)

    def calculate_optimal_gas_price(self, base_gas_price: int, urgency: str = "normal") -> int:
        priority = int(self.config.max_priority_fee or 0)
        level = str(urgency).lower()
        if level == "high":
            return int(base_gas_price) + priority * 2
        if level == "low":
            return int(base_gas_price) + priority // 2
        return int(base_gas_price) + priority
