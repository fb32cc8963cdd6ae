from __future__ import annotations

import random
import unittest

from tests.fakes import GWEI, TOKEN, FakeChain, FakeSigner, RecordingSleep
from trading.mev_protection import MEVProtection
from trading.models import MEVProtectionConfig, MempoolScan, MEVThreat, Route, RouteType, TradeParams, TradeType


def _route(impact: float) -> Route:
    return Route(
        route_type=RouteType.DEX_V2,
        path=["0x" + "a" * 40, TOKEN],
        estimated_gas="200000",
        price_impact=impact,
        execution_price="1",
        amount_in="1000",
        amount_out="990",
        minimum_amount_out="970",
        fee="3",
        dex="alpha",
    )


def _guarded(slippage: float = 1.0) -> TradeParams:
    # Explicit deadline and priority fee: not front-run vulnerable.
    return TradeParams(TOKEN, TradeType.BUY, "1000", slippage_tolerance=slippage, deadline=2000, priority_fee="1")


class ThreatDetectionTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.chain = FakeChain()
        self.mev = MEVProtection(self.chain, MEVProtectionConfig(enabled=True))

    async def test_high_slippage_is_sandwich(self) -> None:
        threat = await self.mev.detect_threat(_guarded(slippage=10), _route(5))
        assert threat is not None
        self.assertEqual((threat.type, threat.severity), ("sandwich", "high"))

    async def test_thresholds_are_strict(self) -> None:
        self.assertIsNone(await self.mev.detect_threat(_guarded(slippage=5), _route(3)))

    async def test_high_impact_alone_is_sandwich(self) -> None:
        threat = await self.mev.detect_threat(_guarded(), _route(3.01))
        assert threat is not None
        self.assertEqual(threat.type, "sandwich")

    async def test_missing_deadline_is_frontrun(self) -> None:
        params = TradeParams(TOKEN, TradeType.BUY, "1000", slippage_tolerance=1, priority_fee="1")
        threat = await self.mev.detect_threat(params, _route(0.5))
        assert threat is not None
        self.assertEqual((threat.type, threat.severity), ("frontrun", "medium"))

    async def test_sandwich_outranks_frontrun(self) -> None:
        params = TradeParams(TOKEN, TradeType.BUY, "1000", slippage_tolerance=20)
        threat = await self.mev.detect_threat(params, _route(0.5))
        assert threat is not None
        self.assertEqual(threat.severity, "high")

    async def test_disabled_reports_nothing(self) -> None:
        mev = MEVProtection(self.chain, MEVProtectionConfig(enabled=False))
        assessment = await mev.assess(_guarded(slippage=30), _route(50))
        self.assertIsNone(assessment.threat)
        self.assertFalse(assessment.mempool.available)

    def test_first_of_equal_severity_wins(self) -> None:
        first = MEVThreat("sandwich", "medium", "a", "x")
        second = MEVThreat("frontrun", "medium", "b", "y")
        self.assertIs(MEVProtection.highest_severity([first, second]), first)
        self.assertIsNone(MEVProtection.highest_severity([]))


class MempoolScanTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.chain = FakeChain()
        self.mev = MEVProtection(self.chain, MEVProtectionConfig(enabled=True))

    async def test_no_pending_view_is_unavailable(self) -> None:
        self.chain.pending = None
        assessment = await self.mev.assess(_guarded(), _route(0.5))
        self.assertFalse(assessment.mempool.available)
        self.assertIsNone(assessment.threat)

    async def test_token_targeting_transactions_are_suspicious(self) -> None:
        self.chain.pending = [{"to": TOKEN.upper().replace("0X", "0x"), "gasPrice": GWEI} for _ in range(6)]
        scan = await self.mev.scan_mempool(_guarded())
        self.assertEqual(scan, MempoolScan(available=True, suspicious_count=6, scanned=6))
        threat = await self.mev.detect_threat(_guarded(), _route(0.5))
        assert threat is not None
        self.assertEqual((threat.type, threat.severity), ("sandwich", "high"))

    async def test_high_gas_outliers_are_medium(self) -> None:
        other = "0x" + "3" * 40
        self.chain.pending = [{"to": other, "gasPrice": GWEI} for _ in range(8)]
        self.chain.pending.append({"to": other, "gasPrice": 10 * GWEI})
        scan = await self.mev.scan_mempool(_guarded())
        self.assertEqual(scan.suspicious_count, 1)
        threat = await self.mev.detect_threat(_guarded(), _route(0.5))
        assert threat is not None
        self.assertEqual((threat.type, threat.severity), ("frontrun", "medium"))

    async def test_quiet_mempool_is_safe(self) -> None:
        self.chain.pending = [{"to": "0x" + "3" * 40, "gasPrice": GWEI}]
        assessment = await self.mev.assess(_guarded(), _route(0.5))
        self.assertTrue(assessment.mempool.available)
        self.assertIsNone(assessment.threat)

    def test_threshold_boundary(self) -> None:
        five = MEVProtection.mempool_threat(MempoolScan(available=True, suspicious_count=5))
        assert five is not None
        self.assertEqual(five.severity, "medium")
        self.assertIsNone(MEVProtection.mempool_threat(MempoolScan(available=True)))
        self.assertIsNone(MEVProtection.mempool_threat(MempoolScan(available=False, suspicious_count=9)))


class ProtectTransactionTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.chain = FakeChain()
        self.chain.gas = 3 * GWEI
        self.sleep = RecordingSleep()
        self.signer = FakeSigner()

    def _mev(self, **overrides) -> MEVProtection:
        cfg = MEVProtectionConfig(enabled=True, max_priority_fee=2 * GWEI, **overrides)
        return MEVProtection(self.chain, cfg, sleep=self.sleep, rng=random.Random(7))

    async def test_sets_fee_fields_and_jitters(self) -> None:
        tx = {"to": TOKEN, "gasPrice": 5 * GWEI, "value": 1}
        await self._mev().protect_transaction(tx, self.signer)
        sent = self.chain.sent[0]
        self.assertNotIn("gasPrice", sent)
        self.assertEqual(sent["maxPriorityFeePerGas"], 2 * GWEI)
        self.assertEqual(sent["maxFeePerGas"], 5 * GWEI)
        self.assertEqual(tx["gasPrice"], 5 * GWEI)
        self.assertEqual(len(self.sleep.calls), 1)
        self.assertGreaterEqual(self.sleep.calls[0], 0.0)
        self.assertLessEqual(self.sleep.calls[0], 1.0)

    async def test_no_jitter_without_front_run_protection(self) -> None:
        await self._mev(front_run_protection=False).protect_transaction({"to": TOKEN}, self.signer)
        self.assertEqual(self.sleep.calls, [])

    async def test_bundle_and_private_modes_fall_back_to_plain_send(self) -> None:
        await self._mev(use_flashbots=True).protect_transaction({"to": TOKEN, "gasPrice": 1}, self.signer)
        await self._mev().protect_transaction({"to": TOKEN, "gasPrice": 1}, self.signer, private=True)
        self.assertEqual([tx["gasPrice"] for tx in self.chain.sent], [1, 1])
        self.assertEqual(self.sleep.calls, [])

    async def test_disabled_sends_unchanged(self) -> None:
        mev = MEVProtection(self.chain, MEVProtectionConfig(enabled=False), sleep=self.sleep)
        await mev.protect_transaction({"to": TOKEN, "gasPrice": 9}, self.signer)
        self.assertEqual(self.chain.sent[0]["gasPrice"], 9)

    def test_optimal_gas_price_by_urgency(self) -> None:
        mev = self._mev()
        self.assertEqual(mev.calculate_optimal_gas_price(10 * GWEI, "low"), 11 * GWEI)
        self.assertEqual(mev.calculate_optimal_gas_price(10 * GWEI), 12 * GWEI)
        self.assertEqual(mev.calculate_optimal_gas_price(10 * GWEI, "high"), 14 * GWEI)


if __name__ == "__main__":
    unittest.main()
