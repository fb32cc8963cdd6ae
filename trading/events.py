"""Trade lifecycle notifications with explicit observer registration."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Callable

logger = logging.getLogger(__name__)

TRADE_INITIATED = "trade:initiated"
TRADE_ROUTED = "trade:routed"
TRADE_SUBMITTED = "trade:submitted"
TRADE_CONFIRMED = "trade:confirmed"
TRADE_FAILED = "trade:failed"
MEV_DETECTED = "mev:detected"
SLIPPAGE_WARNING = "slippage:warning"

TRADE_EVENTS: frozenset[str] = frozenset(
    {
        TRADE_INITIATED,
        TRADE_ROUTED,
        TRADE_SUBMITTED,
        TRADE_CONFIRMED,
        TRADE_FAILED,
        MEV_DETECTED,
        SLIPPAGE_WARNING,
    }
)

Listener = Callable[[Any], None]


class TradeEvents:
    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = defaultdict(list)

    def on(self, event: str, callback: Listener) -> Callable[[], None]:
        """Register a callback; returns a function that unregisters it."""
        if event not in TRADE_EVENTS:
            raise ValueError(f"unknown trade event: {event}")
        self._listeners[event].append(callback)

        def _off() -> None:
            listeners = self._listeners.get(event) or []
            if callback in listeners:
                listeners.remove(callback)

        return _off

    def emit(self, event: str, payload: Any) -> None:
        # Listener failures are logged and never reach the trade flow.
        for callback in list(self._listeners.get(event) or []):
            try:
                callback(payload)
            except Exception:
                logger.exception("EVENT_LISTENER_FAILED event=%s listener=%r", event, callback)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event) or [])
