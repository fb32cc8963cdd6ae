"""Entry point for the unified trading router: one-shot quote or trade from the command line."""

import argparse
import asyncio
import json
import logging
import os
from dataclasses import asdict
from logging.handlers import RotatingFileHandler
from typing import Any

from eth_account import Account

import config
from config import APP_LOG_FILE, LOG_DIR, LOG_LEVEL
from database.db import init_db, record_trade_result
from trading.chain import ChainClient
from trading.errors import TradingEngineError
from trading.events import TRADE_EVENTS
from trading.models import TradeParams, TradeType, TradingConfig
from trading.router import UnifiedTradingRouter


def configure_logging() -> None:
    os.makedirs(LOG_DIR, exist_ok=True)
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    file_handler = RotatingFileHandler(APP_LOG_FILE, maxBytes=1_000_000, backupCount=5, encoding="utf-8")
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(getattr(logging, LOG_LEVEL.upper(), logging.INFO))
    root.handlers.clear()
    root.addHandler(file_handler)
    root.addHandler(console_handler)

    # RPC payloads include signed transactions; keep transport logs quiet.
    logging.getLogger("web3").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


logger = logging.getLogger(__name__)


def build_router(cfg: TradingConfig) -> UnifiedTradingRouter:
    chain = ChainClient(cfg.rpc_urls, timeout_seconds=cfg.rpc_timeout, chain_id=cfg.chain_id)
    router = UnifiedTradingRouter(chain, cfg)
    for event in sorted(TRADE_EVENTS):
        router.on(event, _event_logger(event))
    return router


def _event_logger(event: str):
    def _log(payload: Any) -> None:
        logger.info("ROUTER_EVENT event=%s payload_type=%s", event, type(payload).__name__)

    return _log


def _dump(value: Any) -> str:
    return json.dumps(asdict(value), default=str, indent=2)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Quote or execute a trade through the unified trading router.")
    parser.add_argument("--token", required=True, help="Token address (0x...)")
    parser.add_argument("--side", choices=("buy", "sell"), default="buy")
    parser.add_argument("--amount", required=True, help="Amount in smallest unit (wei for buys, token units for sells)")
    parser.add_argument("--slippage", type=float, default=2.0, help="Slippage tolerance, percent")
    parser.add_argument("--min-out", default=None, help="Explicit minimum output, smallest unit")
    parser.add_argument("--execute", action="store_true", help="Sign and submit (needs ROUTER_PRIVATE_KEY)")
    parser.add_argument("--routes", action="store_true", help="Print every candidate route, best first")
    return parser.parse_args(argv)


async def run(args: argparse.Namespace) -> int:
    cfg = config.validate_trading_config(config.build_trading_config())
    router = build_router(cfg)
    params = TradeParams(
        token_address=args.token,
        trade_type=TradeType(args.side.upper()),
        amount=args.amount,
        slippage_tolerance=args.slippage,
        min_amount_out=args.min_out,
    )

    state = await router.get_token_state(params.token_address)
    if state is None:
        logger.error("TOKEN_STATE_UNKNOWN token=%s", params.token_address)
        return 2
    print(_dump(state))

    if args.routes:
        for route in await router.get_all_routes(params):
            print(_dump(route))
        if not args.execute:
            return 0

    if not args.execute:
        print(_dump(await router.get_quote(params)))
        return 0

    if not config.ROUTER_PRIVATE_KEY:
        raise ValueError("ROUTER_PRIVATE_KEY is empty")
    signer = Account.from_key(config.ROUTER_PRIVATE_KEY)
    init_db()
    result = await router.execute_trade(params, signer)
    record_trade_result(result)
    print(_dump(result))
    return 0 if result.success else 1


def main(argv: list[str] | None = None) -> int:
    configure_logging()
    args = parse_args(argv)
    try:
        return asyncio.run(run(args))
    except TradingEngineError as exc:
        logger.error("ROUTER_ERROR code=%s message=%s", exc.code.value, exc.message)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
