"""Minimal ABIs for the sale contract, UniswapV2-compatible AMMs and ERC20 tokens."""

from __future__ import annotations

from typing import Any


def _fn(name: str, inputs: list[tuple[str, str]], outputs: list[tuple[str, str]], mutability: str = "view") -> dict[str, Any]:
    return {
        "name": name,
        "type": "function",
        "stateMutability": mutability,
        "inputs": [{"name": n, "type": t} for n, t in inputs],
        "outputs": [{"name": n, "type": t} for n, t in outputs],
    }


def _event(name: str, inputs: list[tuple[str, str, bool]]) -> dict[str, Any]:
    return {
        "name": name,
        "type": "event",
        "anonymous": False,
        "inputs": [{"name": n, "type": t, "indexed": idx} for n, t, idx in inputs],
    }


ERC20_ABI: list[dict[str, Any]] = [
    _fn("name", [], [("", "string")]),
    _fn("symbol", [], [("", "string")]),
    _fn("decimals", [], [("", "uint8")]),
    _fn("totalSupply", [], [("", "uint256")]),
    _fn("balanceOf", [("owner", "address")], [("", "uint256")]),
    _fn("allowance", [("owner", "address"), ("spender", "address")], [("", "uint256")]),
    _fn("approve", [("spender", "address"), ("value", "uint256")], [("", "bool")], "nonpayable"),
    _event("Transfer", [("from", "address", True), ("to", "address", True), ("value", "uint256", False)]),
]

V2_ROUTER_ABI: list[dict[str, Any]] = [
    _fn("WETH", [], [("", "address")]),
    _fn("getAmountsOut", [("amountIn", "uint256"), ("path", "address[]")], [("amounts", "uint256[]")]),
    _fn("getAmountsIn", [("amountOut", "uint256"), ("path", "address[]")], [("amounts", "uint256[]")]),
    _fn(
        "swapExactETHForTokens",
        [("amountOutMin", "uint256"), ("path", "address[]"), ("to", "address"), ("deadline", "uint256")],
        [("amounts", "uint256[]")],
        "payable",
    ),
    _fn(
        "swapExactTokensForETH",
        [
            ("amountIn", "uint256"),
            ("amountOutMin", "uint256"),
            ("path", "address[]"),
            ("to", "address"),
            ("deadline", "uint256"),
        ],
        [("amounts", "uint256[]")],
        "nonpayable",
    ),
    _fn(
        "swapExactTokensForTokens",
        [
            ("amountIn", "uint256"),
            ("amountOutMin", "uint256"),
            ("path", "address[]"),
            ("to", "address"),
            ("deadline", "uint256"),
        ],
        [("amounts", "uint256[]")],
        "nonpayable",
    ),
]

V2_FACTORY_ABI: list[dict[str, Any]] = [
    _fn("getPair", [("tokenA", "address"), ("tokenB", "address")], [("pair", "address")]),
]

V2_PAIR_ABI: list[dict[str, Any]] = [
    _fn(
        "getReserves",
        [],
        [("reserve0", "uint112"), ("reserve1", "uint112"), ("blockTimestampLast", "uint32")],
    ),
    _fn("token0", [], [("", "address")]),
    _fn("token1", [], [("", "address")]),
    _fn("totalSupply", [], [("", "uint256")]),
]

_TOKEN_INFO_COMPONENTS = [
    {"name": "token", "type": "address"},
    {"name": "name", "type": "string"},
    {"name": "symbol", "type": "string"},
    {"name": "creator", "type": "address"},
    {"name": "sold", "type": "uint256"},
    {"name": "raised", "type": "uint256"},
    {"name": "isOpen", "type": "bool"},
    {"name": "isLaunched", "type": "bool"},
    {"name": "createdAt", "type": "uint256"},
    {"name": "launchedAt", "type": "uint256"},
]

# Index of ``sold`` inside the getTokenInfo tuple.
TOKEN_INFO_SOLD_INDEX = 4

BONDING_CURVE_ABI: list[dict[str, Any]] = [
    _fn(
        "tokenSales",
        [("", "address")],
        [
            ("sold", "uint256"),
            ("raised", "uint256"),
            ("launched", "bool"),
            ("isOpen", "bool"),
            ("launchTimestamp", "uint256"),
        ],
    ),
    {
        "name": "getTokenInfo",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "_token", "type": "address"}],
        "outputs": [{"name": "", "type": "tuple", "components": _TOKEN_INFO_COMPONENTS}],
    },
    _fn("TARGET_SUPPLY", [], [("", "uint256")]),
    _fn("INITIAL_PRICE", [], [("", "uint256")]),
    _fn("FINAL_PRICE", [], [("", "uint256")]),
    _fn("TOKEN_LIMIT", [], [("", "uint256")]),
    _fn("TARGET", [], [("", "uint256")]),
    _fn("platformTradingFee", [], [("", "uint256")]),
    _fn("calculateTokensOut", [("_currentSold", "uint256"), ("_ethIn", "uint256")], [("", "uint256")], "pure"),
    _fn("calculateETHOut", [("_currentSold", "uint256"), ("_tokensIn", "uint256")], [("", "uint256")], "pure"),
    _fn("buyToken", [("_token", "address"), ("_minTokens", "uint256")], [], "payable"),
    _fn("sellToken", [("_token", "address"), ("_amount", "uint256"), ("_minETH", "uint256")], [], "nonpayable"),
    _event(
        "TokenPurchased",
        [
            ("token", "address", True),
            ("buyer", "address", True),
            ("amount", "uint256", False),
            ("cost", "uint256", False),
            ("timestamp", "uint256", False),
        ],
    ),
    _event(
        "TokenSold",
        [
            ("token", "address", True),
            ("seller", "address", True),
            ("amount", "uint256", False),
            ("proceeds", "uint256", False),
            ("timestamp", "uint256", False),
        ],
    ),
]

MAX_UINT256 = (2**256) - 1
