"""Address normalization helpers."""

from __future__ import annotations

import re

ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def normalize_address(value: str | None) -> str:
    """Normalize on-chain address keys for internal maps/dedup."""
    return str(value or "").strip().lower()


def is_address(value: str | None) -> bool:
    return bool(ADDRESS_RE.match(str(value or "").strip()))


def is_zero_address(value: str | None) -> bool:
    key = normalize_address(value)
    return not key or key == ZERO_ADDRESS


def same_address(left: str | None, right: str | None) -> bool:
    a = normalize_address(left)
    return bool(a) and a == normalize_address(right)
