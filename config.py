"""Application configuration."""

import os
from pathlib import Path

from dotenv import load_dotenv

from trading.models import DexVenueConfig, MEVProtectionConfig, RetryConfig, TradingConfig
from utils.addressing import is_address


def _load_dotenv_safe(dotenv_path: str | None = None, *, override: bool = False) -> None:
    """Load dotenv using UTF-8-SIG so BOM-prefixed files don't break first key parsing."""
    load_dotenv(dotenv_path=dotenv_path, override=override, encoding="utf-8-sig")


# Load base environment first, then optional per-instance override env file.
_load_dotenv_safe()
_ROUTER_ENV_FILE = os.getenv("ROUTER_ENV_FILE", "").strip()
if _ROUTER_ENV_FILE:
    _router_env_path = Path(_ROUTER_ENV_FILE).expanduser()
    if not _router_env_path.is_absolute():
        _router_env_path = (Path.cwd() / _router_env_path).resolve()
    if not _router_env_path.exists():
        raise FileNotFoundError(f"ROUTER_ENV_FILE does not exist: {_router_env_path}")
    if not _router_env_path.is_file():
        raise IsADirectoryError(f"ROUTER_ENV_FILE is not a file: {_router_env_path}")
    try:
        _load_dotenv_safe(str(_router_env_path), override=True)
    except (OSError, UnicodeError, ValueError) as exc:
        raise RuntimeError(f"Failed to load ROUTER_ENV_FILE '{_router_env_path}': {exc}") from exc


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _parse_csv(raw: str) -> list[str]:
    return [item.strip() for item in str(raw or "").split(",") if item.strip()]


def parse_dex_venues(raw: str) -> list[DexVenueConfig]:
    """Parse ``name|router|factory|init_code_hash|fee_bps`` entries separated by commas."""
    out: list[DexVenueConfig] = []
    for chunk in _parse_csv(raw):
        parts = [p.strip() for p in chunk.split("|")]
        if len(parts) < 3:
            raise ValueError(f"DEX_VENUES entry needs at least name|router|factory: {chunk!r}")
        name, router, factory = parts[0], parts[1], parts[2]
        init_code_hash = parts[3] if len(parts) > 3 else ""
        try:
            fee_bps = int(parts[4]) if len(parts) > 4 and parts[4] else 30
        except ValueError as exc:
            raise ValueError(f"DEX_VENUES fee_bps must be an integer: {chunk!r}") from exc
        out.append(
            DexVenueConfig(name=name, router=router, factory=factory, init_code_hash=init_code_hash, fee_bps=fee_bps)
        )
    return out


NETWORK_DEFAULTS: dict[str, dict[str, str]] = {
    "mainnet": {
        "chain_id": "1116",
        "rpc_primary": "https://rpc.coredao.org",
        "base_asset": "0x40375C92d9FAf44d2f9db9Bd9ba41a3317a2404f",
        "dex_venues": (
            "icecreamswap|0xBb5e1777A331ED93E07cF043363e48d320eb96c4"
            "|0x9E6d21E759A7A288b80eef94E4737D313D31c13f"
            "|0x58c1b429d0ffdb4407396ae8118c58fed54898473076d0394163ea2198f7c4a3|30"
        ),
    },
    "testnet": {
        "chain_id": "1114",
        "rpc_primary": "https://rpc.test2.btcs.network",
        "base_asset": "0x5c872990530Fe4f7322cA0c302762788e8199Ed0",
        "dex_venues": (
            "shadowswap|0x524027673879FEDfFE8dD3baE1BF8FDD2Cd1bF13"
            "|0x6e46ECa8d210C426ca6cA845feb2881Dc8c99426"
            "|0x6eef19478e462b999a9ed867f57d8c87e8e60fb982a9c6b76df387b0c54e5f37|30"
        ),
    },
}

NETWORK = os.getenv("NETWORK", "testnet").strip().lower()
_NET = NETWORK_DEFAULTS.get(NETWORK, NETWORK_DEFAULTS["testnet"])

EVM_CHAIN_ID = int(os.getenv("EVM_CHAIN_ID", _NET["chain_id"]))
RPC_PRIMARY = os.getenv("RPC_PRIMARY", _NET["rpc_primary"]).strip()
RPC_SECONDARY = os.getenv("RPC_SECONDARY", "").strip()
RPC_TIMEOUT_SECONDS = max(3, int(os.getenv("RPC_TIMEOUT_SECONDS", "10")))

BASE_ASSET_ADDRESS = os.getenv("BASE_ASSET_ADDRESS", _NET["base_asset"]).strip()
BONDING_CURVE_ADDRESS = os.getenv("BONDING_CURVE_ADDRESS", "").strip()
DEX_VENUES = os.getenv("DEX_VENUES", _NET["dex_venues"])
INTERMEDIATE_TOKENS = _parse_csv(os.getenv("INTERMEDIATE_TOKENS", ""))

MAX_SLIPPAGE_PERCENT = float(os.getenv("MAX_SLIPPAGE_PERCENT", "10"))
MAX_PRICE_IMPACT_PERCENT = float(os.getenv("MAX_PRICE_IMPACT_PERCENT", "15"))
DEFAULT_DEADLINE_SECONDS = max(30, int(os.getenv("DEFAULT_DEADLINE_SECONDS", "1200")))
MAX_GAS_PRICE_GWEI = max(0.0, float(os.getenv("MAX_GAS_PRICE_GWEI", "100")))
TX_TIMEOUT_SECONDS = max(10, int(os.getenv("TX_TIMEOUT_SECONDS", "180")))

MEV_PROTECTION_ENABLED = _env_bool("MEV_PROTECTION_ENABLED", "false")
MEV_USE_FLASHBOTS = _env_bool("MEV_USE_FLASHBOTS", "false")
MEV_PRIVATE_MEMPOOL = _env_bool("MEV_PRIVATE_MEMPOOL", "false")
MEV_MAX_PRIORITY_FEE_GWEI = max(0.0, float(os.getenv("MEV_MAX_PRIORITY_FEE_GWEI", "2")))
MEV_BUNDLE_TIMEOUT_MS = max(1000, int(os.getenv("MEV_BUNDLE_TIMEOUT_MS", "60000")))
MEV_FRONT_RUN_PROTECTION = _env_bool("MEV_FRONT_RUN_PROTECTION", "true")
MEV_BACK_RUN_PROTECTION = _env_bool("MEV_BACK_RUN_PROTECTION", "true")

RETRY_MAX_RETRIES = max(0, int(os.getenv("RETRY_MAX_RETRIES", "3")))
RETRY_DELAY_SECONDS = max(0.0, float(os.getenv("RETRY_DELAY_SECONDS", "1")))
RETRY_EXPONENTIAL_BACKOFF = _env_bool("RETRY_EXPONENTIAL_BACKOFF", "true")
RETRY_COUNT_FIRST_ATTEMPT = _env_bool("RETRY_COUNT_FIRST_ATTEMPT", "false")

ROUTER_PRIVATE_KEY = os.getenv("ROUTER_PRIVATE_KEY", "").strip()
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///trades.db")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_DIR = os.getenv("LOG_DIR", "logs")
APP_LOG_FILE = os.path.join(LOG_DIR, "app.log")

GWEI = 10**9


def build_trading_config() -> TradingConfig:
    """Assemble TradingConfig from the module-level settings above."""
    return TradingConfig(
        network=NETWORK,
        rpc_urls=[url for url in (RPC_PRIMARY, RPC_SECONDARY) if url],
        base_asset=BASE_ASSET_ADDRESS,
        dex_venues=parse_dex_venues(DEX_VENUES),
        bonding_curve_address=BONDING_CURVE_ADDRESS,
        intermediate_tokens=list(INTERMEDIATE_TOKENS),
        chain_id=int(EVM_CHAIN_ID),
        max_slippage=float(MAX_SLIPPAGE_PERCENT),
        max_price_impact=float(MAX_PRICE_IMPACT_PERCENT),
        default_deadline=int(DEFAULT_DEADLINE_SECONDS),
        max_gas_price=int(float(MAX_GAS_PRICE_GWEI) * GWEI),
        tx_timeout=int(TX_TIMEOUT_SECONDS),
        rpc_timeout=int(RPC_TIMEOUT_SECONDS),
        mev_protection=MEVProtectionConfig(
            enabled=bool(MEV_PROTECTION_ENABLED),
            use_flashbots=bool(MEV_USE_FLASHBOTS),
            private_mempool=bool(MEV_PRIVATE_MEMPOOL),
            max_priority_fee=int(float(MEV_MAX_PRIORITY_FEE_GWEI) * GWEI),
            bundle_timeout=int(MEV_BUNDLE_TIMEOUT_MS),
            front_run_protection=bool(MEV_FRONT_RUN_PROTECTION),
            back_run_protection=bool(MEV_BACK_RUN_PROTECTION),
        ),
        retry=RetryConfig(
            max_retries=int(RETRY_MAX_RETRIES),
            retry_delay=float(RETRY_DELAY_SECONDS),
            exponential_backoff=bool(RETRY_EXPONENTIAL_BACKOFF),
            count_first_attempt=bool(RETRY_COUNT_FIRST_ATTEMPT),
        ),
    )


def validate_trading_config(cfg: TradingConfig) -> TradingConfig:
    """Fail fast on settings the router cannot run without."""
    if not cfg.rpc_urls:
        raise ValueError("RPC_PRIMARY/RPC_SECONDARY is empty")
    if not is_address(cfg.base_asset):
        raise ValueError(f"BASE_ASSET_ADDRESS is missing or malformed: {cfg.base_asset!r}")
    if cfg.bonding_curve_address and not is_address(cfg.bonding_curve_address):
        raise ValueError(f"BONDING_CURVE_ADDRESS is malformed: {cfg.bonding_curve_address!r}")
    if not cfg.dex_venues and not cfg.bonding_curve_address:
        raise ValueError("No trading venue configured (DEX_VENUES and BONDING_CURVE_ADDRESS are empty)")
    names: set[str] = set()
    for venue in cfg.dex_venues:
        if not venue.name:
            raise ValueError("DEX venue name is empty")
        if venue.name.lower() in names:
            raise ValueError(f"Duplicate DEX venue name: {venue.name}")
        names.add(venue.name.lower())
        for label, value in (("router", venue.router), ("factory", venue.factory)):
            if not is_address(value):
                raise ValueError(f"DEX venue {venue.name} {label} address is malformed: {value!r}")
        if not 0 <= int(venue.fee_bps) < 10_000:
            raise ValueError(f"DEX venue {venue.name} fee_bps out of range: {venue.fee_bps}")
    for token in cfg.intermediate_tokens:
        if not is_address(token):
            raise ValueError(f"INTERMEDIATE_TOKENS entry is malformed: {token!r}")
    if not 0 < float(cfg.max_slippage) <= 50:
        raise ValueError("MAX_SLIPPAGE_PERCENT must be within (0, 50]")
    if float(cfg.max_price_impact) <= 0:
        raise ValueError("MAX_PRICE_IMPACT_PERCENT must be positive")
    if int(cfg.max_gas_price) <= 0:
        raise ValueError("MAX_GAS_PRICE_GWEI must be positive")
    return cfg
