"""Configuration loading and validation."""
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml
from web3 import Web3

logger = logging.getLogger(__name__)


# Environment variables that supply secrets and endpoints.
# They take precedence over values in the YAML file.
ENV_OVERRIDES = {
    "RPC_URL": ("chain", "rpc_url"),
    "PRIVATE_KEY": ("chain", "private_key"),
    "EXECUTION_INTERVAL": ("scheduler", "interval_seconds"),
    "API_URL": ("signals", "volatility_url"),
    "API_URL_STATE": ("signals", "state_url"),
    "ORACLE_URL": ("advisory", "url"),
    "ROUTER_API_KEY": ("router", "api_key"),
}

# Amounts offered to the oracle alongside each action, in smallest units
DEFAULT_SUGGESTED_AMOUNTS = {"leverage": 400000, "deleverage": 10000}


class ConfigError(Exception):
    """Raised when configuration is invalid."""

    pass


@dataclass
class ChainConfig:
    """JSON-RPC node and signer configuration."""

    rpc_url: str
    private_key: str = field(repr=False)
    chain_id: int | None = None
    receipt_timeout: float = 120.0
    gas_buffer: float = 1.2


@dataclass
class SchedulerConfig:
    """Cycle scheduling configuration."""

    interval_seconds: float = 50.0


@dataclass
class SignalConfig:
    """Market signal service configuration."""

    volatility_url: str
    state_url: str
    timeout: float = 30.0


@dataclass
class AdvisoryConfig:
    """Decision oracle configuration."""

    url: str
    response_timeout: float = 60.0
    settle_seconds: float = 15.0
    user_id: str = "user"
    user_name: str = "User"
    suggested_amounts: dict[str, int] = field(
        default_factory=lambda: dict(DEFAULT_SUGGESTED_AMOUNTS)
    )


@dataclass
class RouterConfig:
    """Swap-routing API configuration."""

    base_url: str = "https://api.enso.finance"
    api_key: str | None = field(default=None, repr=False)
    spender: str | None = None
    slippage_bps: int = 300
    timeout: float = 30.0


@dataclass
class ProtocolConfig:
    """Lending protocol contract addresses."""

    pool: str
    data_provider: str
    name: str = "aave-v3"
    base_currency_decimals: int = 8


@dataclass
class AssetConfig:
    """Token known to the rebalancer."""

    symbol: str
    address: str
    decimals: int


@dataclass
class RouteStrategyConfig:
    """How a decision is routed between assets."""

    input_asset: str
    output_asset: str
    approve: bool = False
    approve_pool: bool = False
    slippage_bps: int | None = None


@dataclass
class ChatLogConfig:
    """Notification log configuration."""

    path: str = "./data"


@dataclass
class Config:
    """Main configuration container."""

    chain: ChainConfig
    scheduler: SchedulerConfig
    signals: SignalConfig
    advisory: AdvisoryConfig
    router: RouterConfig
    protocol: ProtocolConfig
    assets: dict[str, AssetConfig]
    strategies: dict[str, RouteStrategyConfig] = field(default_factory=dict)
    chat_log: ChatLogConfig = field(default_factory=ChatLogConfig)
    accounts: list[str] = field(default_factory=list)

    def get_asset(self, symbol: str) -> AssetConfig | None:
        """Get an asset by symbol."""
        return self.assets.get(symbol)


def _require(section: dict[str, Any], key: str, section_name: str) -> Any:
    value = section.get(key)
    if value is None or value == "":
        raise ConfigError(f"Missing required configuration value: {section_name}.{key}")
    return value


def _address(value: Any, name: str) -> str:
    if not isinstance(value, str) or not Web3.is_address(value):
        raise ConfigError(f"Invalid address for {name}: {value!r}")
    return Web3.to_checksum_address(value)


def _optional_address(value: Any, name: str) -> str | None:
    if value is None or value == "":
        return None
    return _address(value, name)


def _positive_float(value: Any, name: str) -> float:
    try:
        result = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid number for {name}: {value!r}") from e
    if result <= 0:
        raise ConfigError(f"{name} must be positive, got {result}")
    return result


def _non_negative_float(value: Any, name: str) -> float:
    try:
        result = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid number for {name}: {value!r}") from e
    if result < 0:
        raise ConfigError(f"{name} must not be negative, got {result}")
    return result


def _mapping(value: Any, name: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{name} must be a mapping, got {type(value).__name__}")
    return value


def _non_negative_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"Invalid integer for {name}: {value!r}")
    try:
        result = int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid integer for {name}: {value!r}") from e
    if result < 0 or (isinstance(value, float) and not value.is_integer()):
        raise ConfigError(f"Invalid integer for {name}: {value!r}")
    return result


def _apply_env_overrides(raw: dict[str, Any], env: Mapping[str, str]) -> None:
    """Overlay environment variables onto the raw YAML sections."""
    for var, (section, key) in ENV_OVERRIDES.items():
        value = env.get(var)
        if value:
            raw[section] = _mapping(raw.get(section), section)
            raw[section][key] = value
            logger.debug(f"Config {section}.{key} taken from ${var}")


def load_config(path: str, env: Mapping[str, str] | None = None) -> Config:
    """Load configuration from YAML file and environment.

    Args:
        path: Path to YAML configuration file
        env: Environment mapping (defaults to os.environ)

    Returns:
        Config object with validated configuration

    Raises:
        ConfigError: If file not found, invalid YAML, or missing/malformed values
    """
    config_path = Path(path)

    if not config_path.exists():
        raise ConfigError(f"Configuration file not found: {path}")

    try:
        with open(config_path) as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse YAML: {e}") from e

    if raw is None:
        raise ConfigError("Configuration file is empty")

    if not isinstance(raw, dict):
        raise ConfigError("Configuration root must be a mapping")

    _apply_env_overrides(raw, os.environ if env is None else env)

    # Validate required sections
    required_sections = ["chain", "signals", "advisory", "protocol", "assets"]
    for section in required_sections:
        if not raw.get(section):
            raise ConfigError(f"Missing required configuration section: {section}")
        _mapping(raw[section], section)

    # Parse chain config
    chain_raw = raw["chain"]
    chain_id = chain_raw.get("chain_id")
    chain = ChainConfig(
        rpc_url=_require(chain_raw, "rpc_url", "chain"),
        private_key=_require(chain_raw, "private_key", "chain"),
        chain_id=_non_negative_int(chain_id, "chain.chain_id") if chain_id is not None else None,
        receipt_timeout=_positive_float(chain_raw.get("receipt_timeout", 120.0), "chain.receipt_timeout"),
        gas_buffer=_positive_float(chain_raw.get("gas_buffer", 1.2), "chain.gas_buffer"),
    )

    # Parse scheduler config
    sched_raw = _mapping(raw.get("scheduler"), "scheduler")
    scheduler = SchedulerConfig(
        interval_seconds=_positive_float(
            sched_raw.get("interval_seconds", 50.0), "scheduler.interval_seconds"
        ),
    )

    # Parse signal config
    sig_raw = raw["signals"]
    signals = SignalConfig(
        volatility_url=_require(sig_raw, "volatility_url", "signals"),
        state_url=_require(sig_raw, "state_url", "signals"),
        timeout=_positive_float(sig_raw.get("timeout", 30.0), "signals.timeout"),
    )

    # Parse advisory config
    adv_raw = raw["advisory"]
    suggested = dict(DEFAULT_SUGGESTED_AMOUNTS)
    suggested_raw = _mapping(adv_raw.get("suggested_amounts"), "advisory.suggested_amounts")
    for action, amount in suggested_raw.items():
        suggested[action] = _non_negative_int(amount, f"advisory.suggested_amounts.{action}")
    advisory = AdvisoryConfig(
        url=_require(adv_raw, "url", "advisory"),
        response_timeout=_positive_float(
            adv_raw.get("response_timeout", 60.0), "advisory.response_timeout"
        ),
        settle_seconds=_non_negative_float(
            adv_raw.get("settle_seconds", 15.0), "advisory.settle_seconds"
        ),
        user_id=adv_raw.get("user_id", "user"),
        user_name=adv_raw.get("user_name", "User"),
        suggested_amounts=suggested,
    )

    # Parse router config
    router_raw = _mapping(raw.get("router"), "router")
    router = RouterConfig(
        base_url=router_raw.get("base_url", "https://api.enso.finance"),
        api_key=router_raw.get("api_key"),
        spender=_optional_address(router_raw.get("spender"), "router.spender"),
        slippage_bps=_non_negative_int(router_raw.get("slippage_bps", 300), "router.slippage_bps"),
        timeout=_positive_float(router_raw.get("timeout", 30.0), "router.timeout"),
    )

    # Parse protocol config
    proto_raw = raw["protocol"]
    protocol = ProtocolConfig(
        pool=_address(_require(proto_raw, "pool", "protocol"), "protocol.pool"),
        data_provider=_address(
            _require(proto_raw, "data_provider", "protocol"), "protocol.data_provider"
        ),
        name=proto_raw.get("name", "aave-v3"),
        base_currency_decimals=_non_negative_int(
            proto_raw.get("base_currency_decimals", 8), "protocol.base_currency_decimals"
        ),
    )

    # Parse assets
    assets: dict[str, AssetConfig] = {}
    for symbol, asset_raw in raw["assets"].items():
        if not isinstance(asset_raw, dict):
            raise ConfigError(f"Asset {symbol} must be a mapping")
        assets[symbol] = AssetConfig(
            symbol=symbol,
            address=_address(asset_raw.get("address"), f"assets.{symbol}.address"),
            decimals=_non_negative_int(
                _require(asset_raw, "decimals", f"assets.{symbol}"), f"assets.{symbol}.decimals"
            ),
        )

    # Parse route strategies; unknown symbols are reported by the bundle builder
    strategies: dict[str, RouteStrategyConfig] = {}
    for name, strat_raw in _mapping(raw.get("strategies"), "strategies").items():
        if not isinstance(strat_raw, dict):
            raise ConfigError(f"Strategy {name} must be a mapping")
        slippage = strat_raw.get("slippage_bps")
        strategies[name] = RouteStrategyConfig(
            input_asset=_require(strat_raw, "input_asset", f"strategies.{name}"),
            output_asset=_require(strat_raw, "output_asset", f"strategies.{name}"),
            approve=bool(strat_raw.get("approve", False)),
            approve_pool=bool(strat_raw.get("approve_pool", False)),
            slippage_bps=(
                _non_negative_int(slippage, f"strategies.{name}.slippage_bps")
                if slippage is not None
                else None
            ),
        )

    chat_raw = _mapping(raw.get("chat_log"), "chat_log")
    chat_log = ChatLogConfig(path=chat_raw.get("path", "./data"))

    accounts = [
        _address(account, "accounts") for account in (raw.get("accounts") or [])
    ]

    config = Config(
        chain=chain,
        scheduler=scheduler,
        signals=signals,
        advisory=advisory,
        router=router,
        protocol=protocol,
        assets=assets,
        strategies=strategies,
        chat_log=chat_log,
        accounts=accounts,
    )

    logger.info(f"Loaded configuration from {path}")
    logger.debug(f"Chain: {chain.rpc_url} (chain_id={chain.chain_id})")
    logger.debug(f"Scheduler: interval={scheduler.interval_seconds}s")
    logger.debug(f"Assets: {list(assets)}")
    logger.debug(f"Strategies: {list(strategies)}")

    return config
