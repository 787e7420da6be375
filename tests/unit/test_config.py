"""Tests for configuration loading."""
import pytest
import tempfile


SAMPLE_CONFIG = """
chain:
  rpc_url: "http://localhost:8545"
  private_key: "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
  chain_id: 42161

scheduler:
  interval_seconds: 50

signals:
  volatility_url: "https://signals.test/volatility_prediction"
  state_url: "https://signals.test/state_recognize"

advisory:
  url: "https://oracle.test/message"
  settle_seconds: 15
  suggested_amounts:
    leverage: 500000

router:
  spender: "0x80eba3855878739f4710233a8a19d89bdd2ffb8e"

protocol:
  pool: "0x794a61358D6845594F94dc1DB02A252b5b4814aD"
  data_provider: "0x69fa688f1dc47d4b5d8029d5a35fb7a548310654"

assets:
  USDC:
    address: "0xaf88d065e77c8cC2239327C5EDb3A432268e5831"
    decimals: 6
  WETH:
    address: "0x82aF49447D8a07e3bd95BD0d56f35241523fBab1"
    decimals: 18

strategies:
  deleverage:
    input_asset: WETH
    output_asset: USDC

accounts:
  - "0x82af49447d8a07e3bd95bd0d56f35241523fbab1"
"""


def write_config(text: str) -> str:
    with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
        f.write(text)
        f.flush()
        return f.name


def test_load_config_from_file():
    from rebalancer.core.config import load_config

    config = load_config(write_config(SAMPLE_CONFIG), env={})

    assert config.chain.rpc_url == "http://localhost:8545"
    assert config.chain.chain_id == 42161
    assert config.chain.receipt_timeout == 120.0
    assert config.scheduler.interval_seconds == 50.0
    assert config.signals.timeout == 30.0
    assert config.advisory.url == "https://oracle.test/message"


def test_config_checksums_addresses():
    from web3 import Web3
    from rebalancer.core.config import load_config

    config = load_config(write_config(SAMPLE_CONFIG), env={})

    assert config.router.spender == Web3.to_checksum_address("0x80eba3855878739f4710233a8a19d89bdd2ffb8e")
    assert config.accounts == ["0x82aF49447D8a07e3bd95BD0d56f35241523fBab1"]


def test_config_assets_and_strategies():
    from rebalancer.core.config import load_config

    config = load_config(write_config(SAMPLE_CONFIG), env={})

    assert config.get_asset("USDC").decimals == 6
    assert config.get_asset("WETH").decimals == 18
    assert config.get_asset("DAI") is None

    strategy = config.strategies["deleverage"]
    assert strategy.input_asset == "WETH"
    assert strategy.output_asset == "USDC"
    assert strategy.approve is False
    assert strategy.approve_pool is False
    assert strategy.slippage_bps is None


def test_config_suggested_amounts_merge_defaults():
    from rebalancer.core.config import load_config

    config = load_config(write_config(SAMPLE_CONFIG), env={})

    assert config.advisory.suggested_amounts == {"leverage": 500000, "deleverage": 10000}


def test_private_key_not_in_repr():
    from rebalancer.core.config import load_config

    config = load_config(write_config(SAMPLE_CONFIG), env={})

    assert "4c0883a6" not in repr(config.chain)


def test_env_overrides_yaml():
    from rebalancer.core.config import load_config

    env = {
        "RPC_URL": "http://node.test:8545",
        "EXECUTION_INTERVAL": "10",
        "ORACLE_URL": "https://other-oracle.test/message",
        "ROUTER_API_KEY": "secret",
    }
    config = load_config(write_config(SAMPLE_CONFIG), env=env)

    assert config.chain.rpc_url == "http://node.test:8545"
    assert config.scheduler.interval_seconds == 10.0
    assert config.advisory.url == "https://other-oracle.test/message"
    assert config.router.api_key == "secret"


def test_env_supplies_missing_secret():
    from rebalancer.core.config import load_config

    text = SAMPLE_CONFIG.replace(
        '  private_key: "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"\n', ""
    )
    config = load_config(write_config(text), env={"PRIVATE_KEY": "0xabc"})

    assert config.chain.private_key == "0xabc"


def test_config_missing_file():
    from rebalancer.core.config import load_config, ConfigError

    with pytest.raises(ConfigError, match="not found"):
        load_config("/nonexistent/path/config.yaml", env={})


def test_config_empty_file():
    from rebalancer.core.config import load_config, ConfigError

    with pytest.raises(ConfigError, match="empty"):
        load_config(write_config(""), env={})


def test_config_invalid_yaml():
    from rebalancer.core.config import load_config, ConfigError

    with pytest.raises(ConfigError, match="parse YAML"):
        load_config(write_config("chain: [unclosed"), env={})


def test_config_missing_section():
    from rebalancer.core.config import load_config, ConfigError

    text = SAMPLE_CONFIG.split("\nsignals:")[0]
    with pytest.raises(ConfigError, match="signals"):
        load_config(write_config(text), env={})


def test_config_missing_rpc_url():
    from rebalancer.core.config import load_config, ConfigError

    text = SAMPLE_CONFIG.replace('rpc_url: "http://localhost:8545"', 'rpc_url: ""')
    with pytest.raises(ConfigError, match="chain.rpc_url"):
        load_config(write_config(text), env={})


def test_config_invalid_pool_address():
    from rebalancer.core.config import load_config, ConfigError

    text = SAMPLE_CONFIG.replace(
        'pool: "0x794a61358D6845594F94dc1DB02A252b5b4814aD"', 'pool: "not-an-address"'
    )
    with pytest.raises(ConfigError, match="protocol.pool"):
        load_config(write_config(text), env={})


def test_config_non_positive_interval():
    from rebalancer.core.config import load_config, ConfigError

    text = SAMPLE_CONFIG.replace("interval_seconds: 50", "interval_seconds: 0")
    with pytest.raises(ConfigError, match="interval_seconds"):
        load_config(write_config(text), env={})


def test_config_non_integer_decimals():
    from rebalancer.core.config import load_config, ConfigError

    text = SAMPLE_CONFIG.replace("decimals: 6", "decimals: six")
    with pytest.raises(ConfigError, match="decimals"):
        load_config(write_config(text), env={})


def test_config_invalid_settle_seconds():
    from rebalancer.core.config import load_config, ConfigError

    text = SAMPLE_CONFIG.replace("settle_seconds: 15", "settle_seconds: soon")
    with pytest.raises(ConfigError, match="settle_seconds"):
        load_config(write_config(text), env={})


def test_config_negative_settle_seconds():
    from rebalancer.core.config import load_config, ConfigError

    text = SAMPLE_CONFIG.replace("settle_seconds: 15", "settle_seconds: -1")
    with pytest.raises(ConfigError, match="settle_seconds"):
        load_config(write_config(text), env={})


def test_config_zero_settle_seconds_allowed():
    from rebalancer.core.config import load_config

    text = SAMPLE_CONFIG.replace("settle_seconds: 15", "settle_seconds: 0")
    config = load_config(write_config(text), env={})

    assert config.advisory.settle_seconds == 0.0


def test_config_non_mapping_strategy():
    from rebalancer.core.config import load_config, ConfigError

    text = SAMPLE_CONFIG.replace(
        "  deleverage:\n    input_asset: WETH\n    output_asset: USDC\n",
        "  deleverage: WETH-USDC\n",
    )
    with pytest.raises(ConfigError, match="deleverage"):
        load_config(write_config(text), env={})


def test_config_non_mapping_assets():
    from rebalancer.core.config import load_config, ConfigError

    text = SAMPLE_CONFIG.split("assets:")[0] + "assets:\n  - USDC\n"
    with pytest.raises(ConfigError, match="assets"):
        load_config(write_config(text), env={})


def test_config_non_mapping_section():
    from rebalancer.core.config import load_config, ConfigError

    text = SAMPLE_CONFIG.replace("scheduler:\n  interval_seconds: 50", "scheduler: fast")
    with pytest.raises(ConfigError, match="scheduler"):
        load_config(write_config(text), env={})


def test_default_config_file_parses():
    from pathlib import Path
    from rebalancer.core.config import load_config

    path = Path(__file__).resolve().parents[2] / "config" / "default.yaml"
    env = {
        "RPC_URL": "http://localhost:8545",
        "PRIVATE_KEY": "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318",
        "API_URL": "https://signals.test/volatility_prediction",
        "API_URL_STATE": "https://signals.test/state_recognize",
        "ORACLE_URL": "https://oracle.test/message",
    }
    config = load_config(str(path), env=env)

    assert set(config.strategies) == {"leverage", "deleverage"}
    assert config.strategies["leverage"].approve is True
    assert config.strategies["deleverage"].approve_pool is True
    assert config.scheduler.interval_seconds == 50.0
