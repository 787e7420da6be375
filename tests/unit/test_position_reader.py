"""Tests for the lending position reader."""
from decimal import Decimal
from unittest.mock import AsyncMock, Mock
import pytest


POOL = "0x794a61358D6845594F94dc1DB02A252b5b4814aD"
DATA_PROVIDER = "0x69FA688f1Dc47d4B5d8029D5a35FB7a548310654"
USDC = "0xaf88d065e77c8cC2239327C5EDb3A432268e5831"
WETH = "0x82aF49447D8a07e3bd95BD0d56f35241523fBab1"
ACCOUNT = "0x5B38Da6a701c568545dCfcB03FcB875f56beddC4"

ACCOUNT_DATA = [
    3_000_00000000,          # collateral, 8 decimals
    1_000_00000000,          # debt
    1_400_00000000,          # available borrows
    8250,                    # liquidation threshold, bps
    8000,                    # ltv, bps
    2_370000000000000000,    # health factor, WAD
]

RESERVE_DATA = {
    USDC: [0, 0, 1_000_000000, 0, 0, 0, 40000000000000000000000000, 0, False],
    WETH: [1_200000000000000000, 0, 0, 0, 0, 0, 20000000000000000000000000, 0, True],
}

BALANCES = {USDC: 12_500000, WETH: 50000000000000000}


def call_returning(value=None, side_effect=None):
    """Mock a bound contract function whose .call() is awaitable."""
    bound = Mock()
    bound.call = AsyncMock(return_value=value, side_effect=side_effect)
    return bound


def make_reader(account_data=ACCOUNT_DATA, reserve_data=RESERVE_DATA, balance_error=None):
    from rebalancer.collectors.chain.abis import ERC20_ABI, LENDING_POOL_ABI
    from rebalancer.collectors.chain.connection import ChainConnection
    from rebalancer.collectors.position_reader import PositionReader
    from rebalancer.core.config import AssetConfig

    pool = Mock()
    pool.functions.getUserAccountData.side_effect = lambda account: call_returning(account_data)

    data_provider = Mock()
    data_provider.functions.getUserReserveData.side_effect = (
        lambda asset, account: call_returning(reserve_data[asset])
    )

    def token(address):
        contract = Mock()
        contract.functions.balanceOf.side_effect = lambda account: call_returning(
            BALANCES[address], side_effect=balance_error
        )
        return contract

    def contract(address, abi):
        if abi is LENDING_POOL_ABI:
            return pool
        if abi is ERC20_ABI:
            return token(address)
        return data_provider

    connection = Mock(spec=ChainConnection)
    connection.contract.side_effect = contract

    reader = PositionReader(
        connection=connection,
        pool_address=POOL,
        data_provider_address=DATA_PROVIDER,
        assets=[AssetConfig("USDC", USDC, 6), AssetConfig("WETH", WETH, 18)],
    )
    return reader, pool


def test_from_units():
    from rebalancer.collectors.position_reader import from_units

    assert from_units(12_500000, 6) == Decimal("12.5")


def test_health_factor_infinite_without_debt():
    from rebalancer.collectors.position_reader import MAX_UINT256, health_factor_from_wad

    assert health_factor_from_wad(MAX_UINT256) == Decimal("Infinity")
    assert health_factor_from_wad(1_500000000000000000) == Decimal("1.5")


@pytest.mark.asyncio
async def test_read_snapshot():
    reader, pool = make_reader()

    snapshot = await reader.read(ACCOUNT.lower())

    assert snapshot.account == ACCOUNT
    assert snapshot.collateral_value == Decimal("3000")
    assert snapshot.debt_value == Decimal("1000")
    assert snapshot.available_borrows_value == Decimal("1400")
    assert snapshot.liquidation_threshold == Decimal("0.825")
    assert snapshot.max_ltv == Decimal("0.8")
    assert snapshot.health_factor == Decimal("2.37")
    assert snapshot.loan_to_value == Decimal("1000") / Decimal("3000")
    assert snapshot.risk_level == "LOW"
    pool.functions.getUserAccountData.assert_called_once_with(ACCOUNT)


@pytest.mark.asyncio
async def test_read_asset_positions():
    reader, _ = make_reader()

    snapshot = await reader.read(ACCOUNT)

    usdc = snapshot.asset("USDC")
    weth = snapshot.asset("WETH")
    assert usdc.variable_debt == Decimal("1000")
    assert usdc.borrowed == Decimal("1000")
    assert usdc.wallet_balance == Decimal("12.5")
    assert usdc.supply_rate == Decimal("0.04")
    assert usdc.usage_as_collateral is False
    assert weth.supplied == Decimal("1.2")
    assert weth.wallet_balance == Decimal("0.05")
    assert weth.usage_as_collateral is True


@pytest.mark.asyncio
async def test_read_without_collateral_has_zero_ltv():
    from rebalancer.collectors.position_reader import MAX_UINT256

    reader, _ = make_reader(account_data=[0, 0, 0, 0, 0, MAX_UINT256])

    snapshot = await reader.read(ACCOUNT)

    assert snapshot.loan_to_value == Decimal(0)
    assert snapshot.health_factor == Decimal("Infinity")


@pytest.mark.asyncio
async def test_short_account_data_raises():
    from rebalancer.core.errors import ChainReadError

    reader, _ = make_reader(account_data=ACCOUNT_DATA[:5])

    with pytest.raises(ChainReadError, match="getUserAccountData"):
        await reader.read(ACCOUNT)


@pytest.mark.asyncio
async def test_short_reserve_data_raises():
    from rebalancer.core.errors import ChainReadError

    reserve_data = dict(RESERVE_DATA)
    reserve_data[WETH] = RESERVE_DATA[WETH][:8]
    reader, _ = make_reader(reserve_data=reserve_data)

    with pytest.raises(ChainReadError, match="WETH"):
        await reader.read(ACCOUNT)


@pytest.mark.asyncio
async def test_call_error_wrapped_with_cause():
    from rebalancer.core.errors import ChainReadError

    cause = ConnectionError("node unreachable")
    reader, _ = make_reader(balance_error=cause)

    with pytest.raises(ChainReadError) as exc_info:
        await reader.read(ACCOUNT)

    assert exc_info.value.cause is cause


@pytest.mark.asyncio
async def test_invalid_account_raises():
    from rebalancer.core.errors import ChainReadError

    reader, _ = make_reader()

    with pytest.raises(ChainReadError, match="Invalid account"):
        await reader.read("not-an-address")
