"""Lending position reader for Aave v3 style pools."""
import asyncio
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Awaitable, Callable

from web3 import Web3

from rebalancer.collectors.chain.abis import (
    ERC20_ABI,
    LENDING_POOL_ABI,
    PROTOCOL_DATA_PROVIDER_ABI,
)
from rebalancer.collectors.chain.connection import ChainConnection
from rebalancer.core.config import AssetConfig
from rebalancer.core.errors import ChainReadError
from rebalancer.models import AssetPosition, PositionSnapshot

logger = logging.getLogger(__name__)


WAD = Decimal(10) ** 18
RAY = Decimal(10) ** 27
BPS = Decimal(10000)
MAX_UINT256 = 2**256 - 1

ACCOUNT_DATA_FIELDS = 6
RESERVE_DATA_FIELDS = 9


def from_units(raw: int, decimals: int) -> Decimal:
    """Convert a fixed-point integer to a Decimal with the given decimals."""
    return Decimal(int(raw)) / (Decimal(10) ** decimals)


def health_factor_from_wad(raw: int) -> Decimal:
    """Convert a WAD health factor; the protocol reports uint256 max with no debt."""
    if int(raw) >= MAX_UINT256:
        return Decimal("Infinity")
    return Decimal(int(raw)) / WAD


class PositionReader:
    """Reads an account's position from the pool, data provider and tokens.

    Pure reads; safe to retry. Asset decimals come from configuration and
    are never inferred from the chain.
    """

    def __init__(
        self,
        connection: ChainConnection,
        pool_address: str,
        data_provider_address: str,
        assets: list[AssetConfig],
        base_currency_decimals: int = 8,
    ):
        self.connection = connection
        self.assets = assets
        self.base_currency_decimals = base_currency_decimals

        self._pool = connection.contract(pool_address, LENDING_POOL_ABI)
        self._data_provider = connection.contract(data_provider_address, PROTOCOL_DATA_PROVIDER_ABI)
        self._tokens = {
            asset.symbol: connection.contract(asset.address, ERC20_ABI) for asset in assets
        }

    async def _call(self, description: str, call: Callable[[], Awaitable[Any]]) -> Any:
        try:
            return await call()
        except ChainReadError:
            raise
        except Exception as e:
            raise ChainReadError(f"{description} failed: {e}", e) from e

    async def _read_account_data(self, account: str) -> list[int]:
        result = await self._call(
            "getUserAccountData",
            lambda: self._pool.functions.getUserAccountData(account).call(),
        )
        if result is None or len(result) < ACCOUNT_DATA_FIELDS:
            raise ChainReadError(
                f"getUserAccountData returned {0 if result is None else len(result)} fields, "
                f"expected {ACCOUNT_DATA_FIELDS}"
            )
        return list(result)

    async def _read_asset(self, account: str, asset: AssetConfig) -> AssetPosition:
        reserve, balance = await asyncio.gather(
            self._call(
                f"getUserReserveData({asset.symbol})",
                lambda: self._data_provider.functions.getUserReserveData(asset.address, account).call(),
            ),
            self._call(
                f"balanceOf({asset.symbol})",
                lambda: self._tokens[asset.symbol].functions.balanceOf(account).call(),
            ),
        )

        if reserve is None or len(reserve) < RESERVE_DATA_FIELDS:
            raise ChainReadError(
                f"getUserReserveData({asset.symbol}) returned "
                f"{0 if reserve is None else len(reserve)} fields, expected {RESERVE_DATA_FIELDS}"
            )

        try:
            return AssetPosition(
                symbol=asset.symbol,
                address=asset.address,
                decimals=asset.decimals,
                supplied=from_units(reserve[0], asset.decimals),
                stable_debt=from_units(reserve[1], asset.decimals),
                variable_debt=from_units(reserve[2], asset.decimals),
                wallet_balance=from_units(balance, asset.decimals),
                supply_rate=Decimal(int(reserve[6])) / RAY,
                usage_as_collateral=bool(reserve[8]),
            )
        except (TypeError, ValueError) as e:
            raise ChainReadError(f"Malformed reserve data for {asset.symbol}: {e}", e) from e

    async def read(self, account: str) -> PositionSnapshot:
        """Capture a PositionSnapshot for account.

        Args:
            account: Account address (checksummed before use)

        Raises:
            ChainReadError: If any underlying read fails or is malformed
        """
        try:
            account = Web3.to_checksum_address(account)
        except (TypeError, ValueError) as e:
            raise ChainReadError(f"Invalid account address {account!r}", e) from e

        logger.debug(
            "STEP 1/2: Reading position",
            extra={"extra_data": {"action": "position_read_start", "account": account}},
        )

        account_data, *asset_positions = await asyncio.gather(
            self._read_account_data(account),
            *(self._read_asset(account, asset) for asset in self.assets),
        )

        try:
            collateral = from_units(account_data[0], self.base_currency_decimals)
            debt = from_units(account_data[1], self.base_currency_decimals)
            available = from_units(account_data[2], self.base_currency_decimals)
            liquidation_threshold = Decimal(int(account_data[3])) / BPS
            max_ltv = Decimal(int(account_data[4])) / BPS
            health_factor = health_factor_from_wad(account_data[5])
        except (TypeError, ValueError) as e:
            raise ChainReadError(f"Malformed account data: {e}", e) from e

        snapshot = PositionSnapshot(
            account=account,
            collateral_value=collateral,
            debt_value=debt,
            available_borrows_value=available,
            loan_to_value=(debt / collateral) if collateral > 0 else Decimal(0),
            max_ltv=max_ltv,
            liquidation_threshold=liquidation_threshold,
            health_factor=health_factor,
            assets=tuple(asset_positions),
            timestamp=datetime.now(timezone.utc),
        )

        logger.debug(
            "STEP 2/2: Position read",
            extra={
                "extra_data": {
                    "action": "position_read_done",
                    "account": account,
                    "health_factor": str(health_factor),
                    "collateral": str(collateral),
                    "debt": str(debt),
                }
            },
        )
        return snapshot
