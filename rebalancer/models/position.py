"""Lending position models for the leverage rebalancer."""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any


@dataclass(frozen=True)
class AssetPosition:
    """Per-asset supplied/borrowed balances for an account."""
    symbol: str
    address: str
    decimals: int

    # Amounts in whole asset units
    supplied: Decimal
    stable_debt: Decimal
    variable_debt: Decimal
    wallet_balance: Decimal

    supply_rate: Decimal          # Converted from ray units
    usage_as_collateral: bool

    @property
    def borrowed(self) -> Decimal:
        return self.stable_debt + self.variable_debt

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "address": self.address,
            "decimals": self.decimals,
            "supplied": str(self.supplied),
            "borrowed": str(self.borrowed),
            "stable_debt": str(self.stable_debt),
            "variable_debt": str(self.variable_debt),
            "wallet_balance": str(self.wallet_balance),
            "supply_rate": str(self.supply_rate),
            "usage_as_collateral": self.usage_as_collateral,
        }


@dataclass(frozen=True)
class PositionSnapshot:
    """Point-in-time view of an account's lending position.

    Values denominated in the protocol's base currency (USD for Aave v3).
    Captured once per cycle and discarded after the advisory call.
    """
    account: str
    collateral_value: Decimal
    debt_value: Decimal
    available_borrows_value: Decimal
    loan_to_value: Decimal            # debt / collateral
    max_ltv: Decimal                  # Protocol-configured maximum, as a fraction
    liquidation_threshold: Decimal    # As a fraction
    health_factor: Decimal            # Infinity when there is no debt
    assets: tuple[AssetPosition, ...]
    timestamp: datetime

    @property
    def risk_level(self) -> str:
        """Coarse liquidation risk bucket derived from the health factor."""
        if self.health_factor < Decimal("1.1"):
            return "HIGH"
        if self.health_factor < Decimal("1.5"):
            return "MEDIUM"
        return "LOW"

    def asset(self, symbol: str) -> AssetPosition | None:
        for position in self.assets:
            if position.symbol == symbol:
                return position
        return None

    def to_prompt_dict(self) -> dict[str, Any]:
        """Render for the advisory prompt."""
        return {
            "account": self.account,
            "collateral_value": str(self.collateral_value),
            "debt_value": str(self.debt_value),
            "available_borrows_value": str(self.available_borrows_value),
            "loan_to_value": str(self.loan_to_value),
            "max_ltv": str(self.max_ltv),
            "liquidation_threshold": str(self.liquidation_threshold),
            "health_factor": str(self.health_factor),
            "risk_level": self.risk_level,
            "assets": [a.to_dict() for a in self.assets],
            "captured_at": self.timestamp.isoformat(),
        }
