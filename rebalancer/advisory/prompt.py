"""Prompt construction for the decision oracle."""
from typing import Any

from rebalancer.models import Action, MarketSignal, PositionSnapshot

QUESTION = "Should I increase or decrease my leverage or maintain my current position?"


def build_prompt(
    snapshot: PositionSnapshot,
    signal: MarketSignal,
    suggested_amounts: dict[str, int],
) -> dict[str, Any]:
    """Build the structured prompt sent to the oracle.

    Args:
        snapshot: Current lending position
        signal: Current market signal
        suggested_amounts: Amount offered with each non-hold action

    Returns:
        JSON-serializable prompt
    """
    wallet_balances = {
        asset.symbol.lower(): {f"{asset.symbol}_Amount": f"{asset.wallet_balance} {asset.symbol}"}
        for asset in snapshot.assets
    }

    available_actions = []
    for action in Action:
        amount = 0 if action is Action.HOLD else suggested_amounts.get(action.value, 0)
        available_actions.append({"action": action.value, "amount": str(amount)})

    return {
        "question": QUESTION,
        "currentPosition": {
            "data": snapshot.to_prompt_dict(),
            "EOAAvailableTokenBalances": wallet_balances,
        },
        "marketVolatilityPrediction": {
            "volatility_and_state": signal.to_prompt_dict(),
        },
        "available_actions": available_actions,
    }
