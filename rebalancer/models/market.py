"""Market signal model for the leverage rebalancer."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class MarketSignal:
    """Volatility prediction and market state from the prediction service."""
    volatility: float
    classification: str          # e.g. "lowvol", "highvol"
    description: str
    timestamp: datetime
    raw: dict[str, Any] = field(default_factory=dict, compare=False)

    def to_prompt_dict(self) -> dict[str, Any]:
        """Render for the advisory prompt."""
        return {
            "volatility_prediction": self.volatility,
            "market_status": self.classification,
            "market_status_description": self.description,
            "predicted_at_utc": self.timestamp.isoformat(),
        }
