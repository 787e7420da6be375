"""Decision models for the leverage rebalancer."""
from dataclasses import dataclass
from enum import Enum


class Action(Enum):
    """Actions the decision oracle may recommend."""
    LEVERAGE = "leverage"
    DELEVERAGE = "deleverage"
    HOLD = "hold"


@dataclass(frozen=True)
class Decision:
    """Validated oracle decision for one cycle.

    Amount is denominated in the smallest unit of the asset the
    action spends. A HOLD always carries amount 0.
    """
    action: Action
    amount: int = 0
    text: str | None = None  # Oracle narration, if any

    def __post_init__(self) -> None:
        if self.amount < 0:
            raise ValueError(f"Decision amount must be non-negative, got {self.amount}")
        if (self.amount == 0) != (self.action is Action.HOLD):
            raise ValueError(
                f"Invalid decision: {self.action.value} with amount {self.amount}"
            )

    @classmethod
    def leverage(cls, amount: int, text: str | None = None) -> "Decision":
        return cls(Action.LEVERAGE, amount, text)

    @classmethod
    def deleverage(cls, amount: int, text: str | None = None) -> "Decision":
        return cls(Action.DELEVERAGE, amount, text)

    @classmethod
    def hold(cls, text: str | None = None) -> "Decision":
        return cls(Action.HOLD, 0, text)

    @property
    def is_hold(self) -> bool:
        return self.action is Action.HOLD

    def describe(self) -> str:
        if self.is_hold:
            return "hold"
        return f"{self.action.value} {self.amount}"
