"""Transaction bundle models for the leverage rebalancer."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from rebalancer.core.errors import ExecutionError


class StepVerb(Enum):
    """On-chain action performed by a bundle step."""
    APPROVE = "approve"
    ROUTE = "route"
    DEPOSIT = "deposit"
    BORROW = "borrow"
    REPAY = "repay"
    REDEEM = "redeem"


@dataclass(frozen=True)
class OutputRef:
    """Amount taken from the resolved output of an earlier step."""
    step: int


@dataclass(frozen=True)
class TransactionStep:
    """One on-chain operation within a bundle."""
    protocol: str                 # "erc20", "enso", "aave-v3"
    verb: StepVerb
    input_asset: str
    amount: int | OutputRef
    target: str                   # Contract the transaction is sent to
    output_asset: str | None = None
    spender: str | None = None    # Approve only
    slippage_bps: int | None = None  # Route only

    @property
    def references(self) -> int | None:
        if isinstance(self.amount, OutputRef):
            return self.amount.step
        return None

    def describe(self) -> str:
        amount = (
            f"output of step {self.amount.step}"
            if isinstance(self.amount, OutputRef)
            else str(self.amount)
        )
        if self.verb is StepVerb.ROUTE:
            return f"{self.protocol} route {self.input_asset} -> {self.output_asset} ({amount})"
        return f"{self.protocol} {self.verb.value} {self.input_asset} ({amount})"


class StepStatus(Enum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class StepOutcome:
    """Execution outcome of a single step."""
    step: TransactionStep
    status: StepStatus = StepStatus.PENDING
    tx_hash: str | None = None
    resolved_amount: int | None = None   # Amount actually submitted
    output_amount: int | None = None     # Resolved output, read by later steps
    error: ExecutionError | None = None


class BundleStatus(Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    PARTIALLY_FAILED = "partially_failed"
    ABORTED = "aborted"


@dataclass
class BundleExecutionResult:
    """Per-step outcomes and overall status of one bundle."""
    outcomes: list[StepOutcome] = field(default_factory=list)
    status: BundleStatus = BundleStatus.RUNNING

    @property
    def confirmed(self) -> list[StepOutcome]:
        return [o for o in self.outcomes if o.status is StepStatus.CONFIRMED]

    @property
    def failed(self) -> StepOutcome | None:
        for outcome in self.outcomes:
            if outcome.status is StepStatus.FAILED:
                return outcome
        return None

    def summary(self) -> str:
        """Human-readable bundle outcome."""
        if not self.outcomes:
            return f"Bundle {self.status.value}: no transactions required"

        lines = [
            f"Bundle {self.status.value}: "
            f"{len(self.confirmed)}/{len(self.outcomes)} steps confirmed"
        ]
        for index, outcome in enumerate(self.outcomes):
            line = f"  [{index}] {outcome.step.describe()}: {outcome.status.value}"
            if outcome.tx_hash:
                line += f" tx={outcome.tx_hash}"
            if outcome.error is not None:
                line += f" ({outcome.error})"
            lines.append(line)
        return "\n".join(lines)
