"""Data models for the leverage rebalancer."""

from rebalancer.models.notifications import Channel, Notification
from rebalancer.models.position import AssetPosition, PositionSnapshot
from rebalancer.models.market import MarketSignal
from rebalancer.models.decision import Action, Decision
from rebalancer.models.transactions import (
    BundleExecutionResult,
    BundleStatus,
    OutputRef,
    StepOutcome,
    StepStatus,
    StepVerb,
    TransactionStep,
)
from rebalancer.models.session import CycleReport, CycleStage, Session, SessionState

__all__ = [
    "Channel",
    "Notification",
    "AssetPosition",
    "PositionSnapshot",
    "MarketSignal",
    "Action",
    "Decision",
    "BundleExecutionResult",
    "BundleStatus",
    "OutputRef",
    "StepOutcome",
    "StepStatus",
    "StepVerb",
    "TransactionStep",
    "CycleReport",
    "CycleStage",
    "Session",
    "SessionState",
]
