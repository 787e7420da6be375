"""Session and cycle report models."""
import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from rebalancer.models.decision import Decision
from rebalancer.models.market import MarketSignal
from rebalancer.models.position import PositionSnapshot
from rebalancer.models.transactions import BundleExecutionResult


class SessionState(Enum):
    """Lifecycle states of a rebalancing session."""
    CREATED = "created"
    ACTIVE = "active"
    STOPPING = "stopping"
    STOPPED = "stopped"


@dataclass
class Session:
    """A live rebalancing schedule bound to one account."""
    session_id: str
    account: str
    state: SessionState = SessionState.CREATED
    task: asyncio.Task | None = None
    stop_event: asyncio.Event = field(default_factory=asyncio.Event)
    cycle_count: int = 0
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_live(self) -> bool:
        return self.state is not SessionState.STOPPED

    @property
    def stop_requested(self) -> bool:
        return self.stop_event.is_set()


class CycleStage(Enum):
    """Stages of a rebalancing cycle, in order."""
    OBSERVE = "observe"
    ADVISE = "advise"
    BUILD = "build"
    EXECUTE = "execute"
    DONE = "done"


@dataclass
class CycleReport:
    """What one cycle observed, decided and executed."""
    session_id: str
    cycle: int
    stage: CycleStage = CycleStage.OBSERVE
    snapshot: PositionSnapshot | None = None
    signal: MarketSignal | None = None
    decision: Decision | None = None
    result: BundleExecutionResult | None = None
    error: Exception | None = None
    stopped: bool = False

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.stage is CycleStage.DONE
