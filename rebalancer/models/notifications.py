"""Notification model for the leverage rebalancer."""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class Channel(Enum):
    """Notification channels."""
    SYSTEM = "system"   # Orchestrator narration
    ORACLE = "oracle"   # Text originating from the decision oracle


@dataclass
class Notification:
    """Human-readable progress message for a session."""
    session_id: str
    channel: Channel
    message: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "session_id": self.session_id,
            "channel": self.channel.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }
