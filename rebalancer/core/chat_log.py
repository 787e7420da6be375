"""File-backed notification sink, one chat per session."""
import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from rebalancer.models import Channel, Notification

logger = logging.getLogger(__name__)


@runtime_checkable
class ChatSink(Protocol):
    """Protocol for notification persistence backends."""

    def create_chat(self, session_id: str) -> None:
        """Create the chat for a new session."""
        ...

    def append(self, notification: Notification) -> None:
        """Append a notification to its session's chat."""
        ...


class ChatLogStore:
    """Stores session chats as JSON Lines files.

    Layout:
        <base>/chats/<session_id>/chat.json       chat metadata
        <base>/chats/<session_id>/messages.jsonl  one message per line
    """

    def __init__(self, base_path: str | Path):
        self.base_path = Path(base_path)
        self._lock = threading.Lock()
        (self.base_path / "chats").mkdir(parents=True, exist_ok=True)

    def _chat_dir(self, session_id: str) -> Path:
        return self.base_path / "chats" / session_id

    def create_chat(self, session_id: str) -> None:
        """Write chat metadata for a session."""
        chat_dir = self._chat_dir(session_id)
        chat_dir.mkdir(parents=True, exist_ok=True)

        meta = {
            "chat_id": session_id,
            "time": datetime.now(timezone.utc).isoformat(),
        }
        with open(chat_dir / "chat.json", "w") as f:
            json.dump(meta, f, indent=2)

        logger.debug(f"Created chat {session_id}")

    def append(self, notification: Notification) -> None:
        """Append a notification to its session's message log."""
        chat_dir = self._chat_dir(notification.session_id)
        chat_dir.mkdir(parents=True, exist_ok=True)

        entry = {
            "chat_id": notification.session_id,
            "agent": notification.channel.value,
            "time": notification.timestamp.isoformat(),
            "userInput": False,
            "ai": notification.channel is Channel.ORACLE,
            "message": notification.message,
        }

        with self._lock:
            with open(chat_dir / "messages.jsonl", "a") as f:
                f.write(json.dumps(entry) + "\n")

    def read_messages(self, session_id: str) -> list[dict[str, Any]]:
        """Read all messages of a chat in append order."""
        file_path = self._chat_dir(session_id) / "messages.jsonl"
        if not file_path.exists():
            return []

        messages = []
        with open(file_path) as f:
            for line in f:
                line = line.strip()
                if line:
                    messages.append(json.loads(line))
        return messages

    def list_chats(self) -> list[str]:
        """List session ids that have a chat."""
        chats_dir = self.base_path / "chats"
        return sorted(p.name for p in chats_dir.iterdir() if p.is_dir())
