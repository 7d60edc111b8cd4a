from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Set
from asyncio import Queue as AsyncQueue
import logging
import time

logger = logging.getLogger(__name__)


class EventType(Enum):
    SHELL_OUTPUT = "shell-output"
    SHELL_ERROR = "shell-error"
    SHELL_EXIT = "shell-exit"


@dataclass
class ShellEvent:
    type: EventType
    session_id: str
    timestamp: float = field(default_factory=time.time)
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def output(cls, session_id: str, output: str) -> "ShellEvent":
        return cls(EventType.SHELL_OUTPUT, session_id, data={"output": output})

    @classmethod
    def error(cls, session_id: str, error: str) -> "ShellEvent":
        return cls(EventType.SHELL_ERROR, session_id, data={"error": error})

    @classmethod
    def exit(cls, session_id: str, exit_status: Optional[int]) -> "ShellEvent":
        return cls(EventType.SHELL_EXIT, session_id, data={"exit_status": exit_status})

    @property
    def name(self) -> str:
        return self.type.value

    @property
    def payload(self) -> Dict[str, Any]:
        return {"session_id": self.session_id, **self.data}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": self.type.value,
            "payload": self.payload,
            "timestamp": self.timestamp,
        }


class EventBus:
    """In-process fan-out of shell events to subscriber queues.

    Each subscriber gets its own unbounded queue, so events published by
    one pump reach every subscriber in publish order.
    """

    def __init__(self):
        self._subscribers: Set[AsyncQueue[ShellEvent]] = set()

    def subscribe(self) -> AsyncQueue[ShellEvent]:
        q: AsyncQueue[ShellEvent] = AsyncQueue()
        self._subscribers.add(q)
        return q

    def unsubscribe(self, q: AsyncQueue[ShellEvent]) -> None:
        self._subscribers.discard(q)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def publish(self, event: ShellEvent) -> None:
        logger.debug("%s %s", event.name, event.session_id)
        for q in list(self._subscribers):
            try:
                await q.put(event)
            except Exception:
                logger.exception("dropping subscriber after failed delivery")
                self._subscribers.discard(q)
