import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List

from loguru import logger
from pydantic import BaseModel, Field


class FormbotEvent(BaseModel):
    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    event_type: str
    source: str
    payload: Dict[str, Any]


class EventBus:
    """A lightweight, synchronous event bus for run observability."""

    def __init__(self):
        self._subscribers: List[Callable[[FormbotEvent], None]] = []

    def subscribe(self, callback: Callable[[FormbotEvent], None]) -> None:
        """Register a callback to be executed when an event is emitted."""
        self._subscribers.append(callback)

    def emit(self, event_type: str, source: str, payload: Dict[str, Any] | None = None) -> FormbotEvent:
        """Construct and broadcast a FormbotEvent to all subscribers."""
        event = FormbotEvent(
            event_type=event_type,
            source=source,
            payload=payload or {},
        )

        for subscriber in self._subscribers:
            try:
                subscriber(event)
            except Exception as e:
                # a failing subscriber (like a bad file write) must not crash the run
                logger.warning(f"[EVENTS] Subscriber failed on {event_type}: {e}")

        return event
