"""High-level events emitted to the UI layer."""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Public events; the entire surface the UI may depend on."""

    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ASSISTANT_TEXT = "assistant_text"
    STOP_SPEAKING = "stop_speaking"


class ConnectedStage(str, Enum):
    """Which readiness milestone a ``connected`` event reports."""

    SIGNALING = "signaling"
    CHANNEL = "channel"
    PEER = "peer"


@dataclass(frozen=True)
class TransportEvent:
    """An emitted event and its payload."""

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def text(self) -> str:
        """Assistant text payload (empty for other event types)."""
        return str(self.data.get("text", ""))


EventListener = Callable[[TransportEvent], None]


class EventEmitter:
    """Delivers transport events to listeners, isolating listener failures."""

    def __init__(self, listener: EventListener | None = None) -> None:
        self._listeners: list[EventListener] = []
        if listener is not None:
            self._listeners.append(listener)

    def add_listener(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: EventListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def emit(self, event_type: EventType, **data: Any) -> None:
        event = TransportEvent(type=event_type, data=data)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.warning(
                    "Event listener failed",
                    extra={"event": event_type.value, "error": str(e)},
                )
