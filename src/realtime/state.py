"""Connection state types: phase, input mode, health snapshot, pending patch.

Phase State Transitions (driven by the event router and lifecycle manager):
- DISCONNECTED → CONNECTING (on connect)
- CONNECTING → LISTENING (on control channel open)
- LISTENING → THINKING (on speech stopped / committed in auto mode, or tap commit)
- THINKING → SPEAKING (on response.created)
- SPEAKING → LISTENING (on response.done)
- * → LISTENING (on speech started)
- * → DISCONNECTED (on disconnect or transport failure)
"""

import logging
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass, fields
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    """Conversation phase, one authoritative value per connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    LISTENING = "listening"
    THINKING = "thinking"
    SPEAKING = "speaking"


class InputMode(str, Enum):
    """Turn-taking mode.

    - TAP: the client commits the user turn and requests the response
    - AUTO: the server creates a response once it detects user silence
    """

    TAP = "tap"
    AUTO = "auto"


def normalize_input_mode(mode: Any) -> InputMode:
    """Normalize any user-supplied mode value to AUTO or TAP.

    Anything that is not recognizably "auto" maps to TAP.
    """
    if isinstance(mode, InputMode):
        return mode
    text = str(mode or InputMode.TAP.value).strip().lower()
    return InputMode.AUTO if text == InputMode.AUTO.value else InputMode.TAP


def now_ms() -> int:
    """Wall clock in milliseconds, as recorded in the health snapshot."""
    return int(time.time() * 1000)


HealthListener = Callable[[dict[str, Any]], None]


@dataclass
class HealthSnapshot:
    """Diagnostic projection of the connection, mutated only through merge().

    Fields are applied in the order given to merge(), so a patch that sets
    active_response and active_response_id together is always consistent.
    """

    pc: str = "—"
    ice: str = "—"
    dc: str = "—"
    mode: str = InputMode.TAP.value
    phase: str = Phase.DISCONNECTED.value
    last_commit_at: int = 0
    last_reply_at: int = 0
    active_response: bool = False
    active_response_id: str | None = None
    mic_level: float = 0.0
    debug: bool = False

    def __post_init__(self) -> None:
        self._listeners: list[HealthListener] = []
        self._field_names = {f.name for f in fields(self)}

    def subscribe(self, listener: HealthListener) -> None:
        """Register a sink that receives a copy of the snapshot after each merge."""
        self._listeners.append(listener)

    def merge(self, **patch: Any) -> None:
        """Apply a partial update and notify sinks.

        Raises:
            KeyError: If the patch names an unknown field
        """
        unknown = set(patch) - self._field_names
        if unknown:
            raise KeyError(f"Unknown health fields: {sorted(unknown)}")

        for name, value in patch.items():
            if isinstance(value, Enum):
                value = value.value
            setattr(self, name, value)

        snapshot = self.as_dict()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.warning("Health sink failed", extra={"error": str(e)})

    def as_dict(self) -> dict[str, Any]:
        """Return a detached copy of the snapshot."""
        return asdict(self)


class PendingSessionPatch:
    """Single-slot holder for the latest session patch not yet sent.

    Offering a new patch replaces the queued one; only the most recent
    patch is ever flushed.
    """

    def __init__(self) -> None:
        self._patch: dict[str, Any] | None = None

    @property
    def is_pending(self) -> bool:
        return self._patch is not None

    def offer(self, patch: dict[str, Any]) -> None:
        """Store ``patch``, discarding any previously queued patch."""
        self._patch = patch

    def peek(self) -> dict[str, Any] | None:
        return self._patch

    def take(self) -> dict[str, Any] | None:
        """Return the queued patch and clear the slot."""
        patch, self._patch = self._patch, None
        return patch

    def clear(self) -> None:
        self._patch = None
