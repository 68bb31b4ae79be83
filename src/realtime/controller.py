"""UI-facing transport controller.

Tracks connection status and turns the transport's incremental
``assistant_text`` events into whole conversation turns, so a streamed reply
renders as one growing message instead of one message per fragment.
"""

import logging
import re
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from src.realtime.events import EventType, TransportEvent
from src.realtime.lifecycle import RealtimeWebRTCTransport

logger = logging.getLogger(__name__)

# Idle gap after which assistant text starts a new turn
DEFAULT_IDLE_GAP_S = 2.5

_NO_SPACE_BEFORE = re.compile(r"^[\s.,!?:;)\]]")


class ConnectionStatus(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    LIVE = "live"
    DISCONNECTED = "disconnected"
    ERROR = "error"


@dataclass
class ConversationTurn:
    """One message in the conversation thread."""

    id: str
    role: str
    text: str
    ts: float
    kind: str = "text"


def new_turn_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def append_smart(current: str, chunk: str) -> str:
    """Merge a text fragment into the text accumulated so far.

    A fragment that already contains the current text (a snapshot) replaces
    it; otherwise it is appended, with a space only where one is missing.
    """
    if not chunk:
        return current

    if current and len(chunk) >= len(current) and chunk.startswith(current):
        return chunk

    needs_space = (
        bool(current)
        and not current[-1].isspace()
        and not _NO_SPACE_BEFORE.match(chunk)
    )
    return current + (" " if needs_space else "") + chunk


class AssistantTextCoalescer:
    """Groups assistant text fragments into turns."""

    def __init__(
        self,
        idle_gap_s: float = DEFAULT_IDLE_GAP_S,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.idle_gap_s = idle_gap_s
        self._clock = clock
        self.reset()

    def reset(self) -> None:
        self.turn_id: str | None = None
        self.text = ""
        self._last_chunk = ""
        self._last_at: float | None = None

    def push(self, chunk: str) -> tuple[str, str, bool] | None:
        """Add a fragment.

        Returns:
            (turn_id, text, is_new_turn), or None if the fragment was dropped
        """
        if not chunk or chunk == self._last_chunk:
            return None
        self._last_chunk = chunk

        now = self._clock()
        idle = self._last_at is None or now - self._last_at > self.idle_gap_s
        self._last_at = now

        if self.turn_id is None or idle:
            self.turn_id = new_turn_id("a")
            self.text = chunk
            return self.turn_id, self.text, True

        self.text = append_smart(self.text, chunk)
        return self.turn_id, self.text, False


@dataclass
class ConversationThread:
    """Ordered conversation turns."""

    turns: list[ConversationTurn] = field(default_factory=list)

    def add(self, turn: ConversationTurn) -> None:
        self.turns.append(turn)

    def patch(self, turn_id: str, text: str, ts: float) -> None:
        for turn in reversed(self.turns):
            if turn.id == turn_id:
                turn.text = text
                turn.ts = ts
                return
        logger.debug("Patch for unknown turn ignored", extra={"turn_id": turn_id})


class TransportController:
    """Connection status and conversation thread for one transport."""

    def __init__(
        self,
        transport: RealtimeWebRTCTransport,
        idle_gap_s: float = DEFAULT_IDLE_GAP_S,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.transport = transport
        self.status = ConnectionStatus.IDLE
        self.error: str | None = None
        self.thread = ConversationThread()
        self._clock = clock
        self._assistant = AssistantTextCoalescer(idle_gap_s=idle_gap_s, clock=clock)
        transport.add_listener(self.handle_event)

    def _set_status(self, status: ConnectionStatus, error: str | None = None) -> None:
        self.status = status
        self.error = error

    def handle_event(self, event: TransportEvent) -> None:
        if event.type == EventType.CONNECTED:
            self._set_status(ConnectionStatus.LIVE)
            self._assistant.reset()
        elif event.type == EventType.DISCONNECTED:
            self._set_status(ConnectionStatus.DISCONNECTED)
            self._assistant.reset()
        elif event.type == EventType.ASSISTANT_TEXT:
            self._on_assistant_text(event.text)

    def _on_assistant_text(self, chunk: str) -> None:
        merged = self._assistant.push(chunk)
        if merged is None:
            return
        turn_id, text, is_new = merged
        now = self._clock()
        if is_new:
            self.thread.add(ConversationTurn(id=turn_id, role="assistant", text=text, ts=now))
        else:
            self.thread.patch(turn_id, text, now)

    async def connect(self) -> None:
        """Connect the transport, recording failures as ERROR status."""
        if self.status in (ConnectionStatus.CONNECTING, ConnectionStatus.LIVE):
            return
        self._set_status(ConnectionStatus.CONNECTING)
        try:
            await self.transport.connect()
        except Exception as e:
            logger.error("Connect failed", extra={"error": str(e)})
            self._set_status(ConnectionStatus.ERROR, str(e) or type(e).__name__)

    async def disconnect(self) -> None:
        try:
            await self.transport.disconnect()
        finally:
            self._set_status(ConnectionStatus.DISCONNECTED)

    async def send_user_text(self, text: str) -> None:
        """Show the user's message immediately, then send it."""
        text = (text or "").strip()
        if not text:
            return

        self.thread.add(
            ConversationTurn(id=new_turn_id("u"), role="user", text=text, ts=self._clock())
        )
        self._assistant.reset()

        try:
            await self.transport.send_user_text(text)
        except Exception as e:
            logger.error("Send failed", extra={"error": str(e)})
            self._set_status(ConnectionStatus.ERROR, str(e))
