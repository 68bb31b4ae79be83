"""Inbound control-channel event routing and the phase state machine.

Messages are handled one at a time, in channel order, synchronously. Each
message goes through two independent passes: the phase/turn-taking pass and
the assistant text pass.

Phase table (events not listed leave the phase unchanged):
- speech_started → LISTENING
- speech_stopped → THINKING (auto mode)
- committed → THINKING (auto mode)
- committed while a tap commit is awaited → response.create, THINKING
- response.created → SPEAKING
- response.done → LISTENING
"""

import logging
from typing import Any

from src.realtime import protocol
from src.realtime.context import ConnectionContext
from src.realtime.events import EventEmitter, EventType
from src.realtime.protocol import InputAudioBufferCommitMessage, ResponseCreateMessage
from src.realtime.state import InputMode, Phase, now_ms
from src.realtime.tap_commit import TapCommitPolicy, TapCommitTimer

logger = logging.getLogger(__name__)


class EventRouter:
    """Advances phase and drives the tap commit flow from server events."""

    def __init__(
        self,
        context: ConnectionContext,
        emitter: EventEmitter,
        tap_policy: TapCommitPolicy | None = None,
    ) -> None:
        self.context = context
        self.emitter = emitter
        self.tap_policy = tap_policy or TapCommitPolicy()
        self.tap_timer = TapCommitTimer(context.tap, self.tap_policy.timeout_s)

    def handle_message(self, raw: str | bytes) -> None:
        """Process one inbound control-channel message.

        Malformed messages are dropped without a phase change.
        """
        event = protocol.parse_server_event(raw)
        if event is None:
            logger.debug("Dropping malformed control message")
            return

        if protocol.is_benign_error(event):
            return

        event_type = str(event.get("type") or "(no type)")
        self._trace(event_type, event)

        self._advance_phase(event_type, event)

        text = protocol.extract_assistant_text(event)
        if text:
            self.emitter.emit(EventType.ASSISTANT_TEXT, text=text)

    def _trace(self, event_type: str, event: dict[str, Any]) -> None:
        if event_type == protocol.ERROR:
            error = event.get("error") if isinstance(event.get("error"), dict) else {}
            logger.warning(
                "Realtime error event",
                extra={"code": error.get("code"), "error_message": error.get("message")},
            )
            return

        if self.context.debug and any(
            marker in event_type for marker in protocol.TRACED_EVENT_MARKERS
        ):
            logger.debug("Realtime event", extra={"type": event_type, "event": event})

    def _advance_phase(self, event_type: str, event: dict[str, Any]) -> None:
        ctx = self.context
        auto = ctx.input_mode == InputMode.AUTO

        if event_type == protocol.SPEECH_STARTED:
            ctx.set_phase(Phase.LISTENING)

        elif event_type == protocol.SPEECH_STOPPED:
            # Tap mode keeps listening until the user taps
            if auto:
                ctx.set_phase(Phase.THINKING)

        elif event_type == protocol.BUFFER_COMMITTED:
            ctx.health.merge(last_commit_at=now_ms())
            if auto:
                ctx.set_phase(Phase.THINKING)
            if not auto and self.tap_timer.resolve():
                logger.debug("Commit acknowledged; requesting response (tap)")
                self.request_response()
                ctx.set_phase(Phase.THINKING)

        elif event_type == protocol.RESPONSE_CREATED:
            ctx.health.merge(
                active_response=True,
                active_response_id=protocol.response_id(event),
            )
            ctx.set_phase(Phase.SPEAKING)

        elif event_type == protocol.RESPONSE_DONE:
            ctx.health.merge(active_response=False, active_response_id=None)
            ctx.set_phase(Phase.LISTENING)

    def request_reply(self) -> bool:
        """End the user's turn in tap mode.

        Arms the commit expectation and its timeout before sending the
        commit, so an unacknowledged commit still recovers through the
        timeout policy.

        Returns:
            True if a commit was sent
        """
        ctx = self.context
        if ctx.input_mode != InputMode.TAP:
            logger.warning("request_reply() ignored (not in tap mode)")
            return False

        if self.tap_timer.awaiting:
            logger.debug("request_reply() already awaiting commit; ignoring extra tap")
            return False

        previous_phase = ctx.phase
        self.tap_timer.arm(self._on_commit_timeout)
        ctx.set_phase(Phase.THINKING)

        if not ctx.send(InputAudioBufferCommitMessage()):
            self.tap_timer.cancel()
            ctx.set_phase(previous_phase)
            logger.warning("Control channel not ready; could not commit audio buffer")
            return False

        return True

    def request_response(self) -> bool:
        """Send response.create and record when the reply was requested."""
        ok = self.context.send(ResponseCreateMessage())
        if ok:
            self.context.health.merge(last_reply_at=now_ms())
        return ok

    def abandon_turn(self) -> None:
        """Return to listening without asking for a response."""
        self.context.set_phase(Phase.LISTENING)

    def cancel_pending(self) -> None:
        """Drop any outstanding commit expectation and its timer."""
        self.tap_timer.cancel()

    def _on_commit_timeout(self) -> None:
        self.tap_policy.on_expiry(self)
