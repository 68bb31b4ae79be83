"""Session configuration updates and turn-taking mode.

Patches issued before the control channel opens are coalesced into a single
pending slot; the remote session only needs to end up at the latest desired
configuration, not replay the intermediate ones.
"""

import logging
from enum import Enum
from typing import Any

from src.realtime.config import TurnDetectionConfig
from src.realtime.context import ConnectionContext
from src.realtime.protocol import SessionUpdateMessage
from src.realtime.state import InputMode, normalize_input_mode

logger = logging.getLogger(__name__)


class SessionUpdateResult(str, Enum):
    """Outcome of a session update request.

    SENT and SEND_FAILED report the channel write only; remote acceptance
    is observed later through inbound events.
    """

    QUEUED = "queued"
    SENT = "sent"
    SEND_FAILED = "send_failed"


class SessionConfigController:
    """Sends session.update patches over the shared connection context."""

    def __init__(
        self,
        context: ConnectionContext,
        turn_detection: TurnDetectionConfig | None = None,
    ) -> None:
        self.context = context
        self.turn_detection = turn_detection or TurnDetectionConfig()

    def update_session(self, patch: dict[str, Any]) -> SessionUpdateResult:
        """Send ``patch`` now, or queue it if the channel is not open.

        A queued patch replaces any patch queued before it.
        """
        ctx = self.context
        if not ctx.channel_open:
            ctx.pending_patch.offer(patch)
            channel = ctx.control_channel
            ctx.health.merge(dc=channel.ready_state if channel is not None else "—")
            logger.debug("Queuing session.update (control channel not open)")
            return SessionUpdateResult.QUEUED

        message = SessionUpdateMessage.wrap(patch)
        if ctx.debug:
            logger.debug("Sending session.update", extra={"session": message.session})
        ctx.health.merge(mode=ctx.input_mode)

        if ctx.send(message):
            return SessionUpdateResult.SENT
        return SessionUpdateResult.SEND_FAILED

    def flush_pending_session_update(self) -> SessionUpdateResult | None:
        """Send the queued patch, if any.

        Returns:
            None when nothing was queued, otherwise the update result
        """
        patch = self.context.pending_patch.take()
        if patch is None:
            return None
        return self.update_session(patch)

    def build_turn_detection(self, mode: InputMode) -> dict[str, Any]:
        """Server VAD settings for ``mode``.

        Tap and auto differ only in whether the server creates a response
        by itself once user silence is detected.
        """
        turn_detection = self.turn_detection.model_dump()
        turn_detection["create_response"] = mode == InputMode.AUTO
        return turn_detection

    def set_turn_taking(self, mode: Any) -> SessionUpdateResult:
        """Switch between auto and tap turn-taking.

        Any value other than "auto" selects tap.
        """
        next_mode = normalize_input_mode(mode)
        self.context.input_mode = next_mode
        self.context.health.merge(mode=next_mode)

        logger.info(
            "Switching input mode",
            extra={
                "mode": next_mode.value,
                "create_response": next_mode == InputMode.AUTO,
            },
        )

        return self.update_session(
            {"audio": {"input": {"turn_detection": self.build_turn_detection(next_mode)}}}
        )
