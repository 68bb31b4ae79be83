"""Shared connection context and the at-most-one-connection guard.

The lifecycle manager owns one ConnectionContext and passes it by reference
to the session controller and the event router. All mutation happens on the
event loop that delivers peer-connection callbacks, channel messages and
timer firings, so no locking is needed.
"""

import logging
from dataclasses import dataclass, field

from src.realtime.errors import ConnectionAlreadyActiveError
from src.realtime.protocol import ClientMessage, encode_message
from src.realtime.state import HealthSnapshot, InputMode, PendingSessionPatch, Phase
from src.realtime.tap_commit import TapCommitState
from src.realtime.transport.base import (
    CHANNEL_OPEN,
    ControlChannel,
    MicrophoneStream,
    PeerConnection,
    RemoteAudioSink,
)

logger = logging.getLogger(__name__)


@dataclass
class ConnectionContext:
    """All mutable state of one realtime connection."""

    peer_connection: PeerConnection | None = None
    control_channel: ControlChannel | None = None
    microphone_stream: MicrophoneStream | None = None
    remote_audio_sink: RemoteAudioSink | None = None

    phase: Phase = Phase.DISCONNECTED
    input_mode: InputMode = InputMode.TAP
    muted_by_interrupt: bool = False
    debug: bool = False

    # Set while disconnect() runs so close callbacks from our own teardown
    # are not reported as transport failures
    tearing_down: bool = False

    pending_patch: PendingSessionPatch = field(default_factory=PendingSessionPatch)
    tap: TapCommitState = field(default_factory=TapCommitState)
    health: HealthSnapshot = field(default_factory=HealthSnapshot)

    @property
    def channel_open(self) -> bool:
        return (
            self.control_channel is not None
            and self.control_channel.ready_state == CHANNEL_OPEN
        )

    def set_phase(self, phase: Phase) -> None:
        """Move to ``phase``; repeated values are ignored."""
        if self.phase == phase:
            return
        old_phase = self.phase
        self.phase = phase
        self.health.merge(phase=phase)

        logger.debug(
            "Phase transition",
            extra={"from_phase": old_phase.value, "to_phase": phase.value},
        )

    def send(self, message: ClientMessage) -> bool:
        """Write a message to the control channel.

        Returns:
            True if the channel accepted the write, False if it is not open
            or the write failed
        """
        channel = self.control_channel
        if channel is None or channel.ready_state != CHANNEL_OPEN:
            return False

        try:
            channel.send(encode_message(message))
        except Exception as e:
            logger.warning(
                "Control channel send failed",
                extra={"type": message.type, "error": str(e)},
            )
            return False
        return True


class ConnectionGuard:
    """Grants the live-connection slot to at most one owner.

    Transports sharing a guard cannot hold simultaneous connections. Tests and
    embedders that want isolated transports pass separate guards.
    """

    def __init__(self) -> None:
        self._owner: object | None = None

    @property
    def owner(self) -> object | None:
        return self._owner

    def claim(self, owner: object) -> None:
        """Take the slot for ``owner``.

        Raises:
            ConnectionAlreadyActiveError: If a different owner holds it
        """
        if self._owner is not None and self._owner is not owner:
            raise ConnectionAlreadyActiveError(
                "Another realtime connection is already active"
            )
        self._owner = owner

    def release(self, owner: object) -> None:
        """Free the slot if ``owner`` holds it."""
        if self._owner is owner:
            self._owner = None


default_guard = ConnectionGuard()
