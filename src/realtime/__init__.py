"""Realtime voice transport.

Peer-connection session with a remote conversational endpoint: connection
lifecycle, coalesced session configuration and the turn-taking state machine.
"""

from src.realtime.config import RealtimeConfig
from src.realtime.context import ConnectionContext, ConnectionGuard
from src.realtime.errors import (
    ConnectCancelledError,
    ConnectionAlreadyActiveError,
    MicrophoneUnavailableError,
    RealtimeTransportError,
    SignalingError,
    TransportNotConnectedError,
    UnsupportedOperationError,
)
from src.realtime.events import EventType, TransportEvent
from src.realtime.lifecycle import RealtimeWebRTCTransport
from src.realtime.session_controls import SessionUpdateResult
from src.realtime.state import InputMode, Phase
from src.realtime.tap_commit import TapCommitPolicy

__all__ = [
    "ConnectCancelledError",
    "ConnectionAlreadyActiveError",
    "ConnectionContext",
    "ConnectionGuard",
    "EventType",
    "InputMode",
    "MicrophoneUnavailableError",
    "Phase",
    "RealtimeConfig",
    "RealtimeTransportError",
    "RealtimeWebRTCTransport",
    "SessionUpdateResult",
    "SignalingError",
    "TapCommitPolicy",
    "TransportEvent",
    "TransportNotConnectedError",
    "UnsupportedOperationError",
]
