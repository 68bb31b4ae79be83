"""Exception types raised by the realtime transport.

Only acquisition and signaling failures propagate out of ``connect()``.
Everything else is absorbed and expressed through phase changes and events.
"""


class RealtimeTransportError(Exception):
    """Base class for realtime transport errors."""


class MicrophoneUnavailableError(RealtimeTransportError):
    """Microphone permission was denied or no capture device is available."""


class SignalingError(RealtimeTransportError):
    """The SDP offer/answer exchange failed or timed out."""

    def __init__(self, message: str, status: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.body = body


class ConnectionAlreadyActiveError(RealtimeTransportError):
    """Another transport already owns the live connection."""


class ConnectCancelledError(RealtimeTransportError):
    """disconnect() ran while connect() was suspended."""


class TransportNotConnectedError(RealtimeTransportError):
    """The control channel is not open, so the message could not be sent."""


class UnsupportedOperationError(RealtimeTransportError):
    """The operation is not supported by this transport."""
