"""Base abstractions for the platform pieces the transport drives.

The connection lifecycle talks to a peer connection, a control data channel,
a microphone, a remote audio sink, a level meter and a signaling endpoint
only through these interfaces, so the core runs unchanged against aiortc or
against in-memory fakes.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import numpy as np

# Control channel ready states
CHANNEL_CONNECTING = "connecting"
CHANNEL_OPEN = "open"
CHANNEL_CLOSING = "closing"
CHANNEL_CLOSED = "closed"


@dataclass(frozen=True)
class SessionDescription:
    """An SDP offer or answer."""

    sdp: str
    type: str


class ControlChannel(ABC):
    """Ordered, reliable, bidirectional message channel over the peer connection.

    Events: ``open`` (no args), ``close`` (no args), ``message`` (str | bytes).
    """

    @property
    @abstractmethod
    def ready_state(self) -> str:
        """One of connecting, open, closing, closed."""
        pass

    @abstractmethod
    def on(self, event: str, handler: Callable[..., Any]) -> None:
        """Register an event handler."""
        pass

    @abstractmethod
    def send(self, data: str) -> None:
        """Send a text message.

        Raises:
            ConnectionError: If the channel is not open
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """Close the channel."""
        pass


class MicrophoneTrack(ABC):
    """A single captured audio track."""

    @property
    @abstractmethod
    def kind(self) -> str:
        pass

    @property
    @abstractmethod
    def is_live(self) -> bool:
        """Whether the track is still capturing."""
        pass

    @abstractmethod
    def stop(self) -> None:
        """Stop capturing and release the device."""
        pass


class MicrophoneStream(ABC):
    """An acquired microphone stream."""

    @abstractmethod
    def tracks(self) -> list[MicrophoneTrack]:
        pass

    @abstractmethod
    async def read_samples(self) -> np.ndarray | None:
        """Return the most recent captured samples for metering.

        Returns:
            int16 or float samples, or None when capture has ended
        """
        pass


class MicrophoneSource(ABC):
    """Grants access to the local microphone."""

    @abstractmethod
    async def acquire(self) -> MicrophoneStream:
        """Open the microphone.

        Raises:
            MicrophoneUnavailableError: If permission is denied or no device exists
        """
        pass


class PeerConnection(ABC):
    """Media transport session with the remote voice endpoint.

    Events: ``connectionstatechange``, ``iceconnectionstatechange`` (no args),
    ``track`` (the inbound remote track).
    """

    @property
    @abstractmethod
    def connection_state(self) -> str:
        pass

    @property
    @abstractmethod
    def ice_connection_state(self) -> str:
        pass

    @property
    @abstractmethod
    def local_description(self) -> SessionDescription | None:
        """Local description once set, including gathered candidates."""
        pass

    @abstractmethod
    def on(self, event: str, handler: Callable[..., Any]) -> None:
        """Register an event handler."""
        pass

    @abstractmethod
    def add_track(self, track: MicrophoneTrack) -> None:
        pass

    @abstractmethod
    def create_data_channel(self, label: str) -> ControlChannel:
        pass

    @abstractmethod
    async def create_offer(self) -> SessionDescription:
        pass

    @abstractmethod
    async def set_local_description(self, description: SessionDescription) -> None:
        pass

    @abstractmethod
    async def set_remote_description(self, description: SessionDescription) -> None:
        pass

    @abstractmethod
    async def close(self) -> None:
        pass


class RemoteAudioSink(ABC):
    """Receives and plays the assistant's inbound audio track."""

    @abstractmethod
    def prime(self) -> bool:
        """Try to start playback before any track arrives.

        Browsers only allow this inside the user gesture that triggered
        connect(); other targets report whether playback is possible.
        """
        pass

    @abstractmethod
    def attach(self, track: Any) -> None:
        """Route the inbound track to the output and (re)start playback."""
        pass

    @abstractmethod
    def set_muted(self, muted: bool) -> None:
        """Silence or restore output without detaching the track."""
        pass

    @abstractmethod
    async def release(self) -> None:
        """Pause, detach the source and remove the sink."""
        pass


class MicMeter(ABC):
    """Microphone level metering collaborator."""

    @abstractmethod
    def start(self, stream: MicrophoneStream, on_level: Callable[[float], None]) -> None:
        pass

    @abstractmethod
    def stop(self) -> None:
        pass


class SignalingClient(ABC):
    """Exchanges the local offer for the remote answer."""

    @abstractmethod
    async def exchange_offer(self, offer_sdp: str) -> str:
        """Send the offer SDP and return the answer SDP.

        Raises:
            SignalingError: If the exchange fails or times out
        """
        pass
