"""Platform interfaces for the realtime transport.

The aiortc implementation lives in ``src.realtime.transport.aiortc_transport``
and is imported explicitly by callers that need real media.
"""

from src.realtime.transport.base import (
    ControlChannel,
    MicMeter,
    MicrophoneSource,
    MicrophoneStream,
    MicrophoneTrack,
    PeerConnection,
    RemoteAudioSink,
    SessionDescription,
    SignalingClient,
)

__all__ = [
    "ControlChannel",
    "MicMeter",
    "MicrophoneSource",
    "MicrophoneStream",
    "MicrophoneTrack",
    "PeerConnection",
    "RemoteAudioSink",
    "SessionDescription",
    "SignalingClient",
]
