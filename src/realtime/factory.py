"""Wires the realtime transport to aiortc, aiohttp signaling and the RMS meter."""

from src.realtime.config import RealtimeConfig
from src.realtime.context import ConnectionGuard
from src.realtime.events import EventListener
from src.realtime.lifecycle import RealtimeWebRTCTransport
from src.realtime.meter import RmsMicMeter
from src.realtime.signaling import HttpSignalingClient
from src.realtime.tap_commit import TapCommitPolicy
from src.realtime.transport.aiortc_transport import (
    AiortcMicrophoneSource,
    AiortcPeerConnection,
    RecorderAudioSink,
)


def create_realtime_transport(
    config: RealtimeConfig | None = None,
    on_event: EventListener | None = None,
    tap_policy: TapCommitPolicy | None = None,
    guard: ConnectionGuard | None = None,
) -> tuple[RealtimeWebRTCTransport, HttpSignalingClient]:
    """Build a transport backed by real media.

    Returns:
        The transport and its signaling client; close the client when done
    """
    config = config or RealtimeConfig()
    signaling = HttpSignalingClient(config.signaling)

    transport = RealtimeWebRTCTransport(
        peer_connection_factory=AiortcPeerConnection,
        microphone=AiortcMicrophoneSource(config.microphone),
        signaling=signaling,
        audio_sink_factory=lambda: RecorderAudioSink(config.remote_audio),
        mic_meter=RmsMicMeter(config.meter),
        config=config,
        tap_policy=tap_policy,
        on_event=on_event,
        guard=guard,
    )
    return transport, signaling
