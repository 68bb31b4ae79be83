"""In-memory fakes for the realtime transport platform interfaces.

Every collaborator the transport touches (peer connection, data channel,
microphone, audio sink, meter, signaling) has a fake here whose events are
fired explicitly by the test, so connection flows run deterministically
without network or audio devices.
"""

import asyncio
import json
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from src.realtime.config import RealtimeConfig
from src.realtime.context import ConnectionContext, ConnectionGuard
from src.realtime.events import TransportEvent
from src.realtime.lifecycle import RealtimeWebRTCTransport
from src.realtime.state import InputMode, Phase
from src.realtime.tap_commit import TapCommitPolicy
from src.realtime.transport.base import (
    CHANNEL_CLOSED,
    CHANNEL_CONNECTING,
    CHANNEL_OPEN,
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

# Short enough to keep tests fast, long enough to outlive a few loop turns
TEST_TAP_TIMEOUT_S = 0.05


class FakeControlChannel(ControlChannel):
    """Data channel whose open/close/message events are fired by the test."""

    def __init__(self, label: str) -> None:
        self.label = label
        self._state = CHANNEL_CONNECTING
        self._handlers: dict[str, list[Callable[..., Any]]] = defaultdict(list)
        self.sent: list[str] = []
        self.fail_sends = False
        self.close_calls = 0

    @property
    def ready_state(self) -> str:
        return self._state

    def on(self, event: str, handler: Callable[..., Any]) -> None:
        self._handlers[event].append(handler)

    def _fire(self, event: str, *args: Any) -> None:
        for handler in list(self._handlers[event]):
            handler(*args)

    def send(self, data: str) -> None:
        if self._state != CHANNEL_OPEN:
            raise ConnectionError(f"Data channel is {self._state}")
        if self.fail_sends:
            raise ConnectionError("send failed")
        self.sent.append(data)

    def close(self) -> None:
        self.close_calls += 1
        if self._state == CHANNEL_CLOSED:
            return
        self._state = CHANNEL_CLOSED
        self._fire("close")

    # Test controls

    def open(self) -> None:
        self._state = CHANNEL_OPEN
        self._fire("open")

    def remote_close(self) -> None:
        self._state = CHANNEL_CLOSED
        self._fire("close")

    def deliver(self, message: dict[str, Any] | str | bytes) -> None:
        data = message if isinstance(message, (str, bytes)) else json.dumps(message)
        self._fire("message", data)

    @property
    def messages(self) -> list[dict[str, Any]]:
        return [json.loads(s) for s in self.sent]

    @property
    def sent_types(self) -> list[str]:
        return [m["type"] for m in self.messages]


class FakeMicrophoneTrack(MicrophoneTrack):
    def __init__(self, fail_stop: bool = False) -> None:
        self._live = True
        self.fail_stop = fail_stop
        self.stop_calls = 0

    @property
    def kind(self) -> str:
        return "audio"

    @property
    def is_live(self) -> bool:
        return self._live

    def stop(self) -> None:
        self.stop_calls += 1
        if self.fail_stop:
            raise RuntimeError("track stop failed")
        self._live = False


class FakeMicrophoneStream(MicrophoneStream):
    def __init__(self, tracks: list[FakeMicrophoneTrack], samples: list[np.ndarray] | None = None) -> None:
        self._tracks = tracks
        self._samples = list(samples or [])

    def tracks(self) -> list[MicrophoneTrack]:
        return list(self._tracks)

    async def read_samples(self) -> np.ndarray | None:
        if not self._samples:
            return None
        return self._samples.pop(0)


class FakeMicrophoneSource(MicrophoneSource):
    def __init__(self) -> None:
        self.acquire_calls = 0
        self.error: Exception | None = None
        self.gate: asyncio.Event | None = None
        self.track_count = 1
        self.streams: list[FakeMicrophoneStream] = []

    async def acquire(self) -> MicrophoneStream:
        self.acquire_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        stream = FakeMicrophoneStream([FakeMicrophoneTrack() for _ in range(self.track_count)])
        self.streams.append(stream)
        return stream

    @property
    def all_tracks(self) -> list[FakeMicrophoneTrack]:
        return [t for s in self.streams for t in s._tracks]


class FakePeerConnection(PeerConnection):
    def __init__(self) -> None:
        self._connection_state = "new"
        self._ice_state = "new"
        self._handlers: dict[str, list[Callable[..., Any]]] = defaultdict(list)
        self.tracks: list[MicrophoneTrack] = []
        self.channels: list[FakeControlChannel] = []
        self.local: SessionDescription | None = None
        self.remote: SessionDescription | None = None
        self.offer_error: Exception | None = None
        self.close_calls = 0

    @property
    def connection_state(self) -> str:
        return self._connection_state

    @property
    def ice_connection_state(self) -> str:
        return self._ice_state

    @property
    def local_description(self) -> SessionDescription | None:
        return self.local

    def on(self, event: str, handler: Callable[..., Any]) -> None:
        self._handlers[event].append(handler)

    def _fire(self, event: str, *args: Any) -> None:
        for handler in list(self._handlers[event]):
            handler(*args)

    def add_track(self, track: MicrophoneTrack) -> None:
        self.tracks.append(track)

    def create_data_channel(self, label: str) -> ControlChannel:
        channel = FakeControlChannel(label)
        self.channels.append(channel)
        return channel

    async def create_offer(self) -> SessionDescription:
        if self.offer_error is not None:
            raise self.offer_error
        return SessionDescription(sdp="v=0 offer", type="offer")

    async def set_local_description(self, description: SessionDescription) -> None:
        self.local = SessionDescription(sdp=description.sdp + " +candidates", type=description.type)

    async def set_remote_description(self, description: SessionDescription) -> None:
        self.remote = description

    async def close(self) -> None:
        self.close_calls += 1
        self.set_state("closed")

    # Test controls

    def set_state(self, state: str) -> None:
        self._connection_state = state
        self._fire("connectionstatechange")

    def set_ice_state(self, state: str) -> None:
        self._ice_state = state
        self._fire("iceconnectionstatechange")

    def deliver_track(self, track: Any) -> None:
        self._fire("track", track)

    @property
    def channel(self) -> FakeControlChannel:
        return self.channels[-1]


class FakeAudioSink(RemoteAudioSink):
    def __init__(self) -> None:
        self.prime_calls = 0
        self.attached: list[Any] = []
        self.muted = False
        self.released = False

    def prime(self) -> bool:
        self.prime_calls += 1
        return True

    def attach(self, track: Any) -> None:
        self.attached.append(track)

    def set_muted(self, muted: bool) -> None:
        self.muted = muted

    async def release(self) -> None:
        self.released = True


class FakeMicMeter(MicMeter):
    def __init__(self) -> None:
        self.start_calls = 0
        self.stop_calls = 0
        self.on_level: Callable[[float], None] | None = None

    def start(self, stream: MicrophoneStream, on_level: Callable[[float], None]) -> None:
        self.start_calls += 1
        self.on_level = on_level

    def stop(self) -> None:
        self.stop_calls += 1


class FakeSignaling(SignalingClient):
    def __init__(self) -> None:
        self.offers: list[str] = []
        self.answer = "v=0 answer"
        self.error: Exception | None = None
        self.gate: asyncio.Event | None = None

    async def exchange_offer(self, offer_sdp: str) -> str:
        self.offers.append(offer_sdp)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.answer


@dataclass
class TransportRig:
    """A transport wired to fakes, plus everything it emitted."""

    transport: RealtimeWebRTCTransport
    microphone: FakeMicrophoneSource
    signaling: FakeSignaling
    meter: FakeMicMeter
    peer_connections: list[FakePeerConnection]
    sinks: list[FakeAudioSink]
    events: list[TransportEvent] = field(default_factory=list)

    @property
    def pc(self) -> FakePeerConnection:
        return self.peer_connections[-1]

    @property
    def channel(self) -> FakeControlChannel:
        return self.pc.channel

    @property
    def sink(self) -> FakeAudioSink:
        return self.sinks[-1]

    def event_types(self) -> list[str]:
        return [e.type.value for e in self.events]

    def count(self, event_type: str) -> int:
        return self.event_types().count(event_type)

    async def connect_and_open(self) -> None:
        await self.transport.connect()
        self.channel.open()
        self.channel.sent.clear()


def build_rig(
    config: RealtimeConfig | None = None,
    tap_policy: TapCommitPolicy | None = None,
    guard: ConnectionGuard | None = None,
) -> TransportRig:
    """Build a transport wired to fresh fakes that records its events."""
    microphone = FakeMicrophoneSource()
    signaling = FakeSignaling()
    meter = FakeMicMeter()
    peer_connections: list[FakePeerConnection] = []
    sinks: list[FakeAudioSink] = []

    def pc_factory() -> FakePeerConnection:
        pc = FakePeerConnection()
        peer_connections.append(pc)
        return pc

    def sink_factory() -> FakeAudioSink:
        sink = FakeAudioSink()
        sinks.append(sink)
        return sink

    transport = RealtimeWebRTCTransport(
        peer_connection_factory=pc_factory,
        microphone=microphone,
        signaling=signaling,
        audio_sink_factory=sink_factory,
        mic_meter=meter,
        config=config,
        tap_policy=tap_policy,
        guard=guard or ConnectionGuard(),
    )
    rig = TransportRig(
        transport=transport,
        microphone=microphone,
        signaling=signaling,
        meter=meter,
        peer_connections=peer_connections,
        sinks=sinks,
    )
    transport.add_listener(rig.events.append)
    return rig


def open_context(mode: InputMode = InputMode.TAP) -> tuple[ConnectionContext, FakeControlChannel]:
    """A connection context whose control channel is already open."""
    channel = FakeControlChannel("oai-events")
    channel.open()
    context = ConnectionContext(control_channel=channel, input_mode=mode)
    context.set_phase(Phase.LISTENING)
    return context, channel
