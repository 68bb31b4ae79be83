"""aiortc implementation of the transport platform interfaces.

Provides the peer connection, control data channel, microphone capture and
remote audio sink used outside the browser. Microphone capture goes through
FFmpeg (via PyAV) and is fanned out with a MediaRelay so the level meter can
read frames without competing with the RTP sender.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

import av
import numpy as np
from aiortc import MediaStreamTrack, RTCPeerConnection, RTCSessionDescription
from aiortc.contrib.media import MediaBlackhole, MediaPlayer, MediaRecorder, MediaRelay
from aiortc.mediastreams import MediaStreamError

from src.realtime.config import MicrophoneConfig, RemoteAudioConfig
from src.realtime.errors import MicrophoneUnavailableError
from src.realtime.transport.base import (
    ControlChannel,
    MicrophoneSource,
    MicrophoneStream,
    MicrophoneTrack,
    PeerConnection,
    RemoteAudioSink,
    SessionDescription,
)

logger = logging.getLogger(__name__)


class AiortcControlChannel(ControlChannel):
    """RTCDataChannel adapter."""

    def __init__(self, channel: Any) -> None:
        self._channel = channel

    @property
    def ready_state(self) -> str:
        return str(self._channel.readyState)

    def on(self, event: str, handler: Callable[..., Any]) -> None:
        self._channel.on(event, handler)

    def send(self, data: str) -> None:
        if self._channel.readyState != "open":
            raise ConnectionError(f"Data channel is {self._channel.readyState}")
        self._channel.send(data)

    def close(self) -> None:
        self._channel.close()


class AiortcMicrophoneTrack(MicrophoneTrack):
    """Relayed microphone track handed to the peer connection.

    Stopping it also stops the capture track it was relayed from.
    """

    def __init__(
        self,
        track: MediaStreamTrack,
        upstream: list[MediaStreamTrack] | None = None,
    ) -> None:
        self.track = track
        self._upstream = upstream or []

    @property
    def kind(self) -> str:
        return str(self.track.kind)

    @property
    def is_live(self) -> bool:
        return self.track.readyState == "live"

    def stop(self) -> None:
        self.track.stop()
        for upstream in self._upstream:
            upstream.stop()


class AiortcMicrophoneStream(MicrophoneStream):
    """Microphone capture with a separate unbuffered tap for metering."""

    def __init__(self, player: MediaPlayer) -> None:
        if player.audio is None:
            if player.video is not None:
                player.video.stop()
            raise MicrophoneUnavailableError("Capture device has no audio track")

        self._player = player
        self._relay = MediaRelay()
        self._meter_track = self._relay.subscribe(player.audio, buffered=False)
        self._send_track = AiortcMicrophoneTrack(
            self._relay.subscribe(player.audio),
            upstream=[self._meter_track, player.audio],
        )

    def tracks(self) -> list[MicrophoneTrack]:
        return [self._send_track]

    async def read_samples(self) -> np.ndarray | None:
        if self._meter_track.readyState != "live":
            return None
        try:
            frame = await self._meter_track.recv()
        except MediaStreamError:
            return None
        return frame.to_ndarray()


class AiortcMicrophoneSource(MicrophoneSource):
    """Opens the local capture device through FFmpeg."""

    def __init__(self, config: MicrophoneConfig | None = None) -> None:
        self.config = config or MicrophoneConfig()

    async def acquire(self) -> MicrophoneStream:
        loop = asyncio.get_running_loop()
        try:
            player = await loop.run_in_executor(
                None,
                lambda: MediaPlayer(
                    self.config.device,
                    format=self.config.format,
                    options=self.config.options or None,
                ),
            )
        except (av.FFmpegError, OSError) as e:
            raise MicrophoneUnavailableError(
                f"Cannot open microphone '{self.config.device}': {e}"
            ) from e

        logger.info(
            "Microphone acquired",
            extra={"device": self.config.device, "format": self.config.format},
        )
        return AiortcMicrophoneStream(player)


class AiortcPeerConnection(PeerConnection):
    """RTCPeerConnection adapter."""

    def __init__(self, pc: RTCPeerConnection | None = None) -> None:
        self._pc = pc or RTCPeerConnection()

    @property
    def connection_state(self) -> str:
        return str(self._pc.connectionState)

    @property
    def ice_connection_state(self) -> str:
        return str(self._pc.iceConnectionState)

    @property
    def local_description(self) -> SessionDescription | None:
        desc = self._pc.localDescription
        if desc is None:
            return None
        return SessionDescription(sdp=desc.sdp, type=desc.type)

    def on(self, event: str, handler: Callable[..., Any]) -> None:
        self._pc.on(event, handler)

    def add_track(self, track: MicrophoneTrack) -> None:
        if not isinstance(track, AiortcMicrophoneTrack):
            raise TypeError(f"Unsupported track type: {type(track).__name__}")
        self._pc.addTrack(track.track)

    def create_data_channel(self, label: str) -> ControlChannel:
        return AiortcControlChannel(self._pc.createDataChannel(label, ordered=True))

    async def create_offer(self) -> SessionDescription:
        offer = await self._pc.createOffer()
        return SessionDescription(sdp=offer.sdp, type=offer.type)

    async def set_local_description(self, description: SessionDescription) -> None:
        # aiortc gathers candidates here; localDescription then carries them
        await self._pc.setLocalDescription(
            RTCSessionDescription(sdp=description.sdp, type=description.type)
        )

    async def set_remote_description(self, description: SessionDescription) -> None:
        await self._pc.setRemoteDescription(
            RTCSessionDescription(sdp=description.sdp, type=description.type)
        )

    async def close(self) -> None:
        await self._pc.close()


class GatedAudioTrack(MediaStreamTrack):
    """Passes remote audio through, replacing it with silence while muted."""

    kind = "audio"

    def __init__(self, source: MediaStreamTrack) -> None:
        super().__init__()
        self._source = source
        self.muted = False

    async def recv(self) -> av.AudioFrame:
        frame = await self._source.recv()
        if not self.muted:
            return frame

        silent = av.AudioFrame(
            format=frame.format.name,
            layout=frame.layout.name,
            samples=frame.samples,
        )
        for plane in silent.planes:
            plane.update(bytes(plane.buffer_size))
        silent.pts = frame.pts
        silent.sample_rate = frame.sample_rate
        silent.time_base = frame.time_base
        return silent


class RecorderAudioSink(RemoteAudioSink):
    """Writes the assistant's audio to a file, or discards it."""

    def __init__(self, config: RemoteAudioConfig | None = None) -> None:
        self.config = config or RemoteAudioConfig()
        if self.config.record_path:
            self._recorder: MediaRecorder | MediaBlackhole = MediaRecorder(
                self.config.record_path
            )
        else:
            self._recorder = MediaBlackhole()
        self._track: GatedAudioTrack | None = None
        self._start_task: asyncio.Task[None] | None = None
        self._muted = False

    def prime(self) -> bool:
        # No autoplay policy outside the browser; playback can always start
        return True

    def attach(self, track: Any) -> None:
        if getattr(track, "kind", None) != "audio" or self._track is not None:
            return

        self._track = GatedAudioTrack(track)
        self._track.muted = self._muted
        self._recorder.addTrack(self._track)
        self._start_task = asyncio.ensure_future(self._recorder.start())
        logger.info("Remote audio track attached")

    def set_muted(self, muted: bool) -> None:
        self._muted = muted
        if self._track is not None:
            self._track.muted = muted

    async def release(self) -> None:
        task, self._start_task = self._start_task, None
        try:
            if task is not None:
                try:
                    await task
                except Exception as e:
                    logger.warning("Remote audio recorder failed to start", extra={"error": str(e)})
            # The recorder holds its output container open from construction
            await self._recorder.stop()
        finally:
            if self._track is not None:
                self._track.stop()
                self._track = None
