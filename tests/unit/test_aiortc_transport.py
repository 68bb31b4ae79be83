"""Unit tests for the aiortc adapters.

The aiortc objects are mocked where they would touch the network or a
capture device; frame gating runs against real PyAV frames.
"""

import asyncio
from fractions import Fraction
from unittest.mock import AsyncMock, MagicMock, patch

import av
import numpy as np
import pytest
from aiortc.mediastreams import MediaStreamError

from src.realtime.config import MicrophoneConfig, RemoteAudioConfig
from src.realtime.errors import MicrophoneUnavailableError
from src.realtime.transport.aiortc_transport import (
    AiortcControlChannel,
    AiortcMicrophoneSource,
    AiortcMicrophoneStream,
    AiortcMicrophoneTrack,
    AiortcPeerConnection,
    GatedAudioTrack,
    RecorderAudioSink,
)
from src.realtime.transport.base import SessionDescription
from tests.helpers.realtime_fakes import FakeMicrophoneTrack


def make_frame(value: int = 1000, samples: int = 960) -> av.AudioFrame:
    frame = av.AudioFrame(format="s16", layout="mono", samples=samples)
    frame.planes[0].update(np.full(samples, value, dtype=np.int16).tobytes())
    frame.sample_rate = 48000
    frame.time_base = Fraction(1, 48000)
    frame.pts = 960
    return frame


class TestAiortcControlChannel:
    """Test suite for AiortcControlChannel."""

    def test_send_when_open(self) -> None:
        raw = MagicMock(readyState="open")
        AiortcControlChannel(raw).send('{"type": "response.create"}')
        raw.send.assert_called_once_with('{"type": "response.create"}')

    def test_send_when_not_open_raises(self) -> None:
        raw = MagicMock(readyState="connecting")
        with pytest.raises(ConnectionError):
            AiortcControlChannel(raw).send("{}")
        raw.send.assert_not_called()

    def test_ready_state(self) -> None:
        assert AiortcControlChannel(MagicMock(readyState="closed")).ready_state == "closed"


class TestAiortcPeerConnection:
    """Test suite for AiortcPeerConnection."""

    @pytest.fixture
    def raw_pc(self) -> MagicMock:
        pc = MagicMock(connectionState="new", iceConnectionState="new", localDescription=None)
        pc.createOffer = AsyncMock(return_value=MagicMock(sdp="v=0 offer", type="offer"))
        pc.setLocalDescription = AsyncMock()
        pc.setRemoteDescription = AsyncMock()
        pc.close = AsyncMock()
        return pc

    @pytest.mark.asyncio
    async def test_offer_and_descriptions(self, raw_pc: MagicMock) -> None:
        pc = AiortcPeerConnection(raw_pc)

        offer = await pc.create_offer()
        await pc.set_local_description(offer)
        await pc.set_remote_description(SessionDescription(sdp="v=0 answer", type="answer"))

        assert offer == SessionDescription(sdp="v=0 offer", type="offer")
        local = raw_pc.setLocalDescription.await_args.args[0]
        remote = raw_pc.setRemoteDescription.await_args.args[0]
        assert (local.sdp, local.type) == ("v=0 offer", "offer")
        assert (remote.sdp, remote.type) == ("v=0 answer", "answer")
        assert pc.local_description is None

    def test_ordered_data_channel(self, raw_pc: MagicMock) -> None:
        channel = AiortcPeerConnection(raw_pc).create_data_channel("oai-events")
        raw_pc.createDataChannel.assert_called_once_with("oai-events", ordered=True)
        assert isinstance(channel, AiortcControlChannel)

    def test_add_track_unwraps_aiortc_track(self, raw_pc: MagicMock) -> None:
        media_track = MagicMock()
        AiortcPeerConnection(raw_pc).add_track(AiortcMicrophoneTrack(media_track))
        raw_pc.addTrack.assert_called_once_with(media_track)

    def test_add_track_rejects_foreign_track(self, raw_pc: MagicMock) -> None:
        with pytest.raises(TypeError):
            AiortcPeerConnection(raw_pc).add_track(FakeMicrophoneTrack())


class TestAiortcMicrophone:
    """Test suite for microphone acquisition and tracks."""

    def test_track_stop_stops_upstream(self) -> None:
        relayed, capture = MagicMock(), MagicMock()
        AiortcMicrophoneTrack(relayed, upstream=[capture]).stop()
        relayed.stop.assert_called_once()
        capture.stop.assert_called_once()

    @pytest.mark.asyncio
    async def test_unavailable_device(self) -> None:
        source = AiortcMicrophoneSource(MicrophoneConfig(device="hw:9"))
        with patch(
            "src.realtime.transport.aiortc_transport.MediaPlayer",
            side_effect=OSError("No such device"),
        ):
            with pytest.raises(MicrophoneUnavailableError, match="hw:9"):
                await source.acquire()

    def test_player_without_audio_is_stopped(self) -> None:
        player = MagicMock(audio=None)

        with pytest.raises(MicrophoneUnavailableError):
            AiortcMicrophoneStream(player)

        player.video.stop.assert_called_once()


class TestGatedAudioTrack:
    """Test suite for GatedAudioTrack."""

    @pytest.mark.asyncio
    async def test_passthrough_when_unmuted(self) -> None:
        frame = make_frame()
        source = MagicMock(recv=AsyncMock(return_value=frame))

        assert await GatedAudioTrack(source).recv() is frame

    @pytest.mark.asyncio
    async def test_silence_when_muted(self) -> None:
        frame = make_frame(value=12000)
        source = MagicMock(recv=AsyncMock(return_value=frame))
        track = GatedAudioTrack(source)
        track.muted = True

        silent = await track.recv()

        assert silent is not frame
        assert silent.samples == frame.samples
        assert silent.pts == frame.pts
        assert silent.sample_rate == 48000
        assert not silent.to_ndarray().any()


class TestRecorderAudioSink:
    """Test suite for RecorderAudioSink."""

    @pytest.mark.asyncio
    async def test_ignores_non_audio_tracks(self) -> None:
        sink = RecorderAudioSink()
        sink.attach(MagicMock(kind="video"))
        assert sink._track is None
        await sink.release()

    @pytest.mark.asyncio
    async def test_attach_mute_release(self) -> None:
        remote = MagicMock(kind="audio", recv=AsyncMock(side_effect=MediaStreamError))
        sink = RecorderAudioSink()

        assert sink.prime() is True
        sink.set_muted(True)
        sink.attach(remote)

        assert sink._track is not None
        assert sink._track.muted is True

        sink.set_muted(False)
        assert sink._track.muted is False

        await asyncio.sleep(0)
        await sink.release()
        assert sink._track is None

    @pytest.mark.asyncio
    async def test_release_closes_recorder_without_track(self) -> None:
        recorder = MagicMock(stop=AsyncMock())
        with patch(
            "src.realtime.transport.aiortc_transport.MediaRecorder", return_value=recorder
        ) as recorder_cls:
            sink = RecorderAudioSink(RemoteAudioConfig(record_path="out.wav"))

        await sink.release()

        recorder_cls.assert_called_once_with("out.wav")
        recorder.stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_release_after_failed_start(self) -> None:
        recorder = MagicMock(
            start=AsyncMock(side_effect=RuntimeError("cannot open output")),
            stop=AsyncMock(),
        )
        with patch(
            "src.realtime.transport.aiortc_transport.MediaRecorder", return_value=recorder
        ):
            sink = RecorderAudioSink(RemoteAudioConfig(record_path="out.wav"))
        sink.attach(MagicMock(kind="audio"))
        gated = sink._track
        assert gated is not None

        await sink.release()

        recorder.stop.assert_awaited_once()
        assert gated.readyState == "ended"
        assert sink._track is None
