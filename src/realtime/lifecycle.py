"""Realtime WebRTC transport: connection lifecycle.

Owns the peer connection, the control data channel, the microphone and the
remote audio sink. Session configuration and inbound event routing are
delegated to SessionConfigController and EventRouter, which share this
transport's ConnectionContext.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from src.realtime.config import RealtimeConfig
from src.realtime.context import ConnectionContext, ConnectionGuard, default_guard
from src.realtime.errors import (
    ConnectCancelledError,
    TransportNotConnectedError,
    UnsupportedOperationError,
)
from src.realtime.events import ConnectedStage, EventEmitter, EventListener, EventType
from src.realtime.protocol import (
    ConversationItemCreateMessage,
    OutputAudioBufferClearMessage,
    ResponseCancelMessage,
    ResponseCreateMessage,
)
from src.realtime.router import EventRouter
from src.realtime.session_controls import SessionConfigController, SessionUpdateResult
from src.realtime.state import InputMode, Phase
from src.realtime.tap_commit import TapCommitPolicy
from src.realtime.transport.base import (
    MicMeter,
    MicrophoneSource,
    PeerConnection,
    RemoteAudioSink,
    SessionDescription,
    SignalingClient,
)

logger = logging.getLogger(__name__)

PeerConnectionFactory = Callable[[], PeerConnection]
AudioSinkFactory = Callable[[], RemoteAudioSink]

# Peer connection states that mean the media session is gone
_PEER_FAILED_STATES = frozenset({"failed", "disconnected", "closed"})


class RealtimeWebRTCTransport:
    """Bidirectional voice session with a remote conversational endpoint.

    Thread-safety: NOT thread-safe. Call from the event loop that delivers
    the peer connection and channel callbacks.
    """

    def __init__(
        self,
        peer_connection_factory: PeerConnectionFactory,
        microphone: MicrophoneSource,
        signaling: SignalingClient,
        audio_sink_factory: AudioSinkFactory,
        mic_meter: MicMeter | None = None,
        config: RealtimeConfig | None = None,
        tap_policy: TapCommitPolicy | None = None,
        on_event: EventListener | None = None,
        guard: ConnectionGuard | None = None,
    ) -> None:
        """Initialize transport.

        Args:
            peer_connection_factory: Creates a fresh peer connection per connect()
            microphone: Microphone access
            signaling: Offer/answer exchange
            audio_sink_factory: Creates the remote audio sink per connect()
            mic_meter: Optional microphone level meter
            config: Transport configuration
            tap_policy: Commit timeout policy; defaults to the configured timeout
                with a response.create fallback
            on_event: Listener for connected/disconnected/assistant_text events
            guard: At-most-one-connection guard shared between transports
        """
        self.config = config or RealtimeConfig()
        self._peer_connection_factory = peer_connection_factory
        self._microphone = microphone
        self._signaling = signaling
        self._audio_sink_factory = audio_sink_factory
        self._mic_meter = mic_meter
        self._guard = guard or default_guard
        self._loss_teardown: asyncio.Task[None] | None = None

        self.context = ConnectionContext(debug=self.config.debug)
        self.context.health.merge(debug=self.config.debug)
        self.emitter = EventEmitter(on_event)
        self.session = SessionConfigController(self.context, self.config.turn_detection)
        self.router = EventRouter(
            self.context,
            self.emitter,
            tap_policy or TapCommitPolicy.from_timeout_ms(self.config.tap_commit.timeout_ms),
        )

    @property
    def phase(self) -> Phase:
        return self.context.phase

    @property
    def input_mode(self) -> InputMode:
        return self.context.input_mode

    @property
    def health(self) -> dict[str, Any]:
        """Read-only copy of the health snapshot."""
        return self.context.health.as_dict()

    @property
    def is_connected(self) -> bool:
        return self.context.channel_open

    def add_listener(self, listener: EventListener) -> None:
        self.emitter.add_listener(listener)

    # ------------------------------------------------------------------
    # Connect / disconnect
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Bring up media, the control channel and the SDP exchange.

        No-op if this transport already has a peer connection.

        Raises:
            ConnectionAlreadyActiveError: If another transport holds the guard
            MicrophoneUnavailableError: If the microphone cannot be opened
            SignalingError: If the offer/answer exchange fails
            ConnectCancelledError: If disconnect() ran while connecting
        """
        await self._finish_loss_teardown()
        ctx = self.context
        if ctx.peer_connection is not None:
            return

        self._guard.claim(self)

        # Constructed and observed before any await so no transition is missed
        try:
            pc = self._peer_connection_factory()
        except Exception:
            self._guard.release(self)
            raise
        ctx.peer_connection = pc
        ctx.health.merge(
            pc="new",
            ice=pc.ice_connection_state or "new",
            dc="connecting",
            mode=ctx.input_mode,
            debug=ctx.debug,
        )
        ctx.set_phase(Phase.CONNECTING)
        pc.on("connectionstatechange", lambda: self._on_connection_state_change(pc))
        pc.on("iceconnectionstatechange", lambda: self._on_ice_state_change(pc))

        try:
            await self._establish(pc)
        except Exception as e:
            logger.error(
                "Realtime connect failed",
                extra={"error": str(e), "error_type": type(e).__name__},
            )
            if ctx.peer_connection is pc:
                await self._teardown()
            raise

    async def _establish(self, pc: PeerConnection) -> None:
        ctx = self.context

        sink = self._audio_sink_factory()
        ctx.remote_audio_sink = sink
        try:
            sink.prime()
        except Exception as e:
            logger.debug("Remote audio prime failed", extra={"error": str(e)})
        pc.on("track", lambda track: self._on_remote_track(sink, track))

        stream = await self._microphone.acquire()
        if ctx.peer_connection is not pc:
            for track in stream.tracks():
                track.stop()
            raise ConnectCancelledError("Disconnected while acquiring microphone")
        ctx.microphone_stream = stream
        for track in stream.tracks():
            pc.add_track(track)

        self._start_meter()

        channel = pc.create_data_channel(self.config.data_channel_label)
        ctx.control_channel = channel
        channel.on("open", lambda: self._on_channel_open(pc))
        channel.on("close", lambda: self._on_channel_close(pc))
        channel.on("message", lambda data: self._on_channel_message(pc, data))

        offer = await pc.create_offer()
        await pc.set_local_description(offer)
        self._ensure_current(pc)

        local = pc.local_description or offer
        answer_sdp = await self._signaling.exchange_offer(local.sdp)
        self._ensure_current(pc)

        await pc.set_remote_description(SessionDescription(sdp=answer_sdp, type="answer"))
        self._ensure_current(pc)

        logger.info("Realtime signaling complete")
        # Some signaling backends are slow to open the channel; don't block UI readiness
        self.emitter.emit(EventType.CONNECTED, stage=ConnectedStage.SIGNALING.value)

    def _ensure_current(self, pc: PeerConnection) -> None:
        if self.context.peer_connection is not pc:
            raise ConnectCancelledError("Disconnected during signaling")

    def _start_meter(self) -> None:
        ctx = self.context
        if self._mic_meter is None or ctx.microphone_stream is None:
            return
        try:
            self._mic_meter.start(
                ctx.microphone_stream,
                lambda level: ctx.health.merge(mic_level=level),
            )
        except Exception as e:
            logger.warning("Mic meter failed to start", extra={"error": str(e)})

    async def disconnect(self) -> None:
        """Tear down every resource and return to DISCONNECTED.

        Safe to call repeatedly or without a prior connect().
        """
        await self._finish_loss_teardown()
        await self._teardown()
        logger.info("Realtime transport disconnected")
        self.emitter.emit(EventType.DISCONNECTED)

    async def _teardown(self) -> None:
        ctx = self.context
        if ctx.tearing_down:
            return
        channel = ctx.control_channel
        pc = ctx.peer_connection
        stream = ctx.microphone_stream
        sink = ctx.remote_audio_sink

        ctx.tearing_down = True
        ctx.control_channel = None
        ctx.peer_connection = None
        ctx.microphone_stream = None
        ctx.remote_audio_sink = None

        try:
            if channel is not None:
                try:
                    channel.close()
                except Exception as e:
                    logger.warning("Error closing control channel", extra={"error": str(e)})

            if pc is not None:
                try:
                    await pc.close()
                except Exception as e:
                    logger.warning("Error closing peer connection", extra={"error": str(e)})

            if stream is not None:
                for track in stream.tracks():
                    try:
                        track.stop()
                    except Exception as e:
                        logger.warning("Error stopping microphone track", extra={"error": str(e)})

            if self._mic_meter is not None:
                try:
                    self._mic_meter.stop()
                except Exception as e:
                    logger.warning("Error stopping mic meter", extra={"error": str(e)})

            self.router.cancel_pending()
            ctx.pending_patch.clear()
            ctx.input_mode = InputMode.TAP
            ctx.muted_by_interrupt = False
            ctx.health.merge(
                mode=InputMode.TAP,
                mic_level=0.0,
                active_response=False,
                active_response_id=None,
            )

            if sink is not None:
                try:
                    await sink.release()
                except Exception as e:
                    logger.warning("Error releasing remote audio sink", extra={"error": str(e)})

            ctx.set_phase(Phase.DISCONNECTED)
        finally:
            ctx.tearing_down = False
            self._guard.release(self)

    # ------------------------------------------------------------------
    # Peer connection and channel callbacks
    # ------------------------------------------------------------------

    def _is_live(self, pc: PeerConnection) -> bool:
        return self.context.peer_connection is pc and not self.context.tearing_down

    def _on_connection_state_change(self, pc: PeerConnection) -> None:
        state = pc.connection_state or "disconnected"
        self.context.health.merge(pc=state)
        if not self._is_live(pc):
            return

        if state == "connected":
            self.emitter.emit(EventType.CONNECTED, stage=ConnectedStage.PEER.value)
        elif state in _PEER_FAILED_STATES:
            logger.warning("Peer connection lost", extra={"state": state})
            self._on_transport_lost()

    def _on_ice_state_change(self, pc: PeerConnection) -> None:
        self.context.health.merge(ice=pc.ice_connection_state or "—")

    def _on_remote_track(self, sink: RemoteAudioSink, track: Any) -> None:
        try:
            sink.attach(track)
        except Exception as e:
            logger.warning("Failed to attach remote audio track", extra={"error": str(e)})

    def _on_channel_open(self, pc: PeerConnection) -> None:
        if not self._is_live(pc):
            return
        ctx = self.context
        ctx.health.merge(dc="open")

        # The server may still hold a response from an earlier session
        ctx.send(ResponseCancelMessage())

        # Never leave the remote side at its default turn detection
        if self.session.flush_pending_session_update() is None:
            self.session.set_turn_taking(ctx.input_mode)

        ctx.set_phase(Phase.LISTENING)
        logger.info("Control channel open", extra={"mode": ctx.input_mode.value})
        self.emitter.emit(EventType.CONNECTED, stage=ConnectedStage.CHANNEL.value)

    def _on_channel_close(self, pc: PeerConnection) -> None:
        self.context.health.merge(dc="closed")
        if not self._is_live(pc):
            return
        logger.warning("Control channel closed unexpectedly")
        self._on_transport_lost()

    def _on_channel_message(self, pc: PeerConnection, data: str | bytes) -> None:
        if self.context.peer_connection is not pc:
            return
        self.router.handle_message(data)

    def _on_transport_lost(self) -> None:
        if self.context.phase == Phase.DISCONNECTED:
            return
        self.router.cancel_pending()
        self.context.set_phase(Phase.DISCONNECTED)
        # Release the dead connection's media so connect() can start over
        self._loss_teardown = asyncio.ensure_future(self._teardown())
        self.emitter.emit(EventType.DISCONNECTED)

    async def _finish_loss_teardown(self) -> None:
        task, self._loss_teardown = self._loss_teardown, None
        if task is not None:
            await task

    # ------------------------------------------------------------------
    # Session and turn-taking controls
    # ------------------------------------------------------------------

    def update_session(self, patch: dict[str, Any]) -> SessionUpdateResult:
        return self.session.update_session(patch)

    def flush_pending_session_update(self) -> SessionUpdateResult | None:
        return self.session.flush_pending_session_update()

    def set_turn_taking(self, mode: Any) -> SessionUpdateResult:
        result = self.session.set_turn_taking(mode)
        if self.context.input_mode == InputMode.AUTO:
            self.router.cancel_pending()
        return result

    def request_reply(self) -> bool:
        """Commit the user's turn in tap mode and request the response."""
        return self.router.request_reply()

    def set_debug(self, enabled: bool) -> None:
        self.context.debug = bool(enabled)
        self.context.health.merge(debug=self.context.debug)

    # ------------------------------------------------------------------
    # Playback and user input
    # ------------------------------------------------------------------

    async def stop_speaking(self) -> bool:
        """Interrupt the assistant.

        Playback is silenced locally first, then the server is asked to
        cancel generation and clear queued audio, in that order.

        Returns:
            True if both server messages were written
        """
        ctx = self.context
        sink = ctx.remote_audio_sink
        if sink is not None:
            try:
                sink.set_muted(True)
            except Exception as e:
                logger.warning("Failed to mute remote audio", extra={"error": str(e)})
            ctx.muted_by_interrupt = True

        ok_cancel = ctx.send(ResponseCancelMessage())
        ok_clear = ctx.send(OutputAudioBufferClearMessage())

        self.emitter.emit(EventType.STOP_SPEAKING, ok_cancel=ok_cancel, ok_clear=ok_clear)
        return ok_cancel and ok_clear

    def _unmute_if_needed(self) -> None:
        ctx = self.context
        sink = ctx.remote_audio_sink
        if sink is None or not ctx.muted_by_interrupt:
            return
        try:
            sink.set_muted(False)
        except Exception as e:
            logger.warning("Failed to unmute remote audio", extra={"error": str(e)})
        ctx.muted_by_interrupt = False

    async def send_user_text(self, text: str, create_response: bool = True) -> None:
        """Add a typed user message and optionally request a response.

        Raises:
            TransportNotConnectedError: If the control channel rejected a write
        """
        if not text:
            return
        self._unmute_if_needed()

        ctx = self.context
        ok_item = ctx.send(ConversationItemCreateMessage.from_text(text))
        ok_response = ctx.send(ResponseCreateMessage()) if create_response else True

        if not ok_item or not ok_response:
            raise TransportNotConnectedError("Transport not connected")

    async def send_user_audio(self, blob: bytes | None = None) -> None:
        """Recorded clips are not supported; audio flows over the live mic track.

        Raises:
            UnsupportedOperationError: Always
        """
        size_kb = round(len(blob) / 1024) if blob else 0
        raise UnsupportedOperationError(
            "WebRTC transport uses live microphone tracks; "
            f"send_user_audio() is not supported (~{size_kb} KB)"
        )
