"""
Session negotiator: one peer-to-peer audio/video call per tutoring session.

The negotiator owns the local capture, the aiortc peer connection and the
signal poller of a single call. Every mutating operation (start, toggles,
screen share, teardown) and every inbound signal runs under one
``asyncio.Lock``, so overlapping caller invocations cannot interleave
media acquisition against the same track slot.

The offering side is fixed by the session role: the volunteer sends the
single offer ``offer_delay`` seconds after its local media is ready, the
senior answers.
"""
from __future__ import annotations

import asyncio
import contextlib
from typing import Any, Callable, Optional, Tuple

from aiortc import RTCConfiguration, RTCIceServer, RTCPeerConnection, RTCSessionDescription  # type: ignore
from aiortc.rtcrtpsender import RTCRtpSender  # type: ignore

from ..config import Settings, settings as default_settings
from ..errors import MediaAcquisitionError, SignalingError
from ..events import ConnectionState, NegotiatorEvents, SessionRole, SignalType
from ..logging_config import get_logger
from .ice_buffer import PendingIceBuffer
from .media import LocalStream, LocalTrack, MediaDevices, RemoteStream, SinkFactory, remote_sink_factory
from .signals import AnswerSignal, OfferSignal, Signal
from .state import MediaState
from .transport import SignalingClient, SignalPoller
from .util import candidate_from_payload

logger = get_logger(__name__)

PeerConnectionFactory = Callable[[RTCConfiguration], RTCPeerConnection]


def create_peer_connection(configuration: RTCConfiguration) -> RTCPeerConnection:
    return RTCPeerConnection(configuration=configuration)


class SessionNegotiator:
    """Negotiates and maintains the media call of one session.

    Use as an async context manager so the call is always torn down::

        async with SessionNegotiator(session_id, role, client) as negotiator:
            await negotiator.start_call()
            ...
    """

    def __init__(
        self,
        session_id: str,
        role: SessionRole,
        client: SignalingClient,
        devices: Optional[MediaDevices] = None,
        config: Settings = default_settings,
        peer_connection_factory: PeerConnectionFactory = create_peer_connection,
        sink_factory: Optional[SinkFactory] = None,
    ) -> None:
        self.session_id = session_id
        self.role = role
        self.state = MediaState()
        self.events: "asyncio.Queue[Tuple[NegotiatorEvents, Any]]" = asyncio.Queue()

        self._client = client
        self._settings = config
        self._devices = devices or MediaDevices(config)
        self._pc_factory = peer_connection_factory
        self._sink_factory = sink_factory or remote_sink_factory(config)

        self._lock = asyncio.Lock()
        self._pc: Optional[RTCPeerConnection] = None
        self._ice: PendingIceBuffer = PendingIceBuffer()
        self._poller: Optional[SignalPoller] = None
        self._offer_task: Optional[asyncio.Task] = None
        self._restore_task: Optional[asyncio.Task] = None
        self._screen_track: Optional[LocalTrack] = None

    # ───────────────────────── Properties ──────────────────────────────
    @property
    def peer_connection(self) -> Optional[RTCPeerConnection]:
        return self._pc

    @property
    def local_stream(self) -> Optional[LocalStream]:
        return self.state.local_stream

    @property
    def remote_stream(self) -> Optional[RemoteStream]:
        return self.state.remote_stream

    @property
    def connection_state(self) -> ConnectionState:
        return self.state.connection_state

    @property
    def is_connected(self) -> bool:
        return self.state.connected

    @property
    def pending_candidates(self) -> int:
        return len(self._ice)

    async def __aenter__(self) -> "SessionNegotiator":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.end_call()

    # ───────────────────────── Call lifecycle ──────────────────────────
    def _configuration(self) -> RTCConfiguration:
        return RTCConfiguration(iceServers=[RTCIceServer(urls=url) for url in self._settings.ice_servers])

    async def start_call(self) -> LocalStream:
        """Acquire camera and microphone, create the peer connection, start signaling.

        Raises MediaAcquisitionError if the devices cannot be opened; the
        negotiator is then left without a call.
        """
        async with self._lock:
            if self._pc is not None or self.state.local_stream is not None:
                logger.info(f"♻️ Restarting call for session {self.session_id}")
                await self._teardown()

            logger.info("🎥 Initializing local media...")
            try:
                stream = await self._devices.get_user_media(video=True, audio=True)
            except MediaAcquisitionError as exc:
                logger.error(f"❌ Error accessing media devices: {exc}")
                raise

            self.state.local_stream = stream
            self.state.video_enabled = bool(stream.get_video_tracks())
            self.state.audio_enabled = bool(stream.get_audio_tracks())
            self.state.remote_stream = RemoteStream(self._sink_factory())
            logger.info("📹 Local media initialized successfully")

            try:
                pc = self._pc_factory(self._configuration())
                self._pc = pc
                self._bind(pc)
                for track in stream.get_tracks():
                    pc.addTrack(track)

                self._poller = SignalPoller(
                    self._client,
                    self._handle_signal,
                    interval=self._settings.signal_poll_interval,
                    max_attempts=self._settings.signal_max_attempts,
                )
                self._poller.start()

                if self.role.is_offerer:
                    self._offer_task = asyncio.create_task(self._offer_after_delay(pc))
            except Exception as exc:
                logger.error(f"❌ Error setting up peer connection: {exc!r}")
                await self._teardown()
                raise

            logger.info(f"✅ Peer connection initialized for session {self.session_id} as {self.role.value}")
            return stream

    async def end_call(self) -> None:
        """Stop local tracks, close the connection and reset state. Safe to call repeatedly."""
        async with self._lock:
            await self._teardown()

    async def _teardown(self) -> None:
        active = self._pc is not None or self.state.local_stream is not None
        if active:
            logger.info("🧹 Cleaning up call resources...")

        current = asyncio.current_task()
        for task in (self._offer_task, self._restore_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._offer_task = None
        self._restore_task = None

        if self._poller is not None:
            await self._poller.stop()
            self._poller = None

        self._screen_track = None
        if self.state.local_stream is not None:
            self.state.local_stream.stop()

        pc, self._pc = self._pc, None
        if pc is not None:
            await pc.close()

        if self.state.remote_stream is not None:
            await self.state.remote_stream.stop()

        self._ice.clear()
        self.state.reset()
        if active:
            self.events.put_nowait((NegotiatorEvents.CALL_ENDED, None))
            logger.info("✅ Cleanup completed")

    def _bind(self, pc: RTCPeerConnection) -> None:
        @pc.on("connectionstatechange")
        def on_connection_state_change() -> None:
            if pc is not self._pc:
                return
            state = ConnectionState(pc.connectionState)
            self.state.connection_state = state
            self.state.connected = state is ConnectionState.CONNECTED
            logger.info(f"🔗 Connection state: {state.value} (session {self.session_id})")
            self.events.put_nowait((NegotiatorEvents.CONNECTION_STATE, state))

        @pc.on("track")
        def on_track(track) -> None:
            if pc is not self._pc or self.state.remote_stream is None:
                return
            logger.info(f"📡 Received remote {track.kind} track")
            self.state.remote_stream.add_track(track)
            self.events.put_nowait((NegotiatorEvents.REMOTE_TRACK, track.kind))

    # ───────────────────────── Offer / answer ──────────────────────────
    async def _offer_after_delay(self, pc: RTCPeerConnection) -> None:
        await asyncio.sleep(self._settings.offer_delay)
        async with self._lock:
            if pc is not self._pc or pc.signalingState != "stable" or pc.remoteDescription is not None:
                return
            try:
                offer = await pc.createOffer()
                await pc.setLocalDescription(offer)
            except Exception as exc:  # noqa: BLE001
                logger.error(f"❌ Error creating offer: {exc!r}")
                return
            logger.info(f"📤 Sending offer for session {self.session_id}")
            await self._client.send_signal(OfferSignal(session_id=self.session_id, sdp=pc.localDescription.sdp))

    async def _handle_signal(self, signal: Signal) -> None:
        async with self._lock:
            pc = self._pc
            if pc is None:
                logger.debug(f"Ignoring {signal.type}: no active call")
                return
            if signal.type == SignalType.OFFER:
                await self._on_offer(pc, signal)
            elif signal.type == SignalType.ANSWER:
                await self._on_answer(pc, signal)
            elif signal.type == SignalType.ICE_CANDIDATE:
                await self._on_candidate(pc, signal)

    async def _on_offer(self, pc: RTCPeerConnection, signal: OfferSignal) -> None:
        # Same offer again: an earlier attempt failed after the remote description was applied
        redelivered = pc.remoteDescription is not None and pc.remoteDescription.sdp == signal.sdp
        if redelivered:
            logger.info(f"📥 Offer redelivered, resuming answer (state {pc.signalingState})")
        elif pc.signalingState != "stable":
            # Our own offer is outstanding; the answering side yields, we do not
            logger.warning(f"⚠️ Ignoring offer in signaling state {pc.signalingState}")
            return
        else:
            logger.info("📥 Received offer")
            if self._offer_task is not None and not self._offer_task.done():
                self._offer_task.cancel()
            await pc.setRemoteDescription(RTCSessionDescription(sdp=signal.sdp, type="offer"))
            await self._flush_candidates(pc)
            await self._start_remote()

        if pc.signalingState == "have-remote-offer":
            answer = await pc.createAnswer()
            await pc.setLocalDescription(answer)
        logger.info(f"📤 Sending answer for session {self.session_id}")
        sent = await self._client.send_signal(AnswerSignal(session_id=self.session_id, sdp=pc.localDescription.sdp))
        if not sent:
            raise SignalingError(f"answer for session {self.session_id} was not delivered")

    async def _on_answer(self, pc: RTCPeerConnection, signal: AnswerSignal) -> None:
        if pc.signalingState != "have-local-offer":
            logger.warning(f"⚠️ Ignoring answer in signaling state {pc.signalingState}")
            return
        logger.info("📥 Received answer")
        await pc.setRemoteDescription(RTCSessionDescription(sdp=signal.sdp, type="answer"))
        await self._flush_candidates(pc)
        await self._start_remote()

    async def _on_candidate(self, pc: RTCPeerConnection, signal: Signal) -> None:
        candidate = candidate_from_payload(signal.candidate)
        if candidate is None:
            return
        if pc.remoteDescription is None:
            self._ice.push(candidate)
            logger.debug(f"🧊 Buffered ICE candidate ({len(self._ice)} pending)")
            return
        logger.debug("🧊 Applying ICE candidate")
        await pc.addIceCandidate(candidate)

    async def _flush_candidates(self, pc: RTCPeerConnection) -> None:
        applied = await self._ice.flush(pc.addIceCandidate)
        if applied:
            logger.info(f"🧊 Applied {applied} buffered ICE candidates")

    async def _start_remote(self) -> None:
        if self.state.remote_stream is not None:
            await self.state.remote_stream.start()

    # ───────────────────────── Track toggles ───────────────────────────
    def _sender(self, kind: str) -> Optional[RTCRtpSender]:
        if self._pc is None:
            return None
        return next((s for s in self._pc.getSenders() if s.kind == kind), None)

    def _attach(self, kind: str, track: Optional[LocalTrack]) -> None:
        """Put ``track`` on the outgoing sender of ``kind`` without renegotiating."""
        sender = self._sender(kind)
        if sender is not None:
            sender.replaceTrack(track)
        elif track is not None and self._pc is not None:
            logger.info(f"No {kind} sender to replace, adding a new one")
            self._pc.addTrack(track)

    async def toggle_video(self) -> bool:
        """Enable/disable outgoing video; returns the resulting enabled flag."""
        return await self._toggle("video")

    async def toggle_audio(self) -> bool:
        """Enable/disable outgoing audio; returns the resulting enabled flag."""
        return await self._toggle("audio")

    async def _toggle(self, kind: str) -> bool:
        flag = f"{kind}_enabled"
        icon = "📹" if kind == "video" else "🎤"
        async with self._lock:
            stream = self.state.local_stream
            if stream is None:
                logger.warning(f"Toggle {kind} ignored: no active call")
                return False

            track = stream.get_track(kind)
            if track is not None:
                track.enabled = not track.enabled
                setattr(self.state, flag, track.enabled)
                logger.info(f"{icon} {kind} {'enabled' if track.enabled else 'disabled'} locally")
                return track.enabled

            try:
                fresh = await self._devices.get_user_media(video=kind == "video", audio=kind == "audio")
            except MediaAcquisitionError as exc:
                logger.error(f"❌ Could not acquire a new {kind} track: {exc}")
                return getattr(self.state, flag)

            track = fresh.get_track(kind)
            stream.remove_ended(kind)
            stream.add_track(track)
            self._attach(kind, track)
            setattr(self.state, flag, True)
            logger.info(f"{icon} {kind} re-acquired and enabled")
            return True

    # ───────────────────────── Screen share ────────────────────────────
    async def toggle_screen_share(self) -> bool:
        """Switch the video sender between camera and screen; returns the sharing flag."""
        async with self._lock:
            if self.state.screen_sharing:
                await self._stop_screen_share()
            else:
                await self._start_screen_share()
            return self.state.screen_sharing

    async def _start_screen_share(self) -> None:
        stream = self.state.local_stream
        if stream is None or self._pc is None:
            logger.warning("Screen share ignored: no active call")
            return
        logger.info("🖥️ Starting screen share...")
        try:
            capture = await self._devices.get_display_media(video=True, audio=True)
        except MediaAcquisitionError as exc:
            logger.error(f"❌ Error starting screen share: {exc}")
            return

        screen = capture.get_track("video")
        screen.enabled = self.state.video_enabled
        # The microphone keeps the single audio sender
        for extra in capture.get_audio_tracks():
            extra.stop()

        camera = stream.get_track("video")
        self._attach("video", screen)
        if camera is not None:
            stream.remove_track(camera)
            camera.stop()
        stream.add_track(screen)
        self._screen_track = screen
        self._watch_capture_end(screen)
        self.state.screen_sharing = True
        logger.info("🖥️ Screen sharing started")

    def _watch_capture_end(self, screen: LocalTrack) -> None:
        @screen.on("ended")
        def on_capture_ended() -> None:
            if screen is not self._screen_track:
                return
            logger.info("🖥️ Screen capture ended from outside, restoring camera")
            self.events.put_nowait((NegotiatorEvents.SCREEN_SHARE_ENDED, None))
            self._restore_task = asyncio.create_task(self._restore_camera(screen))

    async def _restore_camera(self, screen: LocalTrack) -> None:
        async with self._lock:
            if screen is not self._screen_track:
                return
            await self._stop_screen_share()

    async def _stop_screen_share(self) -> None:
        stream = self.state.local_stream
        screen = self._screen_track
        logger.info("🖥️ Stopping screen share...")
        camera: Optional[LocalTrack] = None
        try:
            fresh = await self._devices.get_user_media(video=True, audio=False)
            camera = fresh.get_track("video")
        except MediaAcquisitionError as exc:
            logger.error(f"❌ Could not restore camera: {exc}")
            if screen is not None and screen.readyState == "live":
                return

        if camera is not None:
            camera.enabled = self.state.video_enabled
        self._attach("video", camera)
        self._screen_track = None
        if screen is not None:
            if stream is not None:
                stream.remove_track(screen)
            screen.stop()
        if camera is not None and stream is not None:
            stream.add_track(camera)
        else:
            self.state.video_enabled = False
        self.state.screen_sharing = False
        logger.info("🖥️ Screen sharing stopped")
