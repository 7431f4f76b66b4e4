"""Local capture and remote playback built on aiortc media tracks."""
from __future__ import annotations

import asyncio
import functools
import uuid
from typing import Callable, Dict, List, Optional, Tuple, Union

import av  # type: ignore
import numpy as np  # type: ignore
from aiortc import MediaStreamTrack  # type: ignore
from aiortc.contrib.media import MediaBlackhole, MediaPlayer, MediaRecorder  # type: ignore
from aiortc.mediastreams import MediaStreamError  # type: ignore
from av.error import FFmpegError  # type: ignore
from av.frame import Frame  # type: ignore

from ..config import Settings, settings as default_settings
from ..errors import MediaAcquisitionError
from ..logging_config import get_logger
from .constants import CAMERA, DEFAULT_CAMERA, DEFAULT_DISPLAY, DEFAULT_MICROPHONE, DISPLAY, MICROPHONE

logger = get_logger(__name__)

__all__ = [
    "LocalTrack",
    "LocalStream",
    "RemoteStream",
    "MediaDevices",
]


class LocalTrack(MediaStreamTrack):
    """Relay over a capture track that can be muted without renegotiation.

    While ``enabled`` is False the track keeps pulling from its source so
    timestamps stay continuous, but sends silence or black frames instead.
    Stopping the relay stops the source, and a source that ends on its own
    (device unplugged, display capture closed) stops the relay, which fires
    the ``ended`` event.
    """

    kind: str

    def __init__(self, source: MediaStreamTrack, label: str = "") -> None:
        super().__init__()
        self.kind = source.kind
        self.label = label or source.kind
        self.enabled = True
        self._source = source
        self._black: Optional[np.ndarray] = None
        source.on("ended", self.stop)

    @property
    def source(self) -> MediaStreamTrack:
        return self._source

    async def recv(self) -> Frame:  # type: ignore[override]
        if self.readyState != "live":
            raise MediaStreamError
        try:
            frame = await self._source.recv()
        except MediaStreamError:
            logger.info(f"📴 {self.label} source ended")
            self.stop()
            raise
        if self.enabled:
            return frame
        return self._muted(frame)

    def _muted(self, frame: Frame) -> Frame:
        if self.kind == "audio":
            silent = av.AudioFrame(format=frame.format.name, layout=frame.layout.name, samples=frame.samples)
            for plane in silent.planes:
                plane.update(bytes(plane.buffer_size))
            silent.sample_rate = frame.sample_rate
        else:
            shape = (frame.height, frame.width, 3)
            if self._black is None or self._black.shape != shape:
                self._black = np.zeros(shape, dtype=np.uint8)
            silent = av.VideoFrame.from_ndarray(self._black, format="rgb24")
        silent.pts = frame.pts
        silent.time_base = frame.time_base
        return silent

    def stop(self) -> None:  # type: ignore[override]
        super().stop()
        self._source.stop()


class LocalStream:
    """Ordered set of local tracks, the Python side of a browser MediaStream."""

    def __init__(self, tracks: Optional[List[LocalTrack]] = None) -> None:
        self.id = str(uuid.uuid4())
        self._tracks: List[LocalTrack] = list(tracks or [])

    def get_tracks(self) -> List[LocalTrack]:
        return list(self._tracks)

    def get_video_tracks(self) -> List[LocalTrack]:
        return [t for t in self._tracks if t.kind == "video"]

    def get_audio_tracks(self) -> List[LocalTrack]:
        return [t for t in self._tracks if t.kind == "audio"]

    def get_track(self, kind: str) -> Optional[LocalTrack]:
        """First live track of ``kind``, if any."""
        for track in self._tracks:
            if track.kind == kind and track.readyState == "live":
                return track
        return None

    def add_track(self, track: LocalTrack) -> None:
        if track not in self._tracks:
            self._tracks.append(track)

    def remove_track(self, track: LocalTrack) -> None:
        if track in self._tracks:
            self._tracks.remove(track)

    def remove_ended(self, kind: str) -> None:
        """Forget tracks of ``kind`` that are no longer live."""
        self._tracks = [t for t in self._tracks if t.kind != kind or t.readyState == "live"]

    def stop(self) -> None:
        for track in self._tracks:
            track.stop()
            logger.info(f"🛑 Stopped {track.kind} track ({track.label})")

    def __len__(self) -> int:
        return len(self._tracks)


SinkFactory = Callable[[], Union[MediaBlackhole, MediaRecorder]]


class RemoteStream:
    """Tracks received from the remote peer, attached to a playback sink."""

    def __init__(self, sink: Union[MediaBlackhole, MediaRecorder]) -> None:
        self._tracks: List[MediaStreamTrack] = []
        self._sink = sink
        self._started = False

    def get_tracks(self) -> List[MediaStreamTrack]:
        return list(self._tracks)

    def add_track(self, track: MediaStreamTrack) -> None:
        self._tracks.append(track)
        self._sink.addTrack(track)

    async def start(self) -> None:
        if self._tracks:
            await self._sink.start()
            self._started = True

    async def stop(self) -> None:
        if self._started:
            await self._sink.stop()
            self._started = False
        self._tracks.clear()


def remote_sink_factory(config: Settings = default_settings) -> SinkFactory:
    """Record the remote side when a path is configured, otherwise just drain it."""
    if config.remote_record_path:
        return functools.partial(MediaRecorder, str(config.remote_record_path))
    return MediaBlackhole


class MediaDevices:
    """Opens cameras, microphones and screens through aiortc's MediaPlayer.

    Counterpart of the browser's ``navigator.mediaDevices``: every request
    yields a fresh :class:`LocalStream` of :class:`LocalTrack` relays, or
    raises :class:`MediaAcquisitionError`.
    """

    def __init__(self, config: Settings = default_settings) -> None:
        self._settings = config

    def _source(self, configured: Tuple[str, str], default: Tuple[str, str]) -> Tuple[str, str]:
        file, fmt = configured
        return (file or default[0], fmt or default[1])

    async def _open(self, label: str, file: str, fmt: str, options: Dict[str, str]) -> MediaPlayer:
        loop = asyncio.get_running_loop()
        logger.info(f"🎥 Opening {label}: {file} ({fmt})")
        try:
            return await loop.run_in_executor(
                None, functools.partial(MediaPlayer, file, format=fmt, options=options)
            )
        except (FFmpegError, OSError, ValueError) as exc:
            logger.error(f"❌ Could not open {label} {file!r}: {exc!r}")
            raise MediaAcquisitionError(label, str(exc)) from exc

    async def get_user_media(self, video: bool = True, audio: bool = True) -> LocalStream:
        """Open camera and/or microphone."""
        if not video and not audio:
            raise ValueError("at least one of video or audio must be requested")
        cfg = self._settings
        tracks: List[LocalTrack] = []
        try:
            if video:
                file, fmt = self._source((cfg.camera_file, cfg.camera_format), DEFAULT_CAMERA)
                player = await self._open(CAMERA, file, fmt, {
                    "video_size": cfg.camera_size,
                    "framerate": str(cfg.camera_framerate),
                })
                if player.video is None:
                    raise MediaAcquisitionError(CAMERA, "device exposes no video stream")
                tracks.append(LocalTrack(player.video, label=CAMERA))
            if audio:
                file, fmt = self._source((cfg.microphone_file, cfg.microphone_format), DEFAULT_MICROPHONE)
                player = await self._open(MICROPHONE, file, fmt, {})
                if player.audio is None:
                    raise MediaAcquisitionError(MICROPHONE, "device exposes no audio stream")
                tracks.append(LocalTrack(player.audio, label=MICROPHONE))
        except MediaAcquisitionError:
            for track in tracks:
                track.stop()
            raise
        return LocalStream(tracks)

    async def get_display_media(self, video: bool = True, audio: bool = True) -> LocalStream:
        """Open a screen capture; audio is included only when the grabber provides it."""
        cfg = self._settings
        file, fmt = self._source((cfg.display_file, cfg.display_format), DEFAULT_DISPLAY)
        player = await self._open(DISPLAY, file, fmt, {"framerate": str(cfg.camera_framerate)})
        if video and player.video is None:
            if player.audio is not None:
                player.audio.stop()
            raise MediaAcquisitionError(DISPLAY, "capture exposes no video stream")
        tracks: List[LocalTrack] = []
        if video:
            tracks.append(LocalTrack(player.video, label=DISPLAY))
        if player.audio is not None:
            if audio:
                tracks.append(LocalTrack(player.audio, label=DISPLAY))
            else:
                player.audio.stop()
        return LocalStream(tracks)
