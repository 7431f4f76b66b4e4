from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..events import ConnectionState
from .media import LocalStream, RemoteStream


@dataclass
class MediaState:
    """Per-call media state kept by the negotiator."""

    local_stream: Optional[LocalStream] = None
    remote_stream: Optional[RemoteStream] = None
    video_enabled: bool = False
    audio_enabled: bool = False
    screen_sharing: bool = False
    connection_state: ConnectionState = ConnectionState.NEW
    connected: bool = False

    def reset(self) -> None:
        self.local_stream = None
        self.remote_stream = None
        self.video_enabled = False
        self.audio_enabled = False
        self.screen_sharing = False
        self.connection_state = ConnectionState.NEW
        self.connected = False

    def snapshot(self) -> Dict[str, Any]:
        return {
            "hasLocalStream": self.local_stream is not None,
            "hasRemoteStream": self.remote_stream is not None,
            "videoEnabled": self.video_enabled,
            "audioEnabled": self.audio_enabled,
            "screenSharing": self.screen_sharing,
            "connectionState": self.connection_state.value,
            "isConnected": self.connected,
        }
