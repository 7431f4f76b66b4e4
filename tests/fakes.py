"""In-memory stand-ins for the browser-side collaborators of the negotiator."""
import asyncio
import time

from aiortc import RTCSessionDescription
from aiortc.mediastreams import AudioStreamTrack, VideoStreamTrack
from pyee.asyncio import AsyncIOEventEmitter

from tutoring_rtc.errors import MediaAcquisitionError
from tutoring_rtc.negotiator.media import LocalStream, LocalTrack
from tutoring_rtc.negotiator.signals import parse_signal
from tutoring_rtc.relay.store import SignalStore


class FakeSender:
    def __init__(self, track):
        self.kind = track.kind
        self.track = track
        self.replaced = []

    def replaceTrack(self, track):
        self.track = track
        self.replaced.append(track)


class FakePeerConnection(AsyncIOEventEmitter):
    """Enough of RTCPeerConnection for offer/answer; connects once both descriptions are set."""

    def __init__(self, configuration=None):
        super().__init__()
        self.configuration = configuration
        self.connectionState = "new"
        self.signalingState = "stable"
        self.localDescription = None
        self.remoteDescription = None
        self.senders = []
        self.applied_candidates = []
        self.offers_created = 0
        self.answer_failures = 0
        self.closed = False

    def addTrack(self, track):
        sender = FakeSender(track)
        self.senders.append(sender)
        return sender

    def getSenders(self):
        return list(self.senders)

    async def createOffer(self):
        self.offers_created += 1
        return RTCSessionDescription(sdp=f"v=0 offer {id(self)}", type="offer")

    async def createAnswer(self):
        if self.answer_failures:
            self.answer_failures -= 1
            raise RuntimeError("createAnswer failed")
        return RTCSessionDescription(sdp=f"v=0 answer {id(self)}", type="answer")

    async def setLocalDescription(self, description):
        self.localDescription = description
        self.signalingState = "have-local-offer" if description.type == "offer" else "stable"
        self._maybe_connect()

    async def setRemoteDescription(self, description):
        self.remoteDescription = description
        self.signalingState = "have-remote-offer" if description.type == "offer" else "stable"
        self._maybe_connect()

    async def addIceCandidate(self, candidate):
        if self.remoteDescription is None:
            raise RuntimeError("addIceCandidate called before setRemoteDescription")
        self.applied_candidates.append(candidate)

    async def close(self):
        if self.closed:
            return
        self.closed = True
        self.signalingState = "closed"
        self._set_state("closed")

    def _set_state(self, state):
        self.connectionState = state
        self.emit("connectionstatechange")

    def _maybe_connect(self):
        if (
            self.localDescription is not None
            and self.remoteDescription is not None
            and self.signalingState == "stable"
            and self.connectionState == "new"
        ):
            self._set_state("connecting")
            self._set_state("connected")


class PeerConnectionRecorder:
    """Peer connection factory that remembers what it built."""

    def __init__(self):
        self.created = []

    def __call__(self, configuration):
        pc = FakePeerConnection(configuration)
        self.created.append(pc)
        return pc


class FakeMediaDevices:
    def __init__(self):
        self.fail_user_media = False
        self.fail_display = False
        self.user_media_calls = []
        self.display_sources = []
        self.user_media_streams = []

    async def get_user_media(self, video=True, audio=True):
        self.user_media_calls.append((video, audio))
        if self.fail_user_media:
            raise MediaAcquisitionError("camera", "permission denied")
        tracks = []
        if video:
            tracks.append(LocalTrack(VideoStreamTrack(), label="camera"))
        if audio:
            tracks.append(LocalTrack(AudioStreamTrack(), label="microphone"))
        stream = LocalStream(tracks)
        self.user_media_streams.append(stream)
        return stream

    async def get_display_media(self, video=True, audio=True):
        if self.fail_display:
            raise MediaAcquisitionError("display", "user dismissed the picker")
        source = VideoStreamTrack()
        self.display_sources.append(source)
        return LocalStream([LocalTrack(source, label="display")])


class InMemoryRelay:
    """The HTTP relay without HTTP: same store, same timestamps."""

    def __init__(self, history_size=50):
        self.store = SignalStore(history_size=history_size)
        self.sent = []

    def client(self, session_id, sender):
        return RelayClient(self, session_id, sender)

    def sent_of_type(self, kind):
        return [s for s in self.sent if s["type"] == kind]


class RelayClient:
    def __init__(self, relay, session_id, sender):
        self.relay = relay
        self.session_id = session_id
        self.sender = sender
        self.fail_sends = 0

    async def send_signal(self, signal):
        if self.fail_sends:
            self.fail_sends -= 1
            return False
        signal.session_id = self.session_id
        signal.sender = self.sender
        body = signal.to_wire()
        body.pop("timestamp", None)
        stored = await self.relay.store.add(self.session_id, body)
        self.relay.sent.append(stored)
        return True

    async def post_raw(self, body):
        stored = await self.relay.store.add(self.session_id, body)
        self.relay.sent.append(stored)
        return stored

    async def fetch_signals(self, since=None):
        return [parse_signal(item) for item in self.relay.store.since(self.session_id, since)]


def host_candidate(n):
    return {
        "candidate": f"candidate:{n} 1 udp 2122260223 192.168.1.{n} 5000{n} typ host generation 0",
        "sdpMid": "0",
        "sdpMLineIndex": 0,
    }


async def wait_for(predicate, timeout=3.0, interval=0.01):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(interval)
