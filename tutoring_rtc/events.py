import enum


class SignalType(str, enum.Enum):
    OFFER = "offer"
    ANSWER = "answer"
    ICE_CANDIDATE = "ice-candidate"


class ConnectionState(str, enum.Enum):
    """Mirror of RTCPeerConnection.connectionState values."""

    NEW = "new"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    FAILED = "failed"
    CLOSED = "closed"

    @property
    def is_terminal(self) -> bool:
        return self in (ConnectionState.DISCONNECTED, ConnectionState.FAILED, ConnectionState.CLOSED)


class SessionRole(str, enum.Enum):
    VOLUNTEER = "volunteer"
    SENIOR = "senior"

    @property
    def is_offerer(self) -> bool:
        # The volunteer always opens the negotiation
        return self is SessionRole.VOLUNTEER


class SessionStatus(str, enum.Enum):
    PENDING = "PENDING"
    SCHEDULED = "SCHEDULED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

    @property
    def is_closed(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.CANCELLED)


class NegotiatorEvents(enum.Enum):
    CONNECTION_STATE = enum.auto()
    REMOTE_TRACK = enum.auto()
    SCREEN_SHARE_ENDED = enum.auto()
    CALL_ENDED = enum.auto()
