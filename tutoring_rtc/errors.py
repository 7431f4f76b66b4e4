"""Exceptions raised by the negotiator and its HTTP clients."""


class MediaAcquisitionError(RuntimeError):
    """Camera, microphone or display capture could not be opened."""

    def __init__(self, kind: str, reason: str) -> None:
        super().__init__(f"could not acquire {kind}: {reason}")
        self.kind = kind
        self.reason = reason


class SignalingError(RuntimeError):
    """The relay or session store answered with an error or not at all."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status
