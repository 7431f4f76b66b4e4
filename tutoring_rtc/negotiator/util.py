from datetime import datetime, timezone
from typing import Optional

from aiortc import RTCIceCandidate  # type: ignore
from aiortc.sdp import candidate_from_sdp  # type: ignore

from .signals import IceCandidatePayload


def candidate_from_payload(payload: IceCandidatePayload) -> Optional[RTCIceCandidate]:
    """Convert a browser-style ``RTCIceCandidateInit`` into an aiortc candidate.

    Returns None for the empty end-of-candidates marker.
    Raises ValueError when the candidate line cannot be parsed.
    """
    text = payload.candidate.strip()
    if not text:
        return None
    if text.startswith("a="):
        text = text[2:]
    if text.startswith("candidate:"):
        text = text[len("candidate:"):]
    try:
        candidate = candidate_from_sdp(text)
    except (AssertionError, IndexError, ValueError) as exc:
        raise ValueError(f"malformed ICE candidate {payload.candidate!r}") from exc
    candidate.sdpMid = payload.sdp_mid
    candidate.sdpMLineIndex = payload.sdp_mline_index
    return candidate


def elapsed_minutes(start: datetime, now: Optional[datetime] = None) -> int:
    """Whole minutes between ``start`` and ``now`` (UTC), never negative."""
    if start.tzinfo is None:
        start = start.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max(0, int((now - start).total_seconds() // 60))
