"""Session negotiator: one peer-to-peer media call per tutoring session."""

from .negotiator import SessionNegotiator
from .state import MediaState

__all__ = ["SessionNegotiator", "MediaState"]
