"""Peer-to-peer tutoring call negotiation over an HTTP polling signaling relay."""

__version__ = "0.1.0"
