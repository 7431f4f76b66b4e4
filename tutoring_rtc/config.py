"""Configuration settings for the tutoring call negotiator and signaling relay."""

from pathlib import Path
from typing import List, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # Relay server settings
    host: str = "0.0.0.0"
    port: int = 8080
    https: bool = False
    ssl_cert: str = ""
    ssl_key: str = ""

    # Where the negotiator finds the relay and the session store
    base_url: str = "http://localhost:8080"
    http_timeout: float = 5.0

    # NAT traversal, at least two independent STUN servers
    ice_servers: List[str] = [
        "stun:stun.l.google.com:19302",
        "stun:stun1.l.google.com:19302",
    ]

    # Negotiation timings
    signal_poll_interval: float = 1.0
    offer_delay: float = 2.0
    signal_max_attempts: int = 3

    # Relay retention
    signal_history_size: int = 10
    session_store_path: Optional[Path] = None

    # Local capture devices (aiortc MediaPlayer file/format pairs, empty = platform default)
    camera_file: str = ""
    camera_format: str = ""
    camera_size: str = "640x480"
    camera_framerate: int = 30
    microphone_file: str = ""
    microphone_format: str = ""
    display_file: str = ""
    display_format: str = ""

    # Remote media: record to this file if set, otherwise consume and discard
    remote_record_path: Optional[Path] = None

    # Logging settings
    log_level: str = "DEBUG"
    log_file: Optional[str] = None


# Global settings instance
settings = Settings()
