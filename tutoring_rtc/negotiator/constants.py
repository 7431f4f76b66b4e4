"""Constants for the session negotiator components."""
from __future__ import annotations

import platform

__all__ = [
    "DEFAULT_CAMERA",
    "DEFAULT_MICROPHONE",
    "DEFAULT_DISPLAY",
    "SYSTEM",
    "CAMERA",
    "MICROPHONE",
    "DISPLAY",
]

SYSTEM = platform.system()

# Device labels used in logs and MediaAcquisitionError
CAMERA = "camera"
MICROPHONE = "microphone"
DISPLAY = "display"

# (file, format) pairs understood by aiortc.contrib.media.MediaPlayer, per platform
if SYSTEM == "Darwin":
    DEFAULT_CAMERA = ("default:none", "avfoundation")
    DEFAULT_MICROPHONE = ("none:default", "avfoundation")
    DEFAULT_DISPLAY = ("Capture screen 0:none", "avfoundation")
elif SYSTEM == "Windows":
    DEFAULT_CAMERA = ("video=Integrated Camera", "dshow")
    DEFAULT_MICROPHONE = ("audio=Microphone", "dshow")
    DEFAULT_DISPLAY = ("desktop", "gdigrab")
else:
    DEFAULT_CAMERA = ("/dev/video0", "v4l2")
    DEFAULT_MICROPHONE = ("default", "pulse")
    DEFAULT_DISPLAY = (":0.0", "x11grab")
