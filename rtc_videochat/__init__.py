"""rtc-videochat: room-based WebRTC signaling relay and call client."""

__version__ = "0.1.0"
