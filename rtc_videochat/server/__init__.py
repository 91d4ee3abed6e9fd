"""Relay server: connection registry, room router and websocket handler."""

from rtc_videochat.server.registry import ConnectionRegistry, PeerRecord
from rtc_videochat.server.router import RelayRouter, is_transport_open
from rtc_videochat.server.relay_server import RelayServer, run_relay_server

__all__ = [
    "ConnectionRegistry",
    "PeerRecord",
    "RelayRouter",
    "RelayServer",
    "is_transport_open",
    "run_relay_server",
]
