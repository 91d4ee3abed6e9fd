"""Standalone WebSocket signaling relay for rtc-videochat.

Connections join a room with {"type": "join", "room": ...}; every offer,
answer, candidate, chat, file and end message is then stamped with the
sender's id and forwarded to the other members of that room.

Usage:
    python signaling_server.py [--host HOST] [--port PORT]

Examples:
    python signaling_server.py
    python signaling_server.py --port 8080
    python signaling_server.py --host 0.0.0.0 --port 9000
"""

import argparse
import logging

from rtc_videochat.server.relay_server import DEFAULT_MAX_MESSAGE_SIZE, run_relay_server

logging.basicConfig(level=logging.INFO)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="WebRTC signaling relay with rooms")
    parser.add_argument("--host", default="localhost", help="Host to bind to (default: localhost)")
    parser.add_argument("--port", type=int, default=3000, help="Port to listen on (default: 3000)")
    parser.add_argument(
        "--max-message-size",
        type=int,
        default=DEFAULT_MAX_MESSAGE_SIZE,
        help="Largest websocket frame accepted, in bytes (default: 16MB)",
    )

    args = parser.parse_args()
    run_relay_server(args.host, args.port, args.max_message_size)
