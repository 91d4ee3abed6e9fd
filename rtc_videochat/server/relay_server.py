"""WebSocket relay server that groups connections into rooms.

Each accepted websocket gets one handler task. Messages from a connection are
decoded and routed one at a time, so a sender's envelopes reach the room in
the order they were received.
"""

import asyncio
import logging
from http import HTTPStatus
from typing import Optional

import websockets
from websockets.asyncio.server import ServerConnection
from websockets.exceptions import ConnectionClosed

from rtc_videochat.exceptions import ProtocolError
from rtc_videochat.protocol import decode_envelope
from rtc_videochat.server.registry import ConnectionRegistry
from rtc_videochat.server.router import RelayRouter

logger = logging.getLogger(__name__)

HEALTH_PATH = "/healthz"
DEFAULT_MAX_MESSAGE_SIZE = 16 * 1024 * 1024  # 16MB, large enough for shared images


class RelayServer:
    """Accepts signaling connections and relays envelopes within rooms.

    Attributes:
        registry: Connection registry shared by all handlers.
        router: Router used to dispatch every decoded envelope.
        max_message_size: Largest frame accepted by the websocket transport,
            or None for no limit.
    """

    def __init__(
        self,
        registry: Optional[ConnectionRegistry] = None,
        max_message_size: Optional[int] = DEFAULT_MAX_MESSAGE_SIZE,
    ):
        self.registry = registry if registry is not None else ConnectionRegistry()
        self.router = RelayRouter(self.registry)
        self.max_message_size = max_message_size

    async def handler(self, websocket: ServerConnection):
        """Handle a websocket connection for its whole lifetime."""
        peer_id = self.registry.register(websocket)
        record = self.registry.get(peer_id)
        logger.info(f"WebSocket connection established with ID: {peer_id}")

        try:
            async for message in websocket:
                try:
                    envelope = decode_envelope(message)
                    await self.router.route(envelope, record)
                except ProtocolError as e:
                    logger.warning(f"Dropping message from {peer_id}: {e}")

        except ConnectionClosed:
            logger.info(f"Connection closed: {peer_id}")
        finally:
            self.registry.unregister(peer_id)
            logger.info(f"WebSocket connection closed for ID: {peer_id}")

    async def process_request(self, connection, request):
        """Answer health checks over plain HTTP; let everything else upgrade."""
        if request.path == HEALTH_PATH:
            return connection.respond(HTTPStatus.OK, "OK\n")
        return None

    def serve(self, host: str, port: int):
        """Create the websocket server (use as an async context manager)."""
        return websockets.serve(
            self.handler,
            host,
            port,
            process_request=self.process_request,
            max_size=self.max_message_size,
        )

    async def serve_forever(self, host: str, port: int):
        """Start the relay and run until cancelled."""
        async with self.serve(host, port):
            logger.info(f"Signaling server running on ws://{host}:{port}")
            await asyncio.Future()  # Run forever


def run_relay_server(
    host: str = "localhost",
    port: int = 3000,
    max_message_size: Optional[int] = DEFAULT_MAX_MESSAGE_SIZE,
) -> None:
    """Standalone function to run the relay server until interrupted."""
    server = RelayServer(max_message_size=max_message_size)
    try:
        asyncio.run(server.serve_forever(host, port))
    except KeyboardInterrupt:
        logger.info("Server stopped")
