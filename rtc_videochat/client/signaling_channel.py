"""Client side of the signaling websocket.

The channel owns one websocket connection to the relay and republishes its
lifecycle through four event channels: ``open``, ``close``, ``error`` and
``message``. Each ``message`` event carries exactly one decoded Envelope.
"""

import inspect
import logging
from typing import Any, Callable, Dict, List, Optional

import websockets
from websockets.asyncio.client import ClientConnection
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI
from websockets.protocol import State

from rtc_videochat.exceptions import ProtocolError, TransportError
from rtc_videochat.protocol import Envelope, decode_envelope, encode_envelope

logger = logging.getLogger(__name__)

DEFAULT_MAX_MESSAGE_SIZE = 16 * 1024 * 1024  # 16MB


class EventChannel:
    """A named event with any number of subscribers.

    Subscribers run in registration order. A subscriber returning an
    awaitable is awaited before the next one runs, so a slow handler delays
    later subscribers and later events instead of interleaving with them.
    """

    def __init__(self, name: str):
        self.name = name
        self._subscribers: List[Callable[..., Any]] = []

    def subscribe(self, handler: Callable[..., Any]) -> Callable[..., Any]:
        """Register a handler. Returns it so this can be used as a decorator."""
        self._subscribers.append(handler)
        return handler

    def unsubscribe(self, handler: Callable[..., Any]) -> None:
        self._subscribers.remove(handler)

    async def emit(self, *args) -> None:
        for handler in list(self._subscribers):
            try:
                result = handler(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.exception(f"Error in {self.name} handler {handler!r}: {e}")

    def __len__(self) -> int:
        return len(self._subscribers)


class SignalingChannel:
    """Websocket transport used by the call client.

    Sending on a connection that is not open is logged and dropped rather
    than raised, matching what a browser websocket does with late sends.

    Attributes:
        url: Relay websocket URL, e.g. ``ws://localhost:3000``.
        websocket: The underlying connection once ``connect`` succeeded.
        on_open, on_close, on_error, on_message: Event channels.
    """

    EVENTS = ("open", "close", "error", "message")

    def __init__(self, url: str, max_message_size: Optional[int] = DEFAULT_MAX_MESSAGE_SIZE):
        self.url = url
        self.max_message_size = max_message_size
        self.websocket: Optional[ClientConnection] = None

        self.on_open = EventChannel("open")
        self.on_close = EventChannel("close")
        self.on_error = EventChannel("error")
        self.on_message = EventChannel("message")

        self._closed_emitted = False
        self._listening = False

    @property
    def events(self) -> Dict[str, EventChannel]:
        return {
            "open": self.on_open,
            "close": self.on_close,
            "error": self.on_error,
            "message": self.on_message,
        }

    def on(self, event: str, handler: Callable[..., Any]) -> Callable[..., Any]:
        """Subscribe to an event by name.

        Raises:
            ValueError: If ``event`` is not one of ``EVENTS``.
        """
        try:
            channel = self.events[event]
        except KeyError:
            raise ValueError(
                f"Unknown event '{event}'. Valid events are: {', '.join(self.EVENTS)}"
            ) from None
        return channel.subscribe(handler)

    @property
    def is_open(self) -> bool:
        return self.websocket is not None and self.websocket.state is State.OPEN

    async def connect(self) -> None:
        """Open the websocket and emit ``open``.

        Raises:
            TransportError: If the relay cannot be reached.
        """
        try:
            self.websocket = await websockets.connect(self.url, max_size=self.max_message_size)
        except (OSError, InvalidURI, InvalidHandshake) as e:
            error = TransportError(f"Could not connect to {self.url}: {e}")
            await self.on_error.emit(error)
            raise error from e

        self._closed_emitted = False
        logger.info(f"Connected to signaling server at {self.url}")
        await self.on_open.emit()

    async def listen(self) -> None:
        """Receive envelopes until the connection closes, then emit ``close``."""
        if self.websocket is None:
            raise TransportError("listen() called before connect()")

        self._listening = True
        try:
            async for message in self.websocket:
                try:
                    envelope = decode_envelope(message)
                except ProtocolError as e:
                    logger.warning(f"Dropping undecodable message: {e}")
                    await self.on_error.emit(e)
                    continue
                logger.debug(f"Received {envelope.type} from {envelope.sender_id}")
                await self.on_message.emit(envelope)
        except ConnectionClosed as e:
            logger.info(f"Signaling connection closed: {e}")
        finally:
            self._listening = False
            await self._emit_close()

    async def send(self, envelope: Envelope) -> bool:
        """Serialize and send an envelope.

        Returns:
            True if the frame was handed to the transport, False if it was
            dropped because the connection is not open.
        """
        if not self.is_open:
            logger.warning(f"Signaling connection not open, dropping {envelope.type}")
            return False
        try:
            await self.websocket.send(encode_envelope(envelope))
        except ConnectionClosed as e:
            logger.warning(f"Signaling connection closed while sending {envelope.type}: {e}")
            await self.on_error.emit(TransportError(str(e)))
            return False
        return True

    async def close(self) -> None:
        """Close the websocket. ``close`` is emitted once ``listen`` returns,
        or immediately if nothing is listening."""
        if self.websocket is not None:
            await self.websocket.close()
            logger.info("Signaling connection closed")
        if not self._listening:
            await self._emit_close()

    async def _emit_close(self) -> None:
        if self._closed_emitted:
            return
        self._closed_emitted = True
        await self.on_close.emit()
