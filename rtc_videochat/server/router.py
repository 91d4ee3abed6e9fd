"""Routes decoded signaling envelopes to the right members of a room."""

import logging
from typing import Any

from websockets.asyncio.server import broadcast
from websockets.protocol import State

from rtc_videochat.exceptions import ProtocolError
from rtc_videochat.protocol import MSG_JOIN, Envelope, encode_envelope
from rtc_videochat.server.registry import ConnectionRegistry, PeerRecord

logger = logging.getLogger(__name__)


def is_transport_open(transport: Any) -> bool:
    """Check whether a websocket connection can still be written to."""
    return getattr(transport, "state", None) is State.OPEN


class RelayRouter:
    """Dispatches envelopes by type against a ConnectionRegistry.

    - ``join`` assigns the sender's room and is never forwarded.
    - Forwarded types are stamped with the sender's id and sent to every
      other open connection in the sender's room.
    - Unknown types are logged and dropped.
    """

    def __init__(self, registry: ConnectionRegistry):
        self.registry = registry

    async def route(self, envelope: Envelope, sender: PeerRecord) -> int:
        """Handle one envelope received from ``sender``.

        Args:
            envelope: Decoded envelope as sent by the client.
            sender: Registry record of the sending connection.

        Returns:
            Number of connections the envelope was delivered to.

        Raises:
            ProtocolError: If a ``join`` carries no usable room name.
        """
        if envelope.type == MSG_JOIN:
            room = envelope.room
            if not isinstance(room, str) or not room:
                raise ProtocolError(f"join from {sender.id} has no room: {room!r}")
            self.registry.set_room(sender.id, room)
            return 0

        if envelope.is_forwarded:
            return self.broadcast(envelope.with_sender(sender.id), sender)

        logger.info(f"Ignoring unknown message type {envelope.type!r} from {sender.id}")
        return 0

    def broadcast(self, envelope: Envelope, sender: PeerRecord) -> int:
        """Send an already-stamped envelope to the rest of the sender's room.

        The frame is written to every open recipient without waiting on any
        of them, so a peer that stops reading never holds up the others or
        the sender. A failed write to one recipient is logged and does not
        stop delivery to the rest.
        """
        room = sender.room
        if room is None:
            logger.warning(
                f"Dropping {envelope.type} from {sender.id}: connection has not joined a room"
            )
            return 0

        recipients = [
            record.transport
            for record in self.registry.members_of(room, exclude=sender.id)
            if is_transport_open(record.transport)
        ]
        if not recipients:
            logger.debug(f"No open peers in room {room} for {envelope.type} from {sender.id}")
            return 0

        failed = 0
        try:
            broadcast(recipients, encode_envelope(envelope), raise_exceptions=True)
        except ExceptionGroup as group:
            failed = len(group.exceptions)
            for error in group.exceptions:
                logger.warning(
                    f"Failed to forward {envelope.type} from {sender.id}: {error.__cause__ or error}"
                )

        delivered = len(recipients) - failed
        logger.info(
            f"Forwarded {envelope.type} from {sender.id} to {delivered} peer(s) in room {room}"
        )
        return delivered
