"""Signaling message protocol for rtc-videochat.

This module defines the envelopes exchanged between call clients and the relay
server over the signaling websocket.

Message Protocol Overview
-------------------------

Every websocket frame carries exactly one JSON object (an *envelope*) with a
``type`` key. The relay only inspects ``type`` and ``room``; every other key is
forwarded untouched to the other members of the sender's room.

Message Types
-------------

**join**
    Sent by: Client
    Purpose: Places the connection in a room. Never forwarded.
    Format: {"type": "join", "room": "r1"}

**offer**
    Sent by: Calling client, forwarded to the room
    Purpose: Carries the caller's session description
    Format: {"type": "offer", "offer": {"type": "offer", "sdp": "..."}, "username": "alice"}

**answer**
    Sent by: Answering client, forwarded to the room
    Purpose: Carries the callee's session description
    Format: {"type": "answer", "answer": {"type": "answer", "sdp": "..."}, "username": "bob"}

**candidate**
    Sent by: Either client, forwarded to the room
    Purpose: Trickles one ICE candidate
    Format: {"type": "candidate",
             "candidate": {"candidate": "candidate:...", "sdpMid": "0", "sdpMLineIndex": 0},
             "username": "alice"}

**chat**
    Sent by: Either client, forwarded to the room
    Format: {"type": "chat", "message": "hi", "username": "alice"}

**file**
    Sent by: Either client, forwarded to the room
    Purpose: Shares a small file encoded as a data URL
    Format: {"type": "file", "file": "data:image/png;base64,...", "filename": "cat.png",
             "username": "alice"}

**end**
    Sent by: Either client, forwarded to the room
    Purpose: Hangs up the current call
    Format: {"type": "end"}

Sender Stamping
---------------

The relay adds ``senderId`` (the relay-assigned connection id) to every
forwarded envelope. A ``senderId`` supplied by a client is always overwritten,
so receivers can trust it to identify the sending connection.

Message Flow Example
--------------------

1. A → Relay: join r1
2. B → Relay: join r1
3. A → Relay → B: offer (senderId=A)
4. B → Relay → A: answer (senderId=B)
5. A ↔ B: candidate (any number, either direction)
6. A → Relay → B: end
"""

import json
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional, Union

from rtc_videochat.exceptions import ProtocolError

# Room membership
MSG_JOIN = "join"

# Negotiation
MSG_OFFER = "offer"
MSG_ANSWER = "answer"
MSG_CANDIDATE = "candidate"
MSG_END = "end"

# Application messages
MSG_CHAT = "chat"
MSG_FILE = "file"

# Types the relay stamps and forwards to the rest of the room.
FORWARDED_TYPES = frozenset(
    {MSG_OFFER, MSG_ANSWER, MSG_CANDIDATE, MSG_CHAT, MSG_FILE, MSG_END}
)
ENVELOPE_TYPES = FORWARDED_TYPES | {MSG_JOIN}

# Types handled by the negotiation state machine.
NEGOTIATION_TYPES = frozenset({MSG_OFFER, MSG_ANSWER, MSG_CANDIDATE, MSG_END})

# Wire keys that are lifted out of the payload.
KEY_TYPE = "type"
KEY_SENDER_ID = "senderId"
KEY_ROOM = "room"
KEY_USERNAME = "username"


@dataclass(frozen=True)
class Envelope:
    """One signaling message.

    Attributes:
        type: Message type (see ``ENVELOPE_TYPES``). Unknown types survive
            decoding so the relay can log and ignore them.
        payload: The type-specific keys (``offer``, ``answer``, ``candidate``,
            ``message``, ``file``, ``filename`` or anything else sent).
        sender_id: Relay-assigned id of the sending connection.
        room: Room name, only meaningful for ``join``.
        username: Display name of the sending user.
    """

    type: str
    payload: Dict[str, Any] = field(default_factory=dict)
    sender_id: Optional[str] = None
    room: Optional[str] = None
    username: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "Envelope":
        """Build an Envelope from a decoded JSON object.

        Raises:
            ProtocolError: If ``type`` is missing or not a string.
        """
        msg_type = data.get(KEY_TYPE)
        if not isinstance(msg_type, str) or not msg_type:
            raise ProtocolError(f"Envelope has no valid type: {msg_type!r}")

        payload = {
            key: value
            for key, value in data.items()
            if key not in (KEY_TYPE, KEY_SENDER_ID, KEY_ROOM, KEY_USERNAME)
        }
        return cls(
            type=msg_type,
            payload=payload,
            sender_id=data.get(KEY_SENDER_ID),
            room=data.get(KEY_ROOM),
            username=data.get(KEY_USERNAME),
        )

    def to_dict(self) -> dict:
        """Flatten the envelope back into its wire form, omitting unset keys."""
        data = {KEY_TYPE: self.type}
        data.update(self.payload)
        if self.room is not None:
            data[KEY_ROOM] = self.room
        if self.username is not None:
            data[KEY_USERNAME] = self.username
        if self.sender_id is not None:
            data[KEY_SENDER_ID] = self.sender_id
        return data

    def with_sender(self, sender_id: str) -> "Envelope":
        """Return a copy stamped with the given sender id."""
        return replace(self, sender_id=sender_id)

    def get(self, key: str, default: Any = None) -> Any:
        """Read a payload value."""
        return self.payload.get(key, default)

    @property
    def is_forwarded(self) -> bool:
        return self.type in FORWARDED_TYPES


def encode_envelope(envelope: Envelope) -> str:
    """Serialize an envelope into a websocket text frame.

    Examples:
        >>> encode_envelope(Envelope(type="join", room="r1"))
        '{"type": "join", "room": "r1"}'
    """
    return json.dumps(envelope.to_dict())


def decode_envelope(message: Union[str, bytes]) -> Envelope:
    """Parse a websocket frame into an envelope.

    Args:
        message: Raw text (or UTF-8 bytes) received from the websocket.

    Returns:
        The decoded Envelope.

    Raises:
        ProtocolError: If the frame is not a JSON object with a string ``type``.

    Examples:
        >>> decode_envelope('{"type": "chat", "message": "hi"}').get("message")
        'hi'
    """
    if isinstance(message, bytes):
        try:
            message = message.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ProtocolError(f"Frame is not valid UTF-8: {e}") from e

    try:
        data = json.loads(message)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"Invalid JSON received: {e}") from e

    if not isinstance(data, dict):
        raise ProtocolError(f"Envelope must be a JSON object, got {type(data).__name__}")

    return Envelope.from_dict(data)


# =============================================================================
# Envelope builders
# =============================================================================


def join_envelope(room: str) -> Envelope:
    return Envelope(type=MSG_JOIN, room=room)


def offer_envelope(description: dict, username: str) -> Envelope:
    return Envelope(type=MSG_OFFER, payload={"offer": description}, username=username)


def answer_envelope(description: dict, username: str) -> Envelope:
    return Envelope(type=MSG_ANSWER, payload={"answer": description}, username=username)


def candidate_envelope(candidate: dict, username: str) -> Envelope:
    return Envelope(
        type=MSG_CANDIDATE, payload={"candidate": candidate}, username=username
    )


def chat_envelope(message: str, username: str) -> Envelope:
    return Envelope(type=MSG_CHAT, payload={"message": message}, username=username)


def file_envelope(data_url: str, filename: str, username: str) -> Envelope:
    return Envelope(
        type=MSG_FILE,
        payload={"file": data_url, "filename": filename},
        username=username,
    )


def end_envelope() -> Envelope:
    return Envelope(type=MSG_END)
