"""Call client: joins a room and runs calls, chat and file sharing in it."""

from pathlib import Path
from typing import Any, Callable, List, Optional, Union

from loguru import logger

from rtc_videochat.client.file_share import encode_file
from rtc_videochat.client.negotiation import EndReason, NegotiationStateMachine, Phase
from rtc_videochat.client.peer_connection import AiortcPeerConnection
from rtc_videochat.client.presentation import ConsolePresentation
from rtc_videochat.client.signaling_channel import SignalingChannel
from rtc_videochat.exceptions import MediaAcquisitionError, NegotiationError
from rtc_videochat.protocol import (
    MSG_CHAT,
    MSG_FILE,
    Envelope,
    chat_envelope,
    file_envelope,
    join_envelope,
)

ANONYMOUS = "Anonymous"


class CallClient:
    """One user in one room.

    Wires a SignalingChannel to a NegotiationStateMachine and handles the
    chat and file envelopes that do not take part in negotiation.

    Args:
        url: Relay websocket URL.
        room: Room joined as soon as the connection opens.
        username: Local display name.
        media_source: Local media for outgoing calls.
        presentation: UI sink; defaults to ConsolePresentation.
        peer_connection_factory: Builds the peer connection for each call;
            defaults to aiortc with ``ice_servers``.
        ice_servers: STUN/TURN URLs for the default peer connection.
        answer_with_media: Send local media when answering calls.
        channel: Pre-built signaling channel, mainly for tests.
    """

    def __init__(
        self,
        url: str,
        room: str,
        username: str = "You",
        media_source: Any = None,
        presentation: Any = None,
        peer_connection_factory: Optional[Callable[[], Any]] = None,
        ice_servers: Optional[List[str]] = None,
        answer_with_media: bool = False,
        channel: Optional[SignalingChannel] = None,
    ):
        self.room = room
        self.username = username
        self.channel = channel if channel is not None else SignalingChannel(url)
        self.presentation = presentation if presentation is not None else ConsolePresentation()

        if peer_connection_factory is None:
            def peer_connection_factory():
                return AiortcPeerConnection(ice_servers=ice_servers)

        self.negotiation = NegotiationStateMachine(
            send=self.channel.send,
            peer_connection_factory=peer_connection_factory,
            media_source=media_source,
            presentation=self.presentation,
            username=username,
            answer_with_media=answer_with_media,
            on_remote_username=self.handle_remote_username,
            on_session_ended=self.handle_session_ended,
            on_failure=self.handle_failure,
        )

        self.channel.on("open", self.handle_open)
        self.channel.on("error", self.handle_error)
        self.channel.on("close", self.handle_close)
        self.channel.on("message", self.handle_message)

    @property
    def phase(self) -> Phase:
        return self.negotiation.phase

    def set_username(self, username: str) -> str:
        """Change the local display name. Blank names become 'Anonymous'."""
        self.username = username.strip() or ANONYMOUS
        self.negotiation.username = self.username
        logger.info(f"Username set to: {self.username}")
        return self.username

    # ===== Signaling events =====

    async def handle_open(self) -> None:
        logger.info(f"Joining room {self.room}")
        await self.channel.send(join_envelope(self.room))

    def handle_error(self, error: Exception) -> None:
        logger.warning(f"Signaling error: {error}")

    async def handle_close(self) -> None:
        logger.info("Signaling connection closed")
        await self.negotiation.terminate(EndReason.TRANSPORT_CLOSED)

    async def handle_message(self, envelope: Envelope) -> None:
        if await self.negotiation.handle_envelope(envelope):
            return

        if envelope.type == MSG_CHAT:
            self.presentation.append_chat_entry(
                envelope.username or ANONYMOUS, str(envelope.get("message", ""))
            )
        elif envelope.type == MSG_FILE:
            self.presentation.append_file_entry(
                envelope.username or ANONYMOUS,
                str(envelope.get("filename", "")),
                envelope.get("file"),
            )
        else:
            logger.debug(f"Unhandled message type: {envelope.type}")

    # ===== State machine callbacks =====

    def handle_remote_username(self, username: str) -> None:
        logger.info(f"Remote user: {username}")

    def handle_session_ended(self) -> None:
        logger.info("Call ended")

    def handle_failure(self, error: Exception) -> None:
        self.presentation.show_notice(f"Call failed: {error}")

    # ===== User actions =====

    async def start_call(self) -> bool:
        """Place a call to the room.

        Returns:
            True if the offer was sent, False if the call could not start.
        """
        try:
            await self.negotiation.initiate()
        except MediaAcquisitionError as e:
            logger.error(f"Error accessing media devices: {e}")
            self.presentation.show_notice(f"Could not access camera/microphone: {e}")
            return False
        except NegotiationError as e:
            logger.error(f"Could not start call: {e}")
            self.presentation.show_notice(str(e))
            return False
        return self.negotiation.phase is Phase.AWAITING_ANSWER

    async def end_call(self) -> None:
        await self.negotiation.terminate(EndReason.LOCAL)

    def mute(self) -> bool:
        """Stop sending microphone audio on the current call."""
        if not self.negotiation.mute():
            self.presentation.show_notice("No microphone to mute")
            return False
        return True

    def unmute(self) -> bool:
        if not self.negotiation.unmute():
            self.presentation.show_notice("No microphone to unmute")
            return False
        return True

    async def send_chat(self, message: str) -> bool:
        """Send a chat line to the room. Blank messages are not sent."""
        message = message.strip()
        if not message:
            return False
        sent = await self.channel.send(chat_envelope(message, self.username))
        self.presentation.append_chat_entry(self.username, message, sent=True)
        return sent

    async def send_file(self, file_path: Union[str, Path]) -> bool:
        """Share a file with the room.

        Raises:
            FileNotFoundError: If the file does not exist.
        """
        path = Path(file_path)
        if not path.is_file():
            raise FileNotFoundError(f"File not found: {file_path}")

        data_url, filename = encode_file(path)
        sent = await self.channel.send(file_envelope(data_url, filename, self.username))
        self.presentation.append_file_entry(self.username, filename, data_url, sent=True)
        logger.info(f"Shared file {filename} ({path.stat().st_size} bytes)")
        return sent

    # ===== Lifecycle =====

    async def run(self) -> None:
        """Connect and process signaling messages until the connection closes."""
        await self.channel.connect()
        await self.channel.listen()

    async def close(self) -> None:
        """Hang up and disconnect."""
        await self.end_call()
        await self.channel.close()
