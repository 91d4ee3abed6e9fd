"""Offer/answer/ICE negotiation for a single call.

The state machine owns at most one NegotiationSession at a time:

    IDLE -> OFFERING -> AWAITING_ANSWER -> CONNECTED -> ENDED   (we call)
    IDLE -> ANSWERING_OFFER -> CONNECTED -> ENDED               (we answer)

Every await on the peer connection is a suspend point. When it resumes, the
session is checked against the active one; a session that was terminated or
replaced in the meantime discards the result instead of moving state forward.

Remote ICE candidates that arrive before the remote description is applied
are queued with their sender and flushed, in arrival order, right after it is
applied. Queued candidates from anyone but the counterpart are dropped then.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Tuple

from rtc_videochat.client.peer_connection import PeerConnectionCapability
from rtc_videochat.client.presentation import CALL_CONTROLS, NullPresentation
from rtc_videochat.exceptions import MediaAcquisitionError, NegotiationError
from rtc_videochat.protocol import (
    MSG_ANSWER,
    MSG_CANDIDATE,
    MSG_END,
    MSG_OFFER,
    Envelope,
    answer_envelope,
    candidate_envelope,
    end_envelope,
    offer_envelope,
)

logger = logging.getLogger(__name__)


class Phase(Enum):
    IDLE = "idle"
    OFFERING = "offering"
    AWAITING_ANSWER = "awaiting_answer"
    ANSWERING_OFFER = "answering_offer"
    CONNECTED = "connected"
    ENDED = "ended"


class EndReason(Enum):
    LOCAL = "local"  # the user hung up
    REMOTE = "remote"  # an end envelope arrived
    TRANSPORT_CLOSED = "transport_closed"  # the signaling connection dropped
    FAILURE = "failure"  # the peer connection rejected a step


@dataclass
class NegotiationSession:
    """State of one call attempt.

    Attributes:
        initiated_locally: True if we sent the offer.
        phase: Current lifecycle phase.
        peer_connection: Capability owned by this session; closed on end.
        local_stream: Local media attached to the call, if any.
        local_description: Description produced by create_offer/create_answer.
        remote_description: Description received from the counterpart, set
            only once the peer connection accepted it.
        pending_candidates: (sender id, candidate) pairs waiting for the remote
            description.
        remote_peer_id: Relay id of the counterpart, once known.
        remote_username: Display name announced by the counterpart.
        muted: True while local audio is withheld from the call.
    """

    initiated_locally: bool
    phase: Phase = Phase.IDLE
    peer_connection: Optional[PeerConnectionCapability] = None
    local_stream: Any = None
    local_description: Optional[dict] = None
    remote_description: Optional[dict] = None
    pending_candidates: List[Tuple[Optional[str], dict]] = field(default_factory=list)
    remote_peer_id: Optional[str] = None
    remote_username: Optional[str] = None
    muted: bool = False


class NegotiationStateMachine:
    """Drives one peer's side of the offer/answer/ICE exchange.

    Args:
        send: Coroutine used to emit outbound envelopes.
        peer_connection_factory: Returns a fresh peer-connection capability
            for each session.
        media_source: Object with ``async acquire()`` returning the local
            stream. Required to place calls.
        presentation: UI sink; defaults to one that discards updates.
        username: Local display name sent with offers, answers and candidates.
        answer_with_media: Attach local media when answering as well.
        on_remote_username: Called with the counterpart's display name.
        on_session_ended: Called after a session has been torn down.
        on_failure: Called with the NegotiationError/MediaAcquisitionError
            of a failed inbound negotiation step.
    """

    def __init__(
        self,
        send: Callable[[Envelope], Awaitable[Any]],
        peer_connection_factory: Callable[[], PeerConnectionCapability],
        media_source: Any = None,
        presentation: Any = None,
        username: str = "You",
        answer_with_media: bool = False,
        on_remote_username: Optional[Callable[[str], None]] = None,
        on_session_ended: Optional[Callable[[], None]] = None,
        on_failure: Optional[Callable[[Exception], None]] = None,
    ):
        self.send = send
        self.peer_connection_factory = peer_connection_factory
        self.media_source = media_source
        self.presentation = presentation if presentation is not None else NullPresentation()
        self.username = username
        self.answer_with_media = answer_with_media
        self.on_remote_username = on_remote_username
        self.on_session_ended = on_session_ended
        self.on_failure = on_failure

        self.session: Optional[NegotiationSession] = None

    @property
    def phase(self) -> Phase:
        return Phase.IDLE if self.session is None else self.session.phase

    @property
    def in_call(self) -> bool:
        return self.phase not in (Phase.IDLE, Phase.ENDED)

    @property
    def remote_username(self) -> Optional[str]:
        return None if self.session is None else self.session.remote_username

    # ===== Outbound call =====

    async def initiate(self) -> None:
        """Start a call: acquire media, create an offer and send it.

        Raises:
            NegotiationError: If a call is already in progress or the peer
                connection rejects the offer.
            MediaAcquisitionError: If local media cannot be acquired. No
                session is started in that case.
        """
        if self.in_call:
            raise NegotiationError(f"A call is already in progress ({self.phase.value})")
        if self.media_source is None:
            raise MediaAcquisitionError("No media source configured")

        session = NegotiationSession(initiated_locally=True)
        self.session = session
        logger.info("Starting call")

        try:
            stream = await self.media_source.acquire()
        except MediaAcquisitionError:
            if self.session is session:
                self.session = None
            raise

        if not self._is_active(session):
            logger.info("Call was ended while acquiring media")
            stream.stop()
            return

        session.local_stream = stream
        self.presentation.attach_local_stream(stream)

        session.phase = Phase.OFFERING
        try:
            peer_connection = self._open_peer_connection(session)
            peer_connection.add_stream(stream)
            offer = await peer_connection.create_offer()
        except Exception as e:
            error = NegotiationError(f"Failed to create offer: {e}")
            await self._fail(session, error)
            raise error from e

        if not self._is_active(session):
            logger.info("Discarding offer for a call that already ended")
            return

        session.local_description = offer
        session.phase = Phase.AWAITING_ANSWER
        await self.send(offer_envelope(offer, self.username))
        self._show_call_controls(True)
        logger.info("Offer sent, waiting for answer")

    async def terminate(self, reason: EndReason = EndReason.LOCAL) -> None:
        """End the current session and release its resources.

        Safe to call repeatedly; only the first call on a session has an
        effect. An ``end`` envelope is sent when the user hangs up, and after a
        failure once the counterpart may already be waiting on us.
        """
        session = self.session
        if session is None or session.phase is Phase.ENDED:
            return

        engaged = session.local_description is not None or session.remote_description is not None
        session.phase = Phase.ENDED
        logger.info(f"Ending call ({reason.value})")

        if reason is EndReason.LOCAL or (reason is EndReason.FAILURE and engaged):
            await self.send(end_envelope())

        if session.local_stream is not None:
            session.local_stream.stop()
        if session.peer_connection is not None:
            try:
                await session.peer_connection.close()
            except Exception as e:
                logger.warning(f"Error closing peer connection: {e}")
        session.pending_candidates.clear()

        self.presentation.attach_local_stream(None)
        self.presentation.attach_remote_stream(None)
        self.presentation.reset_presentation()
        self._show_call_controls(False)

        if self.on_session_ended is not None:
            self.on_session_ended()

    # ===== Microphone =====

    @property
    def muted(self) -> bool:
        return self.session is not None and self.session.muted

    def set_muted(self, muted: bool) -> bool:
        """Withhold or restore local audio on the active call.

        The audio sender keeps its slot in the negotiated session, so no new
        offer is needed.

        Returns:
            False if there is no call with local audio to act on.
        """
        session = self.session
        if (
            not self.in_call
            or session.peer_connection is None
            or session.local_stream is None
            or not session.local_stream.get_audio_tracks()
        ):
            return False

        if muted:
            session.peer_connection.mute()
        else:
            session.peer_connection.unmute()
        session.muted = muted
        self.presentation.show_control("mute", not muted)
        self.presentation.show_control("unmute", muted)
        logger.info("Microphone muted" if muted else "Microphone unmuted")
        return True

    def mute(self) -> bool:
        return self.set_muted(True)

    def unmute(self) -> bool:
        return self.set_muted(False)

    # ===== Inbound envelopes =====

    async def handle_envelope(self, envelope: Envelope) -> bool:
        """Apply a negotiation envelope.

        Returns:
            True if the envelope was a negotiation type, False otherwise.
        """
        handlers = {
            MSG_OFFER: self._handle_offer,
            MSG_ANSWER: self._handle_answer,
            MSG_CANDIDATE: self._handle_candidate,
            MSG_END: self._handle_end,
        }
        handler = handlers.get(envelope.type)
        if handler is None:
            return False
        await handler(envelope)
        return True

    async def _handle_offer(self, envelope: Envelope) -> None:
        if self.in_call:
            logger.warning(
                f"Ignoring offer from {envelope.sender_id}: call already {self.phase.value}"
            )
            return

        description = envelope.get("offer")
        if not isinstance(description, dict):
            logger.warning(f"Ignoring offer from {envelope.sender_id} without a description")
            return

        logger.info(f"Received offer from {envelope.username} ({envelope.sender_id})")
        session = NegotiationSession(
            initiated_locally=False,
            phase=Phase.ANSWERING_OFFER,
            remote_peer_id=envelope.sender_id,
            remote_username=envelope.username,
        )
        self.session = session

        if self.answer_with_media and self.media_source is not None:
            try:
                stream = await self.media_source.acquire()
            except MediaAcquisitionError as e:
                await self._fail_inbound(session, e)
                return
            if not self._is_active(session):
                stream.stop()
                return
            session.local_stream = stream
            self.presentation.attach_local_stream(stream)

        try:
            peer_connection = self._open_peer_connection(session)
            if session.local_stream is not None:
                peer_connection.add_stream(session.local_stream)
            await peer_connection.set_remote_description(description)
            if not self._is_active(session):
                return
            session.remote_description = description
            await self._flush_candidates(session)
            if not self._is_active(session):
                return
            answer = await peer_connection.create_answer()
        except Exception as e:
            await self._fail_inbound(session, NegotiationError(f"Failed to answer offer: {e}"))
            return

        if not self._is_active(session):
            logger.info("Discarding answer for a call that already ended")
            return

        session.local_description = answer
        session.phase = Phase.CONNECTED
        await self.send(answer_envelope(answer, self.username))
        self._show_call_controls(True)
        self._announce_remote_username(session)
        logger.info("Answer sent, call connected")

    async def _handle_answer(self, envelope: Envelope) -> None:
        session = self.session
        if session is None or session.phase is not Phase.AWAITING_ANSWER:
            logger.warning(f"Ignoring answer from {envelope.sender_id}: phase is {self.phase.value}")
            return

        description = envelope.get("answer")
        if not isinstance(description, dict):
            logger.warning(f"Ignoring answer from {envelope.sender_id} without a description")
            return

        logger.info(f"Received answer from {envelope.username} ({envelope.sender_id})")
        session.remote_peer_id = envelope.sender_id
        session.remote_username = envelope.username

        try:
            await session.peer_connection.set_remote_description(description)
            if not self._is_active(session):
                return
            session.remote_description = description
            await self._flush_candidates(session)
        except Exception as e:
            await self._fail_inbound(session, NegotiationError(f"Failed to apply answer: {e}"))
            return

        if not self._is_active(session):
            return

        session.phase = Phase.CONNECTED
        self._announce_remote_username(session)
        logger.info("Call connected")

    async def _handle_candidate(self, envelope: Envelope) -> None:
        session = self.session
        if session is None or session.phase in (Phase.IDLE, Phase.ENDED):
            logger.debug(f"Dropping candidate from {envelope.sender_id}: no active call")
            return
        if not self._from_counterpart(session, envelope.sender_id):
            logger.debug(f"Dropping candidate from {envelope.sender_id}: not our counterpart")
            return

        candidate = envelope.get("candidate")
        if not isinstance(candidate, dict):
            logger.debug("Received empty ICE candidate (end of candidates)")
            return

        # Keep order behind any candidates still being flushed.
        if session.remote_description is None or session.pending_candidates:
            session.pending_candidates.append((envelope.sender_id, candidate))
            logger.debug(f"Queued ICE candidate ({len(session.pending_candidates)} pending)")
            return

        try:
            await session.peer_connection.add_ice_candidate(candidate)
        except Exception as e:
            await self._fail_inbound(session, NegotiationError(f"Failed to add ICE candidate: {e}"))

    async def _handle_end(self, envelope: Envelope) -> None:
        session = self.session
        if session is None or session.phase is Phase.ENDED:
            logger.debug("Received end with no active call")
            return
        if not self._from_counterpart(session, envelope.sender_id):
            logger.debug(f"Ignoring end from {envelope.sender_id}: not our counterpart")
            return
        logger.info(f"Remote peer {envelope.sender_id} ended the call")
        await self.terminate(EndReason.REMOTE)

    # ===== Helpers =====

    def _open_peer_connection(self, session: NegotiationSession) -> PeerConnectionCapability:
        peer_connection = self.peer_connection_factory()

        async def on_ice_candidate(candidate: dict) -> None:
            if not self._is_active(session):
                return
            await self.send(candidate_envelope(candidate, self.username))

        def on_remote_stream(stream: Any) -> None:
            if self._is_active(session):
                self.presentation.attach_remote_stream(stream)

        peer_connection.on_ice_candidate = on_ice_candidate
        peer_connection.on_remote_stream = on_remote_stream
        session.peer_connection = peer_connection
        return peer_connection

    async def _flush_candidates(self, session: NegotiationSession) -> None:
        if session.pending_candidates:
            logger.info(f"Applying {len(session.pending_candidates)} queued ICE candidate(s)")
        while session.pending_candidates and self._is_active(session):
            sender_id, candidate = session.pending_candidates[0]
            if self._from_counterpart(session, sender_id):
                await session.peer_connection.add_ice_candidate(candidate)
            else:
                logger.debug(f"Dropping queued candidate from {sender_id}: not our counterpart")
            if session.pending_candidates:
                session.pending_candidates.pop(0)

    def _is_active(self, session: NegotiationSession) -> bool:
        return session is self.session and session.phase is not Phase.ENDED

    @staticmethod
    def _from_counterpart(session: NegotiationSession, sender_id: Optional[str]) -> bool:
        return (
            session.remote_peer_id is None
            or sender_id is None
            or sender_id == session.remote_peer_id
        )

    def _announce_remote_username(self, session: NegotiationSession) -> None:
        if session.remote_username is None:
            return
        self.presentation.set_remote_username(session.remote_username)
        if self.on_remote_username is not None:
            self.on_remote_username(session.remote_username)

    def _show_call_controls(self, visible: bool) -> None:
        for name in CALL_CONTROLS:
            self.presentation.show_control(name, visible and name != "unmute")

    async def _fail(self, session: NegotiationSession, error: Exception) -> None:
        logger.error(f"Negotiation failed: {error}")
        if session is self.session:
            await self.terminate(EndReason.FAILURE)

    async def _fail_inbound(self, session: NegotiationSession, error: Exception) -> None:
        await self._fail(session, error)
        self._report_failure(error)

    def _report_failure(self, error: Exception) -> None:
        if self.on_failure is not None:
            self.on_failure(error)
