"""Peer-connection capability used by the negotiation state machine.

The state machine only depends on the ``PeerConnectionCapability`` protocol.
``AiortcPeerConnection`` implements it on top of ``aiortc.RTCPeerConnection``
and converts between aiortc objects and the plain dictionaries carried in
signaling envelopes:

- session descriptions: ``{"type": "offer" | "answer", "sdp": "..."}``
- ICE candidates: ``{"candidate": "candidate:...", "sdpMid": "0", "sdpMLineIndex": 0}``
"""

import logging
from typing import Any, Awaitable, Callable, List, Optional, Protocol

from aiortc import (
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.sdp import candidate_from_sdp

from rtc_videochat.client.media import MediaStream

logger = logging.getLogger(__name__)

CANDIDATE_PREFIX = "candidate:"


class PeerConnectionCapability(Protocol):
    """What the negotiation state machine needs from a peer connection.

    ``on_ice_candidate`` is assigned by the state machine and awaited with a
    candidate dict whenever a local candidate is discovered.
    ``on_remote_stream`` is called with a MediaStream when remote tracks
    arrive.
    """

    on_ice_candidate: Optional[Callable[[dict], Awaitable[None]]]
    on_remote_stream: Optional[Callable[[Any], None]]

    def add_stream(self, stream: Any) -> None: ...

    def mute(self) -> None: ...

    def unmute(self) -> None: ...

    async def create_offer(self) -> dict: ...

    async def create_answer(self) -> dict: ...

    async def set_remote_description(self, description: dict) -> None: ...

    async def add_ice_candidate(self, candidate: dict) -> None: ...

    async def close(self) -> None: ...


class AiortcPeerConnection:
    """aiortc implementation of the peer-connection capability.

    aiortc finishes ICE gathering before ``setLocalDescription`` returns and
    puts every local candidate in the description itself, so this class never
    calls ``on_ice_candidate``. Remote candidates trickled by browser peers are
    still applied through ``add_ice_candidate``.
    """

    def __init__(self, ice_servers: Optional[List[str]] = None):
        configuration = None
        if ice_servers:
            configuration = RTCConfiguration(
                iceServers=[RTCIceServer(urls=url) for url in ice_servers]
            )
        self.pc = RTCPeerConnection(configuration=configuration)
        self.on_ice_candidate: Optional[Callable[[dict], Awaitable[None]]] = None
        self.on_remote_stream: Optional[Callable[[Any], None]] = None
        self.remote_stream = MediaStream()
        self._senders = []  # (RTCRtpSender, local track)

        self.pc.on("track", self._handle_track)
        self.pc.on("iceconnectionstatechange", self._handle_ice_state_change)

    def add_stream(self, stream: MediaStream) -> None:
        for track in stream.get_tracks():
            self._senders.append((self.pc.addTrack(track), track))

    def mute(self) -> None:
        """Stop sending microphone audio without renegotiating."""
        for sender, track in self._audio_senders():
            sender.replaceTrack(None)

    def unmute(self) -> None:
        for sender, track in self._audio_senders():
            sender.replaceTrack(track)

    async def create_offer(self) -> dict:
        await self.pc.setLocalDescription(await self.pc.createOffer())
        return self._local_description()

    async def create_answer(self) -> dict:
        await self.pc.setLocalDescription(await self.pc.createAnswer())
        return self._local_description()

    async def set_remote_description(self, description: dict) -> None:
        await self.pc.setRemoteDescription(
            RTCSessionDescription(sdp=description["sdp"], type=description["type"])
        )

    async def add_ice_candidate(self, candidate: dict) -> None:
        sdp = candidate.get("candidate") or ""
        if not sdp:
            logger.debug("Received end-of-candidates marker")
            return
        if sdp.startswith(CANDIDATE_PREFIX):
            sdp = sdp[len(CANDIDATE_PREFIX):]

        ice_candidate = candidate_from_sdp(sdp)
        ice_candidate.sdpMid = candidate.get("sdpMid")
        ice_candidate.sdpMLineIndex = candidate.get("sdpMLineIndex")
        await self.pc.addIceCandidate(ice_candidate)

    async def close(self) -> None:
        await self.pc.close()

    def _audio_senders(self):
        return [(sender, track) for sender, track in self._senders if track.kind == "audio"]

    def _local_description(self) -> dict:
        description = self.pc.localDescription
        return {"type": description.type, "sdp": description.sdp}

    def _handle_track(self, track) -> None:
        logger.info(f"Remote {track.kind} track received")
        self.remote_stream.add_track(track)
        if self.on_remote_stream is not None:
            self.on_remote_stream(self.remote_stream)

    def _handle_ice_state_change(self) -> None:
        logger.info(f"ICE state: {self.pc.iceConnectionState}")
