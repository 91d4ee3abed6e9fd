"""Tests for the aiortc peer-connection adapter."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from rtc_videochat.client.media import MediaStream
from rtc_videochat.client.peer_connection import AiortcPeerConnection

HOST_CANDIDATE = "candidate:842163049 1 udp 1677729535 192.168.1.7 50244 typ host"


async def make_connection():
    """Adapter whose aiortc peer connection is swapped for a mock."""
    conn = AiortcPeerConnection()
    await conn.pc.close()
    conn.pc = MagicMock()
    conn.pc.addIceCandidate = AsyncMock()
    return conn


class TestAddIceCandidate:
    @pytest.mark.asyncio
    async def test_parses_browser_candidate(self):
        conn = await make_connection()

        await conn.add_ice_candidate(
            {"candidate": HOST_CANDIDATE, "sdpMid": "0", "sdpMLineIndex": 0}
        )

        added = conn.pc.addIceCandidate.await_args.args[0]
        assert added.ip == "192.168.1.7"
        assert added.port == 50244
        assert added.type == "host"
        assert added.sdpMid == "0"
        assert added.sdpMLineIndex == 0

    @pytest.mark.asyncio
    async def test_end_of_candidates_is_skipped(self):
        conn = await make_connection()

        await conn.add_ice_candidate({"candidate": "", "sdpMid": "0"})

        conn.pc.addIceCandidate.assert_not_awaited()


class TestRemoteTracks:
    @pytest.mark.asyncio
    async def test_tracks_collected_into_one_stream(self):
        conn = await make_connection()
        seen = []
        conn.on_remote_stream = seen.append

        audio, video = MagicMock(kind="audio"), MagicMock(kind="video")
        conn._handle_track(audio)
        conn._handle_track(video)

        assert seen == [conn.remote_stream, conn.remote_stream]
        assert conn.remote_stream.get_audio_tracks() == [audio]
        assert conn.remote_stream.get_video_tracks() == [video]


class TestLocalDescriptions:
    @pytest.mark.asyncio
    async def test_description_as_dict(self):
        conn = await make_connection()
        conn.pc.localDescription = MagicMock(type="offer", sdp="v=0")
        conn.pc.createOffer = AsyncMock(return_value="offer-object")
        conn.pc.setLocalDescription = AsyncMock()

        assert await conn.create_offer() == {"type": "offer", "sdp": "v=0"}
        conn.pc.setLocalDescription.assert_awaited_once_with("offer-object")


class TestMute:
    @pytest.mark.asyncio
    async def test_mute_replaces_only_audio_track(self):
        conn = await make_connection()
        audio, video = MagicMock(kind="audio"), MagicMock(kind="video")
        audio_sender, video_sender = MagicMock(), MagicMock()
        conn.pc.addTrack.side_effect = [audio_sender, video_sender]
        conn.add_stream(MediaStream([audio, video]))

        conn.mute()
        audio_sender.replaceTrack.assert_called_once_with(None)

        conn.unmute()
        audio_sender.replaceTrack.assert_called_with(audio)
        video_sender.replaceTrack.assert_not_called()

    @pytest.mark.asyncio
    async def test_mute_without_audio(self):
        conn = await make_connection()
        video_sender = MagicMock()
        conn.pc.addTrack.return_value = video_sender
        conn.add_stream(MediaStream([MagicMock(kind="video")]))

        conn.mute()

        video_sender.replaceTrack.assert_not_called()
