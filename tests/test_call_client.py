"""Tests for CallClient wiring of signaling, negotiation, chat and files."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from rtc_videochat.client.call_client import ANONYMOUS, CallClient
from rtc_videochat.client.media import MediaStream
from rtc_videochat.client.negotiation import Phase
from rtc_videochat.client.signaling_channel import SignalingChannel
from rtc_videochat.exceptions import MediaAcquisitionError
from rtc_videochat.protocol import (
    MSG_CHAT,
    MSG_END,
    MSG_FILE,
    MSG_JOIN,
    MSG_OFFER,
    Envelope,
    chat_envelope,
    file_envelope,
    offer_envelope,
)
from rtc_videochat.server.relay_server import RelayServer


class FakeTrack:
    def __init__(self, kind):
        self.kind = kind

    def stop(self):
        pass


class FakeMediaSource:
    def __init__(self, error=None):
        self.error = error

    async def acquire(self):
        if self.error is not None:
            raise self.error
        return MediaStream([FakeTrack("audio"), FakeTrack("video")])


class FakePeerConnection:
    def __init__(self):
        self.on_ice_candidate = None
        self.on_remote_stream = None
        self.closed = False
        self.muted = False

    def add_stream(self, stream):
        pass

    def mute(self):
        self.muted = True

    def unmute(self):
        self.muted = False

    async def create_offer(self):
        return {"type": "offer", "sdp": "v=0 offer"}

    async def create_answer(self):
        return {"type": "answer", "sdp": "v=0 answer"}

    async def set_remote_description(self, description):
        pass

    async def add_ice_candidate(self, candidate):
        pass

    async def close(self):
        self.closed = True


def make_client(username="alice", media_source=None):
    """CallClient on an unconnected channel whose send is mocked."""
    channel = SignalingChannel("ws://unused")
    channel.send = AsyncMock(return_value=True)
    presentation = MagicMock()
    client = CallClient(
        url="ws://unused",
        room="r1",
        username=username,
        media_source=media_source or FakeMediaSource(),
        presentation=presentation,
        peer_connection_factory=FakePeerConnection,
        channel=channel,
    )
    return client, channel.send, presentation


def sent_types(send):
    return [call.args[0].type for call in send.await_args_list]


async def wait_until(predicate, timeout=2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


class TestSignalingEvents:
    @pytest.mark.asyncio
    async def test_open_joins_room(self):
        client, send, _ = make_client()

        await client.channel.on_open.emit()

        envelope = send.await_args.args[0]
        assert envelope.type == MSG_JOIN
        assert envelope.room == "r1"

    @pytest.mark.asyncio
    async def test_chat_goes_to_presentation(self):
        client, _, presentation = make_client()

        await client.channel.on_message.emit(chat_envelope("hi", "bob").with_sender("id-bob"))

        presentation.append_chat_entry.assert_called_once_with("bob", "hi")

    @pytest.mark.asyncio
    async def test_chat_without_username(self):
        client, _, presentation = make_client()

        await client.handle_message(Envelope(type=MSG_CHAT, payload={"message": "hi"}))

        presentation.append_chat_entry.assert_called_once_with(ANONYMOUS, "hi")

    @pytest.mark.asyncio
    async def test_file_goes_to_presentation(self):
        client, _, presentation = make_client()
        data_url = "data:text/plain;base64,aGk="

        await client.handle_message(file_envelope(data_url, "hi.txt", "bob"))

        presentation.append_file_entry.assert_called_once_with("bob", "hi.txt", data_url)

    @pytest.mark.asyncio
    async def test_offer_is_answered(self):
        client, send, _ = make_client()

        await client.handle_message(
            offer_envelope({"type": "offer", "sdp": "v=0"}, "bob").with_sender("id-bob")
        )

        assert client.phase is Phase.CONNECTED
        assert sent_types(send) == ["answer"]

    @pytest.mark.asyncio
    async def test_close_ends_call_without_end_message(self):
        client, send, _ = make_client()
        await client.start_call()
        send.reset_mock()

        await client.channel.on_close.emit()

        assert client.phase is Phase.ENDED
        send.assert_not_awaited()

    def test_error_is_logged_only(self):
        client, send, presentation = make_client()
        client.handle_error(RuntimeError("boom"))
        presentation.show_notice.assert_not_called()


class TestUserActions:
    @pytest.mark.asyncio
    async def test_start_call_sends_offer(self):
        client, send, _ = make_client()

        assert await client.start_call() is True

        assert sent_types(send) == [MSG_OFFER]
        assert send.await_args.args[0].username == "alice"

    @pytest.mark.asyncio
    async def test_start_call_without_camera(self):
        client, send, presentation = make_client(
            media_source=FakeMediaSource(error=MediaAcquisitionError("no camera"))
        )

        assert await client.start_call() is False

        send.assert_not_awaited()
        presentation.show_notice.assert_called_once()
        assert "no camera" in presentation.show_notice.call_args[0][0]
        assert client.phase is Phase.IDLE

    @pytest.mark.asyncio
    async def test_start_call_twice(self):
        client, _, presentation = make_client()
        await client.start_call()

        assert await client.start_call() is False
        presentation.show_notice.assert_called_once()

    @pytest.mark.asyncio
    async def test_end_call_sends_end(self):
        client, send, _ = make_client()
        await client.start_call()

        await client.end_call()

        assert sent_types(send) == [MSG_OFFER, MSG_END]

    @pytest.mark.asyncio
    async def test_mute_during_call(self):
        client, send, presentation = make_client()
        await client.start_call()
        pc = client.negotiation.session.peer_connection

        assert client.mute() is True
        assert pc.muted
        assert client.unmute() is True
        assert not pc.muted
        presentation.show_notice.assert_not_called()
        assert sent_types(send) == [MSG_OFFER]

    def test_mute_without_call(self):
        client, _, presentation = make_client()

        assert client.mute() is False
        presentation.show_notice.assert_called_once_with("No microphone to mute")

    @pytest.mark.asyncio
    async def test_send_chat(self):
        client, send, presentation = make_client()

        assert await client.send_chat("  hello  ") is True

        envelope = send.await_args.args[0]
        assert envelope.type == MSG_CHAT
        assert envelope.get("message") == "hello"
        assert envelope.username == "alice"
        presentation.append_chat_entry.assert_called_once_with("alice", "hello", sent=True)

    @pytest.mark.asyncio
    async def test_blank_chat_not_sent(self):
        client, send, presentation = make_client()

        assert await client.send_chat("   ") is False

        send.assert_not_awaited()
        presentation.append_chat_entry.assert_not_called()

    @pytest.mark.asyncio
    async def test_send_file(self, tmp_path):
        client, send, presentation = make_client()
        path = tmp_path / "notes.txt"
        path.write_text("hi")

        assert await client.send_file(path) is True

        envelope = send.await_args.args[0]
        assert envelope.type == MSG_FILE
        assert envelope.get("filename") == "notes.txt"
        assert envelope.get("file") == "data:text/plain;base64,aGk="
        presentation.append_file_entry.assert_called_once()

    @pytest.mark.asyncio
    async def test_send_missing_file(self, tmp_path):
        client, send, _ = make_client()

        with pytest.raises(FileNotFoundError):
            await client.send_file(tmp_path / "missing.txt")
        send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_username_is_used_after_change(self):
        client, send, _ = make_client()

        client.set_username("  carol ")
        await client.send_chat("hi")
        await client.start_call()

        assert all(call.args[0].username == "carol" for call in send.await_args_list)

    def test_blank_username_becomes_anonymous(self):
        client, _, _ = make_client()
        assert client.set_username("   ") == ANONYMOUS
        assert client.negotiation.username == ANONYMOUS


class TestCallThroughRelay:
    @pytest.mark.asyncio
    async def test_two_clients_connect(self):
        relay = RelayServer()
        async with relay.serve("127.0.0.1", 0) as ws_server:
            port = next(iter(ws_server.sockets)).getsockname()[1]
            url = f"ws://127.0.0.1:{port}"

            def build(username):
                return CallClient(
                    url=url,
                    room="r1",
                    username=username,
                    media_source=FakeMediaSource(),
                    presentation=MagicMock(),
                    peer_connection_factory=FakePeerConnection,
                )

            alice, bob = build("alice"), build("bob")
            await alice.channel.connect()
            await bob.channel.connect()
            listeners = [
                asyncio.create_task(alice.channel.listen()),
                asyncio.create_task(bob.channel.listen()),
            ]
            await wait_until(lambda: relay.registry.rooms() == {"r1": 2})

            assert await alice.start_call()
            await wait_until(lambda: alice.phase is Phase.CONNECTED and bob.phase is Phase.CONNECTED)
            assert alice.negotiation.remote_username == "bob"
            assert bob.negotiation.remote_username == "alice"

            await alice.end_call()
            await wait_until(lambda: bob.phase is Phase.ENDED)

            await alice.close()
            await bob.close()
            await asyncio.wait_for(asyncio.gather(*listeners), 2.0)
