"""Tests for room-scoped envelope routing."""

import json
from unittest import mock

import pytest
from websockets.protocol import State

from rtc_videochat.exceptions import ProtocolError
from rtc_videochat.protocol import Envelope, chat_envelope, decode_envelope, join_envelope
from rtc_videochat.server.registry import ConnectionRegistry
from rtc_videochat.server.router import RelayRouter, is_transport_open


class FakeTransport:
    """Stands in for a server-side websocket connection."""

    def __init__(self, state=State.OPEN, broken=False):
        self.state = state
        self.broken = broken
        self.sent = []


class FakeBroadcast:
    """Records what websockets' broadcast() would have written."""

    def __init__(self):
        self.calls = []

    def __call__(self, connections, message, raise_exceptions=False):
        connections = list(connections)
        self.calls.append(connections)
        errors = []
        for connection in connections:
            if connection.broken:
                error = RuntimeError("failed to write message")
                error.__cause__ = OSError("socket reset")
                errors.append(error)
            else:
                connection.sent.append(json.loads(message))
        if raise_exceptions and errors:
            raise ExceptionGroup("skipped broadcast", errors)


@pytest.fixture
def fake_broadcast():
    fake = FakeBroadcast()
    with mock.patch("rtc_videochat.server.router.broadcast", fake):
        yield fake


def make_room(*specs):
    """Register one FakeTransport per (room, transport) pair."""
    registry = ConnectionRegistry()
    records = []
    for room, transport in specs:
        peer_id = registry.register(transport)
        if room is not None:
            registry.set_room(peer_id, room)
        records.append(registry.get(peer_id))
    return registry, RelayRouter(registry), records


class TestIsTransportOpen:
    def test_open(self):
        assert is_transport_open(FakeTransport())

    def test_closed(self):
        assert not is_transport_open(FakeTransport(state=State.CLOSED))

    def test_no_state(self):
        assert not is_transport_open(object())


class TestRoute:
    @pytest.mark.asyncio
    async def test_join_sets_room(self, fake_broadcast):
        registry, router, (a,) = make_room((None, FakeTransport()))

        delivered = await router.route(join_envelope("r1"), a)

        assert delivered == 0
        assert registry.get(a.id).room == "r1"
        assert fake_broadcast.calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("room", [None, "", 42])
    async def test_join_without_room_raises(self, room):
        registry, router, (a,) = make_room((None, FakeTransport()))

        with pytest.raises(ProtocolError):
            await router.route(Envelope(type="join", room=room), a)
        assert registry.get(a.id).room is None

    @pytest.mark.asyncio
    async def test_forwards_within_room_only(self, fake_broadcast):
        ta, tb, tc = FakeTransport(), FakeTransport(), FakeTransport()
        _, router, (a, b, c) = make_room(("r1", ta), ("r1", tb), ("r2", tc))

        delivered = await router.route(chat_envelope("hi", "A"), a)

        assert delivered == 1
        assert fake_broadcast.calls == [[tb]]
        assert tb.sent == [{"type": "chat", "message": "hi", "username": "A", "senderId": a.id}]
        assert ta.sent == []
        assert tc.sent == []

    @pytest.mark.asyncio
    async def test_sender_id_is_overwritten(self, fake_broadcast):
        ta, tb = FakeTransport(), FakeTransport()
        _, router, (a, b) = make_room(("r1", ta), ("r1", tb))

        forged = decode_envelope('{"type": "end", "senderId": "someone-else"}')
        await router.route(forged, a)

        assert tb.sent == [{"type": "end", "senderId": a.id}]

    @pytest.mark.asyncio
    async def test_unknown_type_is_dropped(self, fake_broadcast):
        ta, tb = FakeTransport(), FakeTransport()
        _, router, (a, b) = make_room(("r1", ta), ("r1", tb))

        assert await router.route(Envelope(type="ping"), a) == 0
        assert fake_broadcast.calls == []

    @pytest.mark.asyncio
    async def test_sender_without_room_reaches_nobody(self, fake_broadcast):
        ta, tb = FakeTransport(), FakeTransport()
        _, router, (a, b) = make_room((None, ta), ("r1", tb))

        assert await router.route(chat_envelope("hi", "A"), a) == 0
        assert fake_broadcast.calls == []


class TestBroadcast:
    @pytest.mark.asyncio
    async def test_failed_recipient_does_not_stop_others(self, fake_broadcast):
        ta = FakeTransport()
        broken = FakeTransport(broken=True)
        healthy = [FakeTransport() for _ in range(3)]
        _, router, (a, *_rest) = make_room(
            ("r1", ta), ("r1", broken), *[("r1", t) for t in healthy]
        )

        delivered = await router.route(chat_envelope("hi", "A"), a)

        assert delivered == 3
        assert all(t.sent[0]["message"] == "hi" for t in healthy)

    @pytest.mark.asyncio
    async def test_skips_transports_that_are_not_open(self, fake_broadcast):
        ta = FakeTransport()
        closing = FakeTransport(state=State.CLOSING)
        tb = FakeTransport()
        _, router, (a, _c, b) = make_room(("r1", ta), ("r1", closing), ("r1", tb))

        assert await router.route(chat_envelope("hi", "A"), a) == 1
        assert fake_broadcast.calls == [[tb]]
        assert closing.sent == []

    @pytest.mark.asyncio
    async def test_room_with_no_open_peers(self, fake_broadcast):
        ta = FakeTransport()
        _, router, (a, _b) = make_room(("r1", ta), ("r1", FakeTransport(state=State.CLOSED)))

        assert await router.route(chat_envelope("hi", "A"), a) == 0
        assert fake_broadcast.calls == []

    @pytest.mark.asyncio
    async def test_preserves_sender_order(self, fake_broadcast):
        ta, tb = FakeTransport(), FakeTransport()
        _, router, (a, b) = make_room(("r1", ta), ("r1", tb))

        for i in range(5):
            await router.route(chat_envelope(str(i), "A"), a)

        assert [m["message"] for m in tb.sent] == ["0", "1", "2", "3", "4"]
