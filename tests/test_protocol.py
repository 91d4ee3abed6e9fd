"""Tests for signaling envelope encoding and decoding."""

import json

import pytest

from rtc_videochat.exceptions import ProtocolError
from rtc_videochat.protocol import (
    ENVELOPE_TYPES,
    FORWARDED_TYPES,
    MSG_CHAT,
    MSG_JOIN,
    MSG_OFFER,
    Envelope,
    candidate_envelope,
    chat_envelope,
    decode_envelope,
    encode_envelope,
    end_envelope,
    file_envelope,
    join_envelope,
    offer_envelope,
)


class TestDecodeEnvelope:
    def test_decodes_chat(self):
        env = decode_envelope('{"type": "chat", "message": "hi", "username": "A"}')
        assert env.type == MSG_CHAT
        assert env.get("message") == "hi"
        assert env.username == "A"
        assert env.sender_id is None

    def test_decodes_bytes(self):
        env = decode_envelope(b'{"type": "join", "room": "r1"}')
        assert env.type == MSG_JOIN
        assert env.room == "r1"

    def test_sender_id_lifted_out_of_payload(self):
        env = decode_envelope('{"type": "end", "senderId": "abc"}')
        assert env.sender_id == "abc"
        assert env.payload == {}

    def test_unknown_type_survives(self):
        env = decode_envelope('{"type": "ping"}')
        assert env.type == "ping"
        assert not env.is_forwarded

    def test_invalid_json_raises(self):
        with pytest.raises(ProtocolError, match="Invalid JSON"):
            decode_envelope("{not json")

    def test_non_object_raises(self):
        with pytest.raises(ProtocolError, match="JSON object"):
            decode_envelope('["offer"]')

    @pytest.mark.parametrize("raw", ['{}', '{"type": ""}', '{"type": 3}'])
    def test_missing_type_raises(self, raw):
        with pytest.raises(ProtocolError, match="no valid type"):
            decode_envelope(raw)

    def test_invalid_utf8_raises(self):
        with pytest.raises(ProtocolError, match="UTF-8"):
            decode_envelope(b"\xff\xfe")


class TestEncodeEnvelope:
    def test_flat_wire_form(self):
        env = offer_envelope({"type": "offer", "sdp": "v=0"}, "alice")
        assert json.loads(encode_envelope(env)) == {
            "type": "offer",
            "offer": {"type": "offer", "sdp": "v=0"},
            "username": "alice",
        }

    def test_unset_fields_omitted(self):
        assert json.loads(encode_envelope(end_envelope())) == {"type": "end"}

    def test_unknown_keys_preserved(self):
        raw = '{"type": "chat", "message": "hi", "color": "blue"}'
        assert json.loads(encode_envelope(decode_envelope(raw)))["color"] == "blue"

    def test_with_sender_overwrites(self):
        env = decode_envelope('{"type": "chat", "message": "hi", "senderId": "forged"}')
        stamped = env.with_sender("real")
        assert stamped.sender_id == "real"
        assert json.loads(encode_envelope(stamped))["senderId"] == "real"
        assert env.sender_id == "forged"


class TestBuilders:
    def test_join(self):
        assert join_envelope("r1").to_dict() == {"type": "join", "room": "r1"}

    def test_candidate(self):
        candidate = {"candidate": "candidate:1 1 udp 1 1.2.3.4 5 typ host", "sdpMid": "0"}
        env = candidate_envelope(candidate, "bob")
        assert env.get("candidate") == candidate
        assert env.username == "bob"

    def test_chat(self):
        assert chat_envelope("hi", "A").to_dict() == {
            "type": "chat",
            "message": "hi",
            "username": "A",
        }

    def test_file(self):
        env = file_envelope("data:text/plain;base64,aGk=", "hi.txt", "A")
        assert env.get("file").startswith("data:")
        assert env.get("filename") == "hi.txt"

    def test_type_sets(self):
        assert MSG_JOIN not in FORWARDED_TYPES
        assert MSG_OFFER in FORWARDED_TYPES
        assert ENVELOPE_TYPES == FORWARDED_TYPES | {MSG_JOIN}

    def test_envelope_is_immutable(self):
        env = Envelope(type="end")
        with pytest.raises(AttributeError):
            env.type = "chat"
