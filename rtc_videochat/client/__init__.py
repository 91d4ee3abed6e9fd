"""Call client: signaling channel, negotiation state machine and collaborators."""

from rtc_videochat.client.call_client import CallClient
from rtc_videochat.client.negotiation import (
    EndReason,
    NegotiationSession,
    NegotiationStateMachine,
    Phase,
)
from rtc_videochat.client.signaling_channel import EventChannel, SignalingChannel

__all__ = [
    "CallClient",
    "EndReason",
    "EventChannel",
    "NegotiationSession",
    "NegotiationStateMachine",
    "Phase",
    "SignalingChannel",
]
