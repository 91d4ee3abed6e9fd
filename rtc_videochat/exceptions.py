"""Exception types raised by rtc-videochat."""


class RTCVideoChatError(Exception):
    """Base class for all rtc-videochat errors."""


class TransportError(RTCVideoChatError):
    """A signaling connection could not be opened or written to."""


class ProtocolError(RTCVideoChatError):
    """A signaling frame could not be decoded or is missing required fields."""


class NegotiationError(RTCVideoChatError):
    """The peer connection rejected an offer, answer or ICE candidate.

    Also raised when a call is started while another one is in progress.
    """


class MediaAcquisitionError(RTCVideoChatError):
    """The camera or microphone is unavailable or access was denied."""
