"""livecast — stream a local camera and microphone to a browser over WebRTC."""

from livecast.config import StreamConfig
from livecast.messages import MessageKind, SignalingMessage, MessageError
from livecast.sources import SampleSource, QueueSampleSource, GstSampleSource, EncodedBuffer, SourceError
from livecast.tracks import SampleTrack, Sample, SampleWriteError
from livecast.bridge import MediaBridge, BridgeState
from livecast.peer import SessionTransport, AiortcTransport, CandidateError
from livecast.negotiation import Negotiator, NegotiationState
from livecast.signaling import SignalingServer
from livecast.turn import ICEProvider, StaticICE, TwilioTURN

__all__ = [
    "StreamConfig",
    "MessageKind",
    "SignalingMessage",
    "MessageError",
    "SampleSource",
    "QueueSampleSource",
    "GstSampleSource",
    "EncodedBuffer",
    "SourceError",
    "SampleTrack",
    "Sample",
    "SampleWriteError",
    "MediaBridge",
    "BridgeState",
    "SessionTransport",
    "AiortcTransport",
    "CandidateError",
    "Negotiator",
    "NegotiationState",
    "SignalingServer",
    "ICEProvider",
    "StaticICE",
    "TwilioTURN",
]
