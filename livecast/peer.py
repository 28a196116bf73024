"""Session transport — the peer connection behind one signaling session.

SessionTransport is the narrow surface the negotiator needs. AiortcTransport
implements it with aiortc's RTCPeerConnection.
"""

import logging
from abc import ABC, abstractmethod
from typing import Callable

from aiortc import RTCConfiguration, RTCPeerConnection, RTCRtpSender, RTCSessionDescription
from aiortc.sdp import candidate_from_sdp, candidate_to_sdp

from livecast.tracks import SampleTrack
from livecast.turn import ice_servers_to_rtc

log = logging.getLogger("livecast.peer")

CANDIDATE_PREFIX = "candidate:"


class CandidateError(ValueError):
    """A remote ICE candidate could not be parsed or applied."""


class SessionTransport(ABC):
    """Peer-to-peer media transport owned by exactly one session."""

    def __init__(self):
        self._candidate_handler: Callable[[str], None] | None = None
        self._failure_handler: Callable[[str], None] | None = None

    def on_local_candidate(self, handler: Callable[[str], None]):
        """Register the callback that receives each locally gathered candidate."""
        self._candidate_handler = handler

    def on_failure(self, handler: Callable[[str], None]):
        """Register the callback invoked once the transport has failed."""
        self._failure_handler = handler

    def _emit_candidate(self, candidate: str):
        if self._candidate_handler is not None:
            self._candidate_handler(candidate)

    def _emit_failure(self, reason: str):
        if self._failure_handler is not None:
            self._failure_handler(reason)

    @abstractmethod
    def add_track(self, track: SampleTrack):
        ...

    @abstractmethod
    async def create_offer(self) -> str:
        """Create and apply the local offer, returning its SDP text."""

    @abstractmethod
    async def set_remote_answer(self, sdp: str):
        ...

    @abstractmethod
    async def add_remote_candidate(self, candidate: str):
        """Apply one remote candidate. Raises CandidateError."""

    @abstractmethod
    async def close(self):
        ...


class AiortcTransport(SessionTransport):
    """SessionTransport on top of aiortc.

    aiortc finishes ICE gathering inside setLocalDescription(), so the offer
    already lists every local candidate; they are also announced one by one
    through the candidate handler for the trickle relay.
    """

    def __init__(self, ice_servers=()):
        super().__init__()
        rtc_servers = ice_servers_to_rtc(ice_servers)
        # Empty list gathers host candidates only; None would make aiortc add Google STUN.
        config = RTCConfiguration(iceServers=rtc_servers)
        self._pc = RTCPeerConnection(configuration=config)
        self.applied_candidates = 0

        @self._pc.on("connectionstatechange")
        async def on_conn_state():
            state = self._pc.connectionState
            log.info("Connection state: %s", state)
            if state == "failed":
                self._emit_failure("peer connection failed")

        @self._pc.on("iceconnectionstatechange")
        async def on_ice_state():
            log.info("ICE connection state: %s", self._pc.iceConnectionState)

    def add_track(self, track: SampleTrack):
        transceiver = self._pc.addTransceiver(track, direction="sendonly")
        # Samples are already encoded, so only the matching codec can be offered.
        codecs = [
            c for c in RTCRtpSender.getCapabilities(track.kind).codecs
            if c.mimeType.lower() in (track.mime_type.lower(), f"{track.kind}/rtx")
        ]
        transceiver.setCodecPreferences(codecs)
        log.info("Added %s track (%s)", track.kind, track.mime_type)

    async def create_offer(self) -> str:
        offer = await self._pc.createOffer()
        await self._pc.setLocalDescription(offer)
        for candidate in self._local_candidates():
            self._emit_candidate(candidate)
        return self._pc.localDescription.sdp

    def _local_candidates(self) -> list[str]:
        seen = set()
        result = []
        for transceiver in self._pc.getTransceivers():
            gatherer = transceiver.sender.transport.transport.iceGatherer
            if id(gatherer) in seen:
                continue
            seen.add(id(gatherer))
            for candidate in gatherer.getLocalCandidates():
                result.append(CANDIDATE_PREFIX + candidate_to_sdp(candidate))
        return result

    async def set_remote_answer(self, sdp: str):
        await self._pc.setRemoteDescription(RTCSessionDescription(sdp=sdp, type="answer"))
        log.info("Remote answer applied")

    async def add_remote_candidate(self, candidate: str):
        text = candidate.strip()
        if text.startswith(CANDIDATE_PREFIX):
            text = text[len(CANDIDATE_PREFIX):]
        try:
            parsed = candidate_from_sdp(text)
        except (AssertionError, ValueError, IndexError) as e:
            raise CandidateError(f"Unparseable candidate {candidate!r}: {e}") from e

        transceivers = self._pc.getTransceivers()
        if not transceivers:
            raise CandidateError("No media sections to attach the candidate to")
        # All media is bundled on the first m-line.
        parsed.sdpMid = transceivers[0].mid
        parsed.sdpMLineIndex = 0
        try:
            await self._pc.addIceCandidate(parsed)
        except Exception as e:
            raise CandidateError(f"Candidate rejected: {e}") from e
        self.applied_candidates += 1

    async def close(self):
        await self._pc.close()
        log.info("Peer connection closed")
