"""Negotiation state machine — one per signaling connection.

The server is always the offerer:

    IDLE -> OFFER_SENT -> NEGOTIATED -> BRIDGES_RUNNING

and from any of those to FAILED. Transitions never go backwards. Remote candidates that arrive before the
answer are held and applied as soon as the remote description is set.
Local candidates are relayed to the peer for as long as the transport lives.
"""

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable

from livecast.bridge import MediaBridge
from livecast.config import StreamConfig
from livecast.messages import MessageKind, SignalingMessage, serialize
from livecast.peer import CandidateError, SessionTransport
from livecast.sources import SampleSource
from livecast.tracks import SampleTrack

log = logging.getLogger("livecast.negotiation")

# Browsers gather a handful of candidates per session; more than this before
# the answer means the peer is misbehaving.
MAX_PENDING_CANDIDATES = 256

TransportFactory = Callable[[], Awaitable[SessionTransport]]
SourceFactory = Callable[[str], SampleSource]


class NegotiationState(str, Enum):
    IDLE = "idle"
    OFFER_SENT = "offer_sent"
    NEGOTIATED = "negotiated"
    BRIDGES_RUNNING = "bridges_running"
    FAILED = "failed"


_ORDER = {
    NegotiationState.IDLE: 0,
    NegotiationState.OFFER_SENT: 1,
    NegotiationState.NEGOTIATED: 2,
    NegotiationState.BRIDGES_RUNNING: 3,
    NegotiationState.FAILED: 4,
}


class Negotiator:
    """Drive offer/answer and ICE exchange for one session.

    Args:
        channel: the signaling WebSocket (needs send_text() and close()).
        config: process configuration; decides which tracks are offered.
        transport_factory: coroutine function returning a fresh SessionTransport.
        source_factory: returns the SampleSource for a media kind.
    """

    def __init__(
        self,
        channel,
        config: StreamConfig,
        transport_factory: TransportFactory,
        source_factory: SourceFactory,
    ):
        self._channel = channel
        self.config = config
        self._transport_factory = transport_factory
        self._source_factory = source_factory

        self.state = NegotiationState.IDLE
        self.transport: SessionTransport | None = None
        self.tracks: dict[str, SampleTrack] = {}
        self.bridges: dict[str, MediaBridge] = {}
        self.offers_sent = 0

        self._pending_candidates: list[str] = []
        self.max_pending_candidates = MAX_PENDING_CANDIDATES
        self._local_candidates: asyncio.Queue[str] = asyncio.Queue()
        self._send_lock = asyncio.Lock()
        self._relay_task: asyncio.Task | None = None
        self._abort_task: asyncio.Task | None = None
        self._closed = False

    def _transition(self, new: NegotiationState):
        old = self.state
        if old is NegotiationState.FAILED:
            if new is NegotiationState.FAILED:
                return
            raise RuntimeError(f"Cannot leave failed state for {new.value}")
        if _ORDER[new] <= _ORDER[old]:
            raise RuntimeError(f"Invalid transition {old.value} -> {new.value}")
        self.state = new
        log.info("Negotiation %s -> %s", old.value, new.value)

    async def _send(self, message: SignalingMessage):
        async with self._send_lock:
            await self._channel.send_text(serialize(message))

    # ── Lifecycle ──

    async def start(self):
        """Create the transport and tracks, then send the offer.

        Any failure is a startup error: the session moves to FAILED, what
        was created is released, and the exception is re-raised.
        """
        if self.state is not NegotiationState.IDLE:
            raise RuntimeError("Negotiation already started")
        try:
            self.transport = await self._transport_factory()
            self.transport.on_local_candidate(self._local_candidates.put_nowait)
            self.transport.on_failure(self.fail)
            for kind in self.config.kinds:
                track = SampleTrack(kind)
                self.transport.add_track(track)
                self.tracks[kind] = track

            sdp = await self.transport.create_offer()
            await self._send(SignalingMessage(kind=MessageKind.OFFER, payload=sdp))
        except Exception:
            self._transition(NegotiationState.FAILED)
            await self.close()
            raise

        self.offers_sent += 1
        self._transition(NegotiationState.OFFER_SENT)
        self._relay_task = asyncio.create_task(self._relay_local_candidates())

    async def _relay_local_candidates(self):
        while True:
            candidate = await self._local_candidates.get()
            try:
                await self._send(SignalingMessage(kind=MessageKind.CANDIDATE, payload=candidate))
            except Exception as e:
                log.warning("Candidate relay stopped, channel unusable: %s", e)
                return

    def fail(self, reason: str):
        """Move to FAILED and close the channel, which ends the read loop."""
        if self.state is NegotiationState.FAILED or self._closed:
            return
        log.error("Session failed: %s", reason)
        self._transition(NegotiationState.FAILED)
        self._abort_task = asyncio.create_task(self._close_channel())

    async def _abort(self):
        self._transition(NegotiationState.FAILED)
        await self._close_channel()

    async def _close_channel(self):
        try:
            await self._channel.close()
        except Exception as e:
            log.debug("Channel close failed: %s", e)

    async def close(self):
        """Release the relay, bridges, tracks and transport. Idempotent."""
        if self._closed:
            return
        self._closed = True

        for task in (self._abort_task, self._relay_task):
            if task is None:
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        for bridge in self.bridges.values():
            await bridge.stop()
        for track in self.tracks.values():
            track.stop()

        if self.transport is not None:
            try:
                await self.transport.close()
            except Exception:
                log.exception("Error closing transport")
        log.info("Session resources released (state %s)", self.state.value)

    # ── Inbound messages ──

    async def handle(self, message: SignalingMessage):
        """Process one inbound message. Callers must not run two at once."""
        if self.state is NegotiationState.FAILED:
            log.warning("Ignoring %s message, session has failed", message.kind.value)
            return

        if message.kind is MessageKind.ANSWER:
            await self._on_answer(message.payload)
        elif message.kind is MessageKind.CANDIDATE:
            await self._on_candidate(message.payload)
        else:
            log.warning("Ignoring %s message, this endpoint sends the offer", message.kind.value)

    async def _on_answer(self, sdp: str):
        if self.state is not NegotiationState.OFFER_SENT:
            log.warning("Ignoring answer in state %s", self.state.value)
            return

        try:
            await self.transport.set_remote_answer(sdp)
        except Exception as e:
            log.error("Failed to apply remote answer: %s", e)
            await self._abort()
            return

        if self.state is NegotiationState.FAILED:
            log.warning("Session failed while the answer was being applied")
            return
        self._transition(NegotiationState.NEGOTIATED)
        await self._flush_pending_candidates()
        self._start_bridges()
        self._transition(NegotiationState.BRIDGES_RUNNING)

    async def _on_candidate(self, candidate: str):
        if not candidate.strip():
            log.debug("Remote end of candidates")
            return
        if _ORDER[self.state] < _ORDER[NegotiationState.NEGOTIATED]:
            if len(self._pending_candidates) >= self.max_pending_candidates:
                log.warning("Dropping remote candidate, %d already held before the answer",
                            len(self._pending_candidates))
                return
            self._pending_candidates.append(candidate)
            log.debug("Holding remote candidate until the answer arrives (%d held)",
                      len(self._pending_candidates))
            return
        await self._apply_candidate(candidate)

    async def _flush_pending_candidates(self):
        pending, self._pending_candidates = self._pending_candidates, []
        if pending:
            log.info("Applying %d held remote candidates", len(pending))
        for candidate in pending:
            await self._apply_candidate(candidate)

    async def _apply_candidate(self, candidate: str):
        try:
            await self.transport.add_remote_candidate(candidate)
        except CandidateError as e:
            log.warning("Skipping remote candidate: %s", e)

    def _start_bridges(self):
        for kind, track in self.tracks.items():
            if kind in self.bridges:
                continue
            try:
                source = self._source_factory(kind)
            except Exception as e:
                log.error("Could not create %s source: %s", kind, e)
                continue
            bridge = MediaBridge(track, source)
            self.bridges[kind] = bridge
            bridge.start()
