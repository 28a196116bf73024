"""Hand-written fakes shared by the livecast tests."""

import asyncio
import json
import threading

from livecast.peer import CandidateError, SessionTransport
from livecast.sources import QueueSampleSource

_DISCONNECT = object()


class FakeWebSocket:
    """Minimal stand-in for a FastAPI WebSocket.

    Inbound frames are queued with push() or push_bytes(); disconnect()
    makes receive() return a websocket.disconnect message. Receiving on a
    closed socket raises, as Starlette does.
    """

    def __init__(self, messages=None, disconnect_when_drained: bool = False):
        self._inbox: asyncio.Queue = asyncio.Queue()
        self.sent: list[dict] = []
        self.accepted = False
        self.closed = False
        for msg in messages or []:
            self.push(msg)
        if disconnect_when_drained:
            self.disconnect()

    def push(self, msg):
        self._inbox.put_nowait(msg if isinstance(msg, str) else json.dumps(msg))

    def push_bytes(self, data: bytes):
        self._inbox.put_nowait(data)

    def disconnect(self):
        self._inbox.put_nowait(_DISCONNECT)

    async def accept(self):
        self.accepted = True

    async def receive(self) -> dict:
        if self.closed:
            raise RuntimeError("WebSocket is not connected")
        item = await self._inbox.get()
        if item is _DISCONNECT:
            return {"type": "websocket.disconnect", "code": 1000}
        if isinstance(item, bytes):
            return {"type": "websocket.receive", "bytes": item}
        return {"type": "websocket.receive", "text": item}

    async def send_text(self, data: str):
        if self.closed:
            raise RuntimeError("Cannot send on a closed WebSocket")
        self.sent.append(json.loads(data))

    async def close(self):
        self.closed = True
        self.disconnect()

    def sent_of_type(self, kind: str) -> list[dict]:
        return [m for m in self.sent if m["type"] == kind]


class FakeTransport(SessionTransport):
    """SessionTransport that records calls instead of touching the network."""

    def __init__(self, offer_sdp: str = "<sdp-A>", local_candidates=(), fail_answer: bool = False):
        super().__init__()
        self.offer_sdp = offer_sdp
        self.local_candidates = list(local_candidates)
        self.fail_answer = fail_answer
        self.tracks = []
        self.events: list[str] = []
        self.remote_answer: str | None = None
        self.applied: list[str] = []
        self.closed = False

    @property
    def applied_candidates(self) -> int:
        return len(self.applied)

    def track(self, kind: str):
        return next(t for t in self.tracks if t.kind == kind)

    def add_track(self, track):
        self.tracks.append(track)

    async def create_offer(self) -> str:
        self.events.append("create_offer")
        for candidate in self.local_candidates:
            self._emit_candidate(candidate)
        return self.offer_sdp

    async def set_remote_answer(self, sdp: str):
        self.events.append("set_remote_answer")
        if self.fail_answer:
            raise ValueError("rejected answer")
        self.remote_answer = sdp

    async def add_remote_candidate(self, candidate: str):
        assert self.remote_answer is not None, "candidate applied before remote description"
        if not candidate.startswith("candidate:"):
            raise CandidateError(f"Unparseable candidate {candidate!r}")
        self.applied.append(candidate)

    def emit_local(self, candidate: str):
        self._emit_candidate(candidate)

    def emit_failure(self, reason: str = "ice failed"):
        self._emit_failure(reason)

    async def close(self):
        self.events.append("close")
        self.closed = True


class RecordingSource(QueueSampleSource):
    """QueueSampleSource that counts start() and stop() calls."""

    def __init__(self, maxsize: int = 32, fail_start: bool = False):
        super().__init__(maxsize=maxsize)
        self.fail_start = fail_start
        self.starts = 0
        self.stops = 0
        self.stop_threads: list[int] = []

    def start(self):
        self.starts += 1
        if self.fail_start:
            raise RuntimeError("device busy")

    def stop(self):
        self.stops += 1
        self.stop_threads.append(threading.get_ident())


async def wait_until(predicate, timeout: float = 2.0):
    """Poll *predicate* until it is true, failing the test on timeout."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)
