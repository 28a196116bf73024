"""Outgoing tracks that carry pre-encoded samples over WebRTC.

The media pipeline already produces Opus packets and H.264 access units,
so instead of raw frames the track hands aiortc ``av.Packet`` objects.
aiortc packetizes them directly without re-encoding.
"""

import asyncio
import logging
from dataclasses import dataclass
from fractions import Fraction

from av import Packet
from aiortc import MediaStreamTrack
from aiortc.mediastreams import MediaStreamError

log = logging.getLogger("livecast.tracks")

CLOCK_RATES = {"audio": 48000, "video": 90000}
MIME_TYPES = {"audio": "audio/opus", "video": "video/H264"}


class SampleWriteError(RuntimeError):
    """The track can no longer accept samples."""


@dataclass(frozen=True)
class Sample:
    """One encoded media sample. Duration is in seconds."""
    data: bytes
    duration: float


class SampleTrack(MediaStreamTrack):
    """Server-side track fed by a single MediaBridge.

    write_sample() is the sink used by the bridge; aiortc's RTP sender
    drains it through recv(). The bounded queue provides backpressure.
    """

    def __init__(self, kind: str, maxsize: int = 64):
        if kind not in CLOCK_RATES:
            raise ValueError(f"Unknown media kind: {kind!r}")
        super().__init__()
        self.kind = kind
        self.mime_type = MIME_TYPES[kind]
        self.clock_rate = CLOCK_RATES[kind]
        self.source = None
        self._queue: asyncio.Queue[Sample] = asyncio.Queue(maxsize=maxsize)
        self._time_base = Fraction(1, self.clock_rate)
        self._pts = 0

    def bind(self, source):
        """Attach the sample source feeding this track. Only once."""
        if self.source is not None:
            raise RuntimeError(f"{self.kind} track already bound to a source")
        self.source = source

    async def write_sample(self, sample: Sample):
        if self.readyState != "live":
            raise SampleWriteError(f"{self.kind} track has ended")
        await self._queue.put(sample)

    async def recv(self) -> Packet:
        if self.readyState != "live":
            raise MediaStreamError
        sample = await self._queue.get()

        packet = Packet(sample.data)
        packet.pts = self._pts
        packet.dts = self._pts
        packet.time_base = self._time_base
        ticks = round(sample.duration * self.clock_rate)
        packet.duration = ticks
        self._pts += ticks
        return packet

    def stop(self):
        super().stop()
        # Unblock a writer waiting on a full queue; its next write fails.
        while not self._queue.empty():
            self._queue.get_nowait()
