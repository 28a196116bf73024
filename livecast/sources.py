"""Sample sources — producers of encoded media buffers.

A source is started once and then pulled from by exactly one MediaBridge.
pull() returns the next EncodedBuffer, None at end-of-stream, or raises
SourceError when the producer has failed.
"""

import asyncio
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass

log = logging.getLogger("livecast.sources")

_NS_PER_SECOND = 1_000_000_000


class SourceError(RuntimeError):
    """The source failed and will not produce further buffers."""


@dataclass(frozen=True)
class EncodedBuffer:
    """One encoded buffer. Duration is in seconds, 0.0 when unknown."""
    data: bytes
    duration: float


class SampleSource(ABC):
    """Abstract producer of encoded buffers for one track."""

    def start(self):
        """Begin producing. Called once by the bridge before the first pull."""

    @abstractmethod
    async def pull(self) -> EncodedBuffer | None:
        ...

    def stop(self):
        """Release the producer. Must be safe to call more than once."""


_END = object()


class QueueSampleSource(SampleSource):
    """Bounded queue drained by pull(), fed by an in-process producer.

    feed() blocks while the queue is full, so the producer runs no faster
    than the bridge forwards samples.
    """

    def __init__(self, maxsize: int = 32):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    async def feed(self, buffer: EncodedBuffer):
        if self._closed:
            raise SourceError("source already ended")
        await self._queue.put(buffer)

    async def end(self):
        """Signal a clean end-of-stream after the queued buffers."""
        if not self._closed:
            self._closed = True
            await self._queue.put(_END)

    async def fail(self, exc: BaseException):
        """Make the next pull after the queued buffers raise SourceError."""
        if not self._closed:
            self._closed = True
            await self._queue.put(exc)

    async def pull(self) -> EncodedBuffer | None:
        item = await self._queue.get()
        if item is _END:
            return None
        if isinstance(item, BaseException):
            raise SourceError(str(item)) from item
        return item


class GstSampleSource(SampleSource):
    """Pull encoded buffers from a GStreamer pipeline's appsink.

    The pipeline description must contain an element named ``appsink``.
    Blocking pulls run in the default executor so the event loop stays free.
    The appsink holds at most *max_buffers* samples; with drop=False a full
    appsink blocks the pipeline, so a live source runs no further ahead of
    the bridge than that.
    """

    def __init__(self, description: str, appsink_name: str = "appsink",
                 pull_timeout: float = 0.5, max_buffers: int = 8, drop: bool = False):
        if max_buffers <= 0:
            raise ValueError(f"max_buffers must be positive, got {max_buffers}")
        self.description = description
        self._appsink_name = appsink_name
        self._max_buffers = max_buffers
        self._drop = drop
        self._timeout_ns = int(pull_timeout * _NS_PER_SECOND)
        self._pipeline = None
        self._appsink = None
        self._stopped = False
        self._stop_lock = threading.Lock()

    def start(self):
        Gst = _init_gst()
        try:
            self._pipeline = Gst.parse_launch(self.description)
        except Exception as e:
            raise SourceError(f"Failed to build pipeline: {e}") from e

        self._appsink = self._pipeline.get_by_name(self._appsink_name)
        if self._appsink is None:
            raise SourceError(f"No element named {self._appsink_name!r} in pipeline")
        self._appsink.set_property("sync", False)
        self._appsink.set_property("max-buffers", self._max_buffers)
        self._appsink.set_property("drop", self._drop)

        ret = self._pipeline.set_state(Gst.State.PLAYING)
        if ret == Gst.StateChangeReturn.FAILURE:
            raise SourceError("Pipeline refused to start")
        log.info("Pipeline started: %s", self.description)

    async def pull(self) -> EncodedBuffer | None:
        if self._appsink is None:
            raise SourceError("Source not started")
        loop = asyncio.get_running_loop()
        while True:
            if self._stopped:
                return None
            result = await loop.run_in_executor(None, self._pull_blocking)
            if result is not None:
                return result if result is not _END else None

    def _pull_blocking(self):
        """One bounded wait on the appsink. Returns None on timeout."""
        pipeline = self._pipeline
        if pipeline is None:
            return _END
        Gst = _init_gst()
        self._raise_bus_error(Gst, pipeline)

        sample = self._appsink.emit("try-pull-sample", self._timeout_ns)
        if sample is None:
            if self._appsink.get_property("eos"):
                return _END
            return None

        buffer = sample.get_buffer()
        if buffer is None:
            raise SourceError("Sample carries no buffer")

        ok, mapinfo = buffer.map(Gst.MapFlags.READ)
        if not ok:
            raise SourceError("Failed to map buffer")
        try:
            data = bytes(mapinfo.data)
        finally:
            buffer.unmap(mapinfo)

        duration = buffer.duration
        if duration is None or duration == Gst.CLOCK_TIME_NONE:
            seconds = 0.0
        else:
            seconds = duration / _NS_PER_SECOND
        return EncodedBuffer(data=data, duration=seconds)

    def _raise_bus_error(self, Gst, pipeline):
        bus = pipeline.get_bus()
        msg = bus.pop_filtered(Gst.MessageType.ERROR)
        if msg is not None:
            err, debug = msg.parse_error()
            log.debug("Pipeline error details: %s", debug)
            raise SourceError(f"Pipeline error: {err.message}")

    def stop(self):
        """Tear the pipeline down. Blocks until it reaches NULL; thread-safe."""
        self._stopped = True
        with self._stop_lock:
            pipeline, self._pipeline = self._pipeline, None
        if pipeline is not None:
            Gst = _init_gst()
            pipeline.set_state(Gst.State.NULL)
            log.info("Pipeline stopped")


_gst = None


def _init_gst():
    """Import and initialise GStreamer through PyGObject on first use."""
    global _gst
    if _gst is None:
        import gi
        gi.require_version("Gst", "1.0")
        gi.require_version("GstApp", "1.0")
        from gi.repository import Gst, GstApp  # noqa: F401

        Gst.init(None)
        _gst = Gst
    return _gst
