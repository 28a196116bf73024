"""Media bridge — pumps one sample source into one outgoing track.

Each bridge runs on its own asyncio task. A failure halts that track only;
the session and the other tracks keep running.
"""

import asyncio
import logging
from enum import Enum

from livecast.sources import SampleSource, SourceError
from livecast.tracks import Sample, SampleTrack, SampleWriteError

log = logging.getLogger("livecast.bridge")


class BridgeState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    STOPPED = "stopped"
    ERRORED = "errored"


class MediaBridge:
    """Forward buffers from *source* to *track* until EOS or failure."""

    def __init__(self, track: SampleTrack, source: SampleSource):
        self.track = track
        self.source = source
        self.state = BridgeState.IDLE
        self.samples_sent = 0
        self.error: BaseException | None = None
        self._task: asyncio.Task | None = None

    @property
    def kind(self) -> str:
        return self.track.kind

    def start(self):
        """Bind the source to the track and begin pumping. Only once."""
        if self.state is not BridgeState.IDLE:
            raise RuntimeError(f"{self.kind} bridge already started")
        self.track.bind(self.source)
        self.state = BridgeState.STREAMING
        try:
            self.source.start()
        except Exception as e:
            self._halt(BridgeState.ERRORED, e)
            self.source.stop()
            return
        self._task = asyncio.create_task(self._pump(), name=f"bridge-{self.kind}")
        log.info("%s bridge streaming", self.kind)

    async def _pump(self):
        try:
            while True:
                try:
                    buffer = await self.source.pull()
                except Exception as e:
                    self._halt(BridgeState.ERRORED, e)
                    return

                if buffer is None:
                    self._halt(BridgeState.STOPPED)
                    return
                if not buffer.data:
                    self._halt(BridgeState.ERRORED, SourceError("empty buffer"))
                    return

                try:
                    await self.track.write_sample(Sample(data=buffer.data, duration=buffer.duration))
                except SampleWriteError as e:
                    self._halt(BridgeState.ERRORED, e)
                    return
                self.samples_sent += 1
        finally:
            await self._stop_source()

    async def _stop_source(self):
        # Pipeline teardown can block, keep it off the event loop.
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self.source.stop)

    def _halt(self, state: BridgeState, error: BaseException | None = None):
        if self.state is not BridgeState.STREAMING:
            return
        self.state = state
        self.error = error
        if state is BridgeState.ERRORED:
            log.error("%s bridge halted after %d samples: %s", self.kind, self.samples_sent, error)
        else:
            log.info("%s bridge reached end of stream after %d samples", self.kind, self.samples_sent)

    async def wait(self) -> BridgeState:
        """Wait for the pump to finish and return the final state."""
        if self._task is not None:
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        return self.state

    async def stop(self):
        """Cancel the pump and release the source."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        await self._stop_source()
        self._halt(BridgeState.STOPPED)
