"""Tests for livecast.bridge — pumping source buffers into tracks."""

import asyncio
import threading

import pytest

from livecast.bridge import BridgeState, MediaBridge
from livecast.sources import EncodedBuffer
from livecast.tracks import SampleTrack

from fakes import RecordingSource, wait_until


class BrokenPullSource(RecordingSource):
    async def pull(self):
        raise OSError("appsink vanished")


def frame(data: bytes = b"\x00\x00\x00\x01\x65frame", duration: float = 1 / 30) -> EncodedBuffer:
    return EncodedBuffer(data=data, duration=duration)


class TestMediaBridge:
    @pytest.mark.asyncio
    async def test_forwards_buffers_in_order(self):
        track = SampleTrack("video")
        source = RecordingSource()
        bridge = MediaBridge(track, source)
        bridge.start()

        await source.feed(frame(b"one"))
        await source.feed(frame(b"two"))
        first = await asyncio.wait_for(track.recv(), timeout=2.0)
        second = await asyncio.wait_for(track.recv(), timeout=2.0)

        assert bytes(first) == b"one"
        assert bytes(second) == b"two"
        assert second.pts == first.duration == 3000  # 1/30s at 90kHz
        assert bridge.state is BridgeState.STREAMING
        await bridge.stop()

    @pytest.mark.asyncio
    async def test_end_of_stream_stops_cleanly(self):
        track = SampleTrack("audio")
        source = RecordingSource()
        bridge = MediaBridge(track, source)
        bridge.start()

        await source.feed(frame(b"opus", 0.02))
        await source.end()
        packet = await asyncio.wait_for(track.recv(), timeout=2.0)

        assert await bridge.wait() is BridgeState.STOPPED
        assert bytes(packet) == b"opus"
        assert bridge.samples_sent == 1
        assert bridge.error is None
        assert source.stops >= 1

    @pytest.mark.asyncio
    async def test_empty_buffer_is_an_error(self):
        bridge = MediaBridge(SampleTrack("video"), RecordingSource())
        bridge.start()
        await bridge.source.feed(EncodedBuffer(data=b"", duration=0.0))

        assert await bridge.wait() is BridgeState.ERRORED
        assert bridge.samples_sent == 0

    @pytest.mark.asyncio
    async def test_source_error_halts_bridge(self):
        bridge = MediaBridge(SampleTrack("video"), RecordingSource())
        bridge.start()
        await bridge.source.fail(RuntimeError("v4l2 device unplugged"))

        assert await bridge.wait() is BridgeState.ERRORED
        assert "unplugged" in str(bridge.error)

    @pytest.mark.asyncio
    async def test_unexpected_pull_error_halts_bridge(self):
        source = BrokenPullSource()
        bridge = MediaBridge(SampleTrack("audio"), source)
        bridge.start()

        assert await bridge.wait() is BridgeState.ERRORED
        assert isinstance(bridge.error, OSError)
        await bridge.stop()
        assert bridge.state is BridgeState.ERRORED
        assert source.stops >= 1

    @pytest.mark.asyncio
    async def test_source_is_stopped_off_the_event_loop(self):
        source = RecordingSource()
        bridge = MediaBridge(SampleTrack("audio"), source)
        bridge.start()
        await asyncio.sleep(0)

        await bridge.stop()
        assert source.stop_threads
        assert threading.get_ident() not in source.stop_threads

    @pytest.mark.asyncio
    async def test_write_failure_is_not_retried(self):
        track = SampleTrack("video")
        source = RecordingSource()
        bridge = MediaBridge(track, source)
        bridge.start()
        track.stop()

        await source.feed(frame(b"lost"))
        await source.feed(frame(b"never pulled"))

        assert await bridge.wait() is BridgeState.ERRORED
        assert bridge.samples_sent == 0
        # The second buffer stays in the source: no pull after a failed write.
        assert await source.pull() == frame(b"never pulled")

    @pytest.mark.asyncio
    async def test_failed_track_does_not_affect_other_track(self):
        audio, video = SampleTrack("audio"), SampleTrack("video")
        audio_src, video_src = RecordingSource(), RecordingSource()
        audio_bridge = MediaBridge(audio, audio_src)
        video_bridge = MediaBridge(video, video_src)
        audio_bridge.start()
        video_bridge.start()

        audio.stop()
        await audio_src.feed(frame(b"audio", 0.02))
        assert await audio_bridge.wait() is BridgeState.ERRORED

        await video_src.feed(frame(b"video"))
        packet = await asyncio.wait_for(video.recv(), timeout=2.0)
        assert bytes(packet) == b"video"
        assert video_bridge.state is BridgeState.STREAMING
        await video_bridge.stop()

    @pytest.mark.asyncio
    async def test_start_only_once(self):
        track = SampleTrack("audio")
        bridge = MediaBridge(track, RecordingSource())
        bridge.start()
        with pytest.raises(RuntimeError):
            bridge.start()
        assert bridge.source.starts == 1
        await bridge.stop()

    @pytest.mark.asyncio
    async def test_track_cannot_be_rebound(self):
        track = SampleTrack("audio")
        first = MediaBridge(track, RecordingSource())
        first.start()
        other = MediaBridge(track, RecordingSource())
        with pytest.raises(RuntimeError):
            other.start()
        assert other.source.starts == 0
        await first.stop()

    @pytest.mark.asyncio
    async def test_source_start_failure_errors_bridge(self):
        source = RecordingSource(fail_start=True)
        bridge = MediaBridge(SampleTrack("video"), source)
        bridge.start()

        assert bridge.state is BridgeState.ERRORED
        assert source.stops == 1
        assert await bridge.wait() is BridgeState.ERRORED

    @pytest.mark.asyncio
    async def test_stop_cancels_pending_pull(self):
        source = RecordingSource()
        bridge = MediaBridge(SampleTrack("audio"), source)
        bridge.start()
        await asyncio.sleep(0)

        await bridge.stop()
        assert bridge.state is BridgeState.STOPPED
        assert source.stops >= 1

    @pytest.mark.asyncio
    async def test_blocked_writer_observes_track_stop(self):
        track = SampleTrack("video", maxsize=1)
        source = RecordingSource()
        bridge = MediaBridge(track, source)
        bridge.start()

        await source.feed(frame(b"fills queue"))
        await source.feed(frame(b"blocks"))
        await wait_until(lambda: bridge.samples_sent == 1)
        track.stop()
        await source.feed(frame(b"rejected"))

        assert await bridge.wait() is BridgeState.ERRORED
