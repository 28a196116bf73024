"""GStreamer pipeline descriptions for the outgoing tracks.

Each description ends in an element named ``appsink`` that GstSampleSource
pulls encoded buffers from.
"""

import logging
import re

from livecast.config import StreamConfig

log = logging.getLogger("livecast.pipelines")

APPSINK = "appsink name=appsink"
DEFAULT_RESOLUTION = (1280, 720)


def parse_resolution(resolution: str) -> tuple[int, int]:
    """Parse ``WIDTHxHEIGHT``. Falls back to 1280x720 when malformed."""
    match = re.fullmatch(r"\s*(\d+)\s*[xX]\s*(\d+)\s*", resolution or "")
    if not match:
        log.warning("Invalid resolution %r, using %dx%d", resolution, *DEFAULT_RESOLUTION)
        return DEFAULT_RESOLUTION
    width, height = int(match.group(1)), int(match.group(2))
    if width <= 0 or height <= 0:
        log.warning("Invalid resolution %r, using %dx%d", resolution, *DEFAULT_RESOLUTION)
        return DEFAULT_RESOLUTION
    return width, height


def video_source_description(config: StreamConfig) -> str:
    width, height = parse_resolution(config.resolution)
    return (
        f"{config.video_src} device={config.video_device} ! videoconvert ! videoscale ! "
        f"video/x-raw,width={width},height={height},framerate={config.framerate},format=NV12 ! queue"
    )


def audio_source_description(config: StreamConfig) -> str:
    return (
        f"{config.audio_src} ! audioconvert ! audioresample ! "
        "audio/x-raw,channels=1,rate=48000 ! queue"
    )


def pipeline_for_codec(codec: str, source: str, bitrate: int = 2000) -> str:
    """Append the encoder chain for *codec* and the appsink to *source*."""
    if codec == "opus":
        return f"{source} ! opusenc ! {APPSINK}"
    if codec == "h264-nvidia":
        return (
            f"{source} ! nvh264enc preset=low-latency-hq bitrate={bitrate} rc-mode=cbr ! "
            f"h264parse ! video/x-h264,stream-format=byte-stream ! {APPSINK}"
        )
    if codec == "h264-x264":
        return (
            f"{source} ! x264enc tune=zerolatency speed-preset=ultrafast bitrate={bitrate} "
            f"key-int-max=60 ! h264parse ! video/x-h264,stream-format=byte-stream,profile=constrained-baseline ! "
            f"{APPSINK}"
        )
    raise ValueError(f"Unhandled codec {codec!r}")


def pipeline_for_kind(kind: str, config: StreamConfig) -> str:
    """Full pipeline description for the track of the given media kind."""
    if kind == "audio":
        return pipeline_for_codec("opus", audio_source_description(config))
    if kind == "video":
        return pipeline_for_codec(
            f"h264-{config.video_encoder}",
            video_source_description(config),
            bitrate=config.bitrate,
        )
    raise ValueError(f"Unknown media kind: {kind!r}")
