"""Process configuration — immutable, built once at startup.

Every session receives the same ``StreamConfig`` instance; nothing in the
package reads settings from module globals.

Usage::

    from livecast.config import StreamConfig

    config = StreamConfig.from_env()
    config = config.with_overrides(bitrate=4000)
"""

import json
import os
from dataclasses import dataclass, field, replace

DEFAULT_ICE_SERVERS = ({"urls": "stun:stun.l.google.com:19302"},)

VIDEO_ENCODERS = ("nvidia", "x264")


@dataclass(frozen=True)
class StreamConfig:
    """Capture, encoding and network settings shared by all sessions."""

    port: int = 8080
    video_device: str = "/dev/video0"
    bitrate: int = 2000  # kbps
    audio_src: str = "pulsesrc"
    video_src: str = "v4l2src"
    framerate: str = "30/1"
    resolution: str = "1280x720"
    video_encoder: str = "nvidia"
    static_dir: str = "static"
    kinds: tuple = ("audio", "video")
    ice_servers: tuple = field(default=DEFAULT_ICE_SERVERS)

    def __post_init__(self):
        if self.bitrate <= 0:
            raise ValueError(f"bitrate must be positive, got {self.bitrate}")
        if self.video_encoder not in VIDEO_ENCODERS:
            raise ValueError(
                f"Unknown video encoder {self.video_encoder!r} "
                f"(expected one of {', '.join(VIDEO_ENCODERS)})"
            )
        for kind in self.kinds:
            if kind not in ("audio", "video"):
                raise ValueError(f"Unknown media kind: {kind!r}")

    @classmethod
    def from_env(cls) -> "StreamConfig":
        """Build a config from LIVECAST_* environment variables.

        Unset variables keep the dataclass defaults. ``LIVECAST_ICE_SERVERS``
        is a JSON list of ICE server dicts; ``LIVECAST_KINDS`` is a comma
        separated list such as ``audio,video``.
        """
        kwargs = {}
        for name, cast in (
            ("port", int),
            ("video_device", str),
            ("bitrate", int),
            ("audio_src", str),
            ("video_src", str),
            ("framerate", str),
            ("resolution", str),
            ("video_encoder", str),
            ("static_dir", str),
        ):
            value = os.getenv(f"LIVECAST_{name.upper()}")
            if value:
                kwargs[name] = cast(value)

        kinds = os.getenv("LIVECAST_KINDS")
        if kinds:
            kwargs["kinds"] = tuple(k.strip() for k in kinds.split(",") if k.strip())

        ice = os.getenv("LIVECAST_ICE_SERVERS")
        if ice:
            kwargs["ice_servers"] = tuple(json.loads(ice))

        return cls(**kwargs)

    def with_overrides(self, **overrides) -> "StreamConfig":
        """Return a copy with the non-None overrides applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})
