"""Command-line entry point.

Run: python -m livecast --video-device /dev/video0 --bitrate 2000 --port 8080
Open: http://localhost:8080
"""

import argparse
import logging

import uvicorn

from livecast.config import VIDEO_ENCODERS, StreamConfig
from livecast.server import create_app

log = logging.getLogger("livecast")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="livecast", description="Stream a camera and microphone to a browser over WebRTC")
    parser.add_argument("--port", type=int, help="http server port (default 8080)")
    parser.add_argument("--host", default="0.0.0.0", help="interface to bind")
    parser.add_argument("--video-device", help="video device to use (default /dev/video0)")
    parser.add_argument("--bitrate", type=int, help="video bitrate in kbps (default 2000)")
    parser.add_argument("--audio-src", help="GStreamer audio source element")
    parser.add_argument("--video-src", help="GStreamer video source element")
    parser.add_argument("--framerate", help="video framerate, e.g. 30/1")
    parser.add_argument("--resolution", help="video resolution WIDTHxHEIGHT")
    parser.add_argument("--video-encoder", choices=VIDEO_ENCODERS, help="H.264 encoder")
    parser.add_argument("--static-dir", help="directory served at /")
    parser.add_argument("--log-level", default="INFO", help="logging level")
    return parser


def config_from_args(args: argparse.Namespace) -> StreamConfig:
    """Environment first, then explicit flags on top."""
    return StreamConfig.from_env().with_overrides(
        port=args.port,
        video_device=args.video_device,
        bitrate=args.bitrate,
        audio_src=args.audio_src,
        video_src=args.video_src,
        framerate=args.framerate,
        resolution=args.resolution,
        video_encoder=args.video_encoder,
        static_dir=args.static_dir,
    )


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=args.log_level.upper())
    config = config_from_args(args)

    app = create_app(config)
    log.info("Server starting on port %d", config.port)
    uvicorn.run(app, host=args.host, port=config.port, log_level=args.log_level.lower())


if __name__ == "__main__":
    main()
