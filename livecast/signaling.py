"""WebSocket signaling server.

One Negotiator per accepted connection. Inbound frames are parsed and
dispatched strictly in order: a message is fully handled before the next
one is read. Nothing raised inside a session escapes handle().
"""

import logging

from livecast import messages
from livecast.config import StreamConfig
from livecast.messages import MessageError
from livecast.negotiation import NegotiationState, Negotiator, SourceFactory, TransportFactory
from livecast.peer import AiortcTransport, SessionTransport
from livecast.pipelines import pipeline_for_kind
from livecast.sources import GstSampleSource, SampleSource
from livecast.turn import ICEProvider, StaticICE

log = logging.getLogger("livecast.signaling")


class SignalingServer:
    """Accept signaling WebSockets and run one negotiation per connection.

    Usage with FastAPI:
        signaling = SignalingServer(StreamConfig())

        @app.websocket("/ws")
        async def ws_endpoint(websocket: WebSocket):
            await signaling.handle(websocket)
    """

    def __init__(
        self,
        config: StreamConfig,
        ice_provider: ICEProvider | None = None,
        transport_factory: TransportFactory | None = None,
        source_factory: SourceFactory | None = None,
    ):
        self.config = config
        self._ice_provider = ice_provider or StaticICE(config.ice_servers)
        self._transport_factory = transport_factory or self._aiortc_transport
        self._source_factory = source_factory or self._gst_source

    async def _aiortc_transport(self) -> SessionTransport:
        servers = await self._ice_provider.fetch_ice_servers()
        return AiortcTransport(servers)

    def _gst_source(self, kind: str) -> SampleSource:
        return GstSampleSource(pipeline_for_kind(kind, self.config))

    async def handle(self, websocket):
        """Run one session until the socket closes or negotiation fails."""
        try:
            await websocket.accept()
        except Exception as e:
            log.error("WebSocket accept failed: %s", e)
            return

        negotiator = Negotiator(
            websocket, self.config, self._transport_factory, self._source_factory,
        )
        try:
            try:
                await negotiator.start()
            except Exception as e:
                log.error("Session startup failed: %s", e)
                return

            while negotiator.state is not NegotiationState.FAILED:
                try:
                    frame = await websocket.receive()
                except Exception as e:
                    log.info("WebSocket closed: %s", e or type(e).__name__)
                    break

                if frame["type"] == "websocket.disconnect":
                    log.info("WebSocket closed by peer (code %s)", frame.get("code"))
                    break
                raw = frame.get("text")
                if raw is None:
                    raw = frame.get("bytes")
                if raw is None:
                    log.warning("Skipping %s frame without payload", frame["type"])
                    continue

                try:
                    message = messages.parse(raw)
                except MessageError as e:
                    log.warning("Skipping malformed message: %s", e)
                    continue

                try:
                    await negotiator.handle(message)
                except Exception:
                    log.exception("Unexpected error handling %s message", message.kind.value)
                    break
        finally:
            await negotiator.close()
            log.info("Session ended in state %s", negotiator.state.value)
