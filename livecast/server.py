"""HTTP surface: signaling WebSocket, health probe and the static client page."""

from fastapi import FastAPI, WebSocket
from fastapi.staticfiles import StaticFiles

from livecast.config import StreamConfig
from livecast.signaling import SignalingServer
from livecast.turn import provider_from_env


def create_app(config: StreamConfig, signaling: SignalingServer | None = None) -> FastAPI:
    """Build the FastAPI app. Static assets are served from config.static_dir."""
    app = FastAPI(title="livecast")
    if signaling is None:
        signaling = SignalingServer(config, ice_provider=provider_from_env(config.ice_servers))
    app.state.signaling = signaling

    @app.websocket("/ws")
    async def ws_endpoint(websocket: WebSocket):
        await signaling.handle(websocket)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    # Mounted last so it does not shadow the routes above.
    app.mount("/", StaticFiles(directory=config.static_dir, html=True), name="static")
    return app
