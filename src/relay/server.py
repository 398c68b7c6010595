"""
relay.server
============
HTTP/WebSocket entrypoint for the voice relay:

• ``GET /health`` liveness check
• ``/``           client websocket, one ``RelaySession`` per connection
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import uvicorn
from fastapi import FastAPI, WebSocket
from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider

from src.relay.session import RelaySession
from src.relay.settings import HOST, PORT, SERVICE_NAME, RelaySettings
from utils.ml_logging import get_logger

logger = get_logger("relay.server")


# --------------------------------------------------------------------------- #
#  App factory
# --------------------------------------------------------------------------- #
def create_app(settings: Optional[RelaySettings] = None) -> FastAPI:
    """
    Build the relay application.

    Args:
        settings (RelaySettings, optional): Defaults to ``RelaySettings.from_env()``.
    """
    relay_settings = settings or RelaySettings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if not relay_settings.api_key:
            logger.error("OPENAI_API_KEY is not set, upstream connections will be rejected")
        logger.info(f"Relay starting, upstream model {relay_settings.model}")
        yield
        logger.info("Relay shutting down")

    app = FastAPI(title=SERVICE_NAME, lifespan=lifespan)
    app.state.relay_settings = relay_settings

    @app.get("/health")
    async def health():
        """Liveness check, always 200 while the process is up."""
        return {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "service": SERVICE_NAME,
        }

    @app.websocket("/")
    async def relay_ws(ws: WebSocket):
        await ws.accept()
        session = RelaySession(ws, app.state.relay_settings)
        await session.run()

    return app


app = create_app()


# --------------------------------------------------------------------------- #
#  CLI entry-point
# --------------------------------------------------------------------------- #
def main() -> None:
    # Recording spans carry the session id into log records.
    trace.set_tracer_provider(TracerProvider(resource=Resource.create({"service.name": SERVICE_NAME})))
    uvicorn.run(app, host=HOST, port=PORT)


if __name__ == "__main__":
    main()
