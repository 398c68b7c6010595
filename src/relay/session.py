"""
relay.session
=============

One ``RelaySession`` pairs a connected client websocket with an upstream
Realtime API connection:

• binary client frames are PCM16 audio, forwarded as ``input_audio_buffer.append``
• text client frames are JSON client events, forwarded by ``type``
• every upstream event is written back to the client in receipt order
• frames that arrive before the upstream is ready are queued and flushed FIFO
"""

import asyncio
import json
from collections import deque
from typing import Any, Deque, Dict, Optional, Tuple

import backoff
from fastapi import WebSocket, WebSocketDisconnect
from fastapi.websockets import WebSocketState
from opentelemetry import trace

from src.realtime_client.api import RealtimeAPI
from src.realtime_client.client import RealtimeClient
from src.realtime_client.exceptions import ProtocolError, RealtimeConnectionError
from src.realtime_client.utils import array_buffer_to_base64, generate_id
from src.relay.settings import RelaySettings
from utils.ml_logging import get_logger

logger = get_logger("relay.session")
tracer = trace.get_tracer(__name__)

_CLOSE = object()

# Upstream events worth a log line; deltas are too chatty.
_LOGGED_EVENTS = {
    "session.created": "Session ready",
    "session.updated": "Session updated",
    "input_audio_buffer.speech_started": "Speech detected",
    "input_audio_buffer.speech_stopped": "Speech stopped, processing",
    "input_audio_buffer.committed": "Audio buffer committed",
    "conversation.item.created": "Item created",
    "response.created": "Response started",
    "response.function_call_arguments.done": "Function call received",
    "response.done": "Response completed",
}


class RelaySession:
    """
    Relays one client connection to the upstream Realtime API.

    Args:
        websocket: Accepted client websocket.
        settings: Upstream credentials and the session config to push.
        session_id (str, optional): Identifier used in logs and traces.
    """

    def __init__(
        self,
        websocket: WebSocket,
        settings: RelaySettings,
        session_id: Optional[str] = None,
    ) -> None:
        self.websocket = websocket
        self.settings = settings
        self.session_id = session_id or generate_id("relay_", 12)
        self.client = RealtimeClient(
            session_config=settings.session_config,
            relay=True,
            frequency=settings.sample_rate,
            url=settings.url,
            model=settings.model,
            api_key=settings.api_key,
            debug=settings.debug,
        )
        self.ready = False
        self.closed = False
        self._pending: Deque[Tuple[str, Any]] = deque()
        self._outbound: asyncio.Queue = asyncio.Queue()
        self._writer: Optional[asyncio.Task] = None

        self.realtime.on("server.*", self._relay_to_client)
        self.realtime.on("close", self._on_upstream_close)

    @property
    def realtime(self) -> RealtimeAPI:
        return self.client.realtime

    async def run(self) -> None:
        """
        Serve the client until either side disconnects.
        """
        with tracer.start_as_current_span(
            "relay.session", attributes={"relay.session_id": self.session_id}
        ):
            logger.info(f"Client connected ({self.session_id})")
            self._writer = asyncio.create_task(self._pump_to_client())
            connector = asyncio.create_task(self.connect_upstream())
            try:
                while not self.closed:
                    message = await self.websocket.receive()
                    if message["type"] == "websocket.disconnect":
                        break
                    await self.handle_client_message(message)
            except WebSocketDisconnect as e:
                logger.info(f"Client websocket closed with code {e.code}")
            finally:
                connector.cancel()
                await asyncio.gather(connector, return_exceptions=True)
                await self.close()
                logger.info(f"Client disconnected ({self.session_id})")

    async def connect_upstream(self) -> bool:
        """
        Open the upstream connection, retrying rejected handshakes.

        Returns:
            bool: True once the session is live, False if every attempt failed.
        """
        connect = backoff.on_exception(
            backoff.expo,
            RealtimeConnectionError,
            max_tries=self.settings.connect_max_tries,
            logger=logger,
        )(self.client.connect)

        logger.info(f"Connecting to upstream {self.realtime.url}")
        try:
            await connect()
        except RealtimeConnectionError as e:
            logger.error(f"Error connecting to upstream: {e}")
            self._outbound.put_nowait({"type": "error", "message": str(e)})
            self._outbound.put_nowait(_CLOSE)
            return False

        logger.info("Connected to upstream successfully")
        await self.on_upstream_ready()
        return True

    async def on_upstream_ready(self) -> None:
        """
        Push the configured session, then flush queued client frames in order.
        """
        await self.realtime.send("session.update", {"session": self.client.session.snapshot()})
        logger.info(f"Session configuration sent ({len(self.client.session_config['tools'])} tools)")

        while self._pending:
            kind, payload = self._pending.popleft()
            if kind == "audio":
                await self._send_audio(payload)
            else:
                await self._send_event(payload)
        self.ready = True

    async def handle_client_message(self, message: Dict[str, Any]) -> None:
        if message.get("bytes") is not None:
            await self.forward_audio(message["bytes"])
        elif message.get("text") is not None:
            await self.forward_event(message["text"])

    async def forward_audio(self, chunk: bytes) -> None:
        """
        Forward a raw PCM16 chunk, queueing it until the upstream is ready.
        """
        if len(chunk) % 2:
            logger.error(f"Dropping client frame: odd PCM16 frame length {len(chunk)}")
            return
        if not self.ready:
            self._pending.append(("audio", chunk))
            return
        await self._send_audio(chunk)

    async def forward_event(self, text: str) -> None:
        """
        Forward a JSON client event, queueing it until the upstream is ready.
        """
        try:
            event = RealtimeAPI.parse_message(text)
        except ProtocolError as e:
            logger.error(f"Dropping client frame: {e}")
            return
        if not self.ready:
            self._pending.append(("event", event))
            return
        await self._send_event(event)

    async def _send_audio(self, chunk: bytes) -> None:
        await self.realtime.send("input_audio_buffer.append", {"audio": array_buffer_to_base64(chunk)})

    async def _send_event(self, event: Dict[str, Any]) -> None:
        logger.debug(f"Relaying '{event['type']}' to upstream")
        await self.realtime.send(event["type"], event)

    def _relay_to_client(self, event: Dict[str, Any]) -> None:
        message = _LOGGED_EVENTS.get(event["type"])
        if message:
            logger.info(f"{message}: {event['type']}")
        if event["type"] == "error":
            logger.error(f"Upstream error: {json.dumps(event.get('error'))}")
        self._outbound.put_nowait(event)

    def _on_upstream_close(self, event: Dict[str, Any]) -> None:
        if event.get("error"):
            logger.error("Upstream websocket error, closing client")
            self._outbound.put_nowait({"type": "error", "message": "Upstream connection error"})
        self.ready = False
        self._outbound.put_nowait(_CLOSE)

    async def _pump_to_client(self) -> None:
        while True:
            event = await self._outbound.get()
            if event is _CLOSE:
                await self._close_client()
                return
            if self.websocket.client_state != WebSocketState.CONNECTED:
                continue
            try:
                await self.websocket.send_text(json.dumps(event))
            except (WebSocketDisconnect, RuntimeError) as e:
                logger.warning(f"Client went away while relaying: {e}")
                return

    async def _close_client(self) -> None:
        if self.websocket.client_state == WebSocketState.CONNECTED:
            await self.websocket.close()

    async def close(self) -> None:
        """
        Tear down both connections and drop every queued frame and buffer.
        """
        if self.closed:
            return
        self.closed = True
        self.ready = False
        self._pending.clear()
        await self.client.disconnect()

        if self._writer is not None and not self._writer.done():
            self._writer.cancel()
            await asyncio.gather(self._writer, return_exceptions=True)
        await self._close_client()
