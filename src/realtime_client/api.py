import asyncio
import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake

from src.realtime_client.event_handler import RealtimeEventHandler
from src.realtime_client.exceptions import ProtocolError, RealtimeConnectionError
from src.realtime_client.utils import generate_id, trim_debug_event

logger = logging.getLogger(__name__)

DEFAULT_URL = "wss://api.openai.com/v1/realtime"
DEFAULT_MODEL = "gpt-4o-realtime-preview-2024-12-17"


class RealtimeAPI(RealtimeEventHandler):
    """
    Handles the WebSocket connection to the upstream Realtime API.

    Every received event is dispatched as ``server.<type>`` and ``server.*``;
    every sent event as ``client.<type>`` and ``client.*``. A ``close`` event
    is dispatched when the transport drops.
    """

    def __init__(
        self,
        url: str = DEFAULT_URL,
        model: str = DEFAULT_MODEL,
        api_key: Optional[str] = None,
        debug: bool = False,
    ) -> None:
        super().__init__()
        self.url = url
        self.model = model
        self.api_key = api_key if api_key is not None else os.getenv("OPENAI_API_KEY")
        self.debug = debug
        self.ws = None
        self._connecting = False
        self._receive_task: Optional[asyncio.Task] = None
        self._send_lock = asyncio.Lock()

    def is_connected(self) -> bool:
        """
        Check if WebSocket connection is active.

        Returns:
            bool: True if connected, False otherwise.
        """
        return self.ws is not None

    def log(self, *args: Any) -> None:
        """
        Log a debug message with a timestamp, redacting audio payloads.
        """
        if not self.debug:
            return
        parts = [
            json.dumps(trim_debug_event(arg), indent=2) if isinstance(arg, dict) else str(arg)
            for arg in args
        ]
        logger.debug(
            f"[Websocket/{datetime.now(timezone.utc).isoformat()}] " + " ".join(parts)
        )

    def connection_url(self) -> str:
        return f"{self.url}?model={self.model}" if self.model else self.url

    def connection_headers(self) -> Dict[str, str]:
        headers = {"OpenAI-Beta": "realtime=v1"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def connect(self) -> None:
        """
        Connect to the Realtime WebSocket endpoint and start receiving.

        Raises:
            RealtimeConnectionError: If already connected/connecting or the
                handshake is rejected.
        """
        if self.is_connected() or self._connecting:
            raise RealtimeConnectionError("Already connected")

        if not self.api_key:
            logger.warning(f"No api key provided for connection to '{self.url}'")

        self._connecting = True
        try:
            ws = await websockets.connect(
                self.connection_url(),
                additional_headers=self.connection_headers(),
                max_size=None,
            )
        except (InvalidHandshake, OSError, asyncio.TimeoutError) as e:
            logger.error(f"Failed to connect to '{self.url}': {e}")
            raise RealtimeConnectionError(f"Could not connect to '{self.url}'") from e
        finally:
            self._connecting = False

        self.ws = ws
        self.log(f"Connected to '{self.url}'")
        self._receive_task = asyncio.create_task(self._receive_messages(ws))

    async def _receive_messages(self, ws) -> None:
        """
        Listen for messages from the WebSocket and dispatch them.
        """
        error = False
        try:
            async for message in ws:
                try:
                    event = self.parse_message(message)
                except ProtocolError as e:
                    logger.error(f"Dropping upstream frame: {e}")
                    continue
                self.receive(event)
        except ConnectionClosed as e:
            error = e.rcvd is None or e.rcvd.code != 1000
            logger.warning(f"Upstream connection closed: {e}")
        except OSError as e:
            error = True
            logger.error(f"WebSocket connection error: {e}")

        if self.ws is ws:
            self.ws = None
            self.log(f"Disconnected from '{self.url}'")
            self.dispatch("close", {"type": "close", "error": error})

    @staticmethod
    def parse_message(message: Any) -> Dict[str, Any]:
        """
        Parse a raw frame into a tagged event.

        Raises:
            ProtocolError: If the frame is not a JSON object with a ``type``.
        """
        if isinstance(message, (bytes, bytearray)):
            raise ProtocolError("Unexpected binary frame")
        try:
            event = json.loads(message)
        except json.JSONDecodeError as e:
            raise ProtocolError(f"Malformed JSON frame: {message[:200]!r}") from e
        if not isinstance(event, dict) or not isinstance(event.get("type"), str):
            raise ProtocolError(f"Frame is missing 'type': {message[:200]!r}")
        return event

    def receive(self, event: Dict[str, Any]) -> None:
        """
        Dispatch an event received from the server.
        """
        self.log("Received:", event)
        if event["type"] == "error":
            logger.error(f"Realtime API error event: {event.get('error')}")
        self.dispatch(f"server.{event['type']}", event)
        self.dispatch("server.*", event)

    async def send(self, event_name: str, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Send an event over the WebSocket connection.

        Args:
            event_name (str): The event type.
            data (dict, optional): Additional payload data. An ``event_id`` in
                ``data`` is kept, so relayed client events retain their ids.

        Returns:
            dict: The event as written to the wire.

        Raises:
            RealtimeConnectionError: If not connected.
            TypeError: If ``data`` is not a dictionary.
        """
        if not self.is_connected():
            raise RealtimeConnectionError("RealtimeAPI is not connected")

        data = data or {}
        if not isinstance(data, dict):
            raise TypeError("Data must be a dictionary")

        event = {
            "event_id": generate_id("evt_"),
            **{k: v for k, v in data.items() if k != "type"},
            "type": event_name,
        }

        self.dispatch(f"client.{event_name}", event)
        self.dispatch("client.*", event)
        self.log("Sent:", event)

        async with self._send_lock:
            try:
                await self.ws.send(json.dumps(event))
            except ConnectionClosed as e:
                logger.error(f"Error sending WebSocket message: {e}")
                raise RealtimeConnectionError("Upstream connection closed") from e
        return event

    async def disconnect(self) -> None:
        """
        Disconnect from the WebSocket server. Safe to call repeatedly.
        """
        ws, self.ws = self.ws, None
        task, self._receive_task = self._receive_task, None
        if ws is not None:
            try:
                await ws.close()
            except ConnectionClosed:
                pass
            self.log(f"Disconnected from '{self.url}'")
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        await self.wait_for_handlers()
