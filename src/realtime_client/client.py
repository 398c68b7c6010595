# client.py orchestrates the RealtimeAPI transport, conversation tracking,
# session configuration, input audio buffering and tool execution.

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from src.realtime_client.api import RealtimeAPI
from src.realtime_client.audio_buffer import InputAudioBuffer
from src.realtime_client.conversation import ProcessResult, RealtimeConversation
from src.realtime_client.event_handler import RealtimeEventHandler
from src.realtime_client.exceptions import RealtimeConnectionError, RelayModeError, StateError
from src.realtime_client.session import (
    SessionConfigManager,
    load_session_config_from_yaml,
    merge_session_config,
)
from src.realtime_client.tools import ToolInvocationController
from src.realtime_client.utils import (
    DEFAULT_FREQUENCY,
    AudioLike,
    array_buffer_to_base64,
    samples_to_ms,
)

logger = logging.getLogger(__name__)


class RealtimeClient(RealtimeEventHandler):
    """
    Client orchestrator that manages RealtimeAPI, conversation tracking,
    session configuration, and user interactions.

    Derived events dispatched on the client: ``realtime.event``,
    ``conversation.updated``, ``conversation.item.appended``,
    ``conversation.item.completed``, ``conversation.interrupted``,
    ``conversation.item.input_audio_transcription.completed`` and
    ``conversation.tool_call.error``.
    """

    def __init__(
        self,
        session_config: Optional[Dict[str, Any]] = None,
        session_config_path: Optional[str] = None,
        relay: bool = False,
        frequency: int = DEFAULT_FREQUENCY,
        **api_params: Any,
    ) -> None:
        super().__init__()
        overrides = session_config or {}
        if session_config_path:
            overrides = merge_session_config(
                load_session_config_from_yaml(session_config_path), overrides
            )

        self.relay = relay
        self.realtime = RealtimeAPI(**api_params)
        self.conversation = RealtimeConversation(frequency=frequency)
        self.session = SessionConfigManager(overrides, relay=relay)
        self.input_audio_buffer = InputAudioBuffer()
        self.tool_controller = ToolInvocationController(
            self.session,
            send=self.realtime.send,
            create_response=self.create_response,
            relay=relay,
            on_error=lambda payload: self.dispatch("conversation.tool_call.error", payload),
        )
        self.session_created = False

        self._reset_config()
        self._add_api_event_handlers()

    @property
    def default_session_config(self) -> Dict[str, Any]:
        return self.session.default_session_config

    @property
    def session_config(self) -> Dict[str, Any]:
        return self.session.session_config

    @property
    def tools(self) -> Dict[str, Dict[str, Any]]:
        return self.session.tools

    def _reset_config(self) -> None:
        self.session_created = False
        self.session.reset()
        self.input_audio_buffer.clear()

    def _add_api_event_handlers(self) -> None:
        self.realtime.on("client.*", self._log_client_event)
        self.realtime.on("server.*", self._log_server_event)
        self.realtime.on("server.session.created", self._on_session_created)
        self.realtime.on("server.response.created", self._process_event)
        self.realtime.on("server.response.done", self._process_event)
        self.realtime.on("server.response.output_item.added", self._process_event)
        self.realtime.on("server.response.content_part.added", self._process_event)
        self.realtime.on("server.input_audio_buffer.speech_started", self._on_speech_started)
        self.realtime.on("server.input_audio_buffer.speech_stopped", self._on_speech_stopped)
        self.realtime.on("server.conversation.item.created", self._on_item_created)
        self.realtime.on("server.conversation.item.truncated", self._process_event_with_dispatch)
        self.realtime.on("server.conversation.item.deleted", self._process_event_with_dispatch)
        self.realtime.on(
            "server.conversation.item.input_audio_transcription.completed",
            self._on_transcription_completed,
        )
        self.realtime.on("server.response.audio_transcript.delta", self._process_event_with_dispatch)
        self.realtime.on("server.response.audio.delta", self._process_event_with_dispatch)
        self.realtime.on("server.response.text.delta", self._process_event_with_dispatch)
        self.realtime.on(
            "server.response.function_call_arguments.delta",
            self._process_event_with_dispatch,
        )
        self.realtime.on("server.response.output_item.done", self._on_output_item_done)

    def _log_client_event(self, event: dict) -> None:
        self._log_event("client", event)

    def _log_server_event(self, event: dict) -> None:
        self._log_event("server", event)

    def _log_event(self, source: str, event: dict) -> None:
        realtime_event = {
            "type": "realtime.event",
            "time": datetime.now(timezone.utc).isoformat(),
            "source": source,
            "event": event,
        }
        self.dispatch("realtime.event", realtime_event)

    def _on_session_created(self, event: dict) -> None:
        self.session_created = True

    def _process_event(self, event: dict, *args: Any) -> ProcessResult:
        if not self.is_connected():
            return ProcessResult()
        return self.conversation.process_event(event, *args)

    def _process_event_with_dispatch(self, event: dict, *args: Any) -> ProcessResult:
        result = self._process_event(event, *args)
        if result.item:
            self.dispatch(
                "conversation.updated",
                {"type": "conversation.updated", "item": result.item, "delta": result.delta},
            )
        return result

    def _on_transcription_completed(self, event: dict) -> None:
        result = self._process_event_with_dispatch(event)
        self.dispatch(
            "conversation.item.input_audio_transcription.completed",
            {"item": result.item, "delta": result.delta},
        )

    def _on_speech_started(self, event: dict) -> None:
        self._process_event(event)
        self.dispatch("conversation.interrupted", event)

    def _on_speech_stopped(self, event: dict) -> None:
        self._process_event(event, self.input_audio_buffer.samples, self.input_audio_buffer.offset)

    def _on_item_created(self, event: dict) -> None:
        result = self._process_event_with_dispatch(event)
        if not result.item:
            return
        self.dispatch(
            "conversation.item.appended",
            {"type": "conversation.item.appended", "item": result.item},
        )
        if result.item.get("status") == "completed":
            self.dispatch(
                "conversation.item.completed",
                {"type": "conversation.item.completed", "item": result.item},
            )

    def _on_output_item_done(self, event: dict) -> None:
        result = self._process_event_with_dispatch(event)
        item = result.item
        if not item or "formatted" not in item:
            return
        if item.get("status") == "completed":
            self.dispatch(
                "conversation.item.completed",
                {"type": "conversation.item.completed", "item": item},
            )
        tool = item["formatted"].get("tool")
        if tool and item.get("status") == "completed":
            self.tool_controller.submit(dict(tool))

    def is_connected(self) -> bool:
        return self.realtime.is_connected()

    def is_relay(self) -> bool:
        """
        In relay mode tools are never invoked locally and the direct send
        helpers are disabled.
        """
        return self.relay

    async def reset(self) -> bool:
        """
        Disconnect and restore the default configuration and handlers.
        """
        await self.disconnect()
        self.clear_event_handlers()
        self.realtime.clear_event_handlers()
        self._reset_config()
        self._add_api_event_handlers()
        return True

    async def connect(self) -> bool:
        """
        Connect to the Realtime API and push the current session config.

        Raises:
            RealtimeConnectionError: If already connected or the handshake fails.
        """
        if self.is_connected():
            raise RealtimeConnectionError("Already connected, use disconnect() first")

        await self.realtime.connect()
        await self.update_session()
        return True

    async def wait_for_session_created(self, timeout: Optional[float] = None) -> None:
        """
        Raises:
            RealtimeConnectionError: If not connected.
            TimeoutError: If ``session.created`` does not arrive in time.
        """
        if not self.is_connected():
            raise RealtimeConnectionError("Not connected, use connect() first")
        if not self.session_created:
            await self.realtime.wait_for_next("server.session.created", timeout=timeout)

    async def disconnect(self) -> None:
        """
        Close the upstream connection and drop all conversation state.
        """
        self.session_created = False
        await self.tool_controller.close()
        await self.realtime.disconnect()
        self.conversation.clear()
        self.input_audio_buffer.clear()

    def get_turn_detection_type(self) -> Optional[str]:
        return self.session.turn_detection_type

    async def add_tool(self, definition: dict, handler: Callable[..., Any]) -> dict:
        tool = self.session.add_tool(definition, handler)
        await self.update_session()
        return tool

    async def remove_tool(self, name: str) -> bool:
        self.session.remove_tool(name)
        await self.update_session()
        return True

    async def delete_item(self, item_id: str) -> None:
        await self.realtime.send("conversation.item.delete", {"item_id": item_id})

    async def update_session(self, **kwargs: Any) -> bool:
        """
        Merge ``kwargs`` into the session config and transmit a snapshot when
        connected and not relaying.
        """
        snapshot = self.session.update(**kwargs)
        if self.is_connected() and not self.relay:
            await self.realtime.send("session.update", {"session": snapshot})
        return True

    def _assert_not_relay(self, action: str) -> None:
        if self.relay:
            raise RelayModeError(f"Unable to {action} directly in relay mode")

    async def send_user_message_content(self, content: List[dict]) -> bool:
        self._assert_not_relay("send messages")
        if content:
            for c in content:
                if c.get("type") == "input_audio" and not isinstance(c.get("audio"), str):
                    c["audio"] = array_buffer_to_base64(c["audio"])
            await self.realtime.send(
                "conversation.item.create",
                {
                    "item": {
                        "type": "message",
                        "role": "user",
                        "content": content,
                    }
                },
            )
        await self.create_response()
        return True

    async def append_input_audio(self, array_buffer: AudioLike) -> bool:
        """
        Forward a PCM16 chunk upstream and mirror it into the local buffer.
        """
        self._assert_not_relay("append input audio")
        if len(array_buffer) > 0:
            await self.realtime.send(
                "input_audio_buffer.append",
                {"audio": array_buffer_to_base64(array_buffer)},
            )
            self.input_audio_buffer.append(array_buffer)
        return True

    async def create_response(self) -> bool:
        """
        Ask the model for a response, committing buffered audio first when
        turn detection is off.
        """
        self._assert_not_relay("create a response")
        if self.get_turn_detection_type() is None and len(self.input_audio_buffer) > 0:
            await self.realtime.send("input_audio_buffer.commit")
            self.conversation.queue_input_audio(self.input_audio_buffer.flush())
        await self.realtime.send("response.create")
        return True

    async def cancel_response(self, item_id: Optional[str] = None, sample_count: int = 0) -> Optional[dict]:
        """
        Cancel the ongoing generation and, given an assistant item, truncate its
        audio at ``sample_count`` played samples.

        Raises:
            StateError: If the item is unknown, not an assistant message, or has
                no audio content.
        """
        self._assert_not_relay("cancel a response")
        if not item_id:
            await self.realtime.send("response.cancel")
            return None

        item = self.conversation.get_item(item_id)
        if not item:
            raise StateError(f'Could not find item "{item_id}"')
        if item.get("type") != "message" or item.get("role") != "assistant":
            raise StateError("Can only cancel responses for assistant messages")
        audio_index = next(
            (i for i, c in enumerate(item.get("content") or []) if c.get("type") == "audio"),
            -1,
        )
        if audio_index < 0:
            raise StateError(f"Could not find audio on item {item_id} to cancel")

        await self.realtime.send("response.cancel")
        await self.realtime.send(
            "conversation.item.truncate",
            {
                "item_id": item_id,
                "content_index": audio_index,
                "audio_end_ms": samples_to_ms(sample_count, self.conversation.frequency),
            },
        )
        return item

    async def wait_for_next_item(self, timeout: Optional[float] = None) -> dict:
        event = await self.wait_for_next("conversation.item.appended", timeout=timeout)
        return event["item"]

    async def wait_for_next_completed_item(self, timeout: Optional[float] = None) -> dict:
        event = await self.wait_for_next("conversation.item.completed", timeout=timeout)
        return event["item"]
