"""
Tests for RealtimeClient orchestration: derived events, send helpers,
tool round trips and relay mode.
"""

import asyncio
import json

import numpy as np
import pytest

from src.realtime_client.client import RealtimeClient
from src.realtime_client.exceptions import RelayModeError, StateError
from src.realtime_client.utils import array_buffer_to_base64

CREATE_TASK = {
    "name": "createTask",
    "description": "Create a new habit or task in the user's Ikigai app",
    "parameters": {
        "type": "object",
        "properties": {"name": {"type": "string"}, "pillar": {"type": "string"}},
        "required": ["name", "pillar"],
    },
}


class MockUpstreamWebSocket:
    """Mock upstream websocket recording sent events."""

    def __init__(self):
        self.sent = []
        self.closed = False

    async def send(self, message: str):
        self.sent.append(json.loads(message))

    async def close(self):
        self.closed = True

    @property
    def sent_types(self):
        return [e["type"] for e in self.sent]


def server_event(event_type: str, **fields):
    return {"event_id": f"evt_{event_type}", "type": event_type, **fields}


def function_call_events(call_id="call_1", arguments='{"name": "Meditate", "pillar": "mental"}', status="completed"):
    item = {"id": "item_fc", "type": "function_call", "name": "createTask", "call_id": call_id}
    return [
        server_event("conversation.item.created", item=item),
        server_event("response.function_call_arguments.delta", item_id="item_fc", delta=arguments),
        server_event("response.output_item.done", item={**item, "status": status, "arguments": arguments}),
    ]


@pytest.fixture
def upstream():
    return MockUpstreamWebSocket()


@pytest.fixture
def client(upstream):
    client = RealtimeClient(api_key="sk-test")
    client.realtime.ws = upstream
    return client


@pytest.fixture
def relay_client(upstream):
    client = RealtimeClient(api_key="sk-test", relay=True)
    client.realtime.ws = upstream
    return client


def feed(client, events):
    for event in events:
        client.realtime.receive(event)


class TestDerivedEvents:
    def test_events_ignored_while_disconnected(self):
        client = RealtimeClient(api_key="sk-test")
        feed(client, [server_event("conversation.item.created", item={"id": "item_1", "type": "message", "role": "user"})])
        assert client.conversation.get_items() == []

    def test_user_message_is_appended_and_completed(self, client):
        appended, completed = [], []
        client.on("conversation.item.appended", appended.append)
        client.on("conversation.item.completed", completed.append)

        feed(client, [server_event("conversation.item.created", item={"id": "item_1", "type": "message", "role": "user", "content": []})])

        assert [e["item"]["id"] for e in appended] == ["item_1"]
        assert [e["item"]["id"] for e in completed] == ["item_1"]

    def test_speech_started_interrupts(self, client):
        interrupted = []
        client.on("conversation.interrupted", interrupted.append)
        feed(client, [server_event("input_audio_buffer.speech_started", item_id="item_1", audio_start_ms=0)])
        assert len(interrupted) == 1

    def test_audio_delta_emits_conversation_updated(self, client):
        updates = []
        client.on("conversation.updated", updates.append)
        chunk = np.array([7, 8], dtype=np.int16)

        feed(
            client,
            [
                server_event("conversation.item.created", item={"id": "item_a", "type": "message", "role": "assistant", "content": []}),
                server_event("response.audio.delta", item_id="item_a", delta=array_buffer_to_base64(chunk)),
            ],
        )

        assert updates[-1]["delta"]["audio"].tolist() == [7, 8]

    def test_realtime_event_wraps_both_directions(self, client):
        sources = []
        client.on("realtime.event", lambda e: sources.append(e["source"]))
        feed(client, [server_event("session.created", session={})])
        assert sources == ["server"]
        assert client.session_created

    def test_processing_error_does_not_stop_the_stream(self, client):
        feed(
            client,
            [
                server_event("response.text.delta", item_id="missing", delta="x"),
                server_event("conversation.item.created", item={"id": "item_1", "type": "message", "role": "user"}),
            ],
        )
        assert client.conversation.get_item("item_1") is not None

    @pytest.mark.asyncio
    async def test_wait_for_next_item(self, client):
        waiter = asyncio.create_task(client.wait_for_next_item(timeout=1))
        await asyncio.sleep(0)

        feed(client, [server_event("conversation.item.created", item={"id": "item_1", "type": "message", "role": "user"})])

        assert (await waiter)["id"] == "item_1"


class TestSendHelpers:
    @pytest.mark.asyncio
    async def test_update_session_sends_snapshot(self, client, upstream):
        await client.update_session(voice="shimmer")
        assert upstream.sent_types == ["session.update"]
        assert upstream.sent[0]["session"]["voice"] == "shimmer"

    @pytest.mark.asyncio
    async def test_add_tool_pushes_session(self, client, upstream):
        await client.add_tool(CREATE_TASK, lambda **kwargs: {})
        assert upstream.sent[-1]["session"]["tools"][0]["name"] == "createTask"

    @pytest.mark.asyncio
    async def test_send_user_message_content(self, client, upstream):
        await client.send_user_message_content([{"type": "input_text", "text": "hello"}])
        assert upstream.sent_types == ["conversation.item.create", "response.create"]
        assert upstream.sent[0]["item"]["role"] == "user"

    @pytest.mark.asyncio
    async def test_manual_turn_commits_buffered_audio(self, client, upstream):
        await client.append_input_audio(np.arange(2400, dtype=np.int16))
        await client.create_response()

        assert upstream.sent_types == [
            "input_audio_buffer.append",
            "input_audio_buffer.commit",
            "response.create",
        ]
        assert len(client.conversation.queued_input_audio) == 2400
        assert len(client.input_audio_buffer) == 0

    @pytest.mark.asyncio
    async def test_server_vad_does_not_commit(self, upstream):
        client = RealtimeClient(session_config={"turn_detection": {"type": "server_vad"}}, api_key="sk-test")
        client.realtime.ws = upstream

        await client.append_input_audio(b"\x01\x00")
        await client.create_response()

        assert upstream.sent_types == ["input_audio_buffer.append", "response.create"]

    @pytest.mark.asyncio
    async def test_cancel_response_truncates_played_audio(self, client, upstream):
        feed(
            client,
            [
                server_event("conversation.item.created", item={"id": "item_a", "type": "message", "role": "assistant", "content": []}),
                server_event("response.content_part.added", item_id="item_a", content_index=0, part={"type": "audio"}),
            ],
        )

        await client.cancel_response("item_a", sample_count=12000)

        assert upstream.sent_types == ["response.cancel", "conversation.item.truncate"]
        assert upstream.sent[1]["audio_end_ms"] == 500
        assert upstream.sent[1]["content_index"] == 0

    @pytest.mark.asyncio
    async def test_cancel_response_for_unknown_item(self, client):
        with pytest.raises(StateError):
            await client.cancel_response("missing", 100)

    @pytest.mark.asyncio
    async def test_cancel_response_for_user_item(self, client):
        feed(client, [server_event("conversation.item.created", item={"id": "item_1", "type": "message", "role": "user"})])
        with pytest.raises(StateError):
            await client.cancel_response("item_1", 100)

    @pytest.mark.asyncio
    async def test_disconnect_clears_state(self, client, upstream):
        feed(client, [server_event("conversation.item.created", item={"id": "item_1", "type": "message", "role": "user"})])
        await client.append_input_audio(b"\x01\x00")

        await client.disconnect()

        assert upstream.closed
        assert not client.is_connected()
        assert client.conversation.get_items() == []
        assert len(client.input_audio_buffer) == 0


class TestToolRoundTrip:
    @pytest.mark.asyncio
    async def test_create_task_round_trip(self, client, upstream):
        calls = []

        def create_task(**kwargs):
            calls.append(kwargs)
            return {"success": True, "task": kwargs["name"]}

        await client.add_tool(CREATE_TASK, create_task)
        upstream.sent.clear()

        feed(client, function_call_events())
        await client.tool_controller.join()

        assert calls == [{"name": "Meditate", "pillar": "mental"}]
        assert upstream.sent_types == ["conversation.item.create", "response.create"]
        output_item = upstream.sent[0]["item"]
        assert output_item["type"] == "function_call_output"
        assert output_item["call_id"] == "call_1"
        assert json.loads(output_item["output"]) == {"success": True, "task": "Meditate"}

    @pytest.mark.asyncio
    async def test_repeated_done_event_runs_tool_once(self, client, upstream):
        calls = []
        await client.add_tool(CREATE_TASK, lambda **kwargs: calls.append(kwargs))
        upstream.sent.clear()

        events = function_call_events()
        feed(client, events)
        feed(client, [events[-1]])
        await client.tool_controller.join()

        assert len(calls) == 1
        assert upstream.sent_types == ["conversation.item.create", "response.create"]

    @pytest.mark.asyncio
    async def test_async_handler(self, client, upstream):
        async def create_task(name, pillar):
            await asyncio.sleep(0)
            return {"created": name}

        await client.add_tool(CREATE_TASK, create_task)
        upstream.sent.clear()

        feed(client, function_call_events())
        await client.tool_controller.join()

        assert json.loads(upstream.sent[0]["item"]["output"]) == {"created": "Meditate"}

    @pytest.mark.asyncio
    async def test_handler_failure_is_reported(self, client, upstream):
        def create_task(**kwargs):
            raise RuntimeError("database offline")

        errors = []
        client.on("conversation.tool_call.error", errors.append)
        await client.add_tool(CREATE_TASK, create_task)
        upstream.sent.clear()

        feed(client, function_call_events())
        await client.tool_controller.join()

        assert json.loads(upstream.sent[0]["item"]["output"]) == {"error": "database offline"}
        assert upstream.sent_types[-1] == "response.create"
        assert errors == [{"error": "database offline", "tool": "createTask"}]

    @pytest.mark.asyncio
    async def test_invalid_arguments_are_reported(self, client, upstream):
        await client.add_tool(CREATE_TASK, lambda **kwargs: kwargs)
        upstream.sent.clear()

        feed(client, function_call_events(arguments="{not json"))
        await client.tool_controller.join()

        output = json.loads(upstream.sent[0]["item"]["output"])
        assert output["error"].startswith("Invalid JSON arguments")

    @pytest.mark.asyncio
    async def test_unregistered_tool_sends_nothing(self, client, upstream):
        feed(client, function_call_events())
        await client.tool_controller.join()
        assert upstream.sent == []

    @pytest.mark.asyncio
    async def test_incomplete_call_is_not_executed(self, client, upstream):
        calls = []
        await client.add_tool(CREATE_TASK, lambda **kwargs: calls.append(kwargs))
        upstream.sent.clear()

        feed(client, function_call_events(status="incomplete"))
        await client.tool_controller.join()

        assert calls == []
        assert upstream.sent == []


class TestRelayMode:
    @pytest.mark.asyncio
    async def test_direct_helpers_are_rejected(self, relay_client):
        with pytest.raises(RelayModeError):
            await relay_client.send_user_message_content([{"type": "input_text", "text": "hi"}])
        with pytest.raises(RelayModeError):
            await relay_client.append_input_audio(b"\x00\x00")
        with pytest.raises(RelayModeError):
            await relay_client.create_response()
        with pytest.raises(RelayModeError):
            await relay_client.cancel_response()
        with pytest.raises(RelayModeError):
            await relay_client.add_tool(CREATE_TASK, lambda **kwargs: None)

    @pytest.mark.asyncio
    async def test_update_session_stays_local(self, relay_client, upstream):
        await relay_client.update_session(voice="echo")
        assert upstream.sent == []
        assert relay_client.session_config["voice"] == "echo"

    @pytest.mark.asyncio
    async def test_function_calls_are_never_executed(self, relay_client, upstream):
        feed(relay_client, function_call_events())
        await relay_client.tool_controller.join()

        assert upstream.sent == []
        assert relay_client.conversation.get_item("item_fc")["status"] == "completed"
