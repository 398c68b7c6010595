# realtime_client/conversation.py

import copy
import logging
from typing import Any, Callable, Dict, List, NamedTuple, Optional

import numpy as np

from src.realtime_client.events import ConversationEventType, parse_event_type
from src.realtime_client.exceptions import ProtocolError, StateError
from src.realtime_client.utils import (
    DEFAULT_FREQUENCY,
    base64_to_pcm16,
    merge_int16_arrays,
    ms_to_samples,
    to_pcm16,
)

logger = logging.getLogger(__name__)


class ProcessResult(NamedTuple):
    """Partial result of processing one event."""

    item: Optional[dict] = None
    delta: Optional[dict] = None
    response: Optional[dict] = None


def _empty_audio() -> np.ndarray:
    return np.zeros(0, dtype=np.int16)


class RealtimeConversation:
    """
    In-memory store for conversation items, responses and audio buffers.

    Rebuilds stable items from the incremental server events. Every event type
    in ``ConversationEventType`` has exactly one processor; items are only ever
    mutated in place by the events that name them.
    """

    default_frequency: int = DEFAULT_FREQUENCY

    EventProcessors: Dict[ConversationEventType, str] = {
        ConversationEventType.ITEM_CREATED: "_process_item_created",
        ConversationEventType.ITEM_TRUNCATED: "_process_item_truncated",
        ConversationEventType.ITEM_DELETED: "_process_item_deleted",
        ConversationEventType.INPUT_AUDIO_TRANSCRIPTION_COMPLETED: "_process_input_audio_transcription_completed",
        ConversationEventType.SPEECH_STARTED: "_process_speech_started",
        ConversationEventType.SPEECH_STOPPED: "_process_speech_stopped",
        ConversationEventType.RESPONSE_CREATED: "_process_response_created",
        ConversationEventType.RESPONSE_DONE: "_process_response_done",
        ConversationEventType.OUTPUT_ITEM_ADDED: "_process_output_item_added",
        ConversationEventType.OUTPUT_ITEM_DONE: "_process_output_item_done",
        ConversationEventType.CONTENT_PART_ADDED: "_process_content_part_added",
        ConversationEventType.AUDIO_TRANSCRIPT_DELTA: "_process_audio_transcript_delta",
        ConversationEventType.AUDIO_DELTA: "_process_audio_delta",
        ConversationEventType.TEXT_DELTA: "_process_text_delta",
        ConversationEventType.FUNCTION_CALL_ARGUMENTS_DELTA: "_process_function_call_arguments_delta",
    }

    def __init__(self, frequency: int = DEFAULT_FREQUENCY) -> None:
        if frequency <= 0:
            raise ValueError(f"Invalid frequency: {frequency}")
        self.frequency = frequency
        self.clear()

    def clear(self) -> None:
        """
        Reset all internal state for a new conversation.
        """
        self.item_lookup: Dict[str, dict] = {}
        self.items: List[dict] = []
        self.response_lookup: Dict[str, dict] = {}
        self.responses: List[dict] = []
        self.queued_speech_items: Dict[str, dict] = {}
        self.queued_transcript_items: Dict[str, dict] = {}
        self.queued_input_audio: Optional[np.ndarray] = None

    def queue_input_audio(self, input_audio) -> None:
        """
        Queue a whole manually committed utterance for the next user message.

        Args:
            input_audio: int16 samples or raw PCM16 bytes.
        """
        self.queued_input_audio = to_pcm16(input_audio)

    def process_event(self, event: dict, *args: Any) -> ProcessResult:
        """
        Process an incoming Realtime event.

        Args:
            event (dict): The event payload.
            *args: Extra arguments for the processor (the input audio buffer
                for ``speech_stopped``).

        Returns:
            ProcessResult: item, delta and response touched by the event.

        Raises:
            ProtocolError: If the event is malformed or has no processor.
            StateError: If the event references an unknown item or response.
        """
        if not isinstance(event, dict) or not event.get("type"):
            raise ProtocolError("Missing 'type' on event")
        if not event.get("event_id"):
            raise ProtocolError(f"Missing 'event_id' on '{event['type']}' event")

        event_type = parse_event_type(ConversationEventType, event["type"])
        if event_type is None:
            raise ProtocolError(f"Missing conversation event processor for '{event['type']}'")

        processor: Callable[..., ProcessResult] = getattr(self, self.EventProcessors[event_type])
        return processor(event, *args)

    def get_item(self, item_id: str) -> Optional[dict]:
        """
        Retrieve a conversation item by ID.

        Args:
            item_id (str): ID of the conversation item.

        Returns:
            dict or None: The conversation item if found.
        """
        return self.item_lookup.get(item_id)

    def get_items(self) -> List[dict]:
        """
        Retrieve all conversation items, in creation order.

        Returns:
            List[dict]: A copy of the item list.
        """
        return self.items[:]

    def get_response(self, response_id: str) -> Optional[dict]:
        return self.response_lookup.get(response_id)

    def get_responses(self) -> List[dict]:
        return self.responses[:]

    def get_response_items(self, response_id: str) -> List[dict]:
        """
        Resolve a response's output ids to the items known locally.
        """
        response = self.response_lookup.get(response_id)
        if not response:
            raise StateError(f'Response "{response_id}" not found.')
        return [self.item_lookup[i] for i in response["output"] if i in self.item_lookup]

    def _require_item(self, item_id: str, event_type: str) -> dict:
        item = self.item_lookup.get(item_id)
        if not item:
            raise StateError(f'{event_type}: Item "{item_id}" not found.')
        return item

    # ---------------------------
    # Event Processors
    # ---------------------------

    def _process_item_created(self, event: dict) -> ProcessResult:
        item = event.get("item")
        if not item or not item.get("id"):
            raise ProtocolError("conversation.item.created: missing 'item'")

        if item["id"] in self.item_lookup:
            logger.debug(f'Item "{item["id"]}" already exists, ignoring duplicate create.')
            return ProcessResult()

        new_item = copy.deepcopy(item)
        new_item["formatted"] = {
            "audio": _empty_audio(),
            "text": "",
            "transcript": "",
        }
        self.item_lookup[new_item["id"]] = new_item
        self.items.append(new_item)

        # Recover data that arrived before the item
        speech = self.queued_speech_items.pop(new_item["id"], None)
        if speech and speech.get("audio") is not None:
            new_item["formatted"]["audio"] = speech["audio"]

        for content in new_item.get("content") or []:
            if content.get("type") in ("text", "input_text"):
                new_item["formatted"]["text"] += content.get("text") or ""

        queued_transcript = self.queued_transcript_items.pop(new_item["id"], None)
        if queued_transcript:
            new_item["formatted"]["transcript"] = queued_transcript["transcript"]

        if new_item.get("type") == "message":
            new_item.setdefault("content", [])
            if new_item.get("role") == "user":
                new_item["status"] = "completed"
                if self.queued_input_audio is not None:
                    new_item["formatted"]["audio"] = self.queued_input_audio
                    self.queued_input_audio = None
            else:
                new_item["status"] = "in_progress"
        elif new_item.get("type") == "function_call":
            new_item["formatted"]["tool"] = {
                "type": "function",
                "name": new_item.get("name"),
                "call_id": new_item.get("call_id"),
                "arguments": "",
            }
            new_item["status"] = "in_progress"
        elif new_item.get("type") == "function_call_output":
            new_item["status"] = "completed"
            new_item["formatted"]["output"] = new_item.get("output")

        return ProcessResult(item=new_item)

    def _process_item_truncated(self, event: dict) -> ProcessResult:
        item = self._require_item(event.get("item_id"), "conversation.item.truncated")

        end_index = ms_to_samples(event["audio_end_ms"], self.frequency)
        item["formatted"]["audio"] = item["formatted"]["audio"][:end_index]
        item["formatted"]["transcript"] = ""

        return ProcessResult(item=item)

    def _process_item_deleted(self, event: dict) -> ProcessResult:
        item_id = event.get("item_id")
        item = self._require_item(item_id, "conversation.item.deleted")

        del self.item_lookup[item_id]
        self.items = [i for i in self.items if i["id"] != item_id]
        return ProcessResult(item=item)

    def _process_input_audio_transcription_completed(self, event: dict) -> ProcessResult:
        item_id = event["item_id"]
        content_index = event.get("content_index")
        transcript = event.get("transcript") or ""
        formatted_transcript = transcript or " "

        item = self.item_lookup.get(item_id)
        if not item:
            self.queued_transcript_items[item_id] = {"transcript": formatted_transcript}
            return ProcessResult()

        content = item.get("content") or []
        if content_index is not None and 0 <= content_index < len(content):
            content[content_index]["transcript"] = transcript
        item["formatted"]["transcript"] = formatted_transcript

        return ProcessResult(item=item, delta={"transcript": transcript})

    def _process_speech_started(self, event: dict) -> ProcessResult:
        item_id = event["item_id"]
        speech = self.queued_speech_items.setdefault(item_id, {})
        speech["audio_start_ms"] = event["audio_start_ms"]
        return ProcessResult(item=self.item_lookup.get(item_id))

    def _process_speech_stopped(
        self,
        event: dict,
        input_audio_buffer: Optional[np.ndarray] = None,
        buffer_offset: int = 0,
    ) -> ProcessResult:
        """
        ``buffer_offset`` is the session sample index of ``input_audio_buffer[0]``.
        """
        item_id = event["item_id"]
        audio_end_ms = event["audio_end_ms"]

        speech = self.queued_speech_items.setdefault(item_id, {"audio_start_ms": audio_end_ms})
        speech.setdefault("audio_start_ms", audio_end_ms)
        speech["audio_end_ms"] = audio_end_ms

        if input_audio_buffer is not None:
            start_index = max(ms_to_samples(speech["audio_start_ms"], self.frequency) - buffer_offset, 0)
            end_index = max(ms_to_samples(audio_end_ms, self.frequency) - buffer_offset, 0)
            speech["audio"] = to_pcm16(input_audio_buffer)[start_index:end_index].copy()

        return ProcessResult(item=self.item_lookup.get(item_id))

    def _process_response_created(self, event: dict) -> ProcessResult:
        response = event.get("response")
        if not response or not response.get("id"):
            raise ProtocolError("response.created: missing 'response'")

        existing = self.response_lookup.get(response["id"])
        if existing:
            return ProcessResult(response=existing)

        new_response = copy.deepcopy(response)
        new_response.setdefault("status", "in_progress")
        # Output holds item ids; items themselves live in item_lookup.
        new_response["output"] = [
            o["id"] if isinstance(o, dict) else o for o in new_response.get("output") or []
        ]
        self.response_lookup[new_response["id"]] = new_response
        self.responses.append(new_response)
        return ProcessResult(response=new_response)

    def _process_response_done(self, event: dict) -> ProcessResult:
        done = event.get("response") or {}
        response = self.response_lookup.get(done.get("id"))
        if not response:
            raise StateError(f'response.done: Response "{done.get("id")}" not found.')

        for key in ("status", "status_details", "usage"):
            if key in done:
                response[key] = copy.deepcopy(done[key])
        return ProcessResult(response=response)

    def _process_output_item_added(self, event: dict) -> ProcessResult:
        response_id = event.get("response_id")
        item = event.get("item") or {}

        response = self.response_lookup.get(response_id)
        if not response:
            raise StateError(f'response.output_item.added: Response "{response_id}" not found.')

        response["output"].append(item.get("id"))
        return ProcessResult(item=self.item_lookup.get(item.get("id")), response=response)

    def _process_output_item_done(self, event: dict) -> ProcessResult:
        item = event.get("item")
        if not item:
            raise ProtocolError("response.output_item.done: missing 'item'")

        found_item = self._require_item(item.get("id"), "response.output_item.done")
        found_item["status"] = item.get("status")
        return ProcessResult(item=found_item)

    def _process_content_part_added(self, event: dict) -> ProcessResult:
        item = self._require_item(event.get("item_id"), "response.content_part.added")
        item.setdefault("content", []).append(copy.deepcopy(event["part"]))
        return ProcessResult(item=item)

    def _process_audio_transcript_delta(self, event: dict) -> ProcessResult:
        item = self._require_item(event.get("item_id"), "response.audio_transcript.delta")
        content_index = event.get("content_index")
        delta = event["delta"]

        if content_index is not None:
            part = item["content"][content_index]
            part["transcript"] = (part.get("transcript") or "") + delta
        item["formatted"]["transcript"] += delta

        return ProcessResult(item=item, delta={"transcript": delta})

    def _process_audio_delta(self, event: dict) -> ProcessResult:
        item = self._require_item(event.get("item_id"), "response.audio.delta")

        append_values = base64_to_pcm16(event["delta"])
        item["formatted"]["audio"] = merge_int16_arrays(item["formatted"]["audio"], append_values)

        return ProcessResult(item=item, delta={"audio": append_values})

    def _process_text_delta(self, event: dict) -> ProcessResult:
        item = self._require_item(event.get("item_id"), "response.text.delta")
        content_index = event.get("content_index")
        delta = event["delta"]

        if content_index is not None:
            part = item["content"][content_index]
            part["text"] = (part.get("text") or "") + delta
        item["formatted"]["text"] += delta

        return ProcessResult(item=item, delta={"text": delta})

    def _process_function_call_arguments_delta(self, event: dict) -> ProcessResult:
        item = self._require_item(event.get("item_id"), "response.function_call_arguments.delta")
        delta = event["delta"]

        tool = item["formatted"].get("tool")
        if tool is None:
            raise StateError(f'Item "{item["id"]}" is not a function call.')

        item["arguments"] = (item.get("arguments") or "") + delta
        tool["arguments"] += delta

        return ProcessResult(item=item, delta={"arguments": delta})


_missing_processors = set(ConversationEventType) - set(RealtimeConversation.EventProcessors)
if _missing_processors:
    raise RuntimeError(f"Missing conversation event processors: {sorted(_missing_processors)}")
