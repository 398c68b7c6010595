"""
Closed sets of event tags exchanged with the Realtime API.

Client-origin and server-origin names are disjoint. ``ConversationEventType``
is the subset of server events that mutate conversation state.
"""

from enum import Enum
from typing import Optional


class ClientEventType(str, Enum):
    SESSION_UPDATE = "session.update"
    INPUT_AUDIO_BUFFER_APPEND = "input_audio_buffer.append"
    INPUT_AUDIO_BUFFER_COMMIT = "input_audio_buffer.commit"
    INPUT_AUDIO_BUFFER_CLEAR = "input_audio_buffer.clear"
    CONVERSATION_ITEM_CREATE = "conversation.item.create"
    CONVERSATION_ITEM_TRUNCATE = "conversation.item.truncate"
    CONVERSATION_ITEM_DELETE = "conversation.item.delete"
    RESPONSE_CREATE = "response.create"
    RESPONSE_CANCEL = "response.cancel"


class ServerEventType(str, Enum):
    ERROR = "error"
    SESSION_CREATED = "session.created"
    SESSION_UPDATED = "session.updated"
    CONVERSATION_CREATED = "conversation.created"
    CONVERSATION_ITEM_CREATED = "conversation.item.created"
    CONVERSATION_ITEM_TRUNCATED = "conversation.item.truncated"
    CONVERSATION_ITEM_DELETED = "conversation.item.deleted"
    INPUT_AUDIO_TRANSCRIPTION_COMPLETED = (
        "conversation.item.input_audio_transcription.completed"
    )
    INPUT_AUDIO_TRANSCRIPTION_FAILED = "conversation.item.input_audio_transcription.failed"
    INPUT_AUDIO_BUFFER_COMMITTED = "input_audio_buffer.committed"
    INPUT_AUDIO_BUFFER_CLEARED = "input_audio_buffer.cleared"
    INPUT_AUDIO_BUFFER_SPEECH_STARTED = "input_audio_buffer.speech_started"
    INPUT_AUDIO_BUFFER_SPEECH_STOPPED = "input_audio_buffer.speech_stopped"
    RESPONSE_CREATED = "response.created"
    RESPONSE_DONE = "response.done"
    RESPONSE_OUTPUT_ITEM_ADDED = "response.output_item.added"
    RESPONSE_OUTPUT_ITEM_DONE = "response.output_item.done"
    RESPONSE_CONTENT_PART_ADDED = "response.content_part.added"
    RESPONSE_CONTENT_PART_DONE = "response.content_part.done"
    RESPONSE_TEXT_DELTA = "response.text.delta"
    RESPONSE_TEXT_DONE = "response.text.done"
    RESPONSE_AUDIO_TRANSCRIPT_DELTA = "response.audio_transcript.delta"
    RESPONSE_AUDIO_TRANSCRIPT_DONE = "response.audio_transcript.done"
    RESPONSE_AUDIO_DELTA = "response.audio.delta"
    RESPONSE_AUDIO_DONE = "response.audio.done"
    RESPONSE_FUNCTION_CALL_ARGUMENTS_DELTA = "response.function_call_arguments.delta"
    RESPONSE_FUNCTION_CALL_ARGUMENTS_DONE = "response.function_call_arguments.done"
    RATE_LIMITS_UPDATED = "rate_limits.updated"


class ConversationEventType(str, Enum):
    ITEM_CREATED = ServerEventType.CONVERSATION_ITEM_CREATED.value
    ITEM_TRUNCATED = ServerEventType.CONVERSATION_ITEM_TRUNCATED.value
    ITEM_DELETED = ServerEventType.CONVERSATION_ITEM_DELETED.value
    INPUT_AUDIO_TRANSCRIPTION_COMPLETED = (
        ServerEventType.INPUT_AUDIO_TRANSCRIPTION_COMPLETED.value
    )
    SPEECH_STARTED = ServerEventType.INPUT_AUDIO_BUFFER_SPEECH_STARTED.value
    SPEECH_STOPPED = ServerEventType.INPUT_AUDIO_BUFFER_SPEECH_STOPPED.value
    RESPONSE_CREATED = ServerEventType.RESPONSE_CREATED.value
    RESPONSE_DONE = ServerEventType.RESPONSE_DONE.value
    OUTPUT_ITEM_ADDED = ServerEventType.RESPONSE_OUTPUT_ITEM_ADDED.value
    OUTPUT_ITEM_DONE = ServerEventType.RESPONSE_OUTPUT_ITEM_DONE.value
    CONTENT_PART_ADDED = ServerEventType.RESPONSE_CONTENT_PART_ADDED.value
    AUDIO_TRANSCRIPT_DELTA = ServerEventType.RESPONSE_AUDIO_TRANSCRIPT_DELTA.value
    AUDIO_DELTA = ServerEventType.RESPONSE_AUDIO_DELTA.value
    TEXT_DELTA = ServerEventType.RESPONSE_TEXT_DELTA.value
    FUNCTION_CALL_ARGUMENTS_DELTA = (
        ServerEventType.RESPONSE_FUNCTION_CALL_ARGUMENTS_DELTA.value
    )


def parse_event_type(enum_cls, name: Optional[str]):
    """
    Resolve a wire ``type`` string into a member of ``enum_cls``.

    Returns:
        The enum member, or None when the name is not part of the set.
    """
    try:
        return enum_cls(name)
    except ValueError:
        return None
