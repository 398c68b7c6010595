"""
Realtime Client Package

Provides classes and utilities for:
- Realtime audio and text interactions
- Audio encoding/decoding
- WebSocket API management
- Conversation tracking
- Event dispatching and handling
- Session configuration and tool execution
"""

from .api import RealtimeAPI
from .audio_buffer import InputAudioBuffer
from .client import RealtimeClient
from .conversation import ProcessResult, RealtimeConversation
from .event_handler import RealtimeEventHandler
from .events import ClientEventType, ConversationEventType, ServerEventType
from .exceptions import (
    ProtocolError,
    RealtimeConnectionError,
    RealtimeError,
    RelayModeError,
    StateError,
    ToolExecutionError,
)
from .session import SessionConfigManager
from .tools import ToolInvocationController
from .utils import (
    DEFAULT_FREQUENCY,
    array_buffer_to_base64,
    base64_to_array_buffer,
    float_to_16bit_pcm,
    merge_int16_arrays,
)

__all__ = [
    "RealtimeClient",
    "RealtimeAPI",
    "RealtimeConversation",
    "RealtimeEventHandler",
    "ProcessResult",
    "InputAudioBuffer",
    "SessionConfigManager",
    "ToolInvocationController",
    "ClientEventType",
    "ServerEventType",
    "ConversationEventType",
    "RealtimeError",
    "ProtocolError",
    "StateError",
    "RealtimeConnectionError",
    "ToolExecutionError",
    "RelayModeError",
    "DEFAULT_FREQUENCY",
    "float_to_16bit_pcm",
    "base64_to_array_buffer",
    "array_buffer_to_base64",
    "merge_int16_arrays",
]
