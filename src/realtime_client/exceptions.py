"""
Exception types raised by the realtime client and relay.
"""


class RealtimeError(Exception):
    """Base class for all realtime client errors."""


class ProtocolError(RealtimeError):
    """
    An incoming event is malformed or has no registered processor.

    Logged and dropped by the transport; the session continues.
    """


class StateError(RealtimeError):
    """
    An event references an item or response that is not in local state.
    """


class RealtimeConnectionError(RealtimeError, ConnectionError):
    """
    Send attempted while not connected, or the upstream handshake failed.
    """


class ToolExecutionError(RealtimeError):
    """
    A tool handler raised, or its arguments/result could not be (de)serialized.

    Args:
        tool_name (str): Name of the tool that failed.
        message (str): Human readable failure reason sent upstream.
    """

    def __init__(self, tool_name: str, message: str) -> None:
        super().__init__(message)
        self.tool_name = tool_name
        self.message = message

    def to_output(self) -> dict:
        return {"error": self.message}


class RelayModeError(RealtimeError):
    """Operation is not available when the client runs in relay mode."""
