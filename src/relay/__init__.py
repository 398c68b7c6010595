"""
Voice relay: one upstream Realtime API session per connected client.
"""

from .session import RelaySession
from .settings import RelaySettings

__all__ = ["RelaySession", "RelaySettings"]
