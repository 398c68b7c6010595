"""
Relay Settings
==============

Environment-driven configuration for the voice relay. Values are read once at
import time; ``.env`` files are honoured through python-dotenv.
"""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from src.realtime_client.api import DEFAULT_MODEL, DEFAULT_URL
from src.realtime_client.session import load_session_config_from_yaml
from src.realtime_client.utils import DEFAULT_FREQUENCY

load_dotenv()

# ==============================================================================
# UPSTREAM REALTIME SERVICE
# ==============================================================================

OPENAI_API_KEY: Optional[str] = os.getenv("OPENAI_API_KEY")
OPENAI_REALTIME_URL: str = os.getenv("OPENAI_REALTIME_URL", DEFAULT_URL)
OPENAI_REALTIME_MODEL: str = os.getenv("OPENAI_REALTIME_MODEL", DEFAULT_MODEL)

# Handshake attempts per client connection before giving up
UPSTREAM_CONNECT_MAX_TRIES = int(os.getenv("UPSTREAM_CONNECT_MAX_TRIES", "3"))

# ==============================================================================
# RELAY SERVER
# ==============================================================================

HOST: str = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "3001"))
SERVICE_NAME: str = os.getenv("SERVICE_NAME", "ikigai-voice-server")
RELAY_DEBUG = os.getenv("RELAY_DEBUG", "false").lower() in ("true", "1", "yes", "on")

# Session configuration sent upstream when a relay session opens
RELAY_SESSION_CONFIG: str = os.getenv("RELAY_SESSION_CONFIG", "config/relay_session.yaml")
SAMPLE_RATE = int(os.getenv("SAMPLE_RATE", str(DEFAULT_FREQUENCY)))


@dataclass
class RelaySettings:
    """Per-process settings handed to each relay session."""

    api_key: Optional[str] = OPENAI_API_KEY
    url: str = OPENAI_REALTIME_URL
    model: str = OPENAI_REALTIME_MODEL
    connect_max_tries: int = UPSTREAM_CONNECT_MAX_TRIES
    sample_rate: int = SAMPLE_RATE
    debug: bool = RELAY_DEBUG
    session_config: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_env(cls, session_config_path: Optional[str] = RELAY_SESSION_CONFIG) -> "RelaySettings":
        """
        Build settings from the environment, loading the session YAML if present.
        """
        session_config: Dict[str, Any] = {}
        if session_config_path and os.path.exists(session_config_path):
            session_config = load_session_config_from_yaml(session_config_path)
        return cls(session_config=session_config)
