import copy
import logging
from typing import Any, Callable, Dict, List, Optional

import yaml

from src.realtime_client.exceptions import RelayModeError

logger = logging.getLogger(__name__)

DEFAULT_SESSION_CONFIG: Dict[str, Any] = {
    "modalities": ["text", "audio"],
    "instructions": "",
    "voice": "alloy",
    "input_audio_format": "pcm16",
    "output_audio_format": "pcm16",
    "input_audio_transcription": {"model": "whisper-1"},
    "turn_detection": None,
    "tools": [],
    "tool_choice": "auto",
    "temperature": 0.8,
    "max_response_output_tokens": 4096,
}


def load_session_config_from_yaml(path: str) -> Dict[str, Any]:
    """
    Read session overrides from a YAML file.

    Returns an empty dict (with a warning) when the file does not hold a
    mapping; I/O and parse errors propagate.
    """
    with open(path, "r", encoding="utf-8") as f:
        config_from_yaml = yaml.safe_load(f)
    if not isinstance(config_from_yaml, dict):
        logger.warning(f"Session config YAML is not a dict, ignoring: {path}")
        return {}
    logger.info(f"Loaded session config from {path}")
    return config_from_yaml


def merge_session_config(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """
    Merge overrides into a copy of ``base``; ``turn_detection`` merges key-wise.
    """
    merged = copy.deepcopy(base)
    for key, value in overrides.items():
        if (
            key == "turn_detection"
            and isinstance(value, dict)
            and isinstance(merged.get(key), dict)
        ):
            merged[key] = {**merged[key], **copy.deepcopy(value)}
        else:
            merged[key] = copy.deepcopy(value)
    return merged


class SessionConfigManager:
    """
    Holds the default and live session configuration plus the tool registry.

    Tools listed in the configuration itself are declared upstream without a
    local handler; registered tools carry a handler and win on name clashes.
    """

    def __init__(
        self,
        session_config: Optional[Dict[str, Any]] = None,
        relay: bool = False,
    ) -> None:
        self.default_session_config = merge_session_config(
            DEFAULT_SESSION_CONFIG, session_config or {}
        )
        self.relay = relay
        self.session_config: Dict[str, Any] = {}
        self.tools: Dict[str, Dict[str, Any]] = {}
        self._declared_tools: List[dict] = []
        self.reset()

    def reset(self) -> None:
        self.tools = {}
        self.session_config = copy.deepcopy(self.default_session_config)
        self._declared_tools = list(self.session_config.get("tools") or [])
        self.session_config["tools"] = self._tool_definitions()

    @property
    def turn_detection_type(self) -> Optional[str]:
        turn_detection = self.session_config.get("turn_detection")
        if isinstance(turn_detection, dict):
            return turn_detection.get("type")
        return None

    def _tool_definitions(self) -> List[dict]:
        registered = [tool["definition"] for tool in self.tools.values()]
        declared = [
            {"type": "function", **definition}
            for definition in self._declared_tools
            if definition.get("name") not in self.tools
        ]
        return copy.deepcopy(declared + registered)

    def add_tool(self, definition: Dict[str, Any], handler: Callable[..., Any]) -> Dict[str, Any]:
        """
        Register a tool handler; a later registration for the same name wins.

        Raises:
            RelayModeError: In relay mode.
            ValueError: If the name is missing or the handler is not callable.
        """
        if self.relay:
            raise RelayModeError("Unable to add tools in relay mode")
        name = (definition or {}).get("name")
        if not name:
            raise ValueError("Missing tool name in definition")
        if not callable(handler):
            raise ValueError(f"Tool '{name}' handler must be callable")
        if name in self.tools:
            logger.warning(f"Tool '{name}' already registered, replacing it.")

        self.tools[name] = {
            "definition": {"type": "function", **copy.deepcopy(definition)},
            "handler": handler,
        }
        return self.tools[name]

    def remove_tool(self, name: str) -> None:
        """
        Raises:
            RelayModeError: In relay mode.
            KeyError: If the tool is not registered.
        """
        if self.relay:
            raise RelayModeError("Unable to remove tools in relay mode")
        if name not in self.tools:
            raise KeyError(f"Tool '{name}' does not exist, can not be removed.")
        del self.tools[name]

    def get_handler(self, name: str) -> Optional[Callable[..., Any]]:
        tool = self.tools.get(name)
        return tool["handler"] if tool else None

    def update(self, **partial: Any) -> Dict[str, Any]:
        """
        Merge ``partial`` into the live config and recompute the tool list.

        Returns:
            dict: A deep copy of the resulting config, safe to transmit.
        """
        if "tools" in partial:
            self._declared_tools = list(partial.pop("tools") or [])
        self.session_config.update(copy.deepcopy(partial))
        self.session_config["tools"] = self._tool_definitions()
        return self.snapshot()

    def snapshot(self) -> Dict[str, Any]:
        return copy.deepcopy(self.session_config)
