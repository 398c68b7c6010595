"""
Tests for session configuration and the tool registry.
"""

import logging
from pathlib import Path

import pytest

from src.realtime_client.exceptions import RelayModeError
from src.realtime_client.session import (
    DEFAULT_SESSION_CONFIG,
    SessionConfigManager,
    load_session_config_from_yaml,
    merge_session_config,
)

RELAY_SESSION_YAML = Path(__file__).resolve().parent.parent / "config" / "relay_session.yaml"

CREATE_TASK = {
    "name": "createTask",
    "description": "Create a new habit or task",
    "parameters": {"type": "object", "properties": {"name": {"type": "string"}}},
}


def noop(**kwargs):
    return {"ok": True}


class TestConfigLoading:
    def test_defaults(self):
        manager = SessionConfigManager()
        assert manager.session_config["voice"] == "alloy"
        assert manager.session_config["input_audio_format"] == "pcm16"
        assert manager.turn_detection_type is None
        assert manager.session_config["tools"] == []

    def test_turn_detection_merges_key_wise(self):
        base = {"turn_detection": {"type": "server_vad", "threshold": 0.5}}
        merged = merge_session_config(base, {"turn_detection": {"threshold": 0.8}})
        assert merged["turn_detection"] == {"type": "server_vad", "threshold": 0.8}
        assert base["turn_detection"]["threshold"] == 0.5

    def test_load_yaml(self, tmp_path):
        path = tmp_path / "session.yaml"
        path.write_text("voice: echo\ntemperature: 0.6\n", encoding="utf-8")
        assert load_session_config_from_yaml(str(path)) == {"voice": "echo", "temperature": 0.6}

    def test_load_yaml_non_mapping(self, tmp_path, caplog):
        path = tmp_path / "session.yaml"
        path.write_text("- just\n- a list\n", encoding="utf-8")
        with caplog.at_level(logging.WARNING):
            assert load_session_config_from_yaml(str(path)) == {}
        assert "not a dict" in caplog.text

    def test_relay_session_yaml_declares_ikigai_tools(self):
        config = load_session_config_from_yaml(str(RELAY_SESSION_YAML))
        manager = SessionConfigManager(config, relay=True)

        names = [t["name"] for t in manager.session_config["tools"]]
        assert names == ["createTask", "completeTask", "deleteTask"]
        assert all(t["type"] == "function" for t in manager.session_config["tools"])
        assert manager.turn_detection_type == "server_vad"

    def test_defaults_are_not_shared(self):
        SessionConfigManager().session_config["modalities"].append("video")
        assert DEFAULT_SESSION_CONFIG["modalities"] == ["text", "audio"]


class TestToolRegistry:
    def test_add_tool(self):
        manager = SessionConfigManager()
        manager.add_tool(CREATE_TASK, noop)
        manager.update()

        assert manager.get_handler("createTask") is noop
        assert manager.session_config["tools"][0]["name"] == "createTask"
        assert manager.session_config["tools"][0]["type"] == "function"

    def test_add_tool_requires_name_and_callable(self):
        manager = SessionConfigManager()
        with pytest.raises(ValueError):
            manager.add_tool({"description": "nameless"}, noop)
        with pytest.raises(ValueError):
            manager.add_tool(CREATE_TASK, "not callable")

    def test_last_registration_wins(self, caplog):
        def other(**kwargs):
            return None

        manager = SessionConfigManager()
        manager.add_tool(CREATE_TASK, noop)
        with caplog.at_level(logging.WARNING):
            manager.add_tool(CREATE_TASK, other)

        assert manager.get_handler("createTask") is other
        assert "already registered" in caplog.text

    def test_remove_unknown_tool(self):
        with pytest.raises(KeyError):
            SessionConfigManager().remove_tool("deleteTask")

    def test_relay_mode_rejects_registry_changes(self):
        manager = SessionConfigManager(relay=True)
        with pytest.raises(RelayModeError):
            manager.add_tool(CREATE_TASK, noop)
        with pytest.raises(RelayModeError):
            manager.remove_tool("createTask")

    def test_registered_tool_overrides_declared(self):
        manager = SessionConfigManager({"tools": [{"name": "createTask", "description": "declared"}]})
        manager.add_tool(CREATE_TASK, noop)
        snapshot = manager.update()

        assert len(snapshot["tools"]) == 1
        assert snapshot["tools"][0]["description"] == CREATE_TASK["description"]

    def test_update_replaces_declared_tools(self):
        manager = SessionConfigManager({"tools": [{"name": "createTask"}]})
        snapshot = manager.update(tools=[{"name": "deleteTask"}], voice="shimmer")

        assert [t["name"] for t in snapshot["tools"]] == ["deleteTask"]
        assert snapshot["voice"] == "shimmer"

    def test_snapshot_is_a_deep_copy(self):
        manager = SessionConfigManager({"turn_detection": {"type": "server_vad"}})
        snapshot = manager.snapshot()
        snapshot["turn_detection"]["type"] = "none"
        assert manager.turn_detection_type == "server_vad"

    def test_reset_drops_registered_tools(self):
        manager = SessionConfigManager()
        manager.add_tool(CREATE_TASK, noop)
        manager.reset()
        assert manager.get_handler("createTask") is None
        assert manager.session_config["tools"] == []
