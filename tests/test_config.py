"""Tests for the configuration loader."""
from __future__ import annotations

import json

import pytest

from npc_loop.config import (
    DEFAULT_HEAT_COSTS,
    ConfigManager,
    GlobalConfig,
    HeatConfig,
    get_config_manager,
    reset_config_manager,
)


@pytest.fixture(autouse=True)
def fresh_manager():
    reset_config_manager()
    yield
    reset_config_manager()


def test_defaults():
    config = GlobalConfig.create_default()
    assert config.workflow.max_iterations == 10
    assert config.workflow.heat_ceiling == 80
    assert config.workflow.low_confidence_threshold == 0.4
    assert config.workflow.serialize_per_actor is True
    assert config.heat.max_heat == 100
    assert config.llm.model == "mistral-small-latest"


def test_missing_file_is_created_with_defaults(tmp_path):
    manager = ConfigManager(str(tmp_path / "cfg"))
    config = manager.load_global()
    assert manager.config_path.exists()
    saved = json.loads(manager.config_path.read_text(encoding="utf-8"))
    assert saved["workflow"]["max_iterations"] == config.workflow.max_iterations
    assert saved["logging"] == {"level": "INFO", "file": None}


def test_partial_file_keeps_defaults(tmp_path):
    (tmp_path / "config.json").write_text(json.dumps({
        "workflow": {"max_iterations": 4},
        "heat": {"costs": {"like": 2}},
        "logging": {"level": "DEBUG"},
    }), encoding="utf-8")
    config = ConfigManager(str(tmp_path)).load_global()

    assert config.workflow.max_iterations == 4
    assert config.workflow.heat_ceiling == 80
    assert config.heat.cost_for("like") == 2
    assert config.heat.cost_for("reply") == DEFAULT_HEAT_COSTS["reply"]
    assert config.logging_level == "DEBUG"


def test_corrupt_file_falls_back_to_defaults(tmp_path):
    (tmp_path / "config.json").write_text("{broken", encoding="utf-8")
    config = ConfigManager(str(tmp_path)).load_global()
    assert config.to_dict() == GlobalConfig.create_default().to_dict()


def test_environment_selects_directory(tmp_path, monkeypatch):
    monkeypatch.setenv("NPC_LOOP_CONFIG_DIR", str(tmp_path))
    assert ConfigManager().config_dir == tmp_path


def test_manager_is_cached_until_reset(tmp_path):
    first = get_config_manager(str(tmp_path))
    assert get_config_manager() is first
    reset_config_manager()
    assert get_config_manager(str(tmp_path / "other")) is not first


def test_round_trip_preserves_custom_values():
    config = GlobalConfig.create_default()
    config.reasoning.record_identity_observations = False
    config.llm.fallback_models = ["m2"]
    restored = GlobalConfig.from_dict(config.to_dict())
    assert restored.reasoning.record_identity_observations is False
    assert restored.llm.fallback_models == ["m2"]


def test_unknown_action_uses_default_cost():
    assert HeatConfig().cost_for("dance") == 5
