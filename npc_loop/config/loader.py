"""
CONFIG_LOADER
=============

Configuration management for the npc_loop decision engine.

Handles:
- Completion service settings (provider, endpoint, model fallback chain)
- Reasoning phase parameters (temperatures, token limits)
- Workflow limits (iteration cap, heat ceiling, confidence threshold)
- Heat cost table for action tools

Usage:
    from npc_loop.config import get_config_manager

    config = get_config_manager().global_config
    print(config.workflow.max_iterations)
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

CONFIG_DIR_ENV = "NPC_LOOP_CONFIG_DIR"


# ============================================================================
# PATH RESOLUTION
# ============================================================================

def _find_project_root() -> Path:
    """
    Find the project root directory.

    Looks for data/npcLoop/CONFIG/config.json as the definitive marker,
    falling back to the directory that contains the npc_loop package.
    """
    current = Path(__file__).resolve().parent

    for _ in range(5):
        config_file = current / "data" / "npcLoop" / "CONFIG" / "config.json"
        if config_file.exists():
            return current
        current = current.parent

    # loader.py is at npc_loop/config/loader.py
    return Path(__file__).resolve().parent.parent.parent


def _get_data_dir() -> Path:
    """Get the npcLoop data directory path."""
    return _find_project_root() / "data" / "npcLoop"


# ============================================================================
# DATA STRUCTURES
# ============================================================================

DEFAULT_MODEL = "mistral-small-latest"

DEFAULT_FALLBACK_MODELS = [
    "mistral-large-latest",
    "mistral-medium-latest",
    "open-mixtral-8x22b",
    "mistral-small-latest",
    "open-mixtral-8x7b",
    "open-mistral-7b",
]

DEFAULT_HEAT_COSTS: Dict[str, int] = {
    "send_message": 5,
    "reply": 5,
    "create_post": 8,
    "comment": 5,
    "like": 1,
    "follow": 2,
    "join_community": 10,
    "leave_community": 5,
    "join_battle": 15,
    "buy_item": 3,
    "consume_item": 1,
    "do_work": 10,
    "vote_on_proposal": 5,
    "create_proposal": 10,
    "decline": 3,
    "ignore": 0,
}


@dataclass
class LLMConfig:
    """Completion service configuration."""
    provider: str = "mistral"
    base_url: str = "https://api.mistral.ai/v1"
    api_key_env: str = "MISTRAL_API_KEY"
    model: str = DEFAULT_MODEL
    fallback_models: List[str] = field(default_factory=lambda: list(DEFAULT_FALLBACK_MODELS))
    timeout_seconds: int = 30
    max_retries: int = 3
    backoff_multiplier: float = 2.0

    @property
    def api_key(self) -> Optional[str]:
        return os.environ.get(self.api_key_env) if self.api_key_env else None

    def to_dict(self) -> Dict:
        return {
            "provider": self.provider,
            "base_url": self.base_url,
            "api_key_env": self.api_key_env,
            "model": self.model,
            "fallback_models": self.fallback_models,
            "timeout_seconds": self.timeout_seconds,
            "max_retries": self.max_retries,
            "backoff_multiplier": self.backoff_multiplier,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "LLMConfig":
        return cls(
            provider=data.get("provider", "mistral"),
            base_url=data.get("base_url", "https://api.mistral.ai/v1"),
            api_key_env=data.get("api_key_env", "MISTRAL_API_KEY"),
            model=data.get("model", DEFAULT_MODEL),
            fallback_models=data.get("fallback_models", list(DEFAULT_FALLBACK_MODELS)),
            timeout_seconds=data.get("timeout_seconds", 30),
            max_retries=data.get("max_retries", 3),
            backoff_multiplier=data.get("backoff_multiplier", 2.0),
        )


@dataclass
class ReasoningConfig:
    """Parameters for the reasoning completion calls.

    - gather_*: phase 1, the tool-offering call
    - decision_*: phase 3, the structured decision call
    - observation_*: best-effort identity observation call
    """
    gather_temperature: float = 0.7
    gather_max_tokens: int = 1500
    decision_temperature: float = 0.5
    decision_max_tokens: int = 800
    observation_temperature: float = 0.3
    observation_max_tokens: int = 200
    tool_result_max_chars: int = 1800
    record_identity_observations: bool = True

    def to_dict(self) -> Dict:
        return {
            "gather_temperature": self.gather_temperature,
            "gather_max_tokens": self.gather_max_tokens,
            "decision_temperature": self.decision_temperature,
            "decision_max_tokens": self.decision_max_tokens,
            "observation_temperature": self.observation_temperature,
            "observation_max_tokens": self.observation_max_tokens,
            "tool_result_max_chars": self.tool_result_max_chars,
            "record_identity_observations": self.record_identity_observations,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "ReasoningConfig":
        return cls(
            gather_temperature=data.get("gather_temperature", 0.7),
            gather_max_tokens=data.get("gather_max_tokens", 1500),
            decision_temperature=data.get("decision_temperature", 0.5),
            decision_max_tokens=data.get("decision_max_tokens", 800),
            observation_temperature=data.get("observation_temperature", 0.3),
            observation_max_tokens=data.get("observation_max_tokens", 200),
            tool_result_max_chars=data.get("tool_result_max_chars", 1800),
            record_identity_observations=data.get("record_identity_observations", True),
        )


@dataclass
class WorkflowConfig:
    """Iteration control for one workflow run."""
    max_iterations: int = 10
    heat_ceiling: int = 80
    low_confidence_threshold: float = 0.4
    safety_max_steps: int = 50
    serialize_per_actor: bool = True
    tool_timeout_seconds: int = 30
    max_parallel_tools: int = 4
    side_effect_workers: int = 2

    def to_dict(self) -> Dict:
        return {
            "max_iterations": self.max_iterations,
            "heat_ceiling": self.heat_ceiling,
            "low_confidence_threshold": self.low_confidence_threshold,
            "safety_max_steps": self.safety_max_steps,
            "serialize_per_actor": self.serialize_per_actor,
            "tool_timeout_seconds": self.tool_timeout_seconds,
            "max_parallel_tools": self.max_parallel_tools,
            "side_effect_workers": self.side_effect_workers,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "WorkflowConfig":
        return cls(
            max_iterations=data.get("max_iterations", 10),
            heat_ceiling=data.get("heat_ceiling", 80),
            low_confidence_threshold=data.get("low_confidence_threshold", 0.4),
            safety_max_steps=data.get("safety_max_steps", 50),
            serialize_per_actor=data.get("serialize_per_actor", True),
            tool_timeout_seconds=data.get("tool_timeout_seconds", 30),
            max_parallel_tools=data.get("max_parallel_tools", 4),
            side_effect_workers=data.get("side_effect_workers", 2),
        )


@dataclass
class HeatConfig:
    """Fixed heat cost per action tool."""
    costs: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_HEAT_COSTS))
    default_cost: int = 5
    max_heat: int = 100

    def cost_for(self, action_type: str) -> int:
        return self.costs.get(action_type, self.default_cost)

    def to_dict(self) -> Dict:
        return {
            "costs": self.costs,
            "default_cost": self.default_cost,
            "max_heat": self.max_heat,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "HeatConfig":
        costs = dict(DEFAULT_HEAT_COSTS)
        costs.update(data.get("costs", {}))
        return cls(
            costs=costs,
            default_cost=data.get("default_cost", 5),
            max_heat=data.get("max_heat", 100),
        )


@dataclass
class GlobalConfig:
    """Global configuration for the decision engine."""
    version: str = "1.0.0"
    llm: LLMConfig = field(default_factory=LLMConfig)
    reasoning: ReasoningConfig = field(default_factory=ReasoningConfig)
    workflow: WorkflowConfig = field(default_factory=WorkflowConfig)
    heat: HeatConfig = field(default_factory=HeatConfig)
    logging_level: str = "INFO"
    logging_file: Optional[str] = None
    hiveloop_log_prompts: bool = False

    def to_dict(self) -> Dict:
        return {
            "version": self.version,
            "llm": self.llm.to_dict(),
            "reasoning": self.reasoning.to_dict(),
            "workflow": self.workflow.to_dict(),
            "heat": self.heat.to_dict(),
            "logging": {
                "level": self.logging_level,
                "file": self.logging_file,
            },
            "hiveloop_log_prompts": self.hiveloop_log_prompts,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "GlobalConfig":
        logging_section = data.get("logging", {})
        return cls(
            version=data.get("version", "1.0.0"),
            llm=LLMConfig.from_dict(data.get("llm", {})),
            reasoning=ReasoningConfig.from_dict(data.get("reasoning", {})),
            workflow=WorkflowConfig.from_dict(data.get("workflow", {})),
            heat=HeatConfig.from_dict(data.get("heat", {})),
            logging_level=logging_section.get("level", "INFO"),
            logging_file=logging_section.get("file"),
            hiveloop_log_prompts=data.get("hiveloop_log_prompts", False),
        )

    @classmethod
    def create_default(cls) -> "GlobalConfig":
        return cls()


# ============================================================================
# CONFIG MANAGER
# ============================================================================

class ConfigManager:
    """Load and save the global configuration file."""

    def __init__(self, config_dir: Optional[str] = None):
        if config_dir:
            self.config_dir = Path(config_dir)
        elif os.environ.get(CONFIG_DIR_ENV):
            self.config_dir = Path(os.environ[CONFIG_DIR_ENV])
        else:
            self.config_dir = _get_data_dir() / "CONFIG"

        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.global_config: GlobalConfig = GlobalConfig.create_default()

    @property
    def config_path(self) -> Path:
        return self.config_dir / "config.json"

    def load_global(self) -> GlobalConfig:
        """Load global configuration from file, creating it if absent."""
        config_path = self.config_path

        if config_path.exists():
            try:
                with open(config_path, 'r', encoding='utf-8') as f:
                    data = json.load(f)
                self.global_config = GlobalConfig.from_dict(data)
            except Exception as e:
                logger.warning("Could not load global config %s: %s, using defaults", config_path, e)
                self.global_config = GlobalConfig.create_default()
        else:
            self.global_config = GlobalConfig.create_default()
            self.save_global()

        return self.global_config

    def save_global(self) -> None:
        """Save global configuration to file."""
        with open(self.config_path, 'w', encoding='utf-8') as f:
            json.dump(self.global_config.to_dict(), f, indent=2)


# ============================================================================
# GLOBAL INSTANCE
# ============================================================================

_config_manager: Optional[ConfigManager] = None


def get_config_manager(config_dir: Optional[str] = None) -> ConfigManager:
    """Get or create the global config manager."""
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager(config_dir)
        _config_manager.load_global()
    return _config_manager


def load_global_config() -> GlobalConfig:
    """Load and return global configuration."""
    return get_config_manager().load_global()


def reset_config_manager() -> None:
    """Drop the cached manager (used when switching config directories)."""
    global _config_manager
    _config_manager = None
