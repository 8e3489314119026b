"""
Configuration management for the npc_loop decision engine.
"""

from .loader import (
    ConfigManager,
    GlobalConfig,
    LLMConfig,
    ReasoningConfig,
    WorkflowConfig,
    HeatConfig,
    DEFAULT_HEAT_COSTS,
    get_config_manager,
    load_global_config,
    reset_config_manager,
)

__all__ = [
    "ConfigManager",
    "GlobalConfig",
    "LLMConfig",
    "ReasoningConfig",
    "WorkflowConfig",
    "HeatConfig",
    "DEFAULT_HEAT_COSTS",
    "get_config_manager",
    "load_global_config",
    "reset_config_manager",
]
