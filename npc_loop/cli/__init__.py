"""
CLI MODULE
==========

Command-line interface for the npc_loop decision engine.

Usage:
    python -m npc_loop.cli run <scenario.json>
    python -m npc_loop.cli schedule <schedule_type> --store <store.json>
    python -m npc_loop.cli tools
    python -m npc_loop.cli config
"""

from .main import main, cli_run, cli_schedule, cli_tools, cli_config

__all__ = [
    'main',
    'cli_run',
    'cli_schedule',
    'cli_tools',
    'cli_config',
]
