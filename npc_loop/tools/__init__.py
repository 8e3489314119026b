"""
Tool system for the NPC decision loop.

Tools are the only capabilities an actor has. Each tool defines a JSON
schema (so the completion service knows how to call it) and an execute
method that reads or writes the actor store.

Available Tools (36 total)
--------------------------
**Data tools** (data_tools.py): read-only, cached per run:
  - ``get_user_profile``, ``get_my_stats``, ``check_relationship``,
    ``check_request_persistence``, ``get_user_community``,
    ``get_community_details``, ``get_battle_details``, ``get_active_battles``,
    ``get_market_items``, ``get_my_inventory``, ``search_memories``,
    ``get_conversation_history``, ``get_recent_posts``, ``get_post_details``,
    ``get_post_comments``, ``get_group_chat_history``,
    ``get_group_chat_participants``, ``get_active_proposals``,
    ``check_coherence``

**Action tools** (action_tools.py): one per loop iteration:
  - ``send_message``, ``reply``, ``create_post``, ``comment``,
    ``send_group_message``, ``like``, ``follow``, ``join_community``,
    ``leave_community``, ``join_battle``, ``buy_item``, ``consume_item``,
    ``do_work``, ``vote_on_proposal``, ``create_proposal``, ``decline``,
    ``ignore``

Data vs Action
--------------
The category is decided by the tool's base class (``DataTool`` or
``ActionTool``), never by executing it. Reason runs data tools while it
gathers context; Act runs exactly one action tool.
"""

from .base import (
    CATEGORY_ACTION,
    CATEGORY_DATA,
    ActionTool,
    BaseTool,
    DataTool,
    ToolCache,
    ToolContext,
    ToolDefinition,
    ToolParameter,
    ToolRegistry,
    ToolResult,
    normalize_tool_args,
    stable_key,
)
from .data_tools import DATA_TOOL_CLASSES
from .action_tools import ACTION_TOOL_CLASSES


def create_default_registry(store, default_timeout: int = ToolRegistry.DEFAULT_TIMEOUT,
                            max_workers: int = 4) -> ToolRegistry:
    """Registry with every data and action tool bound to ``store``."""
    registry = ToolRegistry(default_timeout=default_timeout, max_workers=max_workers)
    for tool_class in DATA_TOOL_CLASSES + ACTION_TOOL_CLASSES:
        registry.register(tool_class(store))
    return registry


__all__ = [
    # Base classes
    "BaseTool",
    "DataTool",
    "ActionTool",
    "ToolParameter",
    "ToolDefinition",
    "ToolResult",
    "ToolContext",
    "ToolRegistry",
    "ToolCache",
    "CATEGORY_DATA",
    "CATEGORY_ACTION",
    "normalize_tool_args",
    "stable_key",
    # Tool sets
    "DATA_TOOL_CLASSES",
    "ACTION_TOOL_CLASSES",
    "create_default_registry",
]
