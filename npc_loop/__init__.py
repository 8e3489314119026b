"""
NPC_LOOP
========

Decision-loop engine for autonomous simulation agents.

Every trigger (a chat message, a mention, a schedule tick) becomes one
workflow run for one agent::

    Observe → Reason → Act → Loop Controller → (Observe | Reason | Act | Complete)

Features:
- Tool-augmented reasoning: read-only data tools gathered concurrently,
  then one decision parsed into a strict schema (falls back to ``ignore``)
- Exactly one action tool per iteration, with heat cost and coherence telemetry
- Multi-step plans executed without re-reasoning when the next step is an action
- Declarative loop rules bounded by an iteration cap and a heat ceiling

Usage:
    from npc_loop import WorkflowOrchestrator, InMemoryStore, create_default_registry
    from npc_loop import HttpCompletionClient, TriggerRouter

    store = InMemoryStore({"users": [...]})
    registry = create_default_registry(store)
    orchestrator = WorkflowOrchestrator(store, registry, HttpCompletionClient(...))

    router = TriggerRouter(orchestrator)
    outcome = router.handle_event("chat", {"agent_id": "agent-1", "user_id": "u-9", "message": "hi"})
"""

__version__ = "1.0.0"

# State
from .state import (
    Action,
    ActionResult,
    ActorResources,
    IdentityVector,
    LoopHistoryEntry,
    LoopState,
    NodeResult,
    Observation,
    PlanStep,
    Reasoning,
    Scope,
    Trigger,
    WorkflowState,
    create_initial_state,
)

# Errors
from .errors import (
    NpcLoopError,
    ActorNotFound,
    ToolExecutionFailure,
    ActionExecutionFailure,
    DecisionParseFailure,
    PersistenceWriteFailure,
    CompletionError,
)

# Configuration
from .config import (
    ConfigManager,
    GlobalConfig,
    get_config_manager,
    load_global_config,
)

# Store
from .store import ActorStore, InMemoryStore, JsonFileStore

# Tools
from .tools import (
    BaseTool,
    DataTool,
    ActionTool,
    ToolRegistry,
    ToolResult,
    ToolContext,
    create_default_registry,
)

# Completion service
from .llm_client import CompletionClient, CompletionResponse, HttpCompletionClient, create_completion_client

# Engine
from .orchestrator import ActorLockRegistry, WorkflowOrchestrator, WorkflowOutcome
from .triggers import TriggerRouter

__all__ = [
    "__version__",
    # State
    "Action",
    "ActionResult",
    "ActorResources",
    "IdentityVector",
    "LoopHistoryEntry",
    "LoopState",
    "NodeResult",
    "Observation",
    "PlanStep",
    "Reasoning",
    "Scope",
    "Trigger",
    "WorkflowState",
    "create_initial_state",
    # Errors
    "NpcLoopError",
    "ActorNotFound",
    "ToolExecutionFailure",
    "ActionExecutionFailure",
    "DecisionParseFailure",
    "PersistenceWriteFailure",
    "CompletionError",
    # Configuration
    "ConfigManager",
    "GlobalConfig",
    "get_config_manager",
    "load_global_config",
    # Store
    "ActorStore",
    "InMemoryStore",
    "JsonFileStore",
    # Tools
    "BaseTool",
    "DataTool",
    "ActionTool",
    "ToolRegistry",
    "ToolResult",
    "ToolContext",
    "create_default_registry",
    # Completion service
    "CompletionClient",
    "CompletionResponse",
    "HttpCompletionClient",
    "create_completion_client",
    # Engine
    "ActorLockRegistry",
    "WorkflowOrchestrator",
    "WorkflowOutcome",
    "TriggerRouter",
]
