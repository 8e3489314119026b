"""
TOOL_BASE
=========

Base classes, registry and per-run cache for the decision loop tool system.

Tools are the only way the loop touches the simulation. Each tool declares
its schema (so the completion service knows how to call it) and an
``execute`` method that reads or writes the actor store.

Architecture
------------
::

    BaseTool (abstract)
    ├── definition property → ToolDefinition (name, description, parameters)
    ├── execute(context, **kwargs) → payload   (raise to fail)
    └── invoke(args, context) → ToolResult     (never raises)
        ├── DataTool     read-only, idempotent within one run
        └── ActionTool   changes simulation state

    ToolRegistry
    ├── register(tool) / get / has / list_tools
    ├── is_action(name) / category(name)   : isinstance tests
    ├── execute(name, args, context)        : normalise, run with timeout
    └── get_schemas(names, category)        : OpenAI function-calling format

    ToolCache
    └── get_or_execute(name, args, fn)      : one dispatch per (name, args)

Safety
------
- **Timeout**: default 30s per tool via ThreadPoolExecutor (max 4 workers).
- **Error isolation**: every exception becomes ``ToolResult(success=False)``.
- **Argument repair**: placeholder strings like ``"event.userId"`` resolve
  from the context, and a user id that is really the post id is corrected.

Usage::

    registry = ToolRegistry()
    registry.register(GetUserProfileTool(store))

    context = ToolContext(agent_id="agent-1", metadata={"user_id": "u-9"})
    result = registry.execute("get_user_profile", {"userId": "event.userId"}, context)
"""

import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from ..errors import ToolExecutionFailure
from ..observability import report_tool_issue, track_tool

logger = logging.getLogger(__name__)

CATEGORY_DATA = "data"
CATEGORY_ACTION = "action"


# ============================================================================
# TOOL DEFINITION STRUCTURES
# ============================================================================

@dataclass
class ToolParameter:
    """Definition of a tool parameter."""
    name: str
    type: str  # "string", "number", "integer", "boolean", "array", "object"
    description: str
    required: bool = True
    enum: Optional[List[Any]] = None
    default: Optional[Any] = None
    items: Optional[Dict] = None  # For array types

    def to_schema(self) -> Dict:
        """Convert to JSON Schema format."""
        schema = {
            "type": self.type,
            "description": self.description,
        }
        if self.enum:
            schema["enum"] = self.enum
        if self.default is not None:
            schema["default"] = self.default
        if self.items and self.type == "array":
            schema["items"] = self.items
        return schema


@dataclass
class ToolDefinition:
    """Complete tool definition for the completion service."""
    name: str
    description: str
    parameters: List[ToolParameter] = field(default_factory=list)

    @property
    def parameter_names(self) -> List[str]:
        return [p.name for p in self.parameters]

    def to_schema(self) -> Dict:
        """OpenAI-compatible function-calling schema."""
        properties = {}
        required = []

        for param in self.parameters:
            properties[param.name] = param.to_schema()
            if param.required:
                required.append(param.name)

        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": {
                    "type": "object",
                    "properties": properties,
                    "required": required
                }
            }
        }


# ============================================================================
# TOOL RESULT / CONTEXT
# ============================================================================

@dataclass
class ToolResult:
    """Result of tool execution: a payload on success, an error string otherwise."""
    success: bool
    data: Any = None
    error: Optional[str] = None
    metadata: Optional[Dict] = None

    def to_dict(self) -> Dict:
        result: Dict[str, Any] = {"success": self.success}
        if self.success:
            result["data"] = self.data
        if self.error:
            result["error"] = self.error
        if self.metadata:
            result["metadata"] = self.metadata
        return result

    def __str__(self) -> str:
        if self.success:
            return json.dumps(self.data, default=str)
        return f"[ERROR] {self.error or 'Unknown error'}"


@dataclass
class ToolContext:
    """Execution context handed to every tool.

    ``metadata`` carries what the tools may infer from the run's subject:
    ``subject_id``, ``subject_type``, ``post_id`` and ``user_id`` (the user
    whose input provoked the run).
    """
    agent_id: str
    conversation_id: Optional[str] = None
    trigger_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def subject_id(self) -> Optional[str]:
        return self.metadata.get("subject_id")

    @property
    def subject_type(self) -> Optional[str]:
        return self.metadata.get("subject_type")

    @property
    def post_id(self) -> Optional[str]:
        return self.metadata.get("post_id")

    @property
    def user_id(self) -> Optional[str]:
        return self.metadata.get("user_id")


# ============================================================================
# BASE TOOL CLASSES
# ============================================================================

class BaseTool(ABC):
    """
    Base class for all tools.

    Subclasses must implement:
    - definition property: Returns ToolDefinition with schema
    - execute method: Performs the work and returns a JSON-friendly payload,
      raising ``ToolExecutionFailure`` (or any exception) to fail
    """

    category: str = ""

    @property
    @abstractmethod
    def definition(self) -> ToolDefinition:
        """Return the tool's definition (schema for the completion service)."""
        pass

    @abstractmethod
    def execute(self, context: ToolContext, **kwargs) -> Any:
        pass

    @property
    def name(self) -> str:
        """Get tool name from definition."""
        return self.definition.name

    def get_schema(self) -> Dict:
        return self.definition.to_schema()

    def fail(self, message: str) -> ToolExecutionFailure:
        return ToolExecutionFailure(self.name, message)

    def invoke(self, args: Dict[str, Any], context: ToolContext) -> ToolResult:
        """Run the tool and wrap the outcome. Never raises.

        Arguments the schema does not declare are dropped, so a stray
        ``conversationId`` from the model cannot break the call.
        """
        accepted = set(self.definition.parameter_names)
        kwargs = {k: v for k, v in (args or {}).items() if k in accepted}
        dropped = sorted(set(args or {}) - accepted)
        if dropped:
            logger.debug("%s: ignoring undeclared arguments %s", self.name, dropped)

        try:
            payload = self.execute(context, **kwargs)
        except ToolExecutionFailure as e:
            return ToolResult(success=False, error=e.reason)
        except TypeError as e:
            return ToolResult(success=False, error=f"Invalid parameters for {self.name}: {e}")
        except Exception as e:
            logger.warning("Tool %s raised: %s", self.name, e)
            return ToolResult(success=False, error=str(e) or type(e).__name__)

        if isinstance(payload, ToolResult):
            return payload
        return ToolResult(success=True, data=payload)


class DataTool(BaseTool):
    """Read-only tool. Results may be cached for the rest of the run."""
    category = CATEGORY_DATA


class ActionTool(BaseTool):
    """Tool that changes simulation state. Act runs exactly one per iteration."""
    category = CATEGORY_ACTION


# ============================================================================
# ARGUMENT NORMALISATION
# ============================================================================

# Placeholder strings the model sometimes emits instead of real ids
_USER_PLACEHOLDERS = (
    "event.userId", "event.user.id", "event.mentionerId", "event.senderId",
    "subject.userId", "subject.user.id",
)
_POST_PLACEHOLDERS = ("event.postId", "event.post.id", "subject.postId")
_SUBJECT_PLACEHOLDERS = ("subject.id",)


def _resolve_placeholders(value: Any, context: ToolContext) -> Any:
    if isinstance(value, list):
        return [_resolve_placeholders(v, context) for v in value]
    if isinstance(value, dict):
        return {k: _resolve_placeholders(v, context) for k, v in value.items()}
    if isinstance(value, str):
        trimmed = value.strip()
        if trimmed in _USER_PLACEHOLDERS and context.user_id:
            return context.user_id
        if trimmed in _POST_PLACEHOLDERS and context.post_id:
            return context.post_id
        if trimmed in _SUBJECT_PLACEHOLDERS and context.subject_id:
            return context.subject_id
    return value


def normalize_tool_args(tool_name: str, args: Dict[str, Any], context: ToolContext) -> Dict[str, Any]:
    """Repair common model mistakes in tool arguments before dispatch."""
    normalized = _resolve_placeholders(dict(args or {}), context)
    inferred_user = context.user_id

    def _is_post_reference(value: Any) -> bool:
        if not isinstance(value, str):
            return False
        if context.subject_type == "post" and value == context.subject_id:
            return True
        return bool(context.post_id) and value == context.post_id

    if inferred_user:
        for key in ("userId", "targetId"):
            if _is_post_reference(normalized.get(key)):
                normalized[key] = inferred_user

    if (
        tool_name == "get_post_details"
        and not normalized.get("postId")
        and context.subject_type == "post"
        and context.subject_id
    ):
        normalized["postId"] = context.subject_id

    return normalized


# ============================================================================
# TOOL REGISTRY
# ============================================================================

class ToolRegistry:
    """
    Registry for managing and executing tools.

    Handles:
    - Tool registration and discovery
    - Category lookup (data vs action) without executing anything
    - Schema generation for the completion service
    - Tool execution by name with timeout
    """

    DEFAULT_TIMEOUT = 30  # seconds

    def __init__(self, default_timeout: int = DEFAULT_TIMEOUT, max_workers: int = 4):
        self._tools: Dict[str, BaseTool] = {}
        self.default_timeout = default_timeout
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="npc-tool")

    def register(self, tool: BaseTool) -> None:
        """Register a tool."""
        self._tools[tool.name] = tool

    def get(self, name: str) -> Optional[BaseTool]:
        """Get a tool by name."""
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        """Check if a tool is registered."""
        return name in self._tools

    def list_tools(self, category: Optional[str] = None) -> List[str]:
        """List registered tool names, optionally for one category."""
        return [
            name for name, tool in self._tools.items()
            if category is None or tool.category == category
        ]

    def is_action(self, name: str) -> bool:
        """True when ``name`` is a registered ActionTool (plan steps runnable without reasoning)."""
        return isinstance(self._tools.get(name), ActionTool)

    def category(self, name: str) -> Optional[str]:
        tool = self._tools.get(name)
        if isinstance(tool, ActionTool):
            return CATEGORY_ACTION
        if isinstance(tool, DataTool):
            return CATEGORY_DATA
        return None

    def get_schemas(self, names: Optional[List[str]] = None, category: Optional[str] = None) -> List[Dict]:
        """
        Get tool schemas for the completion service.

        Args:
            names: Only these tools (unknown names are skipped)
            category: Only tools of this category

        Returns:
            List of OpenAI function-calling schemas
        """
        candidates = [self._tools[n] for n in names if n in self._tools] if names is not None \
            else list(self._tools.values())
        return [
            tool.get_schema() for tool in candidates
            if category is None or tool.category == category
        ]

    def execute(
        self,
        tool_name: str,
        args: Optional[Dict[str, Any]],
        context: ToolContext,
        timeout: Optional[int] = None,
    ) -> ToolResult:
        """
        Execute a tool by name.

        Args:
            tool_name: Name of the tool to execute
            args: Arguments from the model (normalised before dispatch)
            context: Execution context (agent, conversation, subject hints)
            timeout: Timeout in seconds (uses default if None)

        Returns:
            ToolResult; never raises
        """
        tool = self._tools.get(tool_name)
        if not tool:
            return ToolResult(success=False, error=f"Tool not found: {tool_name}")

        timeout = timeout or self.default_timeout
        normalized = normalize_tool_args(tool_name, args or {}, context)

        start = time.perf_counter()
        with track_tool(tool_name) as payload:
            try:
                future = self._executor.submit(tool.invoke, normalized, context)
                result = future.result(timeout=timeout)
            except FuturesTimeoutError:
                result = ToolResult(
                    success=False,
                    error=f"Tool '{tool_name}' timed out after {timeout} seconds"
                )
            except Exception as e:
                result = ToolResult(success=False, error=f"Tool execution error: {str(e)}")

            elapsed_ms = round((time.perf_counter() - start) * 1000)
            result.metadata = {**(result.metadata or {}), "execution_time_ms": elapsed_ms}
            payload.update({
                "args": {k: str(v)[:500] for k, v in normalized.items()},
                "success": result.success,
                "error": result.error,
                "duration_ms": elapsed_ms,
            })

        if not result.success:
            logger.info("Tool %s failed: %s", tool_name, result.error)
            report_tool_issue(
                tool_name,
                result.error or "",
                {"tool": tool_name, "params": {k: str(v)[:80] for k, v in normalized.items()}},
            )
        return result

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)


# ============================================================================
# PER-RUN CACHE
# ============================================================================

def stable_key(tool_name: str, args: Optional[Dict[str, Any]]) -> str:
    """``name:`` + canonical JSON of the arguments (sorted keys, compact)."""
    return f"{tool_name}:" + json.dumps(args or {}, sort_keys=True, separators=(",", ":"), default=str)


class ToolCache:
    """Memoises data-tool results for one workflow run.

    A second call with the same ``(tool, args)`` returns the stored
    ToolResult object itself and never reaches the registry. Concurrent
    callers for the same key wait for the first dispatch.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: Dict[str, ToolResult] = {}
        self._pending: Dict[str, threading.Event] = {}
        self._dispatches = 0

    def get(self, tool_name: str, args: Optional[Dict[str, Any]]) -> Optional[ToolResult]:
        with self._lock:
            return self._entries.get(stable_key(tool_name, args))

    def put(self, tool_name: str, args: Optional[Dict[str, Any]], result: ToolResult) -> None:
        with self._lock:
            self._entries[stable_key(tool_name, args)] = result

    def get_or_execute(
        self,
        tool_name: str,
        args: Optional[Dict[str, Any]],
        execute: Callable[[], ToolResult],
    ) -> ToolResult:
        key = stable_key(tool_name, args)
        while True:
            with self._lock:
                if key in self._entries:
                    logger.debug("Tool cache hit: %s", key)
                    return self._entries[key]
                waiter = self._pending.get(key)
                if waiter is None:
                    waiter = threading.Event()
                    self._pending[key] = waiter
                    self._dispatches += 1
                    break
            waiter.wait()

        try:
            result = execute()
            with self._lock:
                self._entries[key] = result
            return result
        finally:
            with self._lock:
                self._pending.pop(key, None)
            waiter.set()

    @property
    def dispatch_count(self) -> int:
        return self._dispatches

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __deepcopy__(self, memo):
        # Snapshots share the run's cache rather than copying it
        return self
