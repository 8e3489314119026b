"""
ERRORS
======

Exception taxonomy for the decision loop.

Only ``ActorNotFound`` (and any exception that escapes a node) aborts a run.
Everything else is absorbed where it happens and surfaces through normal
state fields (``result``, ``reasoning.confidence``, ``loop.continue_reason``).

::

    NpcLoopError
    ├── ActorNotFound            fatal, routes straight to complete
    ├── FieldShapeError          store rejected the requested field set
    ├── ToolExecutionFailure     data tool failed during information gathering
    ├── ActionExecutionFailure   action tool failed in Act
    ├── DecisionParseFailure     completion text had no usable decision
    ├── PersistenceWriteFailure  action record / observation write failed
    └── CompletionError          completion service unreachable after retries
"""

from typing import Optional


class NpcLoopError(Exception):
    """Base class for decision loop errors."""


class ActorNotFound(NpcLoopError):
    """The actor referenced by the scope does not exist in the store."""

    def __init__(self, actor_id: str):
        self.actor_id = actor_id
        super().__init__(f"Agent not found: {actor_id}")


class FieldShapeError(NpcLoopError):
    """The store could not serve one or more requested fields."""

    def __init__(self, fields, message: Optional[str] = None):
        self.fields = list(fields)
        super().__init__(message or f"Unknown field(s): {', '.join(self.fields)}")


class ToolExecutionFailure(NpcLoopError):
    """A tool raised or reported failure."""

    def __init__(self, tool_name: str, message: str):
        self.tool_name = tool_name
        self.reason = message
        super().__init__(f"{tool_name}: {message}")


class ActionExecutionFailure(ToolExecutionFailure):
    """The action tool selected for this iteration failed."""


class DecisionParseFailure(NpcLoopError):
    """No structured decision could be extracted from completion text."""


class PersistenceWriteFailure(NpcLoopError):
    """A durable write to the actor store failed."""


class CompletionError(NpcLoopError):
    """The completion service failed after all retries and fallbacks."""
