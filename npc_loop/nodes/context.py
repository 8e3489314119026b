"""
Dependencies shared by the workflow nodes, and the tool context derived from a run's scope.
"""

import logging
from concurrent.futures import Executor
from dataclasses import dataclass
from typing import Any, Callable, Optional

from ..config import GlobalConfig
from ..state import CommentSubject, MessageSubject, PostSubject, WorkflowState
from ..tools import ToolContext, ToolRegistry

logger = logging.getLogger(__name__)


@dataclass
class NodeDeps:
    """Collaborators injected into every node by the orchestrator."""
    store: Any
    registry: ToolRegistry
    llm_client: Any = None
    config: Optional[GlobalConfig] = None
    background: Optional[Executor] = None

    def __post_init__(self):
        if self.config is None:
            self.config = GlobalConfig.create_default()

    def run_side_effect(self, name: str, fn: Callable, *args) -> None:
        """Run ``fn`` off the node's critical path. Failures are logged, never raised."""
        def _guarded():
            try:
                fn(*args)
            except Exception as e:
                logger.warning("Side effect %s failed: %s", name, e)

        if self.background is None:
            _guarded()
            return
        try:
            self.background.submit(_guarded)
        except RuntimeError as e:
            # Executor already shut down
            logger.warning("Side effect %s not scheduled: %s", name, e)


def build_tool_context(state: WorkflowState) -> ToolContext:
    """Tool context for this run: who acts, in which conversation, about what."""
    scope = state.scope
    subject = scope.subject

    post_id = None
    if isinstance(subject, PostSubject):
        post_id = subject.id
    elif isinstance(subject, CommentSubject):
        post_id = subject.post_id

    user_id = (
        getattr(subject, "mentioner_id", None)
        or getattr(subject, "sender_id", None)
        or getattr(subject, "commenter_id", None)
    )

    metadata = {
        "subject_id": subject.id if subject else None,
        "subject_type": subject.kind if subject else None,
        "post_id": post_id,
        "user_id": user_id,
    }
    if isinstance(subject, MessageSubject) and subject.group_conversation_id:
        metadata["group_conversation_id"] = subject.group_conversation_id

    return ToolContext(
        agent_id=scope.actor_id,
        conversation_id=scope.conversation_id,
        trigger_id=scope.trigger.trigger_id,
        metadata={k: v for k, v in metadata.items() if v is not None},
    )
