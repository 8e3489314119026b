"""
Workflow nodes: observe → reason → act → loop_check.

Every node has the signature ``node(state, deps) -> NodeResult``.
"""

from .context import NodeDeps, build_tool_context
from .observe import observe
from .reason import reason
from .act import act
from .loop import LoopDecision, evaluate_rules, loop_check
from ..state import STEP_ACT, STEP_LOOP_CHECK, STEP_OBSERVE, STEP_REASON

NODES = {
    STEP_OBSERVE: observe,
    STEP_REASON: reason,
    STEP_ACT: act,
    STEP_LOOP_CHECK: loop_check,
}

__all__ = [
    "NodeDeps",
    "build_tool_context",
    "observe",
    "reason",
    "act",
    "loop_check",
    "evaluate_rules",
    "LoopDecision",
    "NODES",
]
