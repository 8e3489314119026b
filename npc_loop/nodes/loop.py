"""
LOOP CONTROLLER
===============

Decides, after every Act, whether the run goes round again and where to.

Rules (first match wins)::

    1. iteration >= max_iterations          stop       goal_not_met
    2. heat >= heat ceiling                 stop       goal_not_met
    3. action.goal_achieved                 stop       goal_achieved
    4. plan has more steps, last step ok    continue   new_info
         next step is an action tool  → act    (action/reasoning synthesized)
         otherwise                    → observe
    5. last action failed                   continue   tool_failure      → reason
    6. confidence < threshold               continue   low_confidence    → observe
    7. is_response and decided decline     continue   user_persistence  → observe
    8. otherwise                            stop       goal_not_met

Every transition appends one history entry for the iteration just
finished. Only rule 5 keeps the observation (and the failed result) so the
retry sees what went wrong; rule 4 keeps it when it dispatches straight to
Act.

``evaluate_rules`` is pure; ``loop_check`` turns its verdict into a
partial state update.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ..observability import trace_node
from ..state import (
    REASON_GOAL_ACHIEVED,
    REASON_GOAL_NOT_MET,
    REASON_LOW_CONFIDENCE,
    REASON_NEW_INFO,
    REASON_TOOL_FAILURE,
    REASON_USER_PERSISTENCE,
    STEP_ACT,
    STEP_COMPLETE,
    STEP_OBSERVE,
    STEP_REASON,
    Action,
    LoopHistoryEntry,
    NodeResult,
    PlanStep,
    Reasoning,
    WorkflowState,
)
from ..tools import ToolRegistry
from .context import NodeDeps
from .reason import extract_target

logger = logging.getLogger(__name__)

DEFAULT_PLAN_CONFIDENCE = 0.7


@dataclass
class LoopDecision:
    should_continue: bool
    reason: str
    next_step: str = STEP_COMPLETE
    next_plan_step: Optional[PlanStep] = None


def next_plan_step(state: WorkflowState) -> Optional[PlanStep]:
    """The plan entry after the one just executed, if any."""
    action = state.action
    if action is None or not action.plan:
        return None
    if action.plan_position < len(action.plan):
        return action.plan[action.plan_position]
    return None


def evaluate_rules(
    state: WorkflowState,
    registry: ToolRegistry,
    heat_ceiling: float = 80,
    low_confidence_threshold: float = 0.4,
) -> LoopDecision:
    loop = state.loop
    action = state.action
    result = state.result

    if loop.iteration >= loop.max_iterations:
        return LoopDecision(False, REASON_GOAL_NOT_MET)

    heat = state.actor.heat if state.actor else 0
    if heat >= heat_ceiling:
        return LoopDecision(False, REASON_GOAL_NOT_MET)

    if action is not None and action.goal_achieved:
        return LoopDecision(False, REASON_GOAL_ACHIEVED)

    last_ok = result is not None and result.success
    upcoming = next_plan_step(state)
    if upcoming is not None and last_ok:
        next_step = STEP_ACT if registry.is_action(upcoming.tool) else STEP_OBSERVE
        return LoopDecision(True, REASON_NEW_INFO, next_step, upcoming)

    if result is not None and not result.success:
        if loop.remaining:
            return LoopDecision(True, REASON_TOOL_FAILURE, STEP_REASON)
        return LoopDecision(False, REASON_TOOL_FAILURE)

    confidence = state.reasoning.confidence if state.reasoning else 0
    if confidence < low_confidence_threshold and loop.remaining:
        return LoopDecision(True, REASON_LOW_CONFIDENCE, STEP_OBSERVE)

    if state.scope.trigger.is_response and action is not None and action.type == "decline" and loop.remaining:
        return LoopDecision(True, REASON_USER_PERSISTENCE, STEP_OBSERVE)

    return LoopDecision(False, REASON_GOAL_NOT_MET)


def build_planned_step(state: WorkflowState, step: PlanStep) -> Dict[str, Any]:
    """Action and reasoning for a plan entry dispatched straight to Act, without a completion call."""
    previous = state.action
    plan = previous.plan
    position = previous.plan_position + 1
    confidence = state.reasoning.confidence if state.reasoning else DEFAULT_PLAN_CONFIDENCE
    content = step.args.get("content") or step.args.get("message")

    action = Action(
        type=step.tool,
        target=extract_target(step.args, state.scope.subject),
        content=content if isinstance(content, str) else None,
        args=dict(step.args),
        plan=plan,
        confidence=confidence,
        goal_achieved=False,
        plan_position=position,
        remaining_plan_steps=max(0, len(plan) - position),
    )
    reasoning = Reasoning(
        observation=state.observation.context_summary if state.observation else "No observation",
        thinking_process="Following multi-step plan (no re-reasoning needed).",
        decision=step.tool,
        confidence=confidence,
        explanation=f"Executing planned step {position}/{len(plan)}: {step.description or step.tool}",
    )
    return {"action": action, "reasoning": reasoning}


def loop_check(state: WorkflowState, deps: NodeDeps) -> NodeResult:
    if state.is_complete:
        return NodeResult.ok()

    scope = state.scope
    workflow = deps.config.workflow
    iteration = state.loop.iteration

    with trace_node("loop", {"iteration": iteration, "max_iterations": state.loop.max_iterations}) as span:
        decision = evaluate_rules(
            state,
            deps.registry,
            heat_ceiling=workflow.heat_ceiling,
            low_confidence_threshold=workflow.low_confidence_threshold,
        )
        logger.info(
            "[%s] iter %d Loop: continue=%s reason=%s",
            scope.actor_id, iteration, decision.should_continue, decision.reason,
        )

        entry = LoopHistoryEntry.snapshot(state)
        loop = state.loop.advance(entry, decision.reason, decision.should_continue)
        metadata = dict(state.metadata)

        if not decision.should_continue:
            goal_achieved = bool(state.action and state.action.goal_achieved)
            metadata.update({
                "completion_reason": decision.reason,
                "total_iterations": iteration,
                "final_goal_achieved": goal_achieved,
            })
            span["output"] = {
                "continue": False,
                "reason": decision.reason,
                "total_iterations": iteration,
                "goal_achieved": goal_achieved,
            }
            return NodeResult.ok(
                step=STEP_COMPLETE,
                loop=loop,
                metadata=metadata,
                completed_at=datetime.now(timezone.utc).isoformat(),
            )

        metadata["last_loop_reason"] = decision.reason
        update: Dict[str, Any] = {
            "step": decision.next_step,
            "loop": loop,
            "metadata": metadata,
            "result": None,
            "reasoning": None,
            "observation": None,
        }

        if decision.reason == REASON_TOOL_FAILURE:
            # the retry prompt reports the failed action and its error
            update.pop("result")
            update.pop("observation")
        elif decision.next_step == STEP_ACT:
            update.pop("observation")
            update.update(build_planned_step(state, decision.next_plan_step))
            logger.info(
                "[%s] iter %d Loop: executing plan step %d/%d: %s",
                scope.actor_id, iteration, update["action"].plan_position,
                len(update["action"].plan), decision.next_plan_step.tool,
            )
        elif decision.next_plan_step is not None:
            logger.info(
                "[%s] iter %d Loop: plan step %s is not an action tool, re-reasoning",
                scope.actor_id, iteration, decision.next_plan_step.tool,
            )

        span["output"] = {
            "continue": True,
            "reason": decision.reason,
            "next_iteration": loop.iteration,
            "next_step": decision.next_step,
            "has_next_plan_step": decision.next_plan_step is not None,
        }

    return NodeResult(updates=update)
