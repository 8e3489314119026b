"""
ACT
===

Execute exactly one action tool, then account for it.

On success:
    1. heat += cost(action type), read-modify-write, clamped to 100
    2. coherence of the action against the actor's identity (telemetry only)
    3. one ``agent_actions`` record

On failure nothing is charged; the result carries the error and the Loop
Controller decides whether to retry. An action record is still written so
the attempt is visible.

Goal rule: a decision with no multi-step plan is achieved after one
successful action; otherwise the goal is achieved once the last plan
position has run.
"""

import logging
import time
from dataclasses import replace
from typing import Any, Dict, Optional

from ..errors import ActionExecutionFailure, FieldShapeError, PersistenceWriteFailure
from ..observability import report_plan_step, trace_node
from ..psychology import calculate_coherence
from ..state import STEP_LOOP_CHECK, Action, ActionResult, IdentityVector, NodeResult, WorkflowState
from ..tools import ToolResult
from .context import NodeDeps, build_tool_context

logger = logging.getLogger(__name__)


def _elapsed_ms(started: float) -> int:
    return round((time.perf_counter() - started) * 1000)


def act(state: WorkflowState, deps: NodeDeps) -> NodeResult:
    scope = state.scope
    started = time.perf_counter()
    action = state.action

    if action is None or state.reasoning is None:
        return NodeResult.fail(
            "No reasoning or action available",
            step=STEP_LOOP_CHECK,
            result=ActionResult(success=False, error="No reasoning or action available"),
        )

    action_type = action.type
    is_plan = len(action.plan) > 1

    with trace_node("act", {"action": action_type, "iteration": state.loop.iteration}) as span:
        if is_plan:
            report_plan_step(action.plan_position - 1, "started", action_type)

        tool_result = execute_action(deps, state, action)

        if not tool_result.success:
            failure = ActionExecutionFailure(action_type, tool_result.error or "Action execution failed")
            logger.warning("[%s] Act: %s", scope.actor_id, failure)
            record_id = persist_action(deps.store, state, action_type, {
                "error": failure.reason,
            })
            if is_plan:
                report_plan_step(action.plan_position - 1, "failed", failure.reason[:200])
            span["output"] = {"action_attempted": action_type, "success": False}
            span["error"] = failure.reason

            return NodeResult.ok(
                step=STEP_LOOP_CHECK,
                action=replace(action, action_id=record_id),
                result=ActionResult(
                    success=False,
                    action_id=record_id,
                    error=failure.reason,
                    heat_cost=0,
                    coherence_impact=0.0,
                    execution_time_ms=_elapsed_ms(started),
                ),
                executed_actions=[*state.executed_actions, action_type],
            )

        logger.info("[%s] Act: %s completed", scope.actor_id, action_type)

        heat_cost = deps.config.heat.cost_for(action_type)
        actor = state.actor
        new_heat = apply_heat_cost(deps.store, scope.actor_id, heat_cost)
        if actor is not None and new_heat is not None:
            actor = actor.with_heat(new_heat)

        coherence = record_action_coherence(deps.store, state, action_type)

        record_id = persist_action(deps.store, state, action_type, {
            "tool_result": tool_result.data,
            "coherence": coherence,
        })

        plan_length = len(action.plan)
        goal_achieved = plan_length <= 1 or action.plan_position >= plan_length
        remaining = max(0, plan_length - action.plan_position)

        if is_plan:
            report_plan_step(action.plan_position - 1, "completed", action_type)

        span["output"] = {
            "action_executed": action_type,
            "success": True,
            "goal_achieved": goal_achieved,
            "heat_cost": heat_cost,
            "remaining_plan_steps": remaining,
        }
        logger.debug(
            "[%s] Act: plan_length=%d position=%d goal_achieved=%s",
            scope.actor_id, plan_length, action.plan_position, goal_achieved,
        )

    metadata = dict(state.metadata)
    metadata["last_action_result"] = tool_result.data

    update: Dict[str, Any] = {
        "step": STEP_LOOP_CHECK,
        "action": replace(
            action,
            goal_achieved=goal_achieved,
            action_id=record_id,
            remaining_plan_steps=remaining,
        ),
        "result": ActionResult(
            success=True,
            action_id=record_id,
            heat_cost=heat_cost,
            coherence_impact=coherence,
            execution_time_ms=_elapsed_ms(started),
            data=tool_result.data,
        ),
        "executed_actions": [*state.executed_actions, action_type],
        "metadata": metadata,
    }
    if actor is not None:
        update["actor"] = actor
    return NodeResult(updates=update)


def execute_action(deps: NodeDeps, state: WorkflowState, action: Action) -> ToolResult:
    """Run the single action tool for this iteration."""
    if not deps.registry.is_action(action.type):
        if deps.registry.has(action.type):
            return ToolResult(success=False, error=f"{action.type} is not an action tool")
        return ToolResult(success=False, error=f"Tool not found: {action.type}")

    context = build_tool_context(state)
    logger.debug("[%s] Act: executing %s with %s", state.scope.actor_id, action.type, action.args)
    return deps.registry.execute(action.type, action.args, context)


def apply_heat_cost(store, actor_id: str, heat_cost: int) -> Optional[float]:
    """Add ``heat_cost`` to the stored heat. Returns the new value, or None when nothing was written.

    A failed read or write is logged and yields None.
    """
    if heat_cost == 0:
        return None
    try:
        current = store.get_heat(actor_id)
        new_heat = store.set_heat(actor_id, current + heat_cost)
    except (PersistenceWriteFailure, FieldShapeError) as e:
        logger.error("[%s] Act: failed to apply heat cost +%d: %s", actor_id, heat_cost, e)
        return None
    logger.debug("[%s] Act: heat %.1f -> %.1f (+%d)", actor_id, current, new_heat, heat_cost)
    return new_heat


def record_action_coherence(store, state: WorkflowState, action_type: str) -> float:
    """Coherence of this action for the actor. Telemetry: any failure yields 0.0."""
    actor_id = state.scope.actor_id
    try:
        identity = store.get_identity(actor_id)
        if not identity:
            return 0.0
        coherence = calculate_coherence(IdentityVector.from_dict(identity), action_type)
        store.record_coherence(actor_id, coherence, action_type, {
            "trigger": state.scope.trigger.trigger_id,
            "target_id": state.action.target if state.action else None,
            "confidence": state.reasoning.confidence if state.reasoning else None,
        })
        logger.debug("[%s] Act: coherence %.3f for %s", actor_id, coherence, action_type)
        return coherence
    except Exception as e:
        logger.warning("[%s] Act: failed to calculate/record coherence: %s", actor_id, e)
        return 0.0


def persist_action(store, state: WorkflowState, action_type: str, extra: Dict[str, Any]) -> Optional[str]:
    """Write the ``agent_actions`` record. A failed write is logged and yields None."""
    metadata = {
        "trigger": state.scope.trigger.trigger_id,
        "confidence": state.reasoning.confidence if state.reasoning else None,
        "loop_iteration": state.loop.iteration,
        "explanation": state.reasoning.explanation if state.reasoning else None,
    }
    metadata.update(extra)
    try:
        stored = store.insert_action({
            "agent_id": state.scope.actor_id,
            "action_type": action_type,
            "target_id": state.action.target if state.action else None,
            "metadata": metadata,
        })
    except PersistenceWriteFailure as e:
        logger.error("[%s] Act: failed to store action: %s", state.scope.actor_id, e)
        return None
    return stored.get("id")
