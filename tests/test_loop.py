"""Tests for the Loop Controller rules and the state updates they produce."""
from __future__ import annotations

import pytest
from conftest import chat_scope

from npc_loop.nodes import evaluate_rules, loop_check
from npc_loop.state import Action, ActionResult, PlanStep, Reasoning, Scope, Trigger


def plan_of(*tools):
    return [PlanStep(step=i, tool=t, args={"userId": "user-9"}, description=f"{t} step")
            for i, t in enumerate(tools, start=1)]


def after_act(make_state, action, success=True, confidence=0.8, iteration=1, max_iterations=10, heat=10,
              scope=None, error=None):
    state = make_state(scope=scope, action=action, max_iterations=max_iterations, heat=heat,
                       reasoning=Reasoning(decision=action.type, confidence=confidence, explanation="why"))
    state.loop.iteration = iteration
    state.result = ActionResult(success=success, error=error)
    state.step = "loop_check"
    return state


# ============================================================================
# RULES
# ============================================================================

def test_rule_iteration_cap(make_state, registry):
    state = after_act(make_state, Action(type="reply"), success=False, iteration=3, max_iterations=3)
    decision = evaluate_rules(state, registry)
    assert (decision.should_continue, decision.reason) == (False, "goal_not_met")


def test_rule_heat_ceiling_beats_goal(make_state, registry):
    state = after_act(make_state, Action(type="reply", goal_achieved=True), heat=80)
    assert evaluate_rules(state, registry).reason == "goal_not_met"


def test_rule_goal_achieved(make_state, registry):
    state = after_act(make_state, Action(type="reply", goal_achieved=True))
    decision = evaluate_rules(state, registry)
    assert (decision.should_continue, decision.reason) == (False, "goal_achieved")


def test_rule_next_plan_action_goes_straight_to_act(make_state, registry):
    action = Action(type="follow", plan=plan_of("follow", "send_message"), plan_position=1)
    decision = evaluate_rules(after_act(make_state, action), registry)
    assert decision.should_continue
    assert decision.reason == "new_info"
    assert decision.next_step == "act"
    assert decision.next_plan_step.tool == "send_message"


def test_rule_next_plan_data_step_goes_to_observe(make_state, registry):
    action = Action(type="follow", plan=plan_of("follow", "check_relationship"), plan_position=1)
    decision = evaluate_rules(after_act(make_state, action), registry)
    assert (decision.reason, decision.next_step) == ("new_info", "observe")


def test_rule_failed_plan_step_retries_instead_of_advancing(make_state, registry):
    action = Action(type="follow", plan=plan_of("follow", "send_message"), plan_position=1)
    decision = evaluate_rules(after_act(make_state, action, success=False), registry)
    assert (decision.reason, decision.next_step) == ("tool_failure", "reason")


def test_rule_low_confidence(make_state, registry):
    decision = evaluate_rules(after_act(make_state, Action(type="reply"), confidence=0.2), registry)
    assert (decision.reason, decision.next_step) == ("low_confidence", "observe")


def test_rule_user_persistence(make_state, registry):
    scope = chat_scope(is_response=True)
    decision = evaluate_rules(after_act(make_state, Action(type="decline"), scope=scope), registry)
    assert (decision.reason, decision.next_step) == ("user_persistence", "observe")


def test_rule_default_stop(make_state, registry):
    decision = evaluate_rules(after_act(make_state, Action(type="reply")), registry)
    assert (decision.should_continue, decision.reason) == (False, "goal_not_met")


def test_configurable_thresholds(make_state, registry):
    state = after_act(make_state, Action(type="reply", goal_achieved=True), heat=50)
    assert evaluate_rules(state, registry, heat_ceiling=50).reason == "goal_not_met"
    low = after_act(make_state, Action(type="reply"), confidence=0.5)
    assert evaluate_rules(low, registry, low_confidence_threshold=0.6).reason == "low_confidence"


# ============================================================================
# STATE UPDATES
# ============================================================================

def test_stop_completes_with_metadata(make_state, deps):
    state = after_act(make_state, Action(type="reply", goal_achieved=True))
    result = loop_check(state, deps)
    state.apply(result, "loop_check")

    assert state.step == "complete"
    assert state.completed_at
    assert state.loop.continue_reason == "goal_achieved"
    assert state.loop.iteration == 1
    assert len(state.loop.history) == 1
    assert state.metadata["completion_reason"] == "goal_achieved"
    assert state.metadata["final_goal_achieved"] is True


def test_tool_failure_keeps_observation_and_result(make_state, deps):
    state = after_act(make_state, Action(type="buy_item"), success=False, error="Item diamond not found in market")
    observation = state.observation
    state.apply(loop_check(state, deps), "loop_check")

    assert state.step == "reason"
    assert state.loop.iteration == 2
    assert state.observation is observation
    assert state.result.error == "Item diamond not found in market"
    assert state.reasoning is None
    assert state.metadata["last_loop_reason"] == "tool_failure"


def test_low_confidence_clears_iteration_fields(make_state, deps):
    state = after_act(make_state, Action(type="reply"), confidence=0.1)
    state.apply(loop_check(state, deps), "loop_check")
    assert state.step == "observe"
    assert state.observation is None
    assert state.reasoning is None
    assert state.result is None


def test_plan_step_dispatch_synthesizes_action(make_state, deps):
    action = Action(type="follow", plan=plan_of("follow", "like", "send_message"), plan_position=1, confidence=0.9)
    state = after_act(make_state, action, confidence=0.9)
    state.apply(loop_check(state, deps), "loop_check")

    assert state.step == "act"
    assert state.observation is not None
    assert state.result is None
    assert state.action.type == "like"
    assert state.action.plan_position == 2
    assert state.action.remaining_plan_steps == 1
    assert state.action.target == "user-9"
    assert state.reasoning.thinking_process == "Following multi-step plan (no re-reasoning needed)."
    assert state.reasoning.explanation == "Executing planned step 2/3: like step"
    assert state.reasoning.confidence == 0.9


def test_history_snapshot_is_independent_of_later_changes(make_state, deps):
    state = after_act(make_state, Action(type="buy_item"), success=False, error="boom")
    state.apply(loop_check(state, deps), "loop_check")
    state.result = ActionResult(success=True)
    assert state.loop.history[0].result.error == "boom"
    assert state.loop.history[0].iteration == 1


def test_loop_check_on_completed_state_is_a_no_op(make_state, deps):
    state = make_state(step="complete")
    assert loop_check(state, deps).updates == {}


@pytest.mark.parametrize("iteration, reason", [(4, "tool_failure"), (5, "goal_not_met")])
def test_failure_retries_until_the_iteration_cap(make_state, registry, iteration, reason):
    scope = Scope(actor_id="agent-1", trigger=Trigger.schedule_trigger("agent_cycle"))
    state = after_act(make_state, Action(type="dance"), success=False, iteration=iteration,
                      max_iterations=5, scope=scope)
    decision = evaluate_rules(state, registry)
    assert decision.reason == reason
    assert decision.should_continue is (reason == "tool_failure")
