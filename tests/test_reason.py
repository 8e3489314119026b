"""Tests for the Reason node: tool selection, gathering, decision and side effects."""
from __future__ import annotations

import json

from conftest import chat_scope, decision_response, tool_call_response

from npc_loop.llm_client import CompletionResponse, ToolCall
from npc_loop.nodes import reason
from npc_loop.nodes.reason import (
    TRUNCATED,
    execute_tool_calls,
    extract_target,
    parse_identity_vector,
    record_identity_observation,
    select_data_tool_names,
    summarize_tool_result,
)
from npc_loop.state import BattleSubject, MessageSubject, PostSubject, Scope, Trigger
from npc_loop.tools import ToolResult
from npc_loop.nodes.context import build_tool_context


def test_tool_selection_for_chat_is_curated(make_state, registry):
    names = select_data_tool_names(make_state())
    assert names[:4] == ["get_my_stats", "get_user_profile", "check_relationship", "check_request_persistence"]
    assert "get_active_battles" in names
    assert "get_post_details" not in names
    assert not any(registry.is_action(n) for n in names)


def test_tool_selection_for_comment_mention_and_group(make_state):
    post_scope = Scope(
        actor_id="agent-1", trigger=Trigger.event_trigger("mention"),
        subject=PostSubject(id="post-1", is_comment_mention=True, comment_id="c-1"),
    )
    assert "get_post_comments" in select_data_tool_names(make_state(post_scope))

    group_scope = Scope(
        actor_id="agent-1", trigger=Trigger.event_trigger("mention"),
        subject=MessageSubject(id="user-9", conversation_type="group", group_conversation_id="g-1"),
    )
    assert "get_group_chat_history" in select_data_tool_names(make_state(group_scope))

    battle_scope = Scope(actor_id="agent-1", trigger=Trigger.event_trigger("battle"), subject=BattleSubject(id="battle-1"))
    assert "get_battle_details" in select_data_tool_names(make_state(battle_scope))


def test_phase_one_decision_without_tools(make_state, deps, llm):
    llm.responses = [decision_response("reply", {"content": "Not now"}, confidence=0.75)]
    result = reason(make_state(), deps)

    assert result.updates["step"] == "act"
    action = result.updates["action"]
    assert action.type == "reply"
    assert action.content == "Not now"
    assert action.target == "user-9"
    assert action.plan_position == 1
    assert result.updates["reasoning"].confidence == 0.75
    assert len(llm.calls) == 1
    offered = {s["function"]["name"] for s in llm.calls[0]["tools"]}
    assert "send_message" not in offered
    assert "check_request_persistence" in offered


def test_three_phase_protocol_with_tool_results(make_state, deps, llm, store):
    llm.responses = [
        tool_call_response(
            ToolCall(id="c1", name="check_relationship", arguments={"userId": "user-9"}),
            ToolCall(id="c2", name="get_my_stats", arguments={}),
        ),
        decision_response("decline", {"message": "No.", "targetId": "user-9"}, confidence=0.6),
    ]
    state = make_state()
    result = reason(state, deps)

    reasoning = result.updates["reasoning"]
    assert [c.name for c in reasoning.tool_calls] == ["check_relationship", "get_my_stats"]
    assert [r["tool_name"] for r in reasoning.tool_results] == ["check_relationship", "get_my_stats"]
    assert json.loads(reasoning.tool_results[0]["content"])["data"]["relationshipType"] == "neutral"
    assert result.updates["metadata"]["tool_call_count"] == 2

    final_prompt = llm.prompt_text(1)
    assert "Tool check_relationship result:" in final_prompt
    assert "Respond with a JSON object" in final_prompt
    assert llm.calls[1]["tools"] is None
    assert state.tool_cache.dispatch_count == 2


def test_unparseable_decision_falls_back(make_state, deps, llm):
    llm.responses = [CompletionResponse(content="Hmm, I am not sure what to do.")]
    result = reason(make_state(), deps)
    action = result.updates["action"]
    assert action.type == "ignore"
    assert action.args == {"reason": "Could not parse decision"}
    assert result.updates["reasoning"].confidence == 0.3


def test_multi_step_plan_becomes_action(make_state, deps, llm):
    plan = [
        {"step": 1, "tool": "do_work", "args": {"jobType": "mining"}, "description": "earn gold"},
        {"step": 2, "tool": "buy_item", "args": {"itemName": "bread"}, "description": "buy food"},
        {"step": 3, "tool": "consume_item", "args": {"itemName": "bread"}, "description": "eat"},
    ]
    llm.responses = [decision_response("do_work", {"jobType": "mining"}, plan=plan)]
    action = reason(make_state(), deps).updates["action"]
    assert len(action.plan) == 3
    assert action.remaining_plan_steps == 2
    assert action.plan[1].tool == "buy_item"


def test_retry_prompt_reports_previous_failure(make_state, deps, llm):
    from npc_loop.state import Action, ActionResult

    state = make_state(action=Action(type="buy_item"))
    state.result = ActionResult(success=False, error="Item diamond not found in market")
    llm.responses = [decision_response("ignore")]
    reason(state, deps)

    prompt = llm.prompt_text(0)
    assert "PREVIOUS ATTEMPT FAILED:" in prompt
    assert "Item diamond not found in market" in prompt


def test_gathering_refuses_action_tools(make_state, registry, store):
    state = make_state()
    results = execute_tool_calls(
        [ToolCall(id="c1", name="send_message", arguments={"userId": "user-9", "content": "hi"})],
        registry, state.tool_cache, build_tool_context(state),
    )
    assert not results[0][1].success
    assert "not available while gathering information" in results[0][1].error
    assert store.count("messages") == 1


def test_gathering_serves_repeats_from_cache(make_state, registry):
    state = make_state()
    call = ToolCall(id="c1", name="get_user_profile", arguments={"userId": "user-9"})
    repeat = ToolCall(id="c2", name="get_user_profile", arguments={"userId": "user-9"})
    results = execute_tool_calls([call, repeat], registry, state.tool_cache, build_tool_context(state))
    assert results[0][1] is results[1][1]
    assert state.tool_cache.dispatch_count == 1


def test_summaries_are_bounded():
    long = ToolResult(success=True, data={"bio": "y" * 5000})
    text = summarize_tool_result("get_recent_posts", long, max_chars=300)
    assert text.endswith(TRUNCATED)
    assert len(text) <= 300 + len(TRUNCATED)

    failed = summarize_tool_result("get_post_details", ToolResult(success=False, error="Post not found: p"))
    assert json.loads(failed) == {"error": "Post not found: p"}


def test_extract_target_precedence():
    subject = MessageSubject(id="user-9", sender_id="user-9")
    assert extract_target({"battleId": "battle-1", "userId": "user-3"}, subject) == "user-3"
    assert extract_target({}, subject) == "user-9"
    assert extract_target({}, MessageSubject(id="", sender_id="user-4")) == "user-4"
    assert extract_target({}, None) == "unknown"


def test_user_coherence_side_effect(make_state, deps, llm, store):
    llm.responses = [decision_response("ignore")]
    reason(make_state(), deps)
    row = store.select_one("coherence_history", {"user_id": "user-9"})
    assert row["action_type"] == "AI_INTERACTION"
    assert row["metadata"]["trigger_event"] == "chat"


def test_identity_observation_on_chat(make_state, deps, llm, store):
    deps.config.reasoning.record_identity_observations = True
    llm.responses = [
        decision_response("reply", {"content": "ok"}, reasoning="They seem pushy"),
        CompletionResponse(content='{"order_chaos": 0.1, "self_community": 0.6, "logic_emotion": -0.3, '
                                   '"power_harmony": 0.9, "tradition_innovation": 0.0}'),
    ]
    reason(make_state(chat_scope(message="Fight with me NOW")), deps)

    row = store.select_one("identity_observations", {"observed_id": "user-9"})
    assert row["observer_id"] == "agent-1"
    assert row["suggested_identity_vector"]["power_harmony"] == 0.9
    assert row["context"] == "Fight with me NOW"
    assert len(llm.calls) == 2


def test_identity_observation_failure_never_fails_reason(make_state, deps, llm, store):
    deps.config.reasoning.record_identity_observations = True
    llm.responses = [decision_response("reply", {"content": "ok"})]
    result = reason(make_state(), deps)
    assert not result.failed
    assert store.count("identity_observations") == 0


def test_identity_vector_validation():
    assert parse_identity_vector('{"order_chaos": 0.2}') == {"order_chaos": 0.2}
    assert parse_identity_vector('{"order_chaos": 1.5}') is None
    assert parse_identity_vector('{"order_chaos": "high"}') is None
    assert parse_identity_vector("no json") is None


def test_record_identity_observation_rejects_bad_vector(deps, llm, store):
    llm.responses = [CompletionResponse(content="I cannot tell.")]
    assert record_identity_observation(deps, "agent-1", "user-9", "hi", "why", 0.5) is False
    assert store.count("identity_observations") == 0
