"""
REASON
======

Tool-augmented reasoning: decide what to do this iteration.

Architecture
------------
::

    Phase 1  gather    system + user prompt, curated DATA tool schemas
       │               → one completion call
       ├── no tool calls → parse the phase-1 text as the decision
       ▼
    Phase 2  execute   every requested tool call dispatched concurrently,
       │               each through the run's ToolCache (one dispatch per key);
       │               failures come back as ToolResult(success=False)
       ▼
    Phase 3  decide    transcript + summarised tool results + decision prompt
                       → one completion call → Decision (or the ignore fallback)

Side effects (best-effort, never fail the node):

- a coherence sample for the user who provoked the run (``AI_<EVENT>``)
- an identity observation of that user on chat triggers

Only tools the registry classifies as data tools are offered or executed
in phase 2. Action tools run in Act, never here.
"""

import json
import logging
import re
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..observability import report_plan, trace_llm_call, trace_node
from ..psychology import calculate_coherence
from ..state import (
    STEP_ACT,
    UNKNOWN_TARGET,
    Action,
    BattleSubject,
    CommentSubject,
    IdentityVector,
    MessageSubject,
    NodeResult,
    PostSubject,
    ProposalSubject,
    Reasoning,
    Subject,
    ToolCallRecord,
    WorkflowState,
)
from ..tools import CATEGORY_DATA, ToolCache, ToolContext, ToolRegistry, ToolResult
from .context import NodeDeps, build_tool_context
from .decision import Decision, decide
from .prompts import (
    DECISION_PROMPT,
    build_identity_observation_prompt,
    build_system_prompt,
    build_tool_results_block,
    build_user_prompt,
)

logger = logging.getLogger(__name__)

BASE_DATA_TOOLS = ("get_my_stats", "get_user_profile", "check_relationship", "check_request_persistence")

PROFILE_SUMMARY_FIELDS = [
    "id", "username", "display_name", "bio", "identity_json", "morale", "coherence", "heat",
    "energy", "health", "mental_power", "freewill", "community_id",
]

TRUNCATE_DEPTH = 2
TRUNCATE_ITEMS = 15
TRUNCATE_CHARS = 500
TRUNCATE_KEYS = 40
TRUNCATED = "...<truncated>"

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


def reason(state: WorkflowState, deps: NodeDeps) -> NodeResult:
    """Run the three-phase protocol and hand one action to Act."""
    scope = state.scope
    cfg = deps.config.reasoning
    started = time.perf_counter()

    with trace_node("reason", {"iteration": state.loop.iteration, "trigger": scope.trigger.trigger_id}) as span:
        deps.run_side_effect("user_coherence", record_user_coherence, state, deps.store)

        context = build_tool_context(state)
        system_prompt = build_system_prompt(state)
        user_prompt = build_user_prompt(state)
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]

        tool_names = select_data_tool_names(state)
        schemas = deps.registry.get_schemas(names=tool_names, category=CATEGORY_DATA)
        logger.info("[%s] Reason: phase 1 with %d data tools", scope.actor_id, len(schemas))

        # Phase 1
        t0 = time.perf_counter()
        first = deps.llm_client.complete(
            messages, tools=schemas,
            temperature=cfg.gather_temperature, max_tokens=cfg.gather_max_tokens,
        )
        trace_llm_call(
            "reason_gather", first.model or getattr(deps.llm_client, "model", ""), messages,
            response=first, tools=schemas, duration_ms=(time.perf_counter() - t0) * 1000,
            metadata={"iteration": state.loop.iteration},
        )

        tool_results: List[Tuple[Any, ToolResult]] = []
        tokens_used = first.tokens_used

        if not first.tool_calls:
            logger.info("[%s] Reason: no tool calls, parsing decision from phase 1", scope.actor_id)
            decision = decide(first.content)
        else:
            # Phase 2
            logger.info("[%s] Reason: executing %d tool calls", scope.actor_id, len(first.tool_calls))
            tool_results = execute_tool_calls(
                first.tool_calls, deps.registry, state.tool_cache, context,
                max_workers=deps.config.workflow.max_parallel_tools,
            )

            # Phase 3
            summaries = [
                (call.name, summarize_tool_result(call.name, result, cfg.tool_result_max_chars))
                for call, result in tool_results
            ]
            final_messages = messages + [
                {"role": "user", "content": build_tool_results_block(summaries)},
                {"role": "user", "content": DECISION_PROMPT},
            ]
            t0 = time.perf_counter()
            final = deps.llm_client.complete(
                final_messages,
                temperature=cfg.decision_temperature, max_tokens=cfg.decision_max_tokens,
            )
            trace_llm_call(
                "reason_decide", final.model or getattr(deps.llm_client, "model", ""), final_messages,
                response=final, duration_ms=(time.perf_counter() - t0) * 1000,
                metadata={"iteration": state.loop.iteration, "tool_results": len(tool_results)},
            )
            tokens_used += final.tokens_used
            decision = decide(final.content)

        logger.info(
            "[%s] Reason: decision=%s confidence=%.2f plan=%d%s",
            scope.actor_id, decision.action, decision.confidence, len(decision.plan),
            " (fallback)" if decision.is_fallback else "",
        )

        reasoning = Reasoning(
            observation=state.observation.context_summary if state.observation else "No observation",
            thinking_process=first.content or ("No initial reasoning" if first.tool_calls else "No reasoning"),
            tool_calls=[ToolCallRecord(id=c.id, name=c.name, arguments=dict(c.arguments)) for c in first.tool_calls],
            tool_results=[
                {
                    "tool_call_id": call.id,
                    "tool_name": call.name,
                    "content": json.dumps(result.to_dict(), default=str),
                }
                for call, result in tool_results
            ],
            decision=decision.action,
            confidence=decision.confidence,
            alternative_options=list(decision.alternatives),
            factors=dict(decision.factors),
            explanation=decision.reasoning,
        )
        action = build_action(decision, scope.subject)

        if len(action.plan) > 1:
            report_plan(
                decision.reasoning[:200] or decision.action,
                [step.description or step.tool for step in action.plan],
            )

        if (
            cfg.record_identity_observations
            and scope.trigger.event == "chat"
            and scope.subject is not None
            and scope.subject.id
        ):
            deps.run_side_effect(
                "identity_observation", record_identity_observation,
                deps, scope.actor_id, scope.subject.id,
                scope.subject.content or "",
                decision.reasoning, decision.confidence,
            )

        span["output"] = {
            "decision": decision.action,
            "confidence": decision.confidence,
            "tool_calls": len(first.tool_calls),
            "has_plan": bool(action.plan),
            "plan_length": len(action.plan),
        }

    metadata = dict(state.metadata)
    metadata.update({
        "llm_tokens_used": tokens_used,
        "tool_call_count": len(first.tool_calls),
        "reasoning_time_ms": round((time.perf_counter() - started) * 1000),
    })
    return NodeResult.ok(step=STEP_ACT, reasoning=reasoning, action=action, metadata=metadata)


# ============================================================================
# TOOL SELECTION / EXECUTION
# ============================================================================

def select_data_tool_names(state: WorkflowState) -> List[str]:
    """Curated data-tool subset for this trigger and subject. Never the full catalogue."""
    event = state.scope.trigger.event
    subject = state.scope.subject
    names: List[str] = list(BASE_DATA_TOOLS)

    def add(*tools: str) -> None:
        for tool in tools:
            if tool not in names:
                names.append(tool)

    if event == "chat":
        add("get_user_community", "get_community_details", "get_active_battles")

    if event == "battle" or isinstance(subject, BattleSubject):
        add("get_battle_details")

    if event == "law_proposal" or isinstance(subject, ProposalSubject):
        add("get_active_proposals", "get_community_details")

    if event in ("post", "comment", "mention") or isinstance(subject, (PostSubject, CommentSubject)):
        add("get_post_details", "get_recent_posts", "get_user_community", "get_community_details")
        if isinstance(subject, PostSubject) and (subject.is_comment_mention or subject.comment_id):
            add("get_post_comments")

    if isinstance(subject, MessageSubject) and subject.is_group:
        add("get_group_chat_history", "get_group_chat_participants")

    return names


def execute_tool_calls(
    tool_calls: Iterable[Any],
    registry: ToolRegistry,
    cache: ToolCache,
    context: ToolContext,
    max_workers: int = 4,
) -> List[Tuple[Any, ToolResult]]:
    """Dispatch every call concurrently and join them all. Never raises.

    Results come back in request order. A repeated ``(tool, args)`` within
    the run is served from ``cache`` without reaching the registry.
    """
    calls = list(tool_calls)
    if not calls:
        return []

    def _run(call) -> ToolResult:
        if registry.category(call.name) != CATEGORY_DATA:
            return ToolResult(success=False, error=f"Tool {call.name} is not available while gathering information")
        return cache.get_or_execute(
            call.name, call.arguments,
            lambda: registry.execute(call.name, call.arguments, context),
        )

    results: List[Tuple[Any, ToolResult]] = []
    with ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="npc-gather") as pool:
        futures = [(call, pool.submit(_run, call)) for call in calls]
        for call, future in futures:
            try:
                result = future.result()
            except Exception as e:
                result = ToolResult(success=False, error=f"Tool execution error: {e}")
            logger.debug("Tool %s %s", call.name, "succeeded" if result.success else f"failed: {result.error}")
            results.append((call, result))
    return results


# ============================================================================
# TOOL RESULT SUMMARIES
# ============================================================================

def _pick(data: Dict[str, Any], keys: Iterable[str]) -> Dict[str, Any]:
    return {k: data[k] for k in keys if k in data and data[k] is not None}


def _truncate_text(text: str, limit: int = TRUNCATE_CHARS) -> str:
    return text[:limit] + TRUNCATED if len(text) > limit else text


def deep_truncate(value: Any, max_depth: int = TRUNCATE_DEPTH, max_items: int = TRUNCATE_ITEMS, depth: int = 0) -> Any:
    if value is None:
        return None
    if isinstance(value, str):
        return _truncate_text(value)
    if not isinstance(value, (dict, list, tuple)):
        return value
    if depth >= max_depth:
        return "[truncated]"

    if isinstance(value, (list, tuple)):
        items = [deep_truncate(v, max_depth, max_items, depth + 1) for v in value[:max_items]]
        if len(value) > max_items:
            return {"items": items, "truncated": len(value) - max_items}
        return items

    keys = list(value)[:TRUNCATE_KEYS]
    out = {k: deep_truncate(value[k], max_depth, max_items, depth + 1) for k in keys}
    if len(value) > len(keys):
        out["__truncatedKeys"] = len(value) - len(keys)
    return out


def normalize_for_prompt(tool_name: str, payload: Any) -> Any:
    if not isinstance(payload, (dict, list)):
        return payload

    if tool_name == "get_user_profile" and isinstance(payload, dict):
        return _pick(payload, PROFILE_SUMMARY_FIELDS)

    if tool_name == "check_relationship" and isinstance(payload, dict):
        recent = payload.get("recentActions")
        agent_actions = payload.get("recentAgentActions")
        summary = {
            "userId": payload.get("userId"),
            "relationshipType": payload.get("relationshipType"),
            "relationshipScore": payload.get("relationshipScore"),
            "interactions": payload.get("interactions"),
            "lastInteraction": payload.get("lastInteraction"),
            "recentActions": recent[:5] if isinstance(recent, list) else recent,
        }
        if isinstance(agent_actions, list):
            summary["recentAgentActions"] = [
                _pick(a, ["id", "action_type", "created_at", "metadata"]) for a in agent_actions[:3]
                if isinstance(a, dict)
            ]
        return {k: v for k, v in summary.items() if v is not None}

    if tool_name == "get_post_details" and isinstance(payload, dict):
        summary = _pick(payload, ["id", "author_id", "community_id", "created_at", "author",
                                  "commentCount", "likeCount"])
        if isinstance(payload.get("content"), str):
            summary["content"] = _truncate_text(payload["content"])
        return summary

    return deep_truncate(payload)


def summarize_tool_result(tool_name: str, result: ToolResult, max_chars: int = 1800) -> str:
    """Compact JSON of a tool result for the decision prompt."""
    if result.success:
        normalized = normalize_for_prompt(tool_name, result.data)
    else:
        normalized = {"error": result.error or "Unknown error"}
    try:
        text = json.dumps(normalized, default=str)
    except (TypeError, ValueError) as e:
        text = json.dumps({"error": "Failed to serialize tool result", "tool": tool_name, "message": str(e)})
    return text[:max_chars] + TRUNCATED if len(text) > max_chars else text


# ============================================================================
# ACTION CONSTRUCTION
# ============================================================================

def extract_target(args: Dict[str, Any], subject: Optional[Subject]) -> str:
    """Explicit id in args, then the subject, then its sender/mentioner/author, else "unknown"."""
    for key in ("userId", "postId", "battleId", "communityId"):
        if args.get(key):
            return str(args[key])
    if subject is not None:
        if subject.id:
            return subject.id
        for attr in ("sender_id", "mentioner_id", "author_id"):
            value = getattr(subject, attr, None)
            if value:
                return value
    return UNKNOWN_TARGET


def build_action(decision: Decision, subject: Optional[Subject]) -> Action:
    plan = decision.plan_steps()
    content = decision.args.get("content")
    return Action(
        type=decision.action,
        target=extract_target(decision.args, subject),
        content=content if isinstance(content, str) else None,
        args=dict(decision.args),
        plan=plan,
        confidence=decision.confidence,
        goal_achieved=False,
        plan_position=1,
        remaining_plan_steps=max(0, len(plan) - 1),
    )


# ============================================================================
# BEST-EFFORT SIDE EFFECTS
# ============================================================================

def resolve_interacting_user(state: WorkflowState) -> Optional[str]:
    subject = state.scope.subject
    if subject is None:
        return None
    candidates = [
        getattr(subject, "sender_id", None),
        getattr(subject, "mentioner_id", None),
        getattr(subject, "commenter_id", None),
        subject.interacting_user_id(),
    ]
    for candidate in candidates:
        if isinstance(candidate, str) and candidate and candidate != state.scope.actor_id:
            return candidate
    return None


def record_user_coherence(state: WorkflowState, store) -> Optional[float]:
    """Coherence sample for the user who engaged the agent, when they have an identity."""
    user_id = resolve_interacting_user(state)
    if not user_id:
        return None

    identity = store.get_identity(user_id)
    if not identity:
        return None

    trigger = state.scope.trigger
    action_name = f"AI_{(trigger.name or 'INPUT').upper()}"
    coherence = calculate_coherence(IdentityVector.from_dict(identity), action_name)
    content = state.scope.subject.content if state.scope.subject else None

    store.record_coherence(user_id, coherence, "AI_INTERACTION", {
        "agent_id": state.scope.actor_id,
        "trigger_type": trigger.type,
        "trigger_event": trigger.event,
        "message_preview": (content or "")[:200],
    })
    logger.debug("[%s] Reason: coherence for user %s = %.3f", state.scope.actor_id, user_id, coherence)
    return coherence


def parse_identity_vector(content: str) -> Optional[Dict[str, float]]:
    """Five-axis vector from completion text; None unless every value is a number in [-1, 1]."""
    match = _JSON_OBJECT.search(content or "")
    if not match:
        return None
    try:
        parsed = json.loads(match.group(0))
    except ValueError:
        return None
    if not isinstance(parsed, dict) or not parsed:
        return None
    for value in parsed.values():
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not -1.0 <= value <= 1.0:
            return None
    return parsed


def record_identity_observation(
    deps: NodeDeps,
    observer_id: str,
    observed_id: str,
    message_content: str,
    reasoning: str,
    confidence: float,
) -> bool:
    """Ask the model how the observed user comes across and store the suggestion."""
    cfg = deps.config.reasoning
    prompt = build_identity_observation_prompt(message_content, reasoning)
    response = deps.llm_client.complete(
        [{"role": "user", "content": prompt}],
        temperature=cfg.observation_temperature,
        max_tokens=cfg.observation_max_tokens,
    )

    vector = parse_identity_vector(response.content)
    if vector is None:
        logger.warning("Identity observation %s -> %s: no valid vector in response", observer_id, observed_id)
        return False

    deps.store.insert_identity_observation({
        "observer_id": observer_id,
        "observed_id": observed_id,
        "suggested_identity_vector": vector,
        "confidence": max(0.0, min(1.0, confidence)),
        "context": message_content[:1000],
        "metadata": {"ai_reasoning": reasoning[:500]},
    })
    logger.info("Identity observation recorded: %s -> %s", observer_id, observed_id)
    return True
