"""
OBSERVABILITY
=============

HiveLoop integration plumbing for npc_loop.

Provides contextvars-based access to the current HiveLoop task object
anywhere in the call stack, without threading it through every node
signature. Every hook here is best-effort: with no task set they do
nothing, and a failing tracer never changes what the workflow does.

Usage::

    from npc_loop.observability import get_current_task, trace_node

    with trace_node("reason", {"iteration": 2}) as span:
        ...
        span["output"] = {"decision": "reply"}
"""

import contextvars
import logging
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

logger = logging.getLogger(__name__)

# Current HiveLoop task for this execution context.
# Set by the orchestrator caller, read anywhere deeper in the stack.
_current_task: contextvars.ContextVar[Optional[Any]] = contextvars.ContextVar(
    "hiveloop_task", default=None
)

# Current HiveLoop agent handle for this execution context.
_current_hiveloop_agent: contextvars.ContextVar[Optional[Any]] = contextvars.ContextVar(
    "hiveloop_agent", default=None
)

# Whether prompt/response previews are attached to llm_call records.
_log_prompts: contextvars.ContextVar[bool] = contextvars.ContextVar(
    "hiveloop_log_prompts", default=False
)


def set_current_task(task: Any) -> None:
    """Set the HiveLoop task for the current execution context."""
    _current_task.set(task)


def get_current_task() -> Optional[Any]:
    """Get the current HiveLoop task, or None if not in a tracked context."""
    return _current_task.get()


def clear_current_task() -> None:
    """Clear the current HiveLoop task."""
    _current_task.set(None)


def set_hiveloop_agent(agent: Any) -> None:
    """Set the HiveLoop agent handle for the current execution context."""
    _current_hiveloop_agent.set(agent)


def get_hiveloop_agent() -> Optional[Any]:
    """Get the current HiveLoop agent handle, or None if not initialized."""
    return _current_hiveloop_agent.get()


def clear_hiveloop_agent() -> None:
    """Clear the current HiveLoop agent handle."""
    _current_hiveloop_agent.set(None)


def set_log_prompts(enabled: bool) -> None:
    _log_prompts.set(bool(enabled))


# ============================================================================
# COST ESTIMATION
# ============================================================================

# USD per 1M tokens (update when pricing changes)
COST_PER_MILLION: Dict[str, Dict[str, float]] = {
    # Mistral
    "mistral-large-latest": {"input": 2.00, "output": 6.00},
    "mistral-medium-latest": {"input": 0.40, "output": 2.00},
    "mistral-small-latest": {"input": 0.10, "output": 0.30},
    "open-mixtral-8x22b": {"input": 2.00, "output": 6.00},
    "open-mixtral-8x7b": {"input": 0.70, "output": 0.70},
    "open-mistral-7b": {"input": 0.25, "output": 0.25},
    # OpenAI-compatible fallbacks
    "gpt-4o-mini": {"input": 0.15, "output": 0.60},
    "gpt-4o": {"input": 2.50, "output": 10.00},
}


def estimate_cost(model: str, tokens_in: int, tokens_out: int) -> Optional[float]:
    """Estimate USD cost for an LLM call. Returns None if model not in table."""
    rates = COST_PER_MILLION.get(model)
    if not rates:
        return None
    return (tokens_in * rates["input"] / 1_000_000) + (tokens_out * rates["output"] / 1_000_000)


# ============================================================================
# TRACE HOOKS
# ============================================================================

def emit_event(name: str, payload: Optional[Dict[str, Any]] = None) -> None:
    """Send a free-form event to the current task, if any."""
    _task = get_current_task()
    if not _task:
        return
    try:
        _task.event(name, payload=payload or {})
    except Exception as exc:
        logger.debug("hiveloop event %s FAILED: %s", name, exc)


@contextmanager
def trace_node(name: str, inputs: Optional[Dict[str, Any]] = None) -> Iterator[Dict[str, Any]]:
    """Emit ``node_start`` / ``node_end`` events around a workflow node.

    Yields a mutable span dict; callers put output or error details into
    ``span["output"]`` / ``span["error"]`` and they are attached to the
    ``node_end`` payload. Exceptions from the wrapped block propagate.
    """
    span: Dict[str, Any] = {"node": name, "output": None, "error": None}
    emit_event("node_start", {"node": name, "input": inputs or {}})
    start = time.perf_counter()
    try:
        yield span
    except Exception as exc:
        span["error"] = str(exc)
        raise
    finally:
        payload = {
            "node": name,
            "duration_ms": round((time.perf_counter() - start) * 1000),
            "output": span.get("output"),
        }
        if span.get("error"):
            payload["error"] = span["error"]
        emit_event("node_end", payload)


def trace_llm_call(
    name: str,
    model: str,
    messages: List[Dict[str, Any]],
    response: Any = None,
    tools: Optional[List[Dict[str, Any]]] = None,
    duration_ms: float = 0.0,
    metadata: Optional[Dict[str, Any]] = None,
) -> None:
    """Report one completion-service call to the current task."""
    _task = get_current_task()
    if not _task:
        return
    try:
        tokens_in = getattr(response, "input_tokens", 0) or 0
        tokens_out = getattr(response, "output_tokens", 0) or 0
        kwargs: Dict[str, Any] = {}
        if _log_prompts.get():
            prompt_text = "\n\n".join(str(m.get("content", "")) for m in messages)
            kwargs["prompt_preview"] = prompt_text[:300]
            kwargs["response_preview"] = (getattr(response, "content", "") or "")[:300]
        meta = dict(metadata or {})
        meta["tool_schemas"] = [t.get("function", {}).get("name") for t in (tools or [])]
        if response is not None:
            meta["tool_calls"] = len(getattr(response, "tool_calls", []) or [])
            meta["finish_reason"] = getattr(response, "finish_reason", None)
        kwargs["metadata"] = {k: v for k, v in meta.items() if v is not None}
        _task.llm_call(
            name,
            model=model,
            tokens_in=tokens_in,
            tokens_out=tokens_out,
            cost=estimate_cost(model, tokens_in, tokens_out),
            duration_ms=round(duration_ms),
            **kwargs,
        )
    except Exception as exc:
        logger.debug("%s llm_call FAILED: %s", name, exc)


def report_retry(message: str, attempt: int) -> None:
    _task = get_current_task()
    if not _task:
        return
    try:
        _task.retry(message, attempt=attempt)
    except Exception as exc:
        logger.debug("hiveloop retry FAILED: %s", exc)


def report_plan(goal: str, step_descriptions: List[str]) -> None:
    """Announce a multi-step plan produced by Reason."""
    _task = get_current_task()
    if not _task:
        return
    try:
        _task.plan(goal, step_descriptions)
    except Exception as exc:
        logger.debug("hiveloop plan FAILED: %s", exc)


def report_plan_step(step_index: int, action: str, summary: str) -> None:
    """``action`` is "started", "completed" or "failed"; ``step_index`` is 0-based."""
    _task = get_current_task()
    if not _task:
        return
    try:
        _task.plan_step(step_index=step_index, action=action, summary=summary)
    except Exception as exc:
        logger.debug("hiveloop plan_step FAILED: %s", exc)


# ============================================================================
# TOOL TRACKING
# ============================================================================

@contextmanager
def track_tool(tool_name: str) -> Iterator[Dict[str, Any]]:
    """Wrap one tool dispatch in the agent's ``track_context``.

    Callers fill the yielded dict; it becomes the context payload on exit.
    """
    payload: Dict[str, Any] = {}
    _hl_agent = get_hiveloop_agent()
    _hl_ctx = None
    if _hl_agent is not None:
        try:
            _hl_ctx = _hl_agent.track_context(tool_name)
            _hl_ctx.__enter__()
        except Exception:
            _hl_ctx = None
    try:
        yield payload
    finally:
        if _hl_ctx is not None:
            try:
                _hl_ctx.set_payload(payload)
                _hl_ctx.__exit__(None, None, None)
            except Exception as exc:
                logger.debug("hiveloop track_context %s FAILED: %s", tool_name, exc)


def classify_tool_error(error: str) -> str:
    lowered = (error or "").lower()
    if "timeout" in lowered or "timed out" in lowered:
        return "timeout"
    if "rate limit" in lowered or "429" in lowered:
        return "rate_limit"
    if "permission" in lowered or "not a member" in lowered or "not part of" in lowered:
        return "permissions"
    if "not found" in lowered:
        return "data_quality"
    if "connection" in lowered:
        return "connectivity"
    return "other"


def report_tool_issue(tool_name: str, error: str, context: Optional[Dict[str, Any]] = None) -> None:
    """Report a failed tool call as a classified issue on the agent handle."""
    _hl_agent = get_hiveloop_agent()
    if _hl_agent is None:
        return
    try:
        _hl_agent.report_issue(
            summary=f"Tool '{tool_name}' failed: {(error or '')[:200]}",
            severity="medium",
            category=classify_tool_error(error),
            issue_id=f"tool_error_{tool_name}",
            context=context or {},
        )
    except Exception as exc:
        logger.debug("hiveloop report_issue FAILED: %s", exc)
