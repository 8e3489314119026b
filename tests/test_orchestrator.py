"""End-to-end runs through the orchestrator with a scripted completion client."""
from __future__ import annotations

import threading
import time

from conftest import chat_scope, decision_response, tool_call_response

from npc_loop.llm_client import CompletionResponse, ToolCall
from npc_loop.observability import get_current_task, get_hiveloop_agent
from npc_loop.orchestrator import ActorLockRegistry, WorkflowOrchestrator, WorkflowOutcome
from npc_loop.state import Scope, Trigger


# ============================================================================
# SCENARIOS
# ============================================================================

def test_first_request_is_declined_politely(orchestrator, llm, store):
    llm.responses = [decision_response("decline", {"message": "Not this time, friend.", "level": 1}, confidence=0.7)]
    outcome = orchestrator.run_scope(chat_scope())

    assert outcome.success
    assert outcome.actions == ["decline"]
    assert outcome.completion_reason == "goal_achieved"
    assert outcome.iterations == 1
    assert outcome.state.reasoning.confidence >= 0.5
    assert store.get_heat("agent-1") == 13
    assert store.select_one("agent_actions", {"action_type": "DECLINE_LEVEL_1"})["target_id"] == "user-9"
    assert store.select_one("messages", {"content": "Not this time, friend."})["receiver_id"] == "user-9"


def test_persistent_requester_is_ignored(orchestrator, llm, store):
    for level in (1, 2):
        store.insert("agent_actions", {
            "agent_id": "agent-1", "action_type": f"DECLINE_LEVEL_{level}", "target_id": "user-9", "metadata": {},
        })
    llm.responses = [decision_response("ignore", {"targetId": "user-9", "reason": "asked three times"})]
    outcome = orchestrator.run_scope(chat_scope(is_response=True))

    assert outcome.actions == ["ignore"]
    assert outcome.completion_reason in ("goal_achieved", "user_persistence")
    assert outcome.iterations <= orchestrator.config.workflow.max_iterations
    assert store.count("agent_actions", {"action_type": "ignore", "target_id": "user-9"}) == 1


def test_failed_plan_step_goes_back_to_reason(orchestrator, llm, store):
    plan = [
        {"step": 1, "tool": "follow", "args": {"userId": "user-9"}, "description": "follow rook"},
        {"step": 2, "tool": "buy_item", "args": {"itemName": "diamond", "quantity": 1}, "description": "buy a gift"},
        {"step": 3, "tool": "send_message", "args": {"userId": "user-9", "content": "Gift!"}, "description": "tell"},
    ]
    llm.responses = [
        decision_response("follow", {"userId": "user-9"}, plan=plan),
        decision_response("ignore", {"reason": "no gift to give"}),
    ]
    outcome = orchestrator.run_scope(chat_scope())
    state = outcome.state

    assert outcome.actions == ["follow", "buy_item", "ignore"]
    assert outcome.completion_reason == "goal_achieved"
    history = state.loop.history
    assert [h.action.type for h in history] == ["follow", "buy_item", "ignore"]
    assert history[1].result.error == "Item diamond not found in market"
    assert history[1].reasoning.thinking_process == "Following multi-step plan (no re-reasoning needed)."
    # observe ran once; the retry reasoned over the same observation
    assert history[2].observation.context_summary == history[0].observation.context_summary

    assert len(llm.calls) == 2
    retry_prompt = llm.prompt_text(1)
    assert "PREVIOUS ATTEMPT FAILED:" in retry_prompt
    assert "Item diamond not found in market" in retry_prompt


# ============================================================================
# TERMINATION AND SAFETY
# ============================================================================

def test_repeated_failures_stop_at_max_iterations(orchestrator, llm, config):
    config.workflow.max_iterations = 3
    llm.default = decision_response("dance")
    outcome = orchestrator.run_scope(chat_scope())

    assert outcome.actions == ["dance", "dance", "dance"]
    assert outcome.completion_reason == "goal_not_met"
    assert outcome.iterations == 3
    assert outcome.state.metadata["completion_reason"] == "goal_not_met"
    assert outcome.state.metadata["total_iterations"] == 3


def test_unparseable_completion_falls_back_to_ignore(orchestrator, llm):
    llm.responses = [CompletionResponse(content="I would rather not say.")]
    outcome = orchestrator.run_scope(chat_scope())
    assert outcome.success
    assert outcome.actions == ["ignore"]
    assert outcome.state.reasoning.confidence == 0.3


def test_unknown_actor_completes_with_error(orchestrator, llm):
    outcome = orchestrator.run_scope(chat_scope(actor_id="ghost"))
    assert not outcome.success
    assert outcome.errors == ["Agent not found: ghost"]
    assert outcome.actions == []
    assert outcome.state.step == "complete"
    assert llm.calls == []


def test_completion_failure_is_recorded(orchestrator, llm):
    outcome = orchestrator.run_scope(chat_scope())
    assert not outcome.success
    assert outcome.state.errors[0].step == "reason"
    assert "No scripted completion left" in outcome.errors[0]
    assert outcome.state.completed_at


def test_safety_step_limit(orchestrator, llm, config):
    config.workflow.safety_max_steps = 2
    llm.default = decision_response("ignore")
    outcome = orchestrator.run_scope(chat_scope())
    assert outcome.errors == ["Safety stop: exceeded 2 workflow steps"]
    assert outcome.actions == []


def test_heat_ceiling_stops_even_when_goal_is_met(orchestrator, llm, store):
    store.set_heat("agent-1", 78)
    llm.responses = [decision_response("reply", {"content": "Fine."})]
    outcome = orchestrator.run_scope(chat_scope())
    assert outcome.completion_reason == "goal_not_met"
    assert store.get_heat("agent-1") == 83


def test_heat_never_exceeds_one_hundred(orchestrator, llm, store):
    store.set_heat("agent-1", 98)
    llm.responses = [decision_response("reply", {"content": "Fine."})]
    orchestrator.run_scope(chat_scope())
    assert store.get_heat("agent-1") == 100


def test_every_iteration_records_one_attempt(orchestrator, llm, config):
    config.workflow.max_iterations = 4
    llm.responses = [
        decision_response("buy_item", {"itemName": "diamond", "quantity": 1}),
        decision_response("reply", {"content": "ok"}, confidence=0.2),
    ]
    outcome = orchestrator.run_scope(chat_scope())
    assert len(outcome.actions) == len(outcome.state.loop.history)
    assert outcome.actions == ["buy_item", "reply"]


def test_identical_tool_calls_dispatch_once(orchestrator, llm):
    llm.responses = [
        tool_call_response(
            ToolCall(id="c1", name="get_user_profile", arguments={"userId": "user-9"}),
            ToolCall(id="c2", name="get_user_profile", arguments={"userId": "user-9"}),
        ),
        decision_response("ignore"),
    ]
    state = orchestrator.run_scope(chat_scope()).state
    assert state.tool_cache.dispatch_count == 1
    assert len(state.reasoning.tool_results) == 2


def test_schedule_trigger_runs_without_subject(orchestrator, llm, store):
    llm.responses = [decision_response("do_work", {"jobType": "mining"})]
    outcome = orchestrator.run_scope(Scope(actor_id="agent-2", trigger=Trigger.schedule_trigger("agent_cycle")))
    assert outcome.actions == ["do_work"]
    assert "TRIGGER: schedule:agent_cycle" in llm.prompt_text(0)


def test_outcome_to_dict_omits_state():
    outcome = WorkflowOutcome.failure("boom", duration_ms=5)
    assert outcome.to_dict() == {
        "success": False, "actions": [], "duration_ms": 5, "errors": ["boom"],
        "completion_reason": None, "iterations": 0,
    }


# ============================================================================
# PER-ACTOR SERIALIZATION
# ============================================================================

def test_actor_locks_are_per_actor():
    locks = ActorLockRegistry()
    assert locks.get("agent-1") is locks.get("agent-1")
    assert locks.get("agent-1") is not locks.get("agent-2")
    assert len(locks) == 2


def test_lock_entries_are_dropped_after_runs(store, registry, llm, config):
    locks = ActorLockRegistry()
    llm.default = decision_response("ignore")
    orchestrator = WorkflowOrchestrator(store, registry, llm, config, locks=locks)
    try:
        orchestrator.run_scope(chat_scope())
        orchestrator.run_scope(chat_scope(actor_id="agent-2", conversation_id=None))
    finally:
        orchestrator.shutdown()
    assert len(locks) == 0


def test_waiting_run_keeps_the_lock_entry():
    locks = ActorLockRegistry()
    order = []

    def second():
        with locks.hold("agent-1"):
            order.append("second")

    worker = threading.Thread(target=second)
    with locks.hold("agent-1"):
        worker.start()
        while locks._users.get("agent-1", 0) < 2:
            time.sleep(0.01)
        order.append("first")
    worker.join(timeout=5)

    assert order == ["first", "second"]
    assert len(locks) == 0


def test_runs_for_one_actor_hold_the_lock(store, registry, llm, config):
    locks = ActorLockRegistry()
    seen = []

    class PeekingClient(type(llm)):
        def complete(self, *args, **kwargs):
            seen.append(locks.get("agent-1").locked())
            return super().complete(*args, **kwargs)

    client = PeekingClient(default=decision_response("ignore"))
    orchestrator = WorkflowOrchestrator(store, registry, client, config, locks=locks)
    orchestrator.run_scope(chat_scope())
    assert seen == [True]
    assert not locks.get("agent-1").locked()

    config.workflow.serialize_per_actor = False
    orchestrator.run_scope(chat_scope())
    assert seen == [True, False]


def test_concurrent_runs_for_one_actor_do_not_lose_heat(store, registry, config):
    from conftest import FakeCompletionClient

    client = FakeCompletionClient(default=decision_response("reply", {"content": "hi"}))
    orchestrator = WorkflowOrchestrator(store, registry, client, config)
    threads = [threading.Thread(target=orchestrator.run_scope, args=(chat_scope(),)) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert store.get_heat("agent-1") == 30


def test_heat_write_failure_does_not_abort_the_run(llm, config):
    from conftest import seed_tables

    from npc_loop.errors import PersistenceWriteFailure
    from npc_loop.store import InMemoryStore
    from npc_loop.tools import create_default_registry

    class HeatWriteFailingStore(InMemoryStore):
        def set_heat(self, actor_id, heat):
            raise PersistenceWriteFailure("users update failed: db down")

    store = HeatWriteFailingStore(seed_tables())
    failing_registry = create_default_registry(store)
    orchestrator = WorkflowOrchestrator(store, failing_registry, llm, config)
    llm.responses = [decision_response("decline", {"message": "Not this time.", "level": 1})]
    try:
        outcome = orchestrator.run_scope(chat_scope())
    finally:
        orchestrator.shutdown()
        failing_registry.shutdown()

    assert outcome.success
    assert outcome.errors == []
    assert outcome.actions == ["decline"]
    assert outcome.completion_reason == "goal_achieved"
    assert outcome.iterations == 1
    assert store.count("messages", {"content": "Not this time."}) == 1
    assert store.count("agent_actions", {"action_type": "DECLINE_LEVEL_1"}) == 1


def test_slow_identity_observation_does_not_hold_up_the_run(store, registry, config):
    from conftest import FakeCompletionClient

    config.reasoning.record_identity_observations = True
    observation_max_tokens = config.reasoning.observation_max_tokens
    release = threading.Event()

    class SlowObserverClient(FakeCompletionClient):
        def complete(self, messages, tools=None, temperature=0.5, max_tokens=1024):
            if max_tokens == observation_max_tokens:
                release.wait(timeout=5)
                return CompletionResponse(
                    content='{"order_chaos": 0.1, "self_community": 0.6, "logic_emotion": -0.3, '
                            '"power_harmony": 0.9, "tradition_innovation": 0.0}',
                )
            return super().complete(messages, tools, temperature, max_tokens)

    client = SlowObserverClient([decision_response("reply", {"content": "ok"})])
    orchestrator = WorkflowOrchestrator(store, registry, client, config)
    try:
        outcome = orchestrator.run_scope(chat_scope())
        assert outcome.actions == ["reply"]
        assert outcome.completion_reason == "goal_achieved"
        assert store.count("identity_observations") == 0
    finally:
        release.set()
        orchestrator.shutdown(wait=True)

    row = store.select_one("identity_observations", {"observed_id": "user-9"})
    assert row["observer_id"] == "agent-1"


def test_orchestrator_keeps_an_executor_it_was_given(store, registry, llm, config):
    from concurrent.futures import ThreadPoolExecutor

    pool = ThreadPoolExecutor(max_workers=1)
    orchestrator = WorkflowOrchestrator(store, registry, llm, config, background=pool)
    orchestrator.shutdown()
    assert pool.submit(lambda: 42).result() == 42
    pool.shutdown()


# ============================================================================
# HIVELOOP
# ============================================================================

class FakeTask:
    def __init__(self):
        self.events = []
        self.llm_calls = []

    def event(self, name, payload=None):
        self.events.append((name, payload))

    def llm_call(self, name, **kwargs):
        self.llm_calls.append((name, kwargs))

    def plan(self, goal, steps):
        self.events.append(("plan", {"goal": goal, "steps": steps}))

    def plan_step(self, step_index, action, summary):
        self.events.append(("plan_step", {"index": step_index, "action": action}))


class FakeTaskContext:
    def __init__(self, task):
        self.task = task
        self.exited = False

    def __enter__(self):
        return self.task

    def __exit__(self, *exc):
        self.exited = True
        return False


class FakeAgent:
    def __init__(self):
        self.task_ctx = None
        self.task_args = None

    def task(self, task_id, **kwargs):
        self.task_args = (task_id, kwargs)
        self.task_ctx = FakeTaskContext(FakeTask())
        return self.task_ctx


def test_hiveloop_task_receives_workflow_events(store, registry, llm, config):
    agent = FakeAgent()
    llm.responses = [decision_response("ignore")]
    orchestrator = WorkflowOrchestrator(store, registry, llm, config, hiveloop_agent=agent)
    orchestrator.run_scope(chat_scope())

    task_id, kwargs = agent.task_args
    assert task_id.startswith("agent-1-")
    assert kwargs == {"project": "npc-loop", "type": "event"}
    names = [name for name, _ in agent.task_ctx.task.events]
    assert names[0] == "workflow_start"
    assert names[-1] == "workflow_end"
    assert names.count("node_start") == names.count("node_end") == 4
    assert [name for name, _ in agent.task_ctx.task.llm_calls] == ["reason_gather"]
    assert agent.task_ctx.exited
    assert get_current_task() is None
    assert get_hiveloop_agent() is None
