"""
WORKFLOW_ORCHESTRATOR
=====================

Drives one decision-loop run from its first Observe to Complete.

Execution Cycle
---------------
::

    while state.step != "complete":
        node = NODES[state.step]          observe | reason | act | loop_check
        result = node(state, deps)        partial update + optional error
        state.apply(result)

        exception escaping a node   → error recorded, step = complete
        iteration > max + 1         → emergency stop
        steps >= safety_max_steps   → safety stop

Runs for the same actor are serialized by ``ActorLockRegistry`` when
``workflow.serialize_per_actor`` is on, so two runs never interleave the
heat read-modify-write in Act. With it off the runs race and the last
heat write wins.

Best-effort side effects (identity observation, user coherence) go to a
small background pool so Reason never waits on them. The orchestrator
creates that pool unless one is passed in; ``shutdown()`` drains it.

Usage::

    orchestrator = WorkflowOrchestrator(store, registry, llm_client, config)
    outcome = orchestrator.run_scope(scope)
    print(outcome.completion_reason, outcome.actions)
    orchestrator.shutdown()
"""

import logging
import threading
import time
import uuid
from concurrent.futures import Executor, ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional

from .config import GlobalConfig
from .nodes import NODES, NodeDeps
from .observability import (
    clear_current_task,
    clear_hiveloop_agent,
    emit_event,
    set_current_task,
    set_hiveloop_agent,
    set_log_prompts,
)
from .state import (
    STEP_COMPLETE,
    Scope,
    WorkflowError,
    WorkflowState,
    create_initial_state,
)
from .tools import ToolRegistry

logger = logging.getLogger(__name__)


# ============================================================================
# RESULT
# ============================================================================

@dataclass
class WorkflowOutcome:
    """What a trigger handler reports back once a run has completed."""
    success: bool
    actions: List[str] = field(default_factory=list)
    duration_ms: int = 0
    errors: List[str] = field(default_factory=list)
    completion_reason: Optional[str] = None
    iterations: int = 0
    state: Optional[WorkflowState] = None

    @classmethod
    def from_state(cls, state: WorkflowState, duration_ms: int) -> "WorkflowOutcome":
        return cls(
            success=not state.errors,
            actions=list(state.executed_actions),
            duration_ms=duration_ms,
            errors=[e.error for e in state.errors],
            completion_reason=state.loop.continue_reason,
            iterations=len(state.loop.history),
            state=state,
        )

    @classmethod
    def failure(cls, error: str, duration_ms: int = 0) -> "WorkflowOutcome":
        return cls(success=False, duration_ms=duration_ms, errors=[error])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "actions": self.actions,
            "duration_ms": self.duration_ms,
            "errors": self.errors,
            "completion_reason": self.completion_reason,
            "iterations": self.iterations,
        }


# ============================================================================
# PER-ACTOR SERIALIZATION
# ============================================================================

class ActorLockRegistry:
    """One lock per actor id, created on first use.

    ``hold`` counts the runs holding or waiting on each lock and drops the
    entry when the last one leaves.
    """

    def __init__(self):
        self._locks: Dict[str, threading.Lock] = {}
        self._users: Dict[str, int] = {}
        self._lock = threading.Lock()

    def get(self, actor_id: str) -> threading.Lock:
        with self._lock:
            lock = self._locks.get(actor_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[actor_id] = lock
            return lock

    @contextmanager
    def hold(self, actor_id: str) -> Iterator[None]:
        with self._lock:
            lock = self._locks.setdefault(actor_id, threading.Lock())
            self._users[actor_id] = self._users.get(actor_id, 0) + 1
        try:
            if not lock.acquire(blocking=False):
                logger.debug("[%s] Waiting for the actor's running workflow to finish", actor_id)
                lock.acquire()
            try:
                yield
            finally:
                lock.release()
        finally:
            with self._lock:
                remaining = self._users[actor_id] - 1
                if remaining:
                    self._users[actor_id] = remaining
                else:
                    del self._users[actor_id]
                    self._locks.pop(actor_id, None)

    def __len__(self) -> int:
        return len(self._locks)


# ============================================================================
# ORCHESTRATOR
# ============================================================================

class WorkflowOrchestrator:
    """Coordinates the nodes of one run and merges their partial updates."""

    def __init__(
        self,
        store: Any,
        registry: ToolRegistry,
        llm_client: Any,
        config: Optional[GlobalConfig] = None,
        background: Optional[Executor] = None,
        locks: Optional[ActorLockRegistry] = None,
        hiveloop_agent: Any = None,
    ):
        self.config = config or GlobalConfig.create_default()
        self._owns_background = background is None
        if background is None:
            background = ThreadPoolExecutor(
                max_workers=self.config.workflow.side_effect_workers,
                thread_name_prefix="npc-side-effect",
            )
        self.background = background
        self.deps = NodeDeps(
            store=store,
            registry=registry,
            llm_client=llm_client,
            config=self.config,
            background=background,
        )
        self.locks = locks or ActorLockRegistry()
        self.hiveloop_agent = hiveloop_agent

    def create_state(self, scope: Scope) -> WorkflowState:
        return create_initial_state(scope, max_iterations=self.config.workflow.max_iterations)

    def run_scope(self, scope: Scope) -> WorkflowOutcome:
        """Create a fresh state for ``scope`` and run it to completion."""
        started = time.perf_counter()
        state = self.run(self.create_state(scope))
        return WorkflowOutcome.from_state(state, round((time.perf_counter() - started) * 1000))

    def run(self, state: WorkflowState) -> WorkflowState:
        """Run ``state`` until it reaches complete. Never raises for node failures."""
        actor_id = state.scope.actor_id
        if self.config.workflow.serialize_per_actor:
            with self.locks.hold(actor_id):
                return self._run_traced(state)
        return self._run_traced(state)

    def shutdown(self, wait: bool = True) -> None:
        """Stop the side-effect pool this orchestrator created, letting queued work finish when ``wait``."""
        if self._owns_background:
            self.background.shutdown(wait=wait)

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _run_traced(self, state: WorkflowState) -> WorkflowState:
        scope = state.scope
        _hiveloop_ctx = None
        if self.hiveloop_agent is not None:
            _task_id = f"{scope.actor_id}-{uuid.uuid4().hex[:8]}"
            try:
                _hiveloop_ctx = self.hiveloop_agent.task(
                    _task_id,
                    project="npc-loop",
                    type=scope.trigger.type,
                )
                set_current_task(_hiveloop_ctx.__enter__())
                set_hiveloop_agent(self.hiveloop_agent)
                set_log_prompts(self.config.hiveloop_log_prompts)
            except Exception:
                logger.debug("HiveLoop task init failed", exc_info=True)
                _hiveloop_ctx = None

        try:
            return self._run_steps(state)
        finally:
            if _hiveloop_ctx is not None:
                clear_current_task()
                clear_hiveloop_agent()
                try:
                    _hiveloop_ctx.__exit__(None, None, None)
                except Exception:
                    logger.debug("HiveLoop task exit failed", exc_info=True)

    def _run_steps(self, state: WorkflowState) -> WorkflowState:
        scope = state.scope
        started = time.perf_counter()
        safety_max_steps = self.config.workflow.safety_max_steps
        steps = 0

        logger.info(
            "[%s] Workflow start: trigger=%s subject=%s",
            scope.actor_id, scope.trigger.trigger_id,
            f"{scope.subject.kind}:{scope.subject.id}" if scope.subject else "none",
        )
        emit_event("workflow_start", {"actor": scope.actor_id, "trigger": scope.trigger.trigger_id})

        while not state.is_complete and steps < safety_max_steps:
            steps += 1
            logger.debug(
                "[%s] Step %d: %s (iteration %d/%d)",
                scope.actor_id, steps, state.step, state.loop.iteration, state.loop.max_iterations,
            )
            self.execute_step(state)

            if not state.is_complete and state.loop.iteration > state.loop.max_iterations + 1:
                logger.error("[%s] Emergency stop: exceeded max iterations", scope.actor_id)
                self._complete(state, "workflow", "Exceeded maximum iterations")

        if not state.is_complete:
            logger.error("[%s] Safety stop: hit %d workflow steps", scope.actor_id, safety_max_steps)
            self._complete(state, "workflow", f"Safety stop: exceeded {safety_max_steps} workflow steps")

        if state.completed_at is None:
            state.completed_at = datetime.now(timezone.utc).isoformat()

        duration_ms = round((time.perf_counter() - started) * 1000)
        logger.info(
            "[%s] Workflow complete: reason=%s iterations=%d actions=%s errors=%d duration=%dms",
            scope.actor_id, state.loop.continue_reason, len(state.loop.history),
            ", ".join(state.executed_actions) or "none", len(state.errors), duration_ms,
        )
        for error in state.errors:
            logger.warning("[%s] Workflow error in %s: %s", scope.actor_id, error.step, error.error)

        emit_event("workflow_end", {
            "success": not state.errors,
            "duration_ms": duration_ms,
            "iterations": len(state.loop.history),
            "actions": list(state.executed_actions),
            "completion_reason": state.loop.continue_reason,
            "error_count": len(state.errors),
        })
        return state

    def execute_step(self, state: WorkflowState) -> WorkflowState:
        """Run the node for ``state.step`` and merge its update. Node exceptions complete the run."""
        step = state.step
        if state.is_complete:
            return state

        node = NODES.get(step)
        if node is None:
            return self._complete(state, step, f"Unknown step: {step}")

        step_started = time.perf_counter()
        try:
            result = node(state, self.deps)
        except Exception as e:
            logger.error("[%s] Error in step %s: %s", state.scope.actor_id, step, e, exc_info=True)
            return self._complete(state, step, str(e))

        state.apply(result, step)
        if result.failed:
            logger.warning("[%s] Step %s failed: %s", state.scope.actor_id, step, result.error)
        logger.debug(
            "[%s] Step %s completed in %dms",
            state.scope.actor_id, step, round((time.perf_counter() - step_started) * 1000),
        )
        return state

    @staticmethod
    def _complete(state: WorkflowState, step: str, error: str) -> WorkflowState:
        state.errors.append(WorkflowError(step=step, error=error))
        state.step = STEP_COMPLETE
        state.completed_at = datetime.now(timezone.utc).isoformat()
        return state
