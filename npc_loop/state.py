"""
WORKFLOW_STATE
==============

Value types threaded through one decision-loop run.

A run starts from a ``Scope`` (who acts, what triggered it, what it is
about) and carries a single ``WorkflowState`` aggregate through the nodes.
Nodes never mutate the aggregate; each returns a ``NodeResult`` holding a
partial update that the orchestrator merges with ``WorkflowState.apply``.

Architecture
------------
::

    Scope (frozen)
    ├── actor_id / actor_type
    ├── Trigger (event | schedule, is_response)
    └── Subject  ── PostSubject | CommentSubject | MessageSubject
                    | BattleSubject | ProposalSubject

    WorkflowState
    ├── step            observe → reason → act → loop_check → complete
    ├── actor           ActorResources (heat/rage clamped to [0, 100])
    ├── observation / reasoning / action / result
    ├── loop            LoopState (iteration, history of frozen snapshots)
    ├── executed_actions, errors
    └── metadata        scratch, includes the per-run ToolCache

Usage::

    scope = Scope(actor_id="agent-1", trigger=Trigger.event_trigger("chat"),
                  subject=MessageSubject(id="user-9", content="hi", sender_id="user-9"))
    state = create_initial_state(scope, max_iterations=10)
"""

import copy
import json
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from typing import Any, ClassVar, Dict, List, Literal, Optional, Type

from .tools.base import ToolCache


# ============================================================================
# CONSTANTS
# ============================================================================

IDENTITY_AXES = (
    "order_chaos",
    "self_community",
    "logic_emotion",
    "power_harmony",
    "tradition_innovation",
)

STEP_OBSERVE = "observe"
STEP_REASON = "reason"
STEP_ACT = "act"
STEP_LOOP_CHECK = "loop_check"
STEP_COMPLETE = "complete"

WorkflowStep = Literal["observe", "reason", "act", "loop_check", "complete"]

REASON_GOAL_ACHIEVED = "goal_achieved"
REASON_GOAL_NOT_MET = "goal_not_met"
REASON_NEW_INFO = "new_info"
REASON_TOOL_FAILURE = "tool_failure"
REASON_LOW_CONFIDENCE = "low_confidence"
REASON_USER_PERSISTENCE = "user_persistence"

EVENT_TYPES = ("chat", "comment", "mention", "post", "law_proposal", "battle", "relationship_change")
SCHEDULE_TYPES = ("agent_cycle", "relationship_sync", "memory_cleanup", "token_reset")

UNKNOWN_TARGET = "unknown"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def clamp(value: Any, low: float, high: float, default: float = 0.0) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if number != number:  # NaN
        return default
    return max(low, min(high, number))


def clamp_meter(value: Any, default: float = 0.0) -> float:
    """Clamp a 0-100 resource meter (heat, rage, morale...)."""
    return clamp(value, 0.0, 100.0, default)


# ============================================================================
# ACTOR RESOURCES
# ============================================================================

@dataclass
class IdentityVector:
    """Five personality axes, each in [-1, 1]."""
    order_chaos: float = 0.0
    self_community: float = 0.0
    logic_emotion: float = 0.0
    power_harmony: float = 0.0
    tradition_innovation: float = 0.0

    def __post_init__(self):
        for axis in IDENTITY_AXES:
            setattr(self, axis, clamp(getattr(self, axis), -1.0, 1.0))

    def as_list(self) -> List[float]:
        return [getattr(self, axis) for axis in IDENTITY_AXES]

    def is_zero(self) -> bool:
        return all(v == 0 for v in self.as_list())

    def to_dict(self) -> Dict[str, float]:
        return {axis: getattr(self, axis) for axis in IDENTITY_AXES}

    @classmethod
    def from_dict(cls, data: Any) -> "IdentityVector":
        """Build from a mapping or its JSON text; missing axes default to 0."""
        if isinstance(data, IdentityVector):
            return data
        if isinstance(data, str):
            try:
                data = json.loads(data)
            except ValueError:
                data = {}
        if not isinstance(data, dict):
            data = {}
        return cls(**{axis: data.get(axis, 0.0) for axis in IDENTITY_AXES})


@dataclass
class ActorResources:
    """Snapshot of the actor's resource vector as read by Observe."""
    actor_id: str
    identity: IdentityVector = field(default_factory=IdentityVector)
    morale: float = 50.0
    energy: float = 50.0
    coherence: float = 50.0
    heat: float = 0.0
    rage: float = 0.0
    mental_power: float = 50.0
    freewill: float = 50.0
    community_id: Optional[str] = None

    def __post_init__(self):
        self.morale = clamp_meter(self.morale, 50.0)
        self.energy = clamp_meter(self.energy, 50.0)
        self.coherence = clamp_meter(self.coherence, 50.0)
        self.heat = clamp_meter(self.heat)
        self.rage = clamp_meter(self.rage)

    def with_heat(self, heat: float) -> "ActorResources":
        return replace(self, heat=heat)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "actor_id": self.actor_id,
            "identity": self.identity.to_dict(),
            "morale": self.morale,
            "energy": self.energy,
            "coherence": self.coherence,
            "heat": self.heat,
            "rage": self.rage,
            "mental_power": self.mental_power,
            "freewill": self.freewill,
            "community_id": self.community_id,
        }

    @classmethod
    def from_record(cls, actor_id: str, record: Dict[str, Any]) -> "ActorResources":
        """Build from a store row, filling anything the row lacks."""
        def _value(key, default):
            value = record.get(key)
            return default if value is None else value

        return cls(
            actor_id=actor_id,
            identity=IdentityVector.from_dict(record.get("identity_json")),
            morale=_value("morale", 50),
            energy=_value("energy", 50),
            coherence=_value("coherence", 50),
            heat=_value("heat", 0),
            rage=_value("rage", 0),
            mental_power=record.get("mental_power") or record.get("power_mental") or 50,
            freewill=_value("freewill", 50),
            community_id=record.get("main_community_id"),
        )


# ============================================================================
# TRIGGER / SUBJECT / SCOPE
# ============================================================================

@dataclass(frozen=True)
class Trigger:
    """What started this run."""
    type: Literal["event", "schedule"]
    event: Optional[str] = None
    schedule: Optional[str] = None
    timestamp: str = field(default_factory=_now_iso)
    is_response: bool = False

    @property
    def name(self) -> str:
        return self.event or self.schedule or ""

    @property
    def trigger_id(self) -> str:
        return f"{self.type}:{self.name}"

    @classmethod
    def event_trigger(cls, event: str, is_response: bool = False) -> "Trigger":
        return cls(type="event", event=event, is_response=bool(is_response))

    @classmethod
    def schedule_trigger(cls, schedule: str) -> "Trigger":
        return cls(type="schedule", schedule=schedule)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "event": self.event,
            "schedule": self.schedule,
            "timestamp": self.timestamp,
            "is_response": self.is_response,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Trigger":
        return cls(
            type=data.get("type", "event"),
            event=data.get("event"),
            schedule=data.get("schedule"),
            timestamp=data.get("timestamp") or _now_iso(),
            is_response=bool(data.get("is_response", data.get("isResponse", False))),
        )


@dataclass
class Subject:
    """Base of the subject tagged union. ``kind`` names the variant."""
    id: str
    content: Optional[str] = None

    kind: ClassVar[str] = "unknown"

    def interacting_user_id(self) -> Optional[str]:
        """The user whose input provoked this run, if the variant has one."""
        return None

    def to_dict(self) -> Dict[str, Any]:
        data = {f.name: getattr(self, f.name) for f in fields(self) if f.name != "id"}
        return {
            "type": self.kind,
            "id": self.id,
            "data": {k: v for k, v in data.items() if v is not None},
        }


@dataclass
class PostSubject(Subject):
    """A post, including post and comment mentions."""
    author_id: Optional[str] = None
    author_username: Optional[str] = None
    mentioner_id: Optional[str] = None
    mentioner_username: Optional[str] = None
    commenter_id: Optional[str] = None
    feed_type: Optional[str] = None
    community_id: Optional[str] = None
    is_comment_mention: Optional[bool] = None
    comment_id: Optional[str] = None

    kind: ClassVar[str] = "post"

    def interacting_user_id(self) -> Optional[str]:
        return self.mentioner_id or self.commenter_id or self.author_id


@dataclass
class CommentSubject(Subject):
    post_id: Optional[str] = None
    commenter_id: Optional[str] = None
    commenter_username: Optional[str] = None
    author_id: Optional[str] = None

    kind: ClassVar[str] = "comment"

    def interacting_user_id(self) -> Optional[str]:
        return self.commenter_id or self.author_id


@dataclass
class MessageSubject(Subject):
    """A direct or group chat message. ``id`` is the sender's user id."""
    sender_id: Optional[str] = None
    sender_username: Optional[str] = None
    message_id: Optional[str] = None
    conversation_type: str = "direct"
    group_conversation_id: Optional[str] = None
    feed_type: Optional[str] = None

    kind: ClassVar[str] = "message"

    @property
    def is_group(self) -> bool:
        return self.conversation_type == "group" and bool(self.group_conversation_id)

    def interacting_user_id(self) -> Optional[str]:
        return self.sender_id or self.id


@dataclass
class BattleSubject(Subject):
    attacker_community_id: Optional[str] = None
    defender_community_id: Optional[str] = None
    battle_type: Optional[str] = None

    kind: ClassVar[str] = "battle"


@dataclass
class ProposalSubject(Subject):
    community_id: Optional[str] = None
    proposer_id: Optional[str] = None

    kind: ClassVar[str] = "proposal"

    def interacting_user_id(self) -> Optional[str]:
        return self.proposer_id


SUBJECT_TYPES: Dict[str, Type[Subject]] = {
    "post": PostSubject,
    "comment": CommentSubject,
    "message": MessageSubject,
    "user": MessageSubject,
    "battle": BattleSubject,
    "proposal": ProposalSubject,
}

# camelCase keys seen in inbound payloads
_SUBJECT_KEY_ALIASES = {
    "commenterId": "commenter_id",
    "authorId": "author_id",
    "mentionerId": "mentioner_id",
    "senderId": "sender_id",
    "communityId": "community_id",
    "postId": "post_id",
    "commentId": "comment_id",
}


def subject_from_dict(data: Optional[Dict[str, Any]]) -> Optional[Subject]:
    """Build a Subject variant from ``{"type", "id", "data"}``.

    Unknown keys in ``data`` are dropped. Raises ``ValueError`` for an
    unknown subject type.
    """
    if not data:
        return None
    subject_type = data.get("type", "")
    cls = SUBJECT_TYPES.get(subject_type)
    if cls is None:
        raise ValueError(f"Unknown subject type: {subject_type}")

    payload = dict(data.get("data") or {})
    for alias, name in _SUBJECT_KEY_ALIASES.items():
        if alias in payload and name not in payload:
            payload[name] = payload.pop(alias)

    allowed = {f.name for f in fields(cls)} - {"id"}
    kwargs = {k: v for k, v in payload.items() if k in allowed}
    return cls(id=str(data.get("id", "")), **kwargs)


@dataclass(frozen=True)
class Scope:
    """Immutable description of one run: actor, trigger and subject."""
    actor_id: str
    trigger: Trigger
    subject: Optional[Subject] = None
    conversation_id: Optional[str] = None
    actor_type: str = "agent"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "actor": {"id": self.actor_id, "type": self.actor_type},
            "trigger": self.trigger.to_dict(),
            "subject": self.subject.to_dict() if self.subject else None,
            "conversation_id": self.conversation_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Scope":
        actor = data.get("actor") or {}
        return cls(
            actor_id=actor.get("id") or data.get("actor_id", ""),
            actor_type=actor.get("type", "agent"),
            trigger=Trigger.from_dict(data.get("trigger") or {}),
            subject=subject_from_dict(data.get("subject")),
            conversation_id=data.get("conversation_id") or data.get("conversationId"),
        )


# ============================================================================
# NODE OUTPUTS
# ============================================================================

@dataclass
class CommunityContext:
    community_id: Optional[str] = None
    community_name: Optional[str] = None
    is_member: bool = False
    mentioner_is_member: bool = False
    feed_type: str = "world"


@dataclass
class Observation:
    context_summary: str
    timestamp: str = field(default_factory=_now_iso)
    feed_type: str = "world"
    community: Optional[CommunityContext] = None


@dataclass
class ToolCallRecord:
    id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Reasoning:
    observation: str = "No observation"
    thinking_process: str = ""
    tool_calls: List[ToolCallRecord] = field(default_factory=list)
    tool_results: List[Dict[str, Any]] = field(default_factory=list)
    decision: str = "ignore"
    confidence: float = 0.5
    alternative_options: List[Any] = field(default_factory=list)
    factors: Dict[str, Any] = field(default_factory=dict)
    explanation: str = ""


@dataclass
class PlanStep:
    step: int
    tool: str
    args: Dict[str, Any] = field(default_factory=dict)
    description: str = ""


@dataclass
class Action:
    """The single tool call Act will perform this iteration.

    ``plan_position`` is the 1-based index into ``plan`` that this action
    executes; a fresh decision starts at 1.
    """
    type: str
    target: str = UNKNOWN_TARGET
    content: Optional[str] = None
    args: Dict[str, Any] = field(default_factory=dict)
    plan: List[PlanStep] = field(default_factory=list)
    confidence: float = 0.5
    goal_achieved: bool = False
    plan_position: int = 1
    action_id: Optional[str] = None
    remaining_plan_steps: int = 0

    @property
    def metadata(self) -> Dict[str, Any]:
        return {
            "args": self.args,
            "plan": [vars(step) for step in self.plan],
            "confidence": self.confidence,
            "plan_position": self.plan_position,
            "action_id": self.action_id,
            "remaining_plan_steps": self.remaining_plan_steps,
        }


@dataclass
class ActionResult:
    success: bool
    action_id: Optional[str] = None
    error: Optional[str] = None
    heat_cost: int = 0
    coherence_impact: float = 0.0
    execution_time_ms: int = 0
    data: Any = None


@dataclass(frozen=True)
class LoopHistoryEntry:
    """Snapshot of one completed iteration. Never rewritten."""
    iteration: int
    observation: Optional[Observation]
    reasoning: Optional[Reasoning]
    action: Optional[Action]
    result: Optional[ActionResult]
    timestamp: str

    @classmethod
    def snapshot(cls, state: "WorkflowState") -> "LoopHistoryEntry":
        return cls(
            iteration=state.loop.iteration,
            observation=copy.deepcopy(state.observation),
            reasoning=copy.deepcopy(state.reasoning),
            action=copy.deepcopy(state.action),
            result=copy.deepcopy(state.result),
            timestamp=_now_iso(),
        )


@dataclass
class LoopState:
    iteration: int = 1
    max_iterations: int = 10
    history: List[LoopHistoryEntry] = field(default_factory=list)
    should_continue: bool = True
    continue_reason: Optional[str] = None

    def advance(self, entry: LoopHistoryEntry, reason: str, should_continue: bool) -> "LoopState":
        """Return a new LoopState with ``entry`` appended."""
        return LoopState(
            iteration=self.iteration + 1 if should_continue else self.iteration,
            max_iterations=self.max_iterations,
            history=[*self.history, entry],
            should_continue=should_continue,
            continue_reason=reason,
        )

    @property
    def remaining(self) -> bool:
        return self.iteration < self.max_iterations


@dataclass
class WorkflowError:
    step: str
    error: str
    timestamp: str = field(default_factory=_now_iso)


@dataclass
class NodeResult:
    """Uniform return value of every node: a partial update plus an optional error."""
    updates: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    @classmethod
    def ok(cls, **updates) -> "NodeResult":
        return cls(updates=updates)

    @classmethod
    def fail(cls, error: str, **updates) -> "NodeResult":
        updates.setdefault("step", STEP_COMPLETE)
        return cls(updates=updates, error=error)

    @property
    def failed(self) -> bool:
        return self.error is not None


# ============================================================================
# WORKFLOW STATE
# ============================================================================

@dataclass
class WorkflowState:
    scope: Scope
    step: str = STEP_OBSERVE
    actor: Optional[ActorResources] = None
    observation: Optional[Observation] = None
    reasoning: Optional[Reasoning] = None
    action: Optional[Action] = None
    result: Optional[ActionResult] = None
    loop: LoopState = field(default_factory=LoopState)
    executed_actions: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    errors: List[WorkflowError] = field(default_factory=list)
    started_at: str = field(default_factory=_now_iso)
    completed_at: Optional[str] = None

    _MERGEABLE: ClassVar[frozenset] = frozenset({
        "step", "actor", "observation", "reasoning", "action", "result",
        "loop", "executed_actions", "metadata", "completed_at",
    })

    @property
    def tool_cache(self) -> ToolCache:
        cache = self.metadata.get("tool_cache")
        if cache is None:
            cache = ToolCache()
            self.metadata["tool_cache"] = cache
        return cache

    @property
    def is_complete(self) -> bool:
        return self.step == STEP_COMPLETE

    def apply(self, result: NodeResult, step_name: str) -> "WorkflowState":
        """Merge a node's partial update into this state."""
        unknown = set(result.updates) - self._MERGEABLE
        if unknown:
            raise KeyError(f"Node {step_name} returned unknown fields: {sorted(unknown)}")
        for key, value in result.updates.items():
            setattr(self, key, value)
        if result.error:
            self.errors.append(WorkflowError(step=step_name, error=result.error))
        return self

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly summary (the tool cache is reported by size only)."""
        def _plain(value):
            if value is None:
                return None
            return json.loads(json.dumps(_dataclass_to_dict(value), default=str))

        metadata = {k: v for k, v in self.metadata.items() if k != "tool_cache"}
        metadata["tool_cache_entries"] = len(self.tool_cache)
        return {
            "scope": self.scope.to_dict(),
            "step": self.step,
            "actor": self.actor.to_dict() if self.actor else None,
            "observation": _plain(self.observation),
            "reasoning": _plain(self.reasoning),
            "action": _plain(self.action),
            "result": _plain(self.result),
            "loop": {
                "iteration": self.loop.iteration,
                "max_iterations": self.loop.max_iterations,
                "continue_reason": self.loop.continue_reason,
                "should_continue": self.loop.should_continue,
                "history": [_plain(entry) for entry in self.loop.history],
            },
            "executed_actions": list(self.executed_actions),
            "metadata": json.loads(json.dumps(metadata, default=str)),
            "errors": [vars(e) for e in self.errors],
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }


def _dataclass_to_dict(value: Any) -> Any:
    if hasattr(value, "__dataclass_fields__"):
        return {f.name: _dataclass_to_dict(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, list):
        return [_dataclass_to_dict(v) for v in value]
    if isinstance(value, dict):
        return {k: _dataclass_to_dict(v) for k, v in value.items()}
    return value


def create_initial_state(scope: Scope, max_iterations: int = 10) -> WorkflowState:
    """Fresh state for one trigger, with its own private tool cache."""
    return WorkflowState(
        scope=scope,
        loop=LoopState(iteration=1, max_iterations=max_iterations),
        metadata={"tool_cache": ToolCache()},
    )
