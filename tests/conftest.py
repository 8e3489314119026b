"""
Shared fixtures for npc_loop tests.
Every test gets its own seeded in-memory store and a scripted completion client,
so nothing touches the network or the real data directory.
"""
from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

import pytest

from npc_loop.config import GlobalConfig
from npc_loop.errors import CompletionError
from npc_loop.llm_client import CompletionClient, CompletionResponse, ToolCall
from npc_loop.nodes import NodeDeps
from npc_loop.orchestrator import WorkflowOrchestrator
from npc_loop.state import (
    Action,
    ActorResources,
    IdentityVector,
    MessageSubject,
    Observation,
    Reasoning,
    Scope,
    Trigger,
    create_initial_state,
)
from npc_loop.store import InMemoryStore
from npc_loop.tools import create_default_registry


AGENT_IDENTITY = {
    "order_chaos": 0.2,
    "self_community": -0.5,
    "logic_emotion": 0.6,
    "power_harmony": -0.3,
    "tradition_innovation": 0.1,
}
USER_IDENTITY = {
    "order_chaos": -0.4,
    "self_community": 0.7,
    "logic_emotion": -0.2,
    "power_harmony": 0.8,
    "tradition_innovation": 0.0,
}


def seed_tables() -> Dict[str, List[Dict[str, Any]]]:
    return {
        "users": [
            {
                "id": "agent-1", "username": "ember", "is_bot": True, "identity_json": dict(AGENT_IDENTITY),
                "morale": 70, "energy": 60, "coherence": 55, "heat": 10, "rage": 5, "mental_power": 40,
                "freewill": 60, "health": 90, "main_community_id": "comm-1", "daily_action_tokens": 3,
            },
            {
                "id": "agent-2", "username": "flint", "is_bot": True, "identity_json": None,
                "morale": 40, "energy": 30, "heat": 30,
            },
            {
                "id": "user-9", "username": "rook", "is_bot": False, "identity_json": dict(USER_IDENTITY),
                "morale": 55, "heat": 12,
            },
        ],
        "communities": [
            {"id": "comm-1", "name": "Ashen Vale", "ideology_json": dict(AGENT_IDENTITY)},
            {"id": "comm-2", "name": "Iron Reach", "ideology_json": dict(USER_IDENTITY)},
        ],
        "community_members": [
            {"id": "cm-1", "community_id": "comm-1", "user_id": "agent-1"},
            {"id": "cm-2", "community_id": "comm-1", "user_id": "user-9"},
        ],
        "posts": [
            {"id": "post-1", "author_id": "user-9", "content": "Who is with me at the border?",
             "feed_type": "community", "community_id": "comm-1", "created_at": "2026-10-01T10:00:00+00:00"},
            {"id": "post-2", "author_id": "user-9", "content": "Sunrise over the market",
             "feed_type": "world", "created_at": "2026-10-02T10:00:00+00:00"},
        ],
        "conversations": [
            {"id": "conv-1", "user1_id": "agent-1", "user2_id": "user-9"},
        ],
        "messages": [
            {"id": "msg-1", "conversation_id": "conv-1", "sender_id": "user-9", "receiver_id": "agent-1",
             "content": "Join my battle against Iron Reach?", "created_at": "2026-10-03T10:00:00+00:00"},
        ],
        "battles": [
            {"id": "battle-1", "status": "active", "community1_id": "comm-1", "community2_id": "comm-2",
             "created_at": "2026-10-03T09:00:00+00:00"},
        ],
        "market_items": [
            {"id": "item-1", "name": "bread", "price": 10, "available": True, "effects": {"energy": 15}},
        ],
        "user_wallets": [
            {"id": "wallet-1", "user_id": "agent-1", "currency_type": "gold", "gold_coins": 25},
        ],
    }


# ============================================================================
# SCRIPTED COMPLETION CLIENT
# ============================================================================

class FakeCompletionClient(CompletionClient):
    """Returns queued responses in order, then ``default`` (or raises when there is none)."""

    model = "fake-model"

    def __init__(self, responses: Optional[List[CompletionResponse]] = None,
                 default: Optional[CompletionResponse] = None):
        self.responses = list(responses or [])
        self.default = default
        self.calls: List[Dict[str, Any]] = []

    def complete(self, messages, tools=None, temperature=0.5, max_tokens=1024) -> CompletionResponse:
        self.calls.append({
            "messages": messages,
            "tools": tools,
            "temperature": temperature,
            "max_tokens": max_tokens,
        })
        if self.responses:
            return self.responses.pop(0)
        if self.default is not None:
            return self.default
        raise CompletionError("No scripted completion left")

    def prompt_text(self, index: int) -> str:
        return "\n".join(str(m.get("content", "")) for m in self.calls[index]["messages"])


def decision_response(action: str, args: Optional[Dict[str, Any]] = None, confidence: float = 0.8,
                      plan: Optional[List[Dict[str, Any]]] = None, reasoning: str = "Because.") -> CompletionResponse:
    body = {
        "action": action,
        "args": args or {},
        "reasoning": reasoning,
        "confidence": confidence,
        "plan": plan or [],
    }
    return CompletionResponse(content="```json\n" + json.dumps(body) + "\n```", model="fake-model")


def tool_call_response(*calls: ToolCall, content: str = "Let me check.") -> CompletionResponse:
    return CompletionResponse(content=content, tool_calls=list(calls), model="fake-model")


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore(seed_tables())


@pytest.fixture
def registry(store):
    registry = create_default_registry(store)
    yield registry
    registry.shutdown()


@pytest.fixture
def config() -> GlobalConfig:
    config = GlobalConfig.create_default()
    config.reasoning.record_identity_observations = False
    return config


@pytest.fixture
def llm() -> FakeCompletionClient:
    return FakeCompletionClient()


@pytest.fixture
def deps(store, registry, llm, config) -> NodeDeps:
    return NodeDeps(store=store, registry=registry, llm_client=llm, config=config, background=None)


@pytest.fixture
def orchestrator(store, registry, llm, config) -> WorkflowOrchestrator:
    orchestrator = WorkflowOrchestrator(store=store, registry=registry, llm_client=llm, config=config)
    yield orchestrator
    orchestrator.shutdown()


def chat_scope(message: str = "Join my battle against Iron Reach?", is_response: bool = False,
               actor_id: str = "agent-1", conversation_id: Optional[str] = "conv-1") -> Scope:
    return Scope(
        actor_id=actor_id,
        trigger=Trigger.event_trigger("chat", is_response),
        subject=MessageSubject(
            id="user-9",
            content=message,
            sender_id="user-9",
            sender_username="rook",
            conversation_type="direct",
            feed_type="direct",
        ),
        conversation_id=conversation_id,
    )


@pytest.fixture
def make_state():
    """State positioned after Observe: actor and observation filled in."""
    def _make(scope: Optional[Scope] = None, max_iterations: int = 10, heat: float = 10,
              action: Optional[Action] = None, reasoning: Optional[Reasoning] = None, **overrides):
        state = create_initial_state(scope or chat_scope(), max_iterations=max_iterations)
        state.actor = ActorResources(
            actor_id=state.scope.actor_id,
            identity=IdentityVector(**AGENT_IDENTITY),
            morale=70,
            energy=60,
            heat=heat,
        )
        state.observation = Observation(context_summary="=== SITUATION ===", feed_type="direct")
        if action is not None:
            state.action = action
            state.reasoning = reasoning or Reasoning(decision=action.type, confidence=action.confidence,
                                                     explanation="test decision")
            state.step = "act"
        for key, value in overrides.items():
            setattr(state, key, value)
        return state
    return _make
