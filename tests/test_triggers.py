"""Tests for event and schedule routing."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from npc_loop.orchestrator import WorkflowOutcome
from npc_loop.triggers import TriggerRouter


class RecordingOrchestrator:
    """Stands in for the orchestrator and remembers every scope it was asked to run."""

    def __init__(self, store, fail_for=()):
        self.scopes = []
        self.fail_for = set(fail_for)
        self.deps = type("Deps", (), {"store": store})()

    def run_scope(self, scope):
        if scope.actor_id in self.fail_for:
            raise RuntimeError("store offline")
        self.scopes.append(scope)
        return WorkflowOutcome(success=True, actions=["ignore"])


@pytest.fixture
def recorder(store):
    return RecordingOrchestrator(store)


@pytest.fixture
def router(recorder):
    return TriggerRouter(recorder)


def test_chat_event_builds_direct_message_scope(router, recorder):
    outcome = router.handle_event("chat", {
        "agent_id": "agent-1", "user_id": "user-9", "message": "hello", "conversation_id": "conv-1",
        "isResponse": True,
    })
    assert outcome.success
    scope = recorder.scopes[0]
    assert scope.actor_id == "agent-1"
    assert scope.trigger.trigger_id == "event:chat"
    assert scope.trigger.is_response is True
    assert scope.conversation_id == "conv-1"
    assert scope.subject.sender_username == "rook"
    assert scope.subject.content == "hello"


def test_unknown_sender_gets_placeholder_username(router, recorder):
    router.handle_event("chat", {"agent_id": "agent-1", "user_id": "user-404", "message": "hi"})
    assert recorder.scopes[0].subject.sender_username == "unknown_user"


def test_comment_event(router, recorder):
    router.handle_event("comment", {
        "agent_id": "agent-1", "post_id": "post-1", "commenter_id": "user-9", "comment_text": "nice",
    })
    subject = recorder.scopes[0].subject
    assert subject.id == "post-1"
    assert subject.commenter_id == "user-9"
    assert subject.content == "nice"


def test_post_mention_reads_the_post_feed(router, recorder):
    router.handle_event("mention", {
        "mentionedAgentId": "agent-1", "mentionerUserId": "user-9", "postId": "post-1", "commentId": "c-7",
    })
    scope = recorder.scopes[0]
    assert scope.subject.feed_type == "community"
    assert scope.subject.community_id == "comm-1"
    assert scope.subject.author_id == "user-9"
    assert scope.subject.is_comment_mention
    assert scope.conversation_id is None


def test_group_mention(router, recorder):
    router.handle_event("mention", {
        "mentioned_agent_id": "agent-1", "mentioner_user_id": "user-9", "group_conversation_id": "g-1",
        "message_content": "@ember thoughts?",
    })
    scope = recorder.scopes[0]
    assert scope.subject.conversation_type == "group"
    assert scope.subject.group_conversation_id == "g-1"
    assert scope.conversation_id == "g-1"


def test_mention_without_location_is_rejected(router):
    with pytest.raises(ValueError, match="Invalid mention context"):
        router.handle_event("mention", {"mentioned_agent_id": "agent-1", "mentioner_user_id": "user-9"})


def test_battle_and_proposal_run_only_with_an_agent(router, recorder):
    assert router.handle_event("battle", {"battle_id": "battle-1"}).success
    assert router.handle_event("law_proposal", {"proposal_id": "prop-1"}).success
    assert recorder.scopes == []

    router.handle_event("battle", {
        "agent_id": "agent-1", "battle_id": "battle-1", "attacker_community_id": "comm-2",
        "defender_community_id": "comm-1",
    })
    router.handle_event("law_proposal", {"agent_id": "agent-1", "proposal_id": "prop-1", "community_id": "comm-1"})
    assert [s.trigger.trigger_id for s in recorder.scopes] == ["event:battle", "event:law_proposal"]
    assert recorder.scopes[0].subject.defender_community_id == "comm-1"


def test_post_and_relationship_events_only_acknowledge(router, recorder):
    assert router.handle_event("post", {"post_id": "post-2", "author_id": "user-9"}).success
    assert router.handle_event("relationship_change", {"user_id": "user-9"}).success
    assert recorder.scopes == []


def test_unknown_event_and_schedule(router):
    with pytest.raises(ValueError, match="Unknown event type: earthquake"):
        router.handle_event("earthquake", {})
    with pytest.raises(ValueError, match="Unknown schedule type: hourly"):
        router.handle_schedule("hourly")


def test_custom_handler_replaces_default(router, recorder):
    router.register_event_handler("post", lambda context: "handled")
    assert router.handle_event("post", {}) == "handled"


def test_agent_cycle_runs_every_active_agent(router, recorder):
    summary = router.handle_schedule("agent_cycle")
    assert summary["agents_processed"] == 2
    assert {s.actor_id for s in recorder.scopes} == {"agent-1", "agent-2"}
    assert all(s.trigger.trigger_id == "schedule:agent_cycle" for s in recorder.scopes)
    assert all(s.subject is None for s in recorder.scopes)


def test_agent_cycle_reports_failures_per_agent(store):
    router = TriggerRouter(RecordingOrchestrator(store, fail_for={"agent-2"}))
    results = {r["agent_id"]: r for r in router.handle_schedule("agent_cycle")["results"]}
    assert results["agent-1"]["success"]
    assert results["agent-2"] == {"agent_id": "agent-2", "success": False, "error": "store offline"}


def test_agent_cycle_with_no_agents(store):
    store.update("users", {"is_bot": True}, {"is_active": False})
    summary = TriggerRouter(RecordingOrchestrator(store)).handle_schedule("agent_cycle")
    assert summary == {"success": True, "agents_processed": 0, "results": []}


def test_memory_cleanup_deletes_only_expired(router, store):
    now = datetime.now(timezone.utc)
    store.insert("agent_memories", {"agent_id": "agent-1", "created_at": (now - timedelta(days=40)).isoformat()})
    store.insert("agent_memories", {"agent_id": "agent-1", "created_at": (now - timedelta(days=2)).isoformat()})
    store.insert("agent_memories", {"agent_id": "agent-1", "created_at": "not a date"})

    assert router.handle_schedule("memory_cleanup") == {"success": True, "memories_deleted": 1}
    assert store.count("agent_memories") == 2


def test_token_reset_cools_down_agents(router, store):
    assert router.handle_schedule("token_reset") == {"success": True, "agents_reset": 2}
    agent = store.select_one("users", {"id": "agent-1"})
    assert agent["heat"] == 0
    assert agent["daily_action_tokens"] == 100
    assert store.select_one("users", {"id": "user-9"})["heat"] == 12
