"""Tests for the Observe node."""
from __future__ import annotations

from conftest import chat_scope, seed_tables

from npc_loop.nodes import NodeDeps, observe
from npc_loop.nodes.observe import fetch_actor_resources
from npc_loop.state import PostSubject, Scope, Trigger, create_initial_state
from npc_loop.store import InMemoryStore
from npc_loop.tools import create_default_registry


def test_observe_reads_actor_and_summarises_dm(deps):
    state = create_initial_state(chat_scope())
    result = observe(state, deps)

    assert not result.failed
    assert result.updates["step"] == "reason"
    actor = result.updates["actor"]
    assert actor.heat == 10
    assert actor.identity.logic_emotion == 0.6
    assert actor.community_id == "comm-1"

    observation = result.updates["observation"]
    assert observation.feed_type == "direct"
    assert "=== DIRECT MESSAGE ===" in observation.context_summary
    assert "FROM: @rook (ID: user-9)" in observation.context_summary
    assert "observe_time_ms" in result.updates["metadata"]


def test_observe_unknown_actor_completes_with_error(deps):
    state = create_initial_state(chat_scope(actor_id="ghost"))
    result = observe(state, deps)
    assert result.error == "Agent not found: ghost"
    assert result.updates["step"] == "complete"


def test_long_content_is_excerpted(deps):
    state = create_initial_state(chat_scope(message="x" * 150))
    summary = observe(state, deps).updates["observation"].context_summary
    assert f'MESSAGE: "{"x" * 100}..."' in summary


def test_community_post_mention_adds_membership(deps):
    scope = Scope(
        actor_id="agent-1",
        trigger=Trigger.event_trigger("mention"),
        subject=PostSubject(
            id="post-1", content="@ember help us", mentioner_id="user-9", mentioner_username="rook",
            feed_type="community", community_id="comm-1", is_comment_mention=False,
        ),
    )
    observation = observe(create_initial_state(scope), deps).updates["observation"]

    assert observation.community.community_name == "Ashen Vale"
    assert observation.community.is_member
    assert observation.community.mentioner_is_member
    assert "⭐ THE PERSON WHO MENTIONED YOU IS ALSO A MEMBER" in observation.context_summary
    assert "'comment' tool" in observation.context_summary


def test_world_post_has_no_membership_lookup(deps):
    scope = Scope(
        actor_id="agent-1",
        trigger=Trigger.event_trigger("mention"),
        subject=PostSubject(id="post-2", mentioner_id="user-9", feed_type="world"),
    )
    observation = observe(create_initial_state(scope), deps).updates["observation"]
    assert observation.community.community_id is None
    assert "=== WORLD FEED ===" in observation.context_summary


def test_column_error_retries_with_minimal_fields():
    tables = seed_tables()
    store = InMemoryStore(tables, columns={"users": ["id", "identity_json", "morale", "coherence", "username"]})
    actor = fetch_actor_resources(store, "agent-1")
    assert actor.morale == 70
    assert actor.heat == 0
    assert actor.identity.self_community == -0.5


def test_schedule_trigger_without_subject(store, config):
    registry = create_default_registry(store)
    try:
        deps = NodeDeps(store=store, registry=registry, config=config)
        scope = Scope(actor_id="agent-2", trigger=Trigger.schedule_trigger("agent_cycle"))
        result = observe(create_initial_state(scope), deps)
    finally:
        registry.shutdown()
    summary = result.updates["observation"].context_summary
    assert "TRIGGER: schedule:agent_cycle" in summary
    assert "SUBJECT TYPE" not in summary
    assert result.updates["actor"].identity.is_zero()
