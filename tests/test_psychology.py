"""Tests for identity/action coherence math."""
from __future__ import annotations

from npc_loop.psychology import action_vector_for, calculate_coherence, cosine_similarity
from npc_loop.state import IdentityVector


def test_cosine_similarity_basics():
    a = IdentityVector(order_chaos=0.5, logic_emotion=0.5)
    assert cosine_similarity(a, a) == 1.0
    assert cosine_similarity(a, IdentityVector(power_harmony=1.0)) == 0.0
    assert cosine_similarity(a, IdentityVector()) == 0.0


def test_action_vector_accepts_tool_names_and_families():
    assert action_vector_for("join_battle") == action_vector_for("ATTACK")
    assert action_vector_for("decline").self_community == -0.3
    assert action_vector_for("ignore").is_zero()


def test_coherence_blends_rhetoric_and_action_alignment():
    identity = IdentityVector(power_harmony=1.0)
    # cos(ATTACK, identity) = 0.8 / sqrt(0.89) -> 0.848
    assert calculate_coherence(identity, "join_battle") == 0.924


def test_coherence_for_unknown_action_is_rhetoric_only():
    identity = IdentityVector(order_chaos=0.3)
    assert calculate_coherence(identity, "ignore") == 0.5


def test_coherence_with_explicit_message_vector():
    identity = IdentityVector(self_community=-1.0)
    message = IdentityVector(self_community=1.0)
    # rhetoric -1.0, FOLLOW alignment 1.0
    assert calculate_coherence(identity, "follow", message) == 0.0
