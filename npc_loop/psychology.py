"""
PSYCHOLOGY
==========

Identity/action alignment math used for the coherence telemetry signal.

Coherence blends two cosine similarities against the actor's identity::

    C = 0.5 * cos(message, identity) + 0.5 * cos(action_vector, identity)

With no message vector the identity itself is used, so the rhetoric term
is 1.0 for any non-zero identity and coherence reduces to how well the
action type fits the personality.
"""

import math
from typing import Dict, Optional, Union

from .state import IDENTITY_AXES, IdentityVector

MESSAGE_WEIGHT = 0.5
ACTION_WEIGHT = 0.5

# Personality direction of each action family
ACTION_VECTORS: Dict[str, Dict[str, float]] = {
    "ATTACK": {"power_harmony": 0.8, "order_chaos": 0.5},
    "TRADE": {"power_harmony": -0.5, "logic_emotion": 0.6, "self_community": -0.4},
    "LIKE": {"power_harmony": -0.2},
    "DISLIKE": {"power_harmony": 0.2},
    "FOLLOW": {"self_community": -0.6},
    "CHAT": {"self_community": -0.3, "logic_emotion": -0.2},
    "COMMENT": {"self_community": -0.4, "logic_emotion": -0.1},
    "CREATE_POST": {"self_community": -0.2, "tradition_innovation": 0.1},
}

# Action tool name -> action family
TOOL_ACTION_FAMILIES: Dict[str, str] = {
    "send_message": "CHAT",
    "reply": "CHAT",
    "send_group_message": "CHAT",
    "decline": "CHAT",
    "comment": "COMMENT",
    "create_post": "CREATE_POST",
    "like": "LIKE",
    "follow": "FOLLOW",
    "join_battle": "ATTACK",
    "buy_item": "TRADE",
    "do_work": "TRADE",
}


def cosine_similarity(a: IdentityVector, b: IdentityVector) -> float:
    """Cosine similarity rounded to 3 decimals; 0.0 if either vector is zero."""
    dot = mag_a = mag_b = 0.0
    for axis in IDENTITY_AXES:
        x = getattr(a, axis)
        y = getattr(b, axis)
        dot += x * y
        mag_a += x * x
        mag_b += y * y
    if mag_a == 0 or mag_b == 0:
        return 0.0
    return round(dot / (math.sqrt(mag_a) * math.sqrt(mag_b)), 3)


def action_vector_for(action: str) -> IdentityVector:
    """Vector for a tool name or an action family; zero vector when unknown."""
    family = TOOL_ACTION_FAMILIES.get(action, action.upper())
    return IdentityVector(**ACTION_VECTORS.get(family, {}))


def calculate_coherence(
    identity: IdentityVector,
    action: Union[str, IdentityVector],
    message: Optional[IdentityVector] = None,
) -> float:
    action_vector = action_vector_for(action) if isinstance(action, str) else action
    message_vector = message if message is not None else identity
    rhetoric = cosine_similarity(message_vector, identity)
    alignment = cosine_similarity(action_vector, identity)
    return round(MESSAGE_WEIGHT * rhetoric + ACTION_WEIGHT * alignment, 3)
