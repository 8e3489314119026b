"""
OBSERVE
=======

First node of every iteration: minimal situational awareness.

Observe reads exactly two things: the actor's resource row and, for a
community post, whether the actor and the mentioner belong to that
community. Everything else (profiles, history, relationships) is left for
Reason to fetch through data tools, so the summary produced here stays
short and describes only who, what and where.

Failure modes
-------------
- Unknown column in the actor read → retry once with ``MINIMAL_ACTOR_FIELDS``.
- Actor row missing → ``ActorNotFound``; the run goes straight to complete.
"""

import logging
import time
from typing import List, Optional

from ..errors import ActorNotFound, FieldShapeError
from ..observability import trace_node
from ..state import (
    STEP_REASON,
    ActorResources,
    CommunityContext,
    MessageSubject,
    NodeResult,
    Observation,
    PostSubject,
    Subject,
    WorkflowState,
)
from .context import NodeDeps

logger = logging.getLogger(__name__)

ACTOR_FIELDS = [
    "id", "identity_json", "morale", "energy", "mental_power", "power_mental",
    "freewill", "coherence", "heat", "rage", "main_community_id",
]
MINIMAL_ACTOR_FIELDS = ["id", "identity_json", "morale", "coherence"]

EXCERPT_CHARS = 100

FEED_WORLD = "world"
FEED_FOLLOWERS = "followers"
FEED_COMMUNITY = "community"
FEED_DIRECT = "direct"


def observe(state: WorkflowState, deps: NodeDeps) -> NodeResult:
    """Build the actor snapshot and the situation summary for Reason."""
    scope = state.scope
    store = deps.store
    started = time.perf_counter()

    with trace_node("observe", {"actor": scope.actor_id, "trigger": scope.trigger.trigger_id}) as span:
        try:
            actor = fetch_actor_resources(store, scope.actor_id)
        except ActorNotFound as e:
            logger.error("[%s] Observe: %s", scope.actor_id, e)
            span["error"] = str(e)
            return NodeResult.fail(str(e))

        community = fetch_community_context(store, state)
        summary = build_context_summary(state, community)

        logger.info(
            "[%s] Observe: trigger=%s morale=%s energy=%s heat=%s rage=%s feed=%s",
            scope.actor_id, scope.trigger.trigger_id,
            actor.morale, actor.energy, actor.heat, actor.rage, community.feed_type,
        )
        if community.community_id and community.feed_type == FEED_COMMUNITY:
            logger.debug(
                "[%s] Observe: community=%s is_member=%s mentioner_is_member=%s",
                scope.actor_id, community.community_name, community.is_member, community.mentioner_is_member,
            )

        span["output"] = {
            "context_summary_length": len(summary),
            "actor_morale": actor.morale,
            "actor_heat": actor.heat,
        }

    metadata = dict(state.metadata)
    metadata["observe_time_ms"] = round((time.perf_counter() - started) * 1000)

    return NodeResult.ok(
        step=STEP_REASON,
        actor=actor,
        observation=Observation(
            context_summary=summary,
            feed_type=community.feed_type,
            community=community,
        ),
        metadata=metadata,
    )


# ============================================================================
# READS
# ============================================================================

def fetch_actor_resources(store, actor_id: str) -> ActorResources:
    """Read the actor row, falling back to the minimal column set on a shape error."""
    try:
        record = store.fetch_actor(actor_id, ACTOR_FIELDS)
    except FieldShapeError as e:
        logger.warning("[%s] Observe: column error, retrying with minimal columns: %s", actor_id, e)
        record = store.fetch_actor(actor_id, MINIMAL_ACTOR_FIELDS)

    if not record:
        raise ActorNotFound(actor_id)
    return ActorResources.from_record(actor_id, record)


def _feed_type(subject: Optional[Subject]) -> str:
    feed_type = getattr(subject, "feed_type", None)
    if feed_type:
        return feed_type
    if isinstance(subject, MessageSubject) and subject.conversation_type == "direct":
        return FEED_DIRECT
    return FEED_WORLD


def fetch_community_context(store, state: WorkflowState) -> CommunityContext:
    """Membership lookup for community posts; the only relational read Observe does."""
    subject = state.scope.subject
    feed_type = _feed_type(subject)

    if not isinstance(subject, PostSubject) or feed_type != FEED_COMMUNITY or not subject.community_id:
        return CommunityContext(feed_type=feed_type)

    community = store.get_community(subject.community_id) or {}
    return CommunityContext(
        community_id=subject.community_id,
        community_name=community.get("name") or "Unknown Community",
        is_member=store.is_member(subject.community_id, state.scope.actor_id),
        mentioner_is_member=store.is_member(subject.community_id, subject.mentioner_id),
        feed_type=feed_type,
    )


# ============================================================================
# SUMMARY
# ============================================================================

def _excerpt(text: str) -> str:
    if len(text) > EXCERPT_CHARS:
        return text[:EXCERPT_CHARS] + "..."
    return text


def _who(label: str, username: Optional[str], user_id: Optional[str], bare_label: str) -> Optional[str]:
    if username:
        return f"{label}: @{username} (ID: {user_id})"
    if user_id:
        return f"{bare_label}: {user_id}"
    return None


def _community_lines(community: CommunityContext) -> List[str]:
    lines = [
        "=== COMMUNITY CONTEXT ===",
        f"COMMUNITY: {community.community_name} (ID: {community.community_id})",
    ]
    if community.is_member:
        lines.append("⭐ YOU ARE A MEMBER OF THIS COMMUNITY")
        if community.mentioner_is_member:
            lines.extend([
                "⭐ THE PERSON WHO MENTIONED YOU IS ALSO A MEMBER",
                "",
                "IMPORTANT: This is your COMMUNITY MEMBER asking for help.",
                "As a community member, you should:",
                "  - Prioritize helping fellow members",
                "  - Consider community goals and battles",
                "  - If declining, give a SPECIFIC reason related to:",
                "    * Disagreement with community strategy",
                "    * Personal conflict with leadership",
                "    * Low morale or energy preventing participation",
                "    * Political/ideological differences",
                "  - DO NOT use generic excuses like 'other priorities'",
            ])
        else:
            lines.append("⚠️ The person who mentioned you is NOT a member")
    else:
        lines.append("ℹ️ You are NOT a member of this community")
        if community.mentioner_is_member:
            lines.append("ℹ️ The person who mentioned you IS a member")
    lines.append("")
    return lines


def _subject_lines(subject: Subject) -> List[str]:
    lines = [f"SUBJECT TYPE: {subject.kind}", f"SUBJECT ID: {subject.id}"]

    if isinstance(subject, PostSubject) and subject.is_comment_mention and subject.comment_id:
        lines.append("MENTION TYPE: Comment on a post")
        lines.append(f"COMMENT ID: {subject.comment_id}")
        lines.append(f"POST ID: {subject.id}")
        if subject.content:
            lines.append(f'COMMENT CONTENT: "{_excerpt(subject.content)}"')
        mentioned = _who("MENTIONED BY", subject.mentioner_username, subject.mentioner_id, "MENTIONED BY")
        if mentioned:
            lines.append(mentioned)
        lines.append("")
        lines.append("TIP: Use get_post_details and get_post_comments to understand the full conversation context")
        lines.append("IMPORTANT: When responding with a comment, @ mention the person back using @username")

    elif isinstance(subject, MessageSubject) and subject.is_group:
        lines.append("MENTION TYPE: Group chat message")
        lines.append(f"GROUP CHAT ID: {subject.group_conversation_id}")
        if subject.content:
            lines.append(f'MESSAGE: "{_excerpt(subject.content)}"')
        sender = _who("FROM", subject.sender_username, subject.sender_id, "FROM USER")
        if sender:
            lines.append(sender)
        lines.append("")
        lines.append(
            "TIP: Use get_group_chat_history and get_group_chat_participants "
            "to see who's in the chat and understand context"
        )
        lines.append("IMPORTANT: When responding in a group chat, @ mention people by username using @username")

    elif isinstance(subject, MessageSubject) and subject.conversation_type == "direct":
        lines.append("MENTION TYPE: Direct message")
        if subject.content:
            lines.append(f'MESSAGE: "{_excerpt(subject.content)}"')
        sender = _who("FROM", subject.sender_username, subject.sender_id, "FROM USER")
        if sender:
            lines.append(sender)

    else:
        if subject.content:
            lines.append(f'CONTENT: "{_excerpt(subject.content)}"')
        sender = _who(
            "FROM", getattr(subject, "sender_username", None), getattr(subject, "sender_id", None), "FROM USER"
        )
        if sender:
            lines.append(sender)
        author_id = getattr(subject, "author_id", None)
        if author_id:
            lines.append(f"AUTHOR: {author_id}")
        mentioned = _who(
            "MENTIONED BY",
            getattr(subject, "mentioner_username", None),
            getattr(subject, "mentioner_id", None),
            "MENTIONED BY",
        )
        if mentioned:
            lines.append(mentioned)
        if isinstance(subject, PostSubject) and subject.is_comment_mention is False:
            lines.append("")
            lines.append(
                "IMPORTANT: When responding to a post mention, add a comment using the "
                "'comment' tool and @ mention the person using @username"
            )

    lines.append("")
    return lines


def build_context_summary(state: WorkflowState, community: CommunityContext) -> str:
    """Describe the trigger facts only. No data is fetched here."""
    trigger = state.scope.trigger
    subject = state.scope.subject

    lines = [
        "=== SITUATION ===",
        "",
        f"TRIGGER: {trigger.type}:{trigger.name}",
        f"TIME: {trigger.timestamp}",
        f"FEED: {community.feed_type.upper()}",
        "",
    ]

    if isinstance(subject, MessageSubject) and subject.conversation_type == "direct":
        lines.extend([
            "=== DIRECT MESSAGE ===",
            "This is a private one-on-one chat.",
            "Respond using direct message tools.",
            "",
        ])
    elif community.feed_type == FEED_WORLD and isinstance(subject, PostSubject):
        lines.extend([
            "=== WORLD FEED ===",
            "This is a PUBLIC post visible to everyone.",
            "Anyone can see and interact with this post.",
            "",
        ])
    elif community.feed_type == FEED_FOLLOWERS and isinstance(subject, PostSubject):
        lines.extend([
            "=== FOLLOWERS FEED ===",
            "This is a FRIENDS-ONLY post visible only to followers.",
            "Only people following the poster can see this.",
            "",
        ])

    if community.community_id and community.feed_type == FEED_COMMUNITY:
        lines.extend(_community_lines(community))

    if subject is not None:
        lines.extend(_subject_lines(subject))

    lines.extend([
        "AVAILABLE ACTIONS:",
        "  - Use data tools to gather context (get_user_profile, check_relationship, get_battle_details, etc.)",
        "  - Use action tools to respond (send_message, join_battle, buy_item, etc.)",
        "  - Analyze and decide what to do based on your identity and goals",
    ])
    return "\n".join(lines)
