"""
TRIGGERS
========

Turns inbound events and schedules into workflow runs.

Event handlers build a ``Scope`` (actor, trigger, subject) from a plain
context dict and run it through the orchestrator. Schedule handlers either
run the workflow for each active agent or do store maintenance directly.

Architecture
------------
::

    TriggerRouter(orchestrator, store)
    ├── handle_event(event_type, context)      → WorkflowOutcome
    │     chat │ comment │ mention │ post │ law_proposal │ battle │ relationship_change
    └── handle_schedule(schedule_type)         → dict summary
          agent_cycle │ relationship_sync │ memory_cleanup │ token_reset

Handlers can be replaced per instance with ``register_event_handler`` /
``register_schedule_handler``.

Usage::

    router = TriggerRouter(orchestrator, store)
    outcome = router.handle_event("chat", {
        "agent_id": "agent-1", "user_id": "user-9",
        "message": "Join my community?", "conversation_id": "conv-1",
    })
"""

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from .orchestrator import WorkflowOrchestrator, WorkflowOutcome
from .state import (
    BattleSubject,
    MessageSubject,
    PostSubject,
    ProposalSubject,
    Scope,
    Trigger,
)

logger = logging.getLogger(__name__)

AGENT_CYCLE_LIMIT = 10
MEMORY_RETENTION_DAYS = 30
DAILY_ACTION_TOKENS = 100
UNKNOWN_USERNAME = "unknown_user"

EventHandler = Callable[[Dict[str, Any]], Any]
ScheduleHandler = Callable[[], Dict[str, Any]]


def _get(context: Dict[str, Any], *names: str, default: Any = None) -> Any:
    """First present key among snake_case and camelCase spellings."""
    for name in names:
        value = context.get(name)
        if value is not None:
            return value
    return default


def _parse_time(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


class TriggerRouter:
    """Entry point for everything that can start a decision loop."""

    def __init__(self, orchestrator: WorkflowOrchestrator, store: Any = None):
        self.orchestrator = orchestrator
        self.store = store if store is not None else orchestrator.deps.store
        self._event_handlers: Dict[str, EventHandler] = {
            "chat": self.handle_chat_event,
            "comment": self.handle_comment_event,
            "mention": self.handle_mention_event,
            "post": self.handle_post_event,
            "law_proposal": self.handle_law_proposal_event,
            "battle": self.handle_battle_event,
            "relationship_change": self._acknowledge,
        }
        self._schedule_handlers: Dict[str, ScheduleHandler] = {
            "agent_cycle": self.handle_agent_cycle_schedule,
            "relationship_sync": self.handle_relationship_sync_schedule,
            "memory_cleanup": self.handle_memory_cleanup_schedule,
            "token_reset": self.handle_token_reset_schedule,
        }

    # ========================================================================
    # ROUTING
    # ========================================================================

    def handle_event(self, event_type: str, context: Dict[str, Any]) -> Any:
        handler = self._event_handlers.get(event_type)
        if handler is None:
            raise ValueError(f"Unknown event type: {event_type}")
        return handler(context)

    def handle_schedule(self, schedule_type: str) -> Dict[str, Any]:
        handler = self._schedule_handlers.get(schedule_type)
        if handler is None:
            raise ValueError(f"Unknown schedule type: {schedule_type}")
        return handler()

    def register_event_handler(self, event_type: str, handler: EventHandler) -> None:
        self._event_handlers[event_type] = handler
        logger.info("Registered handler for event: %s", event_type)

    def register_schedule_handler(self, schedule_type: str, handler: ScheduleHandler) -> None:
        self._schedule_handlers[schedule_type] = handler
        logger.info("Registered handler for schedule: %s", schedule_type)

    def _run(self, scope: Scope) -> WorkflowOutcome:
        return self.orchestrator.run_scope(scope)

    def _username(self, user_id: Optional[str]) -> str:
        if not user_id:
            return UNKNOWN_USERNAME
        return self.store.get_username(user_id) or UNKNOWN_USERNAME

    def _post_feed(self, post_id: str) -> Dict[str, Any]:
        post = self.store.select_one("posts", {"id": post_id}) or {}
        return {
            "feed_type": post.get("feed_type") or "world",
            "community_id": post.get("community_id"),
            "author_id": post.get("user_id") or post.get("author_id"),
        }

    # ========================================================================
    # EVENT HANDLERS
    # ========================================================================

    def handle_chat_event(self, context: Dict[str, Any]) -> WorkflowOutcome:
        """Direct message from a user to an agent."""
        agent_id = _get(context, "agent_id", "agentId")
        user_id = _get(context, "user_id", "userId")
        logger.info("[%s] Event: chat message from %s", agent_id, user_id)

        scope = Scope(
            actor_id=agent_id,
            trigger=Trigger.event_trigger("chat", _get(context, "is_response", "isResponse", default=False)),
            subject=MessageSubject(
                id=user_id,
                content=_get(context, "message", "content"),
                sender_id=user_id,
                sender_username=self._username(user_id),
                conversation_type="direct",
                feed_type="direct",
            ),
            conversation_id=_get(context, "conversation_id", "conversationId"),
        )
        return self._run(scope)

    def handle_comment_event(self, context: Dict[str, Any]) -> WorkflowOutcome:
        """Comment on a post owned by or relevant to the agent."""
        agent_id = _get(context, "agent_id", "agentId")
        post_id = _get(context, "post_id", "postId")
        commenter_id = _get(context, "commenter_id", "commenterId")
        logger.info("[%s] Event: comment on post %s from %s", agent_id, post_id, commenter_id)

        scope = Scope(
            actor_id=agent_id,
            trigger=Trigger.event_trigger("comment", _get(context, "is_response", "isResponse", default=False)),
            subject=PostSubject(
                id=post_id,
                content=_get(context, "comment_text", "commentText"),
                commenter_id=commenter_id,
            ),
        )
        return self._run(scope)

    def handle_mention_event(self, context: Dict[str, Any]) -> WorkflowOutcome:
        """@mention of an agent in a post, a comment, a DM or a group chat.

        The variant is picked by which ids are present: post + comment,
        post, conversation, group conversation (in that order).
        """
        agent_id = _get(context, "mentioned_agent_id", "mentionedAgentId", "agent_id")
        mentioner_id = _get(context, "mentioner_user_id", "mentionerUserId", "user_id")
        post_id = _get(context, "post_id", "postId")
        comment_id = _get(context, "comment_id", "commentId")
        conversation_id = _get(context, "conversation_id", "conversationId")
        group_id = _get(context, "group_conversation_id", "groupConversationId")
        message_id = _get(context, "message_id", "messageId")
        is_response = _get(context, "is_response", "isResponse", default=False)
        logger.info("[%s] Event: mentioned by %s", agent_id, mentioner_id)

        mentioner_username = self._username(mentioner_id)

        if post_id:
            feed = self._post_feed(post_id)
            subject = PostSubject(
                id=post_id,
                content=_get(context, "mention_text", "mentionText"),
                mentioner_id=mentioner_id,
                mentioner_username=mentioner_username,
                author_id=feed["author_id"],
                feed_type=feed["feed_type"],
                community_id=feed["community_id"],
                is_comment_mention=bool(comment_id),
                comment_id=comment_id,
            )
            run_conversation = None
        elif conversation_id or group_id:
            subject = MessageSubject(
                id=mentioner_id,
                content=_get(context, "message_content", "messageContent"),
                message_id=message_id,
                sender_id=mentioner_id,
                sender_username=mentioner_username,
                conversation_type="direct" if conversation_id else "group",
                group_conversation_id=None if conversation_id else group_id,
            )
            run_conversation = conversation_id or group_id
        else:
            raise ValueError("Invalid mention context - must have post_id, conversation_id, or group_conversation_id")

        scope = Scope(
            actor_id=agent_id,
            trigger=Trigger.event_trigger("mention", is_response),
            subject=subject,
            conversation_id=run_conversation,
        )
        return self._run(scope)

    def handle_post_event(self, context: Dict[str, Any]) -> WorkflowOutcome:
        # New posts are seen through other runs' data tools; no run of their own.
        logger.info(
            "Event: new post %s from %s",
            _get(context, "post_id", "postId"), _get(context, "author_id", "authorId"),
        )
        return WorkflowOutcome(success=True)

    def handle_law_proposal_event(self, context: Dict[str, Any]) -> WorkflowOutcome:
        """Run the agent named in ``agent_id`` against a new proposal; acknowledge otherwise."""
        agent_id = _get(context, "agent_id", "agentId")
        proposal_id = _get(context, "proposal_id", "proposalId")
        logger.info("Event: law proposal %s in community %s", proposal_id, _get(context, "community_id", "communityId"))
        if not agent_id:
            return WorkflowOutcome(success=True)

        scope = Scope(
            actor_id=agent_id,
            trigger=Trigger.event_trigger("law_proposal"),
            subject=ProposalSubject(
                id=proposal_id,
                content=_get(context, "content"),
                community_id=_get(context, "community_id", "communityId"),
                proposer_id=_get(context, "proposer_id", "proposerId"),
            ),
        )
        return self._run(scope)

    def handle_battle_event(self, context: Dict[str, Any]) -> WorkflowOutcome:
        """Run the agent named in ``agent_id`` against a battle event; acknowledge otherwise."""
        agent_id = _get(context, "agent_id", "agentId")
        attacker = _get(context, "attacker_community_id", "attackerCommunityId")
        defender = _get(context, "defender_community_id", "defenderCommunityId")
        logger.info("Event: battle between %s and %s", attacker, defender)
        if not agent_id:
            return WorkflowOutcome(success=True)

        scope = Scope(
            actor_id=agent_id,
            trigger=Trigger.event_trigger("battle"),
            subject=BattleSubject(
                id=_get(context, "battle_id", "battleId"),
                attacker_community_id=attacker,
                defender_community_id=defender,
                battle_type=_get(context, "type", "battle_type"),
            ),
        )
        return self._run(scope)

    def _acknowledge(self, context: Dict[str, Any]) -> WorkflowOutcome:
        return WorkflowOutcome(success=True)

    # ========================================================================
    # SCHEDULE HANDLERS
    # ========================================================================

    def _run_for_agents(self, schedule: str, agents: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        results = []
        for agent in agents:
            started = time.perf_counter()
            try:
                outcome = self._run(Scope(actor_id=agent["id"], trigger=Trigger.schedule_trigger(schedule)))
            except Exception as e:
                logger.error("[%s] Schedule %s failed: %s", agent["id"], schedule, e)
                results.append({"agent_id": agent["id"], "success": False, "error": str(e)})
                continue
            results.append({
                "agent_id": agent["id"],
                "success": outcome.success,
                "actions": len(outcome.actions),
                "duration_ms": round((time.perf_counter() - started) * 1000),
            })
        return results

    def handle_agent_cycle_schedule(self) -> Dict[str, Any]:
        """One autonomous run for each active agent, capped per cycle."""
        agents = self.store.list_active_agents(limit=AGENT_CYCLE_LIMIT)
        if not agents:
            logger.info("Schedule: no active agents found")
            return {"success": True, "agents_processed": 0, "results": []}

        results = self._run_for_agents("agent_cycle", agents)
        logger.info("Schedule: agent cycle processed %d agents", len(agents))
        return {"success": True, "agents_processed": len(agents), "results": results}

    def handle_relationship_sync_schedule(self) -> Dict[str, Any]:
        agents = self.store.list_active_agents()
        if not agents:
            return {"success": True, "agents_processed": 0}

        self._run_for_agents("relationship_sync", agents)
        logger.info("Schedule: synced relationships for %d agents", len(agents))
        return {"success": True, "agents_processed": len(agents)}

    def handle_memory_cleanup_schedule(self) -> Dict[str, Any]:
        """Delete agent memories older than the retention window."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=MEMORY_RETENTION_DAYS)

        def _expired(row: Dict[str, Any]) -> bool:
            created = _parse_time(row.get("created_at"))
            return created is not None and created < cutoff

        deleted = self.store.delete("agent_memories", predicate=_expired)
        logger.info("Schedule: memory cleanup deleted %d memories", deleted)
        return {"success": True, "memories_deleted": deleted}

    def handle_token_reset_schedule(self) -> Dict[str, Any]:
        """Refill daily action tokens and cool every agent down to zero heat."""
        updated = self.store.update(
            "users",
            {"is_bot": True},
            {"daily_action_tokens": DAILY_ACTION_TOKENS, "heat": 0},
        )
        logger.info("Schedule: token reset for %d agents", updated)
        return {"success": True, "agents_reset": updated}
