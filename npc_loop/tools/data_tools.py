"""
DATA_TOOLS
==========

Read-only tools the model may call while gathering information (19 tools).

Nothing here is pre-fetched: Observe only reads the actor row, and every
relational detail (profiles, relationships, posts, battles...) is pulled
just in time by one of these tools. Results are cached per run by
``ToolCache``, so a tool must return the same payload for the same
arguments within one workflow run.

Tools
-----
- Profile:       ``get_user_profile``, ``get_my_stats``
- Relationships: ``check_relationship``, ``check_request_persistence``
- Communities:   ``get_user_community``, ``get_community_details``
- Battles:       ``get_battle_details``, ``get_active_battles``
- Economy:       ``get_market_items``, ``get_my_inventory``
- Memory:        ``search_memories``, ``get_conversation_history``
- Posts & chat:  ``get_recent_posts``, ``get_post_details``,
                 ``get_post_comments``, ``get_group_chat_history``,
                 ``get_group_chat_participants``
- Governance:    ``get_active_proposals``
- Identity:      ``check_coherence``
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, List

from ..errors import FieldShapeError
from .base import DataTool, ToolContext, ToolDefinition, ToolParameter

logger = logging.getLogger(__name__)

PROFILE_FIELDS = [
    "id", "username", "display_name", "bio", "identity_json", "morale", "coherence",
    "heat", "energy", "health", "mental_power", "freewill", "community_id", "rage",
    "strength", "main_community_id",
]
PROFILE_MINIMAL_FIELDS = ["id", "username", "identity_json", "morale", "rage"]

MY_STATS_FIELDS = [
    "health", "energy", "morale", "coherence", "heat", "mental_power", "freewill",
    "identity_json", "rage", "strength", "main_community_id",
]

DECLINE_ACTION_TYPES = ("decline", "ignore", "DECLINE_LEVEL_1", "DECLINE_LEVEL_2", "DECLINE_LEVEL_3")


def _cutoff_iso(hours: float) -> str:
    return (datetime.now(timezone.utc) - timedelta(hours=float(hours))).isoformat()


def _as_limit(value: Any, default: int) -> int:
    try:
        return max(1, int(value))
    except (TypeError, ValueError):
        return default


def _user_param(description: str = "ID of the user") -> ToolParameter:
    return ToolParameter(name="userId", type="string", description=description)


class StoreDataTool(DataTool):
    """DataTool backed by an ActorStore."""

    def __init__(self, store):
        self.store = store


# ============================================================================
# USER & PROFILE TOOLS
# ============================================================================

class GetUserProfileTool(StoreDataTool):

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="get_user_profile",
            description="Get complete profile of any user by ID including stats, identity, and rage",
            parameters=[_user_param("ID of the user to get profile for")],
        )

    def execute(self, context: ToolContext, **kwargs) -> Any:
        user_id = kwargs.get("userId")
        if not user_id:
            raise self.fail("userId is required")
        try:
            return self.store.select_one("users", {"id": user_id}, fields=PROFILE_FIELDS)
        except FieldShapeError as e:
            # Deployments with an older users table lack some columns
            logger.debug("get_user_profile: %s, retrying with minimal fields", e)
            return self.store.select_one("users", {"id": user_id}, fields=PROFILE_MINIMAL_FIELDS)


class GetMyStatsTool(StoreDataTool):

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="get_my_stats",
            description="Get current agent's own stats (health, energy, morale, rage, gold, etc.)",
        )

    def execute(self, context: ToolContext, **kwargs) -> Any:
        try:
            return self.store.select_one("users", {"id": context.agent_id}, fields=MY_STATS_FIELDS)
        except FieldShapeError:
            return self.store.select_one("users", {"id": context.agent_id})


# ============================================================================
# RELATIONSHIP TOOLS
# ============================================================================

class CheckRelationshipTool(StoreDataTool):
    """Relationship type/score plus, on request, the agent's recent actions toward the user."""

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="check_relationship",
            description=(
                "Check relationship status with a user (enemy, cautious, neutral, ally) and "
                "sentiment history. CRITICAL for battle decisions - enemies trigger rage and aggression."
            ),
            parameters=[
                _user_param("ID of the user to check relationship with"),
                ToolParameter(
                    name="includeHistory",
                    type="boolean",
                    description="Whether to include recent interaction history",
                    required=False,
                ),
            ],
        )

    def execute(self, context: ToolContext, **kwargs) -> Any:
        user_id = kwargs.get("userId")
        if not user_id:
            raise self.fail("userId is required")

        relationship = self.store.select_one(
            "agent_relationships", {"agent_id": context.agent_id, "target_id": user_id}
        ) or {}
        relationship_type = relationship.get("relationship_type") or "neutral"

        result = {
            "userId": user_id,
            "relationshipType": relationship_type,
            "relationshipScore": relationship.get("relationship_score") or 0,
            "interactions": relationship.get("interaction_count") or 0,
            "lastInteraction": relationship.get("last_interaction_at"),
            "recentActions": relationship.get("recent_actions") or [],
            "isEnemy": relationship_type == "enemy",
            "isAlly": relationship_type == "ally",
        }

        if kwargs.get("includeHistory"):
            result["recentAgentActions"] = self.store.select(
                "agent_actions",
                {"agent_id": context.agent_id, "target_id": user_id},
                fields=["id", "action_type", "created_at", "metadata"],
                order_by="created_at",
                descending=True,
                limit=5,
            )
        return result


class CheckRequestPersistenceTool(StoreDataTool):
    """How often a user has pushed the same request, measured by prior declines.

    ``persistenceLevel`` is the number of decline/ignore actions the agent
    took toward the user inside the window: 0 for a first request, 1 for a
    second, 2+ for a persistent user.
    """

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="check_request_persistence",
            description="Check how many times a user has made similar requests recently (for escalation handling)",
            parameters=[
                _user_param("ID of the user making the request"),
                ToolParameter(
                    name="requestType",
                    type="string",
                    description="Type of request (e.g., 'join_battle', 'follow_me', 'join_community')",
                    required=False,
                ),
                ToolParameter(
                    name="timeWindowHours",
                    type="number",
                    description="Time window in hours to check (default: 24)",
                    required=False,
                    default=24,
                ),
            ],
        )

    def execute(self, context: ToolContext, **kwargs) -> Any:
        user_id = kwargs.get("userId")
        if not user_id:
            raise self.fail("userId is required")
        request_type = kwargs.get("requestType")
        cutoff = _cutoff_iso(kwargs.get("timeWindowHours") or 24)

        recent_messages = self.store.select(
            "messages",
            {"sender_id": user_id, "receiver_id": context.agent_id},
            order_by="created_at",
            descending=True,
            predicate=lambda r: (r.get("created_at") or "") >= cutoff,
        )
        declines = self.store.select(
            "agent_actions",
            {"agent_id": context.agent_id, "target_id": user_id, "action_type": DECLINE_ACTION_TYPES},
            order_by="created_at",
            descending=True,
            predicate=lambda r: (r.get("created_at") or "") >= cutoff,
        )

        similar = 0
        if request_type:
            needle = request_type.lower()
            similar = sum(1 for m in recent_messages if needle in (m.get("content") or "").lower())

        return {
            "userId": user_id,
            "totalRecentMessages": len(recent_messages),
            "similarRequestsCount": similar,
            "declineCount": len(declines),
            "lastDeclineAction": declines[0] if declines else None,
            "recentMessages": recent_messages[:3],
            "persistenceLevel": len(declines),
        }


# ============================================================================
# COMMUNITY TOOLS
# ============================================================================

class GetUserCommunityTool(StoreDataTool):

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="get_user_community",
            description="Get user's primary community affiliation",
            parameters=[_user_param()],
        )

    def execute(self, context: ToolContext, **kwargs) -> Any:
        user_id = kwargs.get("userId")
        if not user_id:
            raise self.fail("userId is required")
        membership = self.store.select_one("community_members", {"user_id": user_id})
        if not membership:
            return None
        return self.store.get_community(membership.get("community_id"))


class GetCommunityDetailsTool(StoreDataTool):

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="get_community_details",
            description="Get comprehensive details about a specific community",
            parameters=[ToolParameter(name="communityId", type="string", description="ID of the community")],
        )

    def execute(self, context: ToolContext, **kwargs) -> Any:
        community_id = kwargs.get("communityId")
        if not community_id:
            raise self.fail("communityId is required")
        community = self.store.get_community(community_id) or {}
        return {
            **community,
            "memberCount": self.store.count("community_members", {"community_id": community_id}),
        }


# ============================================================================
# BATTLE TOOLS
# ============================================================================

class GetBattleDetailsTool(StoreDataTool):

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="get_battle_details",
            description="Get complete details of a specific battle",
            parameters=[ToolParameter(name="battleId", type="string", description="ID of the battle")],
        )

    def execute(self, context: ToolContext, **kwargs) -> Any:
        battle_id = kwargs.get("battleId")
        if not battle_id:
            raise self.fail("battleId is required")
        battle = self.store.select_one("battles", {"id": battle_id})
        if not battle:
            return None
        battle["community1"] = self.store.get_community(battle.get("community1_id"))
        battle["community2"] = self.store.get_community(battle.get("community2_id"))
        return battle


class GetActiveBattlesTool(StoreDataTool):

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="get_active_battles",
            description="Get all active battles for a specific community",
            parameters=[ToolParameter(name="communityId", type="string", description="ID of the community")],
        )

    def execute(self, context: ToolContext, **kwargs) -> Any:
        community_id = kwargs.get("communityId")
        if not community_id:
            raise self.fail("communityId is required")
        return self.store.select(
            "battles",
            {"status": "active"},
            order_by="created_at",
            descending=True,
            predicate=lambda b: community_id in (b.get("community1_id"), b.get("community2_id")),
        )


# ============================================================================
# MARKET & ECONOMY TOOLS
# ============================================================================

class GetMarketItemsTool(StoreDataTool):

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="get_market_items",
            description="Get all available items in the market with prices",
        )

    def execute(self, context: ToolContext, **kwargs) -> Any:
        return self.store.select("market_items", {"available": True})


class GetMyInventoryTool(StoreDataTool):

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="get_my_inventory",
            description="Get agent's current inventory",
        )

    def execute(self, context: ToolContext, **kwargs) -> Any:
        return self.store.select("inventory", {"user_id": context.agent_id})


# ============================================================================
# MEMORY & CONVERSATION TOOLS
# ============================================================================

class SearchMemoriesTool(StoreDataTool):
    """Case-insensitive substring search over the agent's memories, most important first."""

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="search_memories",
            description="Search agent's memories using keyword search",
            parameters=[
                ToolParameter(name="query", type="string", description="Search query to find relevant memories"),
                ToolParameter(
                    name="limit",
                    type="number",
                    description="Maximum number of memories to return",
                    required=False,
                    default=5,
                ),
            ],
        )

    def execute(self, context: ToolContext, **kwargs) -> Any:
        query = (kwargs.get("query") or "").lower()
        if not query:
            raise self.fail("query is required")
        return self.store.select(
            "agent_memories",
            {"user_id": context.agent_id},
            order_by="importance",
            descending=True,
            limit=_as_limit(kwargs.get("limit"), 5),
            predicate=lambda m: query in (m.get("content") or "").lower(),
        )


class GetConversationHistoryTool(StoreDataTool):

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="get_conversation_history",
            description="Get recent messages with a specific user",
            parameters=[
                _user_param(),
                ToolParameter(
                    name="limit",
                    type="number",
                    description="Number of messages to retrieve",
                    required=False,
                    default=10,
                ),
            ],
        )

    def execute(self, context: ToolContext, **kwargs) -> Any:
        user_id = kwargs.get("userId")
        if not user_id:
            raise self.fail("userId is required")
        pair = {user_id, context.agent_id}
        return self.store.select(
            "messages",
            order_by="created_at",
            descending=True,
            limit=_as_limit(kwargs.get("limit"), 10),
            predicate=lambda m: {m.get("sender_id"), m.get("receiver_id")} == pair,
        )


# ============================================================================
# POST & FEED TOOLS
# ============================================================================

class GetRecentPostsTool(StoreDataTool):

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="get_recent_posts",
            description="Get recent posts from a user or community",
            parameters=[
                ToolParameter(name="userId", type="string", description="ID of the user (optional)", required=False),
                ToolParameter(
                    name="communityId", type="string", description="ID of the community (optional)", required=False
                ),
                ToolParameter(
                    name="limit", type="number", description="Number of posts to retrieve", required=False, default=5
                ),
            ],
        )

    def execute(self, context: ToolContext, **kwargs) -> Any:
        where = {}
        if kwargs.get("userId"):
            where["author_id"] = kwargs["userId"]
        if kwargs.get("communityId"):
            where["community_id"] = kwargs["communityId"]
        return self.store.select(
            "posts", where, order_by="created_at", descending=True, limit=_as_limit(kwargs.get("limit"), 5)
        )


class GetPostDetailsTool(StoreDataTool):

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="get_post_details",
            description="Get complete details of a specific post including author and comments",
            parameters=[ToolParameter(name="postId", type="string", description="ID of the post")],
        )

    def execute(self, context: ToolContext, **kwargs) -> Any:
        post_id = kwargs.get("postId")
        if not post_id:
            raise self.fail("postId is required")
        post = self.store.select_one("posts", {"id": post_id})
        if not post:
            raise self.fail(f"Post not found: {post_id}")

        author = self.store.select_one(
            "users", {"id": post.get("author_id")}, fields=["id", "username", "identity_json"]
        )
        return {
            **post,
            "author": author,
            "commentCount": self.store.count("comments", {"post_id": post_id}),
            "likeCount": self.store.count("post_likes", {"post_id": post_id}),
        }


class GetPostCommentsTool(StoreDataTool):

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="get_post_comments",
            description="Get comments on a specific post to understand the conversation context",
            parameters=[
                ToolParameter(name="postId", type="string", description="ID of the post"),
                ToolParameter(
                    name="limit",
                    type="number",
                    description="Maximum number of comments to return (default: 10)",
                    required=False,
                    default=10,
                ),
            ],
        )

    def execute(self, context: ToolContext, **kwargs) -> Any:
        post_id = kwargs.get("postId")
        if not post_id:
            raise self.fail("postId is required")
        comments = self.store.select(
            "comments", {"post_id": post_id}, order_by="created_at", limit=_as_limit(kwargs.get("limit"), 10)
        )
        for comment in comments:
            comment["users"] = self.store.select_one(
                "users", {"id": comment.get("user_id")}, fields=["id", "username", "identity_json"]
            )
        return comments


class GetGroupChatHistoryTool(StoreDataTool):

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="get_group_chat_history",
            description="Get recent messages from a group chat to understand conversation context",
            parameters=[
                ToolParameter(name="groupConversationId", type="string", description="ID of the group conversation"),
                ToolParameter(
                    name="limit",
                    type="number",
                    description="Number of recent messages to retrieve (default: 10)",
                    required=False,
                    default=10,
                ),
            ],
        )

    def execute(self, context: ToolContext, **kwargs) -> Any:
        group_id = kwargs.get("groupConversationId")
        if not group_id:
            raise self.fail("groupConversationId is required")
        messages = self.store.select(
            "group_messages",
            {"group_conversation_id": group_id},
            order_by="created_at",
            descending=True,
            limit=_as_limit(kwargs.get("limit"), 10),
        )
        for message in messages:
            message["users"] = self.store.select_one(
                "users", {"id": message.get("user_id")}, fields=["id", "username", "is_bot"]
            )
        # chronological order
        return list(reversed(messages))


class GetGroupChatParticipantsTool(StoreDataTool):

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="get_group_chat_participants",
            description="Get list of participants in a group chat",
            parameters=[
                ToolParameter(name="groupConversationId", type="string", description="ID of the group conversation"),
            ],
        )

    def execute(self, context: ToolContext, **kwargs) -> Any:
        group_id = kwargs.get("groupConversationId")
        if not group_id:
            raise self.fail("groupConversationId is required")
        group = self.store.select_one(
            "group_conversations", {"id": group_id}, fields=["id", "name", "is_community_chat", "community_id"]
        )
        participants = self.store.select("group_conversation_participants", {"group_conversation_id": group_id})
        for participant in participants:
            participant["users"] = self.store.select_one(
                "users", {"id": participant.get("user_id")}, fields=["id", "username", "is_bot"]
            )
        return {
            "group": group,
            "participants": participants,
            "participantCount": len(participants),
        }


# ============================================================================
# GOVERNANCE TOOLS
# ============================================================================

class GetActiveProposalsTool(StoreDataTool):

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="get_active_proposals",
            description="Get active governance proposals for a community",
            parameters=[ToolParameter(name="communityId", type="string", description="ID of the community")],
        )

    def execute(self, context: ToolContext, **kwargs) -> Any:
        community_id = kwargs.get("communityId")
        if not community_id:
            raise self.fail("communityId is required")
        return self.store.select(
            "proposals",
            {"community_id": community_id, "status": "active"},
            order_by="created_at",
            descending=True,
        )


# ============================================================================
# COHERENCE & IDENTITY TOOLS
# ============================================================================

class CheckCoherenceTool(StoreDataTool):
    """Ideological alignment between the agent and a user or community (cosine, -1..1)."""

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="check_coherence",
            description="Check ideological coherence between agent and a user/community",
            parameters=[
                ToolParameter(name="targetId", type="string", description="User or community ID to check coherence with"),
                ToolParameter(
                    name="targetType",
                    type="string",
                    description="Whether target is a user or community",
                    enum=["user", "community"],
                ),
            ],
        )

    def execute(self, context: ToolContext, **kwargs) -> Any:
        from ..psychology import cosine_similarity
        from ..state import IdentityVector

        target_id = kwargs.get("targetId")
        target_type = kwargs.get("targetType") or "user"
        if not target_id:
            raise self.fail("targetId is required")

        actor_identity = IdentityVector.from_dict(self.store.get_identity(context.agent_id))
        if target_type == "community":
            community = self.store.get_community(target_id) or {}
            target_identity = IdentityVector.from_dict(community.get("ideology_json"))
        else:
            target_identity = IdentityVector.from_dict(self.store.get_identity(target_id))

        return {
            "targetId": target_id,
            "targetType": target_type,
            "coherence": cosine_similarity(actor_identity, target_identity),
            "actorIdentity": actor_identity.to_dict(),
            "targetIdentity": target_identity.to_dict(),
        }


DATA_TOOL_CLASSES: List[type] = [
    GetUserProfileTool,
    GetMyStatsTool,
    CheckRelationshipTool,
    CheckRequestPersistenceTool,
    GetUserCommunityTool,
    GetCommunityDetailsTool,
    GetBattleDetailsTool,
    GetActiveBattlesTool,
    GetMarketItemsTool,
    GetMyInventoryTool,
    SearchMemoriesTool,
    GetConversationHistoryTool,
    GetRecentPostsTool,
    GetPostDetailsTool,
    GetPostCommentsTool,
    GetGroupChatHistoryTool,
    GetGroupChatParticipantsTool,
    GetActiveProposalsTool,
    CheckCoherenceTool,
]
