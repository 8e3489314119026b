"""
ACTION_TOOLS
============

Tools that change simulation state (17 tools). Act executes exactly one of
these per iteration; plan steps naming one of them can run without another
reasoning pass.

Business rules stay thin on purpose: validate the arguments, read and write
the store, return a small payload. Failures raise ``ToolExecutionFailure``
(via ``self.fail``) and reach Act as ``ToolResult(success=False)``.

Tools
-----
- Communication: ``send_message``, ``reply``, ``create_post``, ``comment``,
                 ``send_group_message``, ``like``
- Social:        ``follow``
- Community:     ``join_community``, ``leave_community``
- Battle:        ``join_battle``
- Economy:       ``buy_item``, ``consume_item``, ``do_work``
- Governance:    ``vote_on_proposal``, ``create_proposal``
- Special:       ``decline``, ``ignore``

Aliases
-------
The model is inconsistent about argument names, so the most common ones
accept aliases: ``userId``/``user_id``/``recipientId``, ``content``/``message``,
``postId``/``post_id``, ``communityId``/``community_id``,
``targetId``/``userId``.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .base import ActionTool, ToolContext, ToolDefinition, ToolParameter

logger = logging.getLogger(__name__)

# Job type -> gold earned / energy spent
JOBS: Dict[str, Dict[str, int]] = {
    "mining": {"pay": 50, "energyCost": 20},
    "farming": {"pay": 30, "energyCost": 10},
    "trading": {"pay": 40, "energyCost": 15},
}

MAX_METER = 100


def _first(kwargs: Dict[str, Any], *names: str) -> Any:
    for name in names:
        value = kwargs.get(name)
        if value is not None and value != "":
            return value
    return None


def _content_param(description: str = "The message content") -> List[ToolParameter]:
    return [
        ToolParameter(name="content", type="string", description=description),
        ToolParameter(name="message", type="string", description="Alias for content", required=False),
    ]


class StoreActionTool(ActionTool):
    """ActionTool backed by an ActorStore, with the shared DM helpers."""

    def __init__(self, store):
        self.store = store

    def find_or_create_conversation(self, agent_id: str, user_id: str) -> str:
        pair = {agent_id, user_id}
        existing = self.store.select(
            "conversations",
            predicate=lambda c: {c.get("user1_id"), c.get("user2_id")} == pair,
            limit=1,
        )
        if existing:
            return existing[0]["id"]
        created = self.store.insert("conversations", {"user1_id": agent_id, "user2_id": user_id})
        if not created.get("id"):
            raise self.fail("Failed to determine conversation_id")
        return created["id"]

    def send_direct_message(self, conversation_id: str, agent_id: str, receiver_id: str, content: str) -> Dict:
        return self.store.insert("messages", {
            "conversation_id": conversation_id,
            "sender_id": agent_id,
            "receiver_id": receiver_id,
            "sender_type": "agent",
            "content": content,
        })

    def post_comment(self, post_id: str, agent_id: str, content: str) -> Dict:
        return self.store.insert("comments", {
            "post_id": post_id,
            "user_id": agent_id,
            "is_agent": True,
            "content": content,
        })

    def read_user_value(self, agent_id: str, column: str) -> float:
        row = self.store.select_one("users", {"id": agent_id}, fields=[column])
        if not row or row.get(column) is None:
            return 0
        return row[column]

    def gold_wallet(self, agent_id: str) -> Dict:
        where = {"user_id": agent_id, "currency_type": "gold"}
        wallet = self.store.select_one("user_wallets", where)
        if wallet is None:
            wallet = self.store.insert("user_wallets", {**where, "gold_coins": 0})
        return wallet


# ============================================================================
# COMMUNICATION
# ============================================================================

class SendMessageTool(StoreActionTool):

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="send_message",
            description=(
                "Start a NEW direct message conversation with a user OR send a DM to someone you "
                "haven't messaged before. Creates conversation automatically if needed."
            ),
            parameters=[
                ToolParameter(name="userId", type="string", description="ID of the user to send message to",
                              required=False),
                ToolParameter(name="user_id", type="string", description="Alias for userId", required=False),
                ToolParameter(name="recipientId", type="string", description="Alias for userId", required=False),
                *_content_param(),
            ],
        )

    def execute(self, context: ToolContext, **kwargs) -> Any:
        target_user = _first(kwargs, "userId", "user_id", "recipientId")
        content = _first(kwargs, "content", "message")
        if not target_user:
            raise self.fail("userId (or recipientId or user_id) is required")
        if not content:
            raise self.fail("content or message is required")

        conversation_id = self.find_or_create_conversation(context.agent_id, target_user)
        message = self.send_direct_message(conversation_id, context.agent_id, target_user, content)
        return {
            "success": True,
            "messageId": message.get("id"),
            "content": content,
            "message": "Message sent successfully",
        }


class ReplyTool(StoreActionTool):
    """Reply inside the run's direct conversation. The conversation always comes from context."""

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="reply",
            description=(
                "Send a reply message in a DIRECT MESSAGE conversation. Use this ONLY for DMs, NOT for "
                "post/comment mentions. For post mentions, use 'comment' instead. The conversationId is "
                "automatically provided from context - do NOT pass it as a parameter."
            ),
            parameters=_content_param(),
        )

    def execute(self, context: ToolContext, **kwargs) -> Any:
        conversation_id = context.conversation_id
        content = _first(kwargs, "content", "message")

        if not conversation_id:
            if context.post_id:
                raise self.fail(
                    "Cannot use 'reply' for post mentions. This is a POST MENTION context - "
                    "use the 'comment' tool instead with postId parameter."
                )
            raise self.fail(
                "conversationId is not available in context. Use this tool only for direct "
                "message conversations, not for post mentions."
            )
        if not content:
            raise self.fail("content or message is required")

        conversation = self.store.select_one("conversations", {"id": conversation_id})
        if not conversation:
            raise self.fail(f"Conversation not found: {conversation_id}")
        members = (conversation.get("user1_id"), conversation.get("user2_id"))
        if context.agent_id not in members:
            raise self.fail("Agent is not part of the specified conversation")

        receiver = members[1] if members[0] == context.agent_id else members[0]
        message = self.send_direct_message(conversation_id, context.agent_id, receiver, content)
        return {
            "success": True,
            "messageId": message.get("id"),
            "content": content,
            "message": "Reply sent successfully",
        }


class CreatePostTool(StoreActionTool):

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="create_post",
            description="Create a new post in community feed",
            parameters=[
                ToolParameter(name="content", type="string", description="The post content"),
                ToolParameter(name="communityId", type="string", description="ID of the community (optional)",
                              required=False),
            ],
        )

    def execute(self, context: ToolContext, **kwargs) -> Any:
        content = kwargs.get("content")
        if not content:
            raise self.fail("content is required")
        post = self.store.insert("posts", {
            "author_id": context.agent_id,
            "content": content,
            "community_id": kwargs.get("communityId"),
        })
        return {"success": True, "postId": post.get("id"), "message": "Post created successfully"}


class CommentTool(StoreActionTool):

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="comment",
            description=(
                "Create a comment on a post OR reply to a comment mention on a post. Use this for ALL "
                "post/comment interactions, NOT 'reply' (which is for DMs only)."
            ),
            parameters=[
                ToolParameter(name="postId", type="string",
                              description="ID of the post to comment on (can be auto-filled from context for mentions)",
                              required=False),
                ToolParameter(name="post_id", type="string", description="Alias for postId", required=False),
                *_content_param("The comment content"),
            ],
        )

    def execute(self, context: ToolContext, **kwargs) -> Any:
        post_id = _first(kwargs, "postId", "post_id") or context.post_id
        content = _first(kwargs, "content", "message")
        if not post_id:
            raise self.fail("postId is required (either as parameter or from context)")
        if not content:
            raise self.fail("content or message is required")

        comment = self.post_comment(post_id, context.agent_id, content)
        return {
            "success": True,
            "commentId": comment.get("id"),
            "content": content,
            "message": "Comment created successfully",
        }


class SendGroupMessageTool(StoreActionTool):

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="send_group_message",
            description="Send a message to a group chat",
            parameters=[
                ToolParameter(name="groupConversationId", type="string", description="ID of the group conversation"),
                ToolParameter(name="content", type="string", description="The message content"),
            ],
        )

    def execute(self, context: ToolContext, **kwargs) -> Any:
        group_id = kwargs.get("groupConversationId") or context.metadata.get("group_conversation_id")
        content = kwargs.get("content")
        if not group_id or not content:
            raise self.fail("groupConversationId and content are required")

        membership = self.store.select_one(
            "group_conversation_participants",
            {"group_conversation_id": group_id, "user_id": context.agent_id},
        )
        if not membership:
            raise self.fail("Agent is not a member of this group chat")

        message = self.store.insert("group_messages", {
            "group_conversation_id": group_id,
            "user_id": context.agent_id,
            "content": content,
            "role_metadata": {"role": "ai"},
        })
        return {
            "success": True,
            "messageId": message.get("id"),
            "content": content,
            "message": "Group message sent successfully",
        }


class LikeTool(StoreActionTool):

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="like",
            description="Like a post",
            parameters=[ToolParameter(name="postId", type="string", description="ID of the post to like")],
        )

    def execute(self, context: ToolContext, **kwargs) -> Any:
        post_id = kwargs.get("postId") or context.post_id
        if not post_id:
            raise self.fail("postId is required")
        where = {"post_id": post_id, "user_id": context.agent_id}
        if self.store.select_one("post_likes", where):
            raise self.fail("Already liked this post")
        like = self.store.insert("post_likes", where)
        return {"success": True, "likeId": like.get("id"), "message": "Post liked successfully"}


# ============================================================================
# SOCIAL / COMMUNITY
# ============================================================================

class FollowTool(StoreActionTool):

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="follow",
            description="Follow a user",
            parameters=[ToolParameter(name="userId", type="string", description="ID of the user to follow")],
        )

    def execute(self, context: ToolContext, **kwargs) -> Any:
        user_id = kwargs.get("userId")
        if not user_id:
            raise self.fail("userId is required")
        where = {"follower_id": context.agent_id, "following_id": user_id}
        if self.store.select_one("user_follows", where):
            raise self.fail("Already following this user")
        follow = self.store.insert("user_follows", where)
        return {"success": True, "followId": follow.get("id"), "message": "User followed successfully"}


class JoinCommunityTool(StoreActionTool):

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="join_community",
            description="Join a community",
            parameters=[
                ToolParameter(name="communityId", type="string", description="ID of the community to join"),
                ToolParameter(name="community_id", type="string", description="Alias for communityId",
                              required=False),
            ],
        )

    def execute(self, context: ToolContext, **kwargs) -> Any:
        community_id = _first(kwargs, "communityId", "community_id")
        if not community_id:
            raise self.fail("communityId is required")
        if self.store.is_member(community_id, context.agent_id):
            raise self.fail("Already a member of this community")
        membership = self.store.insert("community_members", {
            "community_id": community_id,
            "user_id": context.agent_id,
            "joined_at": datetime.now(timezone.utc).isoformat(),
        })
        return {"success": True, "membershipId": membership.get("id"), "message": "Joined community successfully"}


class LeaveCommunityTool(StoreActionTool):

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="leave_community",
            description="Leave a community",
            parameters=[ToolParameter(name="communityId", type="string", description="ID of the community to leave")],
        )

    def execute(self, context: ToolContext, **kwargs) -> Any:
        community_id = kwargs.get("communityId")
        if not community_id:
            raise self.fail("communityId is required")
        self.store.delete("community_members", {"community_id": community_id, "user_id": context.agent_id})
        return {"success": True, "message": "Left community successfully"}


# ============================================================================
# BATTLE / ECONOMY
# ============================================================================

class JoinBattleTool(StoreActionTool):

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="join_battle",
            description="Join a battle and contribute energy/damage",
            parameters=[
                ToolParameter(name="battleId", type="string", description="ID of the battle to join"),
                ToolParameter(name="energyAmount", type="number", description="Amount of energy to contribute"),
            ],
        )

    def execute(self, context: ToolContext, **kwargs) -> Any:
        battle_id = kwargs.get("battleId")
        amount = kwargs.get("energyAmount")
        if not battle_id or amount is None:
            raise self.fail("battleId and energyAmount are required")
        amount = float(amount)

        energy = self.read_user_value(context.agent_id, "energy")
        if energy < amount:
            raise self.fail(f"Insufficient energy. Have {energy}, need {amount}")

        self.store.update("users", {"id": context.agent_id}, {"energy": energy - amount})
        participation = self.store.insert("battle_participants", {
            "battle_id": battle_id,
            "user_id": context.agent_id,
            "damage_dealt": amount,
        })
        return {
            "success": True,
            "participationId": participation.get("id"),
            "energyContributed": amount,
            "message": "Joined battle successfully",
        }


class BuyItemTool(StoreActionTool):

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="buy_item",
            description="Purchase an item from the market",
            parameters=[
                ToolParameter(name="itemName", type="string", description="Name of the item to buy"),
                ToolParameter(name="quantity", type="number", description="Quantity to purchase"),
            ],
        )

    def execute(self, context: ToolContext, **kwargs) -> Any:
        item_name = kwargs.get("itemName")
        quantity = int(kwargs.get("quantity") or 1)
        if not item_name:
            raise self.fail("itemName is required")

        item = self.store.select_one("market_items", {"name": item_name})
        if not item:
            raise self.fail(f"Item {item_name} not found in market")
        total_cost = item.get("price", 0) * quantity

        wallet = self.gold_wallet(context.agent_id)
        gold = wallet.get("gold_coins") or 0
        if gold < total_cost:
            raise self.fail(f"Insufficient gold. Have {gold}, need {total_cost}")
        self.store.update("user_wallets", {"id": wallet["id"]}, {"gold_coins": gold - total_cost})

        owned = self.store.select_one("inventory", {"user_id": context.agent_id, "item_name": item_name})
        if owned:
            self.store.update("inventory", {"id": owned["id"]}, {"quantity": owned.get("quantity", 0) + quantity})
        else:
            self.store.insert("inventory", {"user_id": context.agent_id, "item_name": item_name, "quantity": quantity})

        return {
            "success": True,
            "itemName": item_name,
            "quantity": quantity,
            "cost": total_cost,
            "message": f"Purchased {quantity}x {item_name} for {total_cost} gold",
        }


class ConsumeItemTool(StoreActionTool):

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="consume_item",
            description="Use/consume an item from inventory (e.g., eat food to restore energy)",
            parameters=[
                ToolParameter(name="itemName", type="string", description="Name of the item to consume"),
                ToolParameter(name="quantity", type="number", description="Quantity to consume"),
            ],
        )

    def execute(self, context: ToolContext, **kwargs) -> Any:
        item_name = kwargs.get("itemName")
        quantity = int(kwargs.get("quantity") or 1)
        if not item_name:
            raise self.fail("itemName is required")

        owned = self.store.select_one("inventory", {"user_id": context.agent_id, "item_name": item_name})
        have = owned.get("quantity", 0) if owned else 0
        if have < quantity:
            raise self.fail(f"Insufficient {item_name} in inventory. Have {have}, need {quantity}")

        item = self.store.select_one("market_items", {"name": item_name})
        if not item:
            raise self.fail(f"Item {item_name} not found")
        effects = item.get("effects") or {}

        updates = {}
        for meter in ("energy", "health"):
            if effects.get(meter):
                current = self.read_user_value(context.agent_id, meter)
                updates[meter] = min(MAX_METER, current + effects[meter] * quantity)
        if updates:
            self.store.update("users", {"id": context.agent_id}, updates)

        if have == quantity:
            self.store.delete("inventory", {"id": owned["id"]})
        else:
            self.store.update("inventory", {"id": owned["id"]}, {"quantity": have - quantity})

        return {
            "success": True,
            "itemName": item_name,
            "quantity": quantity,
            "effects": effects,
            "message": f"Consumed {quantity}x {item_name}",
        }


class DoWorkTool(StoreActionTool):

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="do_work",
            description="Perform work to earn gold (costs energy)",
            parameters=[
                ToolParameter(name="jobType", type="string", description="Type of job to perform",
                              enum=sorted(JOBS)),
            ],
        )

    def execute(self, context: ToolContext, **kwargs) -> Any:
        job_type = kwargs.get("jobType")
        job = JOBS.get(job_type)
        if not job:
            raise self.fail(f"Unknown job type: {job_type}")

        energy = self.read_user_value(context.agent_id, "energy")
        if energy < job["energyCost"]:
            raise self.fail(f"Insufficient energy. Have {energy}, need {job['energyCost']}")

        wallet = self.gold_wallet(context.agent_id)
        self.store.update("users", {"id": context.agent_id}, {"energy": energy - job["energyCost"]})
        self.store.update(
            "user_wallets", {"id": wallet["id"]}, {"gold_coins": (wallet.get("gold_coins") or 0) + job["pay"]}
        )
        return {
            "success": True,
            "jobType": job_type,
            "earned": job["pay"],
            "energySpent": job["energyCost"],
            "message": f"Completed {job_type} work. Earned {job['pay']} gold, spent {job['energyCost']} energy",
        }


# ============================================================================
# GOVERNANCE
# ============================================================================

class VoteOnProposalTool(StoreActionTool):

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="vote_on_proposal",
            description="Vote on a governance proposal",
            parameters=[
                ToolParameter(name="proposalId", type="string", description="ID of the proposal to vote on"),
                ToolParameter(name="vote", type="string", description="Vote choice", enum=["yes", "no", "abstain"]),
            ],
        )

    def execute(self, context: ToolContext, **kwargs) -> Any:
        proposal_id = kwargs.get("proposalId")
        vote = kwargs.get("vote")
        if not proposal_id:
            raise self.fail("proposalId is required")
        if vote not in ("yes", "no", "abstain"):
            raise self.fail(f"Invalid vote: {vote}")

        where = {"proposal_id": proposal_id, "user_id": context.agent_id}
        existing = self.store.select_one("proposal_votes", where)
        if existing:
            self.store.update("proposal_votes", {"id": existing["id"]}, {"vote": vote})
            return {"success": True, "message": "Vote updated successfully"}

        record = self.store.insert("proposal_votes", {**where, "vote": vote})
        return {"success": True, "voteId": record.get("id"), "message": "Vote cast successfully"}


class CreateProposalTool(StoreActionTool):

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="create_proposal",
            description="Create a new governance proposal",
            parameters=[
                ToolParameter(name="title", type="string", description="Proposal title"),
                ToolParameter(name="description", type="string", description="Proposal description"),
                ToolParameter(name="communityId", type="string", description="ID of the community"),
            ],
        )

    def execute(self, context: ToolContext, **kwargs) -> Any:
        missing = [k for k in ("title", "description", "communityId") if not kwargs.get(k)]
        if missing:
            raise self.fail(f"Missing required fields: {', '.join(missing)}")
        proposal = self.store.insert("proposals", {
            "title": kwargs["title"],
            "description": kwargs["description"],
            "community_id": kwargs["communityId"],
            "author_id": context.agent_id,
            "status": "active",
        })
        return {"success": True, "proposalId": proposal.get("id"), "message": "Proposal created successfully"}


# ============================================================================
# SPECIAL
# ============================================================================

class DeclineTool(StoreActionTool):
    """Say no with an actual message.

    On a post subject the refusal is posted as a comment; otherwise it is
    sent as a direct message and a ``DECLINE_LEVEL_<n>`` action is recorded
    so later runs can measure how persistent the user is.
    """

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="decline",
            description="Decline a request with an actual message response. Use this when you want to say NO but still respond.",
            parameters=[
                ToolParameter(name="targetId", type="string", description="ID of the user making the request",
                              required=False),
                ToolParameter(name="userId", type="string", description="Alias for targetId", required=False),
                ToolParameter(name="message", type="string", description="The actual decline message to send to the user"),
                ToolParameter(name="reason", type="string", description="Internal reason for declining (for logging)",
                              required=False),
                ToolParameter(
                    name="level",
                    type="number",
                    description="Escalation level: 1=polite first-time, 2=direct/firm, 3=harsh/aggressive",
                    required=False,
                    enum=[1, 2, 3],
                ),
            ],
        )

    def execute(self, context: ToolContext, **kwargs) -> Any:
        target_id = _first(kwargs, "targetId", "userId")
        message = kwargs.get("message")
        reason = kwargs.get("reason")
        level = _decline_level(kwargs.get("level"))
        if not message:
            raise self.fail("message is required - you must provide the actual decline text")

        post_id = context.post_id or context.subject_id
        if post_id and context.subject_type == "post":
            comment = self.post_comment(post_id, context.agent_id, message)
            return {
                "success": True,
                "commentId": comment.get("id"),
                "content": message,
                "message": f"Declined with level {level} via post comment",
            }

        conversation_id = context.conversation_id
        if not conversation_id:
            if not target_id:
                raise self.fail("Either conversationId in context or targetId/userId is required")
            conversation_id = self.find_or_create_conversation(context.agent_id, target_id)

        receiver_id = target_id or self._other_participant(conversation_id, context.agent_id)
        sent = self.send_direct_message(conversation_id, context.agent_id, receiver_id, message)
        action = self.store.insert("agent_actions", {
            "agent_id": context.agent_id,
            "action_type": f"DECLINE_LEVEL_{level}",
            "target_id": receiver_id,
            "metadata": {"reason": reason, "level": level, "messageSent": message},
        })
        return {
            "success": True,
            "actionId": action.get("id"),
            "messageId": sent.get("id"),
            "content": message,
            "message": f"Declined with level {level} and sent message",
        }

    def _other_participant(self, conversation_id: str, agent_id: str) -> str:
        conversation = self.store.select_one("conversations", {"id": conversation_id})
        if not conversation:
            raise self.fail("Could not determine receiver from conversation")
        if conversation.get("user1_id") == agent_id:
            return conversation.get("user2_id")
        return conversation.get("user1_id")


def _decline_level(value: Any) -> int:
    try:
        level = int(value)
    except (TypeError, ValueError):
        return 1
    return min(3, max(1, level))


class IgnoreTool(StoreActionTool):
    """Deliberately do nothing, optionally with a minimal response."""

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="ignore",
            description=(
                "Completely ignore the request with minimal or no response. "
                "Use after multiple rejections or for very hostile users."
            ),
            parameters=[
                ToolParameter(name="targetId", type="string",
                              description="ID of the user being ignored (optional, for tracking)", required=False),
                ToolParameter(name="userId", type="string", description="Alias for targetId", required=False),
                ToolParameter(name="message", type="string",
                              description="Optional minimal response (e.g., '...', 'no', or nothing)", required=False),
                ToolParameter(name="reason", type="string", description="Internal reason for ignoring (for logging)",
                              required=False),
                ToolParameter(name="sendResponse", type="boolean",
                              description="Whether to send any response at all (default: false for true ignore)",
                              required=False, default=False),
            ],
        )

    def execute(self, context: ToolContext, **kwargs) -> Any:
        target_id: Optional[str] = _first(kwargs, "targetId", "userId")
        message = kwargs.get("message")
        reason = kwargs.get("reason")
        send_response = bool(kwargs.get("sendResponse", False))

        if send_response and message and target_id:
            conversation_id = self.find_or_create_conversation(context.agent_id, target_id)
            self.send_direct_message(conversation_id, context.agent_id, target_id, message)

        if target_id:
            self.store.insert("agent_actions", {
                "agent_id": context.agent_id,
                "action_type": "ignore",
                "target_id": target_id,
                "metadata": {"reason": reason, "messageSent": message if send_response else None},
            })

        return {
            "success": True,
            "message": "Ignored request",
            "reason": reason or "Agent decided to ignore",
            "responseSent": send_response and bool(message),
        }


ACTION_TOOL_CLASSES: List[type] = [
    SendMessageTool,
    ReplyTool,
    CreatePostTool,
    CommentTool,
    SendGroupMessageTool,
    LikeTool,
    FollowTool,
    JoinCommunityTool,
    LeaveCommunityTool,
    JoinBattleTool,
    BuyItemTool,
    ConsumeItemTool,
    DoWorkTool,
    VoteOnProposalTool,
    CreateProposalTool,
    DeclineTool,
    IgnoreTool,
]
