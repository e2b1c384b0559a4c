"""Reply policy: whether the bot answers a message, and when it joins a group unasked.

Both decisions are pure functions of the inbound message and the policy; the
only state they need (the number of turns since the bot last spoke) is passed in
by the caller.
"""
from __future__ import annotations

from dataclasses import dataclass

from ..config import Settings
from .normalizer import InboundMessage


@dataclass(frozen=True, slots=True)
class EngagementPolicy:
    ai_configured: bool
    respond_to_channel_posts: bool = False
    proactive_enabled: bool = False
    proactive_threshold: int = 10

    @classmethod
    def from_settings(cls, settings: Settings, *, ai_configured: bool) -> "EngagementPolicy":
        return cls(
            ai_configured=ai_configured,
            respond_to_channel_posts=settings.respond_to_channel_posts,
            proactive_enabled=settings.proactive_enabled,
            proactive_threshold=settings.proactive_threshold,
        )


@dataclass(frozen=True, slots=True)
class Respond:
    reason: str


@dataclass(frozen=True, slots=True)
class Ignore:
    reason: str


EngagementDecision = Respond | Ignore


@dataclass(frozen=True, slots=True)
class Trigger:
    since_last_bot_turn: int
    threshold: int


@dataclass(frozen=True, slots=True)
class Skip:
    reason: str


ProactiveDecision = Trigger | Skip


def _address_reason(message: InboundMessage) -> str | None:
    if message.mentions_bot:
        return "mention"
    if message.keyword_found:
        return "keyword"
    if message.chat_type == "private" and not message.sender_is_bot:
        return "private"
    if message.is_reply_to_our_bot:
        return "reply"
    return None


def decide_engagement(message: InboundMessage, policy: EngagementPolicy) -> EngagementDecision:
    if not policy.ai_configured:
        return Ignore("no_backend")
    if not message.text.strip():
        return Ignore("empty_text")
    if message.is_channel_post and not policy.respond_to_channel_posts:
        return Ignore("channel_post")
    reason = _address_reason(message)
    if reason is None:
        return Ignore("not_addressed")
    return Respond(reason)


def proactive_eligible(message: InboundMessage, policy: EngagementPolicy) -> bool:
    return (
        policy.ai_configured
        and policy.proactive_enabled
        and message.is_group_chat
        and not message.is_channel_post
        and not message.sender_is_bot
        and not message.sender_is_our_bot
    )


def decide_proactive(
    message: InboundMessage,
    primary: EngagementDecision,
    since_last_bot_turn: int,
    policy: EngagementPolicy,
) -> ProactiveDecision:
    if isinstance(primary, Respond):
        return Skip("primary_responded")
    if not proactive_eligible(message, policy):
        return Skip("not_eligible")
    if since_last_bot_turn < policy.proactive_threshold:
        return Skip("below_threshold")
    return Trigger(since_last_bot_turn=since_last_bot_turn, threshold=policy.proactive_threshold)
