from .client import RelayBot
from .dispatcher import OutboundDispatcher, reply_target
from .engagement import (
    EngagementDecision,
    EngagementPolicy,
    Ignore,
    ProactiveDecision,
    Respond,
    Skip,
    Trigger,
    decide_engagement,
    decide_proactive,
    proactive_eligible,
)
from .normalizer import InboundMessage, normalize_update
from .webhook import create_app

__all__ = [
    "EngagementDecision",
    "EngagementPolicy",
    "Ignore",
    "InboundMessage",
    "OutboundDispatcher",
    "ProactiveDecision",
    "RelayBot",
    "Respond",
    "Skip",
    "Trigger",
    "create_app",
    "decide_engagement",
    "decide_proactive",
    "normalize_update",
    "proactive_eligible",
    "reply_target",
]
