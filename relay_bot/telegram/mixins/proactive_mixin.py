from __future__ import annotations

import logging

from ...services.generation import GenerationFailure
from ..engagement import EngagementDecision, Trigger, decide_proactive, proactive_eligible
from ..normalizer import InboundMessage
from .prompt_mixin import PromptMixin

logger = logging.getLogger("relay_bot")


class ProactiveMixin(PromptMixin):
    async def _maybe_join_conversation(self, message: InboundMessage, primary: EngagementDecision) -> str:
        if not proactive_eligible(message, self.policy):
            return "ignored"
        since_last = await self.stores.history.count_since_last_bot_turn(message.chat_id)
        decision = decide_proactive(message, primary, since_last, self.policy)
        if not isinstance(decision, Trigger):
            logger.debug("[proactive.skip] chat=%s reason=%s since_last=%s", message.chat_id, decision.reason, since_last)
            return "ignored"

        assert self.gateway is not None and self.dispatcher is not None
        logger.info(
            "[proactive.trigger] chat=%s since_last=%s threshold=%s",
            message.chat_id,
            decision.since_last_bot_turn,
            decision.threshold,
        )
        prompt, persona = await self._build_proactive_request(message)
        outcome = await self.gateway.generate(prompt, persona)
        if isinstance(outcome, GenerationFailure):
            # No fallback text for an unsolicited reply.
            logger.warning("[proactive.failed] chat=%s kind=%s", message.chat_id, outcome.kind)
            return "ignored"

        sent = await self.dispatcher.deliver(message, outcome, proactive=True)
        return "proactive" if sent else "unsent"
