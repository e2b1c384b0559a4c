from __future__ import annotations

import logging

from ...services.generation import GenerationFailure
from ..common import preview
from ..engagement import Respond
from ..normalizer import InboundMessage
from .prompt_mixin import PromptMixin

logger = logging.getLogger("relay_bot")


class DialogueMixin(PromptMixin):
    async def _run_primary_turn(self, message: InboundMessage, decision: Respond) -> str:
        assert self.gateway is not None and self.dispatcher is not None
        prompt, persona = await self._build_primary_request(message)
        logger.info(
            "[msg.respond] chat=%s reason=%s sender=%s text=\"%s\"",
            message.chat_id,
            decision.reason,
            message.sender_label,
            preview(message.text, 120),
        )

        outcome = await self.gateway.generate(prompt, persona)
        if isinstance(outcome, GenerationFailure):
            logger.warning("[msg.fallback] chat=%s kind=%s", message.chat_id, outcome.kind)
            await self.dispatcher.send_fallback(message, self.settings.ai_error_fallback_message)
            return "fallback"

        sent = await self.dispatcher.deliver(message, outcome)
        return "replied" if sent else "unsent"
