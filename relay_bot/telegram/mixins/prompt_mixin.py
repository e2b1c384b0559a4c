from __future__ import annotations

from ...prompts.dialogue import build_primary_prompt, build_proactive_prompt
from ..normalizer import InboundMessage


class PromptMixin:
    async def _build_primary_request(self, message: InboundMessage) -> tuple[str, str]:
        history = await self.stores.history.read(message.chat_id)
        prompt = build_primary_prompt(history, message.sender_label, message.text)
        return prompt, self.stores.personas.get(message.chat_id)

    async def _build_proactive_request(self, message: InboundMessage) -> tuple[str, str | None]:
        history = await self.stores.history.read(message.chat_id)
        prompt = build_proactive_prompt(history, self.settings.proactive_prompt_template)
        return prompt, self.settings.proactive_persona
