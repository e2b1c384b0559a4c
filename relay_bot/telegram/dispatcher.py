from __future__ import annotations

import logging
from typing import Any

from ..services.generation import GenerationResult
from ..services.telegram_api import TelegramAPI
from ..storage.history import HistoryStore
from ..storage.usage import UsageLedger
from .common import TELEGRAM_MAX_MESSAGE_CHARS, chunk_text, preview
from .normalizer import InboundMessage

logger = logging.getLogger("relay_bot")


def reply_target(message: InboundMessage, *, proactive: bool = False) -> int | None:
    """Message id the reply should quote, or ``None`` for a plain message."""
    if proactive or message.is_channel_post or message.chat_type == "private":
        return None
    return message.message_id


class OutboundDispatcher:
    """Sends generated replies and records them once Telegram has accepted them."""

    def __init__(
        self,
        telegram: TelegramAPI,
        history: HistoryStore,
        usage: UsageLedger,
        *,
        provider_id: str,
        model: str,
        max_chars: int = TELEGRAM_MAX_MESSAGE_CHARS,
    ) -> None:
        self.telegram = telegram
        self.history = history
        self.usage = usage
        self.provider_id = provider_id
        self.model = model
        self.max_chars = max_chars

    async def _send_chunks(self, chat_id: int | str, text: str, reply_to: int | None) -> bool:
        for index, chunk in enumerate(chunk_text(text, self.max_chars)):
            response: dict[str, Any] | None = await self.telegram.send_message(
                chat_id,
                chunk,
                reply_to_message_id=reply_to if index == 0 else None,
            )
            if not response or not response.get("ok"):
                return False
        return True

    async def deliver(self, message: InboundMessage, result: GenerationResult, *, proactive: bool = False) -> bool:
        reply_to = reply_target(message, proactive=proactive)
        sent = await self._send_chunks(message.chat_id, result.text, reply_to)
        if not sent:
            logger.warning(
                "[reply.unsent] chat=%s proactive=%s text=\"%s\"",
                message.chat_id,
                proactive,
                preview(result.text),
            )
            return False

        await self.history.append(message.chat_id, self.history.bot_prefix + result.text)
        await self.usage.record(
            message.chat_id,
            self.provider_id,
            self.model,
            prompt_tokens=result.prompt_tokens,
            completion_tokens=result.completion_tokens,
            total_tokens=result.total_tokens,
        )
        logger.info(
            "[reply.sent] chat=%s proactive=%s reply_to=%s text=\"%s\"",
            message.chat_id,
            proactive,
            reply_to,
            preview(result.text),
        )
        return True

    async def send_fallback(self, message: InboundMessage, text: str) -> bool:
        # The fallback is not a bot turn: nothing is written to history or usage.
        if not text:
            return False
        response = await self.telegram.send_message(message.chat_id, text, reply_to_message_id=message.message_id)
        return bool(response and response.get("ok"))
