from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping

from ..config import Settings
from ..errors import ConfigurationError
from ..services.gateway import AIGateway
from ..services.telegram_api import TelegramAPI
from ..storage.factory import ChatStores
from ..storage.kv import KeyedLocks
from .dispatcher import OutboundDispatcher
from .engagement import EngagementPolicy, Respond, decide_engagement
from .mixins.dialogue_mixin import DialogueMixin
from .mixins.proactive_mixin import ProactiveMixin
from .normalizer import InboundMessage, normalize_update

logger = logging.getLogger("relay_bot")


class RelayBot(
    DialogueMixin,
    ProactiveMixin,
):
    """Processes one Telegram update at a time per chat.

    ``handle_update`` returns a short outcome label (``skipped``, ``ignored``,
    ``replied``, ``fallback``, ``proactive`` or ``unsent``) used for logging and tests.
    """

    def __init__(
        self,
        settings: Settings,
        telegram: TelegramAPI,
        gateway: AIGateway | None,
        stores: ChatStores,
    ) -> None:
        self.settings = settings
        self.telegram = telegram
        self.gateway = gateway
        self.stores = stores
        self.policy = EngagementPolicy.from_settings(settings, ai_configured=gateway is not None)

        self.dispatcher: OutboundDispatcher | None = None
        if gateway is not None:
            self.dispatcher = OutboundDispatcher(
                telegram,
                stores.history,
                stores.usage,
                provider_id=gateway.provider_id,
                model=gateway.model,
            )

        self.chat_locks = KeyedLocks()

    async def start(self) -> None:
        await self.stores.personas.load()
        await self.telegram.start()
        if self.gateway is not None:
            await self.gateway.start()

    async def close(self) -> None:
        if self.gateway is not None:
            await self._run_shutdown_step("gateway.close", self.gateway.close(), timeout=6.0)
        await self._run_shutdown_step("telegram.close", self.telegram.close(), timeout=6.0)
        await self._run_shutdown_step("stores.close", self.stores.close(), timeout=6.0)

    async def _run_shutdown_step(self, label: str, coro: object, *, timeout: float) -> None:
        try:
            await asyncio.wait_for(coro, timeout=timeout)  # type: ignore[arg-type]
        except asyncio.TimeoutError:
            logger.warning("Shutdown step timed out: %s", label)
        except Exception as exc:
            logger.warning("Shutdown step failed: %s (%s)", label, exc)

    async def register_webhook(self, url: str | None = None) -> dict[str, Any] | None:
        target = (url or self.settings.webhook_url).strip()
        if not target:
            raise ConfigurationError("WEBHOOK_URL is not configured")
        return await self.telegram.set_webhook(target)

    async def handle_update(self, update: Mapping[str, Any]) -> str:
        message = normalize_update(
            update,
            bot_username=self.settings.telegram_bot_username,
            keywords=self.settings.monitored_keywords,
        )
        if message is None:
            return "skipped"

        async with self.chat_locks.hold(str(message.chat_id)):
            return await self._process_message(message)

    async def _process_message(self, message: InboundMessage) -> str:
        if message.sender_is_our_bot:
            # Our own replies are recorded by the dispatcher when they are sent.
            logger.debug("[msg.own] chat=%s", message.chat_id)
        else:
            await self.stores.history.append(message.chat_id, message.history_line)

        decision = decide_engagement(message, self.policy)
        if isinstance(decision, Respond):
            return await self._run_primary_turn(message, decision)

        logger.debug("[msg.ignore] chat=%s reason=%s", message.chat_id, decision.reason)
        return await self._maybe_join_conversation(message, decision)
