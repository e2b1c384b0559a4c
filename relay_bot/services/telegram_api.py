from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import aiohttp

logger = logging.getLogger("relay_bot")


class TelegramAPI:
    """Minimal Bot API client; failures are logged and reported as ``None``."""

    def __init__(
        self,
        token: str,
        *,
        base_url: str = "https://api.telegram.org",
        timeout_seconds: int = 20,
    ) -> None:
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=max(1, int(timeout_seconds)))
        self._session: aiohttp.ClientSession | None = None

    async def start(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    def _endpoint(self, method: str) -> str:
        return f"{self.base_url}/bot{self.token}/{method}"

    async def _request(self, method: str, params: dict[str, Any]) -> dict[str, Any] | None:
        if self._session is None or self._session.closed:
            await self.start()
        assert self._session is not None

        try:
            async with self._session.post(self._endpoint(method), json=params) as response:
                status = response.status
                charset = response.charset or "utf-8"
                body = await response.read()
        except asyncio.CancelledError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.error("[telegram.%s] request failed: %s", method, exc)
            return None

        try:
            text = body.decode(charset)
        except (UnicodeDecodeError, LookupError) as exc:
            logger.error("[telegram.%s] undecodable response status=%s charset=%s: %s", method, status, charset, exc)
            return None

        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            logger.error("[telegram.%s] non-JSON response status=%s body=%s", method, status, text[:300])
            return None
        if not isinstance(data, dict):
            logger.error("[telegram.%s] non-object response status=%s", method, status)
            return None
        if not data.get("ok"):
            logger.error(
                "[telegram.%s] rejected status=%s description=%s",
                method,
                status,
                data.get("description"),
            )
        else:
            logger.debug("[telegram.%s] ok", method)
        return data

    async def send_message(
        self,
        chat_id: int | str,
        text: str,
        reply_to_message_id: int | None = None,
    ) -> dict[str, Any] | None:
        params: dict[str, Any] = {"chat_id": chat_id, "text": text}
        if reply_to_message_id:
            params["reply_to_message_id"] = reply_to_message_id
        logger.info(
            "[telegram.send] chat=%s reply_to=%s chars=%s",
            chat_id,
            reply_to_message_id,
            len(text),
        )
        return await self._request("sendMessage", params)

    async def set_webhook(self, url: str) -> dict[str, Any] | None:
        logger.info("[telegram.set_webhook] url=%s", url)
        return await self._request("setWebhook", {"url": url, "drop_pending_updates": True})
