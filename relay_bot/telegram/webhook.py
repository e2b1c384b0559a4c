from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse

from ..errors import ConfigurationError
from .client import RelayBot

logger = logging.getLogger("relay_bot")


def create_app(bot: RelayBot) -> FastAPI:
    """Webhook front end; the bot's HTTP sessions live as long as the app."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await bot.start()
        try:
            yield
        finally:
            await bot.close()

    app = FastAPI(title="Telegram relay bot", lifespan=lifespan)
    app.state.bot = bot

    async def receive_update(request: Request):
        raw = await request.body()
        if not raw.strip():
            logger.warning("[webhook.reject] empty body")
            return PlainTextResponse("Empty request body", status_code=status.HTTP_400_BAD_REQUEST)
        try:
            update = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.warning("[webhook.reject] invalid JSON body=%s", raw[:200])
            return PlainTextResponse("Invalid JSON", status_code=status.HTTP_400_BAD_REQUEST)
        if not isinstance(update, dict):
            logger.warning("[webhook.reject] JSON body is not an object")
            return PlainTextResponse("Invalid JSON", status_code=status.HTTP_400_BAD_REQUEST)

        try:
            outcome = await bot.handle_update(update)
        except Exception as exc:
            # Telegram redelivers on non-2xx, so the update is acknowledged anyway.
            logger.exception("[webhook.error] update_id=%s failed: %s", update.get("update_id"), exc)
            outcome = "error"
        logger.debug("[webhook.done] update_id=%s outcome=%s", update.get("update_id"), outcome)
        return PlainTextResponse("OK")

    app.add_api_route("/webhook", receive_update, methods=["POST"])
    app.add_api_route("/", receive_update, methods=["POST"])

    @app.get("/set-webhook")
    async def set_webhook_route():
        try:
            response = await bot.register_webhook()
        except ConfigurationError as exc:
            return JSONResponse({"ok": False, "description": str(exc)}, status_code=status.HTTP_400_BAD_REQUEST)
        if response is None:
            return JSONResponse(
                {"ok": False, "description": "Telegram API request failed"},
                status_code=status.HTTP_502_BAD_GATEWAY,
            )
        return JSONResponse(response)

    @app.get("/", response_class=PlainTextResponse)
    async def index():
        return "Telegram relay bot is running."

    return app
