from __future__ import annotations

import argparse
import asyncio
import json
import logging
from typing import Sequence

from .config import Settings
from .errors import ConfigurationError
from .services.gateway import build_ai_gateway
from .services.telegram_api import TelegramAPI
from .storage.factory import ChatStores, build_chat_stores, create_chat_stores
from .telegram.client import RelayBot
from .telegram.webhook import create_app

logger = logging.getLogger("relay_bot")


def configure_logging(settings: Settings | None = None) -> None:
    debug = bool(settings and settings.debug_mode)
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if settings is not None and settings.log_path is not None:
        settings.log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(settings.log_path, encoding="utf-8"))
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        handlers=handlers,
        force=True,
    )
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    if debug:
        logging.getLogger("aiosqlite").setLevel(logging.INFO)


def build_bot(settings: Settings) -> RelayBot:
    telegram = TelegramAPI(
        settings.telegram_bot_token,
        base_url=settings.telegram_api_base_url,
        timeout_seconds=settings.telegram_timeout_seconds,
    )
    return RelayBot(
        settings=settings,
        telegram=telegram,
        gateway=build_ai_gateway(settings),
        stores=create_chat_stores(settings),
    )


def _serve(settings: Settings) -> int:
    import uvicorn

    app = create_app(build_bot(settings))
    logger.info("Serving webhook on %s:%s", settings.webhook_host, settings.webhook_port)
    uvicorn.run(app, host=settings.webhook_host, port=settings.webhook_port, log_config=None)
    return 0


async def _set_webhook(settings: Settings) -> int:
    telegram = TelegramAPI(
        settings.telegram_bot_token,
        base_url=settings.telegram_api_base_url,
        timeout_seconds=settings.telegram_timeout_seconds,
    )
    if not settings.webhook_url:
        raise ConfigurationError("WEBHOOK_URL is not configured")
    try:
        response = await telegram.set_webhook(settings.webhook_url)
    finally:
        await telegram.close()
    print(json.dumps(response, ensure_ascii=False, indent=2))
    return 0 if response and response.get("ok") else 1


async def _with_stores(settings: Settings, args: argparse.Namespace) -> int:
    stores: ChatStores = await build_chat_stores(settings)
    try:
        return await _run_store_command(stores, args)
    finally:
        await stores.close()


async def _run_store_command(stores: ChatStores, args: argparse.Namespace) -> int:
    chat_id = args.chat_id
    if args.command == "persona":
        if args.action == "get":
            source = "custom" if stores.personas.has_override(chat_id) else "default"
            print(f"[{source}] {stores.personas.get(chat_id)}")
            return 0
        text = " ".join(args.text).strip()
        saved = await stores.personas.set(chat_id, text)
        print("saved" if saved else "failed to persist personas")
        return 0 if saved else 1

    if args.command == "history":
        if args.action == "clear":
            await stores.history.clear(chat_id)
            print("cleared")
            return 0
        for line in await stores.history.read(chat_id):
            print(line)
        return 0

    records = await stores.usage.read(chat_id)
    print(json.dumps([record.to_dict() for record in records], ensure_ascii=False, indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="relay_bot",
        description="Telegram bot that relays chat messages to an AI backend.",
    )
    sub = parser.add_subparsers(dest="command")
    sub.add_parser("serve", help="Run the webhook server (default)")
    sub.add_parser("set-webhook", help="Register WEBHOOK_URL with Telegram")

    persona = sub.add_parser("persona", help="Inspect or change a chat persona")
    persona_sub = persona.add_subparsers(dest="action", required=True)
    persona_get = persona_sub.add_parser("get")
    persona_get.add_argument("chat_id")
    persona_set = persona_sub.add_parser("set", help="Empty text resets to the default persona")
    persona_set.add_argument("chat_id")
    persona_set.add_argument("text", nargs="*")

    history = sub.add_parser("history", help="Inspect or clear a chat history")
    history_sub = history.add_subparsers(dest="action", required=True)
    for action in ("show", "clear"):
        history_sub.add_parser(action).add_argument("chat_id")

    usage = sub.add_parser("usage", help="Print the token usage ledger of a chat")
    usage_sub = usage.add_subparsers(dest="action", required=True)
    usage_sub.add_parser("show").add_argument("chat_id")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    command = args.command or "serve"
    settings = Settings.from_env()
    configure_logging(settings)

    try:
        if command == "serve":
            settings.validate()
            return _serve(settings)
        if command == "set-webhook":
            settings.validate()
            return asyncio.run(_set_webhook(settings))
        return asyncio.run(_with_stores(settings, args))
    except (ValueError, ConfigurationError) as exc:
        logger.error("%s", exc)
        return 2
    except KeyboardInterrupt:
        logger.info("Shutdown requested, exiting.")
        return 0
