from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from .common import utf16_slice

logger = logging.getLogger("relay_bot")

CHAT_TYPES = frozenset({"private", "group", "supergroup", "channel"})


@dataclass(frozen=True, slots=True)
class InboundMessage:
    chat_id: int | str
    text: str
    sender_label: str
    sender_is_bot: bool
    sender_is_our_bot: bool
    chat_type: str
    is_channel_post: bool
    mentions_bot: bool
    keyword_found: bool
    is_reply_to_our_bot: bool
    message_id: int | None
    history_line: str

    @property
    def is_group_chat(self) -> bool:
        return self.chat_type in {"group", "supergroup"}


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def resolve_sender(body: Mapping[str, Any], chat_type: str) -> tuple[str, bool, str | None]:
    """Return ``(label, is_bot, username)`` for the author of ``body``."""
    sender = body.get("from")
    if isinstance(sender, dict):
        username = sender.get("username") if isinstance(sender.get("username"), str) else None
        label = username or sender.get("first_name") or "UserWithoutUsername"
        return str(label), sender.get("is_bot") is True, username

    sender_chat = body.get("sender_chat")
    if isinstance(sender_chat, dict):
        # Posted in a group on behalf of a channel; not a bot in the is_bot sense.
        return str(sender_chat.get("title") or "ChannelAsUser"), False, None

    if chat_type == "channel":
        label = str(_as_dict(body.get("chat")).get("title") or "Channel")
        signature = body.get("author_signature")
        if isinstance(signature, str) and signature:
            label = signature
        return label, False, None

    return "UnknownUser", False, None


def mentions_username(text: str, entities: Any, bot_username: str) -> bool:
    if not isinstance(entities, list):
        return False
    for entity in entities:
        if not isinstance(entity, dict) or entity.get("type") != "mention":
            continue
        offset, length = entity.get("offset"), entity.get("length")
        if not isinstance(offset, int) or not isinstance(length, int):
            continue
        if utf16_slice(text, offset, length).lstrip("@") == bot_username:
            return True
    return False


def find_keyword(text: str, keywords: Iterable[str]) -> str | None:
    haystack = text.casefold()
    for keyword in keywords:
        if keyword and keyword.casefold() in haystack:
            return keyword
    return None


def is_reply_to_username(body: Mapping[str, Any], bot_username: str) -> bool:
    quoted_from = _as_dict(_as_dict(body.get("reply_to_message")).get("from"))
    return quoted_from.get("username") == bot_username and quoted_from.get("is_bot") is True


def normalize_update(
    update: Mapping[str, Any],
    *,
    bot_username: str,
    keywords: Iterable[str] = (),
) -> InboundMessage | None:
    """Build an ``InboundMessage`` from a raw Telegram update.

    Returns ``None`` when the update has no ``message``/``channel_post`` body or
    the body carries no chat id or no text (stickers, photos, service messages).
    """
    body = update.get("message")
    is_channel_post = False
    if not isinstance(body, dict):
        body = update.get("channel_post")
        is_channel_post = isinstance(body, dict)
    if not isinstance(body, dict):
        logger.info("[update.skip] no message or channel_post keys=%s", sorted(update.keys()))
        return None

    chat = _as_dict(body.get("chat"))
    chat_id = chat.get("id")
    text = body.get("text")
    if chat_id is None or isinstance(chat_id, bool) or not isinstance(text, str):
        logger.debug("[update.skip] no chat id or text in update")
        return None

    chat_type = str(chat.get("type") or "")
    if chat_type and chat_type not in CHAT_TYPES:
        logger.debug("[update.chat_type] unexpected chat type %s", chat_type)

    label, sender_is_bot, username = resolve_sender(body, chat_type)
    sender_is_our_bot = sender_is_bot and username is not None and username == bot_username

    mentions_bot = False
    if not is_channel_post:
        mentions_bot = mentions_username(text, body.get("entities"), bot_username)

    keyword_found = False
    keyword_list = [keyword for keyword in keywords if keyword]
    if not is_channel_post and not mentions_bot and not sender_is_bot and keyword_list:
        matched = find_keyword(text, keyword_list)
        if matched is not None:
            keyword_found = True
            logger.info("[update.keyword] chat=%s keyword=%s", chat_id, matched)

    signature = body.get("author_signature")
    if is_channel_post and not (isinstance(signature, str) and signature):
        history_line = text
    else:
        history_line = f"{label}: {text}"

    message_id = body.get("message_id")
    return InboundMessage(
        chat_id=chat_id,
        text=text,
        sender_label=label,
        sender_is_bot=sender_is_bot,
        sender_is_our_bot=sender_is_our_bot,
        chat_type=chat_type,
        is_channel_post=is_channel_post,
        mentions_bot=mentions_bot,
        keyword_found=keyword_found,
        is_reply_to_our_bot=is_reply_to_username(body, bot_username),
        message_id=message_id if isinstance(message_id, int) and not isinstance(message_id, bool) else None,
        history_line=history_line,
    )
