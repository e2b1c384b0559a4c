from __future__ import annotations

import re

TELEGRAM_MAX_MESSAGE_CHARS = 4096


def collapse_spaces(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def preview(text: str, limit: int = 80) -> str:
    flat = collapse_spaces(text)
    if len(flat) <= limit:
        return flat
    return flat[: max(0, limit - 3)].rstrip() + "..."


def chunk_text(text: str, limit: int = TELEGRAM_MAX_MESSAGE_CHARS) -> list[str]:
    if len(text) <= limit:
        return [text]
    parts: list[str] = []
    current = ""
    for line in text.splitlines(keepends=True):
        if len(current) + len(line) <= limit:
            current += line
            continue
        if current:
            parts.append(current)
            current = ""
        if len(line) <= limit:
            current = line
        else:
            for i in range(0, len(line), limit):
                parts.append(line[i : i + limit])
    if current:
        parts.append(current)
    return parts


def utf16_slice(text: str, offset: int, length: int) -> str:
    """Slice ``text`` by UTF-16 code units, the unit Telegram uses for entity offsets."""
    encoded = text.encode("utf-16-le")
    start = max(0, offset) * 2
    end = start + max(0, length) * 2
    return encoded[start:end].decode("utf-16-le", errors="ignore")
