from __future__ import annotations

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any

logger = logging.getLogger("relay_bot.prompts")

# path -> (mtime_ns, merged payload)
_CACHE: dict[str, tuple[int | None, dict[str, Any]]] = {}


def prompts_data_dir() -> Path:
    override = os.getenv("RELAY_BOT_PROMPTS_DIR", "").strip()
    if override:
        return Path(override).expanduser()
    return Path(__file__).with_name("data")


def _merge(base: Any, override: Any) -> Any:
    if isinstance(base, dict) and isinstance(override, dict):
        merged = copy.deepcopy(base)
        for key, value in override.items():
            merged[key] = _merge(merged[key], value) if key in merged else copy.deepcopy(value)
        return merged
    return copy.deepcopy(override)


def load_prompt_json(filename: str, defaults: dict[str, Any]) -> dict[str, Any]:
    """Return ``defaults`` deep-merged with the JSON override file, cached by mtime."""
    path = prompts_data_dir() / filename
    cache_key = str(path.resolve())

    mtime_ns: int | None = None
    try:
        mtime_ns = path.stat().st_mtime_ns
    except OSError:
        mtime_ns = None

    cached = _CACHE.get(cache_key)
    if cached is not None and cached[0] == mtime_ns:
        return copy.deepcopy(cached[1])

    result = copy.deepcopy(defaults)
    if mtime_ns is None:
        logger.debug("Prompt override not found: %s (using defaults)", path)
    else:
        try:
            payload = json.loads(path.read_text(encoding="utf-8-sig"))
        except (OSError, ValueError) as exc:
            logger.warning("Failed to parse prompt override %s (%s). Using defaults.", path, exc)
            payload = None
        if isinstance(payload, dict):
            result = _merge(result, payload)
        elif payload is not None:
            logger.warning("Prompt override root must be an object: %s (using defaults)", path)

    _CACHE[cache_key] = (mtime_ns, copy.deepcopy(result))
    return result
