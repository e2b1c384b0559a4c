from __future__ import annotations

import re
from typing import Any, Sequence

from .json_loader import load_prompt_json

_PLACEHOLDER = re.compile(r"\{(sender|text)\}")

_DEFAULTS: dict[str, Any] = {
    "history_context_header": "Context of previous messages:",
    "current_message_template": "Current message from {sender}: {text}",
    "proactive_persona": (
        "You are an AI assistant. The group conversation has been going on without you for a while. "
        "Join the discussion politely, briefly and on topic: make a relevant comment or ask a clarifying "
        "question based on the latest messages. Do not repeat what has already been said. "
        "Be a natural and useful participant."
    ),
    "proactive_prompt_template": (
        "Context of the latest chat messages:\n{history}\n\n"
        "Your task: read the latest messages carefully. Politely, briefly and to the point join the "
        "current group discussion. Make a relevant comment or ask a clarifying question. "
        "Do not introduce yourself or mention your role unless necessary."
    ),
}


def _cfg() -> dict[str, Any]:
    return load_prompt_json("dialogue.json", _DEFAULTS)


_CFG = _cfg()

PROACTIVE_PERSONA = str(_CFG.get("proactive_persona", _DEFAULTS["proactive_persona"]))
PROACTIVE_PROMPT_TEMPLATE = str(_CFG.get("proactive_prompt_template", _DEFAULTS["proactive_prompt_template"]))


def build_history_context(history: Sequence[str]) -> str:
    if not history:
        return ""
    header = str(_cfg().get("history_context_header", _DEFAULTS["history_context_header"]))
    return header + "\n" + "\n".join(history) + "\n\n"


def build_primary_prompt(history: Sequence[str], sender_label: str, text: str) -> str:
    template = str(_cfg().get("current_message_template", _DEFAULTS["current_message_template"]))
    values = {"sender": sender_label, "text": text}
    # One pass, so a placeholder inside a substituted value stays literal.
    current = _PLACEHOLDER.sub(lambda match: values[match.group(1)], template)
    return build_history_context(history) + current


def build_proactive_prompt(history: Sequence[str], template: str) -> str:
    # str.replace keeps stray braces in user-supplied templates harmless.
    block = "\n".join(history).rstrip()
    return template.replace("{history}", block)
