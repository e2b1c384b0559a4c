from .dialogue import (
    PROACTIVE_PERSONA,
    PROACTIVE_PROMPT_TEMPLATE,
    build_history_context,
    build_primary_prompt,
    build_proactive_prompt,
)

__all__ = [
    "PROACTIVE_PERSONA",
    "PROACTIVE_PROMPT_TEMPLATE",
    "build_history_context",
    "build_primary_prompt",
    "build_proactive_prompt",
]
