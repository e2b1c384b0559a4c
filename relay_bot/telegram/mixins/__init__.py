from .dialogue_mixin import DialogueMixin
from .proactive_mixin import ProactiveMixin
from .prompt_mixin import PromptMixin

__all__ = [
    "DialogueMixin",
    "ProactiveMixin",
    "PromptMixin",
]
