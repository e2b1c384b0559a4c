from .gateway import AIGateway, build_ai_gateway
from .gemini_client import GeminiClient
from .generation import GenerationFailure, GenerationOutcome, GenerationResult
from .openai_chat_client import OpenAIChatClient
from .telegram_api import TelegramAPI

__all__ = [
    "AIGateway",
    "GeminiClient",
    "GenerationFailure",
    "GenerationOutcome",
    "GenerationResult",
    "OpenAIChatClient",
    "TelegramAPI",
    "build_ai_gateway",
]
