from __future__ import annotations

import logging

from ..config import Settings
from ..errors import ConfigurationError
from .gemini_client import GeminiClient
from .generation import GenerationBackend, GenerationOutcome
from .openai_chat_client import OpenAIChatClient

logger = logging.getLogger("relay_bot")


class AIGateway:
    """The single text-generation backend chosen for this process."""

    def __init__(self, backend: GenerationBackend) -> None:
        self.backend = backend

    @property
    def provider_id(self) -> str:
        return self.backend.provider_id

    @property
    def model(self) -> str:
        return self.backend.model

    async def start(self) -> None:
        await self.backend.start()

    async def close(self) -> None:
        await self.backend.close()

    async def generate(self, prompt: str, persona: str | None = None) -> GenerationOutcome:
        return await self.backend.generate(prompt, persona)


def select_backend(settings: Settings) -> GenerationBackend:
    provider = settings.ai_provider
    if provider == "gemini":
        if not settings.gemini_api_key:
            raise ConfigurationError("AI_PROVIDER=gemini but GEMINI_API_KEY is empty")
        return GeminiClient(
            api_key=settings.gemini_api_key,
            model=settings.gemini_model,
            base_url=settings.gemini_base_url,
            timeout_seconds=settings.ai_timeout_seconds,
        )
    if provider == "openai":
        if not settings.openai_api_key:
            raise ConfigurationError("AI_PROVIDER=openai but OPENAI_API_KEY is empty")
        return OpenAIChatClient(
            api_key=settings.openai_api_key,
            model=settings.openai_model,
            base_url=settings.openai_base_url,
            timeout_seconds=settings.ai_timeout_seconds,
        )
    raise ConfigurationError(f"Unknown AI_PROVIDER: {provider!r}")


def build_ai_gateway(settings: Settings) -> AIGateway | None:
    """Return the configured gateway, or ``None`` (logged once) when no backend is usable."""
    try:
        backend = select_backend(settings)
    except ConfigurationError as exc:
        logger.error("No AI backend configured, replies are disabled: %s", exc)
        return None
    logger.info("AI backend: %s (model=%s)", backend.provider_id, backend.model)
    return AIGateway(backend)
