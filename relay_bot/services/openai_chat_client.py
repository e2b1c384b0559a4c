from __future__ import annotations

from typing import Any

from .generation import EmptyReplyError, GenerationBackend, GenerationResult, token_count


class OpenAIChatClient(GenerationBackend):
    """OpenAI-compatible ``/chat/completions`` backend; the persona becomes a system turn."""

    provider_id = "openai"

    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        base_url: str = "https://api.openai.com/v1",
        timeout_seconds: int = 60,
    ) -> None:
        super().__init__(api_key=api_key, model=model, base_url=base_url, timeout_seconds=timeout_seconds)

    def _endpoint(self) -> str:
        return f"{self.base_url}/chat/completions"

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def build_messages(self, prompt: str, persona: str | None) -> list[dict[str, str]]:
        messages: list[dict[str, str]] = []
        if self._has_persona(persona):
            assert persona is not None
            messages.append({"role": "system", "content": persona})
        messages.append({"role": "user", "content": prompt})
        return messages

    def _build_payload(self, prompt: str, persona: str | None) -> dict[str, Any]:
        return {"model": self.model, "messages": self.build_messages(prompt, persona)}

    @staticmethod
    def _extract_text(data: dict[str, Any]) -> str:
        choices = data.get("choices")
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            raise EmptyReplyError("OpenAI returned no choices")
        message = choices[0].get("message")
        content = message.get("content") if isinstance(message, dict) else None
        if isinstance(content, str) and content.strip():
            return content.strip()
        finish_reason = choices[0].get("finish_reason")
        if finish_reason:
            raise EmptyReplyError(f"OpenAI empty response (finish_reason={finish_reason})")
        raise EmptyReplyError("OpenAI empty response")

    def _parse_reply(self, data: dict[str, Any]) -> GenerationResult:
        text = self._extract_text(data)
        usage = data.get("usage")
        if not isinstance(usage, dict):
            usage = {}
        return GenerationResult(
            text=text,
            prompt_tokens=token_count(usage.get("prompt_tokens")),
            completion_tokens=token_count(usage.get("completion_tokens")),
            total_tokens=token_count(usage.get("total_tokens")),
        )
