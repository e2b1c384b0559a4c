from __future__ import annotations

from typing import Any

from .generation import EmptyReplyError, GenerationBackend, GenerationResult, token_count


class GeminiClient(GenerationBackend):
    """Gemini ``generateContent`` backend.

    The API receives one text blob, so the persona is prepended to the prompt
    instead of being sent as a separate instruction.
    """

    provider_id = "gemini"

    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        base_url: str = "https://generativelanguage.googleapis.com",
        timeout_seconds: int = 60,
    ) -> None:
        super().__init__(api_key=api_key, model=model, base_url=base_url, timeout_seconds=timeout_seconds)

    def _endpoint(self) -> str:
        return f"{self.base_url}/v1beta/models/{self.model}:generateContent?key={self.api_key}"

    def combine_prompt(self, prompt: str, persona: str | None) -> str:
        if not self._has_persona(persona):
            return prompt
        assert persona is not None
        return persona.strip() + self.persona_delimiter + prompt

    def _build_payload(self, prompt: str, persona: str | None) -> dict[str, Any]:
        return {"contents": [{"parts": [{"text": self.combine_prompt(prompt, persona)}]}]}

    @staticmethod
    def _extract_text(data: dict[str, Any]) -> str:
        candidates = data.get("candidates") or []
        if not isinstance(candidates, list) or not candidates or not isinstance(candidates[0], dict):
            prompt_feedback = data.get("promptFeedback") or {}
            block_reason = prompt_feedback.get("blockReason") if isinstance(prompt_feedback, dict) else None
            if block_reason:
                raise EmptyReplyError(f"Gemini blocked response: {block_reason}")
            raise EmptyReplyError("Gemini returned no candidates")

        first = candidates[0]
        content = first.get("content") or {}
        parts = content.get("parts") if isinstance(content, dict) else None
        if isinstance(parts, list) and parts and isinstance(parts[0], dict):
            text = parts[0].get("text")
            if isinstance(text, str) and text.strip():
                return text

        finish_reason = first.get("finishReason")
        if finish_reason:
            raise EmptyReplyError(f"Gemini empty response (finishReason={finish_reason})")
        raise EmptyReplyError("Gemini empty response")

    def _parse_reply(self, data: dict[str, Any]) -> GenerationResult:
        text = self._extract_text(data)
        usage = data.get("usageMetadata")
        if not isinstance(usage, dict):
            usage = {}
        return GenerationResult(
            text=text,
            prompt_tokens=token_count(usage.get("promptTokenCount")),
            completion_tokens=token_count(usage.get("candidatesTokenCount")),
            total_tokens=token_count(usage.get("totalTokenCount")),
        )
