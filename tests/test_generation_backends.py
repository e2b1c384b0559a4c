from __future__ import annotations

import asyncio
import json
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from relay_bot.config import Settings  # noqa: E402
from relay_bot.errors import ProviderError, TransportError  # noqa: E402
from relay_bot.services.gateway import build_ai_gateway, select_backend  # noqa: E402
from relay_bot.services.gemini_client import GeminiClient  # noqa: E402
from relay_bot.services.generation import GenerationFailure, GenerationResult  # noqa: E402
from relay_bot.services.openai_chat_client import OpenAIChatClient  # noqa: E402
from relay_bot.services.telegram_api import TelegramAPI  # noqa: E402


class _FakeResponse:
    def __init__(self, status: int, body: bytes, charset: str | None = None) -> None:
        self.status = status
        self.charset = charset
        self._body = body

    async def read(self) -> bytes:
        return self._body

    async def __aenter__(self) -> "_FakeResponse":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        return None


class _FakeSession:
    closed = False

    def __init__(self, status: int, body: Any, charset: str | None = None) -> None:
        self.status = status
        self.charset = charset
        if isinstance(body, bytes):
            self.body = body
        else:
            self.body = (body if isinstance(body, str) else json.dumps(body)).encode("utf-8")
        self.calls: list[dict[str, Any]] = []

    def post(self, url: str, *, json: Any = None, headers: Any = None) -> _FakeResponse:  # noqa: A002
        self.calls.append({"url": url, "json": json, "headers": headers})
        return _FakeResponse(self.status, self.body, self.charset)

    async def close(self) -> None:
        self.closed = True


def _gemini() -> GeminiClient:
    return GeminiClient(api_key="g-key", model="gemini-pro", base_url="https://gemini.test/", timeout_seconds=5)


def _openai() -> OpenAIChatClient:
    return OpenAIChatClient(api_key="o-key", model="gpt-4", base_url="https://openai.test/v1", timeout_seconds=5)


def test_gemini_prepends_persona_and_reads_usage_metadata() -> None:
    backend = _gemini()
    captured: dict[str, object] = {}

    async def fake_request(payload):  # type: ignore[no-untyped-def]
        captured["payload"] = payload
        return {
            "candidates": [{"content": {"parts": [{"text": "Ahoy!"}]}}],
            "usageMetadata": {"promptTokenCount": 12, "candidatesTokenCount": 3, "totalTokenCount": 15},
        }

    backend._request = fake_request  # type: ignore[method-assign]

    result = asyncio.run(backend.generate("Current message from alice: hi", "  Be a pirate.  "))

    assert result == GenerationResult(text="Ahoy!", prompt_tokens=12, completion_tokens=3, total_tokens=15)
    text = captured["payload"]["contents"][0]["parts"][0]["text"]  # type: ignore[index]
    assert text == "Be a pirate.\n\n---\n\nCurrent message from alice: hi"
    assert backend._endpoint() == "https://gemini.test/v1beta/models/gemini-pro:generateContent?key=g-key"


def test_gemini_without_persona_sends_prompt_only_and_tolerates_missing_usage() -> None:
    backend = _gemini()

    assert backend.combine_prompt("hello", None) == "hello"
    assert backend.combine_prompt("hello", "   ") == "hello"

    async def fake_request(payload):  # type: ignore[no-untyped-def]
        return {"candidates": [{"content": {"parts": [{"text": "Hi"}]}}]}

    backend._request = fake_request  # type: ignore[method-assign]
    result = asyncio.run(backend.generate("hello"))

    assert result == GenerationResult(text="Hi")


def test_gemini_without_candidates_is_an_empty_failure() -> None:
    backend = _gemini()

    async def fake_request(payload):  # type: ignore[no-untyped-def]
        return {"promptFeedback": {"blockReason": "SAFETY"}}

    backend._request = fake_request  # type: ignore[method-assign]
    result = asyncio.run(backend.generate("hello"))

    assert isinstance(result, GenerationFailure)
    assert result.kind == "empty"
    assert "SAFETY" in result.message


def test_openai_builds_system_turn_and_trims_reply() -> None:
    backend = _openai()
    session = _FakeSession(
        200,
        {
            "choices": [{"message": {"role": "assistant", "content": "  Hello there  "}}],
            "usage": {"prompt_tokens": 20, "completion_tokens": "5", "total_tokens": 25.0},
        },
    )
    backend._session = session  # type: ignore[assignment]

    result = asyncio.run(backend.generate("prompt text", "Be brief."))

    assert result == GenerationResult(text="Hello there", prompt_tokens=20, completion_tokens=5, total_tokens=25)
    call = session.calls[0]
    assert call["url"] == "https://openai.test/v1/chat/completions"
    assert call["headers"]["Authorization"] == "Bearer o-key"
    assert call["json"] == {
        "model": "gpt-4",
        "messages": [
            {"role": "system", "content": "Be brief."},
            {"role": "user", "content": "prompt text"},
        ],
    }


def test_openai_blank_persona_sends_user_turn_only() -> None:
    assert _openai().build_messages("hi", "  ") == [{"role": "user", "content": "hi"}]


def test_openai_error_object_is_a_provider_failure() -> None:
    backend = _openai()
    backend._session = _FakeSession(401, {"error": {"message": "Invalid API key", "type": "auth"}})  # type: ignore[assignment]

    result = asyncio.run(backend.generate("hi"))

    assert result == GenerationFailure("provider", "Invalid API key")


def test_error_object_wins_even_with_http_200() -> None:
    backend = _openai()
    backend._session = _FakeSession(200, {"error": "quota exceeded"})  # type: ignore[assignment]

    async def scenario() -> None:
        await backend._request({})

    try:
        asyncio.run(scenario())
    except ProviderError as exc:
        assert str(exc) == "quota exceeded"
        assert exc.status == 200
    else:
        raise AssertionError("ProviderError was not raised")


def test_non_json_bodies_map_to_transport_or_malformed() -> None:
    gateway_error = _openai()
    gateway_error._session = _FakeSession(502, "<html>Bad gateway</html>")  # type: ignore[assignment]
    garbage = _openai()
    garbage._session = _FakeSession(200, "not json at all")  # type: ignore[assignment]

    assert asyncio.run(gateway_error.generate("hi")).kind == "transport"  # type: ignore[union-attr]
    assert asyncio.run(garbage.generate("hi")).kind == "malformed"  # type: ignore[union-attr]


def test_transport_errors_never_escape_generate() -> None:
    backend = _openai()

    async def fake_request(payload):  # type: ignore[no-untyped-def]
        raise TransportError("openai request timed out")

    backend._request = fake_request  # type: ignore[method-assign]
    result = asyncio.run(backend.generate("hi"))

    assert result == GenerationFailure("transport", "openai request timed out")


def test_openai_blank_content_is_an_empty_failure() -> None:
    backend = _openai()
    backend._session = _FakeSession(200, {"choices": [{"message": {"content": "   "}, "finish_reason": "length"}]})  # type: ignore[assignment]

    result = asyncio.run(backend.generate("hi"))

    assert isinstance(result, GenerationFailure)
    assert result.kind == "empty"


def test_gateway_selection_follows_provider_setting() -> None:
    base = Settings.from_env()
    gemini = replace(base, ai_provider="gemini", gemini_api_key="g", gemini_model="gemini-pro")
    openai = replace(base, ai_provider="openai", openai_api_key="o", openai_model="gpt-4o-mini")

    assert isinstance(select_backend(gemini), GeminiClient)
    gateway = build_ai_gateway(openai)
    assert gateway is not None
    assert (gateway.provider_id, gateway.model) == ("openai", "gpt-4o-mini")
    assert build_ai_gateway(replace(base, ai_provider="gemini", gemini_api_key="")) is None


def test_undecodable_body_is_a_failure_not_an_exception() -> None:
    invalid_utf8 = _openai()
    invalid_utf8._session = _FakeSession(200, b"\xff\xfe\xfa garbage")  # type: ignore[assignment]
    unknown_charset = _gemini()
    unknown_charset._session = _FakeSession(200, b"{}", charset="x-no-such-charset")  # type: ignore[assignment]
    failed_gateway = _openai()
    failed_gateway._session = _FakeSession(503, b"\xff\xfe")  # type: ignore[assignment]

    assert asyncio.run(invalid_utf8.generate("hi")).kind == "malformed"  # type: ignore[union-attr]
    assert asyncio.run(unknown_charset.generate("hi")).kind == "malformed"  # type: ignore[union-attr]
    assert asyncio.run(failed_gateway.generate("hi")).kind == "transport"  # type: ignore[union-attr]


def test_response_charset_is_honoured() -> None:
    backend = _openai()
    body = json.dumps({"choices": [{"message": {"content": "café"}}]}, ensure_ascii=False).encode("latin-1")
    backend._session = _FakeSession(200, body, charset="latin-1")  # type: ignore[assignment]

    assert asyncio.run(backend.generate("hi")) == GenerationResult(text="café")


def test_telegram_client_returns_none_for_undecodable_body() -> None:
    telegram = TelegramAPI("123:abc", base_url="https://telegram.test")
    telegram._session = _FakeSession(200, b"\xff\xfe\xfa")  # type: ignore[assignment]
    decoded = TelegramAPI("123:abc", base_url="https://telegram.test")
    decoded._session = _FakeSession(200, {"ok": True, "result": {"message_id": 5}})  # type: ignore[assignment]

    assert asyncio.run(telegram.send_message(1, "hello")) is None
    assert asyncio.run(decoded.send_message(1, "hello", reply_to_message_id=3)) == {"ok": True, "result": {"message_id": 5}}
    assert decoded._session.calls[0]["json"] == {"chat_id": 1, "text": "hello", "reply_to_message_id": 3}  # type: ignore[union-attr]
