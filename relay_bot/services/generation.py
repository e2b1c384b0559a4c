from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Literal

import aiohttp

from ..errors import MalformedResponseError, ProviderError, TransportError

logger = logging.getLogger("relay_bot")

FailureKind = Literal["transport", "malformed", "provider", "empty"]


@dataclass(frozen=True, slots=True)
class GenerationResult:
    text: str
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None


@dataclass(frozen=True, slots=True)
class GenerationFailure:
    kind: FailureKind
    message: str


GenerationOutcome = GenerationResult | GenerationFailure


class EmptyReplyError(MalformedResponseError):
    """The backend answered without any usable reply text."""


def token_count(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def api_error_message(data: Any) -> str | None:
    if not isinstance(data, dict):
        return None
    error = data.get("error")
    if isinstance(error, dict):
        message = error.get("message")
        if isinstance(message, str) and message.strip():
            return message.strip()
        return json.dumps(error, ensure_ascii=False)[:500]
    if isinstance(error, str) and error.strip():
        return error.strip()
    return None


class GenerationBackend:
    """Shared aiohttp plumbing for the text-generation strategies.

    Subclasses build the request payload and read the reply; ``generate`` turns
    every failure into a ``GenerationFailure`` so callers never see an exception.
    Requests are made once, without retries, under a total timeout.
    """

    provider_id = "abstract"
    persona_delimiter = "\n\n---\n\n"

    def __init__(self, *, api_key: str, model: str, base_url: str, timeout_seconds: int = 60) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=max(1, int(timeout_seconds)))
        self._session: aiohttp.ClientSession | None = None

    async def start(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    def _endpoint(self) -> str:
        raise NotImplementedError

    def _headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json"}

    def _build_payload(self, prompt: str, persona: str | None) -> dict[str, Any]:
        raise NotImplementedError

    def _parse_reply(self, data: dict[str, Any]) -> GenerationResult:
        raise NotImplementedError

    @staticmethod
    def _has_persona(persona: str | None) -> bool:
        return persona is not None and bool(persona.strip())

    async def _request(self, payload: dict[str, Any]) -> dict[str, Any]:
        if self._session is None or self._session.closed:
            await self.start()
        assert self._session is not None

        try:
            async with self._session.post(self._endpoint(), json=payload, headers=self._headers()) as response:
                status = response.status
                charset = response.charset or "utf-8"
                body = await response.read()
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError as exc:
            raise TransportError(f"{self.provider_id} request timed out") from exc
        except aiohttp.ClientError as exc:
            raise TransportError(f"{self.provider_id} request failed: {exc}") from exc

        try:
            text = body.decode(charset)
        except (UnicodeDecodeError, LookupError) as exc:
            if status != 200:
                raise TransportError(f"{self.provider_id} error {status}: undecodable body") from exc
            raise MalformedResponseError(f"{self.provider_id} returned undecodable body ({charset}): {exc}") from exc

        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            if status != 200:
                raise TransportError(f"{self.provider_id} error {status}: {text[:500]}") from exc
            raise MalformedResponseError(f"{self.provider_id} returned non-JSON body: {text[:200]}") from exc

        message = api_error_message(data)
        if message is not None:
            raise ProviderError(message, status=status)
        if status != 200:
            raise TransportError(f"{self.provider_id} error {status}: {text[:500]}")
        if not isinstance(data, dict):
            raise MalformedResponseError(f"{self.provider_id} returned non-object JSON response")
        return data

    async def generate(self, prompt: str, persona: str | None = None) -> GenerationOutcome:
        payload = self._build_payload(prompt, persona)
        logger.debug(
            "[ai.request] provider=%s model=%s persona=%s prompt_chars=%s",
            self.provider_id,
            self.model,
            self._has_persona(persona),
            len(prompt),
        )
        try:
            data = await self._request(payload)
            result = self._parse_reply(data)
        except TransportError as exc:
            logger.error("[ai.transport] provider=%s %s", self.provider_id, exc)
            return GenerationFailure("transport", str(exc))
        except ProviderError as exc:
            logger.error("[ai.provider_error] provider=%s status=%s message=%s", self.provider_id, exc.status, exc)
            return GenerationFailure("provider", str(exc))
        except EmptyReplyError as exc:
            logger.error("[ai.empty] provider=%s %s", self.provider_id, exc)
            return GenerationFailure("empty", str(exc))
        except MalformedResponseError as exc:
            logger.error("[ai.malformed] provider=%s %s", self.provider_id, exc)
            return GenerationFailure("malformed", str(exc))

        logger.info(
            "[ai.reply] provider=%s model=%s chars=%s prompt_tokens=%s completion_tokens=%s total_tokens=%s",
            self.provider_id,
            self.model,
            len(result.text),
            result.prompt_tokens,
            result.completion_tokens,
            result.total_tokens,
        )
        return result
