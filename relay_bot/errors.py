from __future__ import annotations


class RelayBotError(RuntimeError):
    """Base class for errors raised inside the relay bot."""


class TransportError(RelayBotError):
    """Network or HTTP failure while talking to Telegram or an AI backend."""


class MalformedResponseError(RelayBotError):
    """A backend answered with a body that could not be decoded or understood."""


class ProviderError(RelayBotError):
    """A backend answered with an explicit error payload."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class StorageError(RelayBotError):
    """Per-chat state could not be read or written."""


class ConfigurationError(RelayBotError):
    """The process configuration does not allow a feature to run."""
