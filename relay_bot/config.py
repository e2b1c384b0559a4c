from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from .prompts.dialogue import PROACTIVE_PERSONA, PROACTIVE_PROMPT_TEMPLATE


load_dotenv()

AI_PROVIDERS = ("openai", "gemini")
STORAGE_BACKENDS = ("json", "sqlite")


def _env_lookup(name: str, aliases: tuple[str, ...] = ()) -> str | None:
    for key in (name, *aliases):
        # Be tolerant to UTF-8 BOM accidentally saved in .env key names.
        for candidate in (key, f"\ufeff{key}"):
            raw = os.getenv(candidate)
            if raw is not None:
                return raw
    return None


def _env_bool(name: str, default: bool, aliases: tuple[str, ...] = ()) -> bool:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int, aliases: tuple[str, ...] = ()) -> int:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _env_str(name: str, default: str, aliases: tuple[str, ...] = ()) -> str:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    value = raw.strip()
    return value if value else default


def _env_optional_str(name: str, default: str | None, aliases: tuple[str, ...] = ()) -> str | None:
    # Unlike _env_str, an explicitly empty value means "no value".
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    value = raw.strip()
    return value or None


def _env_list(name: str, aliases: tuple[str, ...] = ()) -> tuple[str, ...]:
    raw = (_env_lookup(name, aliases) or "").strip()
    if not raw:
        return ()
    return tuple(chunk.strip() for chunk in raw.split(",") if chunk.strip())


def _env_path(name: str, default: Path, aliases: tuple[str, ...] = ()) -> Path:
    raw = _env_lookup(name, aliases)
    if raw is None or not raw.strip():
        return default
    return Path(raw.strip()).expanduser()


def _clean_token(value: str) -> str:
    cleaned = value.strip()
    if (cleaned.startswith('"') and cleaned.endswith('"')) or (
        cleaned.startswith("'") and cleaned.endswith("'")
    ):
        cleaned = cleaned[1:-1].strip()
    return cleaned


@dataclass(slots=True)
class Settings:
    telegram_bot_token: str
    telegram_bot_username: str
    telegram_api_base_url: str
    telegram_timeout_seconds: int

    webhook_url: str
    webhook_host: str
    webhook_port: int

    ai_provider: str
    ai_timeout_seconds: int
    openai_api_key: str
    openai_base_url: str
    openai_model: str
    gemini_api_key: str
    gemini_base_url: str
    gemini_model: str

    default_persona: str
    monitored_keywords: tuple[str, ...]
    message_history_limit: int
    bot_history_prefix: str
    respond_to_channel_posts: bool
    ai_error_fallback_message: str

    proactive_enabled: bool
    proactive_threshold: int
    proactive_persona: str | None
    proactive_prompt_template: str

    storage_backend: str
    data_dir: Path
    history_dir: Path
    token_usage_dir: Path
    chat_roles_path: Path
    sqlite_path: Path

    log_path: Path | None
    debug_mode: bool

    @classmethod
    def from_env(cls) -> "Settings":
        data_dir = _env_path("DATA_DIR", Path("./data"))
        log_raw = _env_optional_str("LOG_PATH", None)
        return cls(
            telegram_bot_token=_clean_token(_env_lookup("TELEGRAM_BOT_TOKEN") or ""),
            telegram_bot_username=_env_str("TELEGRAM_BOT_USERNAME", "bot").lstrip("@"),
            telegram_api_base_url=_env_str("TELEGRAM_API_BASE_URL", "https://api.telegram.org"),
            telegram_timeout_seconds=_env_int("TELEGRAM_TIMEOUT_SECONDS", 20),
            webhook_url=_env_str("WEBHOOK_URL", ""),
            webhook_host=_env_str("WEBHOOK_HOST", "0.0.0.0"),
            webhook_port=_env_int("WEBHOOK_PORT", 8080),
            ai_provider=_env_str("AI_PROVIDER", "openai", aliases=("ACTIVE_AI_PROVIDER",)).lower(),
            ai_timeout_seconds=_env_int("AI_TIMEOUT_SECONDS", 60),
            openai_api_key=_env_str("OPENAI_API_KEY", ""),
            openai_base_url=_env_str("OPENAI_BASE_URL", "https://api.openai.com/v1"),
            openai_model=_env_str("OPENAI_MODEL", "gpt-4"),
            gemini_api_key=_env_str("GEMINI_API_KEY", ""),
            gemini_base_url=_env_str("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com"),
            gemini_model=_env_str("GEMINI_MODEL", "gemini-pro", aliases=("GEMINI_MODEL_NAME",)),
            default_persona=_env_str(
                "DEFAULT_PERSONA",
                "You are a friendly and genuinely helpful AI assistant.",
                aliases=("DEFAULT_AI_ROLE",),
            ),
            monitored_keywords=_env_list("MONITORED_KEYWORDS"),
            message_history_limit=_env_int("MESSAGE_HISTORY_LIMIT", 15),
            bot_history_prefix=_env_lookup("BOT_HISTORY_PREFIX") or "Bot: ",
            respond_to_channel_posts=_env_bool(
                "RESPOND_TO_CHANNEL_POSTS",
                False,
                aliases=("RESPOND_TO_CHANNEL_POSTS_IF_MENTIONED",),
            ),
            ai_error_fallback_message=_env_str(
                "AI_ERROR_FALLBACK_MESSAGE",
                "Sorry, I can't come up with an answer right now.",
            ),
            proactive_enabled=_env_bool("PROACTIVE_ENGAGEMENT_ENABLED", False),
            proactive_threshold=_env_int(
                "PROACTIVE_ENGAGEMENT_THRESHOLD",
                10,
                aliases=("PROACTIVE_ENGAGEMENT_MESSAGE_THRESHOLD",),
            ),
            proactive_persona=_env_optional_str(
                "PROACTIVE_ENGAGEMENT_PERSONA",
                PROACTIVE_PERSONA,
                aliases=("PROACTIVE_ENGAGEMENT_SYSTEM_ROLE",),
            ),
            proactive_prompt_template=_env_str(
                "PROACTIVE_ENGAGEMENT_PROMPT_TEMPLATE",
                PROACTIVE_PROMPT_TEMPLATE,
            ),
            storage_backend=_env_str("STORAGE_BACKEND", "json").lower(),
            data_dir=data_dir,
            history_dir=_env_path("HISTORY_DIR", data_dir / "history"),
            token_usage_dir=_env_path("TOKEN_USAGE_DIR", data_dir / "token_usage"),
            chat_roles_path=_env_path("CHAT_ROLES_PATH", data_dir / "chat_roles.json"),
            sqlite_path=_env_path("SQLITE_PATH", data_dir / "relay_bot.db"),
            log_path=Path(log_raw).expanduser() if log_raw else None,
            debug_mode=_env_bool("DEBUG_MODE", False),
        )

    def validate(self) -> None:
        if not self.telegram_bot_token:
            raise ValueError("TELEGRAM_BOT_TOKEN is required")
        if self.telegram_bot_token == "YOUR_TELEGRAM_BOT_TOKEN_HERE":
            raise ValueError("TELEGRAM_BOT_TOKEN is still placeholder")
        if not self.telegram_bot_username:
            raise ValueError("TELEGRAM_BOT_USERNAME cannot be empty")
        if self.telegram_timeout_seconds < 1:
            raise ValueError("TELEGRAM_TIMEOUT_SECONDS must be >= 1")
        if not 1 <= self.webhook_port <= 65535:
            raise ValueError("WEBHOOK_PORT must be in [1, 65535]")

        # A missing API key is not fatal: the bot keeps recording history and skips AI replies.
        if self.ai_provider not in AI_PROVIDERS:
            raise ValueError("AI_PROVIDER must be 'openai' or 'gemini'")
        if self.ai_timeout_seconds < 1:
            raise ValueError("AI_TIMEOUT_SECONDS must be >= 1")

        if self.message_history_limit < 1:
            raise ValueError("MESSAGE_HISTORY_LIMIT must be >= 1")
        if not self.bot_history_prefix:
            raise ValueError("BOT_HISTORY_PREFIX cannot be empty")
        if self.proactive_threshold < 1:
            raise ValueError("PROACTIVE_ENGAGEMENT_THRESHOLD must be >= 1")
        if "{history}" not in self.proactive_prompt_template:
            raise ValueError("PROACTIVE_ENGAGEMENT_PROMPT_TEMPLATE must contain {history}")

        if self.storage_backend not in STORAGE_BACKENDS:
            raise ValueError("STORAGE_BACKEND must be 'json' or 'sqlite'")
