from __future__ import annotations

import os
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv


load_dotenv()


DEFAULT_BASE_URL = "https://api.openai.com/v1/chat/completions"
DEFAULT_SYSTEM_PROMPT = "你是一个通用的AI助手。"
DEFAULT_MODEL = "gpt-3.5-turbo-0125"


class ConfigError(RuntimeError):
    """Raised when required configuration is missing or malformed."""


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc


class Settings:
    """Application settings loaded from environment variables.

    Keep all credentials and config centralized here. Values are read when the
    instance is built and never change afterwards.
    """

    def __init__(self) -> None:
        self.app_env: str = os.getenv("APP_ENV", "development")
        self.openai_api_key: Optional[str] = os.getenv("OPENAI_API_KEY") or None
        self.openai_base_url: str = os.getenv("OPENAI_BASE_URL") or DEFAULT_BASE_URL
        self.system_prompt: str = os.getenv("SYSTEM_PROMPT") or DEFAULT_SYSTEM_PROMPT
        self.openai_model: str = (os.getenv("OPENAI_MODEL") or DEFAULT_MODEL).strip()
        self.host: str = os.getenv("HOST", "0.0.0.0")
        self.port: int = _env_int("PORT", 3000)
        self.request_timeout: float = _env_float("OPENAI_TIMEOUT", 60.0)
        self.log_level: str = (os.getenv("LOG_LEVEL") or "INFO").upper()

    def validate(self) -> "Settings":
        if not self.openai_api_key:
            raise ConfigError("OPENAI_API_KEY is not set in environment or .env")
        if not self.openai_model:
            raise ConfigError("OPENAI_MODEL is not set in environment or .env")
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
