from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

MAX_BODY_BYTES = 1_000_000

DEFAULT_STORE_PATH = "data/bills.json"
DEFAULT_OPENAI_MODEL = "gpt-4o-mini"
DEFAULT_OPENAI_BASE_URL = "https://api.openai.com/v1"
DEFAULT_EXPO_PUSH_URL = "https://exp.host/--/api/v2/push/send"


@dataclass(frozen=True)
class Settings:
    store_path: str = DEFAULT_STORE_PATH
    openai_api_key: Optional[str] = None
    openai_model: str = DEFAULT_OPENAI_MODEL
    openai_base_url: str = DEFAULT_OPENAI_BASE_URL
    expo_push_url: str = DEFAULT_EXPO_PUSH_URL
    public_base_url: Optional[str] = None
    push_reminder_hour: Optional[int] = None
    timezone: Optional[str] = None
    host: str = "0.0.0.0"
    port: int = 4000
    log_level: str = "INFO"


def _get_env(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(name, default)
    if value is None:
        return None
    value = value.strip()
    return value if value else None


def _get_int_env(name: str, default: int) -> int:
    value = _get_env(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_hour_env(name: str) -> Optional[int]:
    value = _get_env(name)
    if value is None:
        return None
    try:
        hour = int(value)
    except ValueError:
        return None
    if 0 <= hour <= 23:
        return hour
    return None


def load_settings() -> Settings:
    return Settings(
        store_path=_get_env("BILLS_STORE_FILE") or DEFAULT_STORE_PATH,
        openai_api_key=_get_env("OPENAI_API_KEY"),
        openai_model=_get_env("OPENAI_MODEL") or DEFAULT_OPENAI_MODEL,
        openai_base_url=(_get_env("OPENAI_BASE_URL") or DEFAULT_OPENAI_BASE_URL).rstrip("/"),
        expo_push_url=_get_env("EXPO_PUSH_URL") or DEFAULT_EXPO_PUSH_URL,
        public_base_url=_get_env("PUBLIC_BASE_URL"),
        push_reminder_hour=_get_hour_env("PUSH_REMINDER_HOUR"),
        timezone=_get_env("TIMEZONE"),
        host=_get_env("HOST") or "0.0.0.0",
        port=_get_int_env("PORT", 4000),
        log_level=(_get_env("LOG_LEVEL") or "INFO").upper(),
    )
