from __future__ import annotations

import os
from dataclasses import dataclass
from zoneinfo import ZoneInfo
from zoneinfo import ZoneInfoNotFoundError

from config.defaults import BACKLOG_TICK_SECONDS
from config.defaults import COMPLETION_MAX_TOKENS
from config.defaults import COMPLETION_TIMEOUT_SECONDS
from config.defaults import DEFAULT_AGENT_RESTRICTIONS
from config.defaults import DEFAULT_CHAT_MODEL
from config.defaults import DEFAULT_COMPLETION_BASE_URL
from config.defaults import DEFAULT_COMPLETION_MODEL
from config.defaults import DEFAULT_DB_PATH
from config.defaults import DEFAULT_GUIDELINES_PATH
from config.defaults import DEFAULT_HOST
from config.defaults import DEFAULT_PORT
from config.defaults import DEFAULT_QUOTA_TIMEZONE
from config.defaults import GLOBAL_DAILY_LIMIT
from config.defaults import REPLY_HARD_CHARS
from config.defaults import REPLY_SOFT_CHARS
from config.defaults import USER_DAILY_LIMIT
from config.defaults import USER_MINUTE_LIMIT


@dataclass(frozen=True)
class RelaySettings:
    db_path: str
    quota_timezone: str
    global_daily_limit: int
    user_daily_limit: int
    user_minute_limit: int
    tick_seconds: float
    completion_base_url: str
    completion_model: str
    chat_model: str
    chat_enabled: bool
    completion_api_key: str | None
    completion_timeout_seconds: float
    max_tokens: int
    agent_restrictions: str
    reply_soft_chars: int
    reply_hard_chars: int
    guidelines_path: str
    webhook_api_key: str | None
    host: str
    port: int


def _env_int(name: str, default: int, *, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        print(f"[CFG] invalid {name}={raw!r}; falling back to {default}")
        return default
    if value < minimum:
        print(f"[CFG] {name}={value} below minimum {minimum}; falling back to {default}")
        return default
    return value


def _env_float(name: str, default: float, *, minimum: float = 0.0) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw.strip())
    except ValueError:
        print(f"[CFG] invalid {name}={raw!r}; falling back to {default}")
        return default
    if value < minimum:
        print(f"[CFG] {name}={value} below minimum {minimum}; falling back to {default}")
        return default
    return value


def _env_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip() or default


def _resolve_timezone_name(raw: str) -> str:
    # Quota days follow this zone, never the host locale.
    try:
        ZoneInfo(raw)
    except (ZoneInfoNotFoundError, ValueError):
        print(f"[CFG] invalid RELAY_QUOTA_TIMEZONE={raw!r}; falling back to {DEFAULT_QUOTA_TIMEZONE!r}")
        return DEFAULT_QUOTA_TIMEZONE
    return raw


def load_settings() -> RelaySettings:
    soft_chars = _env_int("RELAY_REPLY_SOFT_CHARS", REPLY_SOFT_CHARS, minimum=1)
    hard_chars = _env_int("RELAY_REPLY_HARD_CHARS", REPLY_HARD_CHARS, minimum=1)
    if soft_chars > hard_chars:
        print(f"[CFG] RELAY_REPLY_SOFT_CHARS={soft_chars} exceeds hard cap {hard_chars}; clamping")
        soft_chars = hard_chars

    settings = RelaySettings(
        db_path=_env_str("RELAY_DB_PATH", DEFAULT_DB_PATH),
        quota_timezone=_resolve_timezone_name(_env_str("RELAY_QUOTA_TIMEZONE", DEFAULT_QUOTA_TIMEZONE)),
        global_daily_limit=_env_int("RELAY_GLOBAL_DAILY_LIMIT", GLOBAL_DAILY_LIMIT, minimum=1),
        user_daily_limit=_env_int("RELAY_USER_DAILY_LIMIT", USER_DAILY_LIMIT, minimum=1),
        user_minute_limit=_env_int("RELAY_USER_MINUTE_LIMIT", USER_MINUTE_LIMIT, minimum=1),
        tick_seconds=_env_float("RELAY_TICK_SECONDS", float(BACKLOG_TICK_SECONDS), minimum=1.0),
        completion_base_url=_env_str("OPENAI_BASE_URL", DEFAULT_COMPLETION_BASE_URL).rstrip("/"),
        completion_model=_env_str("OPENAI_MODEL", DEFAULT_COMPLETION_MODEL),
        chat_model=_env_str("RELAY_CHAT_MODEL", DEFAULT_CHAT_MODEL),
        chat_enabled=os.getenv("RELAY_CHAT_ENABLED", "1").strip().lower() in {"1", "true", "yes"},
        completion_api_key=(os.getenv("OPENAI_API_KEY") or "").strip() or None,
        completion_timeout_seconds=_env_float(
            "RELAY_COMPLETION_TIMEOUT_SECONDS",
            float(COMPLETION_TIMEOUT_SECONDS),
            minimum=1.0,
        ),
        max_tokens=_env_int("RELAY_MAX_TOKENS", COMPLETION_MAX_TOKENS, minimum=1),
        agent_restrictions=_env_str("RELAY_AGENT_RESTRICTIONS", DEFAULT_AGENT_RESTRICTIONS),
        reply_soft_chars=soft_chars,
        reply_hard_chars=hard_chars,
        guidelines_path=_env_str("RELAY_GUIDELINES_PATH", DEFAULT_GUIDELINES_PATH),
        webhook_api_key=(os.getenv("RELAY_WEBHOOK_API_KEY") or "").strip() or None,
        host=_env_str("RELAY_HOST", DEFAULT_HOST),
        port=_env_int("RELAY_PORT", DEFAULT_PORT, minimum=1),
    )

    print(
        f"[CFG] tz={settings.quota_timezone} "
        f"limits=global:{settings.global_daily_limit}/day "
        f"user:{settings.user_daily_limit}/day user:{settings.user_minute_limit}/min "
        f"tick={settings.tick_seconds}s model={settings.completion_model} "
        f"reply_chars={settings.reply_soft_chars}/{settings.reply_hard_chars} "
        f"webhook_auth={'on' if settings.webhook_api_key else 'off'} "
        f"chat={'on' if settings.chat_enabled else 'off'}"
    )
    return settings
