from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


@dataclass(frozen=True)
class Settings:
    supabase_url: str | None = None
    supabase_key: str | None = None
    gemini_api_key: str | None = None
    gemini_model: str = "gemini-1.5-flash"
    http_timeout_seconds: float = 15.0
    http_max_retries: int = 2
    proxy_url: str | None = None
    ai_timeout_seconds: float = 30.0
    ai_html_max_chars: int = 30_000
    politeness_delay_seconds: float = 2.0
    check_cron_minute: int = 0
    summary_hour: int = 9
    summary_minute: int = 0
    log_level: str = "INFO"
    monitor_log: bool = True


def _env_str(name: str) -> str | None:
    return os.getenv(name, "").strip() or None


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def load_settings(env_file: Path | None = None) -> Settings:
    """Build settings from the process environment, loading a ``.env`` file first when present."""
    if env_file is not None:
        load_dotenv(env_file)
    else:
        load_dotenv()
    return Settings(
        supabase_url=_env_str("SUPABASE_URL"),
        supabase_key=_env_str("SUPABASE_SERVICE_ROLE_KEY") or _env_str("SUPABASE_KEY"),
        gemini_api_key=_env_str("GEMINI_API_KEY"),
        gemini_model=_env_str("GEMINI_MODEL") or Settings.gemini_model,
        http_timeout_seconds=_env_float("HTTP_TIMEOUT_SECONDS", Settings.http_timeout_seconds),
        http_max_retries=max(1, _env_int("HTTP_MAX_RETRIES", Settings.http_max_retries)),
        proxy_url=_env_str("PROXY_URL"),
        ai_timeout_seconds=_env_float("AI_TIMEOUT_SECONDS", Settings.ai_timeout_seconds),
        ai_html_max_chars=max(1_000, _env_int("AI_HTML_MAX_CHARS", Settings.ai_html_max_chars)),
        politeness_delay_seconds=max(0.0, _env_float("POLITENESS_DELAY_SECONDS", Settings.politeness_delay_seconds)),
        check_cron_minute=_env_int("CHECK_CRON_MINUTE", Settings.check_cron_minute) % 60,
        summary_hour=_env_int("SUMMARY_HOUR", Settings.summary_hour) % 24,
        summary_minute=_env_int("SUMMARY_MINUTE", Settings.summary_minute) % 60,
        log_level=(_env_str("LOG_LEVEL") or Settings.log_level).upper(),
        monitor_log=os.getenv("MONITOR_LOG", "1").strip() != "0",
    )
